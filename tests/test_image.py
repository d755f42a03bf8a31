"""Tests for execution image resolution."""

from unittest.mock import Mock, patch

import pytest

from constech_worker.core.config import WorkerConfig
from constech_worker.core.errors import ImageBuildError
from constech_worker.core.runtime.image import (
    DEFAULT_IMAGE_TAG,
    ImageResolver,
    parse_devcontainer_image,
)


def _config(**docker) -> WorkerConfig:
    return WorkerConfig.model_validate(
        {"project": {"owner": "acme", "name": "web"}, "docker": docker}
    )


def test_custom_image_wins(tmp_path) -> None:
    runtime = Mock()
    (tmp_path / ".devcontainer").mkdir()
    resolver = ImageResolver(_config(customImage="ghcr.io/acme/dev:1"), runtime, project_root=tmp_path)
    assert resolver.resolve() == "ghcr.io/acme/dev:1"
    runtime.build_image.assert_not_called()


def test_default_image_built_without_devcontainer(tmp_path) -> None:
    """Test the generated Dockerfile is built and its directory cleaned up."""
    runtime = Mock()
    runtime.build_image.side_effect = lambda dockerfile, tag, context: tag
    resolver = ImageResolver(_config(nodeVersion="22"), runtime, project_root=tmp_path)

    assert resolver.resolve() == DEFAULT_IMAGE_TAG
    dockerfile, _, context = runtime.build_image.call_args[0]
    assert dockerfile.read_text().startswith("FROM node:22")
    resolver.cleanup()
    assert not context.exists()


def test_dockerfile_installs_enabled_tools(tmp_path) -> None:
    resolver = ImageResolver(_config(mcpServers={"github": True, "ref": True}), Mock(), project_root=tmp_path)
    dockerfile = resolver.render_dockerfile()
    assert "npm install -g @anthropic-ai/claude-code" in dockerfile
    assert "@modelcontextprotocol/server-ref" in dockerfile
    assert 'git config --system user.name "constech-worker"' in dockerfile


@patch("constech_worker.core.runtime.image.subprocess.run")
def test_devcontainer_build(mock_run, tmp_path) -> None:
    (tmp_path / ".devcontainer").mkdir()
    mock_run.return_value = Mock(
        returncode=0, stdout='{"outcome":"success","imageName":["vsc-web-abc"]}\n', stderr=""
    )
    resolver = ImageResolver(_config(), Mock(), project_root=tmp_path)
    assert resolver.resolve() == "vsc-web-abc"
    assert mock_run.call_args[0][0][:4] == ["npx", "--yes", "@devcontainers/cli", "build"]


@patch("constech_worker.core.runtime.image.subprocess.run")
def test_devcontainer_build_failure(mock_run, tmp_path) -> None:
    (tmp_path / ".devcontainer").mkdir()
    mock_run.return_value = Mock(returncode=1, stdout="", stderr="bad feature")
    with pytest.raises(ImageBuildError, match="bad feature"):
        ImageResolver(_config(), Mock(), project_root=tmp_path).resolve()


def test_parse_devcontainer_image() -> None:
    assert parse_devcontainer_image('noise\n{"imageName":["img:1"]}') == "img:1"
    assert parse_devcontainer_image("no image here") is None
