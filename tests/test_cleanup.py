"""Tests for the cleanup registry."""

import signal
from unittest.mock import Mock, patch

import pytest

from constech_worker.core.cleanup import CleanupRegistry


def test_run_all_most_recent_first() -> None:
    registry = CleanupRegistry()
    calls = []
    registry.register(lambda: calls.append("first"))
    registry.register(lambda: calls.append("second"))

    assert registry.run_all() == 2
    assert calls == ["second", "first"]
    assert len(registry) == 0


def test_register_ignores_duplicates() -> None:
    registry = CleanupRegistry()
    cleanup = Mock()
    registry.register(cleanup)
    registry.register(cleanup)
    assert len(registry) == 1


def test_unregister() -> None:
    registry = CleanupRegistry()
    cleanup = Mock()
    registry.register(cleanup)
    assert registry.unregister(cleanup) is True
    assert registry.unregister(cleanup) is False
    assert registry.run_all() == 0
    cleanup.assert_not_called()


def test_run_all_continues_after_failure() -> None:
    """Test a failing cleanup does not stop the others."""
    registry = CleanupRegistry()
    survivor = Mock()
    registry.register(survivor)
    registry.register(Mock(side_effect=RuntimeError("boom")))

    assert registry.run_all() == 2
    survivor.assert_called_once()


def test_run_all_while_lock_held_by_same_thread() -> None:
    """Test a signal arriving mid-register can still run cleanups."""
    registry = CleanupRegistry()
    cleanup = Mock()
    registry.register(cleanup)

    with registry._lock:
        assert registry.run_all() == 1
    cleanup.assert_called_once_with()


def test_cleanup_runs_at_most_once() -> None:
    registry = CleanupRegistry()
    cleanup = Mock()
    registry.register(cleanup)
    registry.run_all()
    registry.run_all()
    cleanup.assert_called_once()


def test_handle_signal_cleans_up_and_exits() -> None:
    registry = CleanupRegistry()
    cleanup = Mock()
    registry.register(cleanup)

    with pytest.raises(SystemExit) as exc_info:
        registry.handle_signal(signal.SIGINT)

    assert exc_info.value.code == 1
    cleanup.assert_called_once()
    assert registry.shutting_down


def test_second_signal_forces_exit() -> None:
    registry = CleanupRegistry()
    with pytest.raises(SystemExit):
        registry.handle_signal(signal.SIGTERM)

    with patch("constech_worker.core.cleanup.os._exit") as mock_exit:
        mock_exit.side_effect = SystemExit(1)
        with pytest.raises(SystemExit):
            registry.handle_signal(signal.SIGTERM)
    mock_exit.assert_called_once_with(1)


@patch("constech_worker.core.cleanup.signal.signal")
def test_install_signal_handlers(mock_signal) -> None:
    registry = CleanupRegistry()
    registry.install_signal_handlers([signal.SIGINT, signal.SIGTERM])
    mock_signal.assert_any_call(signal.SIGINT, registry.handle_signal)
    mock_signal.assert_any_call(signal.SIGTERM, registry.handle_signal)
