"""Workflow engine: one dispatch from request to torn-down environment.

A run moves through the stages of :class:`WorkflowStage` in order::

    START -> ISSUE_RESOLVED -> STATUS_SET -> ENV_PREPARED -> EXECUTING
          -> RESULT_PARSED -> SUMMARIZED -> TORN_DOWN

Any exception before SUMMARIZED finalizes the run as failed. The summary is
rendered and the environment torn down in ``finally`` whatever happened,
and the teardown is registered with the cleanup registry for the whole run
so an interrupt reaches the same idempotent teardown.
"""

import logging
import os
import shutil
import tempfile
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

from rich.console import Console

from constech_worker.core.aux_tools import CONTAINER_CONFIG_PATH, AuxToolManager
from constech_worker.core.cleanup import CleanupRegistry
from constech_worker.core.config import StatusName, WorkerConfig
from constech_worker.core.errors import (
    ConfigError,
    ContainerNotFoundError,
    ContainerRuntimeError,
    ExecutionTimeoutError,
    WorkerError,
    WorkflowRequestError,
)
from constech_worker.core.github_client import GitHubClient
from constech_worker.core.instructions import (
    InstructionParser,
    PromptContext,
    build_system_prompt,
    compose_agent_prompt,
)
from constech_worker.core.issue_text import build_issue_body, split_prompt
from constech_worker.core.models import (
    WorkflowOptions,
    WorkflowRequest,
    WorkflowRunState,
    WorkflowStage,
)
from constech_worker.core.runtime.base import ContainerRuntime, ContainerSpec
from constech_worker.core.runtime.image import ImageResolver
from constech_worker.core.utils import log_workflow_event
from constech_worker.core.workflow.bootstrap import (
    CLAUDE_CONFIG_DIR,
    BootstrapContext,
    build_bootstrap_steps,
    find_failed_step,
    last_started_step,
    render_script,
)
from constech_worker.core.workflow.output_parser import parse_agent_output
from constech_worker.core.workflow.progress import ProgressTracker
from constech_worker.core.workflow.summary import render_summary

logger = logging.getLogger(__name__)

CREDENTIAL_VOLUME = "constech-worker-claude"
CONTAINER_USER = "worker"
CONTAINER_HOME = "/home/worker"
CONTAINER_WORKDIR = "/workspace"
REPO_MOUNT = "/workspace/repo"
SCRIPT_PATH = "/tmp/workflow.sh"
STOP_GRACE_SECONDS = 10
FAILURE_TAIL_LINES = 50

CONTAINER_PATH = (
    "/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin"
    ":/usr/local/share/npm-global/bin:/usr/local/share/pnpm"
)

TIMEOUT_ENV_VAR = "CONSTECH_WORKFLOW_TIMEOUT_SECONDS"


class EnvironmentTeardown:
    """Idempotent teardown of one run's execution environment.

    Stops the container if it is running, removes it, and deletes local
    temporary directories. Failures are logged with a manual cleanup hint and
    never raised. Once a call completes, later calls do nothing. A call that
    arrives while another is still in progress (a signal handler interrupting
    the engine's own teardown) force-removes the container without waiting
    for a graceful stop.
    """

    def __init__(
        self,
        runtime: ContainerRuntime,
        image_resolver: Optional[ImageResolver] = None,
        console: Optional[Console] = None,
        stop_timeout: int = STOP_GRACE_SECONDS,
    ) -> None:
        self.runtime = runtime
        self.image_resolver = image_resolver
        self.console = console or Console(stderr=True)
        self.stop_timeout = stop_timeout
        self.container_id: Optional[str] = None
        self.temp_dirs: List[Path] = []
        self.calls = 0
        self._done = False
        self._in_progress = False

    @property
    def done(self) -> bool:
        return self._done

    def add_temp_dir(self, path: Union[str, Path]) -> None:
        self.temp_dirs.append(Path(path))

    def __call__(self) -> None:
        self.calls += 1
        if self._done:
            return
        interrupting = self._in_progress
        self._in_progress = True
        try:
            if self.container_id:
                self._remove_container(self.container_id, graceful=not interrupting)
            else:
                logger.debug("No container to clean up")
            self._remove_temp_dirs()
            self._done = True
        finally:
            if not interrupting:
                self._in_progress = False

    def _remove_container(self, container_id: str, graceful: bool = True) -> None:
        short_id = container_id[:12]
        try:
            state = self.runtime.inspect(container_id)
            logger.debug(f"Container {short_id} status: {state.status}")
            if state.running and graceful:
                logger.debug(f"Stopping container {short_id}...")
                try:
                    self.runtime.stop(container_id, timeout=self.stop_timeout)
                except ContainerRuntimeError as e:
                    logger.warning(f"Failed to stop container gracefully: {e}")

            logger.debug(f"Removing container {short_id}...")
            self.runtime.remove(container_id, force=True)
            logger.debug(f"Container {short_id} removed successfully")
        except ContainerNotFoundError:
            logger.debug(f"Container {short_id} not found, already removed")
        except Exception as e:
            logger.warning(f"Failed to cleanup container {short_id}: {e}")
            self.console.print(
                "[yellow]Container cleanup failed. You may need to manually remove "
                f"container: {short_id}[/yellow]"
            )
            self.console.print(f"   Run: docker rm -f {short_id}")

    def _remove_temp_dirs(self) -> None:
        while self.temp_dirs:
            path = self.temp_dirs.pop()
            try:
                shutil.rmtree(path)
                logger.debug(f"Removed temp directory: {path}")
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Failed to remove temp directory {path}: {e}")
        if self.image_resolver is not None:
            self.image_resolver.cleanup()


class WorkflowEngine:
    """Runs dispatches against an isolated execution environment."""

    def __init__(
        self,
        config: WorkerConfig,
        options: WorkflowOptions,
        *,
        github: GitHubClient,
        runtime: ContainerRuntime,
        registry: CleanupRegistry,
        aux_tools: Optional[AuxToolManager] = None,
        instructions: Optional[InstructionParser] = None,
        image_resolver: Optional[ImageResolver] = None,
        console: Optional[Console] = None,
        project_root: Optional[Union[str, Path]] = None,
    ) -> None:
        self.config = config
        self.options = options
        self.github = github
        self.runtime = runtime
        self.registry = registry
        self.project_root = Path(project_root) if project_root else Path.cwd()
        self.aux_tools = aux_tools or AuxToolManager(config)
        self.instructions = instructions or InstructionParser(self.project_root)
        self.image_resolver = image_resolver or ImageResolver(
            config, runtime, self.aux_tools, self.project_root
        )
        self.console = console or Console(stderr=True)

    @property
    def owner(self) -> str:
        return self.config.project.owner or ""

    @property
    def repo(self) -> str:
        return self.config.project.name or ""

    @property
    def working_branch(self) -> str:
        return self.options.base_branch or self.config.project.working_branch

    def resolve_reviewer(self) -> Optional[str]:
        """Reviewer from the command line, then the reviewer env var, then the default."""
        if self.options.reviewer:
            return self.options.reviewer
        env_var = self.config.workflow.reviewer_env_var
        if env_var and os.environ.get(env_var):
            return os.environ[env_var]
        return self.config.workflow.default_reviewer

    def execution_timeout(self) -> int:
        if self.options.execution_timeout:
            return self.options.execution_timeout
        raw = os.environ.get(TIMEOUT_ENV_VAR)
        if raw:
            try:
                value = int(raw)
                if value > 0:
                    return value
            except ValueError:
                pass
            logger.warning(f"Ignoring invalid {TIMEOUT_ENV_VAR}={raw!r}")
        return self.config.workflow.execution_timeout_seconds

    def dispatch(
        self,
        issue_number: Optional[int] = None,
        prompt: Optional[str] = None,
        create_issue: bool = False,
    ) -> WorkflowRunState:
        """Validate request arguments and execute.

        Raises:
            WorkflowRequestError: If the arguments do not form a valid request
        """
        request = WorkflowRequest.build(issue_number, prompt, create_issue)
        return self.execute(request)

    def execute(self, request: WorkflowRequest) -> WorkflowRunState:
        """Execute a validated request.

        Failures are reported through the returned state. ``KeyboardInterrupt``
        and ``SystemExit`` propagate after summary and teardown.
        """
        state = WorkflowRunState(
            issue_number=request.issue_number,
            prompt=request.prompt,
            reviewer=self.resolve_reviewer(),
        )
        teardown = EnvironmentTeardown(self.runtime, self.image_resolver, self.console)
        self.registry.register(teardown)

        logger.info("Starting autonomous development workflow...")
        try:
            self._run(request, state, teardown)
            state.finish(True)
            log_workflow_event(logger, "WORKFLOW", "completed")
        except Exception as e:
            logger.debug("Workflow failed", exc_info=True)
            state.finish(False, str(e))
            log_workflow_event(logger, state.stage.value, "failed", str(e))
        finally:
            state.finish(False, "Workflow interrupted")
            state.advance(WorkflowStage.SUMMARIZED)
            try:
                render_summary(state, self.console)
            except Exception as e:
                logger.warning(f"Failed to render summary: {e}")
            teardown()
            state.advance(WorkflowStage.TORN_DOWN)
            self.registry.unregister(teardown)
        return state

    def _run(
        self, request: WorkflowRequest, state: WorkflowRunState, teardown: EnvironmentTeardown
    ) -> None:
        if not self.config.project.owner or not self.config.project.name:
            raise ConfigError("project.owner and project.name must be configured")

        self._resolve_issue(request, state)
        state.advance(WorkflowStage.ISSUE_RESOLVED)

        if state.issue_number is not None:
            self._set_issue_status(state.issue_number, "inProgress")
        state.advance(WorkflowStage.STATUS_SET)

        logger.info("Preparing development environment...")
        container_id = self._prepare_environment(state, teardown)
        state.advance(WorkflowStage.ENV_PREPARED)
        log_workflow_event(logger, "ENV_PREPARED", "completed", container_id[:12])

        logger.info("Executing autonomous development...")
        script_path = self._write_script(state, teardown)
        self.runtime.copy_into(container_id, script_path, SCRIPT_PATH)
        state.advance(WorkflowStage.EXECUTING)
        self._execute(container_id, state)

    def _resolve_issue(self, request: WorkflowRequest, state: WorkflowRunState) -> None:
        if request.issue_number is not None:
            state.issue_title = self.github.fetch_issue_title(
                self.owner, self.repo, request.issue_number
            )
            return
        if not request.create_issue:
            return

        if not request.prompt:
            raise WorkflowRequestError("Creating an issue requires a prompt")
        title, description = split_prompt(request.prompt)
        username = self.config.bot.username
        issue = self.github.create_issue(
            self.owner,
            self.repo,
            title,
            build_issue_body(description),
            assignees=[username] if username else None,
            labels=["enhancement"],
        )
        state.issue_number = issue.number
        state.issue_title = title
        state.issue_created = True
        logger.info(f"Created issue #{issue.number}: {title}")

        board = self.config.github
        if board.project_id:
            try:
                self.github.add_issue_to_project(issue.number, board.project_id, self.owner, self.repo)
            except Exception as e:
                logger.warning(f"Failed to add issue #{issue.number} to project: {e}")
            if board.status_field_id and board.status_option("ready"):
                self._set_issue_status(issue.number, "ready")

    def _set_issue_status(self, issue_number: int, status: StatusName) -> None:
        board = self.config.github
        option_id = board.status_option(status)
        project_id = board.project_id
        field_id = board.status_field_id
        if not project_id or not field_id or not option_id:
            logger.warning("GitHub project not configured, skipping issue status update")
            return
        try:
            updated = self.github.update_project_item_status(
                issue_number,
                project_id,
                field_id,
                option_id,
                "issue",
                self.owner,
                self.repo,
            )
        except Exception as e:
            logger.warning(f"Failed to update issue #{issue_number} status: {e}")
            return
        if updated:
            logger.info(f"Issue #{issue_number} status set to {status}")

    def _container_name(self) -> str:
        timestamp = datetime.now().strftime("%Y-%m-%dT%H-%M-%S")
        return f"constech-worker-{self.repo}-{timestamp}"

    def _prepare_environment(self, state: WorkflowRunState, teardown: EnvironmentTeardown) -> str:
        image = self.image_resolver.resolve()

        binds = [
            f"{self.project_root}:{REPO_MOUNT}:ro",
            f"{CREDENTIAL_VOLUME}:{CONTAINER_HOME}/.claude:rw",
        ]
        if self.aux_tools.enabled_tools():
            config_dir = Path(tempfile.mkdtemp(prefix="constech-mcp-"))
            teardown.add_temp_dir(config_dir)
            config_path = self.aux_tools.write_config(config_dir)
            if config_path is not None:
                binds.append(f"{config_path}:{CONTAINER_CONFIG_PATH}:ro")

        token = self.options.bot_token
        reviewer = state.reviewer or ""
        secrets = {
            "GITHUB_TOKEN": token,
            "GH_TOKEN": token,
            "BOT_APP_TOKEN": token,
            "REVIEWER_USER": reviewer,
            "CURRENT_USER": reviewer,
            "REPOSITORY_OWNER": self.owner,
            "REPOSITORY_NAME": self.repo,
        }
        secrets.update(self.aux_tools.secret_environment(token))

        spec = ContainerSpec(
            image=image,
            name=self._container_name(),
            environment={
                "HOME": CONTAINER_HOME,
                "USER": CONTAINER_USER,
                "PATH": CONTAINER_PATH,
                "NPM_CONFIG_PREFIX": "/usr/local/share/npm-global",
                "CLAUDE_CONFIG_DIR": CLAUDE_CONFIG_DIR,
                "NODE_OPTIONS": "--max-old-space-size=4096",
                "DEVCONTAINER": "true",
            },
            secrets=secrets,
            binds=binds,
            working_dir=CONTAINER_WORKDIR,
            user=CONTAINER_USER,
        )
        container_id = self.runtime.create(spec)
        teardown.container_id = container_id
        state.container_id = container_id
        state.environment_name = spec.name

        self.runtime.start(container_id)
        container_state = self.runtime.inspect(container_id)
        if not container_state.running:
            raise ContainerRuntimeError(
                f"Container failed to start. State: {container_state.status}"
            )
        logger.info("Development environment ready")
        return container_id

    def build_agent_prompt(self, state: WorkflowRunState) -> str:
        instructions = self.instructions.read_instructions()
        board = self.config.github
        kind = "issue" if state.issue_number is not None else "prompt"
        context = PromptContext(
            kind=kind,
            working_branch=self.working_branch,
            quality_checks=list(self.config.workflow.quality_checks),
            filtered_instructions=instructions.filtered,
            issue_number=state.issue_number,
            # For issue runs the prompt was used to create the issue; do not repeat it.
            prompt=None if state.issue_created else state.prompt,
            reviewer_env_var=self.config.workflow.reviewer_env_var,
            default_reviewer=self.config.workflow.default_reviewer,
            project_id=board.project_id,
            status_field_id=board.status_field_id,
            in_review_status_id=board.status_options.in_review,
        )
        return compose_agent_prompt(build_system_prompt(context))

    def _write_script(self, state: WorkflowRunState, teardown: EnvironmentTeardown) -> Path:
        context = BootstrapContext(
            owner=self.owner,
            repo=self.repo,
            working_branch=self.working_branch,
            author_name=self.config.git.author_name,
            author_email=self.config.git.author_email,
            prompt=self.build_agent_prompt(state),
            aux_init_commands=self.aux_tools.init_commands(),
        )
        script = render_script(build_bootstrap_steps(context))

        script_dir = Path(tempfile.mkdtemp(prefix="constech-script-"))
        teardown.add_temp_dir(script_dir)
        script_path = script_dir / "workflow.sh"
        script_path.write_text(script, encoding="utf-8")
        script_path.chmod(0o755)
        logger.debug(f"Script written to temp file: {script_path}")
        return script_path

    def _execute(self, container_id: str, state: WorkflowRunState) -> None:
        tracker = ProgressTracker(self.console)
        timeout = self.execution_timeout()
        exec_env = {
            "SHELL": "/bin/bash",
            "BOT_USER": self.config.bot.username or "x-access-token",
        }

        tracker.start()
        try:
            result = self.runtime.exec_stream(
                container_id,
                ["/bin/bash", SCRIPT_PATH],
                env=exec_env,
                user=CONTAINER_USER,
                workdir=CONTAINER_WORKDIR,
                on_line=tracker.feed,
                timeout=timeout,
            )
        except ExecutionTimeoutError:
            tracker.fail(f"Workflow timed out after {timeout}s")
            self._record_results(state, tracker.output)
            raise
        except BaseException:
            tracker.fail("Workflow execution aborted")
            raise

        self._record_results(state, tracker.output)
        if result.exit_code == 0:
            tracker.succeed("Workflow completed successfully!")
            return

        tracker.fail(f"Workflow failed with exit code: {result.exit_code}")
        self._log_failure(container_id, tracker)
        # A killed step never prints its failure marker
        state.failed_step = find_failed_step(tracker.output) or last_started_step(
            tracker.output
        )
        if state.failed_step:
            logger.error(f"Bootstrap step failed: {state.failed_step}")
        raise WorkerError(f"Workflow execution failed: {result.exit_code}")

    def _record_results(self, state: WorkflowRunState, output: str) -> None:
        state.artifacts = parse_agent_output(output, self.config.workflow.quality_checks)
        state.advance(WorkflowStage.RESULT_PARSED)

    def _log_failure(self, container_id: str, tracker: ProgressTracker) -> None:
        logger.error(f"Last output lines:\n{tracker.tail(FAILURE_TAIL_LINES)}")
        try:
            logs = self.runtime.logs(container_id, tail=FAILURE_TAIL_LINES)
            if logs.strip():
                logger.error(f"Container logs:\n{logs}")
        except ContainerRuntimeError as e:
            logger.error(f"Failed to get container logs: {e}")
