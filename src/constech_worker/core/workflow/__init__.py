"""Workflow execution for Constech Worker.

Main components:
- engine: WorkflowEngine and EnvironmentTeardown
- bootstrap: isolated git workspace bootstrap protocol
- output_parser: best-effort extraction of results from agent output
- progress: terminal progress indicator
- summary: end-of-run summary
"""

from constech_worker.core.workflow.engine import EnvironmentTeardown, WorkflowEngine

__all__ = ["EnvironmentTeardown", "WorkflowEngine"]
