"""Data types for Constech Worker workflow runs."""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from constech_worker.core.errors import WorkflowRequestError

WorkflowKind = Literal["issue", "prompt"]


class WorkflowRequest(BaseModel):
    """Declarative input of a dispatch.

    At least one of ``issue_number`` or ``prompt`` must be present.
    ``create_issue`` requires a prompt and excludes an existing issue number.
    """

    issue_number: Optional[int] = Field(default=None, gt=0)
    prompt: Optional[str] = None
    create_issue: bool = False

    @field_validator("prompt")
    @classmethod
    def blank_prompt_is_absent(cls, v: Optional[str]) -> Optional[str]:
        """Trim the prompt and treat whitespace-only text as missing."""
        if v is None:
            return None
        trimmed = v.strip()
        return trimmed or None

    @model_validator(mode="after")
    def check_shape(self) -> "WorkflowRequest":
        if self.issue_number is None and self.prompt is None:
            raise ValueError("Either an issue number or a prompt is required")
        if self.create_issue and self.issue_number is not None:
            raise ValueError("Cannot create an issue when an issue number is given")
        if self.create_issue and self.prompt is None:
            raise ValueError("Creating an issue requires a prompt")
        return self

    @classmethod
    def build(
        cls,
        issue_number: Optional[int] = None,
        prompt: Optional[str] = None,
        create_issue: bool = False,
    ) -> "WorkflowRequest":
        """Create a validated request.

        Raises:
            WorkflowRequestError: If the request shape is invalid
        """
        try:
            return cls(issue_number=issue_number, prompt=prompt, create_issue=create_issue)
        except ValidationError as e:
            messages = [item["msg"].removeprefix("Value error, ") for item in e.errors()]
            raise WorkflowRequestError("; ".join(messages)) from e

    @property
    def kind(self) -> WorkflowKind:
        if self.issue_number is not None or self.create_issue:
            return "issue"
        return "prompt"


class WorkflowOptions(BaseModel):
    """Per-run options that do not belong in the stored configuration."""

    bot_token: str = Field(..., min_length=1)
    reviewer: Optional[str] = None
    base_branch: Optional[str] = None
    execution_timeout: Optional[int] = Field(default=None, gt=0)


class WorkflowStage(str, Enum):
    """Sequential stages of a workflow run."""

    START = "START"
    ISSUE_RESOLVED = "ISSUE_RESOLVED"
    STATUS_SET = "STATUS_SET"
    ENV_PREPARED = "ENV_PREPARED"
    EXECUTING = "EXECUTING"
    RESULT_PARSED = "RESULT_PARSED"
    SUMMARIZED = "SUMMARIZED"
    TORN_DOWN = "TORN_DOWN"


class ExtractedArtifacts(BaseModel):
    """Results scraped from agent output. Every field is optional."""

    branch_name: Optional[str] = None
    commit_hash: Optional[str] = None
    pr_number: Optional[int] = None
    pr_url: Optional[str] = None
    quality_checks: Dict[str, bool] = Field(default_factory=dict)


class WorkflowRunState(BaseModel):
    """Mutable record of one run, read-only once finished."""

    issue_number: Optional[int] = None
    issue_title: Optional[str] = None
    issue_created: bool = False
    prompt: Optional[str] = None
    container_id: Optional[str] = None
    environment_name: Optional[str] = None
    reviewer: Optional[str] = None
    stage: WorkflowStage = WorkflowStage.START
    started_at: datetime = Field(default_factory=datetime.now)
    ended_at: Optional[datetime] = None
    success: bool = False
    error: Optional[str] = None
    failed_step: Optional[str] = None
    artifacts: ExtractedArtifacts = Field(default_factory=ExtractedArtifacts)
    stages: List[WorkflowStage] = Field(default_factory=lambda: [WorkflowStage.START])

    @property
    def finished(self) -> bool:
        return self.ended_at is not None

    @property
    def duration_seconds(self) -> float:
        end = self.ended_at or datetime.now()
        return (end - self.started_at).total_seconds()

    def advance(self, stage: WorkflowStage) -> None:
        """Record a stage transition.

        Once the run is finished only SUMMARIZED and TORN_DOWN are recorded.
        """
        if self.finished and stage not in (WorkflowStage.SUMMARIZED, WorkflowStage.TORN_DOWN):
            return
        self.stage = stage
        self.stages.append(stage)

    def finish(self, success: bool, error: Optional[str] = None) -> bool:
        """Finalize the outcome.

        Only the first call has an effect.

        Returns:
            True if this call finalized the state
        """
        if self.finished:
            return False
        self.success = success
        self.error = None if success else (error or "Workflow failed")
        self.ended_at = datetime.now()
        return True


class GitHubIssue(BaseModel):
    """Issue as returned by the GitHub API."""

    number: int
    title: str
    body: Optional[str] = None
    url: str


class PullRequest(BaseModel):
    number: int
    url: str


class PullRequestRequest(BaseModel):
    """Parameters of a pull request to open."""

    owner: str
    repo: str
    title: str = Field(..., min_length=1)
    body: str = ""
    head: str = Field(..., min_length=1)
    base: str = Field(..., min_length=1)
    assignees: List[str] = Field(default_factory=list)
    reviewers: List[str] = Field(default_factory=list)
    labels: List[str] = Field(default_factory=list)


class ProjectBoard(BaseModel):
    """A project (v2) board with its status field options keyed by option name."""

    id: str
    title: str
    number: Optional[int] = None
    status_field_id: Optional[str] = None
    status_options: Dict[str, str] = Field(default_factory=dict)
