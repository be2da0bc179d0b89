"""
Domain models for the release orchestration engine.

Persisted records (:class:`Release`, :class:`WorkflowStep`,
:class:`GitHubConfig`) are Pydantic models with one explicit schema shared
by the orchestrator and every store. In Python their fields are
snake_case; stored documents use camelCase keys (``stepNumber``,
``githubPrUrl``) so documents written by other clients of the same
collections stay readable.

Derived records (:class:`WorkflowReferenceInfo`, :class:`PullRequestRecord`,
:class:`ActionRunRecord`, :class:`Outcome`) are plain dataclasses that are
never persisted.

Example:
    Creating a step and serializing it for a store::

        step = WorkflowStep(
            id="step-2",
            release_id="rel-1",
            step_number=2,
            type=StepType.PR_MERGE,
            title="Merge develop to release (app)",
            repository_type=RepositoryType.APP,
            source_branch="develop",
            target_branch="release",
        )
        document = step.to_document()
        assert document["stepNumber"] == 2
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from release_rocket.enums import ReleaseStatus, RepositoryType, StepStatus, StepType
from release_rocket.exceptions import RocketError

T = TypeVar("T")


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


def _empty_to_none(value: Any) -> Any:
    # Older documents store "" for unset optional values
    if value == "":
        return None
    return value


class Record(BaseModel):
    """Base class for records kept in a store.

    Every record is addressed by ``id``. An empty ``id`` means the record
    has not been created yet; stores assign one on ``create``.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    id: str = ""

    def to_document(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible document with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "Record":
        """Build a record from a stored document."""
        return cls.model_validate(dict(document))


class Release(Record):
    """A single version of an app moving through the release pipeline."""

    project_id: str = ""
    version: str = ""
    title: str = ""
    description: str = ""
    status: ReleaseStatus = ReleaseStatus.DRAFT
    created_by: str = ""
    assigned_to: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None
    target_release_date: datetime | None = None
    actual_release_date: datetime | None = None
    staging_build_url: str = ""
    production_build_url: str = ""
    github_release_url: str = ""
    play_store_url: str = ""
    notes: str = ""

    normalize_dates = field_validator(
        "created_at", "updated_at", "target_release_date", "actual_release_date", mode="before"
    )(_empty_to_none)


class WorkflowStep(Record):
    """One unit of work in a release's pipeline.

    Steps of a release are totally ordered by ``step_number``.
    ``depends_on`` may only reference earlier steps of the same release;
    the state machine ignores any edge that breaks this rule.
    """

    release_id: str = ""
    step_number: int = 0
    type: StepType = StepType.MANUAL_TASK
    title: str = ""
    description: str = ""
    status: StepStatus = StepStatus.PENDING
    assigned_to: str = ""
    completed_by: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    notes: str = ""

    action_url: str = ""
    """External link for the step: the PR page or the workflow run page."""

    is_required: bool = True
    depends_on: list[str] = Field(default_factory=list)
    estimated_duration: int = 0
    """Estimated duration in minutes."""

    actual_duration: int = 0
    """Measured duration in minutes, from ``started_at`` to completion."""

    # Pull request sub-record
    github_pr_number: int | None = None
    github_pr_url: str = ""
    github_pr_state: str = ""
    repository_type: RepositoryType | None = None
    source_branch: str = ""
    target_branch: str = ""

    # GitHub Actions sub-record
    action_run_id: int | None = None
    action_status: str = ""
    action_conclusion: str = ""

    normalize_optional = field_validator(
        "created_at",
        "updated_at",
        "started_at",
        "completed_at",
        "repository_type",
        "github_pr_number",
        "action_run_id",
        mode="before",
    )(_empty_to_none)

    @field_validator("type", mode="before")
    @classmethod
    def unknown_type_is_manual(cls, value: Any) -> Any:
        """Read step types this version does not know as MANUAL_TASK."""
        if isinstance(value, str) and not isinstance(value, StepType) and value not in StepType.__members__:
            return StepType.MANUAL_TASK
        return value

    @property
    def has_pull_request(self) -> bool:
        return self.github_pr_number is not None

    @property
    def has_action_run(self) -> bool:
        return self.action_run_id is not None


class GitHubConfig(Record):
    """Per-project GitHub integration settings.

    ``workflow_urls`` maps a :class:`StepType` name to a raw workflow
    reference string, either ``owner/repo/<workflow id>?k=v`` or the full
    dispatch URL (see :mod:`release_rocket.workflows.reference`).
    """

    project_id: str = ""
    app_repository_url: str = ""
    """App repository, e.g. ``owner/app-repo``."""

    bff_repository_url: str = ""
    """Backend-for-frontend repository, e.g. ``owner/bff-repo``."""

    github_token: str = Field(default="", repr=False)
    default_base_branch: str = "develop"
    default_target_branch: str = "release"
    workflow_urls: dict[str, str] = Field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    normalize_dates = field_validator("created_at", "updated_at", mode="before")(_empty_to_none)

    def repository_for(self, repository_type: RepositoryType | None) -> str:
        """Return the configured repository for a repository type, or ""."""
        if repository_type is RepositoryType.APP:
            return self.app_repository_url.strip()
        if repository_type is RepositoryType.BFF:
            return self.bff_repository_url.strip()
        return ""

    def workflow_url_for(self, step_type: StepType) -> str | None:
        """Return the raw workflow reference configured for a step type."""
        raw = self.workflow_urls.get(step_type.value)
        if raw is None or not raw.strip():
            return None
        return raw


@dataclass(frozen=True)
class WorkflowReferenceInfo:
    """Parsed form of one ``GitHubConfig.workflow_urls`` entry."""

    repository_ref: str
    """Repository in ``owner/repo`` form."""

    workflow_id: str
    """Numeric workflow id or workflow file name."""

    parameters: dict[str, str] = field(default_factory=dict)
    """Static dispatch parameters, in the order they were written."""


def _parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None
    return None


def _first(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return default


def _ref_of(value: Any) -> str:
    if isinstance(value, Mapping):
        return str(value.get("ref") or "")
    return str(value or "")


@dataclass
class PullRequestRecord:
    """Normalized view of a GitHub pull request.

    Example:
        Building a record from a REST payload::

            pr = PullRequestRecord.from_payload(response_json)
            if pr.effective_state == "merged":
                ...
    """

    id: int
    number: int
    title: str
    state: str
    """Raw GitHub state: "open" or "closed"."""

    url: str
    head: str = ""
    base: str = ""
    body: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None
    merged: bool = False
    mergeable: bool | None = None

    @property
    def effective_state(self) -> str:
        """State as shown on the step: "merged" for merged PRs."""
        if self.merged:
            return "merged"
        return self.state

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "PullRequestRecord":
        """Build a record from a REST payload.

        Accepts both ``html_url`` and ``htmlUrl``, and either nested
        ``head``/``base`` objects or flat ``headBranch``/``baseBranch``.
        """
        merged_at = _first(data, "merged_at", "mergedAt")
        return cls(
            id=int(data.get("id") or 0),
            number=int(data.get("number") or 0),
            title=str(data.get("title") or ""),
            state=str(data.get("state") or ""),
            url=str(_first(data, "html_url", "htmlUrl", default="")),
            head=_ref_of(_first(data, "head", "headBranch")),
            base=_ref_of(_first(data, "base", "baseBranch")),
            body=str(data.get("body") or ""),
            created_at=_parse_timestamp(_first(data, "created_at", "createdAt")),
            updated_at=_parse_timestamp(_first(data, "updated_at", "updatedAt")),
            merged=bool(data.get("merged")) or bool(merged_at),
            mergeable=data.get("mergeable"),
        )


@dataclass
class ActionRunRecord:
    """Normalized view of a GitHub Actions workflow run.

    ``id`` is None when the dispatch succeeded but the run could not be
    found yet; the step then only records the dispatch status.
    """

    id: int | None
    status: str
    url: str = ""
    conclusion: str = ""
    run_number: int | None = None
    workflow_id: str = ""
    head_branch: str = ""
    head_sha: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None
    triggered_by: str = ""

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "ActionRunRecord":
        """Build a record from a REST payload (snake_case or camelCase keys)."""
        run_id = data.get("id")
        run_number = _first(data, "run_number", "runNumber")
        actor = _first(data, "triggering_actor", "triggeredBy")
        if isinstance(actor, Mapping):
            actor = actor.get("login")
        return cls(
            id=int(run_id) if run_id is not None else None,
            status=str(data.get("status") or ""),
            url=str(_first(data, "html_url", "htmlUrl", default="")),
            conclusion=str(data.get("conclusion") or ""),
            run_number=int(run_number) if run_number is not None else None,
            workflow_id=str(_first(data, "workflow_id", "workflowId", default="")),
            head_branch=str(_first(data, "head_branch", "headBranch", default="")),
            head_sha=str(_first(data, "head_sha", "headSha", default="")),
            created_at=_parse_timestamp(_first(data, "created_at", "createdAt")),
            updated_at=_parse_timestamp(_first(data, "updated_at", "updatedAt")),
            triggered_by=str(actor or ""),
        )


@dataclass
class Outcome(Generic[T]):
    """Success/failure result of an engine operation.

    Operations on the service boundary return an Outcome instead of
    raising, so callers can render the failure next to the step.

    Example:
        Handling an outcome::

            outcome = await service.create_pr(step_id)
            if outcome.success:
                render(outcome.value)
                for warning in outcome.warnings:
                    notify(warning)
            else:
                show_error(outcome.message)
    """

    success: bool
    value: T | None = None
    error: RocketError | None = None
    warnings: list[str] = field(default_factory=list)
    """Non-fatal problems, e.g. a store write that failed after a PR was created."""

    @classmethod
    def ok(cls, value: T, warnings: list[str] | None = None) -> "Outcome[T]":
        return cls(success=True, value=value, warnings=list(warnings or []))

    @classmethod
    def fail(cls, error: RocketError) -> "Outcome[T]":
        return cls(success=False, error=error)

    @property
    def message(self) -> str:
        """Error message of a failed outcome, "" on success."""
        if self.error is None:
            return ""
        return str(self.error)

    def unwrap(self) -> T:
        """Return the value or raise the captured error."""
        if not self.success:
            if self.error is not None:
                raise self.error
            raise RocketError("Operation failed without an error")
        return self.value  # type: ignore[return-value]
