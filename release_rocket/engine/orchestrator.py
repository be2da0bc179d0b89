"""
Release workflow orchestrator.

Maps a workflow step to GitHub operations: opening pull requests for
branch-moving steps and dispatching GitHub Actions workflows for build
steps. Each operation makes one gateway call, writes the result onto the
step and persists it with one store write.

Every public operation returns an :class:`Outcome` and never raises.
None of them are idempotent: calling ``create_pull_request_for_step``
twice opens two pull requests. Callers are expected to stop offering the
action once a step carries a PR number or run id.

Example:
    >>> orchestrator = ReleaseWorkflowOrchestrator(GitHubGateway(), step_store)
    >>> outcome = await orchestrator.trigger_build_action(step, release, config)
    >>> if outcome.success:
    ...     print(outcome.value.action_url)
"""

from collections.abc import Awaitable, Callable

import structlog
from jinja2 import StrictUndefined
from jinja2.sandbox import SandboxedEnvironment

from release_rocket.enums import BUILD_STEP_TYPES
from release_rocket.exceptions import RocketError, ValidationError
from release_rocket.gateway.base import VcsGateway
from release_rocket.models.domain import (
    GitHubConfig,
    Outcome,
    PullRequestRecord,
    Release,
    WorkflowReferenceInfo,
    WorkflowStep,
    utc_now,
)
from release_rocket.store.base import Store
from release_rocket.workflows.placeholders import extract_branch, substitute_parameters
from release_rocket.workflows.reference import normalize_repository_ref, parse_workflow_reference

log = structlog.get_logger(__name__)

DEFAULT_WORKFLOW_REF = "release"
DEVELOP_TO_RELEASE_STEP_NUMBERS = frozenset({2, 3})

PR_BODY_TEMPLATE = """\
## {{ release.title or release.version }}

{% if summary %}
{{ summary }}

{% endif %}
**Release Version:** {{ release.version }}
{% if release.description %}
**Description:** {{ release.description }}
{% endif %}

**Workflow Step:** {{ step.step_number }} - {{ step.title }}
{% if step.description %}
**Step Description:** {{ step.description }}
{% endif %}
{% if release.notes %}

**Release Notes:**
{{ release.notes }}
{% endif %}

---
_This PR was automatically created by Release Rocket release management._
"""


class ReleaseWorkflowOrchestrator:
    """Run GitHub-facing actions for workflow steps.

    The orchestrator does not check step status or dependencies; the
    release service does that before calling in.
    """

    def __init__(self, gateway: VcsGateway, step_store: Store[WorkflowStep]) -> None:
        self.gateway = gateway
        self.step_store = step_store
        self._templates = SandboxedEnvironment(
            undefined=StrictUndefined,
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )
        self._pr_body = self._templates.from_string(PR_BODY_TEMPLATE)

    # Predicates

    def is_build_step(self, step: WorkflowStep) -> bool:
        """Check if the step dispatches a build-and-share workflow."""
        return step.type in BUILD_STEP_TYPES

    def resolve_workflow_reference(self, step: WorkflowStep, config: GitHubConfig) -> WorkflowReferenceInfo | None:
        """Look up and parse the workflow reference configured for the step type.

        Returns None when nothing usable is configured.
        """
        raw = config.workflow_url_for(step.type)
        if raw is None:
            return None
        info = parse_workflow_reference(raw)
        if info is None:
            log.warning("workflow_reference_invalid", step_type=step.type.value, reference=raw)
        return info

    def is_configured(self, step: WorkflowStep, config: GitHubConfig) -> bool:
        """Check if the step is a build step with a usable workflow reference."""
        return self.is_build_step(step) and self.resolve_workflow_reference(step, config) is not None

    def is_develop_to_release_pr_step(self, step: WorkflowStep) -> bool:
        """Check if the step is one of the develop -> release merge steps."""
        return (
            step.step_number in DEVELOP_TO_RELEASE_STEP_NUMBERS
            and step.repository_type is not None
            and step.source_branch == "develop"
            and step.target_branch == "release"
        )

    # Pull requests

    async def create_develop_to_release_pr(
        self, step: WorkflowStep, release: Release, config: GitHubConfig
    ) -> Outcome[WorkflowStep]:
        """Open the develop -> release pull request for step 2 or 3."""

        async def _create() -> Outcome[WorkflowStep]:
            if not self.is_develop_to_release_pr_step(step):
                raise ValidationError(
                    f"Step {step.step_number} is not a develop to release pull request step"
                )
            repo_ref = self._repository_ref(step, config)
            repository_type = str(step.repository_type)
            title = f"Release {release.version}: Merge develop to release ({repository_type})"
            body = self._render_body(
                step,
                release,
                summary=f"Merges `develop` into `release` in the {repository_type} repository.",
            )
            pr = await self.gateway.create_pull_request(
                repo_ref, config.github_token, title, body, head="develop", base="release"
            )
            return await self._persist(self._with_pull_request(step, pr), "pr_created")

        return await self._guard("create_develop_to_release_pr", step, _create)

    async def create_pull_request_for_step(
        self, step: WorkflowStep, release: Release, config: GitHubConfig
    ) -> Outcome[WorkflowStep]:
        """Open a pull request for any step with a repository type.

        Branches the step does not specify fall back to the project's
        default base/target branches.
        """

        async def _create() -> Outcome[WorkflowStep]:
            repo_ref = self._repository_ref(step, config)
            head = step.source_branch or config.default_base_branch
            base = step.target_branch or config.default_target_branch
            title = f"{release.version}: {step.title}"
            body = self._render_body(step, release)
            pr = await self.gateway.create_pull_request(
                repo_ref, config.github_token, title, body, head=head, base=base
            )
            return await self._persist(self._with_pull_request(step, pr), "pr_created")

        return await self._guard("create_pull_request", step, _create)

    async def check_pull_request_status(self, step: WorkflowStep, config: GitHubConfig) -> Outcome[WorkflowStep]:
        """Refresh the recorded pull request state and url from GitHub."""

        async def _check() -> Outcome[WorkflowStep]:
            number = self._recorded_pr_number(step)
            repo_ref = self._repository_ref(step, config)
            pr = await self.gateway.get_pull_request(repo_ref, config.github_token, number)
            updated = step.model_copy(
                update={
                    "github_pr_state": pr.effective_state,
                    "github_pr_url": pr.url,
                    "updated_at": utc_now(),
                }
            )
            return await self._persist(updated, "pr_status_refreshed")

        return await self._guard("check_pull_request_status", step, _check)

    async def merge_pull_request(
        self, step: WorkflowStep, config: GitHubConfig, merge_method: str = "merge"
    ) -> Outcome[WorkflowStep]:
        """Ask the gateway to merge. Gateways refuse; merging happens on GitHub.

        The step and config are passed through unchecked, so every input
        gets the same refusal.
        """

        async def _merge() -> Outcome[WorkflowStep]:
            pr = await self.gateway.merge_pull_request(
                config.repository_for(step.repository_type),
                config.github_token,
                step.github_pr_number or 0,
                merge_method,
            )
            updated = step.model_copy(update={"github_pr_state": pr.effective_state, "updated_at": utc_now()})
            return await self._persist(updated, "pr_merged")

        return await self._guard("merge_pull_request", step, _merge)

    # GitHub Actions

    async def trigger_build_action(
        self,
        step: WorkflowStep,
        release: Release,
        config: GitHubConfig,
        ref: str = DEFAULT_WORKFLOW_REF,
    ) -> Outcome[WorkflowStep]:
        """Dispatch the workflow configured for a build step.

        Placeholders in the static parameters are substituted, then the
        ``branch`` parameter (if any) selects the git ref and everything
        else becomes a workflow input. The step status is left alone;
        completing the step is a manual action once the build is shared.
        """

        async def _trigger() -> Outcome[WorkflowStep]:
            if not self.is_build_step(step):
                raise ValidationError(f"Step {step.step_number} ({step.type}) is not a build step")
            info = self.resolve_workflow_reference(step, config)
            if info is None:
                raise ValidationError(f"No GitHub Actions workflow configured for {step.type}")
            self._require_token(config)

            repo_ref = normalize_repository_ref(info.repository_ref)
            parameters = substitute_parameters(info.parameters, step, release)
            branch, inputs = extract_branch(parameters, ref)
            run = await self.gateway.dispatch_workflow(
                repo_ref, config.github_token, info.workflow_id, branch, inputs
            )
            updated = step.model_copy(
                update={
                    "action_run_id": run.id,
                    "action_url": run.url or step.action_url,
                    "action_status": run.status,
                    "action_conclusion": run.conclusion,
                    "updated_at": utc_now(),
                }
            )
            return await self._persist(updated, "build_triggered")

        return await self._guard("trigger_build_action", step, _trigger)

    # Helpers

    def _require_token(self, config: GitHubConfig) -> None:
        if not config.github_token.strip():
            raise ValidationError(f"GitHub token not configured for project {config.project_id}")

    def _repository_ref(self, step: WorkflowStep, config: GitHubConfig) -> str:
        if step.repository_type is None:
            raise ValidationError(f"Step {step.step_number} has no repository type")
        repository = config.repository_for(step.repository_type)
        if not repository:
            raise ValidationError(f"Repository URL not configured for {step.repository_type}")
        self._require_token(config)
        return normalize_repository_ref(repository)

    def _recorded_pr_number(self, step: WorkflowStep) -> int:
        if step.github_pr_number is None:
            raise ValidationError("No PR information available for this step")
        return step.github_pr_number

    def _render_body(self, step: WorkflowStep, release: Release, summary: str = "") -> str:
        return self._pr_body.render(step=step, release=release, summary=summary)

    def _with_pull_request(self, step: WorkflowStep, pr: PullRequestRecord) -> WorkflowStep:
        return step.model_copy(
            update={
                "github_pr_number": pr.number,
                "github_pr_url": pr.url,
                "github_pr_state": pr.effective_state,
                "action_url": pr.url,
                "updated_at": utc_now(),
            }
        )

    async def _persist(self, step: WorkflowStep, event: str) -> Outcome[WorkflowStep]:
        """Write the step back; a failed write still returns the updated step."""
        try:
            saved = await self.step_store.update(step)
        except Exception as e:
            error = e.message if isinstance(e, RocketError) else str(e)
            log.warning(
                "step_persist_failed",
                action=event,
                step_id=step.id,
                error_type=type(e).__name__,
                error=error,
            )
            return Outcome.ok(
                step,
                warnings=[f"GitHub was updated but saving step {step.step_number} failed: {error}"],
            )
        log.info(event, step_id=saved.id, step_number=saved.step_number, release_id=saved.release_id)
        return Outcome.ok(saved)

    async def _guard(
        self,
        action: str,
        step: WorkflowStep,
        operation: Callable[[], Awaitable[Outcome[WorkflowStep]]],
    ) -> Outcome[WorkflowStep]:
        try:
            return await operation()
        except RocketError as e:
            log.warning(
                "step_action_failed",
                action=action,
                step_id=step.id,
                step_number=step.step_number,
                error_type=type(e).__name__,
                error=str(e),
            )
            return Outcome.fail(e)
        except Exception as e:
            log.error("step_action_crashed", action=action, step_id=step.id, exc_info=True)
            return Outcome.fail(RocketError(f"Unexpected error during {action}: {e}"))
