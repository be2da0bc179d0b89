"""
Release service.

The operations offered to the UI and CLI: creating releases, moving steps
through their lifecycle, storing per-project GitHub settings, and running
GitHub actions for a step. Every operation returns an
:class:`~release_rocket.models.domain.Outcome` carrying the updated record
so the caller can render it directly.

Before any GitHub call the service loads the step, its release and the
project's GitHub config, and rejects steps that are already finished or
whose dependencies are not met. Nothing reaches GitHub for those.
Merging is refused for every step, so ``merge_pr`` skips those checks.
"""

from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import UTC, datetime
from typing import Any, TypeVar

import structlog

from release_rocket.config.settings import RocketSettings
from release_rocket.engine import state_machine
from release_rocket.engine.orchestrator import ReleaseWorkflowOrchestrator
from release_rocket.engine.template import instantiate_pipeline
from release_rocket.enums import ReleaseStatus, StepType
from release_rocket.exceptions import (
    DependencyNotMetError,
    NotFoundError,
    RocketError,
    StateError,
    ValidationError,
)
from release_rocket.models.domain import GitHubConfig, Outcome, Release, WorkflowStep, utc_now
from release_rocket.store.base import Store
from release_rocket.workflows.reference import normalize_repository_ref

log = structlog.get_logger(__name__)

T = TypeVar("T")

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def _by_step_number(steps: list[WorkflowStep]) -> list[WorkflowStep]:
    return sorted(steps, key=lambda s: s.step_number)


class ReleaseService:
    """Release and step operations on top of the stores and the orchestrator.

    Example:
        >>> service = ReleaseService(releases, steps, configs, orchestrator)
        >>> release = (await service.create_release("rocket", "v1.0.0", "Spring release")).unwrap()
        >>> steps = (await service.get_steps(release.id)).unwrap()
        >>> await service.start_step(steps[0].id, actor="alice")
    """

    def __init__(
        self,
        release_store: Store[Release],
        step_store: Store[WorkflowStep],
        config_store: Store[GitHubConfig],
        orchestrator: ReleaseWorkflowOrchestrator,
        settings: RocketSettings | None = None,
    ) -> None:
        self.release_store = release_store
        self.step_store = step_store
        self.config_store = config_store
        self.orchestrator = orchestrator
        self.settings = settings or RocketSettings()

    # Releases

    async def create_release(
        self,
        project_id: str,
        version: str,
        title: str = "",
        description: str = "",
        created_by: str = "",
        target_release_date: datetime | None = None,
        notes: str = "",
    ) -> Outcome[Release]:
        """Create a DRAFT release and its default pipeline steps."""

        async def _create() -> Outcome[Release]:
            if not project_id.strip():
                raise ValidationError("Project id is required")
            if not version.strip():
                raise ValidationError("Release version is required")

            now = utc_now()
            release = await self.release_store.create(
                Release(
                    project_id=project_id,
                    version=version.strip(),
                    title=title or version.strip(),
                    description=description,
                    status=ReleaseStatus.DRAFT,
                    created_by=created_by,
                    created_at=now,
                    updated_at=now,
                    target_release_date=target_release_date,
                    notes=notes,
                )
            )
            created: list[str] = []
            try:
                for step in instantiate_pipeline(release.id, now=now):
                    created.append((await self.step_store.create(step)).id)
            except Exception:
                await self._discard_release(release.id, created)
                raise

            log.info("release_created", release_id=release.id, project_id=project_id, version=release.version)
            return Outcome.ok(release)

        return await self._run("create_release", _create, project_id=project_id, version=version)

    async def get_release(self, release_id: str) -> Outcome[Release]:
        async def _get() -> Outcome[Release]:
            return Outcome.ok(await self._require_release(release_id))

        return await self._run("get_release", _get, release_id=release_id)

    async def list_releases(self, project_id: str | None = None) -> Outcome[list[Release]]:
        """List releases, oldest first, optionally for one project."""

        async def _list() -> Outcome[list[Release]]:
            releases = await self.release_store.list(
                None if project_id is None else (lambda r: r.project_id == project_id)
            )
            releases.sort(key=lambda r: r.created_at or _EPOCH)
            return Outcome.ok(releases)

        return await self._run("list_releases", _list, project_id=project_id)

    async def update_release_status(
        self, release_id: str, status: ReleaseStatus, actor: str | None = None
    ) -> Outcome[Release]:
        """Change a release's status.

        COMPLETED and CANCELLED are final. Completing a release stamps its
        actual release date.
        """

        async def _update() -> Outcome[Release]:
            release = await self._require_release(release_id)
            if release.status.is_terminal and status != release.status:
                raise StateError(
                    f"Release {release.version} is {release.status} and cannot change status"
                )
            now = utc_now()
            update: dict[str, Any] = {"status": status, "updated_at": now}
            if status == ReleaseStatus.COMPLETED and release.actual_release_date is None:
                update["actual_release_date"] = now
            saved = await self.release_store.update(release.model_copy(update=update))
            log.info(
                "release_status_changed",
                release_id=release_id,
                previous=release.status.value,
                status=status.value,
                actor=actor,
            )
            return Outcome.ok(saved)

        return await self._run("update_release_status", _update, release_id=release_id)

    # Steps

    async def get_steps(self, release_id: str) -> Outcome[list[WorkflowStep]]:
        """Return the release's steps ordered by step number."""

        async def _get() -> Outcome[list[WorkflowStep]]:
            await self._require_release(release_id)
            return Outcome.ok(await self._release_steps(release_id))

        return await self._run("get_steps", _get, release_id=release_id)

    async def start_step(self, step_id: str, actor: str | None = None) -> Outcome[WorkflowStep]:
        """Start a PENDING step whose dependencies are finished.

        Starting the first step of a DRAFT release moves the release to
        IN_PROGRESS.
        """

        async def _start() -> Outcome[WorkflowStep]:
            step = await self._require_step(step_id)
            siblings = await self._release_steps(step.release_id)
            started = await self.step_store.update(state_machine.start(step, siblings, actor))
            release = await self.release_store.get(step.release_id)
            if release is not None and release.status is ReleaseStatus.DRAFT:
                await self.release_store.update(
                    release.model_copy(update={"status": ReleaseStatus.IN_PROGRESS, "updated_at": utc_now()})
                )
                log.info("release_started", release_id=release.id, version=release.version)
            log.info("step_started", step_id=step_id, step_number=step.step_number, actor=actor)
            return Outcome.ok(started)

        return await self._run("start_step", _start, step_id=step_id)

    async def complete_step(self, step_id: str, actor: str, notes: str | None = None) -> Outcome[WorkflowStep]:
        async def _complete() -> Outcome[WorkflowStep]:
            step = await self._require_step(step_id)
            completed = await self.step_store.update(state_machine.complete(step, actor, notes))
            log.info("step_completed", step_id=step_id, step_number=step.step_number, actor=actor)
            return Outcome.ok(completed)

        return await self._run("complete_step", _complete, step_id=step_id)

    async def fail_step(self, step_id: str, reason: str, actor: str | None = None) -> Outcome[WorkflowStep]:
        async def _fail() -> Outcome[WorkflowStep]:
            step = await self._require_step(step_id)
            failed = await self.step_store.update(state_machine.fail(step, reason, actor))
            log.info("step_failed", step_id=step_id, step_number=step.step_number, reason=reason)
            return Outcome.ok(failed)

        return await self._run("fail_step", _fail, step_id=step_id)

    async def retry_step(self, step_id: str, actor: str | None = None) -> Outcome[WorkflowStep]:
        async def _retry() -> Outcome[WorkflowStep]:
            step = await self._require_step(step_id)
            siblings = await self._release_steps(step.release_id)
            retried = await self.step_store.update(state_machine.retry(step, siblings, actor))
            log.info("step_retried", step_id=step_id, step_number=step.step_number, actor=actor)
            return Outcome.ok(retried)

        return await self._run("retry_step", _retry, step_id=step_id)

    async def skip_step(
        self, step_id: str, actor: str | None = None, notes: str | None = None
    ) -> Outcome[WorkflowStep]:
        async def _skip() -> Outcome[WorkflowStep]:
            step = await self._require_step(step_id)
            skipped = await self.step_store.update(state_machine.skip(step, actor, notes))
            log.info("step_skipped", step_id=step_id, step_number=step.step_number, actor=actor)
            return Outcome.ok(skipped)

        return await self._run("skip_step", _skip, step_id=step_id)

    async def set_dependencies(self, step_id: str, depends_on: list[str]) -> Outcome[WorkflowStep]:
        """Replace a step's dependency edges after validating them."""

        async def _set() -> Outcome[WorkflowStep]:
            step = await self._require_step(step_id)
            candidate = step.model_copy(
                update={"depends_on": list(dict.fromkeys(depends_on)), "updated_at": utc_now()}
            )
            state_machine.validate_dependencies(candidate, await self._release_steps(step.release_id))
            saved = await self.step_store.update(candidate)
            log.info("step_dependencies_set", step_id=step_id, depends_on=saved.depends_on)
            return Outcome.ok(saved)

        return await self._run("set_dependencies", _set, step_id=step_id)

    # GitHub configuration

    async def save_github_config(self, config: GitHubConfig) -> Outcome[GitHubConfig]:
        """Create or replace a project's GitHub configuration.

        Repository references are normalized to ``owner/repo``. Workflow
        reference keys must be step type names.
        """

        async def _save() -> Outcome[GitHubConfig]:
            if not config.project_id.strip():
                raise ValidationError("Project id is required")
            unknown = sorted(set(config.workflow_urls) - {t.value for t in StepType})
            if unknown:
                raise ValidationError(f"Unknown step types in workflow references: {', '.join(unknown)}")

            now = utc_now()
            existing = await self.config_store.get(config.project_id)
            normalized = config.model_copy(
                update={
                    "id": config.project_id,
                    "app_repository_url": self._normalize_optional_repo(config.app_repository_url),
                    "bff_repository_url": self._normalize_optional_repo(config.bff_repository_url),
                    "created_at": existing.created_at if existing else (config.created_at or now),
                    "updated_at": now,
                }
            )
            if existing is None:
                saved = await self.config_store.create(normalized)
            else:
                saved = await self.config_store.update(normalized)
            log.info(
                "github_config_saved",
                project_id=config.project_id,
                workflows=sorted(saved.workflow_urls),
            )
            return Outcome.ok(saved)

        return await self._run("save_github_config", _save, project_id=config.project_id)

    async def get_github_config(self, project_id: str) -> Outcome[GitHubConfig]:
        async def _get() -> Outcome[GitHubConfig]:
            return Outcome.ok(await self._require_config(project_id))

        return await self._run("get_github_config", _get, project_id=project_id)

    async def validate_github_config(self, project_id: str) -> Outcome[dict[str, bool]]:
        """Check the project's token and every configured repository.

        Returns a map of check name ("token", "app_repository",
        "bff_repository") to result. Repositories are only checked once
        the token is accepted.
        """

        async def _validate() -> Outcome[dict[str, bool]]:
            config = await self._require_config(project_id)
            gateway = self.orchestrator.gateway
            results = {"token": await gateway.validate_credential(config.github_token)}
            for name, repository in (
                ("app_repository", config.app_repository_url),
                ("bff_repository", config.bff_repository_url),
            ):
                if not repository:
                    continue
                results[name] = results["token"] and await gateway.validate_repository(
                    normalize_repository_ref(repository), config.github_token
                )
            log.info("github_config_validated", project_id=project_id, results=results)
            return Outcome.ok(results)

        return await self._run("validate_github_config", _validate, project_id=project_id)

    # GitHub actions

    async def create_pr(self, step_id: str) -> Outcome[WorkflowStep]:
        """Open the pull request for a branch-moving step."""

        async def _create() -> Outcome[WorkflowStep]:
            step, release, config = await self._load_for_action(step_id)
            if self.orchestrator.is_develop_to_release_pr_step(step):
                return await self.orchestrator.create_develop_to_release_pr(step, release, config)
            return await self.orchestrator.create_pull_request_for_step(step, release, config)

        return await self._run("create_pr", _create, step_id=step_id)

    async def check_pr_status(self, step_id: str) -> Outcome[WorkflowStep]:
        """Refresh the PR state of a step.

        Read-only on GitHub, so finished steps may be refreshed too.
        """

        async def _check() -> Outcome[WorkflowStep]:
            step = await self._require_step(step_id)
            release = await self._require_release(step.release_id)
            config = await self._require_config(release.project_id)
            return await self.orchestrator.check_pull_request_status(step, config)

        return await self._run("check_pr_status", _check, step_id=step_id)

    async def merge_pr(self, step_id: str, merge_method: str = "merge") -> Outcome[WorkflowStep]:
        """Refuse to merge; merging happens on GitHub.

        Unlike the other actions nothing is loaded or gated here: unknown,
        finished or blocked steps get the same refusal.
        """

        async def _merge() -> Outcome[WorkflowStep]:
            return await self.orchestrator.merge_pull_request(WorkflowStep(id=step_id), GitHubConfig(), merge_method)

        return await self._run("merge_pr", _merge, step_id=step_id)

    async def trigger_build(self, step_id: str, ref: str | None = None) -> Outcome[WorkflowStep]:
        """Dispatch the build workflow for a build step."""

        async def _trigger() -> Outcome[WorkflowStep]:
            step, release, config = await self._load_for_action(step_id)
            return await self.orchestrator.trigger_build_action(
                step, release, config, ref=ref or self.settings.workflow.default_ref
            )

        return await self._run("trigger_build", _trigger, step_id=step_id)

    # Observation

    async def observe_steps(self, release_id: str) -> AsyncIterator[list[WorkflowStep]]:
        """Yield the release's ordered steps whenever they change."""
        async for steps in self.step_store.watch(lambda s: s.release_id == release_id):
            yield _by_step_number(steps)

    async def observe_release(self, release_id: str) -> AsyncIterator[Release | None]:
        """Yield the release whenever it changes (None if it disappears)."""
        async for releases in self.release_store.watch(lambda r: r.id == release_id):
            yield releases[0] if releases else None

    # Helpers

    @staticmethod
    def _normalize_optional_repo(repository: str) -> str:
        return normalize_repository_ref(repository) if repository.strip() else ""

    async def _require_release(self, release_id: str) -> Release:
        release = await self.release_store.get(release_id)
        if release is None:
            raise NotFoundError("release", release_id)
        return release

    async def _require_step(self, step_id: str) -> WorkflowStep:
        step = await self.step_store.get(step_id)
        if step is None:
            raise NotFoundError("step", step_id)
        return step

    async def _require_config(self, project_id: str) -> GitHubConfig:
        config = await self.config_store.get(project_id)
        if config is None:
            raise NotFoundError("GitHub config", project_id)
        return config

    async def _discard_release(self, release_id: str, step_ids: list[str]) -> None:
        """Remove a partially created release and its steps."""
        targets: list[tuple[Store[Any], str]] = [(self.step_store, step_id) for step_id in step_ids]
        targets.append((self.release_store, release_id))
        for store, record_id in targets:
            try:
                await store.delete(record_id)
            except Exception as e:
                # Keep going; the original failure is what the caller sees
                log.error("release_cleanup_failed", release_id=release_id, record_id=record_id, error=str(e))
        log.warning("release_discarded", release_id=release_id, steps_removed=len(step_ids))

    async def _release_steps(self, release_id: str) -> list[WorkflowStep]:
        return _by_step_number(await self.step_store.list(lambda s: s.release_id == release_id))

    async def _load_for_action(self, step_id: str) -> tuple[WorkflowStep, Release, GitHubConfig]:
        """Load everything a GitHub action needs, rejecting non-actionable steps."""
        step = await self._require_step(step_id)
        if step.status.is_terminal:
            raise StateError(f"Step {step.step_number} is {step.status}; no further actions are allowed")
        unmet = state_machine.unmet_dependencies(step, await self._release_steps(step.release_id))
        if unmet:
            raise DependencyNotMetError(step.step_number, sorted(d.step_number for d in unmet))
        release = await self._require_release(step.release_id)
        config = await self._require_config(release.project_id)
        return step, release, config

    async def _run(
        self,
        action: str,
        operation: Callable[[], Awaitable[Outcome[T]]],
        **context: Any,
    ) -> Outcome[T]:
        try:
            return await operation()
        except RocketError as e:
            log.warning("service_action_failed", action=action, error_type=type(e).__name__, error=str(e), **context)
            return Outcome.fail(e)
        except Exception as e:
            log.error("service_action_crashed", action=action, exc_info=True, **context)
            return Outcome.fail(RocketError(f"Unexpected error during {action}: {e}"))


