"""Tests for release_rocket.engine.service."""

import pytest

from release_rocket.config.settings import RocketSettings, WorkflowSettings
from release_rocket.engine.service import ReleaseService
from release_rocket.enums import ReleaseStatus, StepStatus, StepType
from release_rocket.exceptions import (
    DependencyNotMetError,
    MergeNotSupportedError,
    NotFoundError,
    PersistenceError,
    StateError,
    ValidationError,
)
from release_rocket.models.domain import GitHubConfig


@pytest.fixture
async def release(service):
    outcome = await service.create_release(
        "rocket",
        "v1.0.0",
        title="Spring release",
        description="Login revamp",
        created_by="alice",
        notes="Remember to bump the remote config",
    )
    return outcome.unwrap()


@pytest.fixture
async def steps(service, release):
    return (await service.get_steps(release.id)).unwrap()


@pytest.fixture
async def configured(service, sample_config):
    return (await service.save_github_config(sample_config)).unwrap()


class TestReleases:
    """Release creation and status."""

    @pytest.mark.asyncio
    async def test_create_release_with_pipeline(self, service, release, steps):
        assert release.id
        assert release.status == ReleaseStatus.DRAFT
        assert release.created_by == "alice"
        assert len(steps) == 29
        assert [s.step_number for s in steps] == list(range(1, 30))
        assert all(s.release_id == release.id for s in steps)
        assert all(s.status == StepStatus.PENDING for s in steps)

    @pytest.mark.asyncio
    async def test_title_defaults_to_version(self, service):
        release = (await service.create_release("rocket", " v2.0.0 ")).unwrap()

        assert release.version == "v2.0.0"
        assert release.title == "v2.0.0"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("project_id,version", [("", "v1"), ("rocket", "  ")])
    async def test_create_release_requires_project_and_version(self, service, release_store, project_id, version):
        outcome = await service.create_release(project_id, version)

        assert not outcome.success
        assert isinstance(outcome.error, ValidationError)
        assert await release_store.list() == []

    @pytest.mark.asyncio
    async def test_failed_step_write_discards_release(self, service, release_store, step_store, monkeypatch):
        """A release whose pipeline cannot be written in full leaves nothing behind."""
        create_step = step_store.create
        calls = 0

        async def flaky_create(step):
            nonlocal calls
            calls += 1
            if calls == 10:
                raise PersistenceError("disk full")
            return await create_step(step)

        monkeypatch.setattr(step_store, "create", flaky_create)

        outcome = await service.create_release("rocket", "v1.0.0")

        assert not outcome.success
        assert isinstance(outcome.error, PersistenceError)
        assert await release_store.list() == []
        assert await step_store.list() == []

    @pytest.mark.asyncio
    async def test_get_missing_release(self, service):
        outcome = await service.get_release("nope")

        assert not outcome.success
        assert isinstance(outcome.error, NotFoundError)
        assert outcome.message == "Release not found: nope"

    @pytest.mark.asyncio
    async def test_list_releases_filters_by_project(self, service, release):
        other = (await service.create_release("other", "v9.0.0")).unwrap()

        all_releases = (await service.list_releases()).unwrap()
        rocket_releases = (await service.list_releases("rocket")).unwrap()

        assert {r.id for r in all_releases} == {release.id, other.id}
        assert [r.id for r in rocket_releases] == [release.id]

    @pytest.mark.asyncio
    async def test_completing_release_stamps_date(self, service, release):
        completed = (await service.update_release_status(release.id, ReleaseStatus.COMPLETED, "alice")).unwrap()

        assert completed.status == ReleaseStatus.COMPLETED
        assert completed.actual_release_date is not None

    @pytest.mark.asyncio
    async def test_terminal_release_cannot_change(self, service, release):
        await service.update_release_status(release.id, ReleaseStatus.CANCELLED)

        outcome = await service.update_release_status(release.id, ReleaseStatus.IN_PROGRESS)

        assert not outcome.success
        assert isinstance(outcome.error, StateError)


class TestStepLifecycle:
    """Step actions through the service."""

    @pytest.mark.asyncio
    async def test_start_moves_draft_release_in_progress(self, service, release, steps):
        started = (await service.start_step(steps[0].id, actor="alice")).unwrap()

        assert started.status == StepStatus.IN_PROGRESS
        assert started.assigned_to == "alice"
        assert (await service.get_release(release.id)).unwrap().status == ReleaseStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_full_lifecycle(self, service, steps):
        step_id = steps[3].id

        await service.start_step(step_id)
        failed = (await service.fail_step(step_id, "Signing key expired", actor="ci")).unwrap()
        assert failed.status == StepStatus.FAILED
        assert "Failed: Signing key expired (by ci)" in failed.notes

        retried = (await service.retry_step(step_id, actor="bob")).unwrap()
        assert retried.status == StepStatus.IN_PROGRESS

        completed = (await service.complete_step(step_id, "bob", notes="Shared")).unwrap()
        assert completed.status == StepStatus.COMPLETED
        assert completed.completed_by == "bob"

    @pytest.mark.asyncio
    async def test_invalid_transition_is_reported(self, service, steps):
        outcome = await service.complete_step(steps[0].id, "alice")

        assert not outcome.success
        assert isinstance(outcome.error, StateError)
        assert "PENDING -> COMPLETED" in outcome.message

    @pytest.mark.asyncio
    async def test_skip_optional_step(self, service, steps):
        skipped = (await service.skip_step(steps[28].id, actor="alice", notes="No monitoring needed")).unwrap()

        assert skipped.status == StepStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_missing_step(self, service):
        outcome = await service.start_step("ghost")

        assert not outcome.success
        assert outcome.message == "Step not found: ghost"


class TestDependencies:
    """Dependency edits and gating."""

    @pytest.mark.asyncio
    async def test_dependencies_gate_start(self, service, steps):
        first, second, third = steps[0], steps[1], steps[2]
        saved = (await service.set_dependencies(third.id, [first.id, second.id, first.id])).unwrap()
        assert saved.depends_on == [first.id, second.id]

        blocked = await service.start_step(third.id)
        assert not blocked.success
        assert isinstance(blocked.error, DependencyNotMetError)
        assert blocked.error.unmet == [1, 2]

        await service.start_step(first.id)
        await service.complete_step(first.id, "alice")
        await service.skip_step(second.id)

        assert (await service.start_step(third.id)).success

    @pytest.mark.asyncio
    async def test_forward_edge_is_rejected(self, service, steps):
        outcome = await service.set_dependencies(steps[1].id, [steps[5].id])

        assert not outcome.success
        assert isinstance(outcome.error, ValidationError)
        assert (await service.get_steps(steps[1].release_id)).unwrap()[1].depends_on == []

    @pytest.mark.asyncio
    async def test_empty_list_clears_dependencies(self, service, steps):
        await service.set_dependencies(steps[2].id, [steps[0].id])

        cleared = (await service.set_dependencies(steps[2].id, [])).unwrap()

        assert cleared.depends_on == []


class TestGitHubConfig:
    """Project configuration storage and validation."""

    @pytest.mark.asyncio
    async def test_save_normalizes_repositories(self, service, configured):
        assert configured.id == "rocket"
        assert configured.app_repository_url == "acme/app"
        assert configured.bff_repository_url == "acme/bff"
        assert configured.created_at is not None

        loaded = (await service.get_github_config("rocket")).unwrap()
        assert loaded.github_token == "ghp_test_token"

    @pytest.mark.asyncio
    async def test_resave_keeps_created_at(self, service, configured):
        updated = (
            await service.save_github_config(configured.model_copy(update={"default_target_branch": "main"}))
        ).unwrap()

        assert updated.created_at == configured.created_at
        assert updated.default_target_branch == "main"

    @pytest.mark.asyncio
    async def test_unknown_workflow_key_rejected(self, service):
        config = GitHubConfig(project_id="rocket", workflow_urls={"DEPLOY_MOON": "acme/app/1"})

        outcome = await service.save_github_config(config)

        assert not outcome.success
        assert "DEPLOY_MOON" in outcome.message

    @pytest.mark.asyncio
    async def test_invalid_repository_rejected(self, service):
        outcome = await service.save_github_config(GitHubConfig(project_id="rocket", app_repository_url="not a repo"))

        assert not outcome.success
        assert isinstance(outcome.error, ValidationError)

    @pytest.mark.asyncio
    async def test_missing_config(self, service):
        outcome = await service.get_github_config("ghost")

        assert outcome.message == "GitHub config not found: ghost"

    @pytest.mark.asyncio
    async def test_validate_all_ok(self, service, configured, mock_gateway):
        mock_gateway.validate_credential.return_value = True
        mock_gateway.validate_repository.return_value = True

        results = (await service.validate_github_config("rocket")).unwrap()

        assert results == {"token": True, "app_repository": True, "bff_repository": True}
        mock_gateway.validate_repository.assert_any_await("acme/bff", "ghp_test_token")

    @pytest.mark.asyncio
    async def test_rejected_token_fails_repositories(self, service, configured, mock_gateway):
        mock_gateway.validate_credential.return_value = False

        results = (await service.validate_github_config("rocket")).unwrap()

        assert results == {"token": False, "app_repository": False, "bff_repository": False}
        mock_gateway.validate_repository.assert_not_called()


class TestGitHubActions:
    """Pull requests and builds through the service."""

    @pytest.mark.asyncio
    async def test_create_develop_to_release_pr(self, service, configured, steps, mock_gateway, sample_pr):
        mock_gateway.create_pull_request.return_value = sample_pr

        updated = (await service.create_pr(steps[1].id)).unwrap()

        args = mock_gateway.create_pull_request.await_args
        assert args.args[0] == "acme/app"
        assert "Release v1.0.0" in args.args[2]
        assert "develop to release" in args.args[2]
        assert args.kwargs == {"head": "develop", "base": "release"}
        assert updated.github_pr_number == 42

    @pytest.mark.asyncio
    async def test_create_pr_for_release_to_master(self, service, configured, steps, mock_gateway, sample_pr):
        mock_gateway.create_pull_request.return_value = sample_pr

        assert (await service.create_pr(steps[9].id)).success

        args = mock_gateway.create_pull_request.await_args
        assert args.args[2] == "v1.0.0: Merge release to master (app)"
        assert args.kwargs == {"head": "release", "base": "master"}

    @pytest.mark.asyncio
    async def test_finished_step_rejected_before_github(self, service, configured, steps, mock_gateway):
        await service.skip_step(steps[1].id)

        outcome = await service.create_pr(steps[1].id)

        assert not outcome.success
        assert isinstance(outcome.error, StateError)
        mock_gateway.create_pull_request.assert_not_called()

    @pytest.mark.asyncio
    async def test_blocked_step_rejected_before_github(self, service, configured, steps, mock_gateway):
        await service.set_dependencies(steps[1].id, [steps[0].id])

        outcome = await service.create_pr(steps[1].id)

        assert isinstance(outcome.error, DependencyNotMetError)
        mock_gateway.create_pull_request.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_config_rejected(self, service, steps, mock_gateway):
        outcome = await service.create_pr(steps[1].id)

        assert isinstance(outcome.error, NotFoundError)
        mock_gateway.create_pull_request.assert_not_called()

    @pytest.mark.asyncio
    async def test_check_pr_status_on_completed_step(
        self, service, configured, steps, step_store, mock_gateway, sample_pr
    ):
        step = steps[1]
        await step_store.update(step.model_copy(update={"github_pr_number": 42, "status": StepStatus.COMPLETED}))
        sample_pr.merged = True
        mock_gateway.get_pull_request.return_value = sample_pr

        refreshed = (await service.check_pr_status(step.id)).unwrap()

        assert refreshed.github_pr_state == "merged"
        assert refreshed.status == StepStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_merge_pr_is_refused(self, service, configured, steps, step_store):
        await step_store.update(steps[1].model_copy(update={"github_pr_number": 42}))

        outcome = await service.merge_pr(steps[1].id)

        assert isinstance(outcome.error, MergeNotSupportedError)

    @pytest.mark.asyncio
    async def test_merge_pr_refused_for_any_step(self, service, steps, step_store, mock_gateway):
        """Finished, blocked, unconfigured and unknown steps all get the merge refusal."""
        await step_store.update(steps[0].model_copy(update={"status": StepStatus.COMPLETED}))
        await service.set_dependencies(steps[6].id, [steps[5].id])

        for step_id in (steps[0].id, steps[6].id, steps[4].id, "ghost"):
            outcome = await service.merge_pr(step_id)

            assert isinstance(outcome.error, MergeNotSupportedError), step_id
        assert mock_gateway.merge_pull_request.await_count == 4

    @pytest.mark.asyncio
    async def test_trigger_build_uses_configured_default_ref(
        self, release_store, step_store, config_store, orchestrator, sample_config, mock_gateway, sample_run
    ):
        settings = RocketSettings(workflow=WorkflowSettings(default_ref="main"))
        service = ReleaseService(release_store, step_store, config_store, orchestrator, settings)
        await service.save_github_config(sample_config)
        release = (await service.create_release("rocket", "v1.0.0")).unwrap()
        steps = (await service.get_steps(release.id)).unwrap()
        functional = steps[4]
        assert functional.type == StepType.BUILD_AND_SHARE_FUNCTIONAL
        mock_gateway.dispatch_workflow.return_value = sample_run

        updated = (await service.trigger_build(functional.id)).unwrap()

        mock_gateway.dispatch_workflow.assert_awaited_once_with(
            "acme/app", "ghp_test_token", "123", "main", {"version": "v1.0.0", "track": "qa"}
        )
        assert updated.action_run_id == 777

    @pytest.mark.asyncio
    async def test_trigger_build_explicit_ref(self, service, configured, steps, mock_gateway, sample_run):
        mock_gateway.dispatch_workflow.return_value = sample_run

        assert (await service.trigger_build(steps[4].id, ref="hotfix/1.0.1")).success

        assert mock_gateway.dispatch_workflow.await_args.args[3] == "hotfix/1.0.1"


class TestObservation:
    """Watch feeds."""

    @pytest.mark.asyncio
    async def test_observe_steps_yields_on_change(self, service, release, steps):
        feed = service.observe_steps(release.id)
        try:
            first = await feed.__anext__()
            assert [s.step_number for s in first] == list(range(1, 30))

            await service.start_step(steps[0].id)
            second = await feed.__anext__()
            assert second[0].status == StepStatus.IN_PROGRESS
        finally:
            await feed.aclose()

    @pytest.mark.asyncio
    async def test_observe_release(self, service, release):
        feed = service.observe_release(release.id)
        try:
            first = await feed.__anext__()
            assert first.id == release.id

            await service.update_release_status(release.id, ReleaseStatus.STAGING)
            second = await feed.__anext__()
            assert second.status == ReleaseStatus.STAGING
        finally:
            await feed.aclose()
