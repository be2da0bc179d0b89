"""Pytest configuration and shared fixtures."""

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock

import pytest

from release_rocket.config.settings import RocketSettings
from release_rocket.engine.orchestrator import ReleaseWorkflowOrchestrator
from release_rocket.engine.service import ReleaseService
from release_rocket.enums import RepositoryType, StepStatus, StepType
from release_rocket.exceptions import MergeNotSupportedError
from release_rocket.gateway.base import VcsGateway
from release_rocket.models.domain import (
    ActionRunRecord,
    GitHubConfig,
    PullRequestRecord,
    Release,
    WorkflowStep,
)
from release_rocket.store.memory import InMemoryStore


@pytest.fixture
def sample_release() -> Release:
    """Release used by most orchestration tests."""
    return Release(
        id="rel-1",
        project_id="rocket",
        version="v1.0.0",
        title="Spring release",
        description="Login revamp and payment fixes",
        notes="Remember to bump the remote config",
        created_at=datetime(2024, 3, 1, 9, 0, tzinfo=UTC),
    )


@pytest.fixture
def sample_config() -> GitHubConfig:
    """GitHub configuration with both repositories and a build workflow."""
    return GitHubConfig(
        id="rocket",
        project_id="rocket",
        app_repository_url="acme/app",
        bff_repository_url="https://github.com/acme/bff.git",
        github_token="ghp_test_token",
        workflow_urls={
            StepType.BUILD_STAGING.value: "acme/app/build.yml?branch={{step.sourceBranch}}&env=staging",
            StepType.BUILD_AND_SHARE_FUNCTIONAL.value: (
                "https://api.github.com/repos/acme/app/actions/workflows/123/dispatches"
                "?version={{release.version}}&track=qa"
            ),
        },
    )


@pytest.fixture
def make_step() -> Callable[..., WorkflowStep]:
    """Factory for workflow steps of release ``rel-1``."""

    def _make(step_number: int = 1, **overrides: Any) -> WorkflowStep:
        fields: dict[str, Any] = {
            "id": f"step-{step_number}",
            "release_id": "rel-1",
            "step_number": step_number,
            "type": StepType.MANUAL_TASK,
            "title": f"Step {step_number}",
            "status": StepStatus.PENDING,
        }
        fields.update(overrides)
        return WorkflowStep(**fields)

    return _make


@pytest.fixture
def app_pr_step(make_step: Callable[..., WorkflowStep]) -> WorkflowStep:
    """Step 2 of the default pipeline: develop -> release in the app repository."""
    return make_step(
        2,
        type=StepType.PR_MERGE,
        title="Merge develop to release (app)",
        description="Open a pull request from develop to release in the app repository.",
        repository_type=RepositoryType.APP,
        source_branch="develop",
        target_branch="release",
    )


@pytest.fixture
def sample_pr() -> PullRequestRecord:
    return PullRequestRecord(
        id=9001,
        number=42,
        title="Release v1.0.0: Merge develop to release (app)",
        state="open",
        url="https://github.com/acme/app/pull/42",
        head="develop",
        base="release",
    )


@pytest.fixture
def sample_run() -> ActionRunRecord:
    return ActionRunRecord(
        id=777,
        status="queued",
        url="https://github.com/acme/app/actions/runs/777",
        run_number=15,
        workflow_id="123",
        head_branch="release",
    )


@pytest.fixture
def mock_gateway() -> AsyncMock:
    """Gateway double; merging is refused like the real one."""
    gateway = AsyncMock(spec=VcsGateway)
    gateway.merge_pull_request.side_effect = MergeNotSupportedError()
    return gateway


@pytest.fixture
def release_store() -> InMemoryStore[Release]:
    return InMemoryStore(Release, kind="release")


@pytest.fixture
def step_store() -> InMemoryStore[WorkflowStep]:
    return InMemoryStore(WorkflowStep, kind="step")


@pytest.fixture
def config_store() -> InMemoryStore[GitHubConfig]:
    return InMemoryStore(GitHubConfig, kind="GitHub config")


@pytest.fixture
def orchestrator(mock_gateway: AsyncMock, step_store: InMemoryStore[WorkflowStep]) -> ReleaseWorkflowOrchestrator:
    return ReleaseWorkflowOrchestrator(mock_gateway, step_store)


@pytest.fixture
def rocket_settings() -> RocketSettings:
    return RocketSettings()


@pytest.fixture
def service(
    release_store: InMemoryStore[Release],
    step_store: InMemoryStore[WorkflowStep],
    config_store: InMemoryStore[GitHubConfig],
    orchestrator: ReleaseWorkflowOrchestrator,
    rocket_settings: RocketSettings,
) -> ReleaseService:
    return ReleaseService(release_store, step_store, config_store, orchestrator, rocket_settings)
