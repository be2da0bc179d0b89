"""Enumerations for releases, workflow steps and repositories."""

from enum import Enum


class ReleaseStatus(str, Enum):
    """Lifecycle of a release.

    COMPLETED and CANCELLED are terminal; releases are never deleted.
    """

    DRAFT = "DRAFT"
    IN_PROGRESS = "IN_PROGRESS"
    STAGING = "STAGING"
    PRODUCTION_PENDING = "PRODUCTION_PENDING"
    PRODUCTION = "PRODUCTION"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    def __str__(self) -> str:
        return self.value

    @property
    def is_terminal(self) -> bool:
        """Check if the release can no longer change status."""
        return self in (ReleaseStatus.COMPLETED, ReleaseStatus.CANCELLED)


class StepStatus(str, Enum):
    """Lifecycle of a single workflow step.

    The happy path is PENDING -> IN_PROGRESS -> COMPLETED. FAILED steps
    can be retried; SKIPPED is a manual override for PENDING steps.
    """

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"

    def __str__(self) -> str:
        return self.value

    @property
    def is_terminal(self) -> bool:
        return self in (StepStatus.COMPLETED, StepStatus.SKIPPED)

    @property
    def satisfies_dependency(self) -> bool:
        """Check if a dependency in this status lets dependents start."""
        return self.is_terminal


class StepType(str, Enum):
    """Kinds of work a pipeline step represents.

    Values double as the keys of ``GitHubConfig.workflow_urls``.
    """

    CODE_FREEZE = "CODE_FREEZE"
    PR_MERGE = "PR_MERGE"
    CREATE_PR_BFF = "CREATE_PR_BFF"
    BUILD_STAGING = "BUILD_STAGING"
    BUILD_AND_SHARE_FUNCTIONAL = "BUILD_AND_SHARE_FUNCTIONAL"
    FUNCTIONAL_SIGNOFF = "FUNCTIONAL_SIGNOFF"
    BUILD_AND_SHARE_REGRESSION = "BUILD_AND_SHARE_REGRESSION"
    REGRESSION_SIGNOFF = "REGRESSION_SIGNOFF"
    STAGING_SIGNOFF = "STAGING_SIGNOFF"
    PR_TO_MASTER = "PR_TO_MASTER"
    PR_TO_MASTER_BFF = "PR_TO_MASTER_BFF"
    DEPLOY_BFF_PRODUCTION = "DEPLOY_BFF_PRODUCTION"
    DEPLOY_REMOTE_CONFIG = "DEPLOY_REMOTE_CONFIG"
    BUILD_AND_SHARE_PROD_REGRESSION = "BUILD_AND_SHARE_PROD_REGRESSION"
    PROD_REGRESSION_SIGNOFF = "PROD_REGRESSION_SIGNOFF"
    BACK_MERGE_APP = "BACK_MERGE_APP"
    BACK_MERGE_BFF = "BACK_MERGE_BFF"
    BUILD_PRODUCTION = "BUILD_PRODUCTION"
    QA_SIGNOFF = "QA_SIGNOFF"
    CREATE_GITHUB_RELEASE = "CREATE_GITHUB_RELEASE"
    DEPLOY_BETA = "DEPLOY_BETA"
    BETA_SIGNOFF = "BETA_SIGNOFF"
    PUBLISH_ROLLOUT = "PUBLISH_ROLLOUT"
    ROLLOUT_5 = "ROLLOUT_5"
    ROLLOUT_30 = "ROLLOUT_30"
    ROLLOUT_50 = "ROLLOUT_50"
    ROLLOUT_75 = "ROLLOUT_75"
    PROMOTE_PRODUCTION = "PROMOTE_PRODUCTION"
    POST_RELEASE_MONITORING = "POST_RELEASE_MONITORING"
    MANUAL_TASK = "MANUAL_TASK"
    GITHUB_ACTION = "GITHUB_ACTION"

    def __str__(self) -> str:
        return self.value


BUILD_STEP_TYPES: frozenset[StepType] = frozenset(
    {
        StepType.BUILD_AND_SHARE_FUNCTIONAL,
        StepType.BUILD_AND_SHARE_REGRESSION,
        StepType.BUILD_AND_SHARE_PROD_REGRESSION,
        StepType.BUILD_STAGING,
        StepType.BUILD_PRODUCTION,
    }
)
"""Step types that trigger a GitHub Actions build-and-share workflow."""


class RepositoryType(str, Enum):
    """Which of the project's two repositories a step moves branches in."""

    APP = "app"
    BFF = "bff"

    def __str__(self) -> str:
        return self.value
