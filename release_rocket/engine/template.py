"""
Default release pipeline.

The pipeline is an immutable, versioned table: bump
``PIPELINE_TEMPLATE_VERSION`` whenever an entry changes so releases
created from different revisions can be told apart.
"""

import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

import structlog

from release_rocket.enums import RepositoryType, StepType
from release_rocket.models.domain import WorkflowStep, utc_now

log = structlog.get_logger(__name__)

PIPELINE_TEMPLATE_VERSION = "2024.1"


@dataclass(frozen=True)
class StepTemplate:
    """One entry of the default pipeline."""

    step_number: int
    type: StepType
    title: str
    description: str
    estimated_duration: int
    is_required: bool = True
    repository_type: RepositoryType | None = None
    source_branch: str = ""
    target_branch: str = ""

    def instantiate(self, release_id: str, step_id: str, now: datetime) -> WorkflowStep:
        """Create the workflow step for a release from this entry."""
        return WorkflowStep(
            id=step_id,
            release_id=release_id,
            step_number=self.step_number,
            type=self.type,
            title=self.title,
            description=self.description,
            is_required=self.is_required,
            estimated_duration=self.estimated_duration,
            repository_type=self.repository_type,
            source_branch=self.source_branch,
            target_branch=self.target_branch,
            created_at=now,
            updated_at=now,
        )


DEFAULT_PIPELINE: tuple[StepTemplate, ...] = (
    StepTemplate(
        1,
        StepType.CODE_FREEZE,
        "Code freeze",
        "Announce the code freeze and stop merging features into develop.",
        15,
    ),
    StepTemplate(
        2,
        StepType.PR_MERGE,
        "Merge develop to release (app)",
        "Open a pull request from develop to release in the app repository and merge it on GitHub.",
        30,
        repository_type=RepositoryType.APP,
        source_branch="develop",
        target_branch="release",
    ),
    StepTemplate(
        3,
        StepType.CREATE_PR_BFF,
        "Merge develop to release (bff)",
        "Open a pull request from develop to release in the bff repository and merge it on GitHub.",
        30,
        repository_type=RepositoryType.BFF,
        source_branch="develop",
        target_branch="release",
    ),
    StepTemplate(
        4,
        StepType.BUILD_STAGING,
        "Staging build",
        "Build the release branch against the staging environment.",
        45,
    ),
    StepTemplate(
        5,
        StepType.BUILD_AND_SHARE_FUNCTIONAL,
        "Build and share for functional testing",
        "Trigger the functional test build and share it with QA.",
        45,
    ),
    StepTemplate(
        6,
        StepType.FUNCTIONAL_SIGNOFF,
        "Functional testing sign-off",
        "QA confirms functional testing passed on the shared build.",
        240,
    ),
    StepTemplate(
        7,
        StepType.BUILD_AND_SHARE_REGRESSION,
        "Build and share for regression testing",
        "Trigger the regression build and share it with QA.",
        45,
    ),
    StepTemplate(
        8,
        StepType.REGRESSION_SIGNOFF,
        "Regression testing sign-off",
        "QA confirms the regression suite passed.",
        480,
    ),
    StepTemplate(
        9,
        StepType.STAGING_SIGNOFF,
        "Staging sign-off",
        "Product and QA approve the staging build for production.",
        60,
    ),
    StepTemplate(
        10,
        StepType.PR_TO_MASTER,
        "Merge release to master (app)",
        "Open a pull request from release to master in the app repository.",
        30,
        repository_type=RepositoryType.APP,
        source_branch="release",
        target_branch="master",
    ),
    StepTemplate(
        11,
        StepType.PR_TO_MASTER_BFF,
        "Merge release to master (bff)",
        "Open a pull request from release to master in the bff repository.",
        30,
        repository_type=RepositoryType.BFF,
        source_branch="release",
        target_branch="master",
    ),
    StepTemplate(
        12,
        StepType.DEPLOY_BFF_PRODUCTION,
        "Deploy bff to production",
        "Deploy the bff master branch to the production environment.",
        60,
    ),
    StepTemplate(
        13,
        StepType.DEPLOY_REMOTE_CONFIG,
        "Deploy remote config",
        "Publish the remote config values required by this release.",
        20,
    ),
    StepTemplate(
        14,
        StepType.BUILD_AND_SHARE_PROD_REGRESSION,
        "Build and share for production regression",
        "Trigger the production regression build and share it with QA.",
        45,
    ),
    StepTemplate(
        15,
        StepType.PROD_REGRESSION_SIGNOFF,
        "Production regression sign-off",
        "QA confirms the production regression suite passed.",
        240,
    ),
    StepTemplate(
        16,
        StepType.BACK_MERGE_APP,
        "Back-merge master to develop (app)",
        "Open a pull request from master back to develop in the app repository.",
        20,
        repository_type=RepositoryType.APP,
        source_branch="master",
        target_branch="develop",
    ),
    StepTemplate(
        17,
        StepType.BACK_MERGE_BFF,
        "Back-merge master to develop (bff)",
        "Open a pull request from master back to develop in the bff repository.",
        20,
        repository_type=RepositoryType.BFF,
        source_branch="master",
        target_branch="develop",
    ),
    StepTemplate(
        18,
        StepType.BUILD_PRODUCTION,
        "Production build",
        "Build the signed production bundle from master.",
        60,
    ),
    StepTemplate(
        19,
        StepType.QA_SIGNOFF,
        "QA sign-off",
        "QA signs off the production build.",
        60,
    ),
    StepTemplate(
        20,
        StepType.CREATE_GITHUB_RELEASE,
        "Create GitHub release",
        "Tag master and publish the GitHub release with release notes.",
        15,
    ),
    StepTemplate(
        21,
        StepType.DEPLOY_BETA,
        "PlayStore beta 100%",
        "Upload the production bundle to the beta track at 100%.",
        30,
    ),
    StepTemplate(
        22,
        StepType.BETA_SIGNOFF,
        "Beta sign-off",
        "Confirm the beta is healthy before publishing to production.",
        1440,
    ),
    StepTemplate(
        23,
        StepType.PUBLISH_ROLLOUT,
        "Publish 99.9999%",
        "Publish the release to the production track at 99.9999% for review.",
        60,
    ),
    StepTemplate(
        24,
        StepType.ROLLOUT_5,
        "Production rollout 5%",
        "Roll the release out to 5% of production users and watch crash rates.",
        1440,
    ),
    StepTemplate(
        25,
        StepType.ROLLOUT_30,
        "Production rollout 30%",
        "Increase the production rollout to 30%.",
        1440,
    ),
    StepTemplate(
        26,
        StepType.ROLLOUT_50,
        "Production rollout 50%",
        "Increase the production rollout to 50%.",
        1440,
    ),
    StepTemplate(
        27,
        StepType.ROLLOUT_75,
        "Production rollout 75%",
        "Increase the production rollout to 75%.",
        1440,
    ),
    StepTemplate(
        28,
        StepType.PROMOTE_PRODUCTION,
        "Production rollout 99.99999%",
        "Promote the release to 99.99999% of production users.",
        60,
    ),
    StepTemplate(
        29,
        StepType.POST_RELEASE_MONITORING,
        "Post-release monitoring",
        "Monitor crash reports, vitals and user feedback after full rollout.",
        2880,
        is_required=False,
    ),
)


def _new_id() -> str:
    return str(uuid.uuid4())


def instantiate_pipeline(
    release_id: str,
    now: datetime | None = None,
    id_factory: Callable[[], str] | None = None,
) -> list[WorkflowStep]:
    """Create the default steps for a release, in template order.

    Args:
        release_id: Owning release
        now: Creation timestamp shared by all steps (defaults to now, UTC)
        id_factory: Produces step ids (defaults to random UUIDs)

    Returns:
        One PENDING step per template entry, ordered by step number
    """
    created_at = now or utc_now()
    make_id = id_factory or _new_id
    steps = [entry.instantiate(release_id, make_id(), created_at) for entry in DEFAULT_PIPELINE]
    log.debug(
        "pipeline_instantiated",
        release_id=release_id,
        steps=len(steps),
        template_version=PIPELINE_TEMPLATE_VERSION,
    )
    return steps
