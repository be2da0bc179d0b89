"""Domain models for releases, workflow steps and GitHub integration.

Key Models:
    - Release: One app version moving through the pipeline
    - WorkflowStep: One unit of work in a release's pipeline
    - GitHubConfig: Per-project repositories, token and workflow references
    - PullRequestRecord / ActionRunRecord: Normalized GitHub responses
    - Outcome: Success/failure result returned by engine operations

Example:
    >>> from release_rocket.models import Release, WorkflowStep
"""

from release_rocket.models.domain import (
    ActionRunRecord,
    GitHubConfig,
    Outcome,
    PullRequestRecord,
    Record,
    Release,
    WorkflowReferenceInfo,
    WorkflowStep,
)

__all__ = [
    "ActionRunRecord",
    "GitHubConfig",
    "Outcome",
    "PullRequestRecord",
    "Record",
    "Release",
    "WorkflowReferenceInfo",
    "WorkflowStep",
]
