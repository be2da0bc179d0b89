"""Placeholder substitution for static workflow dispatch parameters."""

from collections.abc import Callable, Mapping

from release_rocket.models.domain import Release, WorkflowStep

BRANCH_PARAMETER = "branch"

_RESOLVERS: dict[str, Callable[[WorkflowStep, Release], str]] = {
    "{{release.version}}": lambda step, release: release.version,
    "{{release.title}}": lambda step, release: release.title,
    "{{step.type}}": lambda step, release: step.type.value,
    "{{step.title}}": lambda step, release: step.title,
    "{{step.sourceBranch}}": lambda step, release: step.source_branch,
    "{{step.targetBranch}}": lambda step, release: step.target_branch,
}

PLACEHOLDER_TOKENS: tuple[str, ...] = tuple(_RESOLVERS)


def substitute_placeholders(value: str, step: WorkflowStep, release: Release) -> str:
    """Replace known ``{{...}}`` tokens in ``value``.

    Unknown tokens are left as they are.

    Example:
        >>> substitute_placeholders("v={{release.version}}", step, release)
        'v=2.1.0'
    """
    result = value
    for token, resolve in _RESOLVERS.items():
        if token in result:
            result = result.replace(token, resolve(step, release))
    return result


def substitute_parameters(
    parameters: Mapping[str, str], step: WorkflowStep, release: Release
) -> dict[str, str]:
    """Substitute placeholders in every parameter value, keeping key order."""
    return {key: substitute_placeholders(value, step, release) for key, value in parameters.items()}


def extract_branch(parameters: Mapping[str, str], default_ref: str) -> tuple[str, dict[str, str]]:
    """Split the ``branch`` parameter off the dispatch inputs.

    Returns:
        Tuple of (git ref to run against, remaining workflow inputs). The
        ref falls back to ``default_ref`` when ``branch`` is missing or empty.
    """
    inputs = dict(parameters)
    branch = inputs.pop(BRANCH_PARAMETER, "")
    return (branch or default_ref), inputs
