"""
Workflow reference parsing.

A workflow reference names the GitHub Actions workflow a build step
dispatches, plus static dispatch parameters. Two shapes are accepted::

    https://api.github.com/repos/acme/app/actions/workflows/123/dispatches?env=staging
    acme/app/123?env=staging&branch={{step.sourceBranch}}

Parameter values are kept verbatim (no percent-decoding) so ``{{...}}``
placeholders survive for substitution at dispatch time.
"""

import re

import structlog

from release_rocket.exceptions import ValidationError
from release_rocket.models.domain import WorkflowReferenceInfo

log = structlog.get_logger(__name__)

URL_PREFIXES = ("https://api.github.com/repos/", "https://github.com/")
WORKFLOWS_MARKER = "/actions/workflows/"
DISPATCH_SUFFIX = "/dispatches"

_OWNER_REPO = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")


def _parse_query(query: str) -> dict[str, str]:
    parameters: dict[str, str] = {}
    for pair in query.split("&"):
        if "=" not in pair:
            continue
        key, value = pair.split("=", 1)
        if not key:
            continue
        parameters[key] = value
    return parameters


def _split_full_url(raw: str, prefix: str) -> tuple[str, str, str] | None:
    remainder = raw[len(prefix) :]
    if WORKFLOWS_MARKER not in remainder:
        return None
    repository_part, workflow_part = remainder.split(WORKFLOWS_MARKER, 1)
    workflow_part, _, query = workflow_part.partition("?")
    if workflow_part.endswith(DISPATCH_SUFFIX):
        workflow_part = workflow_part[: -len(DISPATCH_SUFFIX)]
    return repository_part, workflow_part.strip("/"), query


def parse_workflow_reference(raw: str | None) -> WorkflowReferenceInfo | None:
    """Parse a configured workflow reference.

    Args:
        raw: Full dispatch URL or ``owner/repo/<workflow id>`` string,
            optionally followed by ``?k=v&...``

    Returns:
        Parsed reference, or None if the string is empty or malformed.
        Malformed references mean "not configured"; this never raises.
    """
    if raw is None:
        return None
    value = raw.strip()
    if not value:
        return None

    prefix = next((p for p in URL_PREFIXES if value.startswith(p)), None)
    if prefix is not None:
        split = _split_full_url(value, prefix)
        if split is None:
            log.debug("workflow_reference_unparsed", reference=value, reason="no workflow path")
            return None
        repository_part, workflow_id, query = split
        segments = [s for s in repository_part.split("/") if s]
        if len(segments) < 2 or not workflow_id:
            log.debug("workflow_reference_unparsed", reference=value, reason="too few segments")
            return None
        repository_ref = f"{segments[0]}/{segments[1]}"
    else:
        path, _, query = value.partition("?")
        segments = [s for s in path.split("/") if s]
        if len(segments) < 3:
            log.debug("workflow_reference_unparsed", reference=value, reason="too few segments")
            return None
        repository_ref = f"{segments[0]}/{segments[1]}"
        workflow_id = segments[2]

    return WorkflowReferenceInfo(
        repository_ref=repository_ref,
        workflow_id=workflow_id,
        parameters=_parse_query(query) if query else {},
    )


def normalize_repository_ref(raw: str) -> str:
    """Normalize a repository reference to ``owner/repo``.

    Accepts ``owner/repo`` and ``https://github.com/owner/repo`` (with or
    without a trailing ``.git`` or slash).

    Raises:
        ValidationError: If the reference is empty or malformed
    """
    value = (raw or "").strip()
    if not value:
        raise ValidationError("Repository reference is empty")

    for prefix in ("https://github.com/", "http://github.com/", "github.com/"):
        if value.startswith(prefix):
            value = value[len(prefix) :]
            break

    value = value.rstrip("/")
    if value.endswith(".git"):
        value = value[: -len(".git")]

    if not _OWNER_REPO.match(value):
        raise ValidationError(f"Invalid repository reference: {raw}")
    return value
