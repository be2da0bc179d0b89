"""Workflow reference parsing and placeholder substitution."""

from release_rocket.workflows.placeholders import (
    PLACEHOLDER_TOKENS,
    extract_branch,
    substitute_parameters,
    substitute_placeholders,
)
from release_rocket.workflows.reference import normalize_repository_ref, parse_workflow_reference

__all__ = [
    "PLACEHOLDER_TOKENS",
    "extract_branch",
    "normalize_repository_ref",
    "parse_workflow_reference",
    "substitute_parameters",
    "substitute_placeholders",
]
