"""Tests for workflow reference parsing and repository normalization."""

import pytest

from release_rocket.exceptions import ValidationError
from release_rocket.workflows.reference import normalize_repository_ref, parse_workflow_reference


class TestParseWorkflowReference:
    """Both accepted reference shapes and malformed input."""

    def test_full_dispatch_url(self):
        info = parse_workflow_reference(
            "https://api.github.com/repos/acme/app/actions/workflows/123/dispatches?env=staging&track=qa"
        )

        assert info is not None
        assert info.repository_ref == "acme/app"
        assert info.workflow_id == "123"
        assert info.parameters == {"env": "staging", "track": "qa"}

    def test_full_url_without_dispatch_suffix(self):
        info = parse_workflow_reference("https://github.com/acme/app/actions/workflows/build.yml")

        assert info is not None
        assert info.repository_ref == "acme/app"
        assert info.workflow_id == "build.yml"
        assert info.parameters == {}

    def test_simplified_form(self):
        info = parse_workflow_reference("acme/app/build.yml?branch={{step.sourceBranch}}&env=staging")

        assert info is not None
        assert info.repository_ref == "acme/app"
        assert info.workflow_id == "build.yml"
        assert info.parameters == {"branch": "{{step.sourceBranch}}", "env": "staging"}

    def test_parameter_order_is_preserved(self):
        info = parse_workflow_reference("acme/app/1?z=1&a=2&m=3")

        assert info is not None
        assert list(info.parameters) == ["z", "a", "m"]

    def test_values_are_not_decoded_and_split_on_first_equals(self):
        info = parse_workflow_reference("acme/app/1?note=a%20b&expr=x=y")

        assert info is not None
        assert info.parameters == {"note": "a%20b", "expr": "x=y"}

    def test_malformed_pairs_are_dropped(self):
        info = parse_workflow_reference("acme/app/1?flag&=orphan&ok=1")

        assert info is not None
        assert info.parameters == {"ok": "1"}

    @pytest.mark.parametrize(
        "raw",
        [
            None,
            "",
            "   ",
            "acme/app",
            "acme",
            "https://github.com/acme/app",
            "https://api.github.com/repos/acme/actions/workflows/1",
            "https://api.github.com/repos/acme/app/actions/workflows/",
        ],
    )
    def test_malformed_references_return_none(self, raw):
        assert parse_workflow_reference(raw) is None


class TestNormalizeRepositoryRef:
    """owner/repo normalization."""

    @pytest.mark.parametrize(
        "raw",
        [
            "acme/app",
            " acme/app ",
            "https://github.com/acme/app",
            "https://github.com/acme/app/",
            "https://github.com/acme/app.git",
            "github.com/acme/app",
        ],
    )
    def test_accepted_forms(self, raw):
        assert normalize_repository_ref(raw) == "acme/app"

    def test_empty_reference(self):
        with pytest.raises(ValidationError, match="empty"):
            normalize_repository_ref("  ")

    @pytest.mark.parametrize("raw", ["acme", "acme/app/extra", "acme/app name", "https://gitlab.com/acme/app"])
    def test_invalid_references(self, raw):
        with pytest.raises(ValidationError, match="Invalid repository reference"):
            normalize_repository_ref(raw)
