"""Tests for placeholder substitution in dispatch parameters."""

import pytest

from release_rocket.enums import StepType
from release_rocket.models.domain import Release
from release_rocket.workflows.placeholders import (
    PLACEHOLDER_TOKENS,
    extract_branch,
    substitute_parameters,
    substitute_placeholders,
)


@pytest.fixture
def release():
    return Release(id="rel-2", project_id="rocket", version="2.1.0", title="Summer release")


@pytest.fixture
def build_step(make_step):
    return make_step(
        4,
        type=StepType.BUILD_STAGING,
        title="Staging build",
        source_branch="develop",
        target_branch="release",
    )


class TestSubstitutePlaceholders:
    """Token replacement."""

    def test_known_tokens_are_replaced(self, build_step, release):
        assert substitute_placeholders("v={{release.version}}&b={{step.sourceBranch}}", build_step, release) == (
            "v=2.1.0&b=develop"
        )

    def test_every_token(self, build_step, release):
        value = " ".join(PLACEHOLDER_TOKENS)

        result = substitute_placeholders(value, build_step, release)

        assert result == "2.1.0 Summer release BUILD_STAGING Staging build develop release"

    def test_unknown_tokens_are_kept(self, build_step, release):
        result = substitute_placeholders("{{release.codename}}-{{release.version}}", build_step, release)

        assert result == "{{release.codename}}-2.1.0"

    def test_repeated_tokens(self, build_step, release):
        assert substitute_placeholders("{{release.version}}/{{release.version}}", build_step, release) == (
            "2.1.0/2.1.0"
        )

    def test_plain_text_untouched(self, build_step, release):
        assert substitute_placeholders("staging", build_step, release) == "staging"


class TestSubstituteParameters:
    def test_values_substituted_and_order_kept(self, build_step, release):
        result = substitute_parameters(
            {"env": "staging", "version": "{{release.version}}", "branch": "{{step.targetBranch}}"},
            build_step,
            release,
        )

        assert list(result) == ["env", "version", "branch"]
        assert result == {"env": "staging", "version": "2.1.0", "branch": "release"}


class TestExtractBranch:
    def test_branch_parameter_selects_ref(self):
        ref, inputs = extract_branch({"branch": "hotfix", "env": "qa"}, "release")

        assert ref == "hotfix"
        assert inputs == {"env": "qa"}

    def test_missing_branch_uses_default(self):
        ref, inputs = extract_branch({"env": "qa"}, "release")

        assert ref == "release"
        assert inputs == {"env": "qa"}

    def test_empty_branch_uses_default(self):
        ref, inputs = extract_branch({"branch": ""}, "main")

        assert ref == "main"
        assert inputs == {}

    def test_input_mapping_not_mutated(self):
        parameters = {"branch": "develop"}

        extract_branch(parameters, "release")

        assert parameters == {"branch": "develop"}
