"""Unit tests for the release_rocket.main CLI.

The GitHub gateway is replaced by an AsyncMock; everything else (JSON
stores, service, orchestrator) runs for real against a temporary store
directory.
"""

import json
import re
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from release_rocket.gateway.base import VcsGateway
from release_rocket.main import cli


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def cli_runner():
    """Create a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def store_dir(tmp_path):
    return tmp_path / "store"


@pytest.fixture
def config_file(tmp_path, store_dir):
    path = tmp_path / "rocket.yaml"
    path.write_text(
        f"store:\n  directory: {store_dir}\n  poll_interval_seconds: 0.01\n"
        "github:\n  run_lookup_delay_seconds: 0\n"
    )
    return path


@pytest.fixture
def cli_gateway(sample_pr, sample_run):
    gateway = AsyncMock(spec=VcsGateway)
    gateway.create_pull_request.return_value = sample_pr
    gateway.dispatch_workflow.return_value = sample_run
    gateway.validate_credential.return_value = True
    gateway.validate_repository.return_value = True
    return gateway


@pytest.fixture
def invoke(cli_runner, config_file, cli_gateway):
    """Invoke the CLI with the test config and the mocked gateway."""

    def _invoke(*args: str):
        with (
            patch("release_rocket.main.GitHubGateway", return_value=cli_gateway),
            patch("release_rocket.main.configure_logging"),
        ):
            return cli_runner.invoke(cli, ["--config", str(config_file), *args], env={"GITHUB_TOKEN": None})

    return _invoke


def step_id(store_dir: Path, number: int) -> str:
    for path in (store_dir / "steps").glob("*.json"):
        document = json.loads(path.read_text())
        if document["stepNumber"] == number:
            return document["id"]
    raise AssertionError(f"step {number} not found")


def create_release(invoke) -> str:
    result = invoke("create-release", "rocket", "v1.0.0", "--title", "Spring release", "--by", "alice")
    assert result.exit_code == 0, result.output
    match = re.search(r"Created release v1\.0\.0 \((.+)\) with 29 steps", result.output)
    assert match, result.output
    return match.group(1)


def configure_project(invoke) -> None:
    result = invoke(
        "configure",
        "rocket",
        "--app-repo",
        "https://github.com/acme/app",
        "--bff-repo",
        "acme/bff",
        "--token",
        "ghp_test_token",
        "--workflow",
        "build_staging=acme/app/build.yml?branch={{step.sourceBranch}}",
    )
    assert result.exit_code == 0, result.output


# =============================================================================
# Offline commands
# =============================================================================


class TestOfflineCommands:
    """Commands that never touch the store."""

    def test_help(self, cli_runner):
        result = cli_runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        assert "create-release" in result.output
        assert "trigger-build" in result.output

    def test_pipeline(self, invoke):
        result = invoke("pipeline")

        assert result.exit_code == 0
        assert "29 steps" in result.output
        assert " 2. Merge develop to release (app) [PR_MERGE] app: develop -> release" in result.output
        assert "(optional)" in result.output

    def test_parse_ref(self, invoke):
        result = invoke("parse-ref", "acme/app/build.yml?branch={{step.sourceBranch}}&env=qa")

        assert result.exit_code == 0
        assert "Repository: acme/app" in result.output
        assert "build.yml" in result.output
        assert "branch = {{step.sourceBranch}}" in result.output

    def test_parse_invalid_ref(self, invoke):
        result = invoke("parse-ref", "acme/app")

        assert result.exit_code == 1
        assert "Not a valid workflow reference" in result.output

    def test_missing_config_file(self, cli_runner, tmp_path):
        result = cli_runner.invoke(cli, ["--config", str(tmp_path / "nope.yaml"), "pipeline"])

        assert result.exit_code == 1
        assert "Configuration file not found" in result.output

    def test_show_config(self, invoke, store_dir):
        result = invoke("show-config")

        assert result.exit_code == 0
        assert str(store_dir) in result.output
        assert "Default ref:  release" in result.output


# =============================================================================
# Release workflow
# =============================================================================


class TestReleaseCommands:
    """Commands running against the JSON store."""

    def test_configure_normalizes_and_merges(self, invoke, store_dir):
        configure_project(invoke)

        result = invoke("configure", "rocket", "--workflow", "BUILD_PRODUCTION=acme/app/prod.yml")

        assert result.exit_code == 0, result.output
        document = json.loads((store_dir / "github_configs" / "rocket.json").read_text())
        assert document["appRepositoryUrl"] == "acme/app"
        assert document["githubToken"] == "ghp_test_token"
        assert set(document["workflowUrls"]) == {"BUILD_STAGING", "BUILD_PRODUCTION"}

    def test_configure_unknown_step_type(self, invoke):
        result = invoke("configure", "rocket", "--workflow", "DEPLOY_MOON=acme/app/1")

        assert result.exit_code == 1
        assert "Unknown step type: DEPLOY_MOON" in result.output

    def test_validate(self, invoke, cli_gateway):
        configure_project(invoke)

        result = invoke("validate", "rocket")

        assert result.exit_code == 0, result.output
        assert "token: ok" in result.output
        assert "app_repository: ok" in result.output

        cli_gateway.validate_credential.return_value = False
        result = invoke("validate", "rocket")

        assert result.exit_code == 1
        assert "token: FAILED" in result.output

    def test_create_release_and_list_steps(self, invoke):
        release_id = create_release(invoke)

        result = invoke("steps", release_id)

        assert result.exit_code == 0, result.output
        assert "Release v1.0.0 (DRAFT)" in result.output
        assert "[ ]  1. Code freeze (PENDING)" in result.output

        listed = invoke("releases", "rocket")
        assert release_id in listed.output

    def test_step_lifecycle(self, invoke, store_dir):
        release_id = create_release(invoke)
        first = step_id(store_dir, 1)

        started = invoke("start", first, "--by", "alice")
        assert started.exit_code == 0, started.output
        assert "(IN_PROGRESS)" in started.output

        completed = invoke("complete", first, "--by", "alice", "--notes", "Frozen")
        assert completed.exit_code == 0, completed.output
        assert "[x]  1. Code freeze (COMPLETED)" in completed.output

        again = invoke("start", first)
        assert again.exit_code == 1
        assert "Invalid step transition: COMPLETED -> IN_PROGRESS" in again.output

        status = invoke("release-status", release_id, "staging")
        assert status.exit_code == 0, status.output
        assert "is now STAGING" in status.output

    def test_dependencies_block_start(self, invoke, store_dir):
        create_release(invoke)
        first, third = step_id(store_dir, 1), step_id(store_dir, 3)

        result = invoke("depends-on", third, first)
        assert result.exit_code == 0, result.output

        blocked = invoke("start", third)
        assert blocked.exit_code == 1
        assert "blocked by unfinished steps: 1" in blocked.output

    def test_unknown_step(self, invoke):
        result = invoke("start", "ghost")

        assert result.exit_code == 1
        assert "Error: Step not found: ghost" in result.output

    def test_create_pr(self, invoke, store_dir, cli_gateway):
        configure_project(invoke)
        create_release(invoke)

        result = invoke("create-pr", step_id(store_dir, 2))

        assert result.exit_code == 0, result.output
        assert "PR #42 open: https://github.com/acme/app/pull/42" in result.output
        args = cli_gateway.create_pull_request.await_args
        assert args.args[0] == "acme/app"
        assert "Release v1.0.0" in args.args[2]
        cli_gateway.close.assert_awaited()

    def test_trigger_build(self, invoke, store_dir, cli_gateway):
        configure_project(invoke)
        create_release(invoke)

        result = invoke("trigger-build", step_id(store_dir, 4))

        assert result.exit_code == 0, result.output
        assert "run 777 queued" in result.output
        cli_gateway.dispatch_workflow.assert_awaited_once_with("acme/app", "ghp_test_token", "build.yml", "release", {})

    def test_trigger_build_without_workflow(self, invoke, store_dir, cli_gateway):
        configure_project(invoke)
        create_release(invoke)

        result = invoke("trigger-build", step_id(store_dir, 18))

        assert result.exit_code == 1
        assert "No GitHub Actions workflow configured for BUILD_PRODUCTION" in result.output
        cli_gateway.dispatch_workflow.assert_not_called()

    def test_watch_prints_snapshot(self, invoke):
        release_id = create_release(invoke)

        result = invoke("watch", release_id, "--count", "1")

        assert result.exit_code == 0, result.output
        assert "Release v1.0.0: 0/29 steps done" in result.output
