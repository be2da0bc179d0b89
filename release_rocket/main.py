"""CLI entry point for release-rocket."""

import asyncio
import sys
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import click

from release_rocket.config.settings import RocketSettings
from release_rocket.engine.orchestrator import ReleaseWorkflowOrchestrator
from release_rocket.engine.service import ReleaseService
from release_rocket.engine.template import DEFAULT_PIPELINE, PIPELINE_TEMPLATE_VERSION
from release_rocket.enums import ReleaseStatus, StepType
from release_rocket.exceptions import ConfigurationError, RocketError, ValidationError
from release_rocket.gateway.github import GitHubGateway
from release_rocket.models.domain import GitHubConfig, Outcome, Release, WorkflowStep
from release_rocket.store.json_file import JsonFileStore
from release_rocket.utils.logging_config import configure_logging, get_logger
from release_rocket.workflows.reference import parse_workflow_reference

log = get_logger(__name__)

T = TypeVar("T")

STATUS_MARKS = {
    "PENDING": " ",
    "IN_PROGRESS": ">",
    "COMPLETED": "x",
    "FAILED": "!",
    "SKIPPED": "-",
}


@click.group()
@click.option("--config", default=None, help="Path to configuration file (YAML)")
@click.option("--log-level", default=None, help="Logging level (overrides the configuration file)")
@click.option("--json-logs/--console-logs", default=True, help="Log format written to stderr")
@click.pass_context
def cli(ctx: click.Context, config: str | None, log_level: str | None, json_logs: bool) -> None:
    """release-rocket: release pipeline orchestration."""
    try:
        settings = RocketSettings.from_yaml(config) if config else RocketSettings()
    except ConfigurationError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)

    configure_logging(log_level or settings.log_level, json_output=json_logs, stream=sys.stderr)
    ctx.obj = {"settings": settings}


def _build_service(settings: RocketSettings) -> ReleaseService:
    """Wire the JSON stores, the GitHub gateway and the service together."""
    directory = settings.store.directory
    interval = settings.store.poll_interval_seconds
    releases = JsonFileStore(directory, "releases", Release, poll_interval=interval)
    steps = JsonFileStore(directory, "steps", WorkflowStep, poll_interval=interval)
    configs = JsonFileStore(directory, "github_configs", GitHubConfig, poll_interval=interval, kind="GitHub config")
    gateway = GitHubGateway(
        base_url=settings.github.api_base_url,
        timeout=settings.github.timeout_seconds,
        run_lookup_delay=settings.github.run_lookup_delay_seconds,
        validation_cache_ttl=settings.github.validation_cache_ttl_seconds,
    )
    orchestrator = ReleaseWorkflowOrchestrator(gateway, steps)
    return ReleaseService(releases, steps, configs, orchestrator, settings)


def _run(ctx: click.Context, action: Callable[[ReleaseService], Awaitable[None]]) -> None:
    """Run an async action against the service, turning errors into exit codes."""
    settings: RocketSettings = ctx.obj["settings"]

    async def _main() -> None:
        service = _build_service(settings)
        try:
            await action(service)
        finally:
            await service.orchestrator.gateway.close()

    try:
        asyncio.run(_main())
    except RocketError as e:
        click.echo(f"Error: {e.message}", err=True)
        log.debug("command_failed", command=ctx.info_name, exc_info=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        sys.exit(130)


def _unwrap(outcome: Outcome[T]) -> T:
    for warning in outcome.warnings:
        click.echo(f"Warning: {warning}", err=True)
    return outcome.unwrap()


def _describe_step(step: WorkflowStep) -> str:
    mark = STATUS_MARKS.get(step.status.value, "?")
    line = f"[{mark}] {step.step_number:>2}. {step.title} ({step.status})"
    if step.github_pr_url:
        line += f"  PR #{step.github_pr_number} {step.github_pr_state}: {step.github_pr_url}"
    elif step.action_run_id is not None or step.action_status:
        line += f"  run {step.action_run_id or '-'} {step.action_status} {step.action_conclusion}".rstrip()
        if step.action_url:
            line += f": {step.action_url}"
    return line


def _echo_step(step: WorkflowStep) -> None:
    click.echo(_describe_step(step))
    if step.notes:
        click.echo(f"     notes: {step.notes}")


# Pipeline and references


@cli.command()
def pipeline() -> None:
    """Show the default release pipeline."""
    click.echo(f"Default pipeline (template {PIPELINE_TEMPLATE_VERSION}, {len(DEFAULT_PIPELINE)} steps):\n")
    for entry in DEFAULT_PIPELINE:
        line = f"{entry.step_number:>2}. {entry.title} [{entry.type}]"
        if entry.repository_type is not None:
            line += f" {entry.repository_type}: {entry.source_branch} -> {entry.target_branch}"
        if not entry.is_required:
            line += " (optional)"
        click.echo(line)


@cli.command("parse-ref")
@click.argument("reference")
def parse_ref(reference: str) -> None:
    """Show how a workflow reference is interpreted."""
    info = parse_workflow_reference(reference)
    if info is None:
        click.echo(f"Error: Not a valid workflow reference: {reference}", err=True)
        sys.exit(1)

    click.echo(f"Repository: {info.repository_ref}")
    click.echo(f"Workflow:   {info.workflow_id}")
    if info.parameters:
        click.echo("Parameters:")
        for key, value in info.parameters.items():
            click.echo(f"  {key} = {value}")


# Project configuration


def _parse_workflow_options(values: tuple[str, ...]) -> dict[str, str]:
    workflows: dict[str, str] = {}
    for value in values:
        step_type, sep, reference = value.partition("=")
        if not sep or not reference:
            raise ValidationError(f"Expected TYPE=REFERENCE, got: {value}")
        try:
            key = StepType(step_type.strip().upper()).value
        except ValueError as e:
            raise ValidationError(f"Unknown step type: {step_type}") from e
        workflows[key] = reference.strip()
    return workflows


@cli.command()
@click.argument("project_id")
@click.option("--app-repo", help="App repository (owner/repo or GitHub URL)")
@click.option("--bff-repo", help="BFF repository (owner/repo or GitHub URL)")
@click.option("--token", envvar="GITHUB_TOKEN", help="GitHub token [env: GITHUB_TOKEN]")
@click.option("--base-branch", help="Default head branch for pull requests")
@click.option("--target-branch", help="Default base branch for pull requests")
@click.option("--workflow", "workflows", multiple=True, help="Workflow reference as STEP_TYPE=REFERENCE")
@click.pass_context
def configure(
    ctx: click.Context,
    project_id: str,
    app_repo: str | None,
    bff_repo: str | None,
    token: str | None,
    base_branch: str | None,
    target_branch: str | None,
    workflows: tuple[str, ...],
) -> None:
    """Create or update a project's GitHub configuration."""

    async def _configure(service: ReleaseService) -> None:
        existing = await service.get_github_config(project_id)
        config = existing.value if existing.success and existing.value else GitHubConfig(project_id=project_id)

        update: dict[str, Any] = {}
        if app_repo is not None:
            update["app_repository_url"] = app_repo
        if bff_repo is not None:
            update["bff_repository_url"] = bff_repo
        if token is not None:
            update["github_token"] = token
        if base_branch is not None:
            update["default_base_branch"] = base_branch
        if target_branch is not None:
            update["default_target_branch"] = target_branch
        if workflows:
            update["workflow_urls"] = {**config.workflow_urls, **_parse_workflow_options(workflows)}

        saved = _unwrap(await service.save_github_config(config.model_copy(update=update)))
        click.echo(f"Saved GitHub configuration for {saved.project_id}")
        click.echo(f"  app: {saved.app_repository_url or '-'}")
        click.echo(f"  bff: {saved.bff_repository_url or '-'}")
        click.echo(f"  token: {'set' if saved.github_token else 'not set'}")
        for step_type, reference in sorted(saved.workflow_urls.items()):
            click.echo(f"  {step_type}: {reference}")

    _run(ctx, _configure)


@cli.command()
@click.argument("project_id")
@click.pass_context
def validate(ctx: click.Context, project_id: str) -> None:
    """Check a project's GitHub token and repositories."""

    async def _validate(service: ReleaseService) -> None:
        results = _unwrap(await service.validate_github_config(project_id))
        for name, valid in results.items():
            click.echo(f"{name}: {'ok' if valid else 'FAILED'}")
        if not all(results.values()):
            raise ValidationError(f"GitHub configuration for {project_id} is not usable")

    _run(ctx, _validate)


# Releases


@cli.command("create-release")
@click.argument("project_id")
@click.argument("version")
@click.option("--title", default="", help="Release title (defaults to the version)")
@click.option("--description", default="", help="Release description")
@click.option("--notes", default="", help="Release notes")
@click.option("--by", "created_by", default="", help="User creating the release")
@click.pass_context
def create_release(
    ctx: click.Context,
    project_id: str,
    version: str,
    title: str,
    description: str,
    notes: str,
    created_by: str,
) -> None:
    """Create a release with the default pipeline."""

    async def _create(service: ReleaseService) -> None:
        release = _unwrap(
            await service.create_release(
                project_id,
                version,
                title=title,
                description=description,
                created_by=created_by,
                notes=notes,
            )
        )
        steps = _unwrap(await service.get_steps(release.id))
        click.echo(f"Created release {release.version} ({release.id}) with {len(steps)} steps")

    _run(ctx, _create)


@cli.command()
@click.argument("project_id", required=False)
@click.pass_context
def releases(ctx: click.Context, project_id: str | None) -> None:
    """List releases."""

    async def _list(service: ReleaseService) -> None:
        found = _unwrap(await service.list_releases(project_id))
        if not found:
            click.echo("No releases found.")
            return
        for release in found:
            click.echo(f"{release.id}  {release.project_id}  {release.version}  {release.status}")

    _run(ctx, _list)


@cli.command("release-status")
@click.argument("release_id")
@click.argument("status", type=click.Choice([s.value for s in ReleaseStatus], case_sensitive=False))
@click.option("--by", "actor", default=None, help="User changing the status")
@click.pass_context
def release_status(ctx: click.Context, release_id: str, status: str, actor: str | None) -> None:
    """Change a release's status."""

    async def _update(service: ReleaseService) -> None:
        release = _unwrap(await service.update_release_status(release_id, ReleaseStatus(status.upper()), actor))
        click.echo(f"Release {release.version} is now {release.status}")

    _run(ctx, _update)


@cli.command()
@click.argument("release_id")
@click.pass_context
def steps(ctx: click.Context, release_id: str) -> None:
    """Show a release's steps."""

    async def _steps(service: ReleaseService) -> None:
        release = _unwrap(await service.get_release(release_id))
        click.echo(f"Release {release.version} ({release.status})\n")
        for step in _unwrap(await service.get_steps(release_id)):
            _echo_step(step)

    _run(ctx, _steps)


# Step lifecycle


@cli.command()
@click.argument("step_id")
@click.option("--by", "actor", default=None, help="User starting the step")
@click.pass_context
def start(ctx: click.Context, step_id: str, actor: str | None) -> None:
    """Start a step."""

    async def _start(service: ReleaseService) -> None:
        _echo_step(_unwrap(await service.start_step(step_id, actor)))

    _run(ctx, _start)


@cli.command()
@click.argument("step_id")
@click.option("--by", "actor", required=True, help="User completing the step")
@click.option("--notes", default=None, help="Completion notes")
@click.pass_context
def complete(ctx: click.Context, step_id: str, actor: str, notes: str | None) -> None:
    """Mark a step completed."""

    async def _complete(service: ReleaseService) -> None:
        _echo_step(_unwrap(await service.complete_step(step_id, actor, notes)))

    _run(ctx, _complete)


@cli.command()
@click.argument("step_id")
@click.option("--reason", required=True, help="Why the step failed")
@click.option("--by", "actor", default=None, help="User reporting the failure")
@click.pass_context
def fail(ctx: click.Context, step_id: str, reason: str, actor: str | None) -> None:
    """Mark a step failed."""

    async def _fail(service: ReleaseService) -> None:
        _echo_step(_unwrap(await service.fail_step(step_id, reason, actor)))

    _run(ctx, _fail)


@cli.command()
@click.argument("step_id")
@click.option("--by", "actor", default=None, help="User retrying the step")
@click.pass_context
def retry(ctx: click.Context, step_id: str, actor: str | None) -> None:
    """Retry a failed step."""

    async def _retry(service: ReleaseService) -> None:
        _echo_step(_unwrap(await service.retry_step(step_id, actor)))

    _run(ctx, _retry)


@cli.command()
@click.argument("step_id")
@click.option("--by", "actor", default=None, help="User skipping the step")
@click.option("--notes", default=None, help="Why the step is skipped")
@click.pass_context
def skip(ctx: click.Context, step_id: str, actor: str | None, notes: str | None) -> None:
    """Skip a pending step."""

    async def _skip(service: ReleaseService) -> None:
        _echo_step(_unwrap(await service.skip_step(step_id, actor, notes)))

    _run(ctx, _skip)


@cli.command("depends-on")
@click.argument("step_id")
@click.argument("dependency_ids", nargs=-1)
@click.pass_context
def depends_on(ctx: click.Context, step_id: str, dependency_ids: tuple[str, ...]) -> None:
    """Set the steps a step waits for (no ids clears them)."""

    async def _set(service: ReleaseService) -> None:
        step = _unwrap(await service.set_dependencies(step_id, list(dependency_ids)))
        click.echo(f"Step {step.step_number} depends on: {', '.join(step.depends_on) or 'nothing'}")

    _run(ctx, _set)


# GitHub actions


@cli.command("create-pr")
@click.argument("step_id")
@click.pass_context
def create_pr(ctx: click.Context, step_id: str) -> None:
    """Open the pull request for a step."""

    async def _create(service: ReleaseService) -> None:
        _echo_step(_unwrap(await service.create_pr(step_id)))

    _run(ctx, _create)


@cli.command("check-pr")
@click.argument("step_id")
@click.pass_context
def check_pr(ctx: click.Context, step_id: str) -> None:
    """Refresh the pull request state of a step."""

    async def _check(service: ReleaseService) -> None:
        _echo_step(_unwrap(await service.check_pr_status(step_id)))

    _run(ctx, _check)


@cli.command("trigger-build")
@click.argument("step_id")
@click.option("--ref", default=None, help="Git ref when the workflow reference sets no branch")
@click.pass_context
def trigger_build(ctx: click.Context, step_id: str, ref: str | None) -> None:
    """Dispatch the build workflow for a build step."""

    async def _trigger(service: ReleaseService) -> None:
        _echo_step(_unwrap(await service.trigger_build(step_id, ref)))

    _run(ctx, _trigger)


@cli.command()
@click.argument("release_id")
@click.option("--count", type=int, default=0, help="Stop after this many updates (0 = run until interrupted)")
@click.pass_context
def watch(ctx: click.Context, release_id: str, count: int) -> None:
    """Print a release's steps whenever they change."""

    async def _watch(service: ReleaseService) -> None:
        release = _unwrap(await service.get_release(release_id))
        seen = 0
        async for snapshot in service.observe_steps(release_id):
            done = sum(1 for s in snapshot if s.status.is_terminal)
            click.echo(f"\nRelease {release.version}: {done}/{len(snapshot)} steps done")
            for step in snapshot:
                _echo_step(step)
            seen += 1
            if count and seen >= count:
                break

    _run(ctx, _watch)


@cli.command("show-config")
@click.pass_context
def show_config(ctx: click.Context) -> None:
    """Show the effective settings."""
    settings: RocketSettings = ctx.obj["settings"]
    click.echo(f"Store:        {settings.store_dir.resolve()} (poll every {settings.store.poll_interval_seconds}s)")
    click.echo(f"GitHub API:   {settings.github.api_base_url}")
    click.echo(f"Default ref:  {settings.workflow.default_ref}")
    click.echo(f"Log level:    {settings.log_level}")


if __name__ == "__main__":
    cli()
