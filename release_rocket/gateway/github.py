"""GitHub gateway implementation using PyGithub."""

import asyncio
from collections.abc import Callable, Mapping
from typing import Any, TypeVar

import structlog
from github import Auth, Github, GithubException  # type: ignore[import-not-found]
from github.PullRequest import PullRequest as GHPullRequest  # type: ignore[import-not-found]
from github.WorkflowRun import WorkflowRun as GHWorkflowRun  # type: ignore[import-not-found]

from release_rocket.exceptions import ExternalCallError
from release_rocket.gateway.base import VcsGateway
from release_rocket.models.domain import ActionRunRecord, PullRequestRecord
from release_rocket.utils.caching import AsyncCache, cache_key

log = structlog.get_logger(__name__)

T = TypeVar("T")

_REJECTED_STATUSES = frozenset({401, 403, 404})


async def _run_sync(func: Callable[[], T]) -> T:
    """Run a synchronous PyGithub call in a thread pool."""
    return await asyncio.to_thread(func)


def _error_message(e: GithubException) -> str:
    data = e.data
    if isinstance(data, Mapping) and data.get("message"):
        return str(data["message"])
    return str(data) if data else "request failed"


def _external_error(action: str, e: GithubException) -> ExternalCallError:
    return ExternalCallError(
        f"Failed to {action}: {_error_message(e)}",
        status_code=e.status,
        response_text=str(e.data),
    )


def _workflow_key(workflow_id: str) -> int | str:
    # Numeric ids and file names (build.yml) are both accepted by the API
    return int(workflow_id) if workflow_id.isdigit() else workflow_id


class GitHubGateway(VcsGateway):
    """Gateway to github.com (or GitHub Enterprise) via PyGithub.

    One PyGithub client is kept per token. Validation results are cached
    per gateway instance for ``validation_cache_ttl`` seconds.
    """

    def __init__(
        self,
        base_url: str = "https://api.github.com",
        timeout: int = 30,
        run_lookup_delay: float = 2.0,
        validation_cache_ttl: int = 300,
    ):
        """Initialize the gateway.

        Args:
            base_url: GitHub API base URL (for GitHub Enterprise)
            timeout: HTTP timeout in seconds
            run_lookup_delay: Seconds to wait after a dispatch before looking
                up the run it created
            validation_cache_ttl: Seconds validation results are reused
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.run_lookup_delay = run_lookup_delay
        self._clients: dict[str, Github] = {}
        self._validation_cache = AsyncCache(ttl_seconds=validation_cache_ttl)

    def _client(self, credential: str) -> Github:
        token = credential.strip()
        client = self._clients.get(token)
        if client is None:
            client = Github(auth=Auth.Token(token), base_url=self.base_url, timeout=self.timeout)
            self._clients[token] = client
        return client

    async def close(self) -> None:
        """Close all PyGithub clients."""
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            await _run_sync(client.close)

    async def create_pull_request(
        self,
        repo_ref: str,
        credential: str,
        title: str,
        body: str,
        head: str,
        base: str,
    ) -> PullRequestRecord:
        """Create a pull request."""
        log.info("create_pull_request", repository=repo_ref, head=head, base=base)

        def _create_pr() -> GHPullRequest:
            repo = self._client(credential).get_repo(repo_ref)
            return repo.create_pull(title=title, body=body, head=head, base=base)

        try:
            gh_pr = await _run_sync(_create_pr)
        except GithubException as e:
            log.error("github_create_pr_failed", repository=repo_ref, status=e.status, error=str(e))
            raise _external_error("create pull request", e) from e

        pr = self._convert_pull_request(gh_pr)
        log.info("pr_created", repository=repo_ref, number=pr.number, url=pr.url)
        return pr

    async def get_pull_request(self, repo_ref: str, credential: str, number: int) -> PullRequestRecord:
        """Get pull request by number."""
        log.debug("get_pull_request", repository=repo_ref, number=number)

        def _get_pr() -> GHPullRequest:
            return self._client(credential).get_repo(repo_ref).get_pull(number)

        try:
            gh_pr = await _run_sync(_get_pr)
        except GithubException as e:
            log.error("github_get_pr_failed", repository=repo_ref, number=number, status=e.status)
            raise _external_error(f"fetch pull request #{number}", e) from e

        return self._convert_pull_request(gh_pr)

    async def dispatch_workflow(
        self,
        repo_ref: str,
        credential: str,
        workflow_id: str,
        ref: str,
        inputs: Mapping[str, str],
    ) -> ActionRunRecord:
        """Dispatch a workflow and look up the run it started.

        GitHub's dispatch endpoint returns no run information, so after
        ``run_lookup_delay`` seconds the most recent dispatch run of the
        workflow is reported.
        """
        log.info(
            "dispatch_workflow",
            repository=repo_ref,
            workflow_id=workflow_id,
            ref=ref,
            inputs=sorted(inputs),
        )

        def _dispatch() -> Any:
            workflow = self._client(credential).get_repo(repo_ref).get_workflow(_workflow_key(workflow_id))
            accepted = workflow.create_dispatch(ref=ref, inputs=dict(inputs))
            return workflow, accepted

        try:
            workflow, accepted = await _run_sync(_dispatch)
        except GithubException as e:
            log.error(
                "github_dispatch_failed",
                repository=repo_ref,
                workflow_id=workflow_id,
                status=e.status,
                error=str(e),
            )
            raise _external_error(f"dispatch workflow {workflow_id}", e) from e

        if not accepted:
            raise ExternalCallError(f"Failed to dispatch workflow {workflow_id}: dispatch was not accepted")

        if self.run_lookup_delay > 0:
            await asyncio.sleep(self.run_lookup_delay)

        def _latest_run() -> GHWorkflowRun | None:
            return next(iter(workflow.get_runs(event="workflow_dispatch")), None)

        try:
            gh_run = await _run_sync(_latest_run)
        except GithubException as e:
            # The dispatch itself went through; report it without run details
            log.warning("github_run_lookup_failed", repository=repo_ref, workflow_id=workflow_id, status=e.status)
            gh_run = None

        if gh_run is None:
            log.info("workflow_dispatched", repository=repo_ref, workflow_id=workflow_id, run_id=None)
            return ActionRunRecord(id=None, status="queued", workflow_id=workflow_id, head_branch=ref)

        run = self._convert_run(gh_run)
        log.info(
            "workflow_dispatched",
            repository=repo_ref,
            workflow_id=workflow_id,
            run_id=run.id,
            url=run.url,
        )
        return run

    async def validate_credential(self, credential: str) -> bool:
        """Check the token by fetching the authenticated user."""
        if not credential or not credential.strip():
            return False

        key = cache_key("credential", self.base_url, credential.strip())
        cached = await self._validation_cache.get(key)
        if cached is not None:
            return bool(cached)

        try:
            login = await _run_sync(lambda: self._client(credential).get_user().login)
        except GithubException as e:
            if e.status in _REJECTED_STATUSES:
                log.info("github_credential_rejected", status=e.status)
                await self._validation_cache.set(key, False)
                return False
            raise _external_error("validate token", e) from e

        log.info("github_credential_valid", login=login)
        await self._validation_cache.set(key, True)
        return True

    async def validate_repository(self, repo_ref: str, credential: str) -> bool:
        """Check that the repository is visible with the token."""
        if not credential or not credential.strip():
            return False

        key = cache_key("repository", self.base_url, repo_ref, credential.strip())
        cached = await self._validation_cache.get(key)
        if cached is not None:
            return bool(cached)

        try:
            full_name = await _run_sync(lambda: self._client(credential).get_repo(repo_ref).full_name)
        except GithubException as e:
            if e.status in _REJECTED_STATUSES:
                log.info("github_repository_unavailable", repository=repo_ref, status=e.status)
                await self._validation_cache.set(key, False)
                return False
            raise _external_error(f"validate repository {repo_ref}", e) from e

        log.info("github_repository_valid", repository=full_name)
        await self._validation_cache.set(key, True)
        return True

    def _convert_pull_request(self, gh_pr: GHPullRequest) -> PullRequestRecord:
        """Convert a PyGithub PullRequest to a PullRequestRecord."""
        return PullRequestRecord(
            id=gh_pr.id,
            number=gh_pr.number,
            title=gh_pr.title,
            state=gh_pr.state,
            url=gh_pr.html_url,
            head=gh_pr.head.ref,
            base=gh_pr.base.ref,
            body=gh_pr.body or "",
            created_at=gh_pr.created_at,
            updated_at=gh_pr.updated_at,
            merged=bool(gh_pr.merged),
            mergeable=gh_pr.mergeable,
        )

    def _convert_run(self, gh_run: GHWorkflowRun) -> ActionRunRecord:
        """Convert a PyGithub WorkflowRun to an ActionRunRecord."""
        return ActionRunRecord(
            id=gh_run.id,
            status=gh_run.status or "",
            url=gh_run.html_url or "",
            conclusion=gh_run.conclusion or "",
            run_number=gh_run.run_number,
            workflow_id=str(gh_run.workflow_id),
            head_branch=gh_run.head_branch or "",
            head_sha=gh_run.head_sha or "",
            created_at=gh_run.created_at,
            updated_at=gh_run.updated_at,
            triggered_by=gh_run.actor.login if gh_run.actor else "",
        )
