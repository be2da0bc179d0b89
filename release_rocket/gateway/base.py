"""
Abstract VCS/CI gateway.

The orchestrator talks to the hosting platform only through this
interface, so tests and alternative hosts can plug in their own
implementation.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping

from release_rocket.exceptions import MergeNotSupportedError
from release_rocket.models.domain import ActionRunRecord, PullRequestRecord


class VcsGateway(ABC):
    """Contract for pull request and workflow dispatch operations.

    Every call takes the repository (``owner/repo``) and the credential
    explicitly because each project carries its own token; a gateway
    instance is shared across projects.

    Failures are raised as :class:`~release_rocket.exceptions.ExternalCallError`
    carrying the HTTP status and response text where available. Gateways
    never retry; retriggering is a manual action.
    """

    @abstractmethod
    async def create_pull_request(
        self,
        repo_ref: str,
        credential: str,
        title: str,
        body: str,
        head: str,
        base: str,
    ) -> PullRequestRecord:
        """Open a pull request.

        Args:
            repo_ref: Repository in ``owner/repo`` form
            credential: Access token
            title: Pull request title
            body: Pull request description (Markdown)
            head: Branch containing the changes
            base: Branch the changes go into

        Returns:
            The created pull request.

        Raises:
            ExternalCallError: If the request fails, e.g. when there are no
                commits between ``head`` and ``base`` (HTTP 422).
        """
        pass

    @abstractmethod
    async def get_pull_request(self, repo_ref: str, credential: str, number: int) -> PullRequestRecord:
        """Fetch the current state of a pull request.

        Raises:
            ExternalCallError: If the request fails or the PR does not exist.
        """
        pass

    async def merge_pull_request(
        self,
        repo_ref: str,
        credential: str,
        number: int,
        merge_method: str = "merge",
    ) -> PullRequestRecord:
        """Refuse to merge.

        Merging happens on the hosting platform where reviewers see checks
        and approvals. Implementations must not override this.

        Raises:
            MergeNotSupportedError: Always.
        """
        raise MergeNotSupportedError()

    @abstractmethod
    async def dispatch_workflow(
        self,
        repo_ref: str,
        credential: str,
        workflow_id: str,
        ref: str,
        inputs: Mapping[str, str],
    ) -> ActionRunRecord:
        """Dispatch a workflow run.

        Args:
            repo_ref: Repository in ``owner/repo`` form
            credential: Access token
            workflow_id: Numeric workflow id or workflow file name
            ref: Git ref the workflow runs against
            inputs: Workflow inputs

        Returns:
            The run created by the dispatch. ``id`` is None when the run
            could not be looked up yet.

        Raises:
            ExternalCallError: If the dispatch is rejected.
        """
        pass

    @abstractmethod
    async def validate_credential(self, credential: str) -> bool:
        """Check if the token authenticates.

        Returns False for rejected tokens; raises ExternalCallError only for
        unexpected failures.
        """
        pass

    @abstractmethod
    async def validate_repository(self, repo_ref: str, credential: str) -> bool:
        """Check if the repository exists and the token can read it."""
        pass

    async def close(self) -> None:
        """Release client resources. Default does nothing."""
        return None
