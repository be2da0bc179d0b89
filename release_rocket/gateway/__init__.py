"""VCS/CI gateways.

Key Exports:
    VcsGateway: Abstract contract used by the orchestrator.
    GitHubGateway: PyGithub-backed implementation.
"""

from release_rocket.gateway.base import VcsGateway
from release_rocket.gateway.github import GitHubGateway

__all__ = ["GitHubGateway", "VcsGateway"]
