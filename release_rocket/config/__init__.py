"""Configuration for the release-rocket engine.

Example:
    >>> from release_rocket.config import RocketSettings
    >>> settings = RocketSettings.from_yaml("rocket.yaml")
    >>> settings.workflow.default_ref
    'release'
"""

from release_rocket.config.settings import (
    GitHubSettings,
    RocketSettings,
    StoreSettings,
    WorkflowSettings,
)

__all__ = ["GitHubSettings", "RocketSettings", "StoreSettings", "WorkflowSettings"]
