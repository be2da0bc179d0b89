"""Custom exception hierarchy for the release-rocket orchestration engine.

Every failure the engine can report is one of these types. Operations that
cross the service boundary never raise them; they are wrapped into a
failure :class:`~release_rocket.models.domain.Outcome` instead.

Exception Hierarchy:
    RocketError (base)
    ├── ConfigurationError
    ├── ValidationError
    ├── StateError
    │   ├── InvalidTransitionError
    │   └── DependencyNotMetError
    ├── ExternalCallError
    │   └── MergeNotSupportedError
    ├── PersistenceError
    └── NotFoundError

Example Usage:
    >>> from release_rocket.exceptions import ValidationError
    >>> try:
    ...     repo = config.repository_for(step.repository_type)
    ... except KeyError as e:
    ...     raise ValidationError(f"Unknown repository type: {e}") from e
"""

from typing import Any


class RocketError(Exception):
    """Base exception for all release-rocket errors.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ConfigurationError(RocketError):
    """Settings file is missing, unreadable, or fails validation."""

    pass


class ValidationError(RocketError):
    """A request is malformed before anything is attempted.

    Examples:
        - Repository URL not configured for the step's repository type
        - Operation requested on the wrong kind of step
        - Malformed workflow or repository reference
        - Dependency edge pointing at a later step
    """

    pass


class StateError(RocketError):
    """A step is not in a state that allows the requested action."""

    pass


class InvalidTransitionError(StateError):
    """Status transition not present in the step transition table.

    Attributes:
        current: Status the step is in
        target: Status that was requested
    """

    def __init__(self, current: Any, target: Any) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Invalid step transition: {current} -> {target}")


class DependencyNotMetError(StateError):
    """Step cannot start while some of its dependencies are unfinished.

    Attributes:
        step_number: Number of the step that was blocked
        unmet: Step numbers of the dependencies that are not yet
            COMPLETED or SKIPPED
    """

    def __init__(self, step_number: int, unmet: list[int]) -> None:
        self.step_number = step_number
        self.unmet = unmet
        numbers = ", ".join(str(n) for n in unmet)
        super().__init__(f"Step {step_number} is blocked by unfinished steps: {numbers}")


class ExternalCallError(RocketError):
    """The VCS/CI gateway call failed.

    Attributes:
        message: Error message without the status suffix
        status_code: HTTP status code (if applicable)
        response_text: Response body text (if applicable)
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_text: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.response_text = response_text

        full_message = message
        if status_code:
            full_message = f"{message} (HTTP {status_code})"

        super().__init__(full_message)
        self.message = message


class MergeNotSupportedError(ExternalCallError):
    """Pull requests are merged on GitHub, never through the gateway."""

    def __init__(self) -> None:
        super().__init__(
            "PR merging should be done directly on GitHub. "
            "Open the pull request on GitHub and merge it there."
        )


class PersistenceError(RocketError):
    """The store could not read or write a record."""

    pass


class NotFoundError(RocketError):
    """A requested record does not exist.

    Attributes:
        kind: Record kind (e.g. "release", "step")
        record_id: Identifier that was looked up
    """

    def __init__(self, kind: str, record_id: str) -> None:
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind[:1].upper()}{kind[1:]} not found: {record_id}")
