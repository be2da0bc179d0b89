"""
Workflow step lifecycle and dependency gating.

Transition table::

    PENDING     -> IN_PROGRESS | SKIPPED
    IN_PROGRESS -> COMPLETED | FAILED
    FAILED      -> IN_PROGRESS            (retry)

COMPLETED and SKIPPED are terminal. A step is eligible to start when every
step named in ``depends_on`` is COMPLETED or SKIPPED.

Every function here is pure: steps are never mutated, a new copy is
returned. Persisting the result is the caller's job.

Example:
    >>> step = start(step, siblings, actor="alice")
    >>> step = complete(step, actor="alice", notes="Build shared in #releases")
"""

from collections.abc import Iterable
from datetime import datetime

import structlog

from release_rocket.enums import StepStatus
from release_rocket.exceptions import DependencyNotMetError, InvalidTransitionError, ValidationError
from release_rocket.models.domain import WorkflowStep, utc_now

log = structlog.get_logger(__name__)

TRANSITIONS: dict[StepStatus, frozenset[StepStatus]] = {
    StepStatus.PENDING: frozenset({StepStatus.IN_PROGRESS, StepStatus.SKIPPED}),
    StepStatus.IN_PROGRESS: frozenset({StepStatus.COMPLETED, StepStatus.FAILED}),
    StepStatus.FAILED: frozenset({StepStatus.IN_PROGRESS}),
    StepStatus.COMPLETED: frozenset(),
    StepStatus.SKIPPED: frozenset(),
}


def can_transition(current: StepStatus, target: StepStatus) -> bool:
    """Check if ``current -> target`` is in the transition table."""
    return target in TRANSITIONS[current]


def validate_transition(current: StepStatus, target: StepStatus) -> None:
    """Raise InvalidTransitionError unless ``current -> target`` is allowed."""
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target)


def _edge_problem(step: WorkflowStep, dependency: WorkflowStep | None) -> str | None:
    if dependency is None:
        return "unknown step"
    if dependency.id == step.id:
        return "self reference"
    if dependency.release_id != step.release_id:
        return "step of another release"
    if dependency.step_number >= step.step_number:
        return "step that does not come earlier"
    return None


def _resolve_dependencies(step: WorkflowStep, steps: Iterable[WorkflowStep]) -> list[WorkflowStep]:
    """Return the valid dependencies of a step, dropping broken edges.

    Only edges to earlier steps of the same release survive, which also
    rules out cycles introduced by manual edits.
    """
    by_id = {s.id: s for s in steps}
    resolved: list[WorkflowStep] = []
    for dependency_id in step.depends_on:
        dependency = by_id.get(dependency_id)
        problem = _edge_problem(step, dependency)
        if dependency is None or problem is not None:
            log.warning(
                "dependency_edge_ignored",
                step_id=step.id,
                step_number=step.step_number,
                dependency_id=dependency_id,
                reason=problem,
            )
            continue
        resolved.append(dependency)
    return resolved


def unmet_dependencies(step: WorkflowStep, steps: Iterable[WorkflowStep]) -> list[WorkflowStep]:
    """Return the dependencies of a step that are not COMPLETED or SKIPPED."""
    return [d for d in _resolve_dependencies(step, steps) if not d.status.satisfies_dependency]


def is_eligible(step: WorkflowStep, steps: Iterable[WorkflowStep]) -> bool:
    """Check if every dependency of ``step`` is COMPLETED or SKIPPED.

    A step without dependencies is always eligible.

    Args:
        step: Step to check.
        steps: All steps of the release (may include ``step`` itself).
    """
    if not step.depends_on:
        return True
    return not unmet_dependencies(step, steps)


def validate_dependencies(step: WorkflowStep, steps: Iterable[WorkflowStep]) -> None:
    """Reject dependency edges that break the ordering invariant.

    Raises:
        ValidationError: If an edge points at an unknown step, the step
            itself, another release, or a step with an equal or larger
            step number.
    """
    by_id = {s.id: s for s in steps}
    problems = []
    for dependency_id in step.depends_on:
        problem = _edge_problem(step, by_id.get(dependency_id))
        if problem is not None:
            problems.append(f"{dependency_id} ({problem})")
    if problems:
        raise ValidationError(
            f"Step {step.step_number} has invalid dependencies: {', '.join(problems)}"
        )


def _ensure_eligible(step: WorkflowStep, steps: Iterable[WorkflowStep]) -> None:
    unmet = unmet_dependencies(step, steps)
    if unmet:
        raise DependencyNotMetError(step.step_number, sorted(d.step_number for d in unmet))


def _minutes_between(start: datetime | None, end: datetime) -> int | None:
    if start is None:
        return None
    return max(0, int((end - start).total_seconds() // 60))


def start(step: WorkflowStep, steps: Iterable[WorkflowStep], actor: str | None = None) -> WorkflowStep:
    """Move a PENDING step to IN_PROGRESS after re-checking eligibility."""
    validate_transition(step.status, StepStatus.IN_PROGRESS)
    if step.status is not StepStatus.PENDING:
        raise InvalidTransitionError(step.status, StepStatus.IN_PROGRESS)
    _ensure_eligible(step, steps)

    now = utc_now()
    update: dict[str, object] = {
        "status": StepStatus.IN_PROGRESS,
        "started_at": now,
        "updated_at": now,
    }
    if actor:
        update["assigned_to"] = actor
    return step.model_copy(update=update)


def complete(step: WorkflowStep, actor: str, notes: str | None = None) -> WorkflowStep:
    """Mark an IN_PROGRESS step COMPLETED.

    Stamps ``completed_at``/``completed_by``. Dependent steps are left
    alone; starting them is a separate action.
    """
    validate_transition(step.status, StepStatus.COMPLETED)

    now = utc_now()
    update: dict[str, object] = {
        "status": StepStatus.COMPLETED,
        "completed_at": now,
        "completed_by": actor,
        "updated_at": now,
    }
    duration = _minutes_between(step.started_at, now)
    if duration is not None:
        update["actual_duration"] = duration
    if notes is not None:
        update["notes"] = notes
    return step.model_copy(update=update)


def fail(step: WorkflowStep, reason: str, actor: str | None = None) -> WorkflowStep:
    """Mark an IN_PROGRESS step FAILED, recording ``reason`` in its notes."""
    validate_transition(step.status, StepStatus.FAILED)

    note = f"Failed: {reason}" if reason else "Failed"
    if actor:
        note = f"{note} (by {actor})"
    notes = f"{step.notes}\n{note}" if step.notes else note
    return step.model_copy(
        update={
            "status": StepStatus.FAILED,
            "notes": notes,
            "updated_at": utc_now(),
        }
    )


def retry(step: WorkflowStep, steps: Iterable[WorkflowStep], actor: str | None = None) -> WorkflowStep:
    """Move a FAILED step back to IN_PROGRESS."""
    if step.status is not StepStatus.FAILED:
        raise InvalidTransitionError(step.status, StepStatus.IN_PROGRESS)
    _ensure_eligible(step, steps)

    now = utc_now()
    update: dict[str, object] = {
        "status": StepStatus.IN_PROGRESS,
        "started_at": now,
        "completed_at": None,
        "updated_at": now,
    }
    if actor:
        update["assigned_to"] = actor
    return step.model_copy(update=update)


def skip(step: WorkflowStep, actor: str | None = None, notes: str | None = None) -> WorkflowStep:
    """Manually skip a PENDING step."""
    validate_transition(step.status, StepStatus.SKIPPED)

    update: dict[str, object] = {
        "status": StepStatus.SKIPPED,
        "updated_at": utc_now(),
    }
    if actor:
        update["completed_by"] = actor
    if notes is not None:
        update["notes"] = notes
    return step.model_copy(update=update)
