from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from .models import Assignment, AssignmentStatus

FORWARD_TRANSITIONS = {
    AssignmentStatus.ASSIGNED: {AssignmentStatus.IN_PROGRESS, AssignmentStatus.COMPLETED},
    AssignmentStatus.IN_PROGRESS: {AssignmentStatus.COMPLETED},
    AssignmentStatus.COMPLETED: set(),
}


class InvalidTransitionError(Exception):
    def __init__(self, current: AssignmentStatus, target: AssignmentStatus) -> None:
        super().__init__(f"Cannot move assignment from {current.value} to {target.value}")
        self.current = current
        self.target = target


def is_forward(current: AssignmentStatus, target: AssignmentStatus) -> bool:
    return target in FORWARD_TRANSITIONS[current]


def _stamp(assignment: Assignment, target: AssignmentStatus, now: datetime) -> Assignment:
    started_at = assignment.started_at
    completed_at = assignment.completed_at
    if target is AssignmentStatus.IN_PROGRESS and started_at is None:
        # An override back from Completed must not start after completion.
        started_at = min(now, completed_at) if completed_at else now
    elif target is AssignmentStatus.COMPLETED and completed_at is None:
        completed_at = now
    return replace(assignment, status=target, started_at=started_at, completed_at=completed_at)


def start_review(assignment: Assignment, now: datetime) -> Assignment:
    """Assigned -> InProgress. Any other starting state is rejected."""
    if assignment.status is not AssignmentStatus.ASSIGNED:
        raise InvalidTransitionError(assignment.status, AssignmentStatus.IN_PROGRESS)
    return _stamp(assignment, AssignmentStatus.IN_PROGRESS, now)


def apply_status(
    assignment: Assignment,
    target: AssignmentStatus,
    now: datetime,
    *,
    strict: bool = False,
) -> Assignment:
    """Set ``target`` directly, the administrative path.

    Without ``strict`` any status may be set, including backwards moves.
    Timestamps are only written the first time a state is entered.
    """
    target = AssignmentStatus(target)
    if strict and target is not assignment.status and not is_forward(assignment.status, target):
        raise InvalidTransitionError(assignment.status, target)
    return _stamp(assignment, target, now)
