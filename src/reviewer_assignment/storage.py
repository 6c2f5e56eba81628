"""Storage contract shared by the PostgreSQL repository and any other backend.

Every component reads and writes through a :class:`Session` obtained from
:meth:`Store.transaction`. A transaction commits when the ``with`` block exits
normally and rolls back when it raises.
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from datetime import datetime
from typing import Iterable, Protocol

from .models import (
    Assignment,
    AssignmentDetail,
    AssignmentStatus,
    EventKind,
    NewAssignment,
    Notification,
    OutboxEvent,
    PerformanceRecord,
    Reviewer,
    Submission,
)


class StorageError(Exception):
    """Raised for storage failures the caller cannot recover from."""


class DuplicateAssignmentError(StorageError):
    def __init__(self, submission_id: int, reviewer_id: int) -> None:
        super().__init__(
            f"Reviewer {reviewer_id} is already assigned to submission {submission_id}"
        )
        self.submission_id = submission_id
        self.reviewer_id = reviewer_id


class Session(Protocol):
    # Submissions and users
    def get_submission(self, submission_id: int) -> Submission | None: ...

    def get_reviewer(self, user_id: int) -> Reviewer | None: ...

    def has_role(self, user_id: int, role: str) -> bool: ...

    def list_reviewers(self) -> list[Reviewer]: ...

    # Assignments
    def lock_reviewer(self, reviewer_id: int) -> None: ...

    def insert_assignment(self, new: NewAssignment) -> Assignment: ...

    def get_assignment(self, assignment_id: int) -> Assignment | None: ...

    def find_assignment(self, submission_id: int, reviewer_id: int) -> Assignment | None: ...

    def update_assignment(self, assignment: Assignment) -> Assignment: ...

    def delete_assignment(self, assignment_id: int) -> None: ...

    def list_assignments(
        self,
        *,
        submission_id: int | None = None,
        reviewer_id: int | None = None,
        statuses: Iterable[AssignmentStatus] | None = None,
        semester_id: int | None = None,
    ) -> list[Assignment]: ...

    def count_assignments_by_reviewer(
        self,
        statuses: Iterable[AssignmentStatus],
        semester_id: int | None = None,
    ) -> dict[int, int]: ...

    def list_assignment_details(
        self, statuses: Iterable[AssignmentStatus]
    ) -> list[AssignmentDetail]: ...

    def has_reviews(self, assignment_id: int) -> bool: ...

    # Performance
    def get_performance(self, reviewer_id: int, semester_id: int) -> PerformanceRecord | None: ...

    def latest_performance(self, reviewer_id: int) -> PerformanceRecord | None: ...

    def increment_total_assignments(
        self, reviewer_id: int, semester_id: int, now: datetime
    ) -> PerformanceRecord: ...

    # Notifications and outbox
    def insert_notification(self, notification: Notification, now: datetime) -> None: ...

    def enqueue_event(self, kind: EventKind, payload: dict, now: datetime) -> int: ...

    def list_pending_events(
        self,
        max_attempts: int,
        limit: int = 100,
        event_ids: Iterable[int] | None = None,
    ) -> list[OutboxEvent]: ...

    def mark_event_delivered(self, event_id: int, now: datetime) -> None: ...

    def mark_event_failed(self, event_id: int, error: str) -> None: ...


class Store(Protocol):
    def transaction(self) -> AbstractContextManager[Session]: ...
