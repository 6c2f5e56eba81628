from __future__ import annotations

import copy
import json
import re
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Iterable

from reviewer_assignment.models import (
    REVIEWER_ROLE,
    Assignment,
    AssignmentDetail,
    AssignmentStatus,
    AssignmentType,
    EventKind,
    NewAssignment,
    Notification,
    OutboxEvent,
    OutgoingEmail,
    PerformanceRecord,
    Reviewer,
    Submission,
)
from reviewer_assignment.storage import DuplicateAssignmentError, StorageError

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
ADMIN_ID = 50
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
VOCABULARY = ("python", "ml", "web", "data", "security", "networks")


class KeywordEmbedder:
    """Bag-of-words vectors over a fixed vocabulary."""

    def __init__(self, vocabulary: Iterable[str] = VOCABULARY) -> None:
        self.vocabulary = list(vocabulary)
        self.calls: list[str] = []

    def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        words = re.findall(r"[a-z]+", text.lower())
        return [float(words.count(term)) for term in self.vocabulary]


class MappingEmbedder:
    def __init__(self, vectors: dict[str, list[float]]) -> None:
        self.vectors = vectors

    def embed(self, text: str) -> list[float]:
        return self.vectors[text]


class ClosableEmbedder(KeywordEmbedder):
    def __init__(self) -> None:
        super().__init__()
        self.closed = False

    def close(self) -> None:
        self.closed = True


class FailingEmbedder:
    def embed(self, text: str) -> list[float]:
        raise ConnectionError("embedding service unreachable")


class RecordingMailer:
    def __init__(self) -> None:
        self.sent: list[OutgoingEmail] = []

    def send(self, message: OutgoingEmail) -> bool:
        self.sent.append(message)
        return True


class FailingMailer:
    def __init__(self, failures: int = 1_000) -> None:
        self.failures = failures
        self.attempts = 0
        self.sent: list[OutgoingEmail] = []

    def send(self, message: OutgoingEmail) -> bool:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise ConnectionError("smtp server unavailable")
        self.sent.append(message)
        return True


@dataclass
class _State:
    users: dict[int, Reviewer] = field(default_factory=dict)
    roles: dict[int, set[str]] = field(default_factory=dict)
    submissions: dict[int, Submission] = field(default_factory=dict)
    assignments: dict[int, Assignment] = field(default_factory=dict)
    reviews: set[int] = field(default_factory=set)
    performance: dict[tuple[int, int], PerformanceRecord] = field(default_factory=dict)
    notifications: list[tuple[Notification, datetime]] = field(default_factory=list)
    events: dict[int, OutboxEvent] = field(default_factory=dict)
    next_assignment_id: int = 1
    next_event_id: int = 1


class InMemorySession:
    def __init__(self, store: "InMemoryStore") -> None:
        self.store = store
        self.state = store.state

    def _maybe_fail(self, operation: str) -> None:
        if operation in self.store.fail_on:
            raise StorageError(f"{operation} failed")

    def get_submission(self, submission_id: int) -> Submission | None:
        self._maybe_fail("get_submission")
        return self.state.submissions.get(submission_id)

    def get_reviewer(self, user_id: int) -> Reviewer | None:
        return self.state.users.get(user_id)

    def has_role(self, user_id: int, role: str) -> bool:
        return role in self.state.roles.get(user_id, set())

    def list_reviewers(self) -> list[Reviewer]:
        return [
            reviewer
            for user_id, reviewer in sorted(self.state.users.items())
            if self.has_role(user_id, REVIEWER_ROLE)
        ]

    def lock_reviewer(self, reviewer_id: int) -> None:
        self.store.locked.append(reviewer_id)

    def insert_assignment(self, new: NewAssignment) -> Assignment:
        self._maybe_fail("insert_assignment")
        for existing in self.state.assignments.values():
            if (existing.submission_id, existing.reviewer_id) == (new.submission_id, new.reviewer_id):
                raise DuplicateAssignmentError(new.submission_id, new.reviewer_id)
        assignment = Assignment(
            id=self.state.next_assignment_id,
            submission_id=new.submission_id,
            reviewer_id=new.reviewer_id,
            assigned_by=new.assigned_by,
            assignment_type=new.assignment_type,
            status=AssignmentStatus.ASSIGNED,
            assigned_at=new.assigned_at,
            skill_match_score=new.skill_match_score,
            deadline=new.deadline,
        )
        self.state.next_assignment_id += 1
        self.state.assignments[assignment.id] = assignment
        return replace(assignment)

    def get_assignment(self, assignment_id: int) -> Assignment | None:
        assignment = self.state.assignments.get(assignment_id)
        return replace(assignment) if assignment else None

    def find_assignment(self, submission_id: int, reviewer_id: int) -> Assignment | None:
        if self.store.hide_existing_assignments:
            return None
        for assignment in self.state.assignments.values():
            if (assignment.submission_id, assignment.reviewer_id) == (submission_id, reviewer_id):
                return replace(assignment)
        return None

    def update_assignment(self, assignment: Assignment) -> Assignment:
        self.state.assignments[assignment.id] = replace(assignment)
        return replace(assignment)

    def delete_assignment(self, assignment_id: int) -> None:
        self.state.assignments.pop(assignment_id, None)

    def list_assignments(
        self,
        *,
        submission_id: int | None = None,
        reviewer_id: int | None = None,
        statuses: Iterable[AssignmentStatus] | None = None,
        semester_id: int | None = None,
    ) -> list[Assignment]:
        wanted = set(statuses) if statuses is not None else None
        rows = []
        newest_first = sorted(
            self.state.assignments.values(), key=lambda a: (a.assigned_at, a.id), reverse=True
        )
        for assignment in newest_first:
            if submission_id is not None and assignment.submission_id != submission_id:
                continue
            if reviewer_id is not None and assignment.reviewer_id != reviewer_id:
                continue
            if wanted is not None and assignment.status not in wanted:
                continue
            if semester_id is not None:
                submission = self.state.submissions.get(assignment.submission_id)
                if submission is None or submission.semester_id != semester_id:
                    continue
            rows.append(replace(assignment))
        return rows

    def count_assignments_by_reviewer(
        self,
        statuses: Iterable[AssignmentStatus],
        semester_id: int | None = None,
    ) -> dict[int, int]:
        counts: dict[int, int] = {}
        for assignment in self.list_assignments(statuses=statuses, semester_id=semester_id):
            counts[assignment.reviewer_id] = counts.get(assignment.reviewer_id, 0) + 1
        return counts

    def list_assignment_details(
        self, statuses: Iterable[AssignmentStatus]
    ) -> list[AssignmentDetail]:
        details = [
            AssignmentDetail(
                assignment=assignment,
                reviewer_name=self.state.users[assignment.reviewer_id].username,
                submission_title=self.state.submissions[assignment.submission_id].title,
            )
            for assignment in self.list_assignments(statuses=statuses)
            if assignment.submission_id in self.state.submissions
        ]
        return sorted(details, key=lambda d: (d.reviewer_name, d.assignment.assigned_at))

    def has_reviews(self, assignment_id: int) -> bool:
        return assignment_id in self.state.reviews

    def get_performance(self, reviewer_id: int, semester_id: int) -> PerformanceRecord | None:
        return self.state.performance.get((reviewer_id, semester_id))

    def latest_performance(self, reviewer_id: int) -> PerformanceRecord | None:
        records = [
            record
            for (owner, _), record in self.state.performance.items()
            if owner == reviewer_id
        ]
        return max(
            records,
            key=lambda record: (record.last_updated or EPOCH, record.semester_id),
            default=None,
        )

    def increment_total_assignments(
        self, reviewer_id: int, semester_id: int, now: datetime
    ) -> PerformanceRecord:
        self._maybe_fail("increment_total_assignments")
        current = self.state.performance.get(
            (reviewer_id, semester_id), PerformanceRecord(reviewer_id, semester_id)
        )
        record = replace(
            current, total_assignments=current.total_assignments + 1, last_updated=now
        )
        self.state.performance[(reviewer_id, semester_id)] = record
        return record

    def insert_notification(self, notification: Notification, now: datetime) -> None:
        self._maybe_fail("insert_notification")
        self.state.notifications.append((notification, now))

    def enqueue_event(self, kind: EventKind, payload: dict, now: datetime) -> int:
        event = OutboxEvent(
            id=self.state.next_event_id,
            kind=EventKind(kind),
            payload=json.loads(json.dumps(payload)),
            created_at=now,
        )
        self.state.next_event_id += 1
        self.state.events[event.id] = event
        return event.id

    def list_pending_events(
        self,
        max_attempts: int,
        limit: int = 100,
        event_ids: Iterable[int] | None = None,
    ) -> list[OutboxEvent]:
        wanted = set(event_ids) if event_ids is not None else None
        pending = [
            event
            for event_id, event in sorted(self.state.events.items())
            if event.delivered_at is None
            and event.attempts < max_attempts
            and (wanted is None or event_id in wanted)
        ]
        return pending[:limit]

    def mark_event_delivered(self, event_id: int, now: datetime) -> None:
        event = self.state.events[event_id]
        self.state.events[event_id] = replace(
            event, delivered_at=now, attempts=event.attempts + 1, last_error=None
        )

    def mark_event_failed(self, event_id: int, error: str) -> None:
        event = self.state.events[event_id]
        self.state.events[event_id] = replace(
            event, attempts=event.attempts + 1, last_error=error
        )


class InMemoryStore:
    """Single-writer store: one transaction at a time, rolled back on error."""

    def __init__(self) -> None:
        self.state = _State()
        self.fail_on: set[str] = set()
        self.hide_existing_assignments = False
        self.locked: list[int] = []
        self.open_transactions = 0
        self._lock = threading.RLock()

    @contextmanager
    def transaction(self):
        with self._lock:
            snapshot = copy.deepcopy(self.state)
            self.open_transactions += 1
            try:
                yield InMemorySession(self)
            except BaseException:
                self.state = snapshot
                raise
            finally:
                self.open_transactions -= 1

    # Seeding helpers

    def add_user(self, reviewer: Reviewer, *roles: str) -> Reviewer:
        self.state.users[reviewer.id] = reviewer
        self.state.roles[reviewer.id] = set(roles)
        return reviewer

    def add_reviewer(self, reviewer: Reviewer) -> Reviewer:
        return self.add_user(reviewer, REVIEWER_ROLE)

    def add_submission(self, submission: Submission) -> Submission:
        self.state.submissions[submission.id] = submission
        return submission

    def add_performance(self, record: PerformanceRecord) -> PerformanceRecord:
        self.state.performance[(record.reviewer_id, record.semester_id)] = record
        return record

    def add_review(self, assignment_id: int) -> None:
        self.state.reviews.add(assignment_id)

    def seed_assignment(
        self,
        submission_id: int,
        reviewer_id: int,
        assigned_at: datetime,
        status: AssignmentStatus = AssignmentStatus.ASSIGNED,
        **fields,
    ) -> Assignment:
        assignment = Assignment(
            id=self.state.next_assignment_id,
            submission_id=submission_id,
            reviewer_id=reviewer_id,
            assigned_by=fields.pop("assigned_by", 1),
            assignment_type=fields.pop("assignment_type", AssignmentType.PRIMARY),
            status=status,
            assigned_at=assigned_at,
            **fields,
        )
        self.state.next_assignment_id += 1
        self.state.assignments[assignment.id] = assignment
        return assignment

    @property
    def assignments(self) -> list[Assignment]:
        return sorted(self.state.assignments.values(), key=lambda a: a.id)

    @property
    def notifications(self) -> list[Notification]:
        return [notification for notification, _ in self.state.notifications]

    @property
    def events(self) -> list[OutboxEvent]:
        return [event for _, event in sorted(self.state.events.items())]
