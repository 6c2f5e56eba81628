from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Iterator

from psycopg2 import errors
from psycopg2.extras import Json

from .db import db_cursor
from .models import (
    REVIEWER_ROLE,
    Assignment,
    AssignmentDetail,
    AssignmentStatus,
    AssignmentType,
    EventKind,
    NewAssignment,
    Notification,
    OutboxEvent,
    PerformanceRecord,
    ProficiencyLevel,
    Reviewer,
    Skill,
    Submission,
)
from .storage import DuplicateAssignmentError

ASSIGNMENT_COLUMNS = """
    a.id, a.submission_id, a.reviewer_id, a.assigned_by, a.assignment_type,
    a.skill_match_score, a.deadline, a.status, a.assigned_at, a.started_at, a.completed_at
"""

# Namespace for pg_advisory_xact_lock(int, int) keys taken per reviewer.
REVIEWER_LOCK_NAMESPACE = 7301


def _as_float(value: Decimal | float | None) -> float | None:
    return None if value is None else float(value)


def _assignment_from_row(row: dict) -> Assignment:
    return Assignment(
        id=row["id"],
        submission_id=row["submission_id"],
        reviewer_id=row["reviewer_id"],
        assigned_by=row["assigned_by"],
        assignment_type=AssignmentType(row["assignment_type"]),
        skill_match_score=_as_float(row["skill_match_score"]),
        deadline=row["deadline"],
        status=AssignmentStatus(row["status"]),
        assigned_at=row["assigned_at"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
    )


def _performance_from_row(row: dict) -> PerformanceRecord:
    return PerformanceRecord(
        reviewer_id=row["reviewer_id"],
        semester_id=row["semester_id"],
        total_assignments=row["total_assignments"],
        completed_assignments=row["completed_assignments"],
        average_time_minutes=_as_float(row["average_time_minutes"]),
        average_score_given=_as_float(row["average_score_given"]),
        on_time_rate=_as_float(row["on_time_rate"]),
        quality_rating=_as_float(row["quality_rating"]),
        last_updated=row["last_updated"],
    )


def _status_values(statuses: Iterable[AssignmentStatus]) -> list[str]:
    return [AssignmentStatus(status).value for status in statuses]


class PostgresSession:
    """Session bound to one open cursor; all calls share its transaction."""

    def __init__(self, cursor, schema: str) -> None:
        self.cursor = cursor
        self.schema = schema

    def get_submission(self, submission_id: int) -> Submission | None:
        self.cursor.execute(
            f"""
            SELECT id, title, semester_id, topic_title, category, description,
                   objectives, methodology, expected_outcomes
              FROM {self.schema}.submissions
             WHERE id = %s
            """,
            (submission_id,),
        )
        row = self.cursor.fetchone()
        return Submission(**row) if row else None

    def _skills_by_reviewer(self, reviewer_ids: list[int]) -> dict[int, list[Skill]]:
        if not reviewer_ids:
            return {}
        self.cursor.execute(
            f"""
            SELECT reviewer_id, skill_tag, proficiency_level
              FROM {self.schema}.reviewer_skills
             WHERE reviewer_id = ANY(%s)
             ORDER BY reviewer_id, skill_tag
            """,
            (reviewer_ids,),
        )
        skills: dict[int, list[Skill]] = {}
        for row in self.cursor.fetchall():
            skills.setdefault(row["reviewer_id"], []).append(
                Skill(tag=row["skill_tag"], level=ProficiencyLevel(row["proficiency_level"]))
            )
        return skills

    def get_reviewer(self, user_id: int) -> Reviewer | None:
        self.cursor.execute(
            f"SELECT id, username, email FROM {self.schema}.users WHERE id = %s",
            (user_id,),
        )
        row = self.cursor.fetchone()
        if not row:
            return None
        skills = self._skills_by_reviewer([row["id"]])
        return Reviewer(
            id=row["id"],
            username=row["username"],
            email=row["email"],
            skills=skills.get(row["id"], []),
        )

    def has_role(self, user_id: int, role: str) -> bool:
        self.cursor.execute(
            f"SELECT 1 FROM {self.schema}.user_roles WHERE user_id = %s AND role = %s",
            (user_id, role),
        )
        return self.cursor.fetchone() is not None

    def list_reviewers(self) -> list[Reviewer]:
        self.cursor.execute(
            f"""
            SELECT u.id, u.username, u.email
              FROM {self.schema}.users u
              JOIN {self.schema}.user_roles r
                ON r.user_id = u.id
             WHERE r.role = %s
             ORDER BY u.id
            """,
            (REVIEWER_ROLE,),
        )
        rows = self.cursor.fetchall()
        skills = self._skills_by_reviewer([row["id"] for row in rows])
        return [
            Reviewer(
                id=row["id"],
                username=row["username"],
                email=row["email"],
                skills=skills.get(row["id"], []),
            )
            for row in rows
        ]

    def lock_reviewer(self, reviewer_id: int) -> None:
        self.cursor.execute(
            "SELECT pg_advisory_xact_lock(%s, %s)",
            (REVIEWER_LOCK_NAMESPACE, reviewer_id),
        )

    def insert_assignment(self, new: NewAssignment) -> Assignment:
        self.cursor.execute("SAVEPOINT insert_assignment")
        try:
            self.cursor.execute(
                f"""
                INSERT INTO {self.schema}.reviewer_assignments AS a
                    (submission_id, reviewer_id, assigned_by, assignment_type,
                     skill_match_score, deadline, status, assigned_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING {ASSIGNMENT_COLUMNS}
                """,
                (
                    new.submission_id,
                    new.reviewer_id,
                    new.assigned_by,
                    new.assignment_type.value,
                    new.skill_match_score,
                    new.deadline,
                    AssignmentStatus.ASSIGNED.value,
                    new.assigned_at,
                ),
            )
        except errors.UniqueViolation as exc:
            self.cursor.execute("ROLLBACK TO SAVEPOINT insert_assignment")
            raise DuplicateAssignmentError(new.submission_id, new.reviewer_id) from exc
        self.cursor.execute("RELEASE SAVEPOINT insert_assignment")
        return _assignment_from_row(self.cursor.fetchone())

    def get_assignment(self, assignment_id: int) -> Assignment | None:
        self.cursor.execute(
            f"SELECT {ASSIGNMENT_COLUMNS} FROM {self.schema}.reviewer_assignments a WHERE a.id = %s",
            (assignment_id,),
        )
        row = self.cursor.fetchone()
        return _assignment_from_row(row) if row else None

    def find_assignment(self, submission_id: int, reviewer_id: int) -> Assignment | None:
        self.cursor.execute(
            f"""
            SELECT {ASSIGNMENT_COLUMNS}
              FROM {self.schema}.reviewer_assignments a
             WHERE a.submission_id = %s AND a.reviewer_id = %s
            """,
            (submission_id, reviewer_id),
        )
        row = self.cursor.fetchone()
        return _assignment_from_row(row) if row else None

    def update_assignment(self, assignment: Assignment) -> Assignment:
        self.cursor.execute(
            f"""
            UPDATE {self.schema}.reviewer_assignments AS a
               SET status = %s,
                   started_at = %s,
                   completed_at = %s,
                   deadline = %s
             WHERE a.id = %s
            RETURNING {ASSIGNMENT_COLUMNS}
            """,
            (
                assignment.status.value,
                assignment.started_at,
                assignment.completed_at,
                assignment.deadline,
                assignment.id,
            ),
        )
        return _assignment_from_row(self.cursor.fetchone())

    def delete_assignment(self, assignment_id: int) -> None:
        self.cursor.execute(
            f"DELETE FROM {self.schema}.reviewer_assignments WHERE id = %s",
            (assignment_id,),
        )

    def list_assignments(
        self,
        *,
        submission_id: int | None = None,
        reviewer_id: int | None = None,
        statuses: Iterable[AssignmentStatus] | None = None,
        semester_id: int | None = None,
    ) -> list[Assignment]:
        clauses = []
        params: list = []
        if submission_id is not None:
            clauses.append("a.submission_id = %s")
            params.append(submission_id)
        if reviewer_id is not None:
            clauses.append("a.reviewer_id = %s")
            params.append(reviewer_id)
        if statuses is not None:
            clauses.append("a.status = ANY(%s)")
            params.append(_status_values(statuses))
        if semester_id is not None:
            clauses.append("s.semester_id = %s")
            params.append(semester_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        self.cursor.execute(
            f"""
            SELECT {ASSIGNMENT_COLUMNS}
              FROM {self.schema}.reviewer_assignments a
              JOIN {self.schema}.submissions s
                ON s.id = a.submission_id
             {where}
             ORDER BY a.assigned_at DESC, a.id DESC
            """,
            params,
        )
        return [_assignment_from_row(row) for row in self.cursor.fetchall()]

    def count_assignments_by_reviewer(
        self,
        statuses: Iterable[AssignmentStatus],
        semester_id: int | None = None,
    ) -> dict[int, int]:
        semester_clause = ""
        params: list = [_status_values(statuses)]
        if semester_id is not None:
            semester_clause = "AND s.semester_id = %s"
            params.append(semester_id)
        self.cursor.execute(
            f"""
            SELECT a.reviewer_id, COUNT(*) AS assignment_count
              FROM {self.schema}.reviewer_assignments a
              JOIN {self.schema}.submissions s
                ON s.id = a.submission_id
             WHERE a.status = ANY(%s)
             {semester_clause}
             GROUP BY a.reviewer_id
            """,
            params,
        )
        return {row["reviewer_id"]: row["assignment_count"] for row in self.cursor.fetchall()}

    def list_assignment_details(
        self, statuses: Iterable[AssignmentStatus]
    ) -> list[AssignmentDetail]:
        self.cursor.execute(
            f"""
            SELECT {ASSIGNMENT_COLUMNS},
                   u.username AS reviewer_name,
                   s.title AS submission_title
              FROM {self.schema}.reviewer_assignments a
              JOIN {self.schema}.users u
                ON u.id = a.reviewer_id
              JOIN {self.schema}.submissions s
                ON s.id = a.submission_id
             WHERE a.status = ANY(%s)
             ORDER BY u.username, a.assigned_at ASC
            """,
            (_status_values(statuses),),
        )
        return [
            AssignmentDetail(
                assignment=_assignment_from_row(row),
                reviewer_name=row["reviewer_name"],
                submission_title=row["submission_title"],
            )
            for row in self.cursor.fetchall()
        ]

    def has_reviews(self, assignment_id: int) -> bool:
        self.cursor.execute(
            f"SELECT EXISTS (SELECT 1 FROM {self.schema}.reviews WHERE assignment_id = %s) AS has_reviews",
            (assignment_id,),
        )
        return bool(self.cursor.fetchone()["has_reviews"])

    def get_performance(self, reviewer_id: int, semester_id: int) -> PerformanceRecord | None:
        self.cursor.execute(
            f"""
            SELECT * FROM {self.schema}.reviewer_performance
             WHERE reviewer_id = %s AND semester_id = %s
            """,
            (reviewer_id, semester_id),
        )
        row = self.cursor.fetchone()
        return _performance_from_row(row) if row else None

    def latest_performance(self, reviewer_id: int) -> PerformanceRecord | None:
        self.cursor.execute(
            f"""
            SELECT * FROM {self.schema}.reviewer_performance
             WHERE reviewer_id = %s
             ORDER BY last_updated DESC NULLS LAST, semester_id DESC
             LIMIT 1
            """,
            (reviewer_id,),
        )
        row = self.cursor.fetchone()
        return _performance_from_row(row) if row else None

    def increment_total_assignments(
        self, reviewer_id: int, semester_id: int, now: datetime
    ) -> PerformanceRecord:
        self.cursor.execute(
            f"""
            INSERT INTO {self.schema}.reviewer_performance AS p
                (reviewer_id, semester_id, total_assignments, completed_assignments, last_updated)
            VALUES (%s, %s, 1, 0, %s)
            ON CONFLICT (reviewer_id, semester_id) DO UPDATE
               SET total_assignments = p.total_assignments + 1,
                   last_updated = EXCLUDED.last_updated
            RETURNING *
            """,
            (reviewer_id, semester_id, now),
        )
        return _performance_from_row(self.cursor.fetchone())

    def insert_notification(self, notification: Notification, now: datetime) -> None:
        self.cursor.execute(
            f"""
            INSERT INTO {self.schema}.notifications
                (user_id, title, message, type, related_entity_type, related_entity_id, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            """,
            (
                notification.user_id,
                notification.title,
                notification.message,
                notification.type.value,
                notification.related_entity_type,
                notification.related_entity_id,
                now,
            ),
        )

    def enqueue_event(self, kind: EventKind, payload: dict, now: datetime) -> int:
        self.cursor.execute(
            f"""
            INSERT INTO {self.schema}.outbox_events (kind, payload, created_at)
            VALUES (%s, %s, %s)
            RETURNING id
            """,
            (kind.value, Json(payload), now),
        )
        return self.cursor.fetchone()["id"]

    def list_pending_events(
        self,
        max_attempts: int,
        limit: int = 100,
        event_ids: Iterable[int] | None = None,
    ) -> list[OutboxEvent]:
        id_clause = ""
        params: list = [max_attempts]
        if event_ids is not None:
            id_clause = "AND id = ANY(%s)"
            params.append(list(event_ids))
        params.append(limit)
        self.cursor.execute(
            f"""
            SELECT id, kind, payload, attempts, last_error, created_at, delivered_at
              FROM {self.schema}.outbox_events
             WHERE delivered_at IS NULL
               AND attempts < %s
               {id_clause}
             ORDER BY id
             LIMIT %s
             FOR UPDATE SKIP LOCKED
            """,
            params,
        )
        return [
            OutboxEvent(
                id=row["id"],
                kind=EventKind(row["kind"]),
                payload=row["payload"],
                attempts=row["attempts"],
                last_error=row["last_error"],
                created_at=row["created_at"],
                delivered_at=row["delivered_at"],
            )
            for row in self.cursor.fetchall()
        ]

    def mark_event_delivered(self, event_id: int, now: datetime) -> None:
        self.cursor.execute(
            f"""
            UPDATE {self.schema}.outbox_events
               SET delivered_at = %s, attempts = attempts + 1, last_error = NULL
             WHERE id = %s
            """,
            (now, event_id),
        )

    def mark_event_failed(self, event_id: int, error: str) -> None:
        self.cursor.execute(
            f"""
            UPDATE {self.schema}.outbox_events
               SET attempts = attempts + 1, last_error = %s
             WHERE id = %s
            """,
            (error[:2000], event_id),
        )


class PostgresStore:
    def __init__(self, database_url: str | None = None, schema: str = "reviewer_assignment") -> None:
        self.database_url = database_url
        self.schema = schema

    @contextmanager
    def transaction(self) -> Iterator[PostgresSession]:
        with db_cursor(self.database_url) as cursor:
            yield PostgresSession(cursor, self.schema)
