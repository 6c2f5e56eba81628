from __future__ import annotations

from .models import ACTIVE_STATUSES, AssignmentStatus
from .storage import Session


class WorkloadTracker:
    """Counts assignments that are still Assigned or InProgress."""

    def active_count(self, session: Session, reviewer_id: int) -> int:
        return self.active_counts(session).get(reviewer_id, 0)

    def active_counts(self, session: Session, semester_id: int | None = None) -> dict[int, int]:
        return session.count_assignments_by_reviewer(ACTIVE_STATUSES, semester_id=semester_id)

    def completed_counts(self, session: Session, semester_id: int | None = None) -> dict[int, int]:
        return session.count_assignments_by_reviewer(
            (AssignmentStatus.COMPLETED,), semester_id=semester_id
        )
