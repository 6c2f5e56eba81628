from __future__ import annotations

from datetime import datetime

from .config import ScoringConfig
from .logging import get_logger
from .models import PerformanceRecord
from .storage import Session

logger = get_logger(__name__)


def performance_score(record: PerformanceRecord | None, config: ScoringConfig) -> float:
    if record is None:
        return 0.0
    return (
        (record.quality_rating or 0.0) * config.quality_weight
        + (record.on_time_rate or 0.0) * config.on_time_weight
        + (record.average_score_given or 0.0) * config.score_given_weight
    )


class PerformanceAggregator:
    """Keeps one performance record per (reviewer, semester).

    Only ``total_assignments`` is maintained here. Completion counts, averages,
    on-time rate and quality rating are filled in by the reporting process and
    only read by this package.
    """

    def record_assignment(
        self, session: Session, reviewer_id: int, semester_id: int, now: datetime
    ) -> PerformanceRecord:
        record = session.increment_total_assignments(reviewer_id, semester_id, now)
        logger.info(
            "performance_total_incremented",
            reviewer_id=reviewer_id,
            semester_id=semester_id,
            total_assignments=record.total_assignments,
        )
        return record

    def lookup(
        self, session: Session, reviewer_id: int, semester_id: int | None = None
    ) -> PerformanceRecord | None:
        if semester_id is not None:
            return session.get_performance(reviewer_id, semester_id)
        return session.latest_performance(reviewer_id)
