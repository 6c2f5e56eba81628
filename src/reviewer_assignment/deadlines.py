from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Callable, Iterable

from .logging import get_logger
from .models import ACTIVE_STATUSES, AssignmentDetail, Notification, NotificationType
from .notifications import RELATED_ENTITY
from .reports import normalize_timestamp
from .storage import Store

logger = get_logger(__name__)


class AlertKind(str, Enum):
    UPCOMING = "upcoming"
    OVERDUE = "overdue"


@dataclass(frozen=True)
class DeadlineAlert:
    kind: AlertKind
    days: int
    detail: AssignmentDetail

    def to_notification(self) -> Notification:
        assignment = self.detail.assignment
        deadline = f"{assignment.deadline:%d/%m/%Y %H:%M}"
        if self.kind is AlertKind.UPCOMING:
            return Notification(
                user_id=assignment.reviewer_id,
                title=f"Review due in {self.days} day(s)",
                message=(
                    f"Your review of '{self.detail.submission_title}' is due on {deadline}. "
                    "Please complete it before the deadline."
                ),
                type=NotificationType.WARNING,
                related_entity_type=RELATED_ENTITY,
                related_entity_id=assignment.id,
            )
        return Notification(
            user_id=assignment.reviewer_id,
            title=f"Review overdue by {self.days} day(s)",
            message=(
                f"Your review of '{self.detail.submission_title}' is {self.days} day(s) overdue "
                f"(deadline: {deadline}). Please contact an administrator."
            ),
            type=NotificationType.ERROR,
            related_entity_type=RELATED_ENTITY,
            related_entity_id=assignment.id,
        )


def find_deadline_alerts(
    details: Iterable[AssignmentDetail],
    today: date,
    upcoming_days: int = 2,
) -> list[DeadlineAlert]:
    """Active assignments due within 1..upcoming_days days, or already overdue."""
    alerts: list[DeadlineAlert] = []
    for detail in details:
        assignment = detail.assignment
        if assignment.deadline is None or not assignment.is_active:
            continue
        days_left = (normalize_timestamp(assignment.deadline).date() - today).days
        if 1 <= days_left <= upcoming_days:
            alerts.append(DeadlineAlert(AlertKind.UPCOMING, days_left, detail))
        elif days_left < 0:
            alerts.append(DeadlineAlert(AlertKind.OVERDUE, -days_left, detail))
    return alerts


class DeadlineMonitor:
    def __init__(self, store: Store, clock: Callable[[], datetime] | None = None) -> None:
        self.store = store
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def run(self, now: datetime | None = None) -> list[DeadlineAlert]:
        now = now or self.clock()
        with self.store.transaction() as session:
            alerts = find_deadline_alerts(
                session.list_assignment_details(ACTIVE_STATUSES), now.date()
            )
            for alert in alerts:
                session.insert_notification(alert.to_notification(), now)
        logger.info(
            "deadline_check_completed",
            upcoming=sum(1 for alert in alerts if alert.kind is AlertKind.UPCOMING),
            overdue=sum(1 for alert in alerts if alert.kind is AlertKind.OVERDUE),
        )
        return alerts
