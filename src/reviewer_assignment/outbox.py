"""Side effects of an assignment, recorded and delivered through an outbox.

Events are written in the same transaction as the assignment, so they exist
exactly when the assignment does. Delivery happens after commit, one event
per transaction, and a failed delivery is retried on a later dispatch until
``max_attempts`` is reached.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable

from .logging import get_logger
from .models import (
    Assignment,
    EventKind,
    Notification,
    NotificationType,
    OutboxEvent,
    OutgoingEmail,
    Reviewer,
    Submission,
)
from .notifications import Mailer, assignment_email, assignment_notification
from .performance import PerformanceAggregator
from .storage import Session, Store

logger = get_logger(__name__)


class DeliveryError(RuntimeError):
    pass


def enqueue_assignment_events(
    session: Session,
    assignment: Assignment,
    submission: Submission,
    reviewer: Reviewer,
    now: datetime,
) -> list[int]:
    notification = asdict(assignment_notification(assignment, submission))
    notification["type"] = notification["type"].value
    event_ids = [
        session.enqueue_event(EventKind.NOTIFICATION, notification, now),
        session.enqueue_event(
            EventKind.EMAIL, asdict(assignment_email(assignment, submission, reviewer)), now
        ),
    ]
    if submission.semester_id is None:
        logger.warning(
            "performance_update_skipped",
            reason="submission has no semester",
            submission_id=submission.id,
            reviewer_id=reviewer.id,
        )
    else:
        event_ids.append(
            session.enqueue_event(
                EventKind.PERFORMANCE,
                {"reviewer_id": reviewer.id, "semester_id": submission.semester_id},
                now,
            )
        )
    return event_ids


@dataclass
class DispatchReport:
    delivered: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)


class OutboxDispatcher:
    def __init__(
        self,
        store: Store,
        mailer: Mailer,
        aggregator: PerformanceAggregator | None = None,
        *,
        max_attempts: int = 5,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.mailer = mailer
        self.aggregator = aggregator or PerformanceAggregator()
        self.max_attempts = max_attempts
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.handlers: dict[EventKind, Callable[[Session, dict], None]] = {
            EventKind.NOTIFICATION: self._deliver_notification,
            EventKind.EMAIL: self._deliver_email,
            EventKind.PERFORMANCE: self._deliver_performance,
        }

    def _deliver_notification(self, session: Session, payload: dict) -> None:
        notification = Notification(**{**payload, "type": NotificationType(payload["type"])})
        session.insert_notification(notification, self.clock())

    def _deliver_email(self, session: Session, payload: dict) -> None:
        if not self.mailer.send(OutgoingEmail(**payload)):
            raise DeliveryError(f"Mailer refused message to {payload.get('to')}")

    def _deliver_performance(self, session: Session, payload: dict) -> None:
        self.aggregator.record_assignment(
            session, payload["reviewer_id"], payload["semester_id"], self.clock()
        )

    def _deliver(self, event_id: int) -> bool | None:
        """Deliver one event. Returns None when another worker already took it."""
        try:
            with self.store.transaction() as session:
                pending = session.list_pending_events(
                    self.max_attempts, limit=1, event_ids=[event_id]
                )
                if not pending:
                    return None
                event: OutboxEvent = pending[0]
                self.handlers[event.kind](session, event.payload)
                session.mark_event_delivered(event.id, self.clock())
            return True
        except Exception as exc:
            logger.warning("outbox_delivery_failed", event_id=event_id, exc_info=True)
            try:
                with self.store.transaction() as session:
                    session.mark_event_failed(event_id, f"{type(exc).__name__}: {exc}")
            except Exception:
                logger.exception("outbox_mark_failed_error", event_id=event_id)
            return False

    def dispatch(self, event_ids: Iterable[int] | None = None, limit: int = 100) -> DispatchReport:
        """Deliver pending events; never raises."""
        report = DispatchReport()
        try:
            with self.store.transaction() as session:
                pending = [
                    event.id
                    for event in session.list_pending_events(
                        self.max_attempts, limit=limit, event_ids=event_ids
                    )
                ]
        except Exception:
            logger.exception("outbox_listing_failed")
            return report

        for event_id in pending:
            delivered = self._deliver(event_id)
            if delivered is True:
                report.delivered.append(event_id)
            elif delivered is False:
                report.failed.append(event_id)
        if pending:
            logger.info(
                "outbox_dispatched",
                delivered=len(report.delivered),
                failed=len(report.failed),
            )
        return report

    def dispatch_pending(self, limit: int = 100) -> DispatchReport:
        """Retry everything still undelivered."""
        return self.dispatch(None, limit=limit)
