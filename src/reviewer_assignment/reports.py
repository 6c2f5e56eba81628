from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable

from .models import AssignmentDetail, AssignmentStatus


@dataclass(frozen=True)
class ReviewerBacklog:
    reviewer: str
    total: int
    in_progress: int
    stale: int
    oldest_age_days: float


@dataclass(frozen=True)
class BacklogReport:
    total: int
    stale: int
    avg_age_days: float
    oldest_age_days: float
    bucket_counts: dict[str, int]
    reviewer_stats: list[ReviewerBacklog]
    oldest_assignments: list[tuple[AssignmentDetail, float]]


@dataclass(frozen=True)
class ThroughputReviewer:
    reviewer: str
    completed: int
    avg_cycle_days: float
    on_time_rate: float | None


@dataclass(frozen=True)
class ThroughputReport:
    total_completed: int
    avg_cycle_days: float
    min_cycle_days: float
    max_cycle_days: float
    on_time_rate: float | None
    daily_counts: dict[str, int]
    reviewer_stats: list[ThroughputReviewer]


def normalize_timestamp(timestamp: datetime) -> datetime:
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=timezone.utc)
    return timestamp


def days_between(start: datetime, end: datetime) -> float:
    return (normalize_timestamp(end) - normalize_timestamp(start)).total_seconds() / 86400


def bucket_age(age_days: float) -> str:
    if age_days < 3:
        return "0-2"
    if age_days < 6:
        return "3-5"
    if age_days < 11:
        return "6-10"
    return "11+"


def build_backlog_report(
    details: Iterable[AssignmentDetail],
    now: datetime,
    stale_days: int,
) -> BacklogReport:
    """Age of every active assignment, rolled up per reviewer."""
    bucket_counts = {"0-2": 0, "3-5": 0, "6-10": 0, "11+": 0}
    per_reviewer: dict[str, dict[str, float]] = {}
    aged: list[tuple[AssignmentDetail, float]] = []

    for detail in details:
        assignment = detail.assignment
        if not assignment.is_active:
            continue
        age_days = days_between(assignment.assigned_at, now)
        aged.append((detail, age_days))
        bucket_counts[bucket_age(age_days)] += 1

        stats = per_reviewer.setdefault(
            detail.reviewer_name, {"total": 0, "in_progress": 0, "stale": 0, "oldest": 0.0}
        )
        stats["total"] += 1
        if assignment.status is AssignmentStatus.IN_PROGRESS:
            stats["in_progress"] += 1
        if age_days >= stale_days:
            stats["stale"] += 1
        stats["oldest"] = max(stats["oldest"], age_days)

    ages = [age for _, age in aged]
    reviewer_stats = sorted(
        (
            ReviewerBacklog(
                reviewer=reviewer,
                total=int(stats["total"]),
                in_progress=int(stats["in_progress"]),
                stale=int(stats["stale"]),
                oldest_age_days=float(stats["oldest"]),
            )
            for reviewer, stats in per_reviewer.items()
        ),
        key=lambda item: (item.stale, item.total),
        reverse=True,
    )
    aged.sort(key=lambda item: item[1], reverse=True)

    return BacklogReport(
        total=len(ages),
        stale=sum(1 for age in ages if age >= stale_days),
        avg_age_days=sum(ages) / len(ages) if ages else 0.0,
        oldest_age_days=max(ages) if ages else 0.0,
        bucket_counts=bucket_counts,
        reviewer_stats=reviewer_stats,
        oldest_assignments=aged,
    )


def build_throughput_report(
    details: Iterable[AssignmentDetail],
    now: datetime,
    days: int,
) -> ThroughputReport:
    """Assigned-to-completed cycle time for reviews completed in the last ``days``."""
    cutoff = normalize_timestamp(now) - timedelta(days=days)
    daily_counts: dict[str, int] = {}
    per_reviewer: dict[str, dict[str, float]] = {}
    cycles: list[float] = []
    on_time = 0
    with_deadline = 0

    for detail in details:
        assignment = detail.assignment
        if assignment.completed_at is None:
            continue
        completed_at = normalize_timestamp(assignment.completed_at)
        if completed_at < cutoff:
            continue
        cycle_days = days_between(assignment.assigned_at, completed_at)
        cycles.append(cycle_days)
        day_key = completed_at.date().isoformat()
        daily_counts[day_key] = daily_counts.get(day_key, 0) + 1

        stats = per_reviewer.setdefault(
            detail.reviewer_name, {"total": 0, "cycle_sum": 0.0, "on_time": 0, "with_deadline": 0}
        )
        stats["total"] += 1
        stats["cycle_sum"] += cycle_days
        if assignment.deadline is not None:
            met = completed_at <= normalize_timestamp(assignment.deadline)
            with_deadline += 1
            on_time += int(met)
            stats["with_deadline"] += 1
            stats["on_time"] += int(met)

    reviewer_stats = sorted(
        (
            ThroughputReviewer(
                reviewer=reviewer,
                completed=int(stats["total"]),
                avg_cycle_days=stats["cycle_sum"] / stats["total"],
                on_time_rate=(
                    stats["on_time"] / stats["with_deadline"] if stats["with_deadline"] else None
                ),
            )
            for reviewer, stats in per_reviewer.items()
        ),
        key=lambda item: item.completed,
        reverse=True,
    )

    return ThroughputReport(
        total_completed=len(cycles),
        avg_cycle_days=sum(cycles) / len(cycles) if cycles else 0.0,
        min_cycle_days=min(cycles) if cycles else 0.0,
        max_cycle_days=max(cycles) if cycles else 0.0,
        on_time_rate=on_time / with_deadline if with_deadline else None,
        daily_counts=daily_counts,
        reviewer_stats=reviewer_stats,
    )
