from __future__ import annotations

import csv
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Iterator, Optional

import typer
from rich import print
from rich.table import Table

from .config import get_settings
from .db import db_cursor, load_sql
from .deadlines import DeadlineMonitor
from .embeddings import HttpEmbedder
from .eligibility import EligibilityFilter
from .logging import configure_logging
from .matching import MatchingEngine
from .models import ACTIVE_STATUSES, AssignmentRequest, AssignmentStatus, AssignmentType
from .notifications import SmtpMailer
from .orchestrator import AssignmentOrchestrator
from .outbox import OutboxDispatcher
from .reports import build_backlog_report, build_throughput_report
from .repository import PostgresStore
from .results import Result

app = typer.Typer(help="Reviewer matching and assignment CLI.")


@app.callback()
def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)


@lru_cache
def get_store() -> PostgresStore:
    settings = get_settings()
    return PostgresStore(settings.database_url, settings.db_schema)


def get_dispatcher() -> OutboxDispatcher:
    settings = get_settings()
    mailer = SmtpMailer(
        settings.smtp_server,
        settings.smtp_port,
        settings.smtp_username,
        settings.smtp_password,
        settings.smtp_from,
    )
    return OutboxDispatcher(get_store(), mailer, max_attempts=settings.outbox_max_attempts)


def build_embedder() -> HttpEmbedder:
    settings = get_settings()
    return HttpEmbedder(
        settings.embedding_api_key,
        base_url=settings.embedding_base_url,
        model=settings.embedding_model,
        timeout=settings.embedding_timeout,
    )


@contextmanager
def open_orchestrator() -> Iterator[AssignmentOrchestrator]:
    """Orchestrator for one command; closes the embedding client afterwards."""
    settings = get_settings()
    scoring = settings.scoring_config()
    embedder = build_embedder()
    try:
        yield AssignmentOrchestrator(
            get_store(),
            MatchingEngine(embedder, scoring, max_workers=settings.scoring_workers),
            eligibility=EligibilityFilter(scoring),
            dispatcher=get_dispatcher() if settings.dispatch_on_commit else None,
            max_active_assignments=settings.max_active_assignments,
            max_auto_assign=settings.max_auto_assign,
            strict_status_transitions=settings.strict_status_transitions,
        )
    finally:
        embedder.close()


def _unwrap(result: Result):
    if not result.ok:
        print(f"[red]{result.error.value}: {result.message}[/red]")
        raise typer.Exit(code=1)
    if result.message:
        print(f"[green]{result.message}[/green]")
    return result.value


def _fmt(value: float | None, pattern: str = "{:.2f}") -> str:
    return "-" if value is None else pattern.format(value)


def _assignment_table(title: str, assignments) -> Table:
    table = Table(title=title)
    table.add_column("ID", justify="right")
    table.add_column("Submission", justify="right")
    table.add_column("Reviewer", justify="right")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Skill Score", justify="right")
    table.add_column("Assigned At")
    table.add_column("Deadline")
    for assignment in assignments:
        table.add_row(
            str(assignment.id),
            str(assignment.submission_id),
            str(assignment.reviewer_id),
            assignment.assignment_type.value,
            assignment.status.value,
            _fmt(assignment.skill_match_score),
            f"{assignment.assigned_at:%Y-%m-%d %H:%M}",
            f"{assignment.deadline:%Y-%m-%d %H:%M}" if assignment.deadline else "-",
        )
    return table


def _matching_table(title: str, results) -> Table:
    table = Table(title=title)
    table.add_column("Reviewer")
    table.add_column("Active", justify="right")
    table.add_column("Skill", justify="right")
    table.add_column("Workload", justify="right")
    table.add_column("Performance", justify="right")
    table.add_column("Overall", justify="right")
    table.add_column("Matched Skills")
    table.add_column("Eligible")
    for result in results:
        table.add_row(
            f"{result.reviewer_name} (#{result.reviewer_id})",
            str(result.current_active_assignments),
            f"{result.skill_match_score:.2f}",
            f"{result.workload_score:.2f}",
            f"{result.performance_score:.2f}",
            f"{result.overall_score:.2f}",
            ", ".join(result.matched_skills),
            "yes" if result.is_eligible else "no: " + "; ".join(result.ineligibility_reasons),
        )
    return table


def _availability_table(title: str, rows) -> Table:
    table = Table(title=title)
    table.add_column("Reviewer")
    table.add_column("Active", justify="right")
    table.add_column("Completed", justify="right")
    table.add_column("Quality", justify="right")
    table.add_column("On Time", justify="right")
    table.add_column("Skills")
    table.add_column("Available")
    for row in rows:
        table.add_row(
            f"{row.username} (#{row.reviewer_id})",
            str(row.current_assignments),
            str(row.completed_assignments),
            _fmt(row.quality_rating),
            _fmt(row.on_time_rate, "{:.0%}"),
            ", ".join(row.skills),
            "yes" if row.is_available else f"no ({row.unavailable_reason or 'over limit'})",
        )
    return table


@app.command("init-db")
def init_db() -> None:
    """Create schema and tables."""
    settings = get_settings()
    sql = load_sql("001_init.sql", settings.db_schema)
    with db_cursor(settings.database_url) as cursor:
        cursor.execute(sql)
    print("[green]Database initialized.[/green]")


@app.command("assign")
def assign(
    submission_id: int,
    reviewer_id: int,
    assigner: int = typer.Option(..., help="User id performing the assignment."),
    assignment_type: AssignmentType = typer.Option(AssignmentType.PRIMARY, "--type"),
    deadline: Optional[datetime] = typer.Option(None, help="Review deadline."),
) -> None:
    """Assign one reviewer to a submission."""
    request = AssignmentRequest(submission_id, reviewer_id, assignment_type, deadline)
    with open_orchestrator() as orchestrator:
        assignment = _unwrap(orchestrator.assign_reviewer(request, assigner))
    print(_assignment_table("Assignment", [assignment]))


@app.command("bulk-assign")
def bulk_assign(
    path: Path = typer.Argument(..., exists=True, help="CSV with submission_id,reviewer_id[,type,deadline]."),
    assigner: int = typer.Option(..., help="User id performing the assignments."),
) -> None:
    """Assign reviewers from a CSV file; failures do not stop the batch."""
    requests = []
    with path.open(newline="", encoding="utf-8") as handle:
        for row in csv.DictReader(handle):
            requests.append(
                AssignmentRequest(
                    submission_id=int(row["submission_id"]),
                    reviewer_id=int(row["reviewer_id"]),
                    assignment_type=AssignmentType(row.get("type") or AssignmentType.PRIMARY),
                    deadline=datetime.fromisoformat(row["deadline"]) if row.get("deadline") else None,
                )
            )
    with open_orchestrator() as orchestrator:
        outcome = _unwrap(orchestrator.bulk_assign(requests, assigner))
    if outcome.succeeded:
        print(_assignment_table("Created Assignments", outcome.succeeded))
    if outcome.failed:
        table = Table(title="Failed Assignments")
        table.add_column("Submission", justify="right")
        table.add_column("Reviewer", justify="right")
        table.add_column("Error")
        table.add_column("Message")
        for failure in outcome.failed:
            table.add_row(
                str(failure.request.submission_id),
                str(failure.request.reviewer_id),
                failure.kind,
                failure.message,
            )
        print(table)


@app.command("auto-assign")
def auto_assign(
    submission_id: int,
    count: int = typer.Option(1, help="Number of reviewers to assign."),
    assigner: int = typer.Option(..., help="User id performing the assignment."),
    assignment_type: AssignmentType = typer.Option(AssignmentType.PRIMARY, "--type"),
    deadline: Optional[datetime] = typer.Option(None, help="Review deadline."),
) -> None:
    """Score all reviewers and assign the best eligible ones."""
    with open_orchestrator() as orchestrator:
        outcome = _unwrap(
            orchestrator.auto_assign(submission_id, count, assigner, assignment_type, deadline)
        )
    print(_matching_table("Considered Reviewers", outcome.considered))
    if outcome.assigned:
        print(_assignment_table("Assigned", outcome.assigned))
    for warning in outcome.warnings:
        print(f"[yellow]{warning}[/yellow]")


@app.command("suggest")
def suggest(
    submission_id: int,
    limit: int = typer.Option(5, help="Maximum suggestions."),
    by_score: bool = typer.Option(False, help="Rank by overall score only."),
) -> None:
    """Suggest reviewers for a submission."""
    with open_orchestrator() as orchestrator:
        if by_score:
            results = _unwrap(orchestrator.recommend_reviewers(submission_id, limit))
        else:
            results = _unwrap(orchestrator.suggest_reviewers(submission_id, limit))
    print(_matching_table("Reviewer Suggestions", results))


@app.command("analyze")
def analyze(reviewer_id: int, submission_id: int) -> None:
    """Show how one reviewer scores against a submission."""
    with open_orchestrator() as orchestrator:
        result = _unwrap(orchestrator.analyze_reviewer_match(reviewer_id, submission_id))
    print(_matching_table("Reviewer Match", [result]))


@app.command("available")
def available(submission_id: int) -> None:
    """Show which reviewers can take a submission."""
    with open_orchestrator() as orchestrator:
        rows = _unwrap(orchestrator.get_available_reviewers(submission_id))
    print(_availability_table("Available Reviewers", rows))


@app.command("workload")
def workload(semester: Optional[int] = typer.Option(None, help="Restrict counts to a semester.")) -> None:
    """Show reviewer workload."""
    with open_orchestrator() as orchestrator:
        rows = _unwrap(orchestrator.get_reviewers_workload(semester))
    print(_availability_table("Reviewer Workload", rows))


@app.command("assignments")
def assignments(
    submission: Optional[int] = typer.Option(None, help="Filter by submission."),
    reviewer: Optional[int] = typer.Option(None, help="Filter by reviewer."),
) -> None:
    """List assignments for a submission or a reviewer."""
    if submission is None and reviewer is None:
        print("[yellow]Pass --submission or --reviewer.[/yellow]")
        raise typer.Exit(code=2)
    with open_orchestrator() as orchestrator:
        if submission is not None:
            rows = _unwrap(orchestrator.assignments_by_submission(submission))
        else:
            rows = _unwrap(orchestrator.assignments_by_reviewer(reviewer))
    print(_assignment_table("Assignments", rows))


@app.command("start")
def start(assignment_id: int, reviewer: int = typer.Option(..., help="Assigned reviewer id.")) -> None:
    """Start a review (Assigned -> InProgress)."""
    with open_orchestrator() as orchestrator:
        assignment = _unwrap(orchestrator.start_review(assignment_id, reviewer))
    print(_assignment_table("Assignment", [assignment]))


@app.command("set-status")
def set_status(
    assignment_id: int,
    status: AssignmentStatus,
    by: int = typer.Option(..., help="User id performing the update."),
) -> None:
    """Set an assignment status directly."""
    with open_orchestrator() as orchestrator:
        assignment = _unwrap(orchestrator.update_assignment_status(assignment_id, status, by))
    print(_assignment_table("Assignment", [assignment]))


@app.command("remove")
def remove(assignment_id: int, by: int = typer.Option(..., help="User id removing the assignment.")) -> None:
    """Remove an assignment that has no review yet."""
    with open_orchestrator() as orchestrator:
        _unwrap(orchestrator.remove_assignment(assignment_id, by))


@app.command("dispatch")
def dispatch(limit: int = typer.Option(100, help="Maximum events to deliver.")) -> None:
    """Deliver pending notifications, emails and performance updates."""
    report = get_dispatcher().dispatch_pending(limit=limit)
    print(
        f"[bold]Delivered:[/bold] {len(report.delivered)} | "
        f"[bold]Failed:[/bold] {len(report.failed)}"
    )


@app.command("deadlines")
def deadlines() -> None:
    """Send reminders for reviews due soon or overdue."""
    alerts = DeadlineMonitor(get_store()).run()
    if not alerts:
        print("[green]No upcoming or overdue reviews.[/green]")
        return
    table = Table(title="Deadline Alerts")
    table.add_column("Assignment", justify="right")
    table.add_column("Reviewer")
    table.add_column("Submission")
    table.add_column("Alert")
    table.add_column("Days", justify="right")
    for alert in alerts:
        table.add_row(
            str(alert.detail.assignment.id),
            alert.detail.reviewer_name,
            alert.detail.submission_title,
            alert.kind.value,
            str(alert.days),
        )
    print(table)


@app.command("backlog")
def backlog(stale_days: int = typer.Option(7, help="Age in days after which a review is stale.")) -> None:
    """Show active review backlog by age."""
    with get_store().transaction() as session:
        details = session.list_assignment_details(ACTIVE_STATUSES)
    report = build_backlog_report(details, datetime.now(timezone.utc), stale_days)
    print(
        f"[bold]Active:[/bold] {report.total} | [bold]Stale:[/bold] {report.stale} | "
        f"[bold]Avg Age:[/bold] {report.avg_age_days:.1f} days"
    )
    table = Table(title="Backlog by Reviewer")
    table.add_column("Reviewer")
    table.add_column("Active", justify="right")
    table.add_column("In Progress", justify="right")
    table.add_column("Stale", justify="right")
    table.add_column("Oldest (days)", justify="right")
    for stats in report.reviewer_stats:
        table.add_row(
            stats.reviewer,
            str(stats.total),
            str(stats.in_progress),
            str(stats.stale),
            f"{stats.oldest_age_days:.1f}",
        )
    print(table)


@app.command("throughput")
def throughput(days: int = typer.Option(30, help="Window of completed reviews in days.")) -> None:
    """Show completed review cycle times."""
    with get_store().transaction() as session:
        details = session.list_assignment_details((AssignmentStatus.COMPLETED,))
    report = build_throughput_report(details, datetime.now(timezone.utc), days)
    print(
        f"[bold]Completed:[/bold] {report.total_completed} | "
        f"[bold]Avg Cycle:[/bold] {report.avg_cycle_days:.1f} days | "
        f"[bold]On Time:[/bold] {_fmt(report.on_time_rate, '{:.0%}')}"
    )
    table = Table(title="Throughput by Reviewer")
    table.add_column("Reviewer")
    table.add_column("Completed", justify="right")
    table.add_column("Avg Cycle (days)", justify="right")
    table.add_column("On Time", justify="right")
    for stats in report.reviewer_stats:
        table.add_row(
            stats.reviewer,
            str(stats.completed),
            f"{stats.avg_cycle_days:.1f}",
            _fmt(stats.on_time_rate, "{:.0%}"),
        )
    print(table)


if __name__ == "__main__":
    app()
