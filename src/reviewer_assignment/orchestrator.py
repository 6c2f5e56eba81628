from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Iterable

from .eligibility import EligibilityFilter
from .logging import get_logger
from .matching import MatchingEngine
from .models import (
    REVIEWER_ROLE,
    Assignment,
    AssignmentRequest,
    AssignmentStatus,
    AssignmentType,
    AutoAssignResult,
    BulkAssignFailure,
    BulkAssignResult,
    Candidate,
    MatchingResult,
    NewAssignment,
    Reviewer,
    ReviewerAvailability,
    Submission,
)
from .outbox import OutboxDispatcher, enqueue_assignment_events
from .performance import PerformanceAggregator
from .results import Result
from .state_machine import InvalidTransitionError, apply_status, is_forward, start_review
from .storage import DuplicateAssignmentError, Session, Store
from .workload import WorkloadTracker

logger = get_logger(__name__)


class AssignmentOrchestrator:
    """Entry point for creating and driving reviewer assignments.

    Every public method returns a :class:`Result`. Missing rows, invalid
    requests and rule violations are failures with a kind and message;
    anything unexpected is logged and reported as a system error.
    """

    def __init__(
        self,
        store: Store,
        engine: MatchingEngine,
        *,
        eligibility: EligibilityFilter | None = None,
        workload: WorkloadTracker | None = None,
        performance: PerformanceAggregator | None = None,
        dispatcher: OutboxDispatcher | None = None,
        max_active_assignments: int = 10,
        max_auto_assign: int = 5,
        strict_status_transitions: bool = False,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.engine = engine
        self.eligibility = eligibility or EligibilityFilter(engine.config)
        self.workload = workload or WorkloadTracker()
        self.performance = performance or PerformanceAggregator()
        self.dispatcher = dispatcher
        self.max_active_assignments = max_active_assignments
        self.max_auto_assign = max_auto_assign
        self.strict_status_transitions = strict_status_transitions
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # Assignment creation

    def _check_assignable(
        self, session: Session, request: AssignmentRequest
    ) -> tuple[Result[Assignment] | None, Submission | None, Reviewer | None]:
        if request.submission_id <= 0 or request.reviewer_id <= 0:
            return Result.invalid("Submission and reviewer ids must be positive."), None, None
        try:
            AssignmentType(request.assignment_type)
        except ValueError:
            return Result.invalid(f"Unknown assignment type {request.assignment_type!r}."), None, None
        submission = session.get_submission(request.submission_id)
        if submission is None:
            return Result.not_found(f"Submission {request.submission_id} does not exist."), None, None
        reviewer = session.get_reviewer(request.reviewer_id)
        if reviewer is None:
            return Result.not_found(f"Reviewer {request.reviewer_id} does not exist."), None, None
        if not session.has_role(request.reviewer_id, REVIEWER_ROLE):
            return Result.not_found(f"User {request.reviewer_id} does not hold the Reviewer role."), None, None
        if session.find_assignment(request.submission_id, request.reviewer_id) is not None:
            return Result.conflict("Reviewer is already assigned to this submission."), None, None

        session.lock_reviewer(request.reviewer_id)
        active = self.workload.active_count(session, request.reviewer_id)
        if active >= self.max_active_assignments:
            return (
                Result.conflict(
                    f"Reviewer has {active} active assignments; the limit is "
                    f"{self.max_active_assignments}."
                ),
                None,
                None,
            )
        return None, submission, reviewer

    def assign_reviewer(self, request: AssignmentRequest, assigner_id: int) -> Result[Assignment]:
        try:
            with self.store.transaction() as session:
                failure, submission, reviewer = self._check_assignable(session, request)
                if failure is not None:
                    logger.info(
                        "assignment_rejected",
                        submission_id=request.submission_id,
                        reviewer_id=request.reviewer_id,
                        error=failure.error.value,
                        reason=failure.message,
                    )
                    return failure
                now = self.clock()
                assignment = session.insert_assignment(
                    NewAssignment(
                        submission_id=request.submission_id,
                        reviewer_id=request.reviewer_id,
                        assigned_by=assigner_id,
                        assignment_type=AssignmentType(request.assignment_type),
                        assigned_at=now,
                        skill_match_score=request.skill_match_score,
                        deadline=request.deadline,
                    )
                )
                event_ids = enqueue_assignment_events(session, assignment, submission, reviewer, now)
        except DuplicateAssignmentError as exc:
            logger.info("assignment_duplicate", submission_id=exc.submission_id, reviewer_id=exc.reviewer_id)
            return Result.conflict("Reviewer is already assigned to this submission.")
        except Exception:
            logger.exception(
                "assignment_failed",
                submission_id=request.submission_id,
                reviewer_id=request.reviewer_id,
            )
            return Result.system_error()

        logger.info(
            "reviewer_assigned",
            assignment_id=assignment.id,
            submission_id=assignment.submission_id,
            reviewer_id=assignment.reviewer_id,
            assigned_by=assigner_id,
        )
        if self.dispatcher is not None:
            self.dispatcher.dispatch(event_ids)
        return Result.success(assignment, "Reviewer assigned.")

    def bulk_assign(
        self, requests: Iterable[AssignmentRequest], assigner_id: int
    ) -> Result[BulkAssignResult]:
        outcome = BulkAssignResult()
        for request in requests:
            result = self.assign_reviewer(request, assigner_id)
            if result.ok:
                outcome.succeeded.append(result.value)
            else:
                outcome.failed.append(
                    BulkAssignFailure(request=request, kind=result.error.value, message=result.message)
                )
        message = f"Assigned {len(outcome.succeeded)} reviewer(s)"
        if outcome.failed:
            message += f", {len(outcome.failed)} failed"
        return Result.success(outcome, message + ".")

    # ------------------------------------------------------------------
    # Scoring

    def _load_candidates(
        self, session: Session, reviewer_ids: set[int] | None = None
    ) -> list[Candidate]:
        reviewers = session.list_reviewers()
        if reviewer_ids is not None:
            reviewers = [reviewer for reviewer in reviewers if reviewer.id in reviewer_ids]
        active = self.workload.active_counts(session)
        return [
            Candidate(
                reviewer=reviewer,
                active_assignments=active.get(reviewer.id, 0),
                performance=self.performance.lookup(session, reviewer.id),
            )
            for reviewer in reviewers
        ]

    def _score_candidates(
        self, submission: Submission, candidates: list[Candidate]
    ) -> list[MatchingResult]:
        # Embedding calls go over the network; callers run this after commit.
        scored = self.engine.score_all(submission.topic_text, candidates)
        return [
            self.eligibility.apply(result, candidate.active_assignments, candidate.performance)
            for result, candidate in zip(scored, candidates)
        ]

    def recommend_reviewers(
        self, submission_id: int, limit: int | None = None
    ) -> Result[list[MatchingResult]]:
        try:
            with self.store.transaction() as session:
                submission = session.get_submission(submission_id)
                if submission is None:
                    return Result.not_found(f"Submission {submission_id} does not exist.")
                candidates = self._load_candidates(session)
            results = self._score_candidates(submission, candidates)
        except Exception:
            logger.exception("recommendation_failed", submission_id=submission_id)
            return Result.system_error()
        results.sort(key=lambda item: item.overall_score, reverse=True)
        return Result.success(results[:limit] if limit else results)

    def suggest_reviewers(
        self, submission_id: int, max_suggestions: int = 5
    ) -> Result[list[MatchingResult]]:
        """Least busy reviewers first, best score first among equals."""
        recommended = self.recommend_reviewers(submission_id)
        if not recommended.ok:
            return recommended
        ordered = sorted(
            recommended.value,
            key=lambda item: (item.current_active_assignments, -item.overall_score),
        )
        return Result.success(ordered[:max_suggestions])

    def analyze_reviewer_match(self, reviewer_id: int, submission_id: int) -> Result[MatchingResult]:
        try:
            with self.store.transaction() as session:
                if session.get_reviewer(reviewer_id) is None:
                    return Result.not_found(f"Reviewer {reviewer_id} does not exist.")
                submission = session.get_submission(submission_id)
                if submission is None:
                    return Result.not_found(f"Submission {submission_id} does not exist.")
                candidates = self._load_candidates(session, {reviewer_id})
            results = self._score_candidates(submission, candidates)
        except Exception:
            logger.exception("match_analysis_failed", reviewer_id=reviewer_id, submission_id=submission_id)
            return Result.system_error()
        if not results:
            return Result.not_found(f"User {reviewer_id} does not hold the Reviewer role.")
        return Result.success(results[0])

    def auto_assign(
        self,
        submission_id: int,
        desired_count: int,
        assigner_id: int,
        assignment_type: AssignmentType = AssignmentType.PRIMARY,
        deadline: datetime | None = None,
    ) -> Result[AutoAssignResult]:
        if not 1 <= desired_count <= self.max_auto_assign:
            return Result.invalid(f"Number of reviewers must be between 1 and {self.max_auto_assign}.")
        try:
            assignment_type = AssignmentType(assignment_type)
        except ValueError:
            return Result.invalid(f"Unknown assignment type {assignment_type!r}.")
        try:
            with self.store.transaction() as session:
                submission = session.get_submission(submission_id)
                if submission is None:
                    return Result.not_found(f"Submission {submission_id} does not exist.")
                already = {
                    assignment.reviewer_id
                    for assignment in session.list_assignments(submission_id=submission_id)
                }
                candidates = [
                    candidate
                    for candidate in self._load_candidates(session)
                    if candidate.reviewer.id not in already
                ]
            considered = self._score_candidates(submission, candidates)
        except Exception:
            logger.exception("auto_assign_failed", submission_id=submission_id)
            return Result.system_error()

        outcome = AutoAssignResult(
            submission_id=submission_id, requested=desired_count, considered=considered
        )
        eligible = sorted(
            (result for result in considered if result.is_eligible),
            key=lambda item: item.overall_score,
            reverse=True,
        )
        if not eligible:
            outcome.warnings.append("No eligible reviewer matches this submission.")
        elif len(eligible) < desired_count:
            outcome.warnings.append(
                f"Only {len(eligible)} eligible reviewer(s) found for {desired_count} requested."
            )

        for candidate in eligible[:desired_count]:
            result = self.assign_reviewer(
                AssignmentRequest(
                    submission_id=submission_id,
                    reviewer_id=candidate.reviewer_id,
                    assignment_type=assignment_type,
                    deadline=deadline,
                    skill_match_score=candidate.skill_match_score,
                ),
                assigner_id,
            )
            if result.ok:
                outcome.assigned.append(result.value)
            else:
                outcome.warnings.append(
                    f"Could not assign reviewer {candidate.reviewer_name}: {result.message}"
                )

        logger.info(
            "auto_assign_completed",
            submission_id=submission_id,
            requested=desired_count,
            assigned=outcome.assigned_count,
            warnings=len(outcome.warnings),
        )
        return Result.success(outcome, f"Assigned {outcome.assigned_count}/{desired_count} reviewer(s).")

    # ------------------------------------------------------------------
    # Listings

    def get_available_reviewers(self, submission_id: int) -> Result[list[ReviewerAvailability]]:
        try:
            with self.store.transaction() as session:
                if session.get_submission(submission_id) is None:
                    return Result.not_found(f"Submission {submission_id} does not exist.")
                assigned = {
                    assignment.reviewer_id
                    for assignment in session.list_assignments(submission_id=submission_id)
                }
                active = self.workload.active_counts(session)
                rows = []
                for reviewer in session.list_reviewers():
                    current = active.get(reviewer.id, 0)
                    record = self.performance.lookup(session, reviewer.id)
                    reason = None
                    if reviewer.id in assigned:
                        reason = "Already assigned"
                    elif current >= self.max_active_assignments:
                        reason = "Too many active assignments"
                    rows.append(
                        ReviewerAvailability(
                            reviewer_id=reviewer.id,
                            username=reviewer.username,
                            email=reviewer.email,
                            current_assignments=current,
                            completed_assignments=record.completed_assignments if record else 0,
                            skills=reviewer.skill_tags,
                            is_available=reason is None,
                            unavailable_reason=reason,
                            average_score_given=record.average_score_given if record else None,
                            on_time_rate=record.on_time_rate if record else None,
                            quality_rating=record.quality_rating if record else None,
                        )
                    )
        except Exception:
            logger.exception("available_reviewers_failed", submission_id=submission_id)
            return Result.system_error()
        rows.sort(key=lambda row: (not row.is_available, row.current_assignments))
        return Result.success(rows)

    def get_reviewers_workload(
        self, semester_id: int | None = None
    ) -> Result[list[ReviewerAvailability]]:
        try:
            with self.store.transaction() as session:
                active = self.workload.active_counts(session, semester_id)
                completed = self.workload.completed_counts(session, semester_id)
                rows = []
                for reviewer in session.list_reviewers():
                    current = active.get(reviewer.id, 0)
                    record = self.performance.lookup(session, reviewer.id, semester_id)
                    rows.append(
                        ReviewerAvailability(
                            reviewer_id=reviewer.id,
                            username=reviewer.username,
                            email=reviewer.email,
                            current_assignments=current,
                            completed_assignments=completed.get(reviewer.id, 0),
                            skills=reviewer.skill_tags,
                            is_available=current < self.max_active_assignments,
                            average_score_given=record.average_score_given if record else None,
                            on_time_rate=record.on_time_rate if record else None,
                            quality_rating=record.quality_rating if record else None,
                        )
                    )
        except Exception:
            logger.exception("workload_listing_failed", semester_id=semester_id)
            return Result.system_error()
        rows.sort(key=lambda row: row.current_assignments)
        return Result.success(rows)

    def assignments_by_submission(self, submission_id: int) -> Result[list[Assignment]]:
        try:
            with self.store.transaction() as session:
                return Result.success(session.list_assignments(submission_id=submission_id))
        except Exception:
            logger.exception("assignment_listing_failed", submission_id=submission_id)
            return Result.system_error()

    def assignments_by_reviewer(self, reviewer_id: int) -> Result[list[Assignment]]:
        try:
            with self.store.transaction() as session:
                return Result.success(session.list_assignments(reviewer_id=reviewer_id))
        except Exception:
            logger.exception("assignment_listing_failed", reviewer_id=reviewer_id)
            return Result.system_error()

    # ------------------------------------------------------------------
    # Lifecycle

    def start_review(self, assignment_id: int, reviewer_id: int) -> Result[Assignment]:
        try:
            with self.store.transaction() as session:
                assignment = session.get_assignment(assignment_id)
                if assignment is None:
                    return Result.not_found(f"Assignment {assignment_id} does not exist.")
                if assignment.reviewer_id != reviewer_id:
                    return Result.invalid("Only the assigned reviewer can start this review.")
                try:
                    started = start_review(assignment, self.clock())
                except InvalidTransitionError:
                    return Result.invalid(
                        f"Assignment is {assignment.status.value}; only Assigned reviews can be started."
                    )
                updated = session.update_assignment(started)
        except Exception:
            logger.exception("start_review_failed", assignment_id=assignment_id)
            return Result.system_error()
        logger.info("review_started", assignment_id=assignment_id, reviewer_id=reviewer_id)
        return Result.success(updated, "Review started.")

    def update_assignment_status(
        self, assignment_id: int, new_status: AssignmentStatus, updated_by: int
    ) -> Result[Assignment]:
        try:
            new_status = AssignmentStatus(new_status)
        except ValueError:
            return Result.invalid(f"Unknown status {new_status!r}.")
        try:
            with self.store.transaction() as session:
                assignment = session.get_assignment(assignment_id)
                if assignment is None:
                    return Result.not_found(f"Assignment {assignment_id} does not exist.")
                previous = assignment.status
                try:
                    changed = apply_status(
                        assignment,
                        new_status,
                        self.clock(),
                        strict=self.strict_status_transitions,
                    )
                except InvalidTransitionError as exc:
                    return Result.invalid(str(exc))
                updated = session.update_assignment(changed)
        except Exception:
            logger.exception("status_update_failed", assignment_id=assignment_id)
            return Result.system_error()

        if previous is not new_status and not is_forward(previous, new_status):
            logger.warning(
                "assignment_status_overridden",
                assignment_id=assignment_id,
                previous=previous.value,
                status=new_status.value,
                updated_by=updated_by,
            )
        else:
            logger.info(
                "assignment_status_updated",
                assignment_id=assignment_id,
                status=new_status.value,
                updated_by=updated_by,
            )
        return Result.success(updated, "Assignment status updated.")

    def remove_assignment(self, assignment_id: int, removed_by: int) -> Result[None]:
        try:
            with self.store.transaction() as session:
                assignment = session.get_assignment(assignment_id)
                if assignment is None:
                    return Result.not_found(f"Assignment {assignment_id} does not exist.")
                if session.has_reviews(assignment_id):
                    return Result.conflict("Cannot remove an assignment that already has a review.")
                session.delete_assignment(assignment_id)
        except Exception:
            logger.exception("assignment_removal_failed", assignment_id=assignment_id)
            return Result.system_error()
        logger.info("assignment_removed", assignment_id=assignment_id, removed_by=removed_by)
        return Result.success(None, "Assignment removed.")
