from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

REVIEWER_ROLE = "Reviewer"


class AssignmentType(str, Enum):
    PRIMARY = "Primary"
    SECONDARY = "Secondary"
    ADDITIONAL = "Additional"


class AssignmentStatus(str, Enum):
    ASSIGNED = "Assigned"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"


ACTIVE_STATUSES = (AssignmentStatus.ASSIGNED, AssignmentStatus.IN_PROGRESS)


class ProficiencyLevel(str, Enum):
    BEGINNER = "Beginner"
    INTERMEDIATE = "Intermediate"
    ADVANCED = "Advanced"
    EXPERT = "Expert"


class NotificationType(str, Enum):
    INFO = "Info"
    WARNING = "Warning"
    ERROR = "Error"


@dataclass(frozen=True)
class Skill:
    tag: str
    level: ProficiencyLevel = ProficiencyLevel.INTERMEDIATE


@dataclass(frozen=True)
class Reviewer:
    id: int
    username: str
    email: str
    skills: list[Skill] = field(default_factory=list)

    @property
    def display_name(self) -> str:
        return self.username or self.email

    @property
    def skill_tags(self) -> list[str]:
        return [skill.tag for skill in self.skills]


@dataclass(frozen=True)
class Submission:
    id: int
    title: str
    semester_id: int | None = None
    topic_title: str | None = None
    category: str | None = None
    description: str | None = None
    objectives: str | None = None
    methodology: str | None = None
    expected_outcomes: str | None = None

    @property
    def topic_text(self) -> str:
        parts = [
            self.category,
            self.topic_title,
            self.title,
            self.description,
            self.objectives,
            self.methodology,
            self.expected_outcomes,
        ]
        return " ".join(part.strip() for part in parts if part and part.strip())


@dataclass
class Assignment:
    id: int
    submission_id: int
    reviewer_id: int
    assigned_by: int
    assignment_type: AssignmentType
    status: AssignmentStatus
    assigned_at: datetime
    skill_match_score: float | None = None
    deadline: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


@dataclass(frozen=True)
class NewAssignment:
    submission_id: int
    reviewer_id: int
    assigned_by: int
    assignment_type: AssignmentType
    assigned_at: datetime
    skill_match_score: float | None = None
    deadline: datetime | None = None


@dataclass(frozen=True)
class AssignmentRequest:
    submission_id: int
    reviewer_id: int
    assignment_type: AssignmentType = AssignmentType.PRIMARY
    deadline: datetime | None = None
    skill_match_score: float | None = None


@dataclass(frozen=True)
class PerformanceRecord:
    reviewer_id: int
    semester_id: int
    total_assignments: int = 0
    completed_assignments: int = 0
    average_time_minutes: float | None = None
    average_score_given: float | None = None
    on_time_rate: float | None = None
    quality_rating: float | None = None
    last_updated: datetime | None = None


@dataclass(frozen=True)
class Candidate:
    reviewer: Reviewer
    active_assignments: int
    performance: PerformanceRecord | None = None


@dataclass(frozen=True)
class MatchingResult:
    reviewer_id: int
    reviewer_name: str
    skill_match_score: float
    matched_skills: list[str]
    workload_score: float
    performance_score: float
    overall_score: float
    current_active_assignments: int
    is_eligible: bool = True
    ineligibility_reasons: list[str] = field(default_factory=list)
    quality_rating: float | None = None
    on_time_rate: float | None = None
    average_score_given: float | None = None


@dataclass(frozen=True)
class Notification:
    user_id: int
    title: str
    message: str
    type: NotificationType = NotificationType.INFO
    related_entity_type: str | None = None
    related_entity_id: int | None = None


@dataclass(frozen=True)
class OutgoingEmail:
    to: list[str]
    subject: str
    body: str


@dataclass(frozen=True)
class AssignmentDetail:
    """An assignment joined with the names needed for reporting and reminders."""

    assignment: Assignment
    reviewer_name: str
    submission_title: str


@dataclass(frozen=True)
class ReviewerAvailability:
    reviewer_id: int
    username: str
    email: str
    current_assignments: int
    completed_assignments: int
    skills: list[str]
    is_available: bool
    unavailable_reason: str | None = None
    average_score_given: float | None = None
    on_time_rate: float | None = None
    quality_rating: float | None = None


@dataclass
class BulkAssignFailure:
    request: AssignmentRequest
    kind: str
    message: str


@dataclass
class BulkAssignResult:
    succeeded: list[Assignment] = field(default_factory=list)
    failed: list[BulkAssignFailure] = field(default_factory=list)


@dataclass
class AutoAssignResult:
    submission_id: int
    requested: int
    assigned: list[Assignment] = field(default_factory=list)
    considered: list[MatchingResult] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def assigned_count(self) -> int:
        return len(self.assigned)

    @property
    def is_fully_assigned(self) -> bool:
        return self.assigned_count == self.requested


class EventKind(str, Enum):
    NOTIFICATION = "notification"
    EMAIL = "email"
    PERFORMANCE = "performance"


@dataclass(frozen=True)
class OutboxEvent:
    id: int
    kind: EventKind
    payload: dict
    attempts: int = 0
    last_error: str | None = None
    created_at: datetime | None = None
    delivered_at: datetime | None = None
