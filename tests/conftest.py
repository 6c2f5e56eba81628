import pytest

from fakes import ADMIN_ID, NOW, InMemoryStore, KeywordEmbedder, RecordingMailer
from reviewer_assignment.config import ScoringConfig
from reviewer_assignment.matching import MatchingEngine
from reviewer_assignment.models import ProficiencyLevel, Reviewer, Skill, Submission
from reviewer_assignment.orchestrator import AssignmentOrchestrator
from reviewer_assignment.outbox import OutboxDispatcher


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def store() -> InMemoryStore:
    store = InMemoryStore()
    store.add_reviewer(
        Reviewer(
            1,
            "alice",
            "alice@example.edu",
            [Skill("python", ProficiencyLevel.EXPERT), Skill("ml", ProficiencyLevel.ADVANCED)],
        )
    )
    store.add_reviewer(Reviewer(2, "bob", "bob@example.edu", [Skill("web")]))
    store.add_reviewer(
        Reviewer(3, "carol", "carol@example.edu", [Skill("security", ProficiencyLevel.EXPERT)])
    )
    store.add_user(Reviewer(ADMIN_ID, "admin", "admin@example.edu"), "Admin")
    store.add_submission(
        Submission(
            id=100,
            title="Python ML pipelines",
            semester_id=7,
            topic_title="Data pipelines",
            category="ml",
            description="Training python models on student data",
        )
    )
    store.add_submission(Submission(id=200, title="Campus web portal", semester_id=7))
    return store


@pytest.fixture
def embedder() -> KeywordEmbedder:
    return KeywordEmbedder()


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def engine(embedder) -> MatchingEngine:
    return MatchingEngine(embedder, ScoringConfig())


@pytest.fixture
def dispatcher(store, mailer, clock) -> OutboxDispatcher:
    return OutboxDispatcher(store, mailer, clock=clock)


@pytest.fixture
def orchestrator(store, engine, dispatcher, clock) -> AssignmentOrchestrator:
    return AssignmentOrchestrator(store, engine, dispatcher=dispatcher, clock=clock)
