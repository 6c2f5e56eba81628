import pytest
from structlog.testing import capture_logs

from fakes import FailingEmbedder, KeywordEmbedder, MappingEmbedder
from reviewer_assignment.config import ScoringConfig
from reviewer_assignment.eligibility import LOW_QUALITY, TOO_MANY_ACTIVE, EligibilityFilter
from reviewer_assignment.matching import MatchingEngine, matched_skills, topic_tokens, workload_score
from reviewer_assignment.models import Candidate, PerformanceRecord, ProficiencyLevel, Reviewer, Skill
from reviewer_assignment.performance import performance_score

TOPIC = "machine learning for crops"
PYTHON_REVIEWER = Reviewer(1, "alice", "alice@example.edu", [Skill("python", ProficiencyLevel.EXPERT)])


def _engine(config: ScoringConfig | None = None) -> MatchingEngine:
    return MatchingEngine(
        MappingEmbedder({TOPIC: [1.0, 0.0], "python (Expert)": [0.8, 0.6]}),
        config or ScoringConfig(),
    )


def test_workload_score_saturates_at_divisor() -> None:
    assert workload_score(0) == 1.0
    assert workload_score(2) == pytest.approx(0.6)
    assert workload_score(5) == 0.0
    assert workload_score(9) == 0.0


def test_performance_score_weights_record_fields() -> None:
    record = PerformanceRecord(1, 7, quality_rating=4.0, on_time_rate=0.9, average_score_given=3.5)

    assert performance_score(record, ScoringConfig()) == pytest.approx(4.0 * 0.5 + 0.9 * 0.3 + 3.5 * 0.2)
    assert performance_score(None, ScoringConfig()) == 0.0


def test_idle_reviewer_without_record_scores_weighted_sum() -> None:
    result = _engine().score(TOPIC, Candidate(PYTHON_REVIEWER, active_assignments=0))

    assert result.skill_match_score == pytest.approx(0.8)
    assert result.workload_score == 1.0
    assert result.performance_score == 0.0
    assert result.overall_score == pytest.approx(0.52)

    filtered = EligibilityFilter().apply(result, 0, None)
    assert filtered.is_eligible
    assert filtered.ineligibility_reasons == []
    assert filtered.overall_score == pytest.approx(0.52)


def test_busy_reviewer_is_penalised_but_kept() -> None:
    result = _engine().score(TOPIC, Candidate(PYTHON_REVIEWER, active_assignments=6))

    filtered = EligibilityFilter().apply(result, 6, None)

    assert not filtered.is_eligible
    assert filtered.ineligibility_reasons == [TOO_MANY_ACTIVE]
    assert filtered.overall_score == pytest.approx(result.overall_score - 0.5)


def test_low_quality_rating_is_ineligible() -> None:
    record = PerformanceRecord(1, 7, quality_rating=1.5)

    reasons = EligibilityFilter().reasons(6, record)

    assert reasons == [TOO_MANY_ACTIVE, LOW_QUALITY]
    assert EligibilityFilter().reasons(5, PerformanceRecord(1, 7, quality_rating=2.0)) == []


def test_embedder_failure_scores_zero_and_logs() -> None:
    engine = MatchingEngine(FailingEmbedder())

    with capture_logs() as logs:
        result = engine.score(TOPIC, Candidate(PYTHON_REVIEWER, active_assignments=0))

    assert result.skill_match_score == 0.0
    assert result.overall_score == pytest.approx(0.2)
    assert any(entry["event"] == "embedding_failed" for entry in logs)


def test_reviewer_without_skills_has_no_skill_match() -> None:
    reviewer = Reviewer(4, "dan", "dan@example.edu")

    result = _engine().score(TOPIC, Candidate(reviewer, active_assignments=1))

    assert result.skill_match_score == 0.0
    assert result.matched_skills == []


def test_normalized_weights_keep_ratios() -> None:
    config = ScoringConfig(normalize_weights=True)

    skill, workload, performance = config.effective_weights()

    assert skill + workload + performance == pytest.approx(1.0)
    assert skill / workload == pytest.approx(2.0)
    result = _engine(config).score(TOPIC, Candidate(PYTHON_REVIEWER, active_assignments=0))
    assert result.overall_score == pytest.approx(0.52 / 0.9)


def test_matched_skills_use_topic_tokens() -> None:
    reviewer = Reviewer(
        1, "alice", "a@example.edu", [Skill("Python"), Skill("ml"), Skill("security")]
    )

    assert topic_tokens("Python; ML, data.") == {"python", "ml", "data"}
    assert matched_skills("Python; ML, data.", reviewer) == ["Python", "ml"]


def test_score_all_embeds_topic_once_and_keeps_order() -> None:
    embedder = KeywordEmbedder()
    engine = MatchingEngine(embedder, max_workers=4)
    candidates = [
        Candidate(Reviewer(i, f"r{i}", f"r{i}@example.edu", [Skill("python")]), active_assignments=i)
        for i in range(1, 6)
    ]

    results = engine.score_all("python data", candidates)

    assert [result.reviewer_id for result in results] == [1, 2, 3, 4, 5]
    assert embedder.calls.count("python data") == 1
    assert results[0].overall_score > results[-1].overall_score
