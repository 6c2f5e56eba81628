import pytest
from pydantic import ValidationError

from reviewer_assignment.config import ScoringConfig, Settings


def test_settings_read_environment(monkeypatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/reviews")
    monkeypatch.setenv("SCORE_SKILL_WEIGHT", "0.6")
    monkeypatch.setenv("SCORE_NORMALIZE_WEIGHTS", "true")
    monkeypatch.setenv("MAX_ACTIVE_ASSIGNMENTS", "12")
    monkeypatch.setenv("LOG_FORMAT", "JSON")

    settings = Settings(_env_file=None)

    assert settings.database_url == "postgresql://localhost/reviews"
    assert settings.max_active_assignments == 12
    assert settings.log_format == "json"
    scoring = settings.scoring_config()
    assert scoring.skill_weight == 0.6
    assert scoring.normalize_weights is True


def test_settings_defaults(monkeypatch) -> None:
    for name in (
        "DATABASE_URL",
        "SCORE_SKILL_WEIGHT",
        "MAX_ACTIVE_ASSIGNMENTS",
        "LOG_FORMAT",
        "OUTBOX_DISPATCH_ON_COMMIT",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = Settings(_env_file=None)

    assert settings.db_schema == "reviewer_assignment"
    assert settings.scoring_config() == ScoringConfig()
    assert settings.max_auto_assign == 5
    assert settings.outbox_max_attempts == 5
    assert settings.dispatch_on_commit is False


@pytest.mark.parametrize(
    ("name", "value"),
    [("SCORE_WORKLOAD_WEIGHT", "-0.1"), ("LOG_FORMAT", "xml"), ("SCORING_WORKERS", "0")],
)
def test_settings_reject_bad_values(monkeypatch, name, value) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_default_weights_sum_below_one() -> None:
    assert sum(ScoringConfig().effective_weights()) == pytest.approx(0.9)
    assert sum(ScoringConfig(normalize_weights=True).effective_weights()) == pytest.approx(1.0)
