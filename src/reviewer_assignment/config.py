"""
Configuration loaded from environment variables and an optional .env file.

Usage:
    from reviewer_assignment.config import get_settings
    settings = get_settings()
    scoring = settings.scoring_config()
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass(frozen=True)
class ScoringConfig:
    """Weights and thresholds for matching and eligibility.

    The default top-level weights sum to 0.9. ``normalize_weights`` rescales
    them to sum to 1 without changing their ratios.
    """

    skill_weight: float = 0.4
    workload_weight: float = 0.2
    performance_weight: float = 0.3
    normalize_weights: bool = False
    quality_weight: float = 0.5
    on_time_weight: float = 0.3
    score_given_weight: float = 0.2
    workload_divisor: int = 5
    max_active_for_eligibility: int = 5
    min_quality_rating: float = 2.0
    ineligible_penalty: float = 0.5

    def effective_weights(self) -> tuple[float, float, float]:
        weights = (self.skill_weight, self.workload_weight, self.performance_weight)
        if not self.normalize_weights:
            return weights
        total = sum(weights)
        if total <= 0:
            return weights
        return tuple(weight / total for weight in weights)  # type: ignore[return-value]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    database_url: Optional[str] = Field(default=None, validation_alias="DATABASE_URL")
    db_schema: str = Field(default="reviewer_assignment", validation_alias="DB_SCHEMA")

    # Scoring
    skill_weight: float = Field(default=0.4, validation_alias="SCORE_SKILL_WEIGHT")
    workload_weight: float = Field(default=0.2, validation_alias="SCORE_WORKLOAD_WEIGHT")
    performance_weight: float = Field(default=0.3, validation_alias="SCORE_PERFORMANCE_WEIGHT")
    normalize_weights: bool = Field(default=False, validation_alias="SCORE_NORMALIZE_WEIGHTS")
    workload_divisor: int = Field(default=5, ge=1, validation_alias="SCORE_WORKLOAD_DIVISOR")
    max_active_for_eligibility: int = Field(default=5, ge=0, validation_alias="ELIGIBILITY_MAX_ACTIVE")
    min_quality_rating: float = Field(default=2.0, validation_alias="ELIGIBILITY_MIN_QUALITY")
    ineligible_penalty: float = Field(default=0.5, validation_alias="ELIGIBILITY_PENALTY")
    scoring_workers: int = Field(default=4, ge=1, validation_alias="SCORING_WORKERS")

    # Assignment rules
    max_active_assignments: int = Field(default=10, ge=1, validation_alias="MAX_ACTIVE_ASSIGNMENTS")
    max_auto_assign: int = Field(default=5, ge=1, validation_alias="MAX_AUTO_ASSIGN")
    strict_status_transitions: bool = Field(default=False, validation_alias="STRICT_STATUS_TRANSITIONS")

    # Outbox
    outbox_max_attempts: int = Field(default=5, ge=1, validation_alias="OUTBOX_MAX_ATTEMPTS")
    dispatch_on_commit: bool = Field(default=False, validation_alias="OUTBOX_DISPATCH_ON_COMMIT")

    # Embeddings
    embedding_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        validation_alias="EMBEDDING_BASE_URL",
    )
    embedding_model: str = Field(default="gemini-embedding-001", validation_alias="EMBEDDING_MODEL")
    embedding_api_key: Optional[str] = Field(default=None, validation_alias="EMBEDDING_API_KEY")
    embedding_timeout: float = Field(default=10.0, validation_alias="EMBEDDING_TIMEOUT")

    # SMTP
    smtp_server: Optional[str] = Field(default=None, validation_alias="SMTP_SERVER")
    smtp_port: int = Field(default=465, validation_alias="SMTP_PORT")
    smtp_username: Optional[str] = Field(default=None, validation_alias="SMTP_USERNAME")
    smtp_password: Optional[str] = Field(default=None, validation_alias="SMTP_PASSWORD")
    smtp_from: Optional[str] = Field(default=None, validation_alias="SMTP_FROM")

    # Logging
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_format: str = Field(default="console", validation_alias="LOG_FORMAT")

    @field_validator("skill_weight", "workload_weight", "performance_weight", "ineligible_penalty")
    @classmethod
    def non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("must be non-negative")
        return value

    @field_validator("log_format")
    @classmethod
    def known_log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in {"console", "json"}:
            raise ValueError("LOG_FORMAT must be 'console' or 'json'")
        return value

    def scoring_config(self) -> ScoringConfig:
        return ScoringConfig(
            skill_weight=self.skill_weight,
            workload_weight=self.workload_weight,
            performance_weight=self.performance_weight,
            normalize_weights=self.normalize_weights,
            workload_divisor=self.workload_divisor,
            max_active_for_eligibility=self.max_active_for_eligibility,
            min_quality_rating=self.min_quality_rating,
            ineligible_penalty=self.ineligible_penalty,
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()
