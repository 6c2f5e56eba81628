"""Scoring of candidate reviewers against a submission's topic.

Scores are pure functions of the candidate data plus the injected embedder.
Embedding failures are logged and score as zero skill match.
"""

from __future__ import annotations

import re
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, Sequence

from .config import ScoringConfig
from .embeddings import Embedder, cosine_similarity, skill_text
from .logging import get_logger
from .models import Candidate, MatchingResult, Reviewer
from .performance import performance_score

logger = get_logger(__name__)

TOKEN_SEPARATORS = re.compile(r"[\s,.;:]+")


def topic_tokens(topic_text: str) -> set[str]:
    return {token for token in TOKEN_SEPARATORS.split(topic_text.lower()) if token}


def matched_skills(topic_text: str, reviewer: Reviewer) -> list[str]:
    tokens = topic_tokens(topic_text)
    return [tag for tag in reviewer.skill_tags if tag.lower() in tokens]


def workload_score(active_assignments: int, divisor: int = 5) -> float:
    return 1.0 - min(1.0, active_assignments / divisor)


class MatchingEngine:
    def __init__(
        self,
        embedder: Embedder,
        config: ScoringConfig | None = None,
        max_workers: int = 1,
    ) -> None:
        self.embedder = embedder
        self.config = config or ScoringConfig()
        self.max_workers = max_workers

    def _embed(self, text: str, **context) -> Sequence[float] | None:
        if not text:
            return None
        try:
            return self.embedder.embed(text)
        except Exception:
            logger.warning("embedding_failed", exc_info=True, **context)
            return None

    def skill_match_score(
        self, topic_vector: Sequence[float] | None, reviewer: Reviewer
    ) -> float:
        if topic_vector is None or not reviewer.skills:
            return 0.0
        reviewer_vector = self._embed(skill_text(reviewer.skills), reviewer_id=reviewer.id)
        if reviewer_vector is None:
            return 0.0
        try:
            return cosine_similarity(topic_vector, reviewer_vector)
        except ValueError:
            logger.warning("embedding_size_mismatch", reviewer_id=reviewer.id, exc_info=True)
            return 0.0

    def overall_score(self, skill: float, workload: float, performance: float) -> float:
        skill_weight, workload_weight, performance_weight = self.config.effective_weights()
        return skill * skill_weight + workload * workload_weight + performance * performance_weight

    def score_with_vector(
        self,
        topic_text: str,
        topic_vector: Sequence[float] | None,
        candidate: Candidate,
    ) -> MatchingResult:
        reviewer = candidate.reviewer
        record = candidate.performance
        skill = self.skill_match_score(topic_vector, reviewer)
        workload = workload_score(candidate.active_assignments, self.config.workload_divisor)
        performance = performance_score(record, self.config)
        return MatchingResult(
            reviewer_id=reviewer.id,
            reviewer_name=reviewer.display_name,
            skill_match_score=skill,
            matched_skills=matched_skills(topic_text, reviewer),
            workload_score=workload,
            performance_score=performance,
            overall_score=self.overall_score(skill, workload, performance),
            current_active_assignments=candidate.active_assignments,
            quality_rating=record.quality_rating if record else None,
            on_time_rate=record.on_time_rate if record else None,
            average_score_given=record.average_score_given if record else None,
        )

    def score(self, topic_text: str, candidate: Candidate) -> MatchingResult:
        topic_vector = self._embed(topic_text, reviewer_id=candidate.reviewer.id)
        return self.score_with_vector(topic_text, topic_vector, candidate)

    def score_all(self, topic_text: str, candidates: Iterable[Candidate]) -> list[MatchingResult]:
        """Score candidates in input order, embedding the topic text once."""
        candidates = list(candidates)
        if not candidates:
            return []
        topic_vector = self._embed(topic_text)
        if self.max_workers <= 1 or len(candidates) == 1:
            return [self.score_with_vector(topic_text, topic_vector, c) for c in candidates]
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            return list(
                pool.map(lambda c: self.score_with_vector(topic_text, topic_vector, c), candidates)
            )
