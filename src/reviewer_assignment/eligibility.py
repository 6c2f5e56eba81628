from __future__ import annotations

from dataclasses import replace

from .config import ScoringConfig
from .models import MatchingResult, PerformanceRecord

TOO_MANY_ACTIVE = "Too many active assignments"
LOW_QUALITY = "Low quality rating"


class EligibilityFilter:
    """Hard constraints applied after scoring.

    Ineligible candidates keep their place in the output with a penalised
    score and the reasons attached.
    """

    def __init__(self, config: ScoringConfig | None = None) -> None:
        self.config = config or ScoringConfig()

    def reasons(self, active_assignments: int, record: PerformanceRecord | None) -> list[str]:
        reasons: list[str] = []
        if active_assignments > self.config.max_active_for_eligibility:
            reasons.append(TOO_MANY_ACTIVE)
        if (
            record is not None
            and record.quality_rating is not None
            and record.quality_rating < self.config.min_quality_rating
        ):
            reasons.append(LOW_QUALITY)
        return reasons

    def apply(
        self,
        result: MatchingResult,
        active_assignments: int,
        record: PerformanceRecord | None,
    ) -> MatchingResult:
        reasons = self.reasons(active_assignments, record)
        if not reasons:
            return replace(result, is_eligible=True, ineligibility_reasons=[])
        return replace(
            result,
            is_eligible=False,
            ineligibility_reasons=reasons,
            overall_score=result.overall_score - self.config.ineligible_penalty,
        )
