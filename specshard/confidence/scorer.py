"""
Confidence Scorer
------------------
Scores how well-specified (and how well-supported by context) a work unit is.

    overall = fsum(factor_i * weight_i)        weights sum to exactly 1.0

Factor         Weight   Reads
-------------  ------   ------------------------------------------------
requirements    .25     unit requirements + acceptance criteria count
test coverage   .20     test strategy text + acceptance criteria count
ambiguity       .15     vague-term density over all unit text (inverted)
context         .20     the TaskContext (embedded, size, extended, source)
dependencies    .10     declared dependencies vs. context resolution flag
patterns        .10     keyword overlap with the PatternHistory

The overall score maps onto a questioning phase that tells the caller how
much clarification is still warranted:

    < 30 TRIAGE | < 60 EXPLORATION | < 80 EDGE_CASES | < 95 VALIDATION | COMPLETE

compute() never raises for missing or empty inputs.
"""
from __future__ import annotations

import math
from typing import Optional

from loguru import logger

from specshard.config import FACTOR_NAMES, ScoringPolicy, build_model
from specshard.confidence import factors
from specshard.confidence.history import PatternHistory
from specshard.schemas import (
    ConfidenceFactors,
    ConfidenceResult,
    Pattern,
    QuestioningPhase,
    TaskContext,
    WorkUnit,
)
from specshard.utils.helpers import clamp

RECOMMENDATIONS: dict[str, str] = {
    "requirements_clarity": "Clarify requirements with specific technical details",
    "test_coverage_defined": "Define comprehensive test strategy with specific test types",
    "ambiguity_clarity": "Remove ambiguous language from requirements",
    "context_completeness": "Expand context with patterns and historical decisions",
    "dependencies_resolved": "Resolve all dependencies before proceeding",
    "pattern_similarity": "Research similar implementations for guidance",
}

# (lower bound, phase), checked from the top down; bounds are inclusive
_PHASE_BANDS: tuple[tuple[float, QuestioningPhase], ...] = (
    (95, QuestioningPhase.COMPLETE),
    (80, QuestioningPhase.VALIDATION),
    (60, QuestioningPhase.EDGE_CASES),
    (30, QuestioningPhase.EXPLORATION),
)


class ConfidenceScorer:
    """
    Six-factor confidence scoring for work units.

    Usage:
        history = PatternHistory()
        scorer = ConfidenceScorer(history)
        result = scorer.compute(unit, context)
        print(result.overall, result.questioning_phase)

    The scorer owns no global state; the only thing it mutates is the
    PatternHistory handed to it, and only through add_to_history().
    """

    def __init__(
        self,
        history: Optional[PatternHistory] = None,
        policy: ScoringPolicy | dict | None = None,
    ) -> None:
        self.history = history if history is not None else PatternHistory()
        self.policy = build_model(ScoringPolicy, policy)

    def compute(self, unit: WorkUnit, context: Optional[TaskContext] = None) -> ConfidenceResult:
        policy = self.policy
        scores = ConfidenceFactors(
            requirements_clarity=factors.requirements_clarity(unit, policy),
            test_coverage_defined=factors.test_coverage_defined(unit, policy),
            ambiguity_clarity=factors.ambiguity_clarity(unit, policy),
            context_completeness=factors.context_completeness(context),
            dependencies_resolved=factors.dependencies_resolved(unit, context),
            pattern_similarity=factors.pattern_similarity(unit, self.history, policy),
        )

        weights = policy.weights.as_dict()
        values = scores.as_dict()
        overall = clamp(math.fsum(values[name] * weights[name] for name in FACTOR_NAMES))
        phase = self.classify(overall)
        recommendations = self.recommend(scores)

        logger.debug(
            f"[Scorer] {unit.id} | overall={overall:.1f} ({phase.value}) | "
            + " ".join(f"{name}={values[name]:.0f}" for name in FACTOR_NAMES)
        )
        return ConfidenceResult(
            unit_id=unit.id,
            overall=overall,
            factors=scores,
            weights=weights,
            recommendations=recommendations,
            questioning_phase=phase,
        )

    @staticmethod
    def classify(score: float) -> QuestioningPhase:
        for lower, phase in _PHASE_BANDS:
            if score >= lower:
                return phase
        return QuestioningPhase.TRIAGE

    def recommend(self, scores: ConfidenceFactors) -> list[str]:
        """One advisory string per factor below its threshold, in factor order."""
        thresholds = self.policy.thresholds
        values = scores.as_dict()
        return [
            RECOMMENDATIONS[name]
            for name in FACTOR_NAMES
            if values[name] < getattr(thresholds, name)
        ]

    def add_to_history(self, pattern: Pattern) -> None:
        self.history.add(pattern)
        logger.debug(f"[Scorer] Pattern '{pattern.type}' added to history ({len(self.history)} total)")
