"""
Confidence factors - one pure function per factor.

Every function returns a float clamped to [0, 100] and never raises for
missing or empty input; an absent input simply floors its factor.
Tunable constants come from ScoringPolicy. The context-completeness credits
below are fixed.
"""
from __future__ import annotations

import re
from typing import Iterable, Optional

from specshard.config import ScoringPolicy
from specshard.confidence.vocabulary import (
    STOP_WORDS,
    TECHNICAL_TOKEN_RE,
    TESTING_TERMS,
    VAGUE_TERMS,
)
from specshard.schemas import Pattern, TaskContext, WorkUnit
from specshard.utils.helpers import clamp, extract_keywords, word_tokens

_DIGIT_RE = re.compile(r"\d")

# context_completeness credits
EMBEDDED_CREDIT = 30
SIZE_STEPS = ((200, 15), (500, 10), (1000, 5))
PATTERNS_CREDIT = 15
DECISIONS_CREDIT = 15
EDGE_CASES_CREDIT = 10
SOURCE_CREDIT = 10
RESOLVED_CREDIT = 10


def requirements_clarity(unit: WorkUnit, policy: ScoringPolicy) -> float:
    if not unit.requirements:
        return 0.0

    score = policy.requirements_base
    for requirement in unit.requirements:
        if len(requirement) > policy.long_requirement_chars:
            score += policy.long_requirement_bonus
        if TECHNICAL_TOKEN_RE.search(requirement):
            score += policy.technical_token_bonus
        if _DIGIT_RE.search(requirement):
            score += policy.numeric_bonus

    if len(unit.acceptance_criteria) >= 0.5 * len(unit.requirements):
        score += policy.acceptance_alignment_bonus
    return clamp(score)


def test_coverage_defined(unit: WorkUnit, policy: ScoringPolicy) -> float:
    score = 0.0

    strategy = unit.test_strategy.strip().lower()
    if strategy:
        terms_found = sum(1 for term in TESTING_TERMS if term in strategy)
        score += min(policy.test_strategy_cap, policy.test_strategy_base + policy.test_term_bonus * terms_found)

    if unit.acceptance_criteria:
        per_criterion = policy.acceptance_per_criterion * len(unit.acceptance_criteria)
        score += policy.acceptance_base + min(policy.acceptance_cap, per_criterion)

    return clamp(score)


def ambiguity_clarity(unit: WorkUnit, policy: ScoringPolicy) -> float:
    """
    100 minus vague-term density scaled by `ambiguity_scale`.

    Missing input floors a factor at 0, so a unit with no words at all scores
    0 here instead of reading as perfectly unambiguous.
    """
    texts = [unit.title, *unit.requirements, *unit.acceptance_criteria, unit.test_strategy]
    tokens = [token for text in texts for token in word_tokens(text)]
    if not tokens:
        return 0.0

    vague = sum(1 for token in tokens if token in VAGUE_TERMS)
    ambiguity = min(100.0, vague / len(tokens) * policy.ambiguity_scale)
    return clamp(100.0 - ambiguity)


def context_completeness(context: Optional[TaskContext]) -> float:
    if context is None:
        return 0.0

    score = 0.0
    if context.embedded:
        score += EMBEDDED_CREDIT
    for threshold, credit in SIZE_STEPS:
        if context.size >= threshold:
            score += credit

    extended = context.extended
    if extended is not None:
        if extended.patterns:
            score += PATTERNS_CREDIT
        if extended.historical_decisions:
            score += DECISIONS_CREDIT
        if extended.edge_cases:
            score += EDGE_CASES_CREDIT

    if context.source.strip():
        score += SOURCE_CREDIT
    if context.core.dependencies.resolved:
        score += RESOLVED_CREDIT
    return clamp(score)


def dependencies_resolved(unit: WorkUnit, context: Optional[TaskContext]) -> float:
    """Binary: either nothing blocks the unit or something does."""
    if not unit.dependencies:
        return 100.0
    if context is not None and context.core.dependencies.resolved:
        return 100.0
    return 0.0


def pattern_similarity(unit: WorkUnit, history: Iterable[Pattern], policy: ScoringPolicy) -> float:
    patterns = list(history)
    if not patterns:
        return clamp(policy.novel_pattern_score)

    keywords = extract_keywords(
        [unit.title, *unit.requirements],
        STOP_WORDS,
        min_length=4,
        limit=policy.keyword_limit,
    )
    if not keywords:
        return 0.0

    best = 0.0
    for pattern in patterns:
        type_tokens = set(word_tokens(pattern.type))
        matches = sum(1 for keyword in keywords if keyword in type_tokens)
        best = max(best, matches / len(keywords) * 100 * pattern.success_rate)
    return clamp(best)
