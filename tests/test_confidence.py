from __future__ import annotations

import math

import pytest

from specshard.config import FactorWeights, ScoringPolicy
from specshard.confidence import factors
from specshard.confidence.history import PatternHistory
from specshard.confidence.scorer import RECOMMENDATIONS, ConfidenceScorer
from specshard.errors import ConfigError
from specshard.schemas import (
    CoreContext,
    DependencyStatus,
    ExtendedContext,
    Pattern,
    QuestioningPhase,
    TaskContext,
    WorkUnit,
)


@pytest.mark.parametrize(
    ("score", "phase"),
    [
        (0, QuestioningPhase.TRIAGE),
        (29, QuestioningPhase.TRIAGE),
        (29.999, QuestioningPhase.TRIAGE),
        (30, QuestioningPhase.EXPLORATION),
        (59, QuestioningPhase.EXPLORATION),
        (60, QuestioningPhase.EDGE_CASES),
        (79, QuestioningPhase.EDGE_CASES),
        (80, QuestioningPhase.VALIDATION),
        (94, QuestioningPhase.VALIDATION),
        (95, QuestioningPhase.COMPLETE),
        (100, QuestioningPhase.COMPLETE),
    ],
)
def test_phase_boundaries(score: float, phase: QuestioningPhase) -> None:
    assert ConfidenceScorer.classify(score) is phase


def test_vague_unit_scores_low(vague_unit: WorkUnit) -> None:
    result = ConfidenceScorer().compute(vague_unit, None)

    assert result.overall < 50
    assert result.factors.ambiguity_clarity < 30
    assert result.questioning_phase in (QuestioningPhase.TRIAGE, QuestioningPhase.EXPLORATION)

    # 0.25 * 40 (base clarity) + 0.10 * 100 (no dependencies) + 0.10 * 10 (novel)
    assert result.overall == pytest.approx(21.0)
    assert result.recommendations == [
        RECOMMENDATIONS["requirements_clarity"],
        RECOMMENDATIONS["test_coverage_defined"],
        RECOMMENDATIONS["ambiguity_clarity"],
        RECOMMENDATIONS["context_completeness"],
        RECOMMENDATIONS["pattern_similarity"],
    ]


def test_rich_context_versus_degraded_context(vague_unit: WorkUnit) -> None:
    scorer = ConfidenceScorer()
    rich = TaskContext(
        core=CoreContext(dependencies=DependencyStatus(resolved=True)),
        embedded=True,
        size=800,
        extended=ExtendedContext(
            patterns=["REST endpoint"],
            historical_decisions=["Use PostgreSQL"],
            edge_cases=["Duplicate email"],
        ),
        source="shard-1:01-overview.md",
    )
    poor = TaskContext(embedded=False, size=50)

    rich_result = scorer.compute(vague_unit, rich)
    poor_result = scorer.compute(vague_unit, poor)

    assert rich_result.factors.context_completeness > 80
    assert rich_result.overall - poor_result.overall > 15


def test_context_completeness_steps() -> None:
    assert factors.context_completeness(None) == 0
    assert factors.context_completeness(TaskContext(embedded=True, size=199)) == 30
    assert factors.context_completeness(TaskContext(embedded=True, size=200)) == 45
    assert factors.context_completeness(TaskContext(embedded=True, size=500)) == 55
    assert factors.context_completeness(TaskContext(embedded=True, size=1000, source="x")) == 70


def test_concrete_unit_clarity_and_coverage(concrete_unit: WorkUnit) -> None:
    policy = ScoringPolicy()

    # 40 + (5 long + 10 technical + 3 digit) + (10 technical + 3 digit) + 10 alignment
    assert factors.requirements_clarity(concrete_unit, policy) == 81
    # strategy: 30 + 10 * (unit test, integration test, validation) capped at 60; criteria: 20 + 10
    assert factors.test_coverage_defined(concrete_unit, policy) == 90


@pytest.mark.parametrize(
    ("requirement", "expected"),
    [
        ("Expose an API for users", 50),
        ("Expose an api for users", 50),
        ("Store the uuid of every user", 50),
        ("Respond within 200ms", 53),       # technical + digit
        ("Respond within 200 ms", 53),
        ("List the items per user", 40),    # "ms" inside a word is not a unit
    ],
)
def test_technical_tokens_match_in_any_case(requirement: str, expected: float) -> None:
    unit = WorkUnit(id="u", title="t", requirements=[requirement])

    assert factors.requirements_clarity(unit, ScoringPolicy()) == expected


def test_scores_are_bounded() -> None:
    unit = WorkUnit(
        id="u-big",
        title="Bulk import API",
        requirements=[f"POST /api/v1/import/{i} accepts a JSON batch of up to 500 records per request" for i in range(20)],
        acceptance_criteria=[f"Batch {i} returns 202" for i in range(20)],
        test_strategy="unit test integration test e2e property-based tdd bdd smoke test regression test",
        dependencies=["auth"],
    )
    result = ConfidenceScorer().compute(unit, TaskContext(embedded=True, size=5000, source="s"))

    for value in result.factors.as_dict().values():
        assert 0 <= value <= 100
    assert 0 <= result.overall <= 100
    assert result.factors.requirements_clarity == 100
    assert result.factors.dependencies_resolved == 0


def test_adding_technical_requirement_never_lowers_clarity() -> None:
    policy = ScoringPolicy()
    base = WorkUnit(
        id="u",
        title="Users",
        requirements=["List users", "Show a user"],
        acceptance_criteria=["Lists render"],
    )
    extended = base.model_copy(update={"requirements": [*base.requirements, "GET /users returns JSON"]})

    assert factors.requirements_clarity(extended, policy) >= factors.requirements_clarity(base, policy)


def test_adding_vague_word_never_raises_ambiguity_clarity() -> None:
    policy = ScoringPolicy()
    base = WorkUnit(
        id="u",
        title="Export invoices to CSV",
        requirements=["Include invoice number, client and amount columns in the export file"],
    )
    vaguer = base.model_copy(update={"requirements": [*base.requirements, "maybe"]})

    assert factors.ambiguity_clarity(vaguer, policy) <= factors.ambiguity_clarity(base, policy)


def test_empty_unit_never_raises() -> None:
    result = ConfidenceScorer().compute(WorkUnit(id="u-empty", title=""))

    assert result.factors.requirements_clarity == 0
    assert result.factors.ambiguity_clarity == 0
    assert result.factors.dependencies_resolved == 100
    assert result.overall == pytest.approx(11.0)


def test_ambiguity_clarity_floors_wordless_units() -> None:
    policy = ScoringPolicy()

    assert factors.ambiguity_clarity(WorkUnit(id="u", title="", test_strategy="  "), policy) == 0
    assert factors.ambiguity_clarity(WorkUnit(id="u", title="-- !!"), policy) == 0
    assert factors.ambiguity_clarity(WorkUnit(id="u", title="Export invoices"), policy) == 100


def test_dependencies_resolved_is_binary() -> None:
    unit = WorkUnit(id="u", title="t", dependencies=["a"])
    resolved = TaskContext(core=CoreContext(dependencies=DependencyStatus(resolved=True)))

    assert factors.dependencies_resolved(unit, None) == 0
    assert factors.dependencies_resolved(unit, TaskContext()) == 0
    assert factors.dependencies_resolved(unit, resolved) == 100


def test_pattern_similarity_uses_history() -> None:
    unit = WorkUnit(
        id="u",
        title="User registration endpoint",
        requirements=["Create user accounts via REST"],
    )
    history = PatternHistory()
    scorer = ConfidenceScorer(history)

    assert scorer.compute(unit).factors.pattern_similarity == 10

    scorer.add_to_history(Pattern(id="p1", type="REST endpoint", success_rate=0.9))
    scorer.add_to_history(Pattern(id="p2", type="batch job", success_rate=1.0))

    # keywords: user, registration, endpoint, create, accounts, rest -> 2 of 6 match
    assert scorer.compute(unit).factors.pattern_similarity == pytest.approx(2 / 6 * 100 * 0.9)
    assert len(history) == 2


def test_weights_sum_to_exactly_one() -> None:
    weights = FactorWeights()

    assert math.fsum(weights.as_dict().values()) == 1.0
    assert ConfidenceScorer().compute(WorkUnit(id="u", title="t")).weights == weights.as_dict()


def test_invalid_weights_raise_config_error() -> None:
    with pytest.raises(ConfigError):
        ConfidenceScorer(policy={"weights": {"requirements_clarity": 0.5}})


def test_alignment_bonus_cannot_exceed_technical_bonus() -> None:
    with pytest.raises(ConfigError):
        ConfidenceScorer(policy={"technical_token_bonus": 5, "acceptance_alignment_bonus": 10})


def test_history_snapshot_and_restore() -> None:
    history = PatternHistory([Pattern(id="p1", type="crud", success_rate=0.5)])
    saved = history.snapshot()

    history.add(Pattern(id="p2", type="etl", success_rate=0.7))
    assert [p.id for p in history] == ["p1", "p2"]

    history.restore(saved)
    assert [p.id for p in history] == ["p1"]
    assert saved == history.snapshot()


def test_history_load_and_dump(tmp_path) -> None:
    path = tmp_path / "patterns.json"
    assert len(PatternHistory.load(path)) == 0

    PatternHistory([Pattern(id="p1", type="REST endpoint", success_rate=0.8)]).dump(path)
    loaded = PatternHistory.load(path)
    assert [p.type for p in loaded] == ["REST endpoint"]

    path.write_text('[{"id": "bad", "type": "x", "success_rate": 3}]', encoding="utf-8")
    with pytest.raises(ConfigError):
        PatternHistory.load(path)
