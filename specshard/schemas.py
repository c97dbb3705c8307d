"""
Core Pydantic schemas for the sharding pipeline.

Work units come from an external task-definition collaborator; contexts and
confidence results flow from the assembler to the scorer and on to the
persistence hand-off. Shard-specific models live in sharding/schemas.py.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from specshard.config import FACTOR_NAMES


# --- Enumerations ------------------------------------------------------------

class Complexity(str, Enum):
    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"


class QuestioningPhase(str, Enum):
    TRIAGE = "TRIAGE"            # <30  - major clarification needed
    EXPLORATION = "EXPLORATION"  # 30-60 - significant gaps
    EDGE_CASES = "EDGE_CASES"    # 60-80 - minor clarifications
    VALIDATION = "VALIDATION"    # 80-95 - final confirmation
    COMPLETE = "COMPLETE"        # >=95 - ready to proceed


class DependencyState(str, Enum):
    COMPLETED = "completed"
    PENDING = "pending"


# --- Inputs -------------------------------------------------------------------

class WorkUnit(BaseModel):
    """An atomic, independently schedulable piece of implementation work."""

    id: str
    title: str
    requirements: list[str] = Field(default_factory=list)
    acceptance_criteria: list[str] = Field(default_factory=list)
    test_strategy: str = ""
    dependencies: list[str] = Field(default_factory=list)

    # Assembly hints
    shard_id: Optional[str] = None
    complexity: Complexity = Complexity.MEDIUM
    type: str = "task"                  # "feature" | "research" | "bugfix" | ...


class Pattern(BaseModel):
    """A previously seen task shape and how often it succeeded."""

    model_config = ConfigDict(frozen=True)

    id: str
    type: str                                       # e.g. "REST endpoint"
    success_rate: float = Field(ge=0.0, le=1.0)
    implementation: str = ""


class Decision(BaseModel):
    """A historical design decision that later units may need to honour."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    rationale: str = ""
    confidence: float = Field(default=50.0, ge=0.0, le=100.0)
    affects: list[str] = Field(default_factory=list)   # work unit ids or dependency names


# --- Context ------------------------------------------------------------------

class DependencyStatus(BaseModel):
    resolved: bool = False
    items: list[str] = Field(default_factory=list)
    notes: str = ""


class DependencyEntry(BaseModel):
    id: str
    state: DependencyState = DependencyState.PENDING


class CoreContext(BaseModel):
    direct_requirements: list[str] = Field(default_factory=list)
    acceptance_criteria: list[str] = Field(default_factory=list)
    dependencies: DependencyStatus = Field(default_factory=DependencyStatus)
    dependency_entries: list[DependencyEntry] = Field(default_factory=list)


class ExtendedContext(BaseModel):
    patterns: list[str] = Field(default_factory=list)
    historical_decisions: list[str] = Field(default_factory=list)
    edge_cases: list[str] = Field(default_factory=list)
    excerpt: str = ""


class ReferenceContext(BaseModel):
    """Where a packet came from and what it links to. Never trimmed."""

    related_shards: list[str] = Field(default_factory=list)       # titles of shards the source shard links to
    shard_dependencies: list[str] = Field(default_factory=list)   # linked shards earlier in the document
    includes: list[str] = Field(default_factory=list)             # titles of preceding context
    previous_units: list[str] = Field(default_factory=list)       # units completed earlier in the chain


class TaskContext(BaseModel):
    """Whatever context is available for a unit when its confidence is computed."""

    core: CoreContext = Field(default_factory=CoreContext)
    embedded: bool = False
    extended: Optional[ExtendedContext] = None
    size: int = 0          # lines of context
    source: str = ""       # provenance of the context


class EmbeddedContext(TaskContext):
    """
    The self-contained packet attached to a work unit by the assembler.

    `inherited_from` is a weak, single-hop link to the previous unit in the
    chain. It names the predecessor; it never owns or copies it.
    """

    unit_id: str
    embedded: bool = True
    pre_confidence: float = 0.0
    inherited_from: Optional[str] = None
    references: ReferenceContext = Field(default_factory=ReferenceContext)
    text: str = ""


# --- Confidence ---------------------------------------------------------------

class ConfidenceFactors(BaseModel):
    requirements_clarity: float = Field(default=0.0, ge=0.0, le=100.0)
    test_coverage_defined: float = Field(default=0.0, ge=0.0, le=100.0)
    ambiguity_clarity: float = Field(default=0.0, ge=0.0, le=100.0)
    context_completeness: float = Field(default=0.0, ge=0.0, le=100.0)
    dependencies_resolved: float = Field(default=0.0, ge=0.0, le=100.0)
    pattern_similarity: float = Field(default=0.0, ge=0.0, le=100.0)

    def as_dict(self) -> dict[str, float]:
        return {name: getattr(self, name) for name in FACTOR_NAMES}


class ConfidenceResult(BaseModel):
    unit_id: str = ""
    overall: float = Field(ge=0.0, le=100.0)
    factors: ConfidenceFactors
    weights: dict[str, float]
    recommendations: list[str] = Field(default_factory=list)
    questioning_phase: QuestioningPhase
