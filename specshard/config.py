"""
Pipeline Configuration
-----------------------
Typed configuration for every stage, loaded from config/config.yaml.

Each section is a pydantic model so invalid values fail immediately when a
component is constructed, never halfway through a sharding run:

    logging   -> LoggingConfig
    sharding  -> ShardConfig
    scoring   -> ScoringPolicy
    assembly  -> AssemblyPolicy
    storage   -> StorageConfig

The magic numbers of the scoring and assembly heuristics (ambiguity scale,
complexity deltas, thresholds) are policy parameters, not derived values,
so they all live here.
"""
from __future__ import annotations

import math
import os
from pathlib import Path
from typing import Any, Optional, TypeVar

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from specshard.errors import ConfigError

ModelT = TypeVar("ModelT", bound=BaseModel)

FACTOR_NAMES = (
    "requirements_clarity",
    "test_coverage_defined",
    "ambiguity_clarity",
    "context_completeness",
    "dependencies_resolved",
    "pattern_similarity",
)


# --- Sharding -----------------------------------------------------------------

class ShardConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    max_shard_size: int = Field(default=1500, gt=0)     # non-blank lines per shard (target)
    boundary_depth: int = Field(default=2, ge=1, le=6)  # heading depth that starts a shard
    preserve_context: bool = True                       # record the previous shard title in `includes`


# --- Scoring ------------------------------------------------------------------

class FactorWeights(BaseModel):
    """Convex combination weights. Must sum to exactly 1.0."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    requirements_clarity: float = Field(default=0.25, ge=0.0, le=1.0)
    test_coverage_defined: float = Field(default=0.20, ge=0.0, le=1.0)
    ambiguity_clarity: float = Field(default=0.15, ge=0.0, le=1.0)
    context_completeness: float = Field(default=0.20, ge=0.0, le=1.0)
    dependencies_resolved: float = Field(default=0.10, ge=0.0, le=1.0)
    pattern_similarity: float = Field(default=0.10, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def check_sum(self) -> "FactorWeights":
        total = math.fsum(self.as_dict().values())
        if total != 1.0:
            raise ValueError(f"factor weights must sum to 1.0, got {total!r}")
        return self

    def as_dict(self) -> dict[str, float]:
        return {name: getattr(self, name) for name in FACTOR_NAMES}


class RecommendationThresholds(BaseModel):
    """A recommendation is emitted when a factor falls below its threshold."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    requirements_clarity: float = 60
    test_coverage_defined: float = 60
    ambiguity_clarity: float = 70
    context_completeness: float = 60
    dependencies_resolved: float = 100
    pattern_similarity: float = 30


class ScoringPolicy(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    weights: FactorWeights = Field(default_factory=FactorWeights)
    thresholds: RecommendationThresholds = Field(default_factory=RecommendationThresholds)

    # requirements_clarity
    requirements_base: float = 40
    long_requirement_chars: int = 50
    long_requirement_bonus: float = 5
    technical_token_bonus: float = 10
    numeric_bonus: float = 3
    acceptance_alignment_bonus: float = 10

    # test_coverage_defined
    test_strategy_base: float = 30
    test_term_bonus: float = 10
    test_strategy_cap: float = 60
    acceptance_base: float = 20
    acceptance_per_criterion: float = 5
    acceptance_cap: float = 20

    # ambiguity_clarity: a vague-word density of 1/scale*100 already reads as fully ambiguous
    ambiguity_scale: float = Field(default=2000, gt=0)

    # pattern_similarity
    novel_pattern_score: float = Field(default=10, ge=0, le=100)
    keyword_limit: int = Field(default=10, gt=0)

    @model_validator(mode="after")
    def check_monotonic_clarity(self) -> "ScoringPolicy":
        # adding a technical requirement may cost the alignment bonus; it must not cost more than it earns
        if self.technical_token_bonus < self.acceptance_alignment_bonus:
            raise ValueError(
                "technical_token_bonus must be >= acceptance_alignment_bonus "
                f"({self.technical_token_bonus} < {self.acceptance_alignment_bonus})"
            )
        return self


# --- Context assembly ---------------------------------------------------------

class AssemblyPolicy(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    base_confidence: float = 70
    complexity_deltas: dict[str, float] = Field(
        default_factory=lambda: {"simple": 20, "medium": 10, "complex": -10}
    )
    no_dependency_bonus: float = 10
    many_dependency_penalty: float = 15
    many_dependency_threshold: int = Field(default=3, ge=0)
    type_deltas: dict[str, float] = Field(
        default_factory=lambda: {"feature": 5, "research": -20}
    )

    extended_threshold: float = Field(default=85, ge=0, le=100)
    min_context_size: int = Field(default=20, ge=0)
    max_context_size: int = Field(default=2000, gt=0)

    max_requirements: int = Field(default=10, gt=0)
    max_acceptance_criteria: int = Field(default=8, gt=0)
    max_patterns: int = Field(default=5, ge=0)
    max_decisions: int = Field(default=10, ge=0)
    max_edge_cases: int = Field(default=10, ge=0)

    strict_shard_match: bool = False  # raise instead of falling back to the first shard

    @model_validator(mode="after")
    def check_size_range(self) -> "AssemblyPolicy":
        if self.min_context_size > self.max_context_size:
            raise ValueError(
                f"min_context_size ({self.min_context_size}) exceeds "
                f"max_context_size ({self.max_context_size})"
            )
        return self


# --- Ambient ------------------------------------------------------------------

class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    level: str = "INFO"
    file: Optional[str] = "logs/specshard.log"


class StorageConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    output_dir: str = "data/shards"
    history_file: Optional[str] = None
    decisions_file: Optional[str] = None


class PipelineConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    sharding: ShardConfig = Field(default_factory=ShardConfig)
    scoring: ScoringPolicy = Field(default_factory=ScoringPolicy)
    assembly: AssemblyPolicy = Field(default_factory=AssemblyPolicy)
    storage: StorageConfig = Field(default_factory=StorageConfig)


# --- Loading ------------------------------------------------------------------

def build_model(model_cls: type[ModelT], data: ModelT | dict[str, Any] | None) -> ModelT:
    """Validate `data` into `model_cls`, raising ConfigError on any problem."""
    if isinstance(data, model_cls):
        return data
    try:
        return model_cls.model_validate(data or {})
    except ValidationError as err:
        issues = "; ".join(
            f"{'.'.join(str(p) for p in issue['loc']) or model_cls.__name__}: {issue['msg']}"
            for issue in err.errors()
        )
        raise ConfigError(f"Invalid {model_cls.__name__}: {issues}") from err


def load_config(path: str | Path | None = None) -> PipelineConfig:
    """
    Load the pipeline config from YAML.

    A missing `path` (None) yields the defaults; a path that does not exist is
    an error. SPECSHARD_LOG_LEVEL overrides logging.level.
    """
    raw: dict[str, Any] = {}
    if path is not None:
        config_path = Path(path)
        if not config_path.is_file():
            raise ConfigError(f"Config file not found: {config_path}")
        with open(config_path, "r", encoding="utf-8") as f:
            try:
                raw = yaml.safe_load(f) or {}
            except yaml.YAMLError as err:
                raise ConfigError(f"Config file is not valid YAML: {config_path}: {err}") from err
        if not isinstance(raw, dict):
            raise ConfigError(f"Config root must be a mapping: {config_path}")

    env_level = os.getenv("SPECSHARD_LOG_LEVEL")
    if env_level:
        raw = {**raw, "logging": {**(raw.get("logging") or {}), "level": env_level.upper()}}

    return build_model(PipelineConfig, raw)
