"""
Sharding Pipeline - Shard, Assemble, Score
-------------------------------------------
Runs the three core stages in order over one document and one ordered list
of work units:

  1. DocumentSharder     text -> shards + index
  2. ContextAssembler    (unit, matched shard, predecessor) -> EmbeddedContext
  3. ConfidenceScorer    (unit, EmbeddedContext) -> ConfidenceResult

The pipeline performs no file I/O of its own apart from the input loaders
below; persisting the result is ShardCheckpoint's job.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Optional

import yaml
from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from specshard.config import PipelineConfig, build_model
from specshard.confidence.history import PatternHistory
from specshard.confidence.scorer import ConfidenceScorer
from specshard.context.assembler import ContextAssembler
from specshard.context.validation import ContextValidation, validate_context
from specshard.errors import ConfigError
from specshard.schemas import ConfidenceResult, Decision, EmbeddedContext, WorkUnit
from specshard.sharding.schemas import ShardResult
from specshard.sharding.sharder import DocumentSharder


class PipelineResult(BaseModel):
    shard_result: ShardResult
    contexts: list[EmbeddedContext] = Field(default_factory=list)
    confidences: list[ConfidenceResult] = Field(default_factory=list)
    validations: list[ContextValidation] = Field(default_factory=list)


def run_pipeline(
    text: str | bytes,
    units: list[WorkUnit],
    config: PipelineConfig | dict | None = None,
    history: Optional[PatternHistory] = None,
    decisions: Optional[Iterable[Decision]] = None,
) -> PipelineResult:
    """
    Execute shard -> assemble -> score.

    The same PatternHistory is read by the assembler and the scorer; pass
    your own instance to keep patterns across runs.
    """
    config = build_model(PipelineConfig, config)
    history = history if history is not None else PatternHistory()

    shard_result = DocumentSharder(config.sharding).shard(text)

    assembler = ContextAssembler(config.assembly, history=history, decisions=decisions)
    contexts = assembler.process_chain(units, shard_result.shards)

    scorer = ConfidenceScorer(history, config.scoring)
    confidences = [scorer.compute(unit, context) for unit, context in zip(units, contexts)]
    validations = [
        validate_context(context, unit, config.assembly) for unit, context in zip(units, contexts)
    ]

    if confidences:
        mean = sum(c.overall for c in confidences) / len(confidences)
        logger.info(f"[Pipeline] {len(units)} unit(s) scored | mean confidence {mean:.1f}")
    return PipelineResult(
        shard_result=shard_result,
        contexts=contexts,
        confidences=confidences,
        validations=validations,
    )


# --- Input loaders --------------------------------------------------------------

def _read_records(path: str | Path, key: str) -> list[Any]:
    """A YAML/JSON file holding either a list or a mapping with `key` -> list."""
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"File not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as err:
            raise ConfigError(f"{path} is not valid YAML/JSON: {err}") from err

    if isinstance(data, dict):
        data = data.get(key)
    if data is None:
        return []
    if not isinstance(data, list):
        raise ConfigError(f"{path}: expected a list of {key}")
    return data


def load_units(path: str | Path) -> list[WorkUnit]:
    records = _read_records(path, "units")
    try:
        units = [WorkUnit.model_validate(r) for r in records]
    except ValidationError as err:
        raise ConfigError(f"Invalid work unit in {path}: {err}") from err
    logger.info(f"[Pipeline] Loaded {len(units)} work unit(s) from {path}")
    return units


def load_decisions(path: str | Path) -> list[Decision]:
    records = _read_records(path, "decisions")
    try:
        decisions = [Decision.model_validate(r) for r in records]
    except ValidationError as err:
        raise ConfigError(f"Invalid decision record in {path}: {err}") from err
    logger.info(f"[Pipeline] Loaded {len(decisions)} decision(s) from {path}")
    return decisions
