"""
Shard Checkpoint
-----------------
Persists a pipeline run to disk and writes a machine-readable checkpoint
state file. This is the only writer in the package; the sharder, scorer and
assembler never touch the filesystem.

Layout under the output directory:

    01-overview.md ...         one file per shard, YAML front matter + content
    index.json                 navigation index + sharding metrics
    contexts/{unit_id}.json    one embedded context per work unit
    confidence.json            confidence result per work unit
    report.json                run report (when one is passed in)
    checkpoint.json            status, counts, next command
"""
from __future__ import annotations

import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import yaml
from loguru import logger

from specshard.config import StorageConfig
from specshard.pipeline import PipelineResult
from specshard.schemas import QuestioningPhase
from specshard.sharding.schemas import Shard
from specshard.utils.helpers import ensure_dirs, save_json

_UNSAFE_RE = re.compile(r"[^A-Za-z0-9._-]+")
_NEEDS_CLARIFICATION = (QuestioningPhase.TRIAGE, QuestioningPhase.EXPLORATION)


def context_filename(unit_id: str) -> str:
    """File name of a unit's persisted context, safe on every platform."""
    return f"{_UNSAFE_RE.sub('_', unit_id) or 'unit'}.json"


class ShardCheckpoint:
    """Persists pipeline output and writes the hand-off state."""

    def __init__(self, storage: Optional[StorageConfig] = None) -> None:
        self.storage = storage or StorageConfig()

    def save(
        self,
        result: PipelineResult,
        output_dir: str | Path | None = None,
        report: Optional[dict] = None,
    ) -> dict:
        """Write every artifact of `result` and return the checkpoint state."""
        out = Path(output_dir or self.storage.output_dir)
        contexts_dir = out / "contexts"
        ensure_dirs(out, contexts_dir)

        shard_result = result.shard_result
        for shard in shard_result.shards:
            (out / shard.filename).write_text(self.render_shard(shard), encoding="utf-8")
        logger.debug(f"[Checkpoint] Saved {len(shard_result.shards)} shard file(s) -> {out}/")

        save_json(
            {
                **shard_result.index.model_dump(mode="json"),
                "metrics": shard_result.metrics.model_dump(mode="json"),
            },
            out / "index.json",
        )

        for context in result.contexts:
            save_json(context.model_dump(mode="json"), contexts_dir / context_filename(context.unit_id))

        save_json([c.model_dump(mode="json") for c in result.confidences], out / "confidence.json")
        if report is not None:
            save_json(report, out / "report.json")

        needs_review = [c.unit_id for c in result.confidences if c.questioning_phase in _NEEDS_CLARIFICATION]
        state = {
            "status": "awaiting_clarification" if needs_review else "ready",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "document_title": shard_result.index.title,
            "shard_count": len(shard_result.shards),
            "context_count": len(result.contexts),
            "units_needing_clarification": needs_review,
            "output_dir": str(out),
            "next_command": (
                f"python -m specshard.main assemble <document> --units <units.yaml> --output {out}"
                if not result.contexts
                else f"python -m specshard.main status --output {out}"
            ),
        }
        save_json(state, out / "checkpoint.json")
        logger.info(
            f"[Checkpoint] Written - {len(shard_result.shards)} shard(s), "
            f"{len(result.contexts)} context(s) -> {out}"
        )
        return state

    @staticmethod
    def render_shard(shard: Shard) -> str:
        """Shard file body: YAML front matter followed by the shard content."""
        front_matter = {
            "id": shard.id,
            "title": shard.title,
            "source_line": shard.metadata.source_line,
            "content_lines": shard.metadata.content_lines,
            "has_code_blocks": shard.metadata.has_code_blocks,
            "has_diagrams": shard.metadata.has_diagrams,
            "includes": list(shard.context_boundary.includes),
            "references": list(shard.context_boundary.references),
            "dependencies": list(shard.context_boundary.dependencies),
        }
        header = yaml.safe_dump(front_matter, sort_keys=False, allow_unicode=True)
        return f"---\n{header}---\n\n{shard.content}"
