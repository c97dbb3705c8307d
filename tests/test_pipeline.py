from __future__ import annotations

import json
from pathlib import Path

import pytest

from specshard.checkpoint import ShardCheckpoint, context_filename
from specshard.config import PipelineConfig, load_config
from specshard.errors import ConfigError
from specshard.pipeline import load_decisions, load_units, run_pipeline
from specshard.report import RunReportGenerator
from specshard.schemas import WorkUnit


def test_run_pipeline_produces_one_result_per_unit(three_section_doc: str, vague_unit: WorkUnit, concrete_unit: WorkUnit) -> None:
    concrete = concrete_unit.model_copy(update={"shard_id": "shard-2"})

    result = run_pipeline(three_section_doc, [vague_unit, concrete])

    assert len(result.shard_result.shards) == 3
    assert [c.unit_id for c in result.contexts] == ["u-vague", "u-accounts"]
    assert [c.unit_id for c in result.confidences] == ["u-vague", "u-accounts"]
    assert len(result.validations) == 2

    # no shard id: falls back to the first shard
    assert result.contexts[0].source == "shard-1:01-overview.md"
    assert result.contexts[1].source == "shard-2:02-api-design.md"
    assert result.contexts[1].inherited_from == "u-vague"
    assert result.confidences[1].overall > result.confidences[0].overall


def test_run_pipeline_without_units(three_section_doc: str) -> None:
    result = run_pipeline(three_section_doc.encode("utf-8"), [])

    assert result.contexts == []
    assert result.confidences == []
    assert result.shard_result.index.title == "Product Spec"


def test_run_pipeline_applies_config(oversized_doc: str) -> None:
    result = run_pipeline(oversized_doc, [], {"sharding": {"max_shard_size": 6}})

    assert result.shard_result.metrics.split_shards == 1


def test_checkpoint_writes_every_artifact(tmp_path, three_section_doc: str, vague_unit: WorkUnit) -> None:
    result = run_pipeline(three_section_doc, [vague_unit])
    report = RunReportGenerator().generate(result)

    state = ShardCheckpoint().save(result, tmp_path, report=report)

    shard_file = (tmp_path / "01-overview.md").read_text(encoding="utf-8")
    assert shard_file.startswith("---\nid: shard-1\ntitle: Overview\n")
    assert shard_file.endswith("---\n\n# Overview\n\nOverview text.\n")

    index = json.loads((tmp_path / "index.json").read_text(encoding="utf-8"))
    assert [s["id"] for s in index["sections"]] == ["shard-1", "shard-2", "shard-3"]
    assert index["metrics"]["split_shards"] == 0

    context = json.loads((tmp_path / "contexts" / "u-vague.json").read_text(encoding="utf-8"))
    assert context["unit_id"] == "u-vague"
    assert context["embedded"] is True

    confidence = json.loads((tmp_path / "confidence.json").read_text(encoding="utf-8"))
    assert confidence[0]["unit_id"] == "u-vague"
    assert (tmp_path / "report.json").is_file()

    saved = json.loads((tmp_path / "checkpoint.json").read_text(encoding="utf-8"))
    assert saved == state
    assert state["status"] == "awaiting_clarification"
    assert state["units_needing_clarification"] == ["u-vague"]
    assert state["shard_count"] == 3
    assert state["context_count"] == 1


def test_checkpoint_without_units_points_to_assemble(tmp_path, three_section_doc: str) -> None:
    state = ShardCheckpoint().save(run_pipeline(three_section_doc, []), tmp_path / "out")

    assert state["status"] == "ready"
    assert "assemble" in state["next_command"]
    assert not (tmp_path / "out" / "report.json").exists()


def test_context_filename_is_filesystem_safe() -> None:
    assert context_filename("u-1") == "u-1.json"
    assert context_filename("epic/story 3") == "epic_story_3.json"
    assert context_filename("///") == "_.json"


def test_report_groups_recommendations_by_unit(three_section_doc: str, vague_unit: WorkUnit) -> None:
    other = vague_unit.model_copy(update={"id": "u-vague-2"})
    report = RunReportGenerator().generate(run_pipeline(three_section_doc, [vague_unit, other]))

    assert report["document"]["title"] == "Product Spec"
    assert [s["filename"] for s in report["shards"]] == ["01-overview.md", "02-api-design.md", "03-storage.md"]
    assert sum(report["phase_distribution"].values()) == 2
    assert all(units == ["u-vague", "u-vague-2"] for units in report["recommendations"].values())
    assert report["units"][1]["inherited_from"] == "u-vague"


def test_load_units_accepts_list_or_mapping(tmp_path) -> None:
    listed = tmp_path / "units.yaml"
    listed.write_text("- id: u1\n  title: First\n- id: u2\n  title: Second\n  dependencies: [u1]\n", encoding="utf-8")
    mapped = tmp_path / "units.json"
    mapped.write_text('{"units": [{"id": "u1", "title": "First", "complexity": "simple"}]}', encoding="utf-8")

    assert [u.id for u in load_units(listed)] == ["u1", "u2"]
    assert load_units(mapped)[0].complexity.value == "simple"


@pytest.mark.parametrize(
    "content",
    [
        "units: not-a-list\n",
        "- id: u1\n",                       # title missing
        "- id: u1\n  title: t\n  complexity: huge\n",
        "units: [unclosed\n",
    ],
)
def test_load_units_rejects_bad_files(tmp_path, content: str) -> None:
    path = tmp_path / "units.yaml"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(ConfigError):
        load_units(path)


def test_load_units_missing_file(tmp_path) -> None:
    with pytest.raises(ConfigError):
        load_units(tmp_path / "nope.yaml")


def test_load_decisions(tmp_path) -> None:
    path = tmp_path / "decisions.yaml"
    path.write_text(
        "decisions:\n"
        "  - id: d1\n    title: Use PostgreSQL\n    confidence: 90\n    affects: [u1]\n",
        encoding="utf-8",
    )

    decisions = load_decisions(path)

    assert decisions[0].title == "Use PostgreSQL"
    assert decisions[0].affects == ["u1"]


# --- Config -------------------------------------------------------------------

def test_load_config_defaults_and_env_override(monkeypatch) -> None:
    monkeypatch.delenv("SPECSHARD_LOG_LEVEL", raising=False)
    assert load_config(None) == PipelineConfig()

    monkeypatch.setenv("SPECSHARD_LOG_LEVEL", "debug")
    assert load_config(None).logging.level == "DEBUG"


def test_load_config_from_yaml(tmp_path, monkeypatch) -> None:
    monkeypatch.delenv("SPECSHARD_LOG_LEVEL", raising=False)
    path = tmp_path / "config.yaml"
    path.write_text("sharding:\n  max_shard_size: 42\nassembly:\n  strict_shard_match: true\n", encoding="utf-8")

    cfg = load_config(path)

    assert cfg.sharding.max_shard_size == 42
    assert cfg.assembly.strict_shard_match is True
    assert cfg.scoring.weights.requirements_clarity == 0.25


@pytest.mark.parametrize(
    "content",
    [
        "assembly:\n  min_context_size: 100\n  max_context_size: 10\n",
        "sharding:\n  boundary_depth: 9\n",
        "scoring:\n  weights:\n    pattern_similarity: 0.5\n",
        "- just\n- a list\n",
    ],
)
def test_load_config_rejects_invalid_values(tmp_path, content: str) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(ConfigError):
        load_config(path)


def test_load_config_missing_file(tmp_path) -> None:
    with pytest.raises(ConfigError):
        load_config(tmp_path / "missing.yaml")


def test_repository_config_is_valid(monkeypatch) -> None:
    monkeypatch.delenv("SPECSHARD_LOG_LEVEL", raising=False)
    cfg = load_config(Path(__file__).resolve().parents[1] / "config" / "config.yaml")

    assert cfg.sharding == PipelineConfig().sharding
    assert cfg.assembly == PipelineConfig().assembly
