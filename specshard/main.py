"""
specshard - CLI Entry Point
----------------------------
Exposes Typer commands for each pipeline stage.

Usage:
    python -m specshard.main shard docs/spec.md                     # Shard only
    python -m specshard.main shard docs/spec.md --max-size 400      # Override shard size
    python -m specshard.main assemble docs/spec.md -u units.yaml    # Shard + contexts + confidence
    python -m specshard.main score units.yaml                       # Confidence without context
    python -m specshard.main score units.yaml --contexts data/shards/contexts
    python -m specshard.main status                                 # Show checkpoint state
"""
from __future__ import annotations

import sys

# Windows cp1252 terminal fix: force UTF-8 so shard titles with non-ASCII
# characters do not crash the Rich console renderer.
if sys.platform == "win32":
    sys.stdout.reconfigure(encoding="utf-8", errors="replace")
    sys.stderr.reconfigure(encoding="utf-8", errors="replace")

from pathlib import Path
from typing import Optional

import orjson
import typer
from dotenv import load_dotenv
from loguru import logger
from rich import box
from rich.console import Console
from rich.table import Table

from specshard.checkpoint import ShardCheckpoint, context_filename
from specshard.config import AssemblyPolicy, PipelineConfig, ShardConfig, build_model, load_config
from specshard.confidence.history import PatternHistory
from specshard.confidence.scorer import ConfidenceScorer
from specshard.errors import SpecShardError
from specshard.pipeline import load_decisions, load_units, run_pipeline
from specshard.report import RunReportGenerator
from specshard.schemas import EmbeddedContext
from specshard.utils.helpers import load_json
from specshard.utils.logger import setup_logger

app = typer.Typer(
    name="specshard",
    help="Specification sharding, confidence scoring and context assembly",
    add_completion=False,
)
console = Console()

DEFAULT_CONFIG = "config/config.yaml"


# --- Helpers ------------------------------------------------------------------

def _bootstrap(config_path: Optional[str]) -> PipelineConfig:
    """Load .env + config and install the log sinks."""
    load_dotenv()
    if config_path is None and Path(DEFAULT_CONFIG).is_file():
        config_path = DEFAULT_CONFIG
    cfg = load_config(config_path)
    setup_logger(log_level=cfg.logging.level, log_file=cfg.logging.file)
    return cfg


def _with_sharding(cfg: PipelineConfig, max_size: Optional[int], depth: Optional[int], no_context: bool) -> PipelineConfig:
    overrides = {}
    if max_size is not None:
        overrides["max_shard_size"] = max_size
    if depth is not None:
        overrides["boundary_depth"] = depth
    if no_context:
        overrides["preserve_context"] = False
    if not overrides:
        return cfg
    sharding = build_model(ShardConfig, {**cfg.sharding.model_dump(), **overrides})
    return cfg.model_copy(update={"sharding": sharding})


def _fail(err: Exception) -> None:
    console.print(f"[bold red]Error:[/bold red] {err}")
    raise typer.Exit(1)


# --- Commands -----------------------------------------------------------------

@app.command()
def shard(
    document: Path = typer.Argument(..., exists=True, dir_okay=False, help="Markdown document to shard"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to pipeline config YAML"),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Output directory (default: storage.output_dir)"),
    max_size: Optional[int] = typer.Option(None, "--max-size", help="Max non-blank lines per shard"),
    depth: Optional[int] = typer.Option(None, "--depth", help="Heading depth that starts a shard (1-6)"),
    no_context: bool = typer.Option(False, "--no-context", help="Do not record the previous shard in `includes`"),
) -> None:
    """
    Split a document into bounded shards and write them with an index.

    \b
    Steps:
      1. Parse the document and detect boundaries
      2. Cut, cross-reference and split oversized shards
      3. Write shard files, index.json and checkpoint.json
    """
    try:
        cfg = _with_sharding(_bootstrap(config), max_size, depth, no_context)
        result = run_pipeline(document.read_bytes(), [], cfg)
    except SpecShardError as err:
        _fail(err)

    reporter = RunReportGenerator()
    report = reporter.generate(result)
    reporter.print_report(report)
    state = ShardCheckpoint(cfg.storage).save(result, output, report=report)
    console.print(f"\n[green][OK] {state['shard_count']} shard(s) written to {state['output_dir']}[/green]")


@app.command()
def assemble(
    document: Path = typer.Argument(..., exists=True, dir_okay=False, help="Markdown document to shard"),
    units: Path = typer.Option(..., "--units", "-u", exists=True, dir_okay=False, help="YAML/JSON work units"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to pipeline config YAML"),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Output directory (default: storage.output_dir)"),
    history: Optional[str] = typer.Option(None, "--history", help="Pattern history JSON (default: storage.history_file)"),
    decisions: Optional[str] = typer.Option(None, "--decisions", help="Decision log YAML/JSON (default: storage.decisions_file)"),
    strict: bool = typer.Option(False, "--strict", help="Fail on unmatched shard ids instead of falling back"),
) -> None:
    """
    Shard a document, assemble one context per work unit and score each unit.
    """
    try:
        cfg = _bootstrap(config)
        if strict:
            assembly = build_model(AssemblyPolicy, {**cfg.assembly.model_dump(), "strict_shard_match": True})
            cfg = cfg.model_copy(update={"assembly": assembly})

        history_path = history or cfg.storage.history_file
        decisions_path = decisions or cfg.storage.decisions_file
        pattern_history = PatternHistory.load(history_path) if history_path else PatternHistory()
        decision_log = load_decisions(decisions_path) if decisions_path else []

        result = run_pipeline(
            document.read_bytes(),
            load_units(units),
            cfg,
            history=pattern_history,
            decisions=decision_log,
        )
    except SpecShardError as err:
        _fail(err)

    reporter = RunReportGenerator()
    report = reporter.generate(result)
    reporter.print_report(report)
    state = ShardCheckpoint(cfg.storage).save(result, output, report=report)
    console.print(
        f"\n[green][OK] {state['shard_count']} shard(s), {state['context_count']} context(s) "
        f"written to {state['output_dir']}[/green]"
    )
    if state["units_needing_clarification"]:
        console.print(
            f"[yellow]Needs clarification: {', '.join(state['units_needing_clarification'])}[/yellow]"
        )


@app.command()
def score(
    units: Path = typer.Argument(..., exists=True, dir_okay=False, help="YAML/JSON work units"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to pipeline config YAML"),
    contexts: Optional[Path] = typer.Option(None, "--contexts", help="Directory of contexts/{unit_id}.json from a previous run"),
    history: Optional[str] = typer.Option(None, "--history", help="Pattern history JSON"),
    as_json: bool = typer.Option(False, "--json", help="Print results as JSON on stdout"),
) -> None:
    """Score work units, optionally against previously assembled contexts."""
    try:
        cfg = _bootstrap(config)
        history_path = history or cfg.storage.history_file
        scorer = ConfidenceScorer(
            PatternHistory.load(history_path) if history_path else PatternHistory(),
            cfg.scoring,
        )

        results = []
        for unit in load_units(units):
            context = None
            if contexts is not None:
                context_file = contexts / context_filename(unit.id)
                if context_file.is_file():
                    context = EmbeddedContext.model_validate(load_json(context_file))
                else:
                    logger.warning(f"[CLI] No context file for {unit.id} in {contexts}")
            results.append(scorer.compute(unit, context))
    except (SpecShardError, ValueError) as err:
        _fail(err)

    if as_json:
        payload = [r.model_dump(mode="json") for r in results]
        typer.echo(orjson.dumps(payload, option=orjson.OPT_INDENT_2).decode())
        return

    t = Table(title="Confidence", box=box.ROUNDED)
    t.add_column("Unit", style="cyan", no_wrap=True)
    t.add_column("Overall", style="bold white", justify="right")
    t.add_column("Phase")
    t.add_column("Recommendations", style="dim")
    for r in results:
        t.add_row(r.unit_id, f"{r.overall:.1f}", r.questioning_phase.value, "\n".join(r.recommendations) or "-")
    console.print(t)


@app.command()
def status(
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Output directory of a previous run"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to pipeline config YAML"),
) -> None:
    """Show the checkpoint state of the last run."""
    try:
        cfg = _bootstrap(config)
    except SpecShardError as err:
        _fail(err)

    path = Path(output or cfg.storage.output_dir) / "checkpoint.json"
    if not path.exists():
        console.print(f"[yellow]No checkpoint found at {path}.  Run: python -m specshard.main shard <document>[/yellow]")
        raise typer.Exit(1)

    state = load_json(path)
    console.print()
    console.print("[bold]Shard Checkpoint[/bold]")
    console.print(f"  Document  : [cyan]{state.get('document_title')}[/cyan]")
    console.print(f"  Status    : [yellow]{state.get('status')}[/yellow]")
    console.print(f"  Timestamp : {state.get('timestamp')}")
    console.print(f"  Shards    : [green]{state.get('shard_count')}[/green]")
    console.print(f"  Contexts  : [green]{state.get('context_count')}[/green]")
    pending = state.get("units_needing_clarification") or []
    if pending:
        console.print(f"  Clarify   : [red]{', '.join(pending)}[/red]")
    console.print()
    console.print(f"  Next      : [bold]{state.get('next_command')}[/bold]")


# --- Entry Point --------------------------------------------------------------

if __name__ == "__main__":
    app()
