"""
Run Report Generator
---------------------
Produces a machine-readable summary of a pipeline run plus a Rich-formatted
console rendering of it.
"""
from __future__ import annotations

from collections import Counter
from datetime import datetime, timezone

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from specshard.pipeline import PipelineResult
from specshard.schemas import QuestioningPhase
from specshard.utils.helpers import truncate_text

console = Console()

_PHASE_STYLES = {
    QuestioningPhase.TRIAGE.value: "red",
    QuestioningPhase.EXPLORATION.value: "yellow",
    QuestioningPhase.EDGE_CASES.value: "cyan",
    QuestioningPhase.VALIDATION.value: "green",
    QuestioningPhase.COMPLETE.value: "bold green",
}


class RunReportGenerator:
    """Builds and prints the report for one pipeline run."""

    # --- Public API -----------------------------------------------------------

    def generate(self, result: PipelineResult) -> dict:
        shard_result = result.shard_result
        return {
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "document": {
                "title": shard_result.index.title,
                "introduction_preview": truncate_text(shard_result.index.introduction, 200),
            },
            "metrics": shard_result.metrics.model_dump(),
            "shards": [
                {
                    "id": s.id,
                    "title": s.title,
                    "filename": s.filename,
                    "line": s.metadata.source_line,
                    "content_lines": s.metadata.content_lines,
                    "has_code_blocks": s.metadata.has_code_blocks,
                    "has_diagrams": s.metadata.has_diagrams,
                    "dependencies": list(s.context_boundary.dependencies),
                }
                for s in shard_result.shards
            ],
            "units": self._units(result),
            "phase_distribution": self._phase_distribution(result),
            "recommendations": self._recommendations(result),
        }

    def print_report(self, report: dict) -> None:
        """Print a formatted summary to the console."""
        c = console

        c.print()
        c.print(
            Panel(
                f"[bold cyan]{report['document']['title']}[/bold cyan]\n"
                "[white]Sharding & Context Report[/white]",
                subtitle=f"[dim]{report['generated_at']}[/dim]",
                box=box.DOUBLE_EDGE,
                expand=False,
            )
        )

        # -- Shards ------------------------------------------------------------
        t = Table(title="Shards", box=box.ROUNDED)
        t.add_column("ID", style="cyan", no_wrap=True)
        t.add_column("Title", style="white")
        t.add_column("File", style="dim")
        t.add_column("Lines", style="bold white", justify="right")
        t.add_column("Code", justify="center")
        t.add_column("Depends on", style="yellow")
        for s in report["shards"]:
            t.add_row(
                s["id"],
                s["title"],
                s["filename"],
                str(s["content_lines"]),
                "[green]yes[/green]" if s["has_code_blocks"] else "-",
                ", ".join(s["dependencies"]) or "-",
            )
        c.print(t)

        # -- Metrics -----------------------------------------------------------
        m = report["metrics"]
        c.print(
            Panel(
                f"Original lines: [bold]{m['original_lines']:,}[/bold]  "
                f"Shard lines: [bold]{m['total_shard_lines']:,}[/bold]  "
                f"Avg/Min/Max: [yellow]{m['average_shard_size']}[/yellow]/"
                f"[red]{m['min_shard_size']}[/red]/[green]{m['max_shard_size']}[/green]  "
                f"Cross-refs: [cyan]{m['cross_reference_count']}[/cyan]  "
                f"Split: [magenta]{m['split_shards']}[/magenta]",
                title="Sharding Metrics",
                box=box.ROUNDED,
                expand=False,
            )
        )

        # -- Units -------------------------------------------------------------
        if report["units"]:
            c.print()
            t2 = Table(title="Work Unit Confidence", box=box.ROUNDED)
            t2.add_column("Unit", style="cyan", no_wrap=True)
            t2.add_column("Shard", style="dim")
            t2.add_column("Pre", justify="right")
            t2.add_column("Overall", style="bold white", justify="right")
            t2.add_column("Phase")
            t2.add_column("Context", justify="right")
            t2.add_column("Complete", justify="center")
            for u in report["units"]:
                style = _PHASE_STYLES.get(u["phase"], "white")
                t2.add_row(
                    u["id"],
                    u["source"] or "-",
                    f"{u['pre_confidence']:.0f}",
                    f"{u['overall']:.1f}",
                    f"[{style}]{u['phase']}[/{style}]",
                    f"{u['context_size']} {'(ext)' if u['extended'] else ''}".strip(),
                    "[green]yes[/green]" if u["complete"] else "[red]no[/red]",
                )
            c.print(t2)

            dist = report["phase_distribution"]
            c.print(
                "  "
                + "  ".join(
                    f"[{_PHASE_STYLES[p]}]{p}[/{_PHASE_STYLES[p]}]: {dist.get(p, 0)}"
                    for p in _PHASE_STYLES
                )
            )

        # -- Recommendations ---------------------------------------------------
        if report["recommendations"]:
            c.print()
            c.print("[bold cyan]Recommendations:[/bold cyan]")
            for rec, units in report["recommendations"].items():
                c.print(f"  - {rec} [dim]({', '.join(units)})[/dim]")

    # --- Helpers --------------------------------------------------------------

    @staticmethod
    def _units(result: PipelineResult) -> list[dict]:
        rows = []
        for context, confidence, validation in zip(result.contexts, result.confidences, result.validations):
            rows.append(
                {
                    "id": context.unit_id,
                    "source": context.source,
                    "inherited_from": context.inherited_from,
                    "pre_confidence": context.pre_confidence,
                    "overall": round(confidence.overall, 2),
                    "phase": confidence.questioning_phase.value,
                    "factors": {k: round(v, 2) for k, v in confidence.factors.as_dict().items()},
                    "context_size": context.size,
                    "extended": context.extended is not None,
                    "complete": validation.complete,
                    "completeness_score": validation.score,
                    "warnings": validation.warnings,
                }
            )
        return rows

    @staticmethod
    def _phase_distribution(result: PipelineResult) -> dict[str, int]:
        counts = Counter(c.questioning_phase.value for c in result.confidences)
        return {phase.value: counts.get(phase.value, 0) for phase in QuestioningPhase}

    @staticmethod
    def _recommendations(result: PipelineResult) -> dict[str, list[str]]:
        """recommendation -> units it applies to, in first-seen order."""
        grouped: dict[str, list[str]] = {}
        for confidence in result.confidences:
            for rec in confidence.recommendations:
                grouped.setdefault(rec, []).append(confidence.unit_id)
        return grouped
