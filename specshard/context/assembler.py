"""
Context Assembler
------------------
Builds one self-contained EmbeddedContext per work unit so downstream
consumers need no further lookups.

Depth is decided by a cheap pre-confidence, computed from the unit's tags
alone (never from the full scorer):

    base 70
    complexity   simple +20 | medium +10 | complex -10
    dependencies none +10   | more than 3 -15
    type         feature +5 | research -20
    clamp to [0, 100]

    core block      always: requirements, acceptance criteria, dependency status
    extended block  only when pre-confidence < extended_threshold (85):
                    related patterns, historical decisions, edge cases,
                    the shard content as an excerpt

Units are processed strictly left to right. Unit i sees only unit i-1's
packet (a weak, single-hop `inherited_from` link); nothing is copied from the
predecessor unconditionally. Only its decisions that overlap the current
unit's requirements are carried forward.
"""
from __future__ import annotations

import re
from typing import Iterable, Optional

from loguru import logger

from specshard.config import AssemblyPolicy, build_model
from specshard.confidence.history import PatternHistory
from specshard.confidence.vocabulary import STOP_WORDS
from specshard.errors import ShardNotFoundError
from specshard.schemas import (
    CoreContext,
    Decision,
    DependencyEntry,
    DependencyState,
    DependencyStatus,
    EmbeddedContext,
    ExtendedContext,
    Pattern,
    ReferenceContext,
    WorkUnit,
)
from specshard.sharding.parser import parse_document
from specshard.sharding.schemas import BlockKind, Shard
from specshard.utils.helpers import clamp, count_lines, extract_keywords, word_tokens

_BULLET_RE = re.compile(r"^\s*(?:[-*+]|\d{1,9}[.)])\s+(?:\[[ xX]\]\s+)?(.+?)\s*$")
_NORMATIVE_RE = re.compile(r"\b(?:MUST|SHALL|REQUIRED)\b|\b[A-Z]{2,}-\d+\b")
_FAILURE_RE = re.compile(
    r"\b(?:error|errors|fail|fails|failure|invalid|reject|rejects|rejected|timeout|"
    r"empty|missing|exceed|exceeds|limit|duplicate|unauthori[sz]ed)\b",
    re.I,
)

PERFORMANCE_EDGE_CASE = "Performance: behaviour at peak load and with the largest expected payloads"

# (trigger words, edge case) - a unit whose text or type mentions a trigger gets the edge case
_EDGE_CASE_RULES: tuple[tuple[frozenset[str], str], ...] = (
    (
        frozenset({"api", "data", "database", "file", "files", "network", "http", "request", "storage", "upload"}),
        "I/O failure: downstream service, storage or network unavailable mid-operation",
    ),
    (
        frozenset({"async", "concurrent", "concurrency", "parallel", "queue", "thread", "threads", "lock", "worker"}),
        "Concurrency: simultaneous updates to the same record, ordering of interleaved operations",
    ),
    (
        frozenset({"form", "input", "user", "users", "upload", "parameter", "parameters", "query", "password"}),
        "User input: malformed, oversized or malicious values must be rejected with a clear error",
    ),
    (
        frozenset({"performance", "latency", "throughput", "load", "scale", "cache", "ms", "fast"}),
        PERFORMANCE_EDGE_CASE,
    ),
)


class ContextAssembler:
    """
    Assembles embedded contexts for an ordered chain of work units.

    Usage:
        assembler = ContextAssembler(policy, history=history, decisions=decisions)
        contexts = assembler.process_chain(units, result.shards)

    The PatternHistory is read, never written; it may be the same instance
    the ConfidenceScorer writes to, under the same single-writer rule.
    """

    def __init__(
        self,
        policy: AssemblyPolicy | dict | None = None,
        history: Optional[PatternHistory] = None,
        decisions: Optional[Iterable[Decision]] = None,
    ) -> None:
        self.policy = build_model(AssemblyPolicy, policy)
        self.history = history if history is not None else PatternHistory()
        self.decisions: list[Decision] = list(decisions or [])

    # --- Chain ------------------------------------------------------------------

    def process_chain(self, units: list[WorkUnit], shards: list[Shard]) -> list[EmbeddedContext]:
        """Embed every unit in order; unit i only consults unit i-1's packet."""
        contexts: list[EmbeddedContext] = []
        completed: list[str] = []
        previous: Optional[EmbeddedContext] = None

        for unit in units:
            shard = self.find_shard(unit, shards)
            context = self.embed(unit, shard, previous=previous, completed=completed)
            contexts.append(context)
            completed.append(unit.id)
            previous = context

        extended = sum(1 for c in contexts if c.extended is not None)
        logger.info(
            f"[Assembler] {len(contexts)} context(s) assembled | "
            f"{extended} with extended block | {len(shards)} shard(s) available"
        )
        return contexts

    # --- Pre-confidence -----------------------------------------------------------

    def pre_confidence(self, unit: WorkUnit) -> float:
        policy = self.policy
        score = policy.base_confidence
        score += policy.complexity_deltas.get(unit.complexity.value, 0)

        if not unit.dependencies:
            score += policy.no_dependency_bonus
        elif len(unit.dependencies) > policy.many_dependency_threshold:
            score -= policy.many_dependency_penalty

        score += policy.type_deltas.get(unit.type.lower(), 0)
        return clamp(score)

    # --- Shard matching -------------------------------------------------------------

    def find_shard(self, unit: WorkUnit, shards: list[Shard]) -> Optional[Shard]:
        """
        Exact id match, then the first child of a split shard (`shard-2` -> `shard-2-1`).

        Anything else falls back to the first shard, or raises
        ShardNotFoundError when `strict_shard_match` is set.
        """
        if unit.shard_id:
            for shard in shards:
                if shard.id == unit.shard_id:
                    return shard
            for shard in shards:
                if shard.id.startswith(f"{unit.shard_id}-"):
                    return shard

        if self.policy.strict_shard_match:
            raise ShardNotFoundError(unit.id, unit.shard_id)
        if not shards:
            logger.warning(f"[Assembler] No shards available for {unit.id} - context has no source")
            return None

        logger.warning(
            f"[Assembler] No shard '{unit.shard_id}' for {unit.id} - "
            f"falling back to {shards[0].id}"
        )
        return shards[0]

    # --- Embedding --------------------------------------------------------------------

    def embed(
        self,
        unit: WorkUnit,
        shard: Optional[Shard],
        pre_confidence: Optional[float] = None,
        previous: Optional[EmbeddedContext] = None,
        completed: Iterable[str] = (),
    ) -> EmbeddedContext:
        if pre_confidence is None:
            pre_confidence = self.pre_confidence(unit)

        completed = list(completed)
        core = self._core(unit, shard, set(completed))
        extended = None
        if pre_confidence < self.policy.extended_threshold:
            extended = self._extended(unit, shard, previous)

        source = f"{shard.id}:{shard.filename}" if shard is not None else ""
        inherited_from = previous.unit_id if previous is not None else None
        references = ReferenceContext(previous_units=completed)
        if shard is not None:
            boundary = shard.context_boundary
            references = references.model_copy(
                update={
                    "related_shards": list(boundary.references),
                    "shard_dependencies": list(boundary.dependencies),
                    "includes": list(boundary.includes),
                }
            )

        text, extended = self._fit(unit, core, extended, references, source, inherited_from)
        size = int(clamp(count_lines(text), self.policy.min_context_size, self.policy.max_context_size))

        logger.debug(
            f"[Assembler] {unit.id} | pre={pre_confidence:.0f} | "
            f"{'extended' if extended is not None else 'core only'} | {size} lines | source={source or '-'}"
        )
        return EmbeddedContext(
            unit_id=unit.id,
            core=core,
            extended=extended,
            size=size,
            source=source,
            pre_confidence=pre_confidence,
            inherited_from=inherited_from,
            references=references,
            text=text,
        )

    # --- Core block ---------------------------------------------------------------------

    def _core(self, unit: WorkUnit, shard: Optional[Shard], completed: set[str]) -> CoreContext:
        requirements = list(unit.requirements)
        criteria = list(unit.acceptance_criteria)

        if shard is not None:
            keywords = set(extract_keywords([unit.title], STOP_WORDS, limit=None))
            requirement_bullets, criteria_bullets = _shard_bullets(shard)
            for bullet in requirement_bullets:
                if bullet not in requirements and (
                    _NORMATIVE_RE.search(bullet) or keywords & set(word_tokens(bullet))
                ):
                    requirements.append(bullet)
            for bullet in criteria_bullets:
                if bullet not in criteria:
                    criteria.append(bullet)

        entries = [
            DependencyEntry(
                id=dep,
                state=DependencyState.COMPLETED if dep in completed else DependencyState.PENDING,
            )
            for dep in unit.dependencies
        ]
        pending = [e.id for e in entries if e.state is DependencyState.PENDING]
        if not entries:
            notes = "No dependencies"
        elif not pending:
            notes = f"All {len(entries)} dependencies completed"
        else:
            notes = f"Waiting on: {', '.join(pending)}"

        return CoreContext(
            direct_requirements=requirements[: self.policy.max_requirements],
            acceptance_criteria=criteria[: self.policy.max_acceptance_criteria],
            dependencies=DependencyStatus(resolved=not pending, items=list(unit.dependencies), notes=notes),
            dependency_entries=entries,
        )

    # --- Extended block -----------------------------------------------------------------

    def _extended(
        self,
        unit: WorkUnit,
        shard: Optional[Shard],
        previous: Optional[EmbeddedContext],
    ) -> ExtendedContext:
        keywords = set(extract_keywords([unit.title, *unit.requirements], STOP_WORDS, limit=None))
        return ExtendedContext(
            patterns=self._related_patterns(unit, keywords),
            historical_decisions=self._relevant_decisions(unit, keywords, previous),
            edge_cases=self._edge_cases(unit),
            excerpt=shard.content if shard is not None else "",
        )

    def _related_patterns(self, unit: WorkUnit, keywords: set[str]) -> list[str]:
        scored: list[tuple[float, Pattern]] = []
        for pattern in self.history:
            overlap = len(keywords & set(word_tokens(f"{pattern.type} {pattern.implementation}")))
            if pattern.type.lower() == unit.type.lower():
                overlap += 1
            if overlap:
                scored.append((overlap * pattern.success_rate, pattern))

        scored.sort(key=lambda item: item[0], reverse=True)
        return [_format_pattern(p) for _score, p in scored[: self.policy.max_patterns]]

    def _relevant_decisions(
        self,
        unit: WorkUnit,
        keywords: set[str],
        previous: Optional[EmbeddedContext],
    ) -> list[str]:
        dependencies = set(unit.dependencies)
        relevant = [
            d for d in self.decisions
            if unit.id in d.affects
            or dependencies.intersection(d.affects)
            or keywords & set(word_tokens(f"{d.title} {d.rationale}"))
        ]
        relevant.sort(key=lambda d: d.confidence, reverse=True)
        decisions = [_format_decision(d) for d in relevant]

        # single hop: only the predecessor's decisions that still apply here
        if previous is not None and previous.extended is not None:
            for inherited in previous.extended.historical_decisions:
                if inherited not in decisions and keywords & set(word_tokens(inherited)):
                    decisions.append(inherited)

        return decisions[: self.policy.max_decisions]

    def _edge_cases(self, unit: WorkUnit) -> list[str]:
        tokens = set(word_tokens(" ".join([unit.title, unit.type, *unit.requirements])))
        cases = [case for triggers, case in _EDGE_CASE_RULES if tokens & triggers]
        if unit.complexity.value == "complex" and PERFORMANCE_EDGE_CASE not in cases:
            cases.append(PERFORMANCE_EDGE_CASE)

        for criterion in unit.acceptance_criteria:
            if _FAILURE_RE.search(criterion):
                cases.append(f"Acceptance: {criterion}")
        return cases[: self.policy.max_edge_cases]

    # --- Rendering ------------------------------------------------------------------------

    def _fit(
        self,
        unit: WorkUnit,
        core: CoreContext,
        extended: Optional[ExtendedContext],
        references: ReferenceContext,
        source: str,
        inherited_from: Optional[str],
    ) -> tuple[str, Optional[ExtendedContext]]:
        """Render the packet, trimming the excerpt and then extended items until it fits.

        Core and reference sections are never trimmed.
        """
        limit = self.policy.max_context_size
        text = _render(unit, core, extended, references, source, inherited_from)
        if extended is None or count_lines(text) <= limit:
            return text, extended

        overflow = count_lines(text) - limit
        excerpt_lines = extended.excerpt.splitlines()
        keep = max(0, len(excerpt_lines) - overflow - 1)
        excerpt = "\n".join(excerpt_lines[:keep] + ["..."]) if keep else ""
        extended = extended.model_copy(update={"excerpt": excerpt})
        text = _render(unit, core, extended, references, source, inherited_from)

        lists = ["edge_cases", "historical_decisions", "patterns"]
        while count_lines(text) > limit and lists:
            name = lists[0]
            items = getattr(extended, name)
            if not items:
                lists.pop(0)
                continue
            extended = extended.model_copy(update={name: items[:-1]})
            text = _render(unit, core, extended, references, source, inherited_from)

        if count_lines(text) > limit:
            logger.warning(
                f"[Assembler] {unit.id} core block alone is {count_lines(text)} lines (> {limit})"
            )
        return text, extended


# --- Module helpers -------------------------------------------------------------------

def _shard_bullets(shard: Shard) -> tuple[list[str], list[str]]:
    """(requirement bullets, acceptance bullets) from the shard's list blocks."""
    requirements: list[str] = []
    criteria: list[str] = []
    section = ""
    for block in parse_document(shard.content).blocks:
        if block.kind is BlockKind.HEADING:
            section = block.text.lower()
            continue
        if block.kind is not BlockKind.LIST:
            continue
        target = criteria if "acceptance" in section else requirements
        for line in block.lines:
            match = _BULLET_RE.match(line)
            if match and match.group(1) not in target:
                target.append(match.group(1))
    return requirements, criteria


def _format_pattern(pattern: Pattern) -> str:
    label = f"{pattern.type} ({pattern.success_rate:.0%} success)"
    return f"{label}: {pattern.implementation}" if pattern.implementation else label


def _format_decision(decision: Decision) -> str:
    return f"{decision.title}: {decision.rationale}" if decision.rationale else decision.title


def _section(title: str, items: list[str]) -> list[str]:
    if not items:
        return []
    return ["", f"## {title}", *(f"- {item}" for item in items)]


def _render(
    unit: WorkUnit,
    core: CoreContext,
    extended: Optional[ExtendedContext],
    references: ReferenceContext,
    source: str,
    inherited_from: Optional[str],
) -> str:
    lines = [f"# Context: {unit.title}", f"Unit: {unit.id}"]
    if source:
        lines.append(f"Source: {source}")
    if inherited_from:
        lines.append(f"Inherited from: {inherited_from}")

    lines += _section("Requirements", core.direct_requirements)
    lines += _section("Acceptance Criteria", core.acceptance_criteria)
    lines += ["", "## Dependencies", *(f"- {e.id}: {e.state.value}" for e in core.dependency_entries)]
    lines.append(core.dependencies.notes)
    lines += _section(
        "References",
        [
            f"{label}: {', '.join(values)}"
            for label, values in (
                ("Related shards", references.related_shards),
                ("Depends on shards", references.shard_dependencies),
                ("Follows", references.includes),
                ("Previous units", references.previous_units),
            )
            if values
        ],
    )

    if extended is not None:
        lines += _section("Related Patterns", extended.patterns)
        lines += _section("Historical Decisions", extended.historical_decisions)
        lines += _section("Edge Cases", extended.edge_cases)
        if extended.excerpt:
            lines += ["", "## Shard Excerpt", extended.excerpt.rstrip("\n")]
    return "\n".join(lines) + "\n"
