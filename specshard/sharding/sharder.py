"""
Document Sharder
-----------------
Splits one large heading-delimited specification into bounded shards plus a
navigation index.

Pipeline for a single call:

    text --parse--> Document (flat block table)
         --scan---> Boundaries: top-level headings at exactly `boundary_depth`
         --cut----> one span per boundary, [boundary_i, boundary_i+1)
         --links--> references / dependencies from `[text](#anchor)` links
         --split--> oversized spans replaced by children at the next depth
         --name---> `{NN}-{slug}.md` by final position

Headings inside every shard are rebased by `boundary_depth - 1` so the
shard's own title is depth 1. A `##` line inside a code fence is part of an
opaque code block and never becomes a boundary.

Splitting uses an explicit worklist. A span with more than `max_shard_size`
non-blank lines is partitioned at the shallowest heading depth below its
own; the blocks before the first sub-heading stay with the first child.
Children inherit the parent's ContextBoundary verbatim and are split again
if still oversized. A span with no deeper heading is kept as-is: the size
limit is a target.

`shard()` is a pure function of (text, config).
"""
from __future__ import annotations

import re
from collections import deque
from dataclasses import dataclass

from loguru import logger

from specshard.config import ShardConfig, build_model
from specshard.sharding.parser import parse_document
from specshard.sharding.schemas import (
    Block,
    BlockKind,
    Boundary,
    ContextBoundary,
    Document,
    Shard,
    ShardIndex,
    ShardingMetrics,
    ShardMetadata,
    ShardResult,
    ShardSection,
)
from specshard.utils.helpers import count_content_lines, slugify

_LINK_RE = re.compile(r"\[([^\]]+)\]\(#([^)\s]+)\)")

DIAGRAM_LANGUAGES = (
    "mermaid",
    "graph",
    "sequencediagram",
    "gantt",
    "flowchart",
    "classdiagram",
    "statediagram",
    "erdiagram",
    "plantuml",
)

MAX_HEADING_DEPTH = 6


@dataclass(frozen=True)
class _Span:
    """A block range awaiting emission (or further splitting)."""
    id: str
    title: str
    start: int                  # first block index (inclusive)
    end: int                    # last block index (exclusive)
    source_line: int
    split_depth: int            # original heading depth children are cut at first
    context_boundary: ContextBoundary


class DocumentSharder:
    """
    Cuts a document into bounded shards.

    Usage:
        sharder = DocumentSharder(ShardConfig(max_shard_size=800))
        result = sharder.shard(markdown_text)
        for shard in result.shards:
            print(shard.filename, shard.metadata.content_lines)
    """

    def __init__(self, config: ShardConfig | dict | None = None) -> None:
        self.config = build_model(ShardConfig, config)
        self.shift = self.config.boundary_depth - 1

    # --- Public API ------------------------------------------------------------

    def shard(self, text: str | bytes) -> ShardResult:
        """
        Shard `text`. Raises ParseError for input that cannot be parsed.

        Zero boundaries is not an error: the result has no shards and the
        whole document becomes the index introduction.
        """
        document = parse_document(text)
        boundaries = self.detect_boundaries(document)

        spans = self._top_level_spans(document, boundaries)
        flat, split_count = self._split_oversized(document, spans)

        shards: list[Shard] = []
        for position, span in enumerate(flat, start=1):
            shards.append(self._build_shard(document, span, position))

        index = self._build_index(document, boundaries, shards)
        metrics = self._compute_metrics(document, spans, shards, split_count)

        logger.info(
            f"[Sharder] {document.line_count} lines | {len(boundaries)} boundaries "
            f"(depth {self.config.boundary_depth}) -> {len(shards)} shard(s), "
            f"{split_count} split, {metrics.cross_reference_count} cross-refs"
        )
        return ShardResult(shards=shards, index=index, metrics=metrics)

    def detect_boundaries(self, document: Document) -> list[Boundary]:
        """Every top-level heading at exactly `boundary_depth`, in document order."""
        return [
            Boundary(index=block.index, title=block.text, line=block.line, depth=block.depth)
            for block in document.headings(self.config.boundary_depth)
        ]

    # --- Boundaries -> spans ---------------------------------------------------

    def _top_level_spans(self, document: Document, boundaries: list[Boundary]) -> list[_Span]:
        anchors = self._anchor_table(boundaries)
        spans: list[_Span] = []

        for i, boundary in enumerate(boundaries):
            end = boundaries[i + 1].index if i + 1 < len(boundaries) else len(document)
            context_boundary = self._context_boundary(document, boundaries, anchors, i, end)
            spans.append(
                _Span(
                    id=f"shard-{i + 1}",
                    title=boundary.title,
                    start=boundary.index,
                    end=end,
                    source_line=boundary.line,
                    split_depth=self.config.boundary_depth + 1,
                    context_boundary=context_boundary,
                )
            )
        return spans

    @staticmethod
    def _anchor_table(boundaries: list[Boundary]) -> dict[str, int]:
        """slug -> boundary position. First heading wins on duplicate slugs."""
        anchors: dict[str, int] = {}
        for position, boundary in enumerate(boundaries):
            anchors.setdefault(slugify(boundary.title), position)
        return anchors

    def _context_boundary(
        self,
        document: Document,
        boundaries: list[Boundary],
        anchors: dict[str, int],
        position: int,
        end: int,
    ) -> ContextBoundary:
        references: list[str] = []
        dependencies: list[str] = []

        for block in document.blocks[boundaries[position].index:end]:
            if block.kind in (BlockKind.CODE, BlockKind.HTML):
                continue
            for _label, anchor in _LINK_RE.findall("\n".join(block.lines)):
                target = anchors.get(slugify(anchor))
                if target is None or target == position:
                    continue
                title = boundaries[target].title
                if title not in references:
                    references.append(title)
                # earlier shards are consumed first, so only backward links are preconditions
                if target < position and title not in dependencies:
                    dependencies.append(title)

        includes: list[str] = []
        if self.config.preserve_context and position > 0:
            includes = [boundaries[position - 1].title]

        return ContextBoundary(includes=includes, references=references, dependencies=dependencies)

    # --- Oversize splitting ----------------------------------------------------

    def _split_oversized(self, document: Document, spans: list[_Span]) -> tuple[list[_Span], int]:
        """Replace oversized spans by their children. Returns (final spans, number split)."""
        pending = deque(spans)
        done: list[_Span] = []
        split_count = 0

        while pending:
            span = pending.popleft()
            size = count_content_lines(document.render(span.start, span.end, self.shift))
            if size <= self.config.max_shard_size:
                done.append(span)
                continue

            children = self._partition(document, span)
            if not children:
                logger.debug(
                    f"[Sharder] {span.id} has {size} lines but no sub-headings; kept unsplit"
                )
                done.append(span)
                continue

            split_count += 1
            logger.debug(f"[Sharder] {span.id} has {size} lines -> {len(children)} sub-shard(s)")
            # children go back on the front so document order is preserved
            pending.extendleft(reversed(children))

        return done, split_count

    def _partition(self, document: Document, span: _Span) -> list[_Span]:
        for depth in range(span.split_depth, MAX_HEADING_DEPTH + 1):
            sub_headings = document.headings(depth, span.start + 1, span.end)
            if sub_headings:
                return self._children(span, sub_headings, depth)
        return []

    @staticmethod
    def _children(span: _Span, sub_headings: list[Block], depth: int) -> list[_Span]:
        children: list[_Span] = []
        for n, heading in enumerate(sub_headings, start=1):
            start = span.start if n == 1 else heading.index
            end = sub_headings[n].index if n < len(sub_headings) else span.end
            children.append(
                _Span(
                    id=f"{span.id}-{n}",
                    title=f"{span.title} - {heading.text}",
                    start=start,
                    end=end,
                    source_line=span.source_line if n == 1 else heading.line,
                    split_depth=depth + 1,
                    context_boundary=span.context_boundary,
                )
            )
        return children

    # --- Emission --------------------------------------------------------------

    def _build_shard(self, document: Document, span: _Span, position: int) -> Shard:
        content = document.render(span.start, span.end, self.shift)
        code_blocks = [b for b in document.blocks[span.start:span.end] if b.kind is BlockKind.CODE]

        metadata = ShardMetadata(
            source_line=span.source_line,
            content_lines=count_content_lines(content),
            has_code_blocks=bool(code_blocks),
            has_diagrams=any(b.text.lower().startswith(DIAGRAM_LANGUAGES) for b in code_blocks),
        )
        return Shard(
            id=span.id,
            title=span.title,
            filename=f"{position:02d}-{slugify(span.title)}.md",
            content=content,
            context_boundary=span.context_boundary,
            metadata=metadata,
        )

    @staticmethod
    def _build_index(document: Document, boundaries: list[Boundary], shards: list[Shard]) -> ShardIndex:
        headings = document.headings()
        title = headings[0].text if headings else "Document"
        intro_end = boundaries[0].index if boundaries else len(document)

        sections = [
            ShardSection(id=s.id, title=s.title, filename=s.filename, line=s.metadata.source_line)
            for s in shards
        ]
        return ShardIndex(title=title, introduction=document.render(0, intro_end), sections=sections)

    @staticmethod
    def _compute_metrics(
        document: Document,
        spans: list[_Span],
        shards: list[Shard],
        split_count: int,
    ) -> ShardingMetrics:
        sizes = [s.metadata.content_lines for s in shards]
        total = sum(sizes)
        return ShardingMetrics(
            original_lines=document.line_count,
            total_shard_lines=total,
            average_shard_size=round(total / len(sizes)) if sizes else 0,
            max_shard_size=max(sizes, default=0),
            min_shard_size=min(sizes, default=0),
            # counted on top-level spans; children repeat their parent's links
            cross_reference_count=sum(len(s.context_boundary.references) for s in spans),
            split_shards=split_count,
        )
