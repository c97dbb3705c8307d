"""
Shard schemas - the parsed document and the bounded sections cut from it.

The parsed document is a flat, indexed node table: every block knows its own
position (`index`) and Boundaries refer to blocks by that integer, never by
object identity, so slicing the table per shard cannot alias anything.
"""
from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


# --- Parsed document ------------------------------------------------------------

class BlockKind(str, Enum):
    HEADING = "heading"
    PARAGRAPH = "paragraph"
    CODE = "code"                  # fenced or indented; opaque leaf
    HTML = "html"                  # raw HTML block or comment; opaque leaf
    LIST = "list"
    QUOTE = "quote"
    THEMATIC_BREAK = "thematic_break"


class Block(BaseModel):
    """One top-level block of the document."""

    model_config = ConfigDict(frozen=True)

    index: int                     # position in Document.blocks
    kind: BlockKind
    line: int                      # 1-based first source line
    end_line: int                  # 1-based last source line
    depth: int = 0                 # heading depth (1-6), 0 otherwise
    text: str = ""                 # heading title, or code info string
    lines: tuple[str, ...] = ()    # raw source lines

    def render(self, shift: int = 0) -> str:
        if self.kind is BlockKind.HEADING:
            depth = max(1, self.depth - shift)
            return f"{'#' * depth} {self.text}".rstrip()
        return "\n".join(self.lines)


class Document(BaseModel):
    """Immutable parse result. Created once per sharding call."""

    model_config = ConfigDict(frozen=True)

    blocks: tuple[Block, ...] = ()
    line_count: int = 0

    def __len__(self) -> int:
        return len(self.blocks)

    def headings(self, depth: int | None = None, start: int = 0, end: int | None = None) -> list[Block]:
        """Top-level heading blocks in [start, end), optionally at one depth."""
        return [
            block
            for block in self.blocks[start:end]
            if block.kind is BlockKind.HEADING and (depth is None or block.depth == depth)
        ]

    def render(self, start: int = 0, end: int | None = None, shift: int = 0) -> str:
        """Serialize blocks [start, end) back to text, headings shallower by `shift`."""
        parts = [block.render(shift) for block in self.blocks[start:end]]
        if not parts:
            return ""
        return "\n\n".join(parts) + "\n"


# --- Shards -----------------------------------------------------------------------

class Boundary(BaseModel):
    """A heading at the configured depth; marks where a shard starts."""

    model_config = ConfigDict(frozen=True)

    index: int                     # block index in the node table
    title: str
    line: int
    depth: int


class ContextBoundary(BaseModel):
    model_config = ConfigDict(frozen=True)

    includes: list[str] = Field(default_factory=list)       # previous shard title (single hop)
    references: list[str] = Field(default_factory=list)     # every resolved link target
    dependencies: list[str] = Field(default_factory=list)   # targets earlier in the document


class ShardMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    source_line: int
    content_lines: int
    has_code_blocks: bool = False
    has_diagrams: bool = False


class Shard(BaseModel):
    """
    A bounded, self-contained section of the source document.

    `content` is the shard's block range serialized with headings rebased so
    the shard's own title is depth 1. An oversized shard is replaced by
    children `{id}-{n}`; shards are never patched in place.
    """

    model_config = ConfigDict(frozen=True)

    id: str                        # "shard-3", "shard-3-1", ...
    title: str
    filename: str                  # "03-api-design.md"
    content: str
    context_boundary: ContextBoundary = Field(default_factory=ContextBoundary)
    metadata: ShardMetadata


class ShardSection(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    filename: str
    line: int


class ShardIndex(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str
    introduction: str = ""
    sections: list[ShardSection] = Field(default_factory=list)


class ShardingMetrics(BaseModel):
    original_lines: int = 0
    total_shard_lines: int = 0
    average_shard_size: int = 0
    max_shard_size: int = 0
    min_shard_size: int = 0
    cross_reference_count: int = 0
    split_shards: int = 0          # shards replaced by children


class ShardResult(BaseModel):
    shards: list[Shard] = Field(default_factory=list)
    index: ShardIndex
    metrics: ShardingMetrics = Field(default_factory=ShardingMetrics)
