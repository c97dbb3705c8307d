"""
Block-level Markdown Parser
----------------------------
Turns heading-delimited text into a flat table of top-level blocks.

Only block structure matters for sharding, so inline markup is left as-is.
Recognised blocks (in precedence order at the start of a block):

    fenced code      ``` / ~~~ ... matching closing fence   (opaque)
    HTML block       <!-- -->, <pre>, <script>, <style>, <?, <!    (opaque)
    ATX heading      # .. ######, optional closing hashes
    thematic break   ---, ***, ___
    block quote      > ...
    list             -, *, +, 1. / 1) with indented continuations
    indented code    4 spaces / tab                          (opaque)
    paragraph        everything else; a following === / --- line makes it
                     a setext heading (depth 1 / 2)

Code and HTML blocks are atomic leaves: a `## ...` line inside a fence or
an HTML comment is content, never a heading. Headings nested inside list
items or quotes are part of that block, not top-level siblings.

A code fence or HTML block that is never closed runs to the end of the
document (a warning is logged for the fence). Binary (NUL-containing) or
non-UTF-8 input raises ParseError; there is no partial result.
"""
from __future__ import annotations

import re

from loguru import logger

from specshard.errors import ParseError
from specshard.sharding.schemas import Block, BlockKind, Document

_FENCE_OPEN_RE = re.compile(r"^ {0,3}(`{3,}|~{3,})(.*)$")
_ATX_RE = re.compile(r"^ {0,3}(#{1,6})(?:[ \t]+(.*?))?[ \t]*$")
_ATX_CLOSE_RE = re.compile(r"(?:^|[ \t]+)#+$")
_THEMATIC_RE = re.compile(r"^ {0,3}([-*_])(?:[ \t]*\1){2,}[ \t]*$")
_SETEXT_RE = re.compile(r"^ {0,3}(=+|-+)[ \t]*$")
_QUOTE_RE = re.compile(r"^ {0,3}>")
_LIST_RE = re.compile(r"^ {0,3}(?:[-*+]|\d{1,9}[.)])(?:[ \t]+|$)")
_LIST_INTERRUPT_RE = re.compile(r"^ {0,3}(?:[-*+]|1[.)])[ \t]+\S")
_INDENTED_CODE_RE = re.compile(r"^(?: {4}|\t)")
_CONTINUATION_RE = re.compile(r"^(?: {2,}|\t)")

# (start, end) per raw HTML block kind; the block ends on the line where `end` matches
_HTML_BLOCK_RULES: tuple[tuple[re.Pattern[str], re.Pattern[str]], ...] = (
    (
        re.compile(r"^ {0,3}<(?:pre|script|style|textarea)(?:[ \t>]|$)", re.I),
        re.compile(r"</(?:pre|script|style|textarea)>", re.I),
    ),
    (re.compile(r"^ {0,3}<!--"), re.compile(r"-->")),
    (re.compile(r"^ {0,3}<\?"), re.compile(r"\?>")),
    (re.compile(r"^ {0,3}<![A-Za-z]"), re.compile(r">")),
    (re.compile(r"^ {0,3}<!\[CDATA\["), re.compile(r"\]\]>")),
)


def _is_blank(line: str) -> bool:
    return not line.strip()


def _open_fence(line: str) -> str | None:
    """Return the fence marker if `line` opens a fenced code block."""
    match = _FENCE_OPEN_RE.match(line)
    if not match:
        return None
    fence, info = match.group(1), match.group(2)
    if fence[0] == "`" and "`" in info:
        return None
    return fence


def _open_html(line: str) -> tuple[int, re.Pattern[str]] | None:
    """(offset after the opener, end pattern) if `line` opens a raw HTML block."""
    for start_re, end_re in _HTML_BLOCK_RULES:
        match = start_re.match(line)
        if match:
            return match.end(), end_re
    return None


def _interrupts(line: str) -> bool:
    """True if `line` starts a new block even without a blank line before it."""
    return bool(
        _ATX_RE.match(line)
        or _open_fence(line)
        or _open_html(line)
        or _THEMATIC_RE.match(line)
        or _QUOTE_RE.match(line)
        or _LIST_INTERRUPT_RE.match(line)
    )


def _heading_title(raw: str | None) -> str:
    title = (raw or "").strip()
    return _ATX_CLOSE_RE.sub("", title).strip()


def _coerce_text(text: str | bytes) -> str:
    if isinstance(text, bytes):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError as err:
            raise ParseError(f"input is not valid UTF-8 text ({err.reason} at byte {err.start})") from err
    elif not isinstance(text, str):
        raise ParseError(f"expected text, got {type(text).__name__}")

    if "\x00" in text:
        line = text.count("\n", 0, text.index("\x00")) + 1
        raise ParseError("input contains NUL characters; binary content is not supported", line=line)

    if text.startswith("\ufeff"):
        text = text[1:]
    return text


class _BlockBuilder:
    """Accumulates blocks while the parser walks the source lines."""

    def __init__(self, lines: list[str]) -> None:
        self.lines = lines
        self.blocks: list[Block] = []

    def add(self, kind: BlockKind, start: int, end: int, depth: int = 0, text: str = "") -> None:
        self.blocks.append(
            Block(
                index=len(self.blocks),
                kind=kind,
                line=start + 1,
                end_line=end + 1,
                depth=depth,
                text=text,
                lines=tuple(self.lines[start:end + 1]),
            )
        )


def parse_document(text: str | bytes) -> Document:
    """
    Parse `text` into an immutable Document.

    Raises:
        ParseError: input is binary, not UTF-8 or not text.
    """
    source = _coerce_text(text)
    lines = source.splitlines()
    n = len(lines)
    builder = _BlockBuilder(lines)

    i = 0
    while i < n:
        line = lines[i]
        if _is_blank(line):
            i += 1
            continue

        # --- Fenced code (opaque) -------------------------------------------
        fence = _open_fence(line)
        if fence:
            close_re = re.compile(rf"^ {{0,3}}{re.escape(fence[0])}{{{len(fence)},}}[ \t]*$")
            j = i + 1
            while j < n and not close_re.match(lines[j]):
                j += 1
            if j >= n:
                logger.warning(
                    f"[Parser] line {i + 1}: code fence '{fence}' is never closed - "
                    "closing it at end of document"
                )
                j = n - 1
            info = _FENCE_OPEN_RE.match(line).group(2).strip()
            builder.add(BlockKind.CODE, i, j, text=info)
            i = j + 1
            continue

        # --- Raw HTML (opaque) ------------------------------------------------
        html = _open_html(line)
        if html:
            offset, end_re = html
            j, rest = i, line[offset:]
            while not end_re.search(rest) and j + 1 < n:
                j += 1
                rest = lines[j]
            builder.add(BlockKind.HTML, i, j)
            i = j + 1
            continue

        # --- ATX heading --------------------------------------------------------
        atx = _ATX_RE.match(line)
        if atx:
            builder.add(BlockKind.HEADING, i, i, depth=len(atx.group(1)), text=_heading_title(atx.group(2)))
            i += 1
            continue

        # --- Thematic break -----------------------------------------------------
        if _THEMATIC_RE.match(line):
            builder.add(BlockKind.THEMATIC_BREAK, i, i)
            i += 1
            continue

        # --- Block quote ----------------------------------------------------------
        if _QUOTE_RE.match(line):
            j = i + 1
            while j < n and not _is_blank(lines[j]) and (_QUOTE_RE.match(lines[j]) or not _interrupts(lines[j])):
                j += 1
            builder.add(BlockKind.QUOTE, i, j - 1)
            i = j
            continue

        # --- List ---------------------------------------------------------------------
        if _LIST_RE.match(line):
            last = i
            j = i + 1
            while j < n:
                current = lines[j]
                if _is_blank(current):
                    k = j
                    while k < n and _is_blank(lines[k]):
                        k += 1
                    # a blank line only continues the list if the next content belongs to it
                    if k < n and not _THEMATIC_RE.match(lines[k]) and (
                        _CONTINUATION_RE.match(lines[k]) or _LIST_RE.match(lines[k])
                    ):
                        j = k
                        continue
                    break
                if _THEMATIC_RE.match(current) and not _CONTINUATION_RE.match(current):
                    break
                if _LIST_RE.match(current) or _CONTINUATION_RE.match(current):
                    last = j
                    j += 1
                    continue
                if _interrupts(current):
                    break
                last = j  # lazy continuation line
                j += 1
            builder.add(BlockKind.LIST, i, last)
            i = last + 1
            continue

        # --- Indented code (opaque) -----------------------------------------------
        if _INDENTED_CODE_RE.match(line):
            last = i
            j = i + 1
            while j < n and (_is_blank(lines[j]) or _INDENTED_CODE_RE.match(lines[j])):
                if not _is_blank(lines[j]):
                    last = j
                j += 1
            builder.add(BlockKind.CODE, i, last)
            i = last + 1
            continue

        # --- Paragraph / setext heading ---------------------------------------------
        j = i + 1
        setext_depth = 0
        while j < n:
            current = lines[j]
            if _is_blank(current):
                break
            underline = _SETEXT_RE.match(current)
            if underline:
                setext_depth = 1 if underline.group(1).startswith("=") else 2
                break
            if _interrupts(current):
                break
            j += 1

        if setext_depth:
            title = " ".join(part.strip() for part in lines[i:j])
            builder.add(BlockKind.HEADING, i, j, depth=setext_depth, text=_heading_title(title))
            i = j + 1
        else:
            builder.add(BlockKind.PARAGRAPH, i, j - 1)
            i = j

    logger.debug(f"[Parser] {n} lines -> {len(builder.blocks)} blocks")
    return Document(blocks=tuple(builder.blocks), line_count=n)
