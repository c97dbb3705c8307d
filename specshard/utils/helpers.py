"""Shared utility functions used across the pipeline."""
from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Iterable

import orjson


# --- Text Utilities -----------------------------------------------------------

_SLUG_RE = re.compile(r"[^a-z0-9]+")
_TOKEN_RE = re.compile(r"[a-z0-9]+(?:['_-][a-z0-9]+)*")


def slugify(text: str) -> str:
    """Lowercase, collapse non-alphanumeric runs to one hyphen, trim hyphens."""
    return _SLUG_RE.sub("-", text.lower()).strip("-")


def count_content_lines(text: str) -> int:
    """Number of non-blank lines."""
    return sum(1 for line in text.splitlines() if line.strip())


def count_lines(text: str) -> int:
    return len(text.splitlines())


def word_tokens(text: str) -> list[str]:
    """Lowercase word tokens (letters/digits, inner hyphens and apostrophes kept)."""
    return _TOKEN_RE.findall(text.lower())


def extract_keywords(
    texts: Iterable[str],
    stop_words: frozenset[str],
    min_length: int = 4,
    limit: int | None = 10,
) -> list[str]:
    """First `limit` distinct significant tokens, in order of appearance."""
    seen: set[str] = set()
    keywords: list[str] = []
    for text in texts:
        for token in word_tokens(text):
            if len(token) < min_length or token in stop_words or token in seen:
                continue
            seen.add(token)
            keywords.append(token)
            if limit is not None and len(keywords) >= limit:
                return keywords
    return keywords


def truncate_text(text: str, max_chars: int = 300) -> str:
    """Truncate text for display purposes."""
    if len(text) <= max_chars:
        return text
    return text[:max_chars].rstrip() + "..."


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


# --- File I/O -----------------------------------------------------------------

def save_json(data: Any, path: str | Path) -> None:
    """Serialise data to JSON using orjson (fast, handles datetime/UUID)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        f.write(orjson.dumps(data, option=orjson.OPT_INDENT_2 | orjson.OPT_NON_STR_KEYS))


def load_json(path: str | Path) -> Any:
    """Load JSON data from file."""
    with open(Path(path), "rb") as f:
        return orjson.loads(f.read())


def ensure_dirs(*paths: str | Path) -> None:
    """Create directories (and parents) if they don't exist."""
    for p in paths:
        Path(p).mkdir(parents=True, exist_ok=True)
