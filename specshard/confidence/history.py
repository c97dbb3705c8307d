"""
Pattern History
----------------
The only mutable state in the confidence layer: an ordered, append-only list
of previously seen task patterns, consulted by `pattern_similarity`.

The history is an explicit object that callers create and pass in, never a
module-level global. It has single-writer semantics: one scorer / assembler
pair may write to it at a time. Concurrent callers either serialize access or
give each caller its own instance. There is no eviction.

A call that is abandoned halfway can leave appended entries behind; callers
that need all-or-nothing behaviour wrap the call in snapshot() / restore().

    history = PatternHistory()
    saved = history.snapshot()
    try:
        run_batch(history)
    except Exception:
        history.restore(saved)
        raise
"""
from __future__ import annotations

from pathlib import Path
from typing import Iterable, Iterator

from loguru import logger

from specshard.errors import ConfigError
from specshard.schemas import Pattern
from specshard.utils.helpers import load_json, save_json


class PatternHistory:

    def __init__(self, patterns: Iterable[Pattern] = ()) -> None:
        self._patterns: list[Pattern] = list(patterns)

    def add(self, pattern: Pattern) -> None:
        self._patterns.append(pattern)

    def __iter__(self) -> Iterator[Pattern]:
        return iter(tuple(self._patterns))

    def __len__(self) -> int:
        return len(self._patterns)

    def snapshot(self) -> tuple[Pattern, ...]:
        """Immutable copy of the current entries (patterns are frozen)."""
        return tuple(self._patterns)

    def restore(self, snapshot: tuple[Pattern, ...]) -> None:
        self._patterns = list(snapshot)

    # --- Persistence -----------------------------------------------------------

    @classmethod
    def load(cls, path: str | Path) -> "PatternHistory":
        """Load a history from a JSON list of patterns. A missing file yields an empty history."""
        path = Path(path)
        if not path.exists():
            logger.info(f"[History] {path} not found - starting with an empty pattern history")
            return cls()
        try:
            history = cls([Pattern.model_validate(item) for item in load_json(path)])
        except (ValueError, TypeError) as err:  # ValidationError, JSONDecodeError, non-list root
            raise ConfigError(f"Invalid pattern history in {path}: {err}") from err
        logger.info(f"[History] Loaded {len(history)} pattern(s) from {path}")
        return history

    def dump(self, path: str | Path) -> None:
        save_json([p.model_dump(mode="json") for p in self._patterns], path)
        logger.info(f"[History] Saved {len(self)} pattern(s) -> {path}")
