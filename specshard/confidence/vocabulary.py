"""
Fixed vocabularies consulted by the confidence factors.

Kept as plain module constants so every factor function stays a pure
function of its inputs. Multi-word testing terms are matched as phrases
against the lowercased strategy text; vague terms are matched per token.
"""
from __future__ import annotations

import re

# Protocol / type / identifier-like terms that signal a concrete requirement,
# matched in any case. Millisecond budgets only count with a number ("200ms").
TECHNICAL_TOKEN_RE = re.compile(
    r"\b(?:POST|GET|PUT|PATCH|DELETE|HTTP|HTTPS|REST|API|SQL|UUID|VARCHAR|"
    r"INTEGER|TIMESTAMP|JSON|JWT|OAUTH2?|TLS)\b"
    r"|\b\d+\s*ms\b",
    re.IGNORECASE,
)

TESTING_TERMS: tuple[str, ...] = (
    "unit test",
    "integration test",
    "e2e",
    "end-to-end",
    "property-based",
    "test coverage",
    "tdd",
    "bdd",
    "validation",
    "verification",
    "acceptance test",
    "smoke test",
    "regression test",
)

VAGUE_TERMS: frozenset[str] = frozenset({
    "some", "stuff", "things", "nice", "good", "better", "fast", "slow",
    "maybe", "probably", "various", "several", "improve", "optimize",
    "enhance", "etc", "appropriate", "suitable", "adequate", "sufficient",
})

STOP_WORDS: frozenset[str] = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "with", "from", "that", "this", "into", "when", "then", "than", "should",
    "must", "will", "have", "each",
})
