"""Exception hierarchy for the sharding pipeline."""
from __future__ import annotations


class SpecShardError(Exception):
    """Base class for every error raised by specshard."""


class ParseError(SpecShardError):
    """The input could not be parsed as structured text. No partial result exists."""

    def __init__(self, message: str, line: int | None = None) -> None:
        self.line = line
        if line is not None:
            message = f"line {line}: {message}"
        super().__init__(message)


class ConfigError(SpecShardError, ValueError):
    """Invalid configuration, raised at construction time."""


class ShardNotFoundError(SpecShardError, LookupError):
    """A work unit names a shard id that does not exist (strict matching only)."""

    def __init__(self, unit_id: str, shard_id: str | None) -> None:
        self.unit_id = unit_id
        self.shard_id = shard_id
        super().__init__(f"No shard '{shard_id}' for work unit '{unit_id}'")
