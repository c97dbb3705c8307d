"""
Completeness checks for an assembled EmbeddedContext.

Starts at 100 and deducts per finding:

    missing direct requirements           -20   (missing)
    missing acceptance criteria           -25   (missing)
    dependencies declared but not mapped   -5   (warning)
    low pre-confidence, no extended block -10   (warning)
    rendered text above max_context_size  -15   (warning)

`complete` is true when nothing is missing; warnings alone do not make a
context incomplete.
"""
from __future__ import annotations

from pydantic import BaseModel, Field

from specshard.config import AssemblyPolicy
from specshard.schemas import EmbeddedContext, WorkUnit
from specshard.utils.helpers import count_lines

MISSING_REQUIREMENTS_PENALTY = 20
MISSING_CRITERIA_PENALTY = 25
UNMAPPED_DEPENDENCIES_PENALTY = 5
NO_EXTENDED_PENALTY = 10
OVERSIZE_PENALTY = 15


class ContextValidation(BaseModel):
    complete: bool = True
    missing: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    score: int = 100


def validate_context(
    context: EmbeddedContext,
    unit: WorkUnit,
    policy: AssemblyPolicy | None = None,
) -> ContextValidation:
    policy = policy or AssemblyPolicy()
    result = ContextValidation()
    core = context.core

    if not core.direct_requirements:
        result.missing.append("direct_requirements")
        result.score -= MISSING_REQUIREMENTS_PENALTY

    if not core.acceptance_criteria:
        result.missing.append("acceptance_criteria")
        result.score -= MISSING_CRITERIA_PENALTY

    if unit.dependencies and not core.dependency_entries:
        result.warnings.append("Dependencies declared but not mapped in context")
        result.score -= UNMAPPED_DEPENDENCIES_PENALTY

    if context.pre_confidence < policy.extended_threshold and context.extended is None:
        result.warnings.append("Low confidence but no extended context provided")
        result.score -= NO_EXTENDED_PENALTY

    text_lines = count_lines(context.text)
    if text_lines > policy.max_context_size:
        result.warnings.append(f"Context size exceeds limit: {text_lines} > {policy.max_context_size}")
        result.score -= OVERSIZE_PENALTY

    result.complete = not result.missing
    result.score = max(0, result.score)
    return result
