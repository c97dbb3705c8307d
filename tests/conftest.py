"""Shared fixtures: sample documents and work units."""
from __future__ import annotations

import pytest
from loguru import logger

from specshard.schemas import Complexity, WorkUnit

THREE_SECTION_DOC = """\
# Product Spec

Intro paragraph.

## Overview

Overview text.

## API Design

- POST /users creates a user

## Storage

Storage text.
"""

OVERSIZED_DOC = """\
# Spec

## Overview

Short. Details in [storage](#storage).

## API

See [the overview](#overview) first.

### Endpoints

- GET /a
- GET /b
- GET /c

### Errors

- 400 bad
- 404 missing
- 500 boom

## Storage

Short storage.
"""

REQUIREMENTS_DOC = """\
# Service

## Accounts

- The API MUST return JSON for every response
- Nice colours on the landing page
- REQ-007 Passwords are hashed before storage

### Acceptance Criteria

- Returns 201 on success
- Returns 400 for an invalid email

## Reports

Reports are generated nightly.
"""


@pytest.fixture(autouse=True)
def _reset_logger():
    # the CLI installs sinks on streams that CliRunner closes afterwards
    yield
    logger.remove()


@pytest.fixture
def three_section_doc() -> str:
    return THREE_SECTION_DOC


@pytest.fixture
def oversized_doc() -> str:
    return OVERSIZED_DOC


@pytest.fixture
def requirements_doc() -> str:
    return REQUIREMENTS_DOC


@pytest.fixture
def vague_unit() -> WorkUnit:
    return WorkUnit(
        id="u-vague",
        title="Make the app better",
        requirements=["Improve stuff", "Make it fast", "Add some features maybe"],
    )


@pytest.fixture
def concrete_unit() -> WorkUnit:
    return WorkUnit(
        id="u-accounts",
        title="Account registration endpoint",
        requirements=[
            "POST /api/v1/accounts creates an account and returns 201 with the account UUID",
            "Reject duplicate emails with HTTP 409",
        ],
        acceptance_criteria=["Returns 201 on success", "Returns 409 for a duplicate email"],
        test_strategy="Unit tests for validation plus integration tests against a real database",
        complexity=Complexity.MEDIUM,
        type="feature",
    )
