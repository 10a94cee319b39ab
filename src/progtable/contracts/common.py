"""Common Pydantic models: response envelope, errors, warnings, metrics."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

# Schema warnings: computed expressions that cannot be evaluated as written.
WARN_SCHEMA_EXPRESSION = "WARN_SCHEMA_EXPRESSION"
WARN_SCHEMA_REFERENCE = "WARN_SCHEMA_REFERENCE"

# Rule warnings: the offending rule (or leaf) never matches for the pass.
WARN_RULE_TREE = "WARN_RULE_TREE"
WARN_RULE_OPERATOR = "WARN_RULE_OPERATOR"
WARN_RULE_DEPTH = "WARN_RULE_DEPTH"
WARN_RULE_VALUE = "WARN_RULE_VALUE"
WARN_RULE_COLUMN = "WARN_RULE_COLUMN"

WARN_STYLE_COLOR = "WARN_STYLE_COLOR"


class SnapshotCorruptError(Exception):
    """Raised when a snapshot file cannot be parsed."""


class Target(BaseModel):
    """Identifies the target snapshot/column/rule for a command."""

    file: str | None = None
    column: str | None = None
    rule: int | None = None


class WarningDetail(BaseModel):
    """Structured warning."""

    code: str
    message: str
    path: str | None = None


class ErrorDetail(BaseModel):
    """Structured error."""

    code: str
    message: str
    details: dict[str, Any] | None = None


class Metrics(BaseModel):
    """Execution metrics."""

    duration_ms: int = 0


class ChangeRecord(BaseModel):
    """Describes a single change made (or projected) by a mutating command."""

    type: str
    target: str
    before: Any | None = None
    after: Any | None = None


class ResponseEnvelope(BaseModel):
    """Standard response envelope returned by every command."""

    ok: bool = True
    command: str = ""
    target: Target = Field(default_factory=Target)
    result: Any = None
    changes: list[ChangeRecord] = Field(default_factory=list)
    warnings: list[WarningDetail] = Field(default_factory=list)
    errors: list[ErrorDetail] = Field(default_factory=list)
    metrics: Metrics = Field(default_factory=Metrics)
