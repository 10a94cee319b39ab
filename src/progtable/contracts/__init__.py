"""Pydantic models for column metadata, rules, styles and responses."""

from progtable.contracts.common import (
    ChangeRecord,
    ErrorDetail,
    Metrics,
    ResponseEnvelope,
    SnapshotCorruptError,
    Target,
    WarningDetail,
)
from progtable.contracts.responses import (
    RenderedRow,
    RenderResult,
    RenderStats,
    SortKey,
    ValidationResult,
)
from progtable.contracts.rules import (
    EMPTY_STYLE,
    ConditionGroup,
    ConditionLeaf,
    ConditionNode,
    FormattingRule,
    Style,
)
from progtable.contracts.schema import ColumnDefinition, ColumnType

__all__ = [
    "EMPTY_STYLE",
    "ChangeRecord",
    "ColumnDefinition",
    "ColumnType",
    "ConditionGroup",
    "ConditionLeaf",
    "ConditionNode",
    "ErrorDetail",
    "FormattingRule",
    "Metrics",
    "RenderResult",
    "RenderStats",
    "RenderedRow",
    "ResponseEnvelope",
    "SnapshotCorruptError",
    "SortKey",
    "Style",
    "Target",
    "ValidationResult",
    "WarningDetail",
]
