"""Command-specific result models."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from progtable.contracts.common import WarningDetail
from progtable.contracts.rules import EMPTY_STYLE, Style


class SortKey(BaseModel):
    """One axis of the table sort order."""

    model_config = ConfigDict(frozen=True)

    key: str
    direction: Literal["asc", "desc"] = "asc"


class RenderedRow(BaseModel):
    """A fully-resolved row with its row style and per-column cell styles."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    index: int  # position in the source snapshot
    values: dict[str, Any] = Field(default_factory=dict)
    row_style: Style = EMPTY_STYLE
    cell_styles: dict[str, Style] = Field(default_factory=dict)


class RenderStats(BaseModel):
    """Counters for a rendering pass."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    rows_total: int = 0
    rows_rendered: int = 0
    rules_compiled: int = 0
    rules_skipped: int = 0
    workers: int = 0


class RenderResult(BaseModel):
    """Output of one rendering pass over a snapshot."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    columns: list[str] = Field(default_factory=list)
    labels: dict[str, str] = Field(default_factory=dict)
    sort: list[SortKey] = Field(default_factory=list)
    rows: list[RenderedRow] = Field(default_factory=list)
    stats: RenderStats = Field(default_factory=RenderStats)
    warnings: list[WarningDetail] = Field(default_factory=list)


class ValidationResult(BaseModel):
    """Result of a validation command."""

    valid: bool = True
    checks: list[dict[str, Any]] = Field(default_factory=list)
