"""Column metadata models."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

# "gcode", "incremental" and "" (the actions pseudo-column) are persisted by
# the desktop shell; the engine compares them like strings.
ColumnType = Literal[
    "string", "number", "datetime", "date", "file", "computed",
    "gcode", "incremental", "",
]

NUMERIC_TYPES = frozenset({"number", "computed"})
TEMPORAL_TYPES = frozenset({"date", "datetime"})


class ColumnDefinition(BaseModel):
    """One row of column metadata.

    Wire keys are camelCase (``sortPosition``, ``computeExpression``) to
    match the persisted record; Python attributes are snake_case.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True,
    )

    key: str
    type: ColumnType = "string"
    position: int = 0
    sort: int = 0  # 0 unsorted, >0 ascending, <0 descending
    sort_position: int = 0
    visible: bool = True
    width: int | float | str = "auto"
    align: str = "left"
    filter: str | None = None
    compute_expression: str | None = None
    archived: bool = False
    label: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    # Pass-through presentation flags
    sortable: bool = True
    date_format: str | None = None
    copyable: bool = True
    inline_editable: bool = True
    incremental_pattern: str | None = None
    incremental_rewritable: bool = False

    @property
    def display_label(self) -> str:
        return self.label or self.key

    @property
    def is_computed(self) -> bool:
        return self.type == "computed"

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
