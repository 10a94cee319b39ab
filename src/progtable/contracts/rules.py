"""Formatting rule, condition tree and style models."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

RuleTarget = Literal["row", "cell"]
RuleLogic = Literal["AND", "OR"]


class ConditionLeaf(BaseModel):
    """A single comparison: ``{"column", "operator", "value"?}``.

    Whether ``value`` was present on the wire is tracked through
    ``model_fields_set`` so the leaf serializes back to the same shape.
    """

    model_config = ConfigDict(frozen=True)

    column: str
    operator: str
    value: Any = None

    @property
    def has_value(self) -> bool:
        return "value" in self.model_fields_set


class ConditionGroup(BaseModel):
    """An AND/OR node over an ordered sequence of child nodes."""

    model_config = ConfigDict(frozen=True)

    logic: RuleLogic = "AND"
    conditions: tuple["ConditionNode", ...] = ()


ConditionNode = Union[ConditionGroup, ConditionLeaf]

ConditionGroup.model_rebuild()


class Style(BaseModel):
    """Resolved presentation attributes for a row or cell."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True,
    )

    background_color: str | None = None
    text_color: str | None = None
    font_weight: str | None = None
    rule_id: int | None = None
    rule_name: str | None = None

    @property
    def is_empty(self) -> bool:
        return not (self.background_color or self.text_color or self.font_weight)

    def to_css(self) -> str:
        """Render as an inline CSS declaration list."""
        parts = []
        if self.background_color:
            parts.append(f"background-color: {self.background_color}")
        if self.text_color:
            parts.append(f"color: {self.text_color}")
        if self.font_weight:
            parts.append(f"font-weight: {self.font_weight}")
        return "; ".join(parts)


EMPTY_STYLE = Style()


def _default_tree() -> dict[str, Any]:
    return {"logic": "AND", "conditions": []}


class FormattingRule(BaseModel):
    """A persisted formatting rule.

    ``condition_tree`` holds the raw wire value (JSON text or an already
    decoded mapping); it is parsed when the rule set is compiled, so a
    malformed tree degrades to a never-matching rule instead of failing the
    snapshot load.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True,
    )

    id: int
    name: str = ""
    target: RuleTarget = "row"
    column_key: str | None = None
    condition_tree: Any = Field(default_factory=_default_tree)
    background_color: str | None = None
    text_color: str | None = None
    font_weight: str | None = None
    enabled: bool = True
    priority: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def precedence(self) -> tuple[int, int]:
        return (self.priority, self.id)

    def style(self) -> Style:
        return Style(
            background_color=self.background_color,
            text_color=self.text_color,
            font_weight=self.font_weight,
            rule_id=self.id,
            rule_name=self.name,
        )

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
