"""Condition trees: wire parsing, serialization and recursive evaluation.

Wire format (JSON)::

    {"logic": "AND" | "OR", "conditions": [<node>, ...]}     # group
    {"column": "doneAt", "operator": "notEmpty"}              # leaf
    {"column": "count", "operator": "gt", "value": 100}       # leaf

Older rule records also nest groups under a separate ``"groups"`` list; those
are read as extra children after ``conditions``.
"""

from __future__ import annotations

import json
from datetime import date
from typing import Any, Mapping

from progtable.contracts.common import (
    WARN_RULE_COLUMN,
    WARN_RULE_DEPTH,
    WARN_RULE_OPERATOR,
    WARN_RULE_TREE,
    WARN_RULE_VALUE,
)
from progtable.contracts.rules import ConditionGroup, ConditionLeaf, ConditionNode
from progtable.engine.registry import SchemaRegistry
from progtable.engine.values import (
    TODAY_TOKEN,
    ValueKind,
    compare,
    file_name,
    is_empty,
    iso_kind,
    kind_of,
    to_text,
)
from progtable.observe.events import WarningLog

DEFAULT_MAX_DEPTH = 64
# Upper bound for configured depth budgets; parsing and evaluation recurse
# once per level and must stay well inside the interpreter recursion limit.
MAX_DEPTH_LIMIT = 256

COMPARISON_OPERATORS = frozenset({"eq", "neq", "lt", "lte", "gt", "gte"})
TEXT_OPERATORS = frozenset({"contains", "notContains", "startsWith", "endsWith"})
PRESENCE_OPERATORS = frozenset({"empty", "notEmpty"})
OPERATORS = COMPARISON_OPERATORS | TEXT_OPERATORS | PRESENCE_OPERATORS

# Names persisted by earlier versions of the rule editor.
OPERATOR_ALIASES = {"equals": "eq", "notEquals": "neq"}


class ConditionTreeError(ValueError):
    """Raised when a condition tree cannot be parsed."""

    def __init__(self, message: str, code: str = WARN_RULE_TREE) -> None:
        super().__init__(message)
        self.code = code


# ---------------------------------------------------------------------------
# Parsing / serialization
# ---------------------------------------------------------------------------
def parse_condition_tree(data: Any, *, max_depth: int = DEFAULT_MAX_DEPTH) -> ConditionNode:
    """Parse wire data (JSON text or decoded mapping) into a condition tree.

    Raises ConditionTreeError for malformed input or nesting deeper than
    ``max_depth`` levels.
    """
    if isinstance(data, (str, bytes, bytearray)):
        try:
            data = json.loads(data)
        except RecursionError as e:
            raise ConditionTreeError("Condition tree nesting is too deep", WARN_RULE_DEPTH) from e
        except ValueError as e:
            raise ConditionTreeError(f"Condition tree is not valid JSON: {e}") from e
    try:
        return _parse_node(data, 1, max_depth)
    except RecursionError as e:
        raise ConditionTreeError("Condition tree nesting is too deep", WARN_RULE_DEPTH) from e


def _parse_node(data: Any, depth: int, max_depth: int) -> ConditionNode:
    if depth > max_depth:
        raise ConditionTreeError(
            f"Condition tree nesting exceeds {max_depth} levels", WARN_RULE_DEPTH,
        )
    if not isinstance(data, dict):
        raise ConditionTreeError(f"Condition node must be an object, got {type(data).__name__}")

    if "logic" in data or "conditions" in data or "groups" in data:
        logic = str(data.get("logic", "AND")).upper()
        if logic not in ("AND", "OR"):
            raise ConditionTreeError(f"Unknown logic {data.get('logic')!r}")
        conditions = data.get("conditions") or []
        groups = data.get("groups") or []
        if not isinstance(conditions, list) or not isinstance(groups, list):
            raise ConditionTreeError("'conditions' and 'groups' must be arrays")
        children = tuple(_parse_node(child, depth + 1, max_depth) for child in [*conditions, *groups])
        return ConditionGroup(logic=logic, conditions=children)

    column, op = data.get("column"), data.get("operator")
    if not isinstance(column, str) or not isinstance(op, str):
        raise ConditionTreeError("Leaf needs string 'column' and 'operator'")
    if "value" in data:
        return ConditionLeaf(column=column, operator=op, value=data["value"])
    return ConditionLeaf(column=column, operator=op)


def condition_tree_to_wire(node: ConditionNode) -> dict[str, Any]:
    """Serialize a tree to its canonical wire shape."""
    if isinstance(node, ConditionGroup):
        return {
            "logic": node.logic,
            "conditions": [condition_tree_to_wire(child) for child in node.conditions],
        }
    wire: dict[str, Any] = {"column": node.column, "operator": node.operator}
    if node.has_value:
        wire["value"] = node.value
    return wire


def tree_depth(node: ConditionNode) -> int:
    """Nesting depth, computed without recursion."""
    deepest = 0
    stack: list[tuple[ConditionNode, int]] = [(node, 1)]
    while stack:
        current, depth = stack.pop()
        deepest = max(deepest, depth)
        if isinstance(current, ConditionGroup):
            stack.extend((child, depth + 1) for child in current.conditions)
    return deepest


def referenced_columns(node: ConditionNode) -> list[str]:
    """Column keys used by leaves, in first-seen order."""
    keys: list[str] = []
    stack: list[ConditionNode] = [node]
    while stack:
        current = stack.pop()
        if isinstance(current, ConditionGroup):
            stack.extend(reversed(current.conditions))
        elif current.column not in keys:
            keys.append(current.column)
    return keys


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------
def _infer_column_type(value: Any, literal: Any = None) -> str:
    """Column type read off a row value, for evaluation without a registry.

    ISO-8601 text is a date or datetime; a ``today`` literal compares
    calendar days.
    """
    kind = kind_of(value)
    if kind is ValueKind.STRING:
        kind = iso_kind(value) or kind
    if kind is ValueKind.NUMBER:
        return "number"
    if kind is ValueKind.DATETIME:
        return "datetime"
    if kind is ValueKind.DATE:
        return "date"
    if isinstance(literal, str) and literal.strip().lower() == TODAY_TOKEN:
        return "date"
    return "string"


def _is_blank(value: Any, column_type: str) -> bool:
    if column_type == "file":
        return is_empty(file_name(value))
    return is_empty(value)


def _warn(warnings: WarningLog | None, code: str, message: str, path: str) -> None:
    if warnings is not None:
        warnings.add(code, message, path)


def evaluate_condition(
    node: ConditionNode,
    row: Mapping[str, Any],
    *,
    registry: SchemaRegistry | None = None,
    today: date | None = None,
    warnings: WarningLog | None = None,
    path: str = "conditionTree",
) -> bool:
    """Evaluate a condition tree against a resolved row.

    ``AND`` and ``OR`` short-circuit left to right; an empty ``AND`` is true
    and an empty ``OR`` is false. With a registry, leaf columns must resolve
    to live columns and compare using the declared type; without one the type
    is inferred from the row value.
    """
    if isinstance(node, ConditionGroup):
        results = (
            evaluate_condition(child, row, registry=registry, today=today, warnings=warnings, path=path)
            for child in node.conditions
        )
        return all(results) if node.logic == "AND" else any(results)
    return _evaluate_leaf(node, row, registry, today, warnings, path)


def _evaluate_leaf(
    leaf: ConditionLeaf,
    row: Mapping[str, Any],
    registry: SchemaRegistry | None,
    today: date | None,
    warnings: WarningLog | None,
    path: str,
) -> bool:
    op = OPERATOR_ALIASES.get(leaf.operator, leaf.operator)
    leaf_path = f"{path}.{leaf.column}.{leaf.operator}"
    if op not in OPERATORS:
        _warn(warnings, WARN_RULE_OPERATOR, f"Unknown operator '{leaf.operator}'", leaf_path)
        return False

    if registry is not None:
        col = registry.resolve(leaf.column)
        if col is None:
            _warn(warnings, WARN_RULE_COLUMN, f"Unknown column '{leaf.column}'", leaf_path)
            return False
        column_type = col.type
    elif leaf.column in row:
        column_type = _infer_column_type(row[leaf.column], leaf.value)
    else:
        return False

    value = row.get(leaf.column)
    if op == "empty":
        return _is_blank(value, column_type)
    if op == "notEmpty":
        return not _is_blank(value, column_type)

    if not leaf.has_value or leaf.value is None:
        _warn(warnings, WARN_RULE_VALUE, f"Operator '{leaf.operator}' needs a value", leaf_path)
        return False

    if op in TEXT_OPERATORS:
        haystack = to_text(value, column_type)
        needle = to_text(leaf.value)
        if haystack is None or needle is None:
            return False
        if op == "contains":
            return needle in haystack
        if op == "notContains":
            return needle not in haystack
        if op == "startsWith":
            return haystack.startswith(needle)
        return haystack.endswith(needle)

    result = compare(value, leaf.value, column_type, today=today)
    if result is None:
        return False
    if op == "eq":
        return result == 0
    if op == "neq":
        return result != 0
    if op == "lt":
        return result < 0
    if op == "lte":
        return result <= 0
    if op == "gt":
        return result > 0
    return result >= 0
