"""Static validation of a snapshot's column metadata and formatting rules."""

from __future__ import annotations

from collections import Counter
from typing import Any, Iterator

from progtable.config import Settings
from progtable.contracts.responses import ValidationResult
from progtable.contracts.rules import ConditionGroup, ConditionLeaf, ConditionNode, FormattingRule
from progtable.engine.computed import ExpressionError, compile_expression
from progtable.engine.conditions import (
    OPERATOR_ALIASES,
    OPERATORS,
    ConditionTreeError,
    parse_condition_tree,
    tree_depth,
)
from progtable.engine.context import Snapshot
from progtable.engine.registry import SchemaRegistry


def _check(type_: str, target: str | None, passed: bool, message: str, **extra: Any) -> dict[str, Any]:
    return {"type": type_, "target": target, "passed": passed, "message": message, **extra}


def _leaves(node: ConditionNode) -> Iterator[ConditionLeaf]:
    stack: list[ConditionNode] = [node]
    while stack:
        current = stack.pop()
        if isinstance(current, ConditionGroup):
            stack.extend(reversed(current.conditions))
        else:
            yield current


def _check_columns(snapshot: Snapshot, registry: SchemaRegistry) -> list[dict[str, Any]]:
    checks: list[dict[str, Any]] = []

    counts = Counter(c.key for c in snapshot.columns)
    for key, n in sorted(counts.items()):
        if n > 1:
            checks.append(_check(
                "column_unique", key, False, f"Column key '{key}' is defined {n} times",
            ))

    for col in registry.live_columns():
        path = f"columns.{col.key}"
        if col.is_computed:
            if not col.compute_expression:
                checks.append(_check(
                    "compute_expression", path, False,
                    f"Computed column '{col.key}' has no expression",
                ))
                continue
            try:
                program = compile_expression(col.compute_expression)
            except ExpressionError as e:
                checks.append(_check("compute_expression", path, False, str(e)))
                continue
            missing = [ref for ref in program.references if ref not in registry]
            if missing:
                checks.append(_check(
                    "compute_reference", path, False,
                    f"Computed column '{col.key}' references unknown column(s): {', '.join(missing)}",
                    missing=missing,
                ))
            else:
                checks.append(_check(
                    "compute_expression", path, True,
                    f"Computed column '{col.key}' expression is valid",
                ))
        elif col.compute_expression:
            checks.append(_check(
                "compute_expression", path, False,
                f"Column '{col.key}' has an expression but type '{col.type}'; it is ignored",
            ))
    return checks


def _check_rule(
    rule: FormattingRule, registry: SchemaRegistry, max_depth: int,
) -> list[dict[str, Any]]:
    path = f"rules.{rule.id}"
    checks: list[dict[str, Any]] = []

    if rule.target == "cell":
        if not rule.column_key:
            checks.append(_check(
                "rule_column", path, False, f"Cell rule '{rule.name}' has no columnKey",
            ))
        elif rule.column_key not in registry:
            checks.append(_check(
                "rule_column", path, False,
                f"Cell rule '{rule.name}' targets unknown column '{rule.column_key}'",
            ))

    tree = rule.condition_tree
    if isinstance(tree, (ConditionGroup, ConditionLeaf)):
        if tree_depth(tree) > max_depth:
            checks.append(_check(
                "rule_tree", path, False,
                f"Rule '{rule.name}' nests deeper than {max_depth} levels",
            ))
            return checks
    else:
        try:
            tree = parse_condition_tree(tree, max_depth=max_depth)
        except ConditionTreeError as e:
            checks.append(_check("rule_tree", path, False, f"Rule '{rule.name}': {e}", code=e.code))
            return checks

    problems = 0
    for leaf in _leaves(tree):
        op = OPERATOR_ALIASES.get(leaf.operator, leaf.operator)
        if op not in OPERATORS:
            problems += 1
            checks.append(_check(
                "rule_operator", path, False,
                f"Rule '{rule.name}' uses unknown operator '{leaf.operator}'",
            ))
        if leaf.column not in registry:
            problems += 1
            checks.append(_check(
                "rule_column", path, False,
                f"Rule '{rule.name}' references unknown column '{leaf.column}'",
            ))
    if not problems and not checks:
        checks.append(_check("rule_tree", path, True, f"Rule '{rule.name}' is valid"))
    return checks


def validate_snapshot(snapshot: Snapshot, settings: Settings | None = None) -> ValidationResult:
    """Check column metadata and every rule (enabled or not) for problems
    that would otherwise only surface as warnings during a pass."""
    settings = settings or Settings()
    registry = snapshot.registry
    checks = _check_columns(snapshot, registry)

    ids = Counter(r.id for r in snapshot.rules)
    for rule_id, n in sorted(ids.items()):
        if n > 1:
            checks.append(_check(
                "rule_unique", f"rules.{rule_id}", False, f"Rule id {rule_id} is used {n} times",
            ))
    for rule in snapshot.rules:
        checks.extend(_check_rule(rule, registry, settings.max_condition_depth))

    return ValidationResult(
        valid=all(c["passed"] for c in checks),
        checks=checks,
    )
