"""Rule matcher: priority-ordered, first-match-wins style resolution."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable, Mapping

from progtable.contracts.common import WARN_RULE_COLUMN, WARN_RULE_DEPTH
from progtable.contracts.rules import (
    EMPTY_STYLE,
    ConditionGroup,
    ConditionLeaf,
    ConditionNode,
    FormattingRule,
    Style,
)
from progtable.engine.conditions import (
    DEFAULT_MAX_DEPTH,
    ConditionTreeError,
    evaluate_condition,
    parse_condition_tree,
    tree_depth,
)
from progtable.engine.registry import SchemaRegistry
from progtable.observe.events import WarningLog


@dataclass(frozen=True)
class CompiledRule:
    """A rule with its parsed tree. ``tree is None`` means it never matches."""

    rule: FormattingRule
    tree: ConditionNode | None
    style: Style

    @property
    def path(self) -> str:
        return f"rules.{self.rule.id}.conditionTree"


def compile_rule(
    rule: FormattingRule,
    *,
    max_depth: int = DEFAULT_MAX_DEPTH,
    warnings: WarningLog | None = None,
) -> CompiledRule:
    """Parse a rule's condition tree, degrading to a never-matching rule."""
    warnings = warnings if warnings is not None else WarningLog()
    path = f"rules.{rule.id}.conditionTree"
    tree: ConditionNode | None = None

    if isinstance(rule.condition_tree, (ConditionGroup, ConditionLeaf)):
        if tree_depth(rule.condition_tree) > max_depth:
            warnings.add(
                WARN_RULE_DEPTH,
                f"Rule '{rule.name}' ({rule.id}) skipped: nesting exceeds {max_depth} levels",
                path,
            )
        else:
            tree = rule.condition_tree
    else:
        try:
            tree = parse_condition_tree(rule.condition_tree, max_depth=max_depth)
        except ConditionTreeError as e:
            warnings.add(e.code, f"Rule '{rule.name}' ({rule.id}) skipped: {e}", path)

    if tree is not None and rule.target == "cell" and not rule.column_key:
        warnings.add(
            WARN_RULE_COLUMN,
            f"Cell rule '{rule.name}' ({rule.id}) has no columnKey; it never matches",
            f"rules.{rule.id}.columnKey",
        )
        tree = None
    return CompiledRule(rule=rule, tree=tree, style=rule.style())


class RuleSet:
    """Enabled rules of one snapshot, compiled once and ordered by precedence.

    Precedence is ``(priority, id)`` ascending; priorities need not be unique
    or contiguous.
    """

    def __init__(
        self,
        rules: Iterable[FormattingRule],
        *,
        registry: SchemaRegistry | None = None,
        today: date | None = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
        warnings: WarningLog | None = None,
    ) -> None:
        self.registry = registry
        self.today = today
        self.warnings = warnings if warnings is not None else WarningLog()
        enabled = sorted((r for r in rules if r.enabled), key=lambda r: r.precedence)
        self.compiled: list[CompiledRule] = [
            compile_rule(r, max_depth=max_depth, warnings=self.warnings) for r in enabled
        ]
        self.row_rules = [c for c in self.compiled if c.rule.target == "row"]
        self.cell_rules: dict[str, list[CompiledRule]] = {}
        for c in self.compiled:
            if c.rule.target == "cell" and c.rule.column_key:
                self.cell_rules.setdefault(c.rule.column_key, []).append(c)

    @property
    def skipped(self) -> int:
        return sum(1 for c in self.compiled if c.tree is None)

    def matches(self, compiled: CompiledRule, row: Mapping[str, Any]) -> bool:
        if compiled.tree is None:
            return False
        return evaluate_condition(
            compiled.tree, row,
            registry=self.registry, today=self.today,
            warnings=self.warnings, path=compiled.path,
        )

    def _first_match(self, candidates: list[CompiledRule], row: Mapping[str, Any]) -> Style | None:
        for compiled in candidates:
            if self.matches(compiled, row):
                return compiled.style
        return None

    def row_style(self, row: Mapping[str, Any]) -> Style:
        return self._first_match(self.row_rules, row) or EMPTY_STYLE

    def cell_style(
        self,
        row: Mapping[str, Any],
        column_key: str,
        *,
        row_style: Style | None = None,
    ) -> Style:
        """First matching cell rule for the column, else the row's style.

        Pass ``row_style`` when it is already known to skip re-evaluating row
        rules for every cell.
        """
        matched = self._first_match(self.cell_rules.get(column_key, []), row)
        if matched is not None:
            return matched
        return row_style if row_style is not None else self.row_style(row)


def _as_rule_set(rules: Iterable[FormattingRule] | RuleSet, **kwargs: Any) -> RuleSet:
    if isinstance(rules, RuleSet):
        return rules
    return RuleSet(rules, **kwargs)


def resolve_row_style(
    row: Mapping[str, Any],
    rules: Iterable[FormattingRule] | RuleSet,
    **kwargs: Any,
) -> Style:
    """Style of the first enabled row rule matching ``row``."""
    return _as_rule_set(rules, **kwargs).row_style(row)


def resolve_cell_style(
    row: Mapping[str, Any],
    column_key: str,
    rules: Iterable[FormattingRule] | RuleSet,
    **kwargs: Any,
) -> Style:
    """Style of the first matching cell rule for ``column_key``, falling back
    to the row style, then to the empty style."""
    return _as_rule_set(rules, **kwargs).cell_style(row, column_key)
