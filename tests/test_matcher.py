"""Tests for rule precedence and row/cell style resolution."""

from __future__ import annotations

import sys
from datetime import date

from progtable.contracts.common import WARN_RULE_COLUMN, WARN_RULE_DEPTH, WARN_RULE_TREE
from progtable.contracts.rules import EMPTY_STYLE, FormattingRule
from progtable.engine.matcher import RuleSet, compile_rule, resolve_cell_style, resolve_row_style
from progtable.observe.events import WarningLog

TODAY = date(2024, 2, 1)


def _rule(id, *, priority=0, target="row", column_key=None, tree=None, color="#000000", enabled=True):
    return FormattingRule(
        id=id,
        name=f"rule {id}",
        target=target,
        column_key=column_key,
        condition_tree=tree if tree is not None else {"logic": "AND", "conditions": []},
        background_color=color,
        priority=priority,
        enabled=enabled,
    )


def _never():
    return {"logic": "OR", "conditions": []}


class TestRowStyle:
    def test_completed_beats_overdue(self, snapshot, registry):
        row = {"doneAt": "2024-01-09T12:00:00Z", "deadlineAt": "2024-01-01"}
        style = resolve_row_style(row, snapshot.rules, registry=registry, today=TODAY)
        assert style.rule_name == "Completed items"
        assert style.background_color == "#dcfce7"
        assert style.text_color == "#166534"

    def test_overdue(self, snapshot, registry):
        row = {"doneAt": None, "deadlineAt": "2024-01-01"}
        style = resolve_row_style(row, snapshot.rules, registry=registry, today=TODAY)
        assert style.rule_name == "Overdue items (not done)"
        assert style.to_css() == "background-color: #fee2e2; color: #991b1b"

    def test_no_match_is_empty_style(self, snapshot, registry):
        row = {"doneAt": "", "deadlineAt": "2030-01-01"}
        style = resolve_row_style(row, snapshot.rules, registry=registry, today=TODAY)
        assert style == EMPTY_STYLE
        assert style.to_css() == ""

    def test_without_registry_dates_compare_by_day(self, snapshot):
        future = {"doneAt": None, "deadlineAt": "2999-01-01"}
        assert resolve_row_style(future, snapshot.rules, today=TODAY) == EMPTY_STYLE
        past = {"doneAt": None, "deadlineAt": "2024-01-05"}
        assert resolve_row_style(past, snapshot.rules, today=TODAY).rule_id == 2

    def test_without_registry_cell_falls_back_to_row(self, snapshot):
        row = {"doneAt": None, "deadlineAt": "2999-01-01"}
        assert resolve_cell_style(row, "name", snapshot.rules, today=TODAY) == EMPTY_STYLE

    def test_lower_priority_wins(self):
        rules = [_rule(1, priority=5, color="#111111"), _rule(2, priority=3, color="#222222")]
        assert resolve_row_style({}, rules).background_color == "#222222"

    def test_equal_priority_breaks_on_id(self):
        rules = [_rule(9, priority=1, color="#999999"), _rule(4, priority=1, color="#444444")]
        assert resolve_row_style({}, rules).rule_id == 4

    def test_order_of_input_does_not_matter(self):
        rules = [_rule(1, priority=2), _rule(2, priority=1), _rule(3, priority=2)]
        first = resolve_row_style({}, rules)
        assert resolve_row_style({}, list(reversed(rules))) == first

    def test_disabled_rules_are_ignored(self):
        rules = [_rule(1, priority=0, enabled=False, color="#111111"), _rule(2, priority=1, color="#222222")]
        assert resolve_row_style({}, rules).rule_id == 2

    def test_cell_rules_do_not_style_rows(self):
        rules = [_rule(1, target="cell", column_key="count")]
        assert resolve_row_style({}, rules) == EMPTY_STYLE


class TestCellStyle:
    def test_first_matching_cell_rule(self):
        rules = [
            _rule(1, priority=1, target="cell", column_key="count", tree=_never(), color="#111111"),
            _rule(2, priority=2, target="cell", column_key="count", color="#222222"),
            _rule(3, priority=0, target="row", color="#333333"),
        ]
        assert resolve_cell_style({}, "count", rules).rule_id == 2

    def test_cell_rule_replaces_row_style_entirely(self):
        rules = [
            FormattingRule(id=1, target="row", background_color="#eeeeee", text_color="#111111"),
            FormattingRule(id=2, target="cell", column_key="count", background_color="#ff0000"),
        ]
        style = resolve_cell_style({}, "count", rules)
        assert style.background_color == "#ff0000"
        assert style.text_color is None

    def test_falls_back_to_row_style(self):
        rules = [
            _rule(1, target="cell", column_key="count", tree=_never()),
            _rule(2, target="row", color="#333333"),
        ]
        assert resolve_cell_style({}, "count", rules).rule_id == 2
        assert resolve_cell_style({}, "name", rules).rule_id == 2

    def test_no_rules(self):
        assert resolve_cell_style({}, "count", []) == EMPTY_STYLE

    def test_precomputed_row_style_is_used(self, snapshot, registry):
        rule_set = RuleSet(snapshot.rules, registry=registry, today=TODAY)
        row = {"doneAt": "2024-01-09"}
        row_style = rule_set.row_style(row)
        assert rule_set.cell_style(row, "name", row_style=row_style) is row_style


class TestCompile:
    def test_malformed_tree_never_matches(self):
        warnings = WarningLog()
        compiled = compile_rule(_rule(7, tree="{broken"), warnings=warnings)
        assert compiled.tree is None
        assert warnings.codes() == [WARN_RULE_TREE]
        assert warnings.items[0].path == "rules.7.conditionTree"

    def test_too_deep_tree_is_skipped(self):
        tree: dict = {"column": "count", "operator": "notEmpty"}
        for _ in range(10):
            tree = {"logic": "AND", "conditions": [tree]}
        warnings = WarningLog()
        rule_set = RuleSet([_rule(1, tree=tree)], max_depth=5, warnings=warnings)
        assert rule_set.skipped == 1
        assert warnings.codes() == [WARN_RULE_DEPTH]
        assert rule_set.row_style({"count": 1}) == EMPTY_STYLE

    def test_cell_rule_without_column_key(self):
        warnings = WarningLog()
        compiled = compile_rule(_rule(3, target="cell"), warnings=warnings)
        assert compiled.tree is None
        assert warnings.codes() == [WARN_RULE_COLUMN]

    def test_bad_rule_does_not_block_others(self):
        rules = [_rule(1, priority=0, tree="not json"), _rule(2, priority=1, color="#222222")]
        assert resolve_row_style({}, rules).rule_id == 2

    def test_rule_set_is_reusable(self, snapshot, registry):
        rule_set = RuleSet(snapshot.rules, registry=registry, today=TODAY)
        assert resolve_row_style({"doneAt": "x"}, rule_set) == rule_set.row_style({"doneAt": "x"})
        assert len(rule_set.row_rules) == 2
        assert rule_set.cell_rules == {}

    def test_tree_deeper_than_recursion_limit_is_skipped(self):
        tree: dict = {"column": "count", "operator": "notEmpty"}
        for _ in range(2 * sys.getrecursionlimit()):
            tree = {"logic": "AND", "conditions": [tree]}
        warnings = WarningLog()
        compiled = compile_rule(_rule(1, tree=tree), max_depth=10**6, warnings=warnings)
        assert compiled.tree is None
        assert warnings.codes() == [WARN_RULE_DEPTH]

        rules = [_rule(1, tree=tree), _rule(2, priority=1, color="#222222")]
        rule_set = RuleSet(rules, max_depth=10**6, warnings=WarningLog())
        assert rule_set.row_style({"count": 1}).rule_id == 2
