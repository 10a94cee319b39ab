"""Tests for Pydantic contract models."""

from progtable.contracts.common import (
    ChangeRecord,
    ErrorDetail,
    ResponseEnvelope,
    Target,
    WarningDetail,
)
from progtable.contracts.rules import EMPTY_STYLE, FormattingRule, Style
from progtable.contracts.schema import ColumnDefinition


def test_response_envelope_defaults():
    env = ResponseEnvelope()
    assert env.ok is True
    assert env.command == ""
    assert env.result is None
    assert env.changes == []
    assert env.warnings == []
    assert env.errors == []
    assert env.metrics.duration_ms == 0


def test_response_envelope_roundtrip():
    env = ResponseEnvelope(
        ok=True,
        command="columns.sort",
        target=Target(file="programs.json", column="count"),
        result={"dry_run": False},
        changes=[ChangeRecord(type="column.update", target="count", before={"sort": 0}, after={"sort": 1})],
        warnings=[WarningDetail(code="WARN_RULE_TREE", message="bad", path="rules.1.conditionTree")],
    )
    restored = ResponseEnvelope.model_validate(env.model_dump())
    assert restored == env


def test_error_envelope():
    env = ResponseEnvelope(
        ok=False,
        command="render",
        errors=[ErrorDetail(code="ERR_SNAPSHOT_NOT_FOUND", message="missing")],
    )
    assert env.errors[0].details is None


class TestColumnDefinition:
    def test_wire_keys_are_camel_case(self):
        col = ColumnDefinition.model_validate({
            "key": "totalTime", "type": "computed", "sortPosition": 2,
            "computeExpression": "a + b", "inlineEditable": False,
        })
        assert col.sort_position == 2
        assert col.compute_expression == "a + b"
        assert col.inline_editable is False
        wire = col.to_wire()
        assert wire["sortPosition"] == 2
        assert wire["computeExpression"] == "a + b"

    def test_snake_case_accepted(self):
        assert ColumnDefinition(key="a", sort_position=3).sort_position == 3

    def test_defaults(self):
        col = ColumnDefinition(key="a")
        assert col.type == "string"
        assert col.visible is True
        assert col.archived is False
        assert col.width == "auto"
        assert col.display_label == "a"

    def test_actions_column_type(self):
        assert ColumnDefinition(key="actions", type="").type == ""


class TestFormattingRule:
    def test_style_and_precedence(self):
        rule = FormattingRule.model_validate({
            "id": 3, "name": "Overdue", "backgroundColor": "#fee2e2",
            "textColor": "#991b1b", "fontWeight": "bold", "priority": 2,
        })
        assert rule.precedence == (2, 3)
        style = rule.style()
        assert style.rule_id == 3
        assert style.to_css() == "background-color: #fee2e2; color: #991b1b; font-weight: bold"

    def test_default_tree(self):
        rule = FormattingRule(id=1)
        assert rule.condition_tree == {"logic": "AND", "conditions": []}
        assert rule.target == "row"
        assert rule.enabled is True

    def test_raw_tree_kept(self):
        assert FormattingRule(id=1, condition_tree="{oops").condition_tree == "{oops"


def test_style_empty():
    assert EMPTY_STYLE.is_empty
    assert Style(font_weight="bold").is_empty is False
    assert Style(rule_id=1).is_empty


def test_condition_leaf_tracks_value_presence():
    from progtable.contracts.rules import ConditionLeaf

    assert ConditionLeaf(column="a", operator="empty").has_value is False
    assert ConditionLeaf(column="a", operator="equals", value=None).has_value is True
