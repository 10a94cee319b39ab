"""Computed column evaluator.

Computed columns carry a small arithmetic expression over other column keys,
for example the shipped ``totalTime`` column::

    (COALESCE(count, 0) * COALESCE(machineWorking, 0))
        + COALESCE(programing, 0) + COALESCE(preparing, 0)

The grammar is column keys, numeric literals, parentheses, ``+ - * /``,
unary minus and ``COALESCE(a, b, ...)``. Expressions are parsed with
:mod:`ast` and checked against a whitelist of node types before anything is
evaluated. Empty operands count as ``0`` and division by zero yields ``0``.
"""

from __future__ import annotations

import ast
import operator
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from progtable.contracts.common import WARN_SCHEMA_EXPRESSION, WARN_SCHEMA_REFERENCE
from progtable.contracts.schema import ColumnDefinition
from progtable.engine.registry import SchemaRegistry
from progtable.engine.values import is_empty, normalize_number, to_arithmetic
from progtable.observe.events import WarningLog

ALLOWED_NODES = (
    ast.Expression,
    ast.BinOp,
    ast.UnaryOp,
    ast.Name,
    ast.Load,
    ast.Constant,
    ast.Call,
    ast.Add,
    ast.Sub,
    ast.Mult,
    ast.Div,
    ast.USub,
    ast.UAdd,
)

ALLOWED_FUNCTIONS = frozenset({"COALESCE"})


def _safe_div(left: float, right: float) -> float:
    if right == 0:
        return 0
    return left / right


_BIN_OPS: dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: _safe_div,
}


class ExpressionError(ValueError):
    """Raised when a compute expression is outside the arithmetic grammar."""


@dataclass(frozen=True)
class CompiledExpression:
    """Validated expression that can be evaluated against many rows."""

    source: str
    tree: ast.Expression
    references: tuple[str, ...]


def compile_expression(source: str) -> CompiledExpression:
    """Parse and whitelist-check an expression."""
    if not source or not source.strip():
        raise ExpressionError("Expression is empty")
    try:
        tree = ast.parse(source.strip(), mode="eval")
    except (SyntaxError, ValueError, RecursionError, MemoryError) as e:
        raise ExpressionError(f"Cannot parse expression {source!r}: {e}") from e

    function_names: set[int] = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name) or node.func.id.upper() not in ALLOWED_FUNCTIONS:
                raise ExpressionError(f"Unsupported function call in {source!r}")
            if node.keywords or not node.args:
                raise ExpressionError(f"COALESCE takes one or more positional arguments in {source!r}")
            function_names.add(id(node.func))

    references: list[str] = []
    for node in ast.walk(tree):
        if not isinstance(node, ALLOWED_NODES):
            raise ExpressionError(
                f"Unsupported syntax {type(node).__name__} in {source!r}"
            )
        if isinstance(node, ast.Constant):
            if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
                raise ExpressionError(f"Only numeric literals are allowed in {source!r}")
        elif isinstance(node, ast.Name) and id(node) not in function_names:
            if node.id not in references:
                references.append(node.id)
    return CompiledExpression(source=source, tree=tree, references=tuple(references))


def _evaluate_node(node: ast.AST, scope: Mapping[str, Any]) -> Any:
    if isinstance(node, ast.Expression):
        return _evaluate_node(node.body, scope)
    if isinstance(node, ast.Constant):
        return node.value
    if isinstance(node, ast.Name):
        return scope.get(node.id)
    if isinstance(node, ast.UnaryOp):
        value = to_arithmetic(_evaluate_node(node.operand, scope))
        return -value if isinstance(node.op, ast.USub) else value
    if isinstance(node, ast.BinOp):
        left = to_arithmetic(_evaluate_node(node.left, scope))
        right = to_arithmetic(_evaluate_node(node.right, scope))
        return _BIN_OPS[type(node.op)](left, right)
    if isinstance(node, ast.Call):
        for arg in node.args:
            value = _evaluate_node(arg, scope)
            if not is_empty(value):
                return value
        return None
    raise ExpressionError(f"Unsupported syntax {type(node).__name__}")


def evaluate_expression(expr: CompiledExpression, scope: Mapping[str, Any]) -> float | int:
    """Evaluate a compiled expression; the result is always a number."""
    return normalize_number(to_arithmetic(_evaluate_node(expr.tree, scope)))


class ComputedColumnEvaluator:
    """Fills computed columns of rows against one registry snapshot.

    Expressions are compiled once, in live column order. A computed column
    that references another computed column sees its value only when that
    column comes earlier in the order.
    """

    def __init__(self, registry: SchemaRegistry, warnings: WarningLog | None = None) -> None:
        self.registry = registry
        self.warnings = warnings if warnings is not None else WarningLog()
        self._programs: list[tuple[ColumnDefinition, CompiledExpression | None, frozenset[str]]] = []
        for col in registry.computed_columns():
            self._programs.append(self._compile(col))

    def _compile(
        self, col: ColumnDefinition,
    ) -> tuple[ColumnDefinition, CompiledExpression | None, frozenset[str]]:
        path = f"columns.{col.key}.computeExpression"
        if not col.compute_expression:
            self.warnings.add(
                WARN_SCHEMA_EXPRESSION,
                f"Computed column '{col.key}' has no expression; it evaluates to 0",
                path,
            )
            return col, None, frozenset()
        try:
            program = compile_expression(col.compute_expression)
        except ExpressionError as e:
            self.warnings.add(WARN_SCHEMA_EXPRESSION, str(e), path)
            return col, None, frozenset()

        dangling = frozenset(ref for ref in program.references if ref not in self.registry)
        for ref in sorted(dangling):
            self.warnings.add(
                WARN_SCHEMA_REFERENCE,
                f"Computed column '{col.key}' references unknown column '{ref}'; treated as 0",
                path,
            )
        return col, program, dangling

    def evaluate(self, row: Mapping[str, Any]) -> dict[str, Any]:
        """Return a new row with every computed column populated."""
        resolved = dict(row)
        for col, program, dangling in self._programs:
            if program is None:
                resolved[col.key] = 0
                continue
            scope = {
                ref: None if ref in dangling else resolved.get(ref)
                for ref in program.references
            }
            try:
                resolved[col.key] = evaluate_expression(program, scope)
            except (ArithmeticError, RecursionError, ExpressionError) as e:
                self.warnings.add(
                    WARN_SCHEMA_EXPRESSION,
                    f"Computed column '{col.key}' failed to evaluate: {e}",
                    f"columns.{col.key}.computeExpression",
                )
                resolved[col.key] = 0
        return resolved


def evaluate_computed_columns(
    row: Mapping[str, Any],
    registry: SchemaRegistry,
    warnings: WarningLog | None = None,
) -> dict[str, Any]:
    """Return ``row`` with all computed columns populated."""
    return ComputedColumnEvaluator(registry, warnings).evaluate(row)
