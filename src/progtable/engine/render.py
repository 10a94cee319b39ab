"""Rendering pass: resolve computed values and styles for every row of a snapshot.

A pass reads one immutable :class:`Snapshot`. Schema and rules are compiled
once up front; each row is then evaluated independently, so rows can be fanned
out to a thread pool without changing the result.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Any, Mapping

from progtable.config import Settings
from progtable.contracts.responses import RenderedRow, RenderResult, RenderStats
from progtable.engine.computed import ComputedColumnEvaluator
from progtable.engine.context import Snapshot
from progtable.engine.filters import (
    active_filters,
    matches_search,
    passes_filters,
    searchable_columns,
)
from progtable.engine.matcher import RuleSet
from progtable.engine.registry import SchemaRegistry
from progtable.engine.values import sort_key
from progtable.observe.events import EventEmitter, Timer, TraceRecorder, WarningLog


class RowRenderer:
    """Per-pass state shared by every row. Read-only once constructed."""

    def __init__(
        self,
        snapshot: Snapshot,
        settings: Settings,
        warnings: WarningLog,
        search: str | None = None,
    ) -> None:
        self.registry = snapshot.registry
        self.evaluator = ComputedColumnEvaluator(self.registry, warnings)
        self.rule_set = RuleSet(
            snapshot.rules,
            registry=self.registry,
            today=settings.today,
            max_depth=settings.max_condition_depth,
            warnings=warnings,
        )
        self.live_keys = [c.key for c in self.registry.live_columns()]
        self.visible_keys = [c.key for c in self.registry.visible_columns()]
        self.filters = active_filters(self.registry) if settings.apply_filters else []
        self.search = search or ""
        self.searchable = searchable_columns(self.registry) if self.search else []

    def render(self, index: int, row: Mapping[str, Any]) -> RenderedRow | None:
        """Resolve one row; ``None`` when filters or search exclude it."""
        resolved = self.evaluator.evaluate(row)
        if self.filters and not passes_filters(resolved, self.filters):
            return None
        if self.search and not matches_search(resolved, self.searchable, self.search):
            return None
        row_style = self.rule_set.row_style(resolved)
        cell_styles = {
            key: self.rule_set.cell_style(resolved, key, row_style=row_style)
            for key in self.visible_keys
        }
        return RenderedRow(
            index=index,
            values={key: resolved.get(key) for key in self.live_keys},
            row_style=row_style,
            cell_styles=cell_styles,
        )


def sort_rows(rows: list[RenderedRow], registry: SchemaRegistry) -> list[RenderedRow]:
    """Order rows by the registry's sort spec.

    One stable sort per axis, last axis first, so earlier axes dominate.
    Empty values sort first ascending and last descending.
    """
    ordered = list(rows)
    for axis in reversed(registry.sort_spec()):
        ctype = registry.column_type(axis.key) or "string"
        ordered.sort(
            key=lambda r, k=axis.key, t=ctype: sort_key(r.values.get(k), t),
            reverse=axis.direction == "desc",
        )
    return ordered


def render_table(
    snapshot: Snapshot,
    *,
    settings: Settings | None = None,
    workers: int | None = None,
    search: str | None = None,
    warnings: WarningLog | None = None,
    emitter: EventEmitter | None = None,
    trace: TraceRecorder | None = None,
) -> RenderResult:
    """Evaluate every row of ``snapshot`` and return the rendered table."""
    settings = settings or Settings()
    emitter = emitter or EventEmitter()
    warnings = warnings if warnings is not None else WarningLog(emitter)
    workers = settings.workers if workers is None else workers

    with Timer() as t:
        renderer = RowRenderer(snapshot, settings, warnings, search=search)
        emitter.emit("pass.start", {
            "rows": len(snapshot.rows),
            "rules": len(renderer.rule_set.compiled),
            "workers": workers,
        })

        items = list(enumerate(snapshot.rows))
        if workers > 1 and len(items) > 1:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                rendered = list(pool.map(lambda item: renderer.render(*item), items))
        else:
            rendered = [renderer.render(i, row) for i, row in items]

        kept = [r for r in rendered if r is not None]
        ordered = sort_rows(kept, renderer.registry)

    stats = RenderStats(
        rows_total=len(snapshot.rows),
        rows_rendered=len(ordered),
        rules_compiled=len(renderer.rule_set.compiled),
        rules_skipped=renderer.rule_set.skipped,
        workers=workers,
    )
    emitter.emit("pass.complete", {**stats.model_dump(), "duration_ms": t.elapsed_ms})
    if trace is not None:
        trace.record("render", {
            **stats.model_dump(),
            "duration_ms": t.elapsed_ms,
            "warnings": warnings.codes(),
        })

    return RenderResult(
        columns=renderer.visible_keys,
        labels={key: renderer.registry.label(key) for key in renderer.visible_keys},
        sort=renderer.registry.sort_spec(),
        rows=ordered,
        stats=stats,
        warnings=warnings.items,
    )
