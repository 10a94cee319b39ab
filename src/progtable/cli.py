"""Typer CLI application: top-level commands and subcommand groups."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Any, Callable, Optional

import portalocker
import typer
import yaml

import progtable
from progtable.config import Settings
from progtable.contracts.common import ChangeRecord, SnapshotCorruptError, Target
from progtable.contracts.schema import ColumnDefinition
from progtable.engine.dispatcher import (
    error_envelope,
    exit_code_for,
    print_response,
    success_envelope,
)
from progtable.observe.events import EventEmitter, Timer, TraceRecorder, WarningLog

# ---------------------------------------------------------------------------
# App & subcommand groups
# ---------------------------------------------------------------------------

_MAIN_HELP = """\
Evaluate a programs table snapshot: computed columns, conditional formatting
rules, column sort/filter state.

A **snapshot** is a JSON or YAML file with `columns`, `rules` and `rows` lists.

1. `progtable columns ls -f programs.json`  (live columns and sort order)
2. `progtable rules ls -f programs.json`  (rules in evaluation order)
3. `progtable render -f programs.json --xlsx programs.xlsx`  (styled table)

**Every command** returns a JSON `ResponseEnvelope`:
`{"ok": bool, "command": "...", "result": {...}, "errors": [...], "warnings": [...], "metrics": {"duration_ms": N}}`

**Exit codes:** 0=success, 10=validation, 40=conflict (snapshot locked), 50=io, 90=internal
"""

_COLUMNS_EPILOG = """\
**Examples:**

`progtable columns sort -f programs.json -c deadlineAt`  (none -> asc -> desc -> none)

`progtable columns hide -f programs.json -c notes`

`progtable columns filter -f programs.json -c count --value ">=:5"`

**Filter syntax:** `empty:`, `notEmpty:`, `between:a:b`, `>=:v`, `<=:v`, `>:v`, `<:v`, `!=:v`, `=:v`;
anything else is a case-insensitive substring match. An empty `--value` clears the filter.
"""

_RENDER_EPILOG = """\
**Examples:**

`progtable render -f programs.json`

`progtable render -f programs.json --workers 4 --today 2024-03-01`

`progtable render -f programs.json --xlsx out.xlsx --events`  (NDJSON events on stderr)
"""


app = typer.Typer(
    name="progtable",
    help=_MAIN_HELP,
    no_args_is_help=True,
    rich_markup_mode="markdown",
)
columns_app = typer.Typer(
    name="columns", help="List columns and edit sort, visibility and filter state.",
    epilog=_COLUMNS_EPILOG,
    no_args_is_help=True, rich_markup_mode="markdown",
)
rules_app = typer.Typer(
    name="rules", help="Inspect conditional formatting rules.",
    no_args_is_help=True, rich_markup_mode="markdown",
)
rows_app = typer.Typer(
    name="rows", help="Load rows into a snapshot.",
    no_args_is_help=True, rich_markup_mode="markdown",
)
validate_app = typer.Typer(
    name="validate", help="Check column metadata and rules for problems.",
    no_args_is_help=True, rich_markup_mode="markdown",
)

app.add_typer(columns_app)
app.add_typer(rules_app)
app.add_typer(rows_app)
app.add_typer(validate_app)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(progtable.__version__)
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def _root(
    version: Annotated[
        bool, typer.Option("--version", "-V", help="Print version and exit.", is_eager=True)
    ] = False,
) -> None:
    if version:
        _version_callback(True)


# Type aliases for common options
FilePath = Annotated[str, typer.Option("--file", "-f", help="Path to the snapshot (.json/.yaml)")]
ColumnOpt = Annotated[str, typer.Option("--column", "-c", help="Column key (as shown by 'columns ls')")]
ConfigOpt = Annotated[Optional[str], typer.Option("--config", help="Settings file (default: progtable.yaml beside the snapshot)")]
BackupOpt = Annotated[bool, typer.Option("--backup", help="Create timestamped .bak copy before writing")]
DryRunOpt = Annotated[bool, typer.Option("--dry-run", help="Preview changes without writing to disk")]
LockTimeoutOpt = Annotated[float, typer.Option("--lock-timeout", help="Seconds to wait for the snapshot lock")]
TodayOpt = Annotated[Optional[str], typer.Option("--today", help="Date used for the 'today' token (YYYY-MM-DD)")]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _emit(envelope, code=None):
    print_response(envelope)
    raise typer.Exit(code if code is not None else exit_code_for(envelope))


def _load_ctx_or_emit(file: str, cmd: str):
    """Load a SnapshotContext, or emit an error envelope."""
    from progtable.engine.context import SnapshotContext

    try:
        return SnapshotContext(file)
    except FileNotFoundError:
        _emit(error_envelope(cmd, "ERR_SNAPSHOT_NOT_FOUND", f"File not found: {file}", target=Target(file=file)))
    except SnapshotCorruptError as e:
        _emit(error_envelope(cmd, "ERR_SNAPSHOT_CORRUPT", str(e), target=Target(file=file)))


def _load_settings_or_emit(file: str, cmd: str, config: str | None, **overrides: Any) -> Settings:
    """Settings from --config or progtable.yaml beside the snapshot, with CLI overrides."""
    try:
        if config:
            if not Path(config).exists():
                _emit(error_envelope(cmd, "ERR_CONFIG_NOT_FOUND", f"Config not found: {config}", target=Target(file=file)))
            settings = Settings.load(config)
        else:
            settings = Settings.load_from_dir(Path(file).resolve().parent)
        return settings.override(**overrides)
    except (ValueError, TypeError, yaml.YAMLError) as e:
        _emit(error_envelope(cmd, "ERR_INVALID_ARGUMENT", f"Invalid settings: {e}", target=Target(file=file)))


def _column_or_emit(ctx, column: str, cmd: str) -> ColumnDefinition:
    col = ctx.registry.resolve(column)
    if col is None:
        _emit(error_envelope(
            cmd, "ERR_COLUMN_NOT_FOUND", f"Column not found: {column}",
            target=ctx.target(column=column),
        ))
    return col


def _mutate_columns(
    cmd: str,
    file: str,
    column: str,
    edit: Callable[[list[ColumnDefinition]], list[ColumnDefinition]],
    *,
    backup: bool,
    dry_run: bool,
    lock_timeout: float,
) -> None:
    """Apply a column view-state edit under the snapshot lock and emit the result."""
    from progtable.engine.columns import diff_columns
    from progtable.io.fileops import SnapshotLock
    from progtable.io.fileops import backup as make_backup

    if not Path(file).exists():
        _emit(error_envelope(cmd, "ERR_SNAPSHOT_NOT_FOUND", f"File not found: {file}", target=Target(file=file)))

    with Timer() as t:
        try:
            with SnapshotLock(file, timeout=lock_timeout):
                ctx = _load_ctx_or_emit(file, cmd)
                _column_or_emit(ctx, column, cmd)
                before = ctx.snapshot.columns
                after = edit(list(before))
                changes = diff_columns(before, after)

                backup_path = None
                if not dry_run and changes:
                    if backup:
                        backup_path = make_backup(ctx.path)
                    ctx.save(ctx.snapshot.with_columns(after))
        except portalocker.LockException:
            _emit(error_envelope(
                cmd, "ERR_LOCK_TIMEOUT",
                f"Snapshot is locked by another process: {file}",
                target=Target(file=file),
            ))

    updated = next(c for c in after if c.key == column)
    result = {
        "dry_run": dry_run,
        "backup_path": backup_path,
        "column": updated.to_wire(),
        "fingerprint": ctx.fp,
    }
    env = success_envelope(
        cmd, result, target=ctx.target(column=column),
        changes=changes, duration_ms=t.elapsed_ms,
    )
    _emit(env)


# ---------------------------------------------------------------------------
# progtable version
# ---------------------------------------------------------------------------
@app.command()
def version():
    """Print the progtable version.

    Example: `progtable version`
    """
    env = success_envelope("version", {"version": progtable.__version__})
    _emit(env)


# ---------------------------------------------------------------------------
# progtable columns ls
# ---------------------------------------------------------------------------
@columns_app.command("ls")
def columns_ls(
    file: FilePath,
    archived: Annotated[bool, typer.Option("--archived", help="Include archived columns")] = False,
):
    """List live columns in display order with the active sort spec.

    Example: `progtable columns ls -f programs.json`
    """
    with Timer() as t:
        ctx = _load_ctx_or_emit(file, "columns.ls")
        registry = ctx.registry
        columns = registry.live_columns()
        if archived:
            columns = columns + [c for c in registry.columns if c.archived]
        result = {
            "columns": [c.to_wire() for c in columns],
            "visible": [c.key for c in registry.visible_columns()],
            "sort": [s.model_dump() for s in registry.sort_spec()],
            "fingerprint": ctx.fp,
        }
    env = success_envelope("columns.ls", result, target=ctx.target(), duration_ms=t.elapsed_ms)
    _emit(env)


# ---------------------------------------------------------------------------
# progtable columns sort
# ---------------------------------------------------------------------------
@columns_app.command("sort")
def columns_sort(
    file: FilePath,
    column: ColumnOpt,
    add: Annotated[bool, typer.Option("--add", help="Sort ascending as the last axis instead of toggling")] = False,
    clear: Annotated[bool, typer.Option("--clear", help="Remove the column from the sort axis")] = False,
    backup: BackupOpt = False,
    dry_run: DryRunOpt = False,
    lock_timeout: LockTimeoutOpt = 5.0,
):
    """Toggle a column's sort: none -> ascending -> descending -> none. Mutating.

    Example: `progtable columns sort -f programs.json -c deadlineAt`
    """
    from progtable.engine.columns import add_sort, remove_sort, toggle_sort

    if add and clear:
        _emit(error_envelope(
            "columns.sort", "ERR_INVALID_ARGUMENT", "Use either --add or --clear, not both",
            target=Target(file=file, column=column),
        ))
    if add:
        edit = add_sort
    elif clear:
        edit = remove_sort
    else:
        edit = toggle_sort
    _mutate_columns(
        "columns.sort", file, column, lambda cols: edit(cols, column),
        backup=backup, dry_run=dry_run, lock_timeout=lock_timeout,
    )


# ---------------------------------------------------------------------------
# progtable columns hide / show
# ---------------------------------------------------------------------------
@columns_app.command("hide")
def columns_hide(
    file: FilePath,
    column: ColumnOpt,
    backup: BackupOpt = False,
    dry_run: DryRunOpt = False,
    lock_timeout: LockTimeoutOpt = 5.0,
):
    """Hide a column. Mutating.

    Example: `progtable columns hide -f programs.json -c notes`
    """
    from progtable.engine.columns import set_visible

    _mutate_columns(
        "columns.hide", file, column, lambda cols: set_visible(cols, column, False),
        backup=backup, dry_run=dry_run, lock_timeout=lock_timeout,
    )


@columns_app.command("show")
def columns_show(
    file: FilePath,
    column: ColumnOpt,
    backup: BackupOpt = False,
    dry_run: DryRunOpt = False,
    lock_timeout: LockTimeoutOpt = 5.0,
):
    """Show a hidden column. Mutating.

    Example: `progtable columns show -f programs.json -c notes`
    """
    from progtable.engine.columns import set_visible

    _mutate_columns(
        "columns.show", file, column, lambda cols: set_visible(cols, column, True),
        backup=backup, dry_run=dry_run, lock_timeout=lock_timeout,
    )


# ---------------------------------------------------------------------------
# progtable columns filter
# ---------------------------------------------------------------------------
@columns_app.command("filter")
def columns_filter(
    file: FilePath,
    column: ColumnOpt,
    value: Annotated[str, typer.Option("--value", help="Filter string; empty clears the filter")] = "",
    backup: BackupOpt = False,
    dry_run: DryRunOpt = False,
    lock_timeout: LockTimeoutOpt = 5.0,
):
    """Set or clear a column's persisted filter. Mutating.

    Example: `progtable columns filter -f programs.json -c count --value ">=:5"`
    """
    from progtable.engine.columns import set_filter
    from progtable.engine.filters import parse_filter

    if value.startswith("between:") and parse_filter(value) is None:
        _emit(error_envelope(
            "columns.filter", "ERR_INVALID_ARGUMENT",
            f"Malformed between filter {value!r}: expected between:<low>:<high>",
            target=Target(file=file, column=column),
        ))
    _mutate_columns(
        "columns.filter", file, column, lambda cols: set_filter(cols, column, value),
        backup=backup, dry_run=dry_run, lock_timeout=lock_timeout,
    )


# ---------------------------------------------------------------------------
# progtable rules ls
# ---------------------------------------------------------------------------
@rules_app.command("ls")
def rules_ls(
    file: FilePath,
    config: ConfigOpt = None,
):
    """List enabled rules in evaluation order, with compile status.

    Rules whose condition tree cannot be used are listed with `skipped: true`
    and a warning explaining why.

    Example: `progtable rules ls -f programs.json`
    """
    from progtable.engine.matcher import RuleSet

    with Timer() as t:
        ctx = _load_ctx_or_emit(file, "rules.ls")
        settings = _load_settings_or_emit(file, "rules.ls", config)
        warnings = WarningLog()
        rule_set = RuleSet(
            ctx.snapshot.rules,
            registry=ctx.registry,
            today=settings.today,
            max_depth=settings.max_condition_depth,
            warnings=warnings,
        )
        rules = []
        for compiled in rule_set.compiled:
            entry = compiled.rule.to_wire()
            entry["skipped"] = compiled.tree is None
            entry["css"] = compiled.style.to_css()
            rules.append(entry)
        disabled = [r.id for r in ctx.snapshot.rules if not r.enabled]
        result = {"rules": rules, "disabled": disabled}
    env = success_envelope(
        "rules.ls", result, target=ctx.target(),
        warnings=warnings.items, duration_ms=t.elapsed_ms,
    )
    _emit(env)


# ---------------------------------------------------------------------------
# progtable compute
# ---------------------------------------------------------------------------
@app.command("compute")
def compute_cmd(
    file: FilePath,
    row: Annotated[Optional[str], typer.Option("--row", help="Row as a JSON object keyed by column key")] = None,
    index: Annotated[Optional[int], typer.Option("--index", help="Index of a row stored in the snapshot")] = None,
    config: ConfigOpt = None,
    today: TodayOpt = None,
):
    """Evaluate computed columns and styles for a single row.

    Example: `progtable compute -f programs.json --row '{"count":5,"machineWorking":2}'`

    Example: `progtable compute -f programs.json --index 0`
    """
    from progtable.engine.computed import ComputedColumnEvaluator
    from progtable.engine.matcher import RuleSet

    if (row is None) == (index is None):
        _emit(error_envelope(
            "compute", "ERR_INVALID_ARGUMENT", "Provide exactly one of --row or --index",
            target=Target(file=file),
        ))

    with Timer() as t:
        ctx = _load_ctx_or_emit(file, "compute")
        settings = _load_settings_or_emit(file, "compute", config, today=today)

        if row is not None:
            try:
                data = json.loads(row)
            except ValueError as e:
                _emit(error_envelope("compute", "ERR_INVALID_ARGUMENT", f"Invalid --row JSON: {e}", target=ctx.target()))
            if not isinstance(data, dict):
                _emit(error_envelope("compute", "ERR_INVALID_ARGUMENT", "--row must be a JSON object", target=ctx.target()))
        else:
            rows = ctx.snapshot.rows
            if not 0 <= index < len(rows):
                _emit(error_envelope(
                    "compute", "ERR_INVALID_ARGUMENT",
                    f"Row index {index} out of range (snapshot has {len(rows)} rows)",
                    target=ctx.target(),
                ))
            data = dict(rows[index])

        warnings = WarningLog()
        resolved = ComputedColumnEvaluator(ctx.registry, warnings).evaluate(data)
        rule_set = RuleSet(
            ctx.snapshot.rules,
            registry=ctx.registry,
            today=settings.today,
            max_depth=settings.max_condition_depth,
            warnings=warnings,
        )
        row_style = rule_set.row_style(resolved)
        cell_styles = {
            c.key: rule_set.cell_style(resolved, c.key, row_style=row_style)
            for c in ctx.registry.visible_columns()
        }
        result = {
            "values": resolved,
            "computed": {c.key: resolved.get(c.key) for c in ctx.registry.computed_columns()},
            "row_style": row_style.model_dump(by_alias=True),
            "row_css": row_style.to_css(),
            "cell_styles": {k: s.model_dump(by_alias=True) for k, s in cell_styles.items() if not s.is_empty},
        }
    env = success_envelope(
        "compute", result, target=ctx.target(),
        warnings=warnings.items, duration_ms=t.elapsed_ms,
    )
    _emit(env)


# ---------------------------------------------------------------------------
# progtable render
# ---------------------------------------------------------------------------
@app.command("render", epilog=_RENDER_EPILOG)
def render_cmd(
    file: FilePath,
    xlsx: Annotated[Optional[str], typer.Option("--xlsx", help="Also write the styled table to this .xlsx file")] = None,
    sheet: Annotated[str, typer.Option("--sheet", "-s", help="Worksheet name for --xlsx")] = "Programs",
    workers: Annotated[Optional[int], typer.Option("--workers", help="Evaluate rows on N threads (0/1 = sequential)")] = None,
    today: TodayOpt = None,
    search: Annotated[Optional[str], typer.Option("--search", help="Keep rows where a visible column contains this text")] = None,
    no_filters: Annotated[bool, typer.Option("--no-filters", help="Ignore persisted column filters")] = False,
    config: ConfigOpt = None,
    events: Annotated[bool, typer.Option("--events", help="Emit NDJSON lifecycle events on stderr")] = False,
    trace: Annotated[Optional[str], typer.Option("--trace", help="Write a JSON timing trace to this path")] = None,
):
    """Render the table: computed values, row and cell styles, filters and sort.

    Example: `progtable render -f programs.json --xlsx programs.xlsx`
    """
    from progtable.engine.render import render_table

    if workers is not None and workers < 0:
        _emit(error_envelope("render", "ERR_INVALID_ARGUMENT", "--workers must not be negative", target=Target(file=file)))

    emitter = EventEmitter(enabled=events)
    recorder = TraceRecorder() if trace else None

    with Timer() as t:
        ctx = _load_ctx_or_emit(file, "render")
        overrides: dict[str, Any] = {"today": today, "workers": workers}
        if no_filters:
            overrides["apply_filters"] = False
        settings = _load_settings_or_emit(file, "render", config, **overrides)
        warnings = WarningLog(emitter)

        result = render_table(
            ctx.snapshot, settings=settings, search=search,
            warnings=warnings, emitter=emitter, trace=recorder,
        )
        payload = result.model_dump(mode="json", by_alias=True, exclude={"warnings"})

        if xlsx:
            from progtable.adapters.openpyxl_export import export_workbook

            payload["export"] = export_workbook(result, ctx.registry, xlsx, sheet=sheet, warnings=warnings)
            if recorder is not None:
                recorder.record("export", payload["export"])

    if recorder is not None:
        payload["trace_path"] = recorder.save(trace)
    env = success_envelope(
        "render", payload, target=ctx.target(),
        warnings=warnings.items, duration_ms=t.elapsed_ms,
    )
    _emit(env)


# ---------------------------------------------------------------------------
# progtable rows import
# ---------------------------------------------------------------------------
@rows_app.command("import")
def rows_import(
    file: FilePath,
    xlsx: Annotated[str, typer.Option("--xlsx", help="Workbook whose first row holds column keys or labels")],
    sheet: Annotated[Optional[str], typer.Option("--sheet", "-s", help="Worksheet name (default: first sheet)")] = None,
    replace: Annotated[bool, typer.Option("--replace", help="Replace existing rows instead of appending")] = False,
    backup: BackupOpt = False,
    dry_run: DryRunOpt = False,
    lock_timeout: LockTimeoutOpt = 5.0,
):
    """Import rows from an .xlsx sheet into the snapshot. Mutating.

    Computed columns and unknown headers are skipped.

    Example: `progtable rows import -f programs.json --xlsx export.xlsx --replace`
    """
    from progtable.adapters.openpyxl_export import import_rows
    from progtable.io.fileops import SnapshotLock
    from progtable.io.fileops import backup as make_backup

    if not Path(file).exists():
        _emit(error_envelope("rows.import", "ERR_SNAPSHOT_NOT_FOUND", f"File not found: {file}", target=Target(file=file)))

    with Timer() as t:
        try:
            with SnapshotLock(file, timeout=lock_timeout):
                ctx = _load_ctx_or_emit(file, "rows.import")
                try:
                    imported, ignored = import_rows(xlsx, sheet=sheet, registry=ctx.registry)
                except FileNotFoundError:
                    _emit(error_envelope("rows.import", "ERR_WORKBOOK_NOT_FOUND", f"File not found: {xlsx}", target=ctx.target()))
                except SnapshotCorruptError as e:
                    _emit(error_envelope("rows.import", "ERR_WORKBOOK_CORRUPT", str(e), target=ctx.target()))
                except ValueError as e:
                    _emit(error_envelope("rows.import", "ERR_INVALID_ARGUMENT", str(e), target=ctx.target()))

                before = len(ctx.snapshot.rows)
                rows = imported if replace else [*ctx.snapshot.rows, *imported]
                change = ChangeRecord(
                    type="rows.import",
                    target=str(ctx.path),
                    before={"rows": before},
                    after={"rows": len(rows), "imported": len(imported), "replaced": replace},
                )

                backup_path = None
                if not dry_run:
                    if backup:
                        backup_path = make_backup(ctx.path)
                    ctx.save(ctx.snapshot.with_rows(rows))
        except portalocker.LockException:
            _emit(error_envelope(
                "rows.import", "ERR_LOCK_TIMEOUT",
                f"Snapshot is locked by another process: {file}",
                target=Target(file=file),
            ))

    result = {
        "dry_run": dry_run,
        "backup_path": backup_path,
        "imported": len(imported),
        "ignored_headers": ignored,
        "fingerprint": ctx.fp,
    }
    env = success_envelope(
        "rows.import", result, target=ctx.target(),
        changes=[change], duration_ms=t.elapsed_ms,
    )
    _emit(env)


# ---------------------------------------------------------------------------
# progtable validate snapshot
# ---------------------------------------------------------------------------
@validate_app.command("snapshot")
def validate_snapshot_cmd(
    file: FilePath,
    config: ConfigOpt = None,
):
    """Check columns and rules: expressions, references, condition trees, operators.

    Exits with code 10 when any check fails.

    Example: `progtable validate snapshot -f programs.json`
    """
    from progtable.validation.validators import validate_snapshot

    with Timer() as t:
        ctx = _load_ctx_or_emit(file, "validate.snapshot")
        settings = _load_settings_or_emit(file, "validate.snapshot", config)
        result = validate_snapshot(ctx.snapshot, settings)

    if result.valid:
        env = success_envelope(
            "validate.snapshot", result.model_dump(), target=ctx.target(),
            duration_ms=t.elapsed_ms,
        )
    else:
        failed = [c for c in result.checks if not c["passed"]]
        env = error_envelope(
            "validate.snapshot", "ERR_VALIDATION_FAILED",
            f"{len(failed)} check(s) failed",
            target=ctx.target(), details=result.model_dump(),
            duration_ms=t.elapsed_ms,
        )
    _emit(env)


# ---------------------------------------------------------------------------
# Entrypoint (for `python -m progtable`)
# ---------------------------------------------------------------------------
def main() -> None:
    try:
        app()
    except SystemExit:
        raise
    except Exception as exc:
        # Any unhandled exception still produces a JSON error envelope.
        env = error_envelope(
            "unknown",
            "ERR_INTERNAL",
            str(exc),
        )
        print_response(env)
        raise SystemExit(90) from exc


if __name__ == "__main__":
    main()
