"""Structured event emission, warning collection and trace support."""

from __future__ import annotations

import json
import sys
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from progtable.contracts.common import WarningDetail


class Timer:
    """Simple context-manager timer for measuring duration_ms."""

    def __init__(self) -> None:
        self.start: float = 0
        self.elapsed_ms: int = 0

    def __enter__(self) -> "Timer":
        self.start = time.perf_counter()
        return self

    def __exit__(self, *args: Any) -> None:
        self.elapsed_ms = int((time.perf_counter() - self.start) * 1000)


class EventEmitter:
    """Emits NDJSON lifecycle events to stderr."""

    def __init__(self, enabled: bool = False) -> None:
        self.enabled = enabled

    def emit(self, event: str, data: dict[str, Any] | None = None) -> None:
        if not self.enabled:
            return
        payload = {
            "event": event,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "data": data or {},
        }
        sys.stderr.write(json.dumps(payload, default=str) + "\n")
        sys.stderr.flush()


class WarningLog:
    """Collects schema/rule warnings for a pass, once per (code, path).

    A bad expression or rule is hit on every row; callers only need to hear
    about it once. Safe to share between worker threads.
    """

    def __init__(self, emitter: EventEmitter | None = None) -> None:
        self._emitter = emitter
        self._items: list[WarningDetail] = []
        self._seen: set[tuple[str, str | None]] = set()
        self._lock = threading.Lock()

    def add(self, code: str, message: str, path: str | None = None) -> None:
        key = (code, path)
        with self._lock:
            if key in self._seen:
                return
            self._seen.add(key)
            detail = WarningDetail(code=code, message=message, path=path)
            self._items.append(detail)
        if self._emitter is not None:
            self._emitter.emit("warning", detail.model_dump())

    @property
    def items(self) -> list[WarningDetail]:
        with self._lock:
            return list(self._items)

    def codes(self) -> list[str]:
        return [w.code for w in self.items]

    def __len__(self) -> int:
        return len(self._items)


class TraceRecorder:
    """Records trace data during command execution."""

    def __init__(self) -> None:
        self.entries: list[dict[str, Any]] = []
        self._start = time.perf_counter()

    def record(self, category: str, data: dict[str, Any]) -> None:
        elapsed = int((time.perf_counter() - self._start) * 1000)
        self.entries.append({
            "category": category,
            "timestamp_ms": elapsed,
            **data,
        })

    def save(self, path: str | Path) -> str:
        """Save trace to a JSON file. Returns the path."""
        trace_path = Path(path)
        trace_data = {
            "trace_version": "1.0",
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "total_duration_ms": int((time.perf_counter() - self._start) * 1000),
            "entries": self.entries,
        }
        trace_path.write_text(json.dumps(trace_data, indent=2, default=str))
        return str(trace_path)
