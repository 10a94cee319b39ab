"""Snapshot file operations: fingerprinting, backup, atomic write, locking."""

from __future__ import annotations

import hashlib
import os
import shutil
import tempfile
import time
from datetime import datetime, timezone
from io import TextIOWrapper
from pathlib import Path

import portalocker

LOCK_SUFFIX = ".pt.lock"


def fingerprint(path: str | Path) -> str:
    """SHA-256 of the file contents, prefixed with the algorithm name."""
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            h.update(chunk)
    return f"sha256:{h.hexdigest()}"


def backup(path: str | Path) -> str:
    """Copy a snapshot to ``<stem>.<UTC timestamp>.bak<suffix>``."""
    path = Path(path)
    ts = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    backup_path = path.parent / f"{path.stem}.{ts}.bak{path.suffix}"
    shutil.copy2(path, backup_path)
    return str(backup_path)


def atomic_write(target: str | Path, data: bytes) -> None:
    """Write data to target atomically via temp file + rename."""
    target = Path(target)
    fd, tmp_path = tempfile.mkstemp(
        dir=target.parent, suffix=target.suffix, prefix=".pt_tmp_"
    )
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        shutil.move(tmp_path, target)
    except Exception:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


class SnapshotLock:
    """Exclusive sidecar lock held while a snapshot is rewritten.

    The ``<file>.pt.lock`` sidecar is left on disk after release; the OS
    drops the lock itself when the holder exits, so a leftover file does not
    block the next writer.
    """

    def __init__(self, snapshot_path: str | Path, *, timeout: float = 0) -> None:
        self.snapshot_path = Path(snapshot_path).resolve()
        self.timeout = timeout
        self.lock_path = self.snapshot_path.parent / (self.snapshot_path.name + LOCK_SUFFIX)
        self._lock_file: TextIOWrapper | None = None

    def _try_lock(self) -> None:
        portalocker.lock(self._lock_file, portalocker.LOCK_EX | portalocker.LOCK_NB)

    def __enter__(self) -> "SnapshotLock":
        self._lock_file = open(self.lock_path, "a+")  # noqa: SIM115
        deadline = time.monotonic() + max(self.timeout, 0)
        try:
            while True:
                try:
                    self._try_lock()
                    break
                except portalocker.LockException:
                    if time.monotonic() >= deadline:
                        raise
                    time.sleep(min(0.1, max(0.01, self.timeout / 20)))
        except portalocker.LockException:
            self._lock_file.close()
            self._lock_file = None
            raise

        self._lock_file.seek(0)
        self._lock_file.truncate()
        self._lock_file.write(f"pid={os.getpid()}\n")
        self._lock_file.write(f"time={datetime.now(timezone.utc).isoformat()}\n")
        self._lock_file.flush()
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        if self._lock_file is not None:
            try:
                portalocker.unlock(self._lock_file)
            finally:
                self._lock_file.close()
                self._lock_file = None


def read_text_safe(path: str | Path) -> str:
    """Read UTF-8 text, tolerating a leading BOM."""
    return Path(path).read_text(encoding="utf-8-sig")
