"""A JSON document on disk with ordered, fire-and-forget writes.

The event loop owns the in-memory state. Each ``save()`` serializes a
snapshot on the caller's thread and hands the bytes to a single-worker
executor, so writes land in submission order and a later snapshot is
never overwritten by an earlier one. Write failures are logged and
swallowed: the interaction that triggered them has already succeeded
in memory.
"""
from __future__ import annotations

import json
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Any

from .durable_write import atomic_write_text

logger = logging.getLogger(__name__)


class JsonDocumentStore:
    """Load once at startup, then persist snapshots in the background."""

    def __init__(self, path: Path, *, file_mode: int | None = None) -> None:
        self._path = path
        self._file_mode = file_mode
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"store-{path.stem}",
        )
        self._inflight: set[Future] = set()
        self._lock = threading.Lock()
        self._closed = False

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Any | None:
        """Read the document. Missing or corrupt files yield None."""
        if not self._path.exists():
            return None
        try:
            return json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError, OSError) as exc:
            logger.warning("Ignoring unreadable store %s: %s", self._path, exc)
            return None

    def save(self, data: Any) -> None:
        """Queue a snapshot of *data* for writing."""
        if self._closed:
            logger.warning("Store %s is closed, dropping write", self._path)
            return
        content = json.dumps(data, indent=2, ensure_ascii=False)
        future = self._executor.submit(self._write, content)
        with self._lock:
            self._inflight.add(future)
        future.add_done_callback(self._forget)

    def _write(self, content: str) -> None:
        try:
            atomic_write_text(self._path, content, mode=self._file_mode)
        except OSError:
            logger.exception("Failed to write store %s", self._path)

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._inflight.discard(future)

    def flush(self, timeout: float | None = 5.0) -> None:
        """Block until every queued write has finished."""
        with self._lock:
            pending = list(self._inflight)
        if pending:
            wait(pending, timeout=timeout)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._executor.shutdown(wait=True)
