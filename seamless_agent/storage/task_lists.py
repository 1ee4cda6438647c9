"""Disk-persisted task list sessions.

Open sessions are always kept; closed ones are trimmed to the newest
``MAX_CLOSED_SESSIONS``.
"""
from __future__ import annotations

import logging
from pathlib import Path

from ..models import TaskListSession
from .json_store import JsonDocumentStore

logger = logging.getLogger(__name__)

TASK_LISTS_FILENAME = "task_lists.json"
MAX_CLOSED_SESSIONS = 20


class TaskListStore:
    """Task list sessions keyed by id. Single-event-loop use only."""

    def __init__(self, store: JsonDocumentStore) -> None:
        self._store = store
        self._sessions: dict[str, TaskListSession] = {}
        self._loaded = False

    @classmethod
    def open(cls, storage_dir: Path) -> TaskListStore:
        task_lists = cls(JsonDocumentStore(storage_dir / TASK_LISTS_FILENAME))
        task_lists.load()
        return task_lists

    def load(self) -> None:
        if self._loaded:
            raise RuntimeError("TaskListStore is already loaded")
        self._loaded = True
        raw = self._store.load()
        if not isinstance(raw, dict):
            return
        for item in raw.get("sessions") or []:
            try:
                session = TaskListSession.from_dict(item)
            except (ValueError, TypeError, KeyError):
                logger.warning("Skipping malformed task list record")
                continue
            self._sessions[session.id] = session
        logger.info("Loaded %d task lists", len(self._sessions))

    def get(self, list_id: str) -> TaskListSession | None:
        return self._sessions.get(list_id)

    def all(self) -> list[TaskListSession]:
        return sorted(self._sessions.values(), key=lambda s: s.created_at, reverse=True)

    def open_sessions(self) -> list[TaskListSession]:
        return [s for s in self.all() if not s.closed]

    def put(self, session: TaskListSession) -> None:
        self._sessions[session.id] = session
        self.save()

    def save(self) -> None:
        """Persist after any in-place mutation of a session."""
        closed = [s for s in self.all() if s.closed]
        for stale in closed[MAX_CLOSED_SESSIONS:]:
            del self._sessions[stale.id]
        self._store.save({"sessions": [s.to_dict() for s in self.all()]})

    def flush(self) -> None:
        self._store.flush()

    def close(self) -> None:
        self._store.close()
