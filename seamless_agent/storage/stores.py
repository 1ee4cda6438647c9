"""Owned handle over every disk-backed store of one storage directory."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from .history import MAX_INTERACTIONS, InteractionHistoryLog
from .task_lists import TaskListStore

logger = logging.getLogger(__name__)


@dataclass
class Stores:
    history: InteractionHistoryLog
    task_lists: TaskListStore
    storage_dir: Path

    def flush(self) -> None:
        self.history.flush()
        self.task_lists.flush()

    def close(self) -> None:
        """Drain pending writes and release the writer threads."""
        self.history.close()
        self.task_lists.close()
        logger.debug("Stores closed dir=%s", self.storage_dir)


def open_stores(storage_dir: Path, max_history: int = MAX_INTERACTIONS) -> Stores:
    """Create the storage dir if needed and load every store from it."""
    storage_dir.mkdir(parents=True, exist_ok=True)
    history = InteractionHistoryLog.open(storage_dir, max_history)
    task_lists = TaskListStore.open(storage_dir)
    logger.info(
        "Opened stores dir=%s interactions=%d task_lists=%d",
        storage_dir, len(history), len(task_lists.all()),
    )
    return Stores(history=history, task_lists=task_lists, storage_dir=storage_dir)
