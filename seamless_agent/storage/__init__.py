"""Disk-backed stores for history, task lists and the bridge token."""
from .history import InteractionHistoryLog
from .json_store import JsonDocumentStore
from .stores import Stores, open_stores
from .task_lists import TaskListStore

__all__ = ["InteractionHistoryLog", "JsonDocumentStore", "Stores", "TaskListStore", "open_stores"]
