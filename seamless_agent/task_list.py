"""Non-blocking task lists the agent polls while it works.

Operations never raise for protocol errors: an unknown list, an unknown
task or a closed list yields ``{"error": ..., "operation": ...}`` so the
agent can correct itself on the next call. Reviewer comments added from
the console accumulate as pending and are drained (marked sent) by the
agent's next add / update / read.
"""
from __future__ import annotations

import logging
from typing import Any

from .console import ConsoleChannel
from .messages import (
    AddTaskComment,
    ListClosed,
    OpenTaskList,
    RemoveTaskComment,
    ShowTaskList,
    UIMessage,
    UpdateTasks,
)
from .models import (
    CommentStatus,
    Task,
    TaskComment,
    TaskListSession,
    TaskStatus,
    new_id,
)
from .storage.task_lists import TaskListStore

logger = logging.getLogger(__name__)

OPEN_STATUSES = frozenset({TaskStatus.PENDING, TaskStatus.IN_PROGRESS})


def _error(operation: str, message: str) -> dict[str, Any]:
    return {"error": message, "operation": operation}


def _coerce_status(value: Any) -> TaskStatus:
    if isinstance(value, TaskStatus):
        return value
    if value is None:
        return TaskStatus.PENDING
    return TaskStatus(value)


class TaskListManager:
    """Task list sessions plus their console panels."""

    def __init__(self, store: TaskListStore, channel: ConsoleChannel | None = None) -> None:
        self._store = store
        self._channel = channel

    def get(self, list_id: str) -> TaskListSession | None:
        return self._store.get(list_id)

    # ── Operation-based interface ──

    def handle(self, operation: str, params: dict[str, Any]) -> dict[str, Any]:
        """Dispatch a ``task_list`` tool call by operation name."""
        handlers = {
            "create": self._op_create,
            "add": self._op_add,
            "update": self._op_update,
            "read": self._op_read,
            "close": self._op_close,
        }
        handler = handlers.get(operation)
        if handler is None:
            return _error(str(operation), f"Unknown operation: {operation}")
        try:
            return handler(params)
        except (ValueError, TypeError, KeyError) as exc:
            logger.warning("task_list %s failed: %s", operation, exc)
            return _error(operation, str(exc))

    def create(
        self,
        title: str,
        tasks: list[dict[str, Any]] | None = None,
        description: str | None = None,
    ) -> TaskListSession:
        session = TaskListSession(id=new_id("list"), title=title, description=description)
        for item in tasks or []:
            session.tasks.append(self._new_task(item))
        self._store.put(session)
        logger.info("Task list created id=%s tasks=%d", session.id[:14], len(session.tasks))
        self._show(session)
        return session

    def _op_create(self, params: dict[str, Any]) -> dict[str, Any]:
        title = params.get("title")
        if not title:
            return _error("create", "Title is required for create operation")
        session = self.create(title, params.get("tasks"), params.get("description"))
        return {
            "operation": "create",
            "listId": session.id,
            "tasks": [t.to_dict() for t in session.tasks],
            "pendingComments": [],
        }

    def _op_add(self, params: dict[str, Any]) -> dict[str, Any]:
        session, err = self._open_session("add", params.get("listId"))
        if err:
            return err
        task_input = params.get("task")
        if not task_input:
            return _error("add", "task is required for add operation")
        task = self._new_task(task_input)
        session.tasks.append(task)
        self._store.save()
        logger.info("Task added list=%s task=%s", session.id[:14], task.id[:14])
        self._update_panel(session)
        return {
            "operation": "add",
            "taskId": task.id,
            "pendingComments": self._drain_comments(session),
        }

    def _op_update(self, params: dict[str, Any]) -> dict[str, Any]:
        session, err = self._open_session("update", params.get("listId"))
        if err:
            return err
        task_id = params.get("taskId")
        if not task_id:
            return _error("update", "taskId is required for update operation")
        fields: dict[str, Any] = {}
        for key in ("title", "description", "status"):
            if params.get(key) is not None:
                fields[key] = params[key]
        result = self.update(session, task_id, **fields)
        if result is None:
            return _error("update", f"Task not found: {task_id}")
        return {
            "operation": "update",
            "updated": True,
            "autoCompleted": result,
            "pendingComments": self._drain_comments(session),
        }

    def _op_read(self, params: dict[str, Any]) -> dict[str, Any]:
        list_id = params.get("listId")
        if not list_id:
            return _error("read", "listId is required for read operation")
        session = self._store.get(list_id)
        if session is None:
            return _error("read", f"List not found: {list_id}")
        return {
            "operation": "read",
            "listId": session.id,
            "title": session.title,
            "closed": session.closed,
            "tasks": [t.to_dict() for t in session.tasks],
            "pendingComments": self._drain_comments(session),
        }

    def _op_close(self, params: dict[str, Any]) -> dict[str, Any]:
        session, err = self._open_session("close", params.get("listId"))
        if err:
            return err
        final_comments = self._drain_comments(session)
        self.close(session)
        return {
            "operation": "close",
            "closed": True,
            "finalComments": final_comments,
            "summary": self.summary(session),
        }

    # ── Flow tools ──

    def create_task_list(
        self,
        title: str,
        description: str | None = None,
        tasks: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        session = self.create(title, tasks, description)
        return {
            "created": True,
            "listId": session.id,
            "title": session.title,
            "totalTasks": len(session.tasks),
        }

    def get_next_task(self, list_id: str) -> dict[str, Any]:
        session = self._store.get(list_id)
        if session is None:
            return {"error": f"List not found: {list_id}"}
        comments = self._drain_comments(session)
        task = None
        if not session.closed:
            task = next((t for t in session.tasks if t.status is TaskStatus.IN_PROGRESS), None)
            if task is None:
                task = next((t for t in session.tasks if t.status is TaskStatus.PENDING), None)
        return {
            "listId": session.id,
            "closed": session.closed,
            "done": session.closed or task is None,
            "task": task.to_dict() if task else None,
            "comments": comments,
        }

    def update_task_status(self, list_id: str, task_id: str, status: str) -> dict[str, Any]:
        session = self._store.get(list_id)
        if session is None:
            return {"error": f"List not found: {list_id}"}
        if session.closed:
            return {"error": f"List is closed: {list_id}"}
        auto_closed = self.update(session, task_id, status=status)
        if auto_closed is None:
            return {"error": f"Task not found: {task_id}"}
        return {
            "listId": session.id,
            "taskId": task_id,
            "updated": True,
            "status": _coerce_status(status).value,
            "autoClosed": auto_closed,
        }

    def close_task_list(self, list_id: str) -> dict[str, Any]:
        session = self._store.get(list_id)
        if session is None:
            return {"error": f"List not found: {list_id}"}
        if session.closed:
            return {"error": f"List is closed: {list_id}"}
        remaining = self._drain_comments(session)
        self.close(session)
        return {
            "listId": session.id,
            "closed": True,
            "summary": self.summary(session),
            "remainingPendingComments": remaining,
        }

    # ── Shared state transitions ──

    def update(self, session: TaskListSession, task_id: str, **fields: Any) -> bool | None:
        """Apply field updates. Returns whether the list auto-closed, None if no such task."""
        task = session.find_task(task_id)
        if task is None:
            return None
        if "title" in fields:
            task.title = str(fields["title"])
        if "description" in fields:
            task.description = fields["description"]
        if "status" in fields:
            task.status = _coerce_status(fields["status"])

        auto_closed = (
            task.status is TaskStatus.COMPLETED
            and not any(t.status in OPEN_STATUSES for t in session.tasks)
        )
        if auto_closed:
            session.closed = True
            self._store.save()
            logger.info("Task list auto-closed id=%s", session.id[:14])
            self._publish(ListClosed(list_id=session.id))
        else:
            self._store.save()
            self._update_panel(session)
        return auto_closed

    def close(self, session: TaskListSession) -> None:
        if session.closed:
            return
        session.closed = True
        logger.info("Task list closed id=%s", session.id[:14])
        self._store.save()
        self._publish(ListClosed(list_id=session.id))

    @staticmethod
    def summary(session: TaskListSession) -> dict[str, int]:
        counts = {status: 0 for status in TaskStatus}
        for task in session.tasks:
            counts[task.status] += 1
        return {
            "total": len(session.tasks),
            "completed": counts[TaskStatus.COMPLETED],
            "blocked": counts[TaskStatus.BLOCKED],
            "inProgress": counts[TaskStatus.IN_PROGRESS],
            "pending": counts[TaskStatus.PENDING],
        }

    # ── Reviewer comments ──

    def add_comment(
        self,
        list_id: str,
        task_id: str,
        revisor_instructions: str,
        revised_part: str = "",
        *,
        reopened: bool = False,
    ) -> TaskComment | None:
        session = self._store.get(list_id)
        if session is None or session.closed:
            return None
        task = session.find_task(task_id)
        if task is None:
            return None
        comment = TaskComment(
            id=new_id("comment"),
            task_id=task_id,
            revisor_instructions=revisor_instructions,
            revised_part=revised_part or task.title,
        )
        session.comments.append(comment)
        if reopened and task.status is TaskStatus.COMPLETED:
            task.status = TaskStatus.PENDING
        self._store.save()
        self._update_panel(session)
        return comment

    def remove_comment(self, list_id: str, task_id: str, comment_id: str) -> bool:
        """Remove a comment the agent has not received yet."""
        session = self._store.get(list_id)
        if session is None:
            return False
        for comment in session.comments:
            if comment.id == comment_id and comment.task_id == task_id:
                if comment.status is CommentStatus.SENT:
                    return False
                session.comments.remove(comment)
                self._store.save()
                self._update_panel(session)
                return True
        return False

    def _drain_comments(self, session: TaskListSession) -> list[dict[str, Any]]:
        drained = []
        for comment in session.comments:
            if comment.status is CommentStatus.PENDING:
                comment.status = CommentStatus.SENT
                drained.append(comment.to_result())
        if drained:
            self._store.save()
            self._update_panel(session)
        return drained

    # ── UI ──

    def handle_message(self, message: UIMessage) -> bool:
        if isinstance(message, AddTaskComment):
            self.add_comment(
                message.list_id,
                message.task_id,
                message.revisor_instructions,
                message.revised_part,
                reopened=bool(message.reopened),
            )
        elif isinstance(message, RemoveTaskComment):
            self.remove_comment(message.list_id, message.task_id, message.comment_id)
        elif isinstance(message, OpenTaskList):
            session = self._store.get(message.list_id)
            if session is not None:
                self._show(session)
        else:
            return False
        return True

    def _tasks_payload(self, session: TaskListSession) -> list[dict[str, Any]]:
        payload = []
        for task in session.tasks:
            item = task.to_dict()
            item["comments"] = [c.to_dict() for c in session.comments_for(task.id)]
            payload.append(item)
        return payload

    def _show(self, session: TaskListSession) -> None:
        self._publish(ShowTaskList(
            list_id=session.id,
            title=session.title,
            closed=session.closed,
            tasks=self._tasks_payload(session),
        ))

    def _update_panel(self, session: TaskListSession) -> None:
        self._publish(UpdateTasks(
            list_id=session.id,
            closed=session.closed,
            tasks=self._tasks_payload(session),
        ))

    def _publish(self, message: UIMessage) -> None:
        if self._channel is not None:
            self._channel.publish(message)

    # ── Helpers ──

    def _open_session(
        self, operation: str, list_id: str | None,
    ) -> tuple[TaskListSession | None, dict[str, Any] | None]:
        if not list_id:
            return None, _error(operation, f"listId is required for {operation} operation")
        session = self._store.get(list_id)
        if session is None:
            return None, _error(operation, f"List not found: {list_id}")
        if session.closed:
            return None, _error(operation, f"List is closed: {list_id}")
        return session, None

    @staticmethod
    def _new_task(item: dict[str, Any]) -> Task:
        title = item.get("title") if isinstance(item, dict) else None
        if not title:
            raise ValueError("Task title is required")
        return Task(
            id=new_id("task"),
            title=str(title),
            description=item.get("description"),
            status=_coerce_status(item.get("status")),
        )
