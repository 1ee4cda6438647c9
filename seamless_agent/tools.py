"""Agent-facing tool handlers.

Each handler validates its raw arguments, calls into the broker, the
plan-review state machine or the task lists, and returns a JSON-ready
dict. Invalid input short-circuits with a structured error result and
never touches broker state.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from . import strings
from .broker import PendingRequestBroker
from .fallback import TerminalPrompt
from .models import PlanReviewMode, UserResponseResult
from .plan_review import PlanReviewStateMachine
from .schemas import (
    ApprovePlanInput,
    AskUserInput,
    CloseTaskListInput,
    CreateTaskListInput,
    GetNextTaskInput,
    PlanReviewInput,
    TaskListInput,
    UpdateTaskStatusInput,
    WalkthroughReviewInput,
    dump_tasks,
    safe_parse_input,
)
from .task_list import TaskListManager

logger = logging.getLogger(__name__)


def _validation_error(message: str) -> str:
    return f"Validation error: {message}"


def ask_user_error(message: str) -> dict[str, Any]:
    return UserResponseResult(False, message).to_dict()


def review_error(message: str) -> dict[str, Any]:
    return {"status": "cancelled", "requiredRevisions": [], "reviewId": "", "error": message}


def task_error(message: str) -> dict[str, Any]:
    return {"error": message}


class AgentTools:
    """The tool surface shared by the HTTP bridge and the MCP servers."""

    def __init__(
        self,
        broker: PendingRequestBroker,
        plan_reviews: PlanReviewStateMachine,
        task_lists: TaskListManager,
        *,
        fallback: TerminalPrompt | None = None,
    ) -> None:
        self.broker = broker
        self.plan_reviews = plan_reviews
        self.task_lists = task_lists
        self._fallback = fallback

    # ── ask_user ──

    async def ask_user(self, raw: Any, *, cancel_event: asyncio.Event | None = None) -> dict[str, Any]:
        parsed = safe_parse_input(AskUserInput, raw)
        if not parsed.success:
            return ask_user_error(_validation_error(parsed.error))
        params = parsed.data

        agent_name = params.agent_name or strings.DEFAULT_AGENT_NAME
        title = f"{agent_name}: {params.title or strings.CONFIRMATION_REQUIRED}"
        result = await self.broker.create_request(
            params.question, title, params.agent_name, cancel_event=cancel_event,
        )
        if not result.responded and result.response == strings.VIEW_UNAVAILABLE:
            result = await self._ask_fallback(params.question, title)

        if result.responded:
            response = result.response
        elif result.response == strings.VIEW_UNAVAILABLE:
            response = result.response
        else:
            response = strings.REQUEST_CANCELLED
        return {
            "responded": result.responded,
            "response": response,
            "attachments": [a["uri"] for a in result.attachments],
        }

    async def _ask_fallback(self, question: str, title: str) -> UserResponseResult:
        if self._fallback is None or not self._fallback.is_supported():
            logger.warning("No console and no terminal for ask_user")
            return UserResponseResult(False, strings.VIEW_UNAVAILABLE)
        logger.info("Console unavailable, asking on the terminal")
        return await self._fallback.ask(question, title)

    # ── Reviews ──

    async def plan_review(self, raw: Any, *, cancel_event: asyncio.Event | None = None) -> dict[str, Any]:
        parsed = safe_parse_input(PlanReviewInput, raw)
        if not parsed.success:
            return self._review_validation_error(parsed.error)
        params = parsed.data
        title = params.title
        if title is None:
            title = strings.WALKTHROUGH_TITLE if params.mode is PlanReviewMode.WALKTHROUGH else strings.PLAN_REVIEW_TITLE
        result = await self.plan_reviews.open(
            params.plan, title, params.mode, params.chat_id, cancel_event=cancel_event,
        )
        return result.to_dict()

    async def walkthrough_review(self, raw: Any, *, cancel_event: asyncio.Event | None = None) -> dict[str, Any]:
        parsed = safe_parse_input(WalkthroughReviewInput, raw)
        if not parsed.success:
            return self._review_validation_error(parsed.error)
        params = parsed.data
        result = await self.plan_reviews.open(
            params.plan,
            params.title or strings.WALKTHROUGH_TITLE,
            PlanReviewMode.WALKTHROUGH,
            params.chat_id,
            cancel_event=cancel_event,
        )
        return result.to_dict()

    async def approve_plan(self, raw: Any, *, cancel_event: asyncio.Event | None = None) -> dict[str, Any]:
        """Deprecated alias of plan_review that omits the review id."""
        parsed = safe_parse_input(ApprovePlanInput, raw)
        if not parsed.success:
            return {
                "status": "cancelled",
                "comments": [],
                "error": _validation_error(parsed.error),
            }
        params = parsed.data
        result = await self.plan_reviews.open(
            params.plan,
            params.title or strings.PLAN_REVIEW_TITLE,
            PlanReviewMode.REVIEW,
            cancel_event=cancel_event,
        )
        payload = result.to_dict()
        return {"status": payload["status"], "requiredRevisions": payload["requiredRevisions"]}

    @staticmethod
    def _review_validation_error(message: str) -> dict[str, Any]:
        return review_error(_validation_error(message))

    # ── Task lists ──

    def task_list(self, raw: Any) -> dict[str, Any]:
        parsed = safe_parse_input(TaskListInput, raw)
        if not parsed.success:
            operation = raw.get("operation", "") if isinstance(raw, dict) else ""
            return {"error": _validation_error(parsed.error), "operation": operation}
        params = parsed.data
        payload: dict[str, Any] = {
            "listId": params.list_id,
            "title": params.title,
            "description": params.description,
            "tasks": dump_tasks(params.tasks),
            "task": params.task.model_dump(exclude_none=True, mode="json") if params.task else None,
            "taskId": params.task_id,
            "status": params.status.value if params.status else None,
        }
        return self.task_lists.handle(params.operation, payload)

    def create_task_list(self, raw: Any) -> dict[str, Any]:
        parsed = safe_parse_input(CreateTaskListInput, raw)
        if not parsed.success:
            return task_error(_validation_error(parsed.error))
        params = parsed.data
        return self.task_lists.create_task_list(params.title, params.description, dump_tasks(params.tasks))

    def get_next_task(self, raw: Any) -> dict[str, Any]:
        parsed = safe_parse_input(GetNextTaskInput, raw)
        if not parsed.success:
            return task_error(_validation_error(parsed.error))
        return self.task_lists.get_next_task(parsed.data.list_id)

    def update_task_status(self, raw: Any) -> dict[str, Any]:
        parsed = safe_parse_input(UpdateTaskStatusInput, raw)
        if not parsed.success:
            return task_error(_validation_error(parsed.error))
        params = parsed.data
        return self.task_lists.update_task_status(params.list_id, params.task_id, params.status)

    def close_task_list(self, raw: Any) -> dict[str, Any]:
        parsed = safe_parse_input(CloseTaskListInput, raw)
        if not parsed.success:
            return task_error(_validation_error(parsed.error))
        return self.task_lists.close_task_list(parsed.data.list_id)
