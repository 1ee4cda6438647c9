"""Input schemas for the agent-facing tools.

Tool arguments arrive with camelCase keys (``agentName``, ``listId``).
Validation failures are reported as values, never raised across the
broker boundary: see ``safe_parse_input``.
"""
from __future__ import annotations

from typing import Any, Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .models import PlanReviewMode, TaskStatus


class ToolInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class AskUserInput(ToolInput):
    question: str = Field(min_length=1, description="The question or prompt to display to the user")
    title: str | None = Field(default=None, description="Optional custom title for the confirmation dialog")
    agent_name: str | None = Field(default=None, alias="agentName", description="Your agent name")


class PlanReviewInput(ToolInput):
    plan: str = Field(min_length=1, description="The plan content in Markdown format")
    title: str | None = Field(default=None, description="Optional title for the review panel")
    mode: PlanReviewMode = Field(default=PlanReviewMode.REVIEW)
    chat_id: str | None = Field(default=None, alias="chatId")


class WalkthroughReviewInput(ToolInput):
    plan: str = Field(min_length=1, description="The walkthrough content in Markdown format")
    title: str | None = None
    chat_id: str | None = Field(default=None, alias="chatId")


class ApprovePlanInput(ToolInput):
    plan: str = Field(min_length=1)
    title: str | None = None


class TaskInput(ToolInput):
    title: str = Field(min_length=1)
    description: str | None = None
    status: TaskStatus | None = None


class TaskListInput(ToolInput):
    operation: Literal["create", "add", "update", "read", "close"]
    list_id: str | None = Field(default=None, alias="listId")
    title: str | None = None
    description: str | None = None
    tasks: list[TaskInput] | None = None
    task: TaskInput | None = None
    task_id: str | None = Field(default=None, alias="taskId")
    status: TaskStatus | None = None


class CreateTaskListInput(ToolInput):
    title: str = Field(min_length=1, description="Task list title")
    description: str | None = Field(default=None, description="Optional description (informational)")
    tasks: list[TaskInput] | None = Field(default=None, description="Initial tasks array")


class GetNextTaskInput(ToolInput):
    list_id: str = Field(min_length=1, alias="listId")


class UpdateTaskStatusInput(ToolInput):
    list_id: str = Field(min_length=1, alias="listId")
    task_id: str = Field(min_length=1, alias="taskId")
    status: Literal["in-progress", "completed", "blocked"]


class CloseTaskListInput(ToolInput):
    list_id: str = Field(min_length=1, alias="listId")


ModelT = TypeVar("ModelT", bound=BaseModel)


class ParseResult(Generic[ModelT]):
    """Either ``data`` or ``error`` is set."""

    __slots__ = ("data", "error")

    def __init__(self, data: ModelT | None = None, error: str | None = None) -> None:
        self.data = data
        self.error = error

    @property
    def success(self) -> bool:
        return self.error is None


def format_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        path = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{path}: {err.get('msg', 'invalid')}" if path else err.get("msg", "invalid"))
    return "; ".join(parts)


def safe_parse_input(model: type[ModelT], raw: Any) -> ParseResult[ModelT]:
    """Validate *raw* against *model* without raising."""
    try:
        return ParseResult(data=model.model_validate(raw if raw is not None else {}))
    except ValidationError as exc:
        return ParseResult(error=format_validation_error(exc))


def dump_tasks(tasks: list[TaskInput] | None) -> list[dict[str, Any]] | None:
    if tasks is None:
        return None
    return [t.model_dump(exclude_none=True, mode="json") for t in tasks]
