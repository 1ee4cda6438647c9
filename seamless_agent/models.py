"""Core data models for the Seamless Agent backend.

All dataclasses, enums, and id helpers shared by the broker, the
plan-review state machine, the task lists and the stores. Single
source of truth to avoid circular imports.

Wire dictionaries use the camelCase keys the console UI speaks
(``createdAt``, ``isTemporary``, ``requiredRevisions`` ...).
"""
from __future__ import annotations

import secrets
import string
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

_BASE36 = string.digits + string.ascii_lowercase


class DisplayMode(str, Enum):
    """What the console shows. Derived from the number of pending requests."""
    HOME = "home"
    QUESTION = "question"
    LIST = "list"


class InteractionType(str, Enum):
    ASK_USER = "ask_user"
    PLAN_REVIEW = "plan_review"


class AskUserStatus(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PlanReviewMode(str, Enum):
    REVIEW = "review"
    WALKTHROUGH = "walkthrough"


class PlanReviewStatus(str, Enum):
    """Plan review record states. See plan_review.py for transition rules."""
    PENDING = "pending"
    APPROVED = "approved"
    RECREATE_WITH_CHANGES = "recreateWithChanges"
    ACKNOWLEDGED = "acknowledged"
    CLOSED = "closed"
    CANCELLED = "cancelled"


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"


class CommentStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"


def now_ms() -> int:
    """Wall-clock milliseconds since the epoch."""
    return int(time.time() * 1000)


def _random_suffix(length: int = 9) -> str:
    return "".join(secrets.choice(_BASE36) for _ in range(length))


def new_id(prefix: str) -> str:
    """Generate an opaque id such as ``req_1712345678901_k3j9x0a1b``."""
    return f"{prefix}_{now_ms()}_{_random_suffix()}"


# ── Attachments and responses ──


@dataclass
class AttachmentInfo:
    """A file, folder or pasted image bundled with a response."""
    id: str
    name: str
    uri: str
    is_temporary: bool = False
    is_folder: bool = False
    folder_path: str | None = None
    depth: int | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"id": self.id, "name": self.name, "uri": self.uri}
        if self.is_temporary:
            d["isTemporary"] = True
        if self.is_folder:
            d["isFolder"] = True
        if self.folder_path is not None:
            d["folderPath"] = self.folder_path
        if self.depth is not None:
            d["depth"] = self.depth
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AttachmentInfo:
        name = str(data.get("name", ""))
        return cls(
            id=str(data.get("id") or new_id("att")),
            name=name,
            uri=str(data.get("uri", "")),
            is_temporary=bool(data.get("isTemporary", False)),
            is_folder=bool(data.get("isFolder", False)),
            folder_path=data.get("folderPath"),
            depth=data.get("depth"),
        )

    def stripped(self) -> dict[str, str]:
        """The public view handed back to the calling agent."""
        return {"name": self.name, "uri": self.uri}


@dataclass
class UserResponseResult:
    """Outcome of an ask_user request.

    ``responded`` is False only for cancellations and the
    view-unavailable sentinel; ``response`` then carries the marker.
    """
    responded: bool
    response: str
    attachments: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "responded": self.responded,
            "response": self.response,
            "attachments": list(self.attachments),
        }


@dataclass
class PendingRequest:
    """An in-flight ask_user request waiting for a human."""
    id: str
    question: str
    title: str
    created_at: int = field(default_factory=now_ms)
    agent_name: str | None = None
    attachments: list[AttachmentInfo] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "question": self.question,
            "title": self.title,
            "createdAt": self.created_at,
            "attachments": [a.to_dict() for a in self.attachments],
        }
        if self.agent_name:
            d["agentName"] = self.agent_name
        return d


# ── History records ──


@dataclass
class RequiredRevision:
    """A reviewer comment attached to part of a plan."""
    revised_part: str
    revisor_instructions: str

    def to_dict(self) -> dict[str, str]:
        return {
            "revisedPart": self.revised_part,
            "revisorInstructions": self.revisor_instructions,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RequiredRevision:
        return cls(
            revised_part=str(data.get("revisedPart", "")),
            revisor_instructions=str(data.get("revisorInstructions", "")),
        )


@dataclass
class StoredInteraction:
    """Base history record."""
    id: str
    type: InteractionType
    timestamp: int = field(default_factory=now_ms)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "type": self.type.value, "timestamp": self.timestamp}


@dataclass
class AskUserInteraction(StoredInteraction):
    type: InteractionType = InteractionType.ASK_USER
    question: str = ""
    title: str = ""
    response: str = ""
    attachments: list[str] = field(default_factory=list)
    agent_name: str | None = None
    status: AskUserStatus = AskUserStatus.COMPLETED

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d.update({
            "question": self.question,
            "title": self.title,
            "response": self.response,
            "attachments": list(self.attachments),
            "status": self.status.value,
        })
        if self.agent_name:
            d["agentName"] = self.agent_name
        return d


@dataclass
class PlanReviewInteraction(StoredInteraction):
    type: InteractionType = InteractionType.PLAN_REVIEW
    plan: str = ""
    title: str = ""
    mode: PlanReviewMode = PlanReviewMode.REVIEW
    required_revisions: list[RequiredRevision] = field(default_factory=list)
    status: PlanReviewStatus = PlanReviewStatus.PENDING
    chat_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d.update({
            "plan": self.plan,
            "title": self.title,
            "mode": self.mode.value,
            "requiredRevisions": [r.to_dict() for r in self.required_revisions],
            "status": self.status.value,
        })
        if self.chat_id:
            d["chatId"] = self.chat_id
        return d


def interaction_from_dict(data: dict[str, Any]) -> StoredInteraction:
    """Parse a persisted history record. Raises ValueError on bad shape."""
    if not isinstance(data, dict):
        raise ValueError(f"History record is not an object: {data!r}")
    interaction_id = data.get("id")
    if not isinstance(interaction_id, str) or not interaction_id:
        raise ValueError("History record has no id")
    kind = InteractionType(data.get("type"))
    timestamp = int(data.get("timestamp") or 0)
    if kind is InteractionType.ASK_USER:
        return AskUserInteraction(
            id=interaction_id,
            timestamp=timestamp,
            question=str(data.get("question", "")),
            title=str(data.get("title", "")),
            response=str(data.get("response", "")),
            attachments=[str(uri) for uri in data.get("attachments") or []],
            agent_name=data.get("agentName"),
            status=AskUserStatus(data.get("status", AskUserStatus.COMPLETED.value)),
        )
    return PlanReviewInteraction(
        id=interaction_id,
        timestamp=timestamp,
        plan=str(data.get("plan", "")),
        title=str(data.get("title", "")),
        mode=PlanReviewMode(data.get("mode", PlanReviewMode.REVIEW.value)),
        required_revisions=[
            RequiredRevision.from_dict(r) for r in data.get("requiredRevisions") or []
        ],
        status=PlanReviewStatus(data.get("status", PlanReviewStatus.PENDING.value)),
        chat_id=data.get("chatId"),
    )


@dataclass
class PlanReviewToolResult:
    """What plan_review / walkthrough_review hand back to the agent."""
    status: str
    required_revisions: list[RequiredRevision] = field(default_factory=list)
    review_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "requiredRevisions": [r.to_dict() for r in self.required_revisions],
            "reviewId": self.review_id,
        }


# ── Task lists ──


@dataclass
class Task:
    id: str
    title: str
    description: str | None = None
    status: TaskStatus = TaskStatus.PENDING

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"id": self.id, "title": self.title, "status": self.status.value}
        if self.description:
            d["description"] = self.description
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Task:
        return cls(
            id=str(data["id"]),
            title=str(data.get("title", "")),
            description=data.get("description"),
            status=TaskStatus(data.get("status", TaskStatus.PENDING.value)),
        )


@dataclass
class TaskComment:
    """Reviewer feedback on a task, drained by the agent's next read."""
    id: str
    task_id: str
    revisor_instructions: str
    revised_part: str = ""
    status: CommentStatus = CommentStatus.PENDING
    created_at: int = field(default_factory=now_ms)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "taskId": self.task_id,
            "revisedPart": self.revised_part,
            "revisorInstructions": self.revisor_instructions,
            "status": self.status.value,
            "createdAt": self.created_at,
        }

    def to_result(self) -> dict[str, Any]:
        """The agent-facing view: no delivery bookkeeping."""
        return {
            "id": self.id,
            "taskId": self.task_id,
            "revisedPart": self.revised_part,
            "revisorInstructions": self.revisor_instructions,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskComment:
        return cls(
            id=str(data["id"]),
            task_id=str(data.get("taskId", "")),
            revisor_instructions=str(data.get("revisorInstructions", "")),
            revised_part=str(data.get("revisedPart", "")),
            status=CommentStatus(data.get("status", CommentStatus.PENDING.value)),
            created_at=int(data.get("createdAt") or 0),
        )


@dataclass
class TaskListSession:
    id: str
    title: str
    description: str | None = None
    closed: bool = False
    tasks: list[Task] = field(default_factory=list)
    comments: list[TaskComment] = field(default_factory=list)
    created_at: int = field(default_factory=now_ms)

    def find_task(self, task_id: str) -> Task | None:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def comments_for(self, task_id: str) -> list[TaskComment]:
        return [c for c in self.comments if c.task_id == task_id]

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "closed": self.closed,
            "tasks": [t.to_dict() for t in self.tasks],
            "comments": [c.to_dict() for c in self.comments],
            "createdAt": self.created_at,
        }
        if self.description:
            d["description"] = self.description
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskListSession:
        return cls(
            id=str(data["id"]),
            title=str(data.get("title", "")),
            description=data.get("description"),
            closed=bool(data.get("closed", False)),
            tasks=[Task.from_dict(t) for t in data.get("tasks") or []],
            comments=[TaskComment.from_dict(c) for c in data.get("comments") or []],
            created_at=int(data.get("createdAt") or 0),
        )
