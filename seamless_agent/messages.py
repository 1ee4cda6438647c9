"""Messages exchanged with the console UI.

Each message is a dataclass tagged by its ``type`` field. Backend to
UI messages travel over the SSE stream; UI to backend messages arrive
on ``POST /ui/messages``. On the wire, field names are camelCase.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field, fields
from typing import Any


@dataclass
class UIMessage:
    """Base message."""
    type: str = ""


# ── Backend -> UI ──


@dataclass
class ShowQuestion(UIMessage):
    type: str = "showQuestion"
    request_id: str = ""
    question: str = ""
    title: str = ""
    agent_name: str | None = None
    attachments: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class ShowList(UIMessage):
    type: str = "showList"
    requests: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class ShowHome(UIMessage):
    type: str = "showHome"
    pending_requests: list[dict[str, Any]] = field(default_factory=list)
    pending_plan_reviews: list[dict[str, Any]] = field(default_factory=list)
    history_interactions: list[dict[str, Any]] = field(default_factory=list)
    task_lists: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class Clear(UIMessage):
    type: str = "clear"


@dataclass
class UpdateAttachments(UIMessage):
    type: str = "updateAttachments"
    request_id: str = ""
    attachments: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class ImageSaved(UIMessage):
    type: str = "imageSaved"
    request_id: str = ""
    attachment: dict[str, Any] = field(default_factory=dict)


@dataclass
class FileSearchResults(UIMessage):
    type: str = "fileSearchResults"
    files: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class ShowInteractionDetail(UIMessage):
    type: str = "showInteractionDetail"
    interaction: dict[str, Any] = field(default_factory=dict)


@dataclass
class Badge(UIMessage):
    type: str = "badge"
    count: int = 0


@dataclass
class Notify(UIMessage):
    type: str = "notify"
    message: str = ""


@dataclass
class ShowPlanReview(UIMessage):
    type: str = "showPlanReview"
    interaction_id: str = ""
    panel_id: int = 0
    plan: str = ""
    title: str = ""
    mode: str = "review"
    read_only: bool = False
    status: str = "pending"
    comments: list[dict[str, str]] = field(default_factory=list)


@dataclass
class UpdateComments(UIMessage):
    type: str = "updateComments"
    interaction_id: str = ""
    comments: list[dict[str, str]] = field(default_factory=list)


@dataclass
class ClosePlanReview(UIMessage):
    type: str = "closePlanReview"
    interaction_id: str = ""


@dataclass
class ShowTaskList(UIMessage):
    type: str = "showTaskList"
    list_id: str = ""
    title: str = ""
    closed: bool = False
    tasks: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class UpdateTasks(UIMessage):
    type: str = "updateTasks"
    list_id: str = ""
    closed: bool = False
    tasks: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class ListClosed(UIMessage):
    type: str = "listClosed"
    list_id: str = ""


# ── UI -> backend ──


@dataclass
class Submit(UIMessage):
    type: str = "submit"
    request_id: str = ""
    response: str = ""
    attachments: list[dict[str, Any]] | None = None


@dataclass
class Cancel(UIMessage):
    type: str = "cancel"
    request_id: str = ""


@dataclass
class SelectRequest(UIMessage):
    type: str = "selectRequest"
    request_id: str = ""


@dataclass
class BackToList(UIMessage):
    type: str = "backToList"


@dataclass
class BackToHome(UIMessage):
    type: str = "backToHome"


@dataclass
class ClearHistory(UIMessage):
    type: str = "clearHistory"


@dataclass
class RemoveAttachment(UIMessage):
    type: str = "removeAttachment"
    request_id: str = ""
    attachment_id: str = ""


@dataclass
class AddFileReference(UIMessage):
    type: str = "addFileReference"
    request_id: str = ""
    file: dict[str, Any] = field(default_factory=dict)


@dataclass
class SaveImage(UIMessage):
    type: str = "saveImage"
    request_id: str = ""
    data: str = ""
    mime_type: str = ""


@dataclass
class SearchFiles(UIMessage):
    type: str = "searchFiles"
    query: str = ""


@dataclass
class SelectInteraction(UIMessage):
    type: str = "selectInteraction"
    interaction_id: str = ""


@dataclass
class DeleteInteraction(UIMessage):
    type: str = "deleteInteraction"
    interaction_id: str = ""


@dataclass
class OpenPlanReviewPanel(UIMessage):
    type: str = "openPlanReviewPanel"
    interaction_id: str = ""


@dataclass
class PlanReviewAction(UIMessage):
    """approve / reject / acknowledge / close from a review panel.

    ``action`` is kept as a raw string so that values from a newer UI
    reach the status mapping instead of failing to parse.
    """
    type: str = "planReviewAction"
    interaction_id: str = ""
    action: str = ""
    comments: list[dict[str, str]] | None = None
    panel_id: int | None = None


@dataclass
class AddPlanComment(UIMessage):
    type: str = "addPlanComment"
    interaction_id: str = ""
    revised_part: str = ""
    revisor_instructions: str = ""


@dataclass
class EditPlanComment(UIMessage):
    type: str = "editPlanComment"
    interaction_id: str = ""
    index: int = 0
    revisor_instructions: str = ""


@dataclass
class RemovePlanComment(UIMessage):
    type: str = "removePlanComment"
    interaction_id: str = ""
    index: int = 0


@dataclass
class AddTaskComment(UIMessage):
    type: str = "addTaskComment"
    list_id: str = ""
    task_id: str = ""
    revised_part: str = ""
    revisor_instructions: str = ""
    reopened: bool = False


@dataclass
class RemoveTaskComment(UIMessage):
    type: str = "removeTaskComment"
    list_id: str = ""
    task_id: str = ""
    comment_id: str = ""


@dataclass
class OpenTaskList(UIMessage):
    type: str = "openTaskList"
    list_id: str = ""


@dataclass
class ViewVisibility(UIMessage):
    type: str = "viewVisibility"
    visible: bool = True


_INBOUND: tuple[type[UIMessage], ...] = (
    Submit,
    Cancel,
    SelectRequest,
    BackToList,
    BackToHome,
    ClearHistory,
    RemoveAttachment,
    AddFileReference,
    SaveImage,
    SearchFiles,
    SelectInteraction,
    DeleteInteraction,
    OpenPlanReviewPanel,
    PlanReviewAction,
    AddPlanComment,
    EditPlanComment,
    RemovePlanComment,
    AddTaskComment,
    RemoveTaskComment,
    OpenTaskList,
    ViewVisibility,
)

_OUTBOUND: tuple[type[UIMessage], ...] = (
    ShowQuestion,
    ShowList,
    ShowHome,
    Clear,
    UpdateAttachments,
    ImageSaved,
    FileSearchResults,
    ShowInteractionDetail,
    Badge,
    Notify,
    ShowPlanReview,
    UpdateComments,
    ClosePlanReview,
    ShowTaskList,
    UpdateTasks,
    ListClosed,
)

INBOUND_MESSAGES: dict[str, type[UIMessage]] = {cls().type: cls for cls in _INBOUND}
OUTBOUND_MESSAGES: dict[str, type[UIMessage]] = {cls().type: cls for cls in _OUTBOUND}

# The older webview sent a separate message for clearing chat history.
INBOUND_MESSAGES["clearChatHistory"] = ClearHistory

_CAMEL_RE = re.compile(r"_([a-z])")
_SNAKE_RE = re.compile(r"([A-Z])")


def _camel(name: str) -> str:
    return _CAMEL_RE.sub(lambda m: m.group(1).upper(), name)


def _snake(name: str) -> str:
    return _SNAKE_RE.sub(lambda m: "_" + m.group(1).lower(), name)


def message_to_dict(message: UIMessage) -> dict[str, Any]:
    """Convert a message to its camelCase wire form, dropping None fields."""
    d: dict[str, Any] = {}
    for f in fields(message):
        val = getattr(message, f.name)
        if val is not None:
            d[_camel(f.name)] = val
    return d


def _from_dict(registry: dict[str, type[UIMessage]], data: dict[str, Any]) -> UIMessage:
    if not isinstance(data, dict):
        raise ValueError("UI message must be a JSON object")
    message_type = data.get("type")
    cls = registry.get(message_type) if isinstance(message_type, str) else None
    if cls is None:
        raise ValueError(f"Unknown UI message type: {message_type!r}")
    valid_fields = {f.name for f in fields(cls)} - {"type"}
    kwargs = {}
    for key, value in data.items():
        name = _snake(key)
        if name in valid_fields:
            kwargs[name] = value
    return cls(**kwargs)


def dict_to_message(data: dict[str, Any]) -> UIMessage:
    """Parse a message posted by the UI. Raises ValueError for unknown types."""
    return _from_dict(INBOUND_MESSAGES, data)


def dict_to_outbound(data: dict[str, Any]) -> UIMessage:
    """Parse a message received from the backend (used by console clients)."""
    return _from_dict(OUTBOUND_MESSAGES, data)
