"""Tool descriptions and result content shared by both MCP front ends."""
from __future__ import annotations

import base64
import json
import logging
from typing import Any

from mcp import types

from ..attachments import get_image_mime_type, uri_to_path, validate_image_magic_number

logger = logging.getLogger(__name__)

SERVER_NAME = "seamless-agent"

INSTRUCTIONS = (
    "Tools for pausing to ask the human in the loop. Use ask_user before "
    "irreversible actions, plan_review before executing a multi-step plan, "
    "walkthrough_review to walk the user through finished work, and the "
    "task list tools to report progress the user can comment on."
)

ASK_USER = (
    "Ask the user to confirm an action or decision. Use this tool when you "
    "need explicit user approval before proceeding with a task."
)
PLAN_REVIEW = "Present a plan to the user for approval (review mode)."
WALKTHROUGH_REVIEW = (
    "Present content as a walkthrough (step-by-step guide) in a dedicated "
    "panel with comment support."
)
CREATE_TASK_LIST = (
    "Create a task list the user can follow and comment on. Returns the "
    "listId used by the other task list tools."
)
GET_NEXT_TASK = (
    "Get the next task to work on (in-progress first, then pending) plus "
    "any reviewer comments left since the last call."
)
UPDATE_TASK_STATUS = (
    "Set a task to in-progress, completed or blocked. The list closes "
    "automatically once no task is pending or in progress."
)
CLOSE_TASK_LIST = "Close a task list and return its summary."

MAX_INLINE_IMAGE_BYTES = 10 * 1024 * 1024


def json_text(payload: Any) -> types.TextContent:
    return types.TextContent(type="text", text=json.dumps(payload))


def ask_user_content(result: dict[str, Any]) -> list[types.TextContent | types.ImageContent]:
    """Text result first, then every attached image whose bytes match its type."""
    content: list[types.TextContent | types.ImageContent] = [json_text(result)]
    for uri in result.get("attachments") or []:
        image = _image_content(uri)
        if image is not None:
            content.append(image)
    return content


def _image_content(uri: str) -> types.ImageContent | None:
    path = uri_to_path(uri)
    mime_type = get_image_mime_type(path)
    if not mime_type.startswith("image/"):
        return None
    try:
        if path.stat().st_size > MAX_INLINE_IMAGE_BYTES:
            logger.info("Attachment too large to inline: %s", path.name)
            return None
        data = path.read_bytes()
    except OSError as exc:
        logger.warning("Failed to read image attachment %s: %s", path, exc)
        return None
    if not validate_image_magic_number(data, mime_type):
        logger.warning("Attachment %s does not look like %s, skipping", path.name, mime_type)
        return None
    return types.ImageContent(
        type="image",
        data=base64.b64encode(data).decode("ascii"),
        mimeType=mime_type,
    )
