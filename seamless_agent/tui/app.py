"""Seamless Agent console: a Textual client of the running service.

Renders the messages pushed on ``/events`` and posts the user's
actions to ``/ui/messages``. All state lives in the service; the
console only mirrors the latest full view it was sent.
"""

from __future__ import annotations

import asyncio
import json
import logging

import aiohttp
from textual.app import App, ComposeResult
from textual.containers import Horizontal, Vertical
from textual.widgets import Footer, Header, Static

from ..messages import (
    AddPlanComment,
    AddTaskComment,
    BackToHome,
    Badge,
    Cancel,
    Clear,
    ClosePlanReview,
    ListClosed,
    Notify,
    OpenPlanReviewPanel,
    OpenTaskList,
    PlanReviewAction,
    SelectInteraction,
    SelectRequest,
    ShowHome,
    ShowInteractionDetail,
    ShowList,
    ShowPlanReview,
    ShowQuestion,
    ShowTaskList,
    Submit,
    UIMessage,
    UpdateComments,
    UpdateTasks,
    ViewVisibility,
)
from .client import ConsoleClient
from .widgets import PlanReviewWidget, QuestionWidget, RequestListWidget, TaskListWidget

logger = logging.getLogger(__name__)

RECONNECT_DELAY_SECONDS = 2.0


class ConsoleApp(App):
    """Terminal console for answering agent requests."""

    TITLE = "Seamless Agent"
    SUB_TITLE = "Agent Console"

    CSS = """
    #main {
        width: 1fr;
    }

    #side {
        width: 1fr;
        display: none;
    }

    #side.has-panel {
        display: block;
    }

    #detail {
        height: auto;
        padding: 1 2;
    }
    """

    BINDINGS = [
        ("ctrl+q", "quit", "Quit"),
        ("escape", "home", "Home"),
    ]

    def __init__(self, port: int, token: str, host: str = "127.0.0.1", **kwargs) -> None:
        super().__init__(**kwargs)
        self._port = port
        self._token = token
        self._host = host
        self._client: ConsoleClient | None = None

    def compose(self) -> ComposeResult:
        yield Header()
        with Horizontal():
            yield Vertical(id="main")
            yield Vertical(id="side")
        yield Footer()

    def on_mount(self) -> None:
        self.run_worker(self._consume(), exclusive=True, name="events")

    # ── Backend -> console ──

    async def _consume(self) -> None:
        while True:
            try:
                async with ConsoleClient(self._port, self._token, self._host) as client:
                    self._client = client
                    await client.send(ViewVisibility(visible=True))
                    async for message in client.messages():
                        await self.apply(message)
            except aiohttp.ClientError as exc:
                logger.warning("Console stream failed: %s", exc)
                self.sub_title = "Disconnected, retrying..."
            finally:
                self._client = None
            await asyncio.sleep(RECONNECT_DELAY_SECONDS)

    async def apply(self, message: UIMessage) -> None:
        """Render one backend message."""
        main = self.query_one("#main", Vertical)
        if isinstance(message, ShowQuestion):
            await self._replace(main, QuestionWidget(
                message.request_id, message.title, message.question, message.attachments,
            ))
        elif isinstance(message, ShowList):
            await self._replace(main, RequestListWidget("Pending requests", message.requests))
        elif isinstance(message, ShowHome):
            await self._replace(main, RequestListWidget(
                "Home",
                message.pending_requests,
                message.pending_plan_reviews,
                message.task_lists,
                message.history_interactions,
            ))
        elif isinstance(message, Clear):
            await main.remove_children()
        elif isinstance(message, ShowInteractionDetail):
            detail = json.dumps(message.interaction, indent=2)
            await self._replace(main, Static(detail, id="detail", markup=False))
        elif isinstance(message, ShowPlanReview):
            await self._show_side(PlanReviewWidget(
                message.interaction_id,
                message.panel_id,
                message.title,
                message.plan,
                mode=message.mode,
                read_only=message.read_only,
                status=message.status,
                comments=message.comments,
            ))
        elif isinstance(message, UpdateComments):
            for panel in self.query(PlanReviewWidget):
                if panel.interaction_id == message.interaction_id:
                    panel.set_comments(message.comments)
        elif isinstance(message, ClosePlanReview):
            for panel in self.query(PlanReviewWidget):
                if panel.interaction_id == message.interaction_id:
                    await self._clear_side()
        elif isinstance(message, ShowTaskList):
            await self._show_side(TaskListWidget(
                message.list_id, message.title, message.closed, message.tasks,
            ))
        elif isinstance(message, UpdateTasks):
            for panel in self.query(TaskListWidget):
                if panel.list_id == message.list_id:
                    panel.update_tasks(message.closed, message.tasks)
        elif isinstance(message, ListClosed):
            self.notify("Task list closed")
        elif isinstance(message, Badge):
            self.sub_title = f"{message.count} pending" if message.count else "Agent Console"
        elif isinstance(message, Notify):
            self.notify(message.message)
        else:
            logger.debug("Console ignores %s", message.type)

    async def _replace(self, container: Vertical, widget) -> None:
        await container.remove_children()
        await container.mount(widget)

    async def _show_side(self, widget) -> None:
        side = self.query_one("#side", Vertical)
        side.add_class("has-panel")
        await self._replace(side, widget)

    async def _clear_side(self) -> None:
        side = self.query_one("#side", Vertical)
        await side.remove_children()
        side.remove_class("has-panel")

    # ── Console -> backend ──

    async def _send(self, message: UIMessage) -> None:
        if self._client is None:
            self.notify("Not connected", severity="error")
            return
        try:
            await self._client.send(message)
        except aiohttp.ClientError as exc:
            logger.warning("Failed to send %s: %s", message.type, exc)
            self.notify(f"Send failed: {exc}", severity="error")

    async def on_question_widget_answered(self, event: QuestionWidget.Answered) -> None:
        await self._send(Submit(request_id=event.request_id, response=event.answer))

    async def on_question_widget_dismissed(self, event: QuestionWidget.Dismissed) -> None:
        await self._send(Cancel(request_id=event.request_id))

    async def on_request_list_widget_picked(self, event: RequestListWidget.Picked) -> None:
        if event.kind == "request":
            await self._send(SelectRequest(request_id=event.item_id))
        elif event.kind == "review":
            await self._send(OpenPlanReviewPanel(interaction_id=event.item_id))
        elif event.kind == "tasks":
            await self._send(OpenTaskList(list_id=event.item_id))
        elif event.kind == "history":
            await self._send(SelectInteraction(interaction_id=event.item_id))

    async def on_plan_review_widget_decided(self, event: PlanReviewWidget.Decided) -> None:
        await self._send(PlanReviewAction(
            interaction_id=event.interaction_id,
            action=event.action,
            comments=event.comments,
            panel_id=event.panel_id,
        ))
        await self._clear_side()

    async def on_plan_review_widget_comment_added(self, event: PlanReviewWidget.CommentAdded) -> None:
        await self._send(AddPlanComment(
            interaction_id=event.interaction_id,
            revised_part=event.revised_part,
            revisor_instructions=event.revisor_instructions,
        ))

    async def on_task_list_widget_commented(self, event: TaskListWidget.Commented) -> None:
        await self._send(AddTaskComment(
            list_id=event.list_id,
            task_id=event.task_id,
            revisor_instructions=event.instructions,
            reopened=event.reopened,
        ))

    async def action_home(self) -> None:
        await self._clear_side()
        await self._send(BackToHome())
