"""Pending-request broker.

Correlates in-flight ask_user requests with the human's eventual answer.
Each request id maps to exactly one asyncio future; the entry is popped
before the future is settled, so a second resolve or cancel for the
same id is a silent no-op. All state lives on the event loop and is
never touched from other threads.

Display state is recomputed from scratch on every transition:

    create  -> QUESTION if exactly one request is pending, else LIST
    settle  -> LIST if any requests remain, else HOME
    select / back_to_list / back_to_home override until the next transition
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from . import strings
from .attachments import AttachmentStore
from .console import ConsoleChannel
from .errors import AttachmentError
from .file_search import WorkspaceFileSearch
from .messages import (
    AddFileReference,
    BackToHome,
    BackToList,
    Badge,
    Cancel,
    ClearHistory,
    DeleteInteraction,
    FileSearchResults,
    ImageSaved,
    Notify,
    RemoveAttachment,
    SaveImage,
    SearchFiles,
    SelectInteraction,
    SelectRequest,
    ShowHome,
    ShowInteractionDetail,
    ShowList,
    ShowQuestion,
    Submit,
    UIMessage,
    UpdateAttachments,
    ViewVisibility,
)
from .models import (
    AskUserInteraction,
    AskUserStatus,
    AttachmentInfo,
    DisplayMode,
    PendingRequest,
    UserResponseResult,
    new_id,
)
from .storage.history import InteractionHistoryLog
from .storage.task_lists import TaskListStore

logger = logging.getLogger(__name__)


class PendingRequestBroker:
    """Registry of outstanding human-input requests."""

    def __init__(
        self,
        channel: ConsoleChannel,
        history: InteractionHistoryLog,
        attachments: AttachmentStore,
        *,
        view_init_timeout: float = 0.5,
        file_search: WorkspaceFileSearch | None = None,
        task_lists: TaskListStore | None = None,
    ) -> None:
        self._channel = channel
        self._history = history
        self._attachments = attachments
        self._view_init_timeout = view_init_timeout
        self._file_search = file_search
        self._task_lists = task_lists
        self._requests: dict[str, PendingRequest] = {}
        self._futures: dict[str, asyncio.Future[UserResponseResult]] = {}
        self._mode = DisplayMode.HOME
        self._selected_id: str | None = None
        self._started = False
        self._stopped = False

    # ── Lifecycle ──

    def start(self) -> None:
        if self._started:
            raise RuntimeError("PendingRequestBroker already started")
        self._started = True
        self._channel.add_connect_listener(self.refresh)
        logger.info("Pending-request broker started")

    def shutdown(self, reason: str = strings.SHUTTING_DOWN) -> None:
        """Cancel everything still waiting. Idempotent."""
        if self._stopped:
            return
        self._stopped = True
        cancelled = self.cancel_all(reason)
        logger.info("Pending-request broker stopped cancelled=%d", cancelled)

    # ── State ──

    @property
    def display_mode(self) -> DisplayMode:
        return self._mode

    @property
    def selected_request_id(self) -> str | None:
        return self._selected_id

    @property
    def pending_count(self) -> int:
        return len(self._requests)

    def list(self) -> list[PendingRequest]:
        """Snapshot of pending requests in creation order."""
        return list(self._requests.values())

    def get(self, request_id: str) -> PendingRequest | None:
        return self._requests.get(request_id)

    # ── Core operations ──

    async def create_request(
        self,
        question: str,
        title: str | None = None,
        agent_name: str | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> UserResponseResult:
        """Register a request and wait for the human.

        Returns ``responded=False`` with the VIEW_UNAVAILABLE sentinel,
        without registering anything, if no console client connects in
        time. Setting *cancel_event* (or cancelling the awaiting task)
        cancels the request with the agent-stopped reason.
        """
        if self._stopped:
            return UserResponseResult(False, strings.SHUTTING_DOWN)
        if not await self._channel.ensure_available(self._view_init_timeout):
            logger.warning("Console unavailable, ask_user cannot be shown")
            return UserResponseResult(False, strings.VIEW_UNAVAILABLE)

        request = PendingRequest(
            id=new_id("req"),
            question=question,
            title=title or strings.CONFIRMATION_REQUIRED,
            agent_name=agent_name,
        )
        future: asyncio.Future[UserResponseResult] = asyncio.get_running_loop().create_future()
        self._requests[request.id] = request
        self._futures[request.id] = future
        logger.info(
            "Request created id=%s pending=%d title=%r",
            request.id[:12], len(self._requests), request.title,
        )

        if len(self._requests) == 1:
            self._mode = DisplayMode.QUESTION
            self._selected_id = request.id
        else:
            self._mode = DisplayMode.LIST
            self._selected_id = None
        self.refresh()
        if not self._channel.visible:
            self._channel.publish(Notify(message=strings.NEW_INPUT_REQUEST.format(title=request.title)))

        return await wait_for_settlement(
            future,
            cancel_event,
            lambda: self.cancel(request.id, strings.AGENT_STOPPED),
        )

    def resolve(
        self,
        request_id: str,
        response: str,
        attachments: list[AttachmentInfo] | None = None,
    ) -> None:
        """Settle a request with the human's answer. Unknown ids are ignored."""
        request = self._requests.pop(request_id, None)
        future = self._futures.pop(request_id, None)
        if request is None:
            logger.debug("Resolve ignored for unknown request id=%s", request_id[:12])
            return
        final_attachments = attachments if attachments is not None else request.attachments
        self._history.record_ask_user(AskUserInteraction(
            id=new_id("ask"),
            question=request.question,
            title=request.title,
            response=response,
            attachments=[a.uri for a in final_attachments],
            agent_name=request.agent_name,
            status=AskUserStatus.COMPLETED,
        ))
        # Clean up what this request saved, not what the console submitted.
        self._attachments.schedule_cleanup(request.attachments)
        result = UserResponseResult(True, response, [a.stripped() for a in final_attachments])
        if future is not None and not future.done():
            future.set_result(result)
        logger.info("Request resolved id=%s pending=%d", request_id[:12], len(self._requests))
        self._after_settle()

    def cancel(self, request_id: str, reason: str = strings.CANCELLED) -> bool:
        """Settle a request with ``responded=False``. Returns whether it existed."""
        request = self._requests.pop(request_id, None)
        future = self._futures.pop(request_id, None)
        if request is None:
            return False
        self._history.record_ask_user(AskUserInteraction(
            id=new_id("ask"),
            question=request.question,
            title=request.title,
            response=reason,
            attachments=[],
            agent_name=request.agent_name,
            status=AskUserStatus.CANCELLED,
        ))
        self._attachments.schedule_cleanup(request.attachments)
        if future is not None and not future.done():
            future.set_result(UserResponseResult(False, reason))
        logger.info(
            "Request cancelled id=%s reason=%r pending=%d",
            request_id[:12], reason, len(self._requests),
        )
        self._after_settle()
        return True

    def cancel_all(self, reason: str = strings.CANCELLED) -> int:
        count = 0
        for request_id in list(self._requests):
            if self.cancel(request_id, reason):
                count += 1
        return count

    def add_attachment(self, request_id: str, attachment: AttachmentInfo) -> bool:
        request = self._requests.get(request_id)
        if request is None:
            return False
        request.attachments.append(attachment)
        self._publish_attachments(request)
        return True

    def remove_attachment(self, request_id: str, attachment_id: str) -> bool:
        request = self._requests.get(request_id)
        if request is None:
            return False
        removed = [a for a in request.attachments if a.id == attachment_id]
        if not removed:
            return False
        request.attachments = [a for a in request.attachments if a.id != attachment_id]
        # Detached temp files follow the same delayed cleanup as resolved ones.
        self._attachments.schedule_cleanup(removed)
        self._publish_attachments(request)
        return True

    # ── Navigation ──

    def select(self, request_id: str) -> bool:
        if request_id not in self._requests:
            return False
        self._mode = DisplayMode.QUESTION
        self._selected_id = request_id
        self.refresh()
        return True

    def back_to_list(self) -> None:
        self._mode = DisplayMode.LIST if self._requests else DisplayMode.HOME
        self._selected_id = None
        self.refresh()

    def back_to_home(self) -> None:
        self._mode = DisplayMode.HOME
        self._selected_id = None
        self.refresh()

    def _after_settle(self) -> None:
        self._selected_id = None
        self._mode = DisplayMode.LIST if self._requests else DisplayMode.HOME
        self.refresh()

    def refresh(self) -> None:
        """Push the full current view and badge to every console client."""
        if self._mode is DisplayMode.QUESTION:
            request = self._requests.get(self._selected_id or "")
            if request is None:
                self._mode = DisplayMode.LIST if self._requests else DisplayMode.HOME
                self._selected_id = None
        if self._mode is DisplayMode.QUESTION:
            self._channel.publish(ShowQuestion(
                request_id=request.id,
                question=request.question,
                title=request.title,
                agent_name=request.agent_name,
                attachments=[a.to_dict() for a in request.attachments],
            ))
        elif self._mode is DisplayMode.LIST and self._requests:
            self._channel.publish(ShowList(requests=[r.to_dict() for r in self._requests.values()]))
        else:
            self._mode = DisplayMode.HOME
            self._channel.publish(self._home_message())
        self._channel.publish(Badge(count=self.badge_count()))

    def badge_count(self) -> int:
        return len(self._requests) + len(self._history.pending_plan_reviews())

    def _home_message(self) -> ShowHome:
        task_lists = self._task_lists.open_sessions() if self._task_lists else []
        return ShowHome(
            pending_requests=[r.to_dict() for r in self._requests.values()],
            pending_plan_reviews=[r.to_dict() for r in self._history.pending_plan_reviews()],
            history_interactions=[r.to_dict() for r in self._history.completed()],
            task_lists=[s.to_dict() for s in task_lists],
        )

    def _publish_attachments(self, request: PendingRequest) -> None:
        self._channel.publish(UpdateAttachments(
            request_id=request.id,
            attachments=[a.to_dict() for a in request.attachments],
        ))

    # ── UI message handling ──

    def handle_message(self, message: UIMessage) -> bool:
        """Apply a console message that concerns pending requests or history.

        Returns False when the message belongs to another component.
        """
        if isinstance(message, Submit):
            attachments = None
            if message.attachments is not None:
                attachments = [AttachmentInfo.from_dict(a) for a in message.attachments]
            self.resolve(message.request_id, message.response, attachments)
        elif isinstance(message, Cancel):
            self.cancel(message.request_id)
        elif isinstance(message, SelectRequest):
            self.select(message.request_id)
        elif isinstance(message, BackToList):
            self.back_to_list()
        elif isinstance(message, BackToHome):
            self.back_to_home()
        elif isinstance(message, ClearHistory):
            self._history.clear()
            self.back_to_home()
        elif isinstance(message, DeleteInteraction):
            self._history.delete(message.interaction_id)
            self.back_to_home()
        elif isinstance(message, SelectInteraction):
            self._show_interaction(message.interaction_id)
        elif isinstance(message, RemoveAttachment):
            self.remove_attachment(message.request_id, message.attachment_id)
        elif isinstance(message, AddFileReference):
            self._add_file_reference(message.request_id, message.file)
        elif isinstance(message, SaveImage):
            self._save_image(message)
        elif isinstance(message, SearchFiles):
            self._search_files(message.query)
        elif isinstance(message, ViewVisibility):
            self._channel.visible = bool(message.visible)
        else:
            return False
        return True

    def _show_interaction(self, interaction_id: str) -> None:
        record = self._history.get(interaction_id)
        if record is not None:
            self._channel.publish(ShowInteractionDetail(interaction=record.to_dict()))

    def _add_file_reference(self, request_id: str, file: dict[str, Any]) -> None:
        if request_id not in self._requests or not file:
            return
        is_folder = bool(file.get("isFolder"))
        attachment = AttachmentInfo(
            id=new_id("folder" if is_folder else "file"),
            name=str(file.get("name", "")),
            uri=str(file.get("uri", "")),
            is_folder=is_folder,
            folder_path=file.get("path") if is_folder else None,
            # Folders added by reference are recursive.
            depth=-1 if is_folder else None,
        )
        self.add_attachment(request_id, attachment)

    def _save_image(self, message: SaveImage) -> None:
        if message.request_id not in self._requests:
            return
        try:
            attachment = self._attachments.save_image(message.data, message.mime_type)
        except AttachmentError as exc:
            logger.warning("Rejected pasted image: %s", exc)
            self._channel.publish(Notify(message=str(exc)))
            return
        except OSError:
            logger.exception("Failed to save pasted image")
            return
        self._channel.publish(ImageSaved(request_id=message.request_id, attachment=attachment.to_dict()))
        self.add_attachment(message.request_id, attachment)

    def _search_files(self, query: str) -> None:
        results: list[dict[str, Any]] = []
        if self._file_search is not None:
            try:
                results = [r.to_dict() for r in self._file_search.search(query)]
            except OSError:
                logger.exception("File search failed")
        self._channel.publish(FileSearchResults(files=results))


async def wait_for_settlement(
    future: asyncio.Future,
    cancel_event: asyncio.Event | None,
    on_cancel: Callable[[], Any],
) -> Any:
    """Await a one-shot future, invoking *on_cancel* if the caller gives up first.

    *on_cancel* must settle *future* (or make it irrelevant); it is also
    invoked when the awaiting task itself is cancelled, after which the
    CancelledError propagates.
    """
    if cancel_event is None:
        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            on_cancel()
            raise

    cancel_waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        done, _ = await asyncio.wait({future, cancel_waiter}, return_when=asyncio.FIRST_COMPLETED)
        if future not in done:
            on_cancel()
        return await future
    except asyncio.CancelledError:
        on_cancel()
        raise
    finally:
        cancel_waiter.cancel()
