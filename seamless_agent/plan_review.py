"""Plan and walkthrough review lifecycle.

State Diagram:

    PENDING ──┬──> APPROVED
              ├──> RECREATE_WITH_CHANGES
              ├──> ACKNOWLEDGED
              ├──> CLOSED     (panel closed, agent cancelled, or show failed)
              └──> CANCELLED  (legacy records only)

Every terminal state is final. A PENDING record with a live waiter can
be reopened any number of times: the panel is rebound to the existing
future and no second waiter is ever created.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Protocol

from . import strings
from .broker import wait_for_settlement
from .console import ConsoleChannel
from .messages import (
    AddPlanComment,
    ClosePlanReview,
    EditPlanComment,
    Notify,
    OpenPlanReviewPanel,
    PlanReviewAction,
    RemovePlanComment,
    ShowPlanReview,
    UIMessage,
    UpdateComments,
)
from .models import (
    PlanReviewInteraction,
    PlanReviewMode,
    PlanReviewStatus,
    PlanReviewToolResult,
    RequiredRevision,
)
from .storage.history import InteractionHistoryLog

logger = logging.getLogger(__name__)

VALID_TRANSITIONS: dict[PlanReviewStatus, set[PlanReviewStatus]] = {
    PlanReviewStatus.PENDING: {
        PlanReviewStatus.APPROVED,
        PlanReviewStatus.RECREATE_WITH_CHANGES,
        PlanReviewStatus.ACKNOWLEDGED,
        PlanReviewStatus.CLOSED,
        PlanReviewStatus.CANCELLED,
    },
    PlanReviewStatus.APPROVED: set(),
    PlanReviewStatus.RECREATE_WITH_CHANGES: set(),
    PlanReviewStatus.ACKNOWLEDGED: set(),
    PlanReviewStatus.CLOSED: set(),
    PlanReviewStatus.CANCELLED: set(),
}

# Actions a reviewer can take that are recorded as-is on the interaction.
RECORDED_ACTIONS = frozenset({"approved", "recreateWithChanges", "acknowledged"})

# Panel buttons send verbs; older panels send the status names directly.
_ACTION_ALIASES = {
    "approve": "approved",
    "reject": "recreateWithChanges",
    "acknowledge": "acknowledged",
    "close": "closed",
}


def validate_transition(current: PlanReviewStatus, target: PlanReviewStatus) -> None:
    """Validate a state transition. Raises ValueError if invalid."""
    allowed = VALID_TRANSITIONS.get(current, set())
    if target not in allowed:
        allowed_str = ", ".join(s.value for s in allowed) or "none (terminal)"
        raise ValueError(
            f"Invalid plan review transition: {current.value} -> {target.value}. "
            f"Allowed from {current.value}: {allowed_str}"
        )


def normalize_action(action: str) -> str:
    return _ACTION_ALIASES.get(action, action)


def record_status_for(action: str) -> PlanReviewStatus:
    """Status stored on the interaction for a reviewer action."""
    action = normalize_action(action)
    if action in RECORDED_ACTIONS:
        return PlanReviewStatus(action)
    return PlanReviewStatus.CLOSED


def tool_status_for(action: str) -> str:
    """Status reported to the agent. Anything unrecognised becomes cancelled."""
    action = normalize_action(action)
    if action in RECORDED_ACTIONS:
        return action
    return PlanReviewStatus.CANCELLED.value


class PanelHost(Protocol):
    """Where review panels are rendered."""

    def show(self, message: ShowPlanReview) -> None: ...

    def close(self, interaction_id: str) -> None: ...

    def update_comments(self, interaction_id: str, comments: list[RequiredRevision]) -> None: ...


class ConsolePanelHost:
    """Renders review panels as messages on the console channel."""

    def __init__(self, channel: ConsoleChannel) -> None:
        self._channel = channel

    def show(self, message: ShowPlanReview) -> None:
        self._channel.publish(message)
        if not self._channel.visible and not message.read_only:
            self._channel.publish(Notify(message=strings.NEW_PLAN_REVIEW.format(title=message.title)))

    def close(self, interaction_id: str) -> None:
        self._channel.publish(ClosePlanReview(interaction_id=interaction_id))

    def update_comments(self, interaction_id: str, comments: list[RequiredRevision]) -> None:
        self._channel.publish(UpdateComments(
            interaction_id=interaction_id,
            comments=[c.to_dict() for c in comments],
        ))


class _Waiter:
    """The one completion handle for a pending review."""

    __slots__ = ("future", "panel_id", "comments")

    def __init__(self, future: asyncio.Future[tuple[str, list[RequiredRevision]]]) -> None:
        self.future = future
        self.panel_id = 0
        self.comments: list[RequiredRevision] = []


class PlanReviewStateMachine:
    """Opens reviews, correlates panel actions and agent cancellation."""

    def __init__(
        self,
        history: InteractionHistoryLog,
        panels: PanelHost,
        *,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self._history = history
        self._panels = panels
        self._on_change = on_change
        self._waiters: dict[str, _Waiter] = {}
        self._open_panels: set[str] = set()
        self._panel_counter = 0

    # ── Lifecycle ──

    def start(self) -> int:
        """Close pending records left by a previous process; nobody awaits them."""
        stale = self._history.pending_plan_reviews()
        for record in stale:
            self._history.update_plan_review(record.id, PlanReviewStatus.CLOSED)
        if stale:
            logger.info("Closed %d stale pending plan review(s)", len(stale))
        return len(stale)

    def shutdown(self) -> None:
        for interaction_id in list(self._waiters):
            self.cancel(interaction_id)

    # ── Queries ──

    def is_waiting(self, interaction_id: str) -> bool:
        return interaction_id in self._waiters

    def is_panel_open(self, interaction_id: str) -> bool:
        return interaction_id in self._open_panels

    def comments(self, interaction_id: str) -> list[RequiredRevision]:
        waiter = self._waiters.get(interaction_id)
        return list(waiter.comments) if waiter else []

    # ── Core operations ──

    async def open(
        self,
        plan: str,
        title: str | None = None,
        mode: PlanReviewMode = PlanReviewMode.REVIEW,
        chat_id: str | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> PlanReviewToolResult:
        """Persist a pending review, show it, and wait for a terminal action."""
        record = self._history.save_plan_review(
            plan=plan,
            title=title or strings.PLAN_REVIEW_TITLE,
            mode=mode,
            chat_id=chat_id,
        )
        future: asyncio.Future[tuple[str, list[RequiredRevision]]] = (
            asyncio.get_running_loop().create_future()
        )
        waiter = _Waiter(future)
        self._waiters[record.id] = waiter
        logger.info("Plan review opened id=%s mode=%s", record.id[:12], mode.value)
        self._changed()

        try:
            self._show(record, waiter)
        except Exception:
            logger.exception("Failed to show plan review id=%s", record.id[:12])
            self._waiters.pop(record.id, None)
            self._transition(record.id, PlanReviewStatus.CLOSED)
            self._changed()
            return PlanReviewToolResult(status=PlanReviewStatus.CANCELLED.value)

        action, revisions = await wait_for_settlement(
            future, cancel_event, lambda: self.cancel(record.id),
        )
        return PlanReviewToolResult(
            status=tool_status_for(action),
            required_revisions=revisions,
            review_id=record.id,
        )

    def reopen(self, interaction_id: str) -> bool:
        """Rebind a panel to a pending review's existing waiter.

        Returns False (and shows the record read-only) when nothing is
        waiting on it any more.
        """
        record = self._history.get(interaction_id)
        if not isinstance(record, PlanReviewInteraction):
            return False
        waiter = self._waiters.get(interaction_id)
        if record.status is not PlanReviewStatus.PENDING or waiter is None:
            if record.status is PlanReviewStatus.PENDING:
                # Pending on disk but no waiter in this process.
                self._transition(interaction_id, PlanReviewStatus.CLOSED)
                self._changed()
            self.show_read_only(interaction_id)
            return False
        try:
            self._show(record, waiter)
        except Exception:
            logger.exception("Failed to reopen plan review id=%s", interaction_id[:12])
            return False
        logger.info("Plan review reopened id=%s panel=%d", interaction_id[:12], waiter.panel_id)
        return True

    def show_read_only(self, interaction_id: str) -> bool:
        record = self._history.get(interaction_id)
        if not isinstance(record, PlanReviewInteraction):
            return False
        self._panels.show(ShowPlanReview(
            interaction_id=record.id,
            plan=record.plan,
            title=record.title,
            mode=record.mode.value,
            read_only=True,
            status=record.status.value,
            comments=[r.to_dict() for r in record.required_revisions],
        ))
        return True

    def resolve(
        self,
        interaction_id: str,
        action: str,
        required_revisions: list[RequiredRevision] | None = None,
        *,
        panel_id: int | None = None,
    ) -> bool:
        """Apply a reviewer action. The record is updated before the waiter settles."""
        waiter = self._waiters.get(interaction_id)
        if waiter is None:
            logger.debug("Plan review action ignored, nothing waiting id=%s", interaction_id[:12])
            return False
        if panel_id is not None and panel_id != waiter.panel_id:
            logger.warning(
                "Ignoring action from stale panel id=%s panel=%s current=%d",
                interaction_id[:12], panel_id, waiter.panel_id,
            )
            return False
        del self._waiters[interaction_id]
        revisions = list(required_revisions) if required_revisions is not None else list(waiter.comments)
        normalized = normalize_action(action)
        self._transition(interaction_id, record_status_for(normalized), revisions)
        self._close_panel(interaction_id)
        if not waiter.future.done():
            waiter.future.set_result((normalized, revisions))
        logger.info("Plan review resolved id=%s action=%s", interaction_id[:12], normalized)
        self._changed()
        return True

    def cancel(self, interaction_id: str) -> bool:
        """Agent-side cancellation: record closed, panel closed, waiter settled."""
        waiter = self._waiters.pop(interaction_id, None)
        if waiter is None:
            return False
        self._transition(interaction_id, PlanReviewStatus.CLOSED)
        self._close_panel(interaction_id)
        if not waiter.future.done():
            waiter.future.set_result((PlanReviewStatus.CANCELLED.value, []))
        logger.info("Plan review cancelled by agent id=%s", interaction_id[:12])
        self._changed()
        return True

    def close_if_open(self, interaction_id: str) -> None:
        self._close_panel(interaction_id)

    # ── Comments ──

    def add_comment(self, interaction_id: str, revised_part: str, revisor_instructions: str) -> bool:
        waiter = self._waiters.get(interaction_id)
        if waiter is None:
            return False
        waiter.comments.append(RequiredRevision(revised_part, revisor_instructions))
        self._panels.update_comments(interaction_id, waiter.comments)
        return True

    def edit_comment(self, interaction_id: str, index: int, revisor_instructions: str) -> bool:
        waiter = self._waiters.get(interaction_id)
        if waiter is None or not 0 <= index < len(waiter.comments):
            return False
        waiter.comments[index].revisor_instructions = revisor_instructions
        self._panels.update_comments(interaction_id, waiter.comments)
        return True

    def remove_comment(self, interaction_id: str, index: int) -> bool:
        waiter = self._waiters.get(interaction_id)
        if waiter is None or not 0 <= index < len(waiter.comments):
            return False
        del waiter.comments[index]
        self._panels.update_comments(interaction_id, waiter.comments)
        return True

    # ── UI message handling ──

    def handle_message(self, message: UIMessage) -> bool:
        if isinstance(message, PlanReviewAction):
            revisions = None
            if message.comments is not None:
                revisions = [RequiredRevision.from_dict(c) for c in message.comments]
            self.resolve(message.interaction_id, message.action, revisions, panel_id=message.panel_id)
        elif isinstance(message, OpenPlanReviewPanel):
            if not self.reopen(message.interaction_id):
                logger.debug("Opened plan review %s read-only", message.interaction_id[:12])
        elif isinstance(message, AddPlanComment):
            self.add_comment(message.interaction_id, message.revised_part, message.revisor_instructions)
        elif isinstance(message, EditPlanComment):
            self.edit_comment(message.interaction_id, int(message.index), message.revisor_instructions)
        elif isinstance(message, RemovePlanComment):
            self.remove_comment(message.interaction_id, int(message.index))
        else:
            return False
        return True

    # ── Internals ──

    def _show(self, record: PlanReviewInteraction, waiter: _Waiter) -> None:
        self._panel_counter += 1
        waiter.panel_id = self._panel_counter
        self._panels.show(ShowPlanReview(
            interaction_id=record.id,
            panel_id=waiter.panel_id,
            plan=record.plan,
            title=record.title,
            mode=record.mode.value,
            read_only=False,
            status=record.status.value,
            comments=[c.to_dict() for c in waiter.comments],
        ))
        self._open_panels.add(record.id)

    def _close_panel(self, interaction_id: str) -> None:
        if interaction_id in self._open_panels:
            self._open_panels.discard(interaction_id)
            try:
                self._panels.close(interaction_id)
            except Exception:
                logger.exception("Failed to close plan review panel id=%s", interaction_id[:12])

    def _transition(
        self,
        interaction_id: str,
        target: PlanReviewStatus,
        revisions: list[RequiredRevision] | None = None,
    ) -> None:
        record = self._history.get(interaction_id)
        if not isinstance(record, PlanReviewInteraction):
            return
        try:
            validate_transition(record.status, target)
        except ValueError:
            logger.warning("Skipping plan review update id=%s", interaction_id[:12], exc_info=True)
            return
        self._history.update_plan_review(interaction_id, target, revisions)

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()
