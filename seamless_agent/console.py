"""Fan-out of UI messages to connected console clients.

Every connected client (the VS Code webview bridge, the Textual
console) owns one bounded queue. Publishing never blocks: a full queue
drops the message with a warning, and clients recover on the next full
state push since every view message carries the complete state.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from .messages import UIMessage, message_to_dict

logger = logging.getLogger(__name__)

ConnectListener = Callable[[], None]


class ConsoleChannel:
    """Broadcasts UI messages and tracks whether anyone is listening."""

    def __init__(
        self,
        *,
        queue_size: int = 5000,
        activate: Callable[[], Any] | None = None,
    ) -> None:
        self._queue_size = queue_size
        self._queues: list[asyncio.Queue[dict[str, Any]]] = []
        self._activate = activate
        self._connected = asyncio.Event()
        self._connect_listeners: list[ConnectListener] = []
        self.visible = True

    @property
    def is_available(self) -> bool:
        return bool(self._queues)

    @property
    def subscriber_count(self) -> int:
        return len(self._queues)

    def add_connect_listener(self, listener: ConnectListener) -> None:
        self._connect_listeners.append(listener)

    def subscribe(self) -> asyncio.Queue[dict[str, Any]]:
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=self._queue_size)
        self._queues.append(queue)
        self._connected.set()
        logger.info("Console client connected active_clients=%d", len(self._queues))
        for listener in self._connect_listeners:
            try:
                listener()
            except Exception:
                logger.exception("Console connect listener failed")
        return queue

    def unsubscribe(self, queue: asyncio.Queue[dict[str, Any]]) -> None:
        try:
            self._queues.remove(queue)
        except ValueError:
            return
        if not self._queues:
            self._connected.clear()
        logger.info("Console client disconnected active_clients=%d", len(self._queues))

    def publish(self, message: UIMessage) -> None:
        payload = message_to_dict(message)
        msg = {"event": "message", "data": payload}
        for queue in self._queues:
            try:
                queue.put_nowait(msg)
            except asyncio.QueueFull:
                logger.warning("Console queue full, dropping %s", message.type)

    async def ensure_available(self, timeout: float) -> bool:
        """Return True once a client is connected, waiting at most *timeout*.

        Calls the activation hook first so a host can open the view.
        """
        if self.is_available:
            return True
        if self._activate is not None:
            try:
                result = self._activate()
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("Console activation hook failed")
        try:
            await asyncio.wait_for(self._connected.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return self.is_available
        return self.is_available
