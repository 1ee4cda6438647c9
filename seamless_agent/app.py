"""Service host: owns the stores and wires every component together.

Startup order: stores, console channel, broker, plan reviews, task
lists, bridge, optional streamable MCP server, MCP registration.
Shutdown runs in reverse, cancelling every pending request first so no
agent is left waiting on a dead process.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path

from .attachments import AttachmentStore
from .auth import load_or_create_token
from .broker import PendingRequestBroker
from .config import SeamlessAgentConfig
from .console import ConsoleChannel
from .fallback import TerminalPrompt
from .file_search import WorkspaceFileSearch, get_ignored_paths
from .messages import UIMessage
from .mcp_server.streamable import StreamableMcpServer
from .plan_review import ConsolePanelHost, PlanReviewStateMachine
from .registration import McpRegistration, stdio_descriptor, url_descriptor
from .server import BridgeServer
from .storage import Stores, open_stores
from .storage.durable_write import atomic_write_text
from .task_list import TaskListManager
from .tools import AgentTools

logger = logging.getLogger(__name__)

SERVER_INFO_FILENAME = "server.json"


def read_server_info(storage_dir: Path) -> dict | None:
    """Port and pid of the service last started on *storage_dir*, if any."""
    try:
        info = json.loads((storage_dir / SERVER_INFO_FILENAME).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return None
    return info if isinstance(info, dict) and isinstance(info.get("port"), int) else None


class SeamlessAgent:
    """One running service instance."""

    def __init__(
        self,
        config: SeamlessAgentConfig,
        *,
        stores: Stores | None = None,
        token: str | None = None,
        fallback: TerminalPrompt | None = None,
    ) -> None:
        self.config = config
        self.stores = stores or open_stores(config.storage_dir, config.max_history)
        self.token = token or load_or_create_token(config.storage_dir)

        self.channel = ConsoleChannel()
        self.attachments = AttachmentStore(config.temp_dir, config.temp_cleanup_delay)
        self.file_search = WorkspaceFileSearch(
            config.workspace_root,
            get_ignored_paths(config.ignore_common_paths, config.additional_ignored_paths),
        )
        self.broker = PendingRequestBroker(
            self.channel,
            self.stores.history,
            self.attachments,
            view_init_timeout=config.view_init_timeout,
            file_search=self.file_search,
            task_lists=self.stores.task_lists,
        )
        self.plan_reviews = PlanReviewStateMachine(
            self.stores.history,
            ConsolePanelHost(self.channel),
            on_change=self.broker.refresh,
        )
        self.task_lists = TaskListManager(self.stores.task_lists, self.channel)
        if fallback is None and config.terminal_fallback:
            fallback = TerminalPrompt()
        self.tools = AgentTools(self.broker, self.plan_reviews, self.task_lists, fallback=fallback)
        self.server = BridgeServer(
            self.tools,
            self.channel,
            self.token,
            host=config.host,
            port=config.port,
            on_ui_message=self.handle_ui_message,
        )
        self.streamable: StreamableMcpServer | None = None
        if config.mcp_transport == "streamable":
            self.streamable = StreamableMcpServer(self.tools, host=config.host)
        self.registration = McpRegistration(config.mcp_config_path)
        self._started = False
        self._stopped = False

    @property
    def port(self) -> int | None:
        return self.server.port

    async def start(self) -> int:
        """Start every component and return the bridge port."""
        if self._started:
            raise RuntimeError("SeamlessAgent already started")
        self._started = True
        self.plan_reviews.start()
        self.broker.start()
        port = await self.server.start()

        if self.streamable is not None:
            mcp_port = await self.streamable.start()
            descriptor = url_descriptor(mcp_port)
        else:
            descriptor = stdio_descriptor(port, self.token)
        if self.config.register_mcp:
            self.registration.register(descriptor)
        self._write_server_info(port)
        logger.info(
            "Seamless Agent started port=%d transport=%s storage=%s",
            port, self.config.mcp_transport, self.config.storage_dir,
        )
        return port

    async def shutdown(self) -> None:
        """Cancel everything pending, then stop servers and close stores. Idempotent."""
        if self._stopped:
            return
        self._stopped = True
        self.broker.shutdown()
        self.plan_reviews.shutdown()
        # Let the cancelled tool calls send their responses before the sockets close.
        await asyncio.sleep(0)
        if self.config.register_mcp:
            self.registration.unregister()
        self._remove_server_info()
        if self.streamable is not None:
            await self.streamable.stop()
        await self.server.stop()
        self.attachments.cleanup_all_temp_files()
        self.stores.close()
        logger.info("Seamless Agent stopped")

    def _write_server_info(self, port: int) -> None:
        path = self.config.storage_dir / SERVER_INFO_FILENAME
        try:
            atomic_write_text(path, json.dumps({"port": port, "pid": os.getpid()}), mode=0o600)
        except OSError:
            logger.exception("Failed to write %s", path)

    def _remove_server_info(self) -> None:
        path = self.config.storage_dir / SERVER_INFO_FILENAME
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Failed to remove %s: %s", path, exc)

    async def handle_ui_message(self, message: UIMessage) -> None:
        """Route one console message to the component that owns it."""
        for handler in (
            self.broker.handle_message,
            self.plan_reviews.handle_message,
            self.task_lists.handle_message,
        ):
            if handler(message):
                return
        logger.warning("Unhandled console message type=%s", message.type)

    async def serve_forever(self) -> None:
        """Run until cancelled (Ctrl-C or a signal), then shut down."""
        await self.start()
        try:
            await asyncio.Event().wait()
        finally:
            await self.shutdown()
