"""In-process MCP server over streamable HTTP.

Alternative to the stdio proxy for MCP clients that connect by URL:
the tools call AgentTools directly, and the app is served by uvicorn on
its own loopback port. A cancelled tool call cancels the pending
request, the same as a dropped bridge connection.
"""
from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import socket

import uvicorn
from mcp import types
from mcp.server.fastmcp import FastMCP

from ..schemas import TaskInput, dump_tasks
from ..tools import AgentTools
from . import content

logger = logging.getLogger(__name__)

MCP_PATH = "/mcp"


def build_mcp(tools: AgentTools) -> FastMCP:
    """A FastMCP instance whose tools call *tools* in-process."""
    mcp = FastMCP(
        name=content.SERVER_NAME,
        instructions=content.INSTRUCTIONS,
        streamable_http_path=MCP_PATH,
    )

    @mcp.tool(name="ask_user", description=content.ASK_USER)
    async def ask_user(
        question: str,
        title: str | None = None,
        agent_name: str | None = None,
    ) -> list[types.TextContent | types.ImageContent]:
        result = await tools.ask_user({"question": question, "title": title, "agentName": agent_name})
        return content.ask_user_content(result)

    @mcp.tool(name="plan_review", description=content.PLAN_REVIEW)
    async def plan_review(plan: str, title: str | None = None, chat_id: str | None = None) -> str:
        result = await tools.plan_review(
            {"plan": plan, "title": title, "mode": "review", "chatId": chat_id},
        )
        return json.dumps(result)

    @mcp.tool(name="walkthrough_review", description=content.WALKTHROUGH_REVIEW)
    async def walkthrough_review(plan: str, title: str | None = None, chat_id: str | None = None) -> str:
        result = await tools.walkthrough_review({"plan": plan, "title": title, "chatId": chat_id})
        return json.dumps(result)

    @mcp.tool(name="create_task_list", description=content.CREATE_TASK_LIST)
    async def create_task_list(
        title: str,
        description: str | None = None,
        tasks: list[TaskInput] | None = None,
    ) -> str:
        return json.dumps(tools.create_task_list(
            {"title": title, "description": description, "tasks": dump_tasks(tasks)},
        ))

    @mcp.tool(name="get_next_task", description=content.GET_NEXT_TASK)
    async def get_next_task(list_id: str) -> str:
        return json.dumps(tools.get_next_task({"listId": list_id}))

    @mcp.tool(name="update_task_status", description=content.UPDATE_TASK_STATUS)
    async def update_task_status(list_id: str, task_id: str, status: str) -> str:
        return json.dumps(tools.update_task_status(
            {"listId": list_id, "taskId": task_id, "status": status},
        ))

    @mcp.tool(name="close_task_list", description=content.CLOSE_TASK_LIST)
    async def close_task_list(list_id: str) -> str:
        return json.dumps(tools.close_task_list({"listId": list_id}))

    return mcp


class StreamableMcpServer:
    """Serves ``build_mcp(tools)`` on a loopback port with uvicorn."""

    def __init__(self, tools: AgentTools, *, host: str = "127.0.0.1", port: int = 0) -> None:
        self._tools = tools
        self._host = host
        self._requested_port = port
        self._port: int | None = None
        self._server: uvicorn.Server | None = None
        self._task: asyncio.Task | None = None

    @property
    def port(self) -> int | None:
        return self._port

    @property
    def url(self) -> str | None:
        if self._port is None:
            return None
        return f"http://localhost:{self._port}{MCP_PATH}"

    async def start(self) -> int:
        if self._task is not None:
            raise RuntimeError(f"MCP server already running on port {self._port}")
        # The session manager of a FastMCP app runs once, so each start builds a new one.
        app = build_mcp(self._tools).streamable_http_app()
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((self._host, self._requested_port))
        self._port = sock.getsockname()[1]

        config = uvicorn.Config(app, log_level="warning", access_log=False, lifespan="on")
        self._server = uvicorn.Server(config)
        self._task = asyncio.create_task(self._server.serve(sockets=[sock]))
        while not self._server.started:
            if self._task.done():
                self._task.result()
                raise RuntimeError("MCP server exited during startup")
            await asyncio.sleep(0.05)
        logger.info("Streamable MCP server listening on %s", self.url)
        return self._port

    async def stop(self) -> None:
        if self._task is None:
            return
        if self._server is not None:
            self._server.should_exit = True
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=5.0)
        except asyncio.TimeoutError:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        logger.info("Streamable MCP server stopped (was on port %s)", self._port)
        self._task = None
        self._server = None
