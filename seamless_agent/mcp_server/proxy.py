"""MCP stdio proxy for external agent runtimes.

Standalone FastMCP server launched by an MCP client as a subprocess.
Speaks MCP on stdin/stdout and relays every tool call to the service's
loopback HTTP bridge.

Usage:
    python -m seamless_agent mcp --port PORT --token TOKEN

Tool call flow:
    MCP client -> stdin/stdout -> proxy -> HTTP -> BridgeServer -> AgentTools

Blocking tools hold the HTTP request open until the human answers. If
the MCP client cancels the call, the request is aborted and the bridge
cancels the pending request on its side.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from collections.abc import Callable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import aiohttp
from mcp import types
from mcp.server.fastmcp import Context, FastMCP

from ..auth import AUTH_HEADER
from ..errors import BridgeRequestError, BridgeUnavailableError, SeamlessAgentError
from ..logging_setup import configure_logging
from ..schemas import TaskInput, dump_tasks
from ..tools import ask_user_error, review_error, task_error
from . import content

logger = logging.getLogger(__name__)

# Bridge address, set from CLI args before the server starts
_bridge_host: str = "127.0.0.1"
_bridge_port: int = 0
_bridge_token: str = ""


class BridgeClient:
    """HTTP client for the bridge running in the service process."""

    def __init__(self, port: int, token: str, host: str = "127.0.0.1") -> None:
        self._port = port
        self._token = token
        self._base_url = f"http://{host}:{port}"
        self._session: aiohttp.ClientSession | None = None

    @property
    def port(self) -> int:
        return self._port

    async def connect(self, max_attempts: int = 10) -> bool:
        """Open the session and wait for the bridge to answer /health.

        The service may still be starting when the MCP client launches
        this proxy, so the probe retries with exponential backoff
        (0.2s -> 0.4s -> 0.8s ... capped at 2s). A bridge that never
        answers is not fatal: each tool call then reports it.
        """
        if self._session is None:
            self._session = aiohttp.ClientSession(
                headers={AUTH_HEADER: f"Bearer {self._token}"},
                # No read timeout: a question may wait for the human indefinitely.
                timeout=aiohttp.ClientTimeout(total=None, sock_connect=5),
            )
        delay = 0.2
        for attempt in range(1, max_attempts + 1):
            try:
                async with self._session.get(f"{self._base_url}/health") as resp:
                    if resp.status == 200:
                        logger.info(
                            "Connected to bridge on port %d (attempt %d)",
                            self._port, attempt,
                        )
                        return True
                    logger.debug("Bridge health returned %d", resp.status)
            except aiohttp.ClientError as exc:
                if attempt == max_attempts:
                    logger.error(
                        "Bridge on port %d unreachable after %d attempts: %s",
                        self._port, max_attempts, exc,
                    )
                    return False
                logger.debug(
                    "Bridge probe %d/%d failed: %s, retrying in %.1fs",
                    attempt, max_attempts, exc, delay,
                )
            await asyncio.sleep(delay)
            delay = min(delay * 2, 2.0)
        return False

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def call(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        """POST *payload* to *path* and return the decoded JSON object.

        Raises BridgeUnavailableError when the bridge refuses the
        connection and BridgeRequestError for any non-2xx status.
        """
        if self._session is None:
            raise BridgeUnavailableError(self._port, "client is not connected")
        body = {k: v for k, v in payload.items() if v is not None}
        try:
            async with self._session.post(f"{self._base_url}{path}", json=body) as resp:
                try:
                    data = await resp.json(content_type=None)
                except (json.JSONDecodeError, aiohttp.ContentTypeError, ValueError):
                    data = None
                status = resp.status
                if status >= 400:
                    message = data.get("error") if isinstance(data, dict) else None
                    raise BridgeRequestError(
                        status,
                        message or resp.reason or "request failed",
                        data if isinstance(data, dict) else None,
                    )
        except aiohttp.ClientConnectorError as exc:
            raise BridgeUnavailableError(self._port, str(exc)) from exc
        except aiohttp.ClientError as exc:
            raise BridgeRequestError(0, str(exc)) from exc
        if not isinstance(data, dict):
            raise BridgeRequestError(status, "bridge returned a non-object body")
        return data


async def relay(
    client: BridgeClient,
    path: str,
    payload: dict[str, Any],
    error_body: Callable[[str], dict[str, Any]],
) -> dict[str, Any]:
    """Forward one call. Failures raise ValueError so FastMCP marks the result as an error."""
    try:
        return await client.call(path, payload)
    except SeamlessAgentError as exc:
        logger.warning("Bridge call %s failed: %s", path, exc)
        raise ValueError(json.dumps(error_body(f"Error: {exc}"))) from exc


# ── FastMCP lifespan ──────────────────────────────────────────────

@asynccontextmanager
async def proxy_lifespan(server: FastMCP):
    """Connect to the bridge on startup, disconnect on shutdown."""
    client = BridgeClient(_bridge_port, _bridge_token, _bridge_host)
    await client.connect()
    try:
        yield {"bridge": client}
    finally:
        await client.close()


# ── FastMCP server ────────────────────────────────────────────────

mcp = FastMCP(
    name=content.SERVER_NAME,
    instructions=content.INSTRUCTIONS,
    lifespan=proxy_lifespan,
)


def _bridge(ctx: Context) -> BridgeClient:
    """Get the BridgeClient from the lifespan context."""
    return ctx.request_context.lifespan_context["bridge"]


# ── Tool registrations ────────────────────────────────────────────

@mcp.tool(name="ask_user", description=content.ASK_USER)
async def ask_user(
    question: str,
    title: str | None = None,
    agent_name: str | None = None,
    ctx: Context = None,
) -> list[types.TextContent | types.ImageContent]:
    result = await relay(_bridge(ctx), "/ask_user", {
        "question": question, "title": title, "agentName": agent_name,
    }, ask_user_error)
    return content.ask_user_content(result)


@mcp.tool(name="plan_review", description=content.PLAN_REVIEW)
async def plan_review(
    plan: str,
    title: str | None = None,
    chat_id: str | None = None,
    ctx: Context = None,
) -> str:
    result = await relay(_bridge(ctx), "/plan_review", {
        "plan": plan, "title": title, "mode": "review", "chatId": chat_id,
    }, review_error)
    return json.dumps(result)


@mcp.tool(name="walkthrough_review", description=content.WALKTHROUGH_REVIEW)
async def walkthrough_review(
    plan: str,
    title: str | None = None,
    chat_id: str | None = None,
    ctx: Context = None,
) -> str:
    result = await relay(_bridge(ctx), "/plan_review", {
        "plan": plan, "title": title, "mode": "walkthrough", "chatId": chat_id,
    }, review_error)
    return json.dumps(result)


@mcp.tool(name="create_task_list", description=content.CREATE_TASK_LIST)
async def create_task_list(
    title: str,
    description: str | None = None,
    tasks: list[TaskInput] | None = None,
    ctx: Context = None,
) -> str:
    result = await relay(_bridge(ctx), "/create_task_list", {
        "title": title, "description": description, "tasks": dump_tasks(tasks),
    }, task_error)
    return json.dumps(result)


@mcp.tool(name="get_next_task", description=content.GET_NEXT_TASK)
async def get_next_task(list_id: str, ctx: Context = None) -> str:
    result = await relay(_bridge(ctx), "/get_next_task", {"listId": list_id}, task_error)
    return json.dumps(result)


@mcp.tool(name="update_task_status", description=content.UPDATE_TASK_STATUS)
async def update_task_status(
    list_id: str,
    task_id: str,
    status: str,
    ctx: Context = None,
) -> str:
    result = await relay(_bridge(ctx), "/update_task_status", {
        "listId": list_id, "taskId": task_id, "status": status,
    }, task_error)
    return json.dumps(result)


@mcp.tool(name="close_task_list", description=content.CLOSE_TASK_LIST)
async def close_task_list(list_id: str, ctx: Context = None) -> str:
    result = await relay(_bridge(ctx), "/close_task_list", {"listId": list_id}, task_error)
    return json.dumps(result)


# ── Entry point ───────────────────────────────────────────────────

USAGE = (
    "Usage: seamless-agent mcp --port <api-port> --token <api-token>\n"
    "  --port  The port where the Seamless Agent bridge is running\n"
    "  --token Authentication token for the local API service"
)


def add_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--port", type=int, default=None, help="Bridge port to connect to")
    parser.add_argument("--token", default=None, help="Bridge bearer token")
    parser.add_argument("--host", default="127.0.0.1", help="Bridge host (default: 127.0.0.1)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")


def build_parser(prog: str = "seamless-agent mcp") -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=prog,
        description="MCP stdio proxy for the Seamless Agent bridge",
    )
    add_arguments(parser)
    return parser


def run(args: argparse.Namespace) -> None:
    """Validate *args* and serve MCP on stdio until the client goes away."""
    global _bridge_host, _bridge_port, _bridge_token

    if not args.port or args.port <= 0 or not args.token:
        print(USAGE, file=sys.stderr)
        sys.exit(1)
    _bridge_host = args.host
    _bridge_port = args.port
    _bridge_token = args.token

    # Logging goes to stderr (stdout is the MCP transport)
    configure_logging(
        "DEBUG" if args.verbose else "INFO",
        Path.home() / ".seamless-agent" / "logs",
        filename=f"mcp-proxy-{os.getpid()}.log",
    )
    logger.info("Starting MCP proxy (bridge_port=%d, pid=%d)", _bridge_port, os.getpid())
    try:
        mcp.run(transport="stdio")
    except Exception:
        logger.exception("Fatal MCP proxy error (pid=%s)", os.getpid())
        raise


def main(argv: list[str] | None = None) -> None:
    run(build_parser().parse_args(argv))


if __name__ == "__main__":
    main()
