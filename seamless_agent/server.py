"""Loopback HTTP bridge between external agent runtimes and the broker.

Routes:

    GET  /health              liveness and bound port, no auth
    POST /ask_user            ask the human a question (blocks until answered)
    POST /plan_review         plan or walkthrough review (blocks)
    POST /walkthrough_review  walkthrough review (blocks)
    POST /approve_plan        deprecated plan review (blocks)
    POST /task_list           operation-based task list tool
    POST /create_task_list, /get_next_task, /update_task_status, /close_task_list
    GET  /events              SSE stream of console messages
    POST /ui/messages         one console message

Every route but /health requires ``Authorization: Bearer <token>`` (or
the ``X-Seamless-Agent-Token`` header). Tool routes additionally require
a JSON content type and a body of at most 256 KiB. There is no
server-side timeout: a request stays open until the human answers or
the client disconnects, which cancels it.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from aiohttp import web

from .auth import is_authorized
from .console import ConsoleChannel
from .messages import UIMessage, dict_to_message
from .tools import AgentTools, ask_user_error, review_error, task_error

logger = logging.getLogger(__name__)

MAX_REQUEST_BODY_BYTES = 256 * 1024
SSE_KEEPALIVE_SECONDS = 30.0

UIMessageHandler = Callable[[UIMessage], Awaitable[None] | None]


class _BodyTooLarge(Exception):
    pass


class BridgeServer:
    """aiohttp application exposing the tools on a loopback port."""

    def __init__(
        self,
        tools: AgentTools,
        channel: ConsoleChannel,
        token: str,
        *,
        host: str = "127.0.0.1",
        port: int = 0,
        on_ui_message: UIMessageHandler | None = None,
    ) -> None:
        self._tools = tools
        self._channel = channel
        self._token = token
        self._host = host
        self._requested_port = port
        self._port: int | None = None
        self._on_ui_message = on_ui_message
        self._runner: web.AppRunner | None = None
        self._app = web.Application(
            middlewares=[self._request_logging_middleware, self._error_middleware],
        )
        self._setup_routes()

    @property
    def app(self) -> web.Application:
        return self._app

    @property
    def port(self) -> int | None:
        return self._port

    @property
    def token(self) -> str:
        return self._token

    # ── Middleware ──

    @web.middleware
    async def _request_logging_middleware(self, request: web.Request, handler) -> web.StreamResponse:
        req_id = request.headers.get("x-seamless-request-id", str(uuid.uuid4())[:8])
        request["req_id"] = req_id
        start = time.monotonic()
        logger.info("HTTP %s %s req=%s", request.method, request.path, req_id)
        try:
            response = await handler(request)
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.info(
                "HTTP %s %s req=%s status=%s duration_ms=%.1f",
                request.method, request.path, req_id,
                getattr(response, "status", "?"), elapsed_ms,
            )
            return response
        except asyncio.CancelledError:
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.info(
                "HTTP %s %s req=%s client went away duration_ms=%.1f",
                request.method, request.path, req_id, elapsed_ms,
            )
            raise
        except Exception:
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.exception(
                "HTTP %s %s req=%s failed duration_ms=%.1f",
                request.method, request.path, req_id, elapsed_ms,
            )
            raise

    @web.middleware
    async def _error_middleware(self, request: web.Request, handler) -> web.StreamResponse:
        try:
            return await handler(request)
        except web.HTTPNotFound:
            return web.json_response({"error": "Not found"}, status=404)
        except web.HTTPMethodNotAllowed:
            return web.json_response({"error": "Method not allowed"}, status=405)

    # ── Route setup ──

    def _setup_routes(self) -> None:
        r = self._app.router
        r.add_get("/health", self._handle_health)
        r.add_get("/events", self._handle_sse)
        r.add_post("/ui/messages", self._handle_ui_message)
        # Blocking human-input tools
        r.add_post("/ask_user", self._tool_route(self._tools.ask_user, "question", ask_user_error))
        r.add_post("/plan_review", self._tool_route(self._tools.plan_review, "plan", review_error))
        r.add_post(
            "/walkthrough_review",
            self._tool_route(self._tools.walkthrough_review, "plan", review_error),
        )
        r.add_post("/approve_plan", self._tool_route(self._tools.approve_plan, "plan", review_error))
        # Non-blocking task list tools
        r.add_post("/task_list", self._tool_route(self._tools.task_list, None, task_error))
        r.add_post("/create_task_list", self._tool_route(self._tools.create_task_list, None, task_error))
        r.add_post("/get_next_task", self._tool_route(self._tools.get_next_task, None, task_error))
        r.add_post("/update_task_status", self._tool_route(self._tools.update_task_status, None, task_error))
        r.add_post("/close_task_list", self._tool_route(self._tools.close_task_list, None, task_error))

    # ── Lifecycle ──

    async def start(self) -> int:
        """Bind the loopback port and return it."""
        # Client disconnects cancel the handler, which cancels the pending request.
        runner = web.AppRunner(self._app, handler_cancellation=True, access_log=None)
        await runner.setup()
        site = web.TCPSite(runner, self._host, self._requested_port)
        await site.start()

        actual_port = self._resolve_port(site, runner)
        if actual_port is None:
            await runner.cleanup()
            raise RuntimeError("Bridge started but no listening socket was reported.")
        self._runner = runner
        self._port = actual_port
        logger.info("Bridge listening on %s:%d", self._host, actual_port)
        return actual_port

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Bridge stopped")

    async def restart(self) -> int:
        await self.stop()
        await asyncio.sleep(0.5)
        # Keep the same port so registered clients stay valid.
        if self._port:
            self._requested_port = self._port
        return await self.start()

    @staticmethod
    def _resolve_port(site, runner) -> int | None:
        sockets = getattr(getattr(site, "_server", None), "sockets", None) or ()
        if sockets:
            return sockets[0].getsockname()[1]
        addresses = getattr(runner, "addresses", None) or ()
        if addresses:
            first = addresses[0]
            if isinstance(first, tuple) and len(first) >= 2:
                return int(first[1])
        return None

    # ── Request guards ──

    def _unauthorized(self) -> web.Response:
        return web.json_response(
            {"error": "Unauthorized"},
            status=401,
            headers={"WWW-Authenticate": "Bearer"},
        )

    @staticmethod
    async def _read_body(request: web.Request) -> bytes:
        length = request.content_length
        if length is not None and length > MAX_REQUEST_BODY_BYTES:
            raise _BodyTooLarge()
        chunks: list[bytes] = []
        size = 0
        async for chunk in request.content.iter_chunked(64 * 1024):
            size += len(chunk)
            if size > MAX_REQUEST_BODY_BYTES:
                raise _BodyTooLarge()
            chunks.append(chunk)
        return b"".join(chunks)

    async def _read_json(self, request: web.Request) -> tuple[dict[str, Any] | None, web.Response | None]:
        """Authenticate and parse a JSON object body, or return the rejection."""
        if not is_authorized(request.headers, self._token):
            return None, self._unauthorized()
        content_type = request.headers.get("Content-Type", "")
        if not content_type.lower().startswith("application/json"):
            return None, web.json_response(
                {"error": "Content-Type must be application/json"}, status=415,
            )
        try:
            raw = await self._read_body(request)
        except _BodyTooLarge:
            return None, web.json_response({"error": "Request body too large"}, status=413)
        try:
            body = json.loads(raw.decode("utf-8")) if raw else None
        except (UnicodeDecodeError, json.JSONDecodeError):
            return None, web.json_response({"error": "Invalid JSON body"}, status=400)
        if not isinstance(body, dict):
            return None, web.json_response({"error": "Invalid JSON body"}, status=400)
        return body, None

    # ── HTTP handlers ──

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "ok", "port": self._port})

    def _tool_route(
        self,
        tool: Callable[..., Any],
        required_field: str | None,
        error_body: Callable[[str], dict[str, Any]],
    ) -> Callable[[web.Request], Awaitable[web.Response]]:
        async def handler(request: web.Request) -> web.Response:
            body, rejection = await self._read_json(request)
            if rejection is not None:
                return rejection
            if required_field and not isinstance(body.get(required_field), str):
                return web.json_response(
                    {"error": f"Missing required field: {required_field}"}, status=400,
                )
            try:
                result = tool(body)
                if asyncio.iscoroutine(result):
                    result = await result
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception("Tool %s failed req=%s", request.path, request.get("req_id"))
                return web.json_response(
                    error_body(f"Error: {str(exc) or type(exc).__name__}"), status=500,
                )
            return web.json_response(result)

        return handler

    async def _handle_ui_message(self, request: web.Request) -> web.Response:
        body, rejection = await self._read_json(request)
        if rejection is not None:
            return rejection
        try:
            message = dict_to_message(body)
        except (ValueError, TypeError) as exc:
            logger.warning("Rejected console message: %s", exc)
            return web.json_response({"error": str(exc)}, status=400)
        if self._on_ui_message is not None:
            result = self._on_ui_message(message)
            if asyncio.iscoroutine(result):
                await result
        return web.json_response({"status": "ok"})

    async def _handle_sse(self, request: web.Request) -> web.StreamResponse:
        if not is_authorized(request.headers, self._token):
            return self._unauthorized()
        response = web.StreamResponse(
            status=200,
            headers={
                "Content-Type": "text/event-stream",
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
            },
        )
        await response.prepare(request)
        await response.write(
            f"event: connected\ndata: {json.dumps({'port': self._port})}\n\n".encode()
        )
        queue = self._channel.subscribe()
        try:
            while True:
                try:
                    msg = await asyncio.wait_for(queue.get(), timeout=SSE_KEEPALIVE_SECONDS)
                    data = json.dumps(msg["data"])
                    await response.write(f"event: {msg['event']}\ndata: {data}\n\n".encode())
                except asyncio.TimeoutError:
                    await response.write(b": keepalive\n\n")
                except ConnectionResetError:
                    break
        finally:
            self._channel.unsubscribe(queue)
        return response
