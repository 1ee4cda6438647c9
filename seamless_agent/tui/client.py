"""HTTP client a console UI uses to talk to the running service."""
from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Iterable
from typing import Any

import aiohttp

from ..auth import AUTH_HEADER
from ..messages import UIMessage, dict_to_outbound, message_to_dict

logger = logging.getLogger(__name__)


def parse_sse(lines: Iterable[str]) -> Iterable[tuple[str, str]]:
    """Group decoded SSE lines into ``(event, data)`` pairs.

    Comment lines (keepalives) are skipped; multi-line data is joined
    with newlines. A trailing event without a blank line is dropped.
    """
    event = "message"
    data: list[str] = []
    for raw in lines:
        line = raw.rstrip("\r\n")
        if not line:
            if data:
                yield event, "\n".join(data)
            event, data = "message", []
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        value = value[1:] if value.startswith(" ") else value
        if name == "event":
            event = value
        elif name == "data":
            data.append(value)


class ConsoleClient:
    """Subscribes to ``/events`` and posts to ``/ui/messages``."""

    def __init__(self, port: int, token: str, host: str = "127.0.0.1") -> None:
        self._base_url = f"http://{host}:{port}"
        self._token = token
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> ConsoleClient:
        self._session = aiohttp.ClientSession(
            headers={AUTH_HEADER: f"Bearer {self._token}"},
            timeout=aiohttp.ClientTimeout(total=None, sock_connect=5),
        )
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    def _require_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise RuntimeError("ConsoleClient is not open")
        return self._session

    async def send(self, message: UIMessage) -> None:
        async with self._require_session().post(
            f"{self._base_url}/ui/messages", json=message_to_dict(message),
        ) as resp:
            if resp.status >= 400:
                body = await resp.text()
                logger.warning("Console message %s rejected: %s %s", message.type, resp.status, body)

    async def messages(self) -> AsyncIterator[UIMessage]:
        """Yield backend messages until the stream ends."""
        async with self._require_session().get(f"{self._base_url}/events") as resp:
            resp.raise_for_status()
            buffer: list[str] = []
            async for raw in resp.content:
                line = raw.decode("utf-8")
                buffer.append(line)
                if line.strip():
                    continue
                for event, data in parse_sse(buffer):
                    if event != "message":
                        logger.debug("SSE %s: %s", event, data)
                        continue
                    try:
                        yield dict_to_outbound(json.loads(data))
                    except (ValueError, TypeError) as exc:
                        logger.warning("Skipping unreadable console message: %s", exc)
                buffer = []
