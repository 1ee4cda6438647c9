from __future__ import annotations

import asyncio
import json
import socket
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import wait_until
from seamless_agent import strings
from seamless_agent.app import SeamlessAgent, read_server_info
from seamless_agent.config import SeamlessAgentConfig
from seamless_agent.errors import BridgeRequestError, BridgeUnavailableError
from seamless_agent.mcp_server.proxy import BridgeClient, relay
from seamless_agent.messages import Notify, ShowHome, ViewVisibility
from seamless_agent.models import AskUserStatus
from seamless_agent.registration import SERVER_KEY
from seamless_agent.tools import task_error
from seamless_agent.tui.client import ConsoleClient

TOKEN = "k" * 43


def _config(tmp_path, **overrides) -> SeamlessAgentConfig:
    values = dict(
        storage_dir=tmp_path / "storage",
        mcp_config_path=tmp_path / "mcp_config.json",
        register_mcp=False,
        view_init_timeout=0.5,
        workspace_root=tmp_path,
        terminal_fallback=False,
    )
    values.update(overrides)
    return SeamlessAgentConfig(**values)


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.mark.asyncio
async def test_start_registers_and_shutdown_cleans_up(tmp_path) -> None:
    agent = SeamlessAgent(_config(tmp_path, register_mcp=True), token=TOKEN)
    port = await agent.start()
    try:
        assert port > 0
        assert read_server_info(agent.config.storage_dir)["port"] == port
        registered = json.loads((tmp_path / "mcp_config.json").read_text(encoding="utf-8"))
        args = registered["mcpServers"][SERVER_KEY]["args"]
        assert args[args.index("--port") + 1] == str(port)
    finally:
        await agent.shutdown()

    assert read_server_info(agent.config.storage_dir) is None
    registered = json.loads((tmp_path / "mcp_config.json").read_text(encoding="utf-8"))
    assert SERVER_KEY not in registered["mcpServers"]
    await agent.shutdown()


@pytest.mark.asyncio
async def test_shutdown_answers_agents_still_waiting(tmp_path) -> None:
    agent = SeamlessAgent(_config(tmp_path), token=TOKEN)
    await agent.start()
    agent.channel.subscribe()
    client = BridgeClient(agent.port, TOKEN)
    try:
        assert await client.connect(max_attempts=3)
        pending = asyncio.create_task(client.call("/ask_user", {"question": "Still there?"}))
        await wait_until(lambda: agent.broker.pending_count == 1)

        await agent.shutdown()
        result = await pending
    finally:
        await client.close()
        await agent.shutdown()

    assert result["responded"] is False
    assert result["response"] == strings.REQUEST_CANCELLED


@pytest.mark.asyncio
async def test_client_disconnect_cancels_the_pending_request(tmp_path) -> None:
    agent = SeamlessAgent(_config(tmp_path), token=TOKEN)
    await agent.start()
    agent.channel.subscribe()
    client = BridgeClient(agent.port, TOKEN)
    try:
        await client.connect(max_attempts=3)
        pending = asyncio.create_task(client.call("/ask_user", {"question": "Abandon me?"}))
        await wait_until(lambda: agent.broker.pending_count == 1)

        pending.cancel()
        with pytest.raises(asyncio.CancelledError):
            await pending
        await client.close()

        await wait_until(lambda: agent.broker.pending_count == 0)
        record = agent.stores.history.all()[0]
        assert record.status is AskUserStatus.CANCELLED
        assert record.response == strings.AGENT_STOPPED
    finally:
        await client.close()
        await agent.shutdown()


@pytest.mark.asyncio
async def test_console_client_receives_events_and_posts_messages(tmp_path) -> None:
    agent = SeamlessAgent(_config(tmp_path), token=TOKEN)
    await agent.start()
    try:
        async with ConsoleClient(agent.port, TOKEN) as console:
            stream = console.messages()

            # Connecting pushes the current view.
            assert isinstance(await anext(stream), ShowHome)
            assert agent.channel.subscriber_count == 1

            agent.channel.publish(Notify(message="hello"))
            message = await anext(stream)
            while not isinstance(message, Notify):
                message = await anext(stream)
            assert message.message == "hello"

            await console.send(ViewVisibility(visible=False))
            assert agent.channel.visible is False
            await stream.aclose()

        await wait_until(lambda: agent.channel.subscriber_count == 0)
    finally:
        await agent.shutdown()


@pytest.mark.asyncio
async def test_bridge_client_maps_http_errors(tmp_path) -> None:
    agent = SeamlessAgent(_config(tmp_path), token=TOKEN)
    await agent.start()
    good = BridgeClient(agent.port, TOKEN)
    bad = BridgeClient(agent.port, "wrong")
    try:
        await good.connect(max_attempts=3)
        created = await good.call("/create_task_list", {"title": "Proxy", "description": None})
        assert created["created"] is True

        with pytest.raises(BridgeRequestError) as excinfo:
            await good.call("/ask_user", {"title": "no question"})
        assert excinfo.value.status == 400
        assert excinfo.value.message == "Missing required field: question"

        await bad.connect(max_attempts=1)
        with pytest.raises(BridgeRequestError) as excinfo:
            await bad.call("/get_next_task", {"listId": created["listId"]})
        assert excinfo.value.status == 401
    finally:
        await good.close()
        await bad.close()
        await agent.shutdown()


@pytest.mark.asyncio
async def test_bridge_client_reports_unreachable_bridge() -> None:
    client = BridgeClient(_free_port(), TOKEN)
    try:
        with pytest.raises(BridgeUnavailableError):
            await client.call("/ask_user", {"question": "?"})

        assert await client.connect(max_attempts=1) is False
        with pytest.raises(BridgeUnavailableError):
            await client.call("/ask_user", {"question": "?"})
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_relay_turns_bridge_failures_into_tool_errors() -> None:
    client = MagicMock()
    client.call = AsyncMock(side_effect=BridgeRequestError(500, "boom"))

    with pytest.raises(ValueError) as excinfo:
        await relay(client, "/get_next_task", {"listId": "l"}, task_error)

    assert json.loads(str(excinfo.value)) == {"error": "Error: HTTP 500: boom"}
