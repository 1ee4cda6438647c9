from __future__ import annotations

import argparse
import base64
import json
from unittest.mock import MagicMock

import pytest

from seamless_agent.mcp_server import content, proxy
from seamless_agent.mcp_server.streamable import MCP_PATH, StreamableMcpServer, build_mcp

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16
TOOL_NAMES = {
    "ask_user",
    "plan_review",
    "walkthrough_review",
    "create_task_list",
    "get_next_task",
    "update_task_status",
    "close_task_list",
}


def test_ask_user_content_inlines_valid_images_only(tmp_path) -> None:
    image = tmp_path / "shot.png"
    image.write_bytes(PNG_BYTES)
    fake = tmp_path / "fake.png"
    fake.write_bytes(b"not really a png")
    notes = tmp_path / "notes.txt"
    notes.write_text("hello", encoding="utf-8")
    result = {
        "responded": True,
        "response": "see attached",
        "attachments": [image.as_uri(), fake.as_uri(), notes.as_uri(), (tmp_path / "gone.png").as_uri()],
    }

    items = content.ask_user_content(result)

    assert [item.type for item in items] == ["text", "image"]
    assert json.loads(items[0].text) == result
    assert items[1].mimeType == "image/png"
    assert base64.b64decode(items[1].data) == PNG_BYTES


def test_ask_user_content_without_attachments_is_just_text() -> None:
    items = content.ask_user_content({"responded": False, "response": "Request was cancelled", "attachments": []})

    assert len(items) == 1
    assert items[0].type == "text"


@pytest.mark.asyncio
async def test_proxy_exposes_every_tool() -> None:
    tools = await proxy.mcp.list_tools()

    assert {tool.name for tool in tools} == TOOL_NAMES
    ask_user = next(tool for tool in tools if tool.name == "ask_user")
    assert "question" in ask_user.inputSchema["required"]
    assert "ctx" not in ask_user.inputSchema["properties"]


@pytest.mark.asyncio
async def test_streamable_server_exposes_the_same_tools() -> None:
    mcp = build_mcp(MagicMock())

    tools = await mcp.list_tools()

    assert {tool.name for tool in tools} == TOOL_NAMES


def test_streamable_server_is_idle_until_started() -> None:
    server = StreamableMcpServer(MagicMock(), host="127.0.0.1")

    assert server.port is None
    assert server.url is None
    assert MCP_PATH == "/mcp"


def test_proxy_requires_port_and_token(capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        proxy.run(argparse.Namespace(port=None, token="tok", host="127.0.0.1", verbose=False))

    assert excinfo.value.code == 1
    assert "--port" in capsys.readouterr().err


def test_proxy_parser_defaults() -> None:
    args = proxy.build_parser().parse_args(["--port", "5000", "--token", "abc"])

    assert args.port == 5000
    assert args.token == "abc"
    assert args.host == "127.0.0.1"
    assert args.verbose is False
