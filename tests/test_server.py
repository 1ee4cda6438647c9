from __future__ import annotations

import asyncio
import tempfile
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from aiohttp.test_utils import AioHTTPTestCase, make_mocked_request

from conftest import wait_until
from seamless_agent import strings
from seamless_agent.app import SeamlessAgent
from seamless_agent.config import SeamlessAgentConfig
from seamless_agent.console import ConsoleChannel
from seamless_agent.models import PlanReviewStatus
from seamless_agent.server import MAX_REQUEST_BODY_BYTES, BridgeServer

TOKEN = "t" * 43
AUTH = {"Authorization": f"Bearer {TOKEN}"}


class TestBridgeServer(AioHTTPTestCase):
    async def get_application(self):
        self.tmpdir = tempfile.mkdtemp()
        root = Path(self.tmpdir)
        config = SeamlessAgentConfig(
            storage_dir=root / "storage",
            mcp_config_path=root / "mcp_config.json",
            register_mcp=False,
            view_init_timeout=0.05,
            workspace_root=root,
            terminal_fallback=False,
        )
        self.agent = SeamlessAgent(config, token=TOKEN)
        return self.agent.server.app

    async def asyncTearDown(self):
        self.agent.broker.shutdown()
        self.agent.plan_reviews.shutdown()
        await super().asyncTearDown()
        self.agent.stores.close()

    async def _wait_for(self, predicate) -> None:
        for _ in range(200):
            if predicate():
                return
            await asyncio.sleep(0.01)
        raise AssertionError("condition not met before timeout")

    async def test_health_needs_no_token(self):
        resp = await self.client.get("/health")
        assert resp.status == 200
        data = await resp.json()
        assert data["status"] == "ok"

    async def test_missing_or_wrong_token_is_unauthorized(self):
        resp = await self.client.post("/ask_user", json={"question": "Hi?"})
        assert resp.status == 401
        assert resp.headers["WWW-Authenticate"] == "Bearer"
        assert (await resp.json()) == {"error": "Unauthorized"}

        wrong = {"Authorization": "Bearer " + "x" * len(TOKEN)}
        resp = await self.client.post("/ask_user", json={"question": "Hi?"}, headers=wrong)
        assert resp.status == 401

        resp = await self.client.get("/events")
        assert resp.status == 401

    async def test_fallback_token_header_is_accepted(self):
        resp = await self.client.post(
            "/create_task_list",
            json={"title": "Via header"},
            headers={"X-Seamless-Agent-Token": TOKEN},
        )
        assert resp.status == 200
        assert (await resp.json())["created"] is True

    async def test_non_json_content_type_is_rejected(self):
        resp = await self.client.post(
            "/ask_user",
            data="question=Hi",
            headers={**AUTH, "Content-Type": "application/x-www-form-urlencoded"},
        )
        assert resp.status == 415

    async def test_oversized_body_is_rejected(self):
        resp = await self.client.post(
            "/ask_user",
            json={"question": "x" * (MAX_REQUEST_BODY_BYTES + 1)},
            headers=AUTH,
        )
        assert resp.status == 413
        assert self.agent.broker.pending_count == 0

    async def test_invalid_json_and_missing_field(self):
        headers = {**AUTH, "Content-Type": "application/json"}
        resp = await self.client.post("/ask_user", data="{not json", headers=headers)
        assert resp.status == 400
        assert (await resp.json()) == {"error": "Invalid JSON body"}

        resp = await self.client.post("/ask_user", data="[1, 2]", headers=headers)
        assert resp.status == 400

        resp = await self.client.post("/plan_review", json={"title": "No plan"}, headers=AUTH)
        assert resp.status == 400
        assert (await resp.json()) == {"error": "Missing required field: plan"}

    async def test_unknown_route_is_json_404(self):
        resp = await self.client.get("/nowhere", headers=AUTH)
        assert resp.status == 404
        assert (await resp.json()) == {"error": "Not found"}

    async def test_ask_user_without_console_reports_view_unavailable(self):
        resp = await self.client.post("/ask_user", json={"question": "Anyone?"}, headers=AUTH)
        assert resp.status == 200
        data = await resp.json()
        assert data["responded"] is False
        assert data["response"] == strings.VIEW_UNAVAILABLE

    async def test_ask_user_round_trip_through_console_messages(self):
        self.agent.channel.subscribe()

        async def ask():
            resp = await self.client.post(
                "/ask_user",
                json={"question": "Deploy to prod?", "agentName": "Builder"},
                headers=AUTH,
            )
            return resp.status, await resp.json()

        pending = asyncio.create_task(ask())
        await self._wait_for(lambda: self.agent.broker.pending_count == 1)
        request = self.agent.broker.list()[0]
        assert request.title == "Builder: Confirmation Required"

        resp = await self.client.post(
            "/ui/messages",
            json={"type": "submit", "requestId": request.id, "response": "Go ahead"},
            headers=AUTH,
        )
        assert resp.status == 200
        assert (await resp.json()) == {"status": "ok"}

        status, data = await pending
        assert status == 200
        assert data == {"responded": True, "response": "Go ahead", "attachments": []}

    async def test_plan_review_round_trip(self):
        self.agent.channel.subscribe()

        async def review():
            resp = await self.client.post("/plan_review", json={"plan": "# Plan\n1. Ship"}, headers=AUTH)
            return await resp.json()

        pending = asyncio.create_task(review())
        await self._wait_for(lambda: self.agent.stores.history.pending_plan_reviews())
        interaction_id = self.agent.stores.history.pending_plan_reviews()[0].id

        resp = await self.client.post(
            "/ui/messages",
            json={
                "type": "planReviewAction",
                "interactionId": interaction_id,
                "action": "recreateWithChanges",
                "comments": [{"revisedPart": "1. Ship", "revisorInstructions": "Test first"}],
            },
            headers=AUTH,
        )
        assert resp.status == 200

        data = await pending
        assert data["status"] == "recreateWithChanges"
        assert data["reviewId"] == interaction_id
        assert data["requiredRevisions"] == [{"revisedPart": "1. Ship", "revisorInstructions": "Test first"}]
        record = self.agent.stores.history.get(interaction_id)
        assert record.status is PlanReviewStatus.RECREATE_WITH_CHANGES

    async def test_task_list_tools(self):
        resp = await self.client.post(
            "/create_task_list",
            json={"title": "Ship", "tasks": [{"title": "Build"}]},
            headers=AUTH,
        )
        list_id = (await resp.json())["listId"]

        resp = await self.client.post("/get_next_task", json={"listId": list_id}, headers=AUTH)
        task = (await resp.json())["task"]

        resp = await self.client.post(
            "/update_task_status",
            json={"listId": list_id, "taskId": task["id"], "status": "completed"},
            headers=AUTH,
        )
        assert (await resp.json())["autoClosed"] is True

        resp = await self.client.post("/task_list", json={"operation": "read", "listId": list_id}, headers=AUTH)
        assert (await resp.json())["closed"] is True

        resp = await self.client.post("/get_next_task", json={}, headers=AUTH)
        assert resp.status == 200
        assert (await resp.json())["error"].startswith("Validation error:")

    async def test_bad_console_message_is_rejected(self):
        resp = await self.client.post("/ui/messages", json={"type": "selfDestruct"}, headers=AUTH)
        assert resp.status == 400
        assert "Unknown UI message type" in (await resp.json())["error"]


@pytest.mark.asyncio
async def test_cancelled_event_stream_unsubscribes_and_propagates() -> None:
    channel = ConsoleChannel()
    server = BridgeServer(MagicMock(), channel, TOKEN)
    request = make_mocked_request("GET", "/events", headers=AUTH)

    stream = asyncio.create_task(server._handle_sse(request))
    await wait_until(lambda: channel.subscriber_count == 1)
    stream.cancel()

    with pytest.raises(asyncio.CancelledError):
        await stream
    assert channel.subscriber_count == 0
