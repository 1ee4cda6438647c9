from __future__ import annotations

import pytest

from seamless_agent.messages import (
    ClearHistory,
    PlanReviewAction,
    ShowQuestion,
    Submit,
    dict_to_message,
    dict_to_outbound,
    message_to_dict,
)
from seamless_agent.tui.client import parse_sse


def test_inbound_messages_use_camel_case_keys() -> None:
    message = dict_to_message({
        "type": "planReviewAction",
        "interactionId": "plan_1",
        "action": "approved",
        "panelId": 3,
        "unexpected": "ignored",
    })

    assert isinstance(message, PlanReviewAction)
    assert message.interaction_id == "plan_1"
    assert message.panel_id == 3


def test_unknown_or_malformed_messages_are_rejected() -> None:
    with pytest.raises(ValueError, match="Unknown UI message type"):
        dict_to_message({"type": "launchMissiles"})
    with pytest.raises(ValueError):
        dict_to_message(["submit"])
    # Outbound types are not accepted from the UI.
    with pytest.raises(ValueError):
        dict_to_message({"type": "showQuestion"})


def test_legacy_clear_chat_history_maps_to_clear_history() -> None:
    assert isinstance(dict_to_message({"type": "clearChatHistory"}), ClearHistory)


def test_outbound_serialisation_drops_none_fields() -> None:
    wire = message_to_dict(ShowQuestion(request_id="req_1", question="Q?", title="T"))

    assert wire["type"] == "showQuestion"
    assert wire["requestId"] == "req_1"
    assert "agentName" not in wire
    assert message_to_dict(Submit(request_id="req_1", response="a")) == {
        "type": "submit",
        "requestId": "req_1",
        "response": "a",
    }

    parsed = dict_to_outbound(wire)
    assert isinstance(parsed, ShowQuestion)
    assert parsed.question == "Q?"


def test_parse_sse_groups_events_and_skips_keepalives() -> None:
    lines = [
        "event: connected\n",
        'data: {"port": 1}\n',
        "\n",
        ": keepalive\n",
        "\n",
        "event: message\n",
        "data: line one\n",
        "data: line two\n",
        "\n",
        "data: unterminated\n",
    ]

    assert list(parse_sse(lines)) == [
        ("connected", '{"port": 1}'),
        ("message", "line one\nline two"),
    ]
