from __future__ import annotations

import json

import pytest

from seamless_agent.models import (
    AskUserInteraction,
    AskUserStatus,
    PlanReviewMode,
    PlanReviewStatus,
)
from seamless_agent.storage.history import HISTORY_FILENAME, InteractionHistoryLog


def _ask(n: int) -> AskUserInteraction:
    return AskUserInteraction(
        id=f"ask_{n}",
        timestamp=1_700_000_000_000 + n,
        question=f"Question {n}?",
        title="Agent: Confirmation Required",
        response=f"answer {n}",
    )


def test_completed_records_are_trimmed_to_the_newest(tmp_path) -> None:
    log = InteractionHistoryLog.open(tmp_path, max_interactions=3)
    for n in range(5):
        log.record_ask_user(_ask(n))

    assert [r.id for r in log.all()] == ["ask_4", "ask_3", "ask_2"]
    log.close()


def test_pending_plan_reviews_survive_trimming(tmp_path) -> None:
    log = InteractionHistoryLog.open(tmp_path, max_interactions=2)
    review = log.save_plan_review("# Plan", "Plan Review", PlanReviewMode.REVIEW)
    for n in range(4):
        log.record_ask_user(_ask(n))

    assert log.get(review.id) is not None
    assert len(log.completed()) == 2
    assert [r.id for r in log.pending_plan_reviews()] == [review.id]

    log.update_plan_review(review.id, PlanReviewStatus.APPROVED)
    assert log.pending_plan_reviews() == []
    assert len(log.completed()) == 2
    log.close()


def test_records_persist_across_reopen(tmp_path) -> None:
    log = InteractionHistoryLog.open(tmp_path)
    log.record_ask_user(_ask(1))
    review = log.save_plan_review("# Walk", "Walkthrough Review", PlanReviewMode.WALKTHROUGH, chat_id="chat-9")
    log.close()

    data = json.loads((tmp_path / HISTORY_FILENAME).read_text(encoding="utf-8"))
    assert {item["id"] for item in data["interactions"]} == {"ask_1", review.id}

    reopened = InteractionHistoryLog.open(tmp_path)
    restored = reopened.get(review.id)
    assert restored.mode is PlanReviewMode.WALKTHROUGH
    assert restored.chat_id == "chat-9"
    assert reopened.get("ask_1").status is AskUserStatus.COMPLETED
    reopened.close()


def test_corrupt_file_starts_empty(tmp_path) -> None:
    (tmp_path / HISTORY_FILENAME).write_text("{not json", encoding="utf-8")

    log = InteractionHistoryLog.open(tmp_path)

    assert len(log) == 0
    log.close()


def test_malformed_records_are_skipped(tmp_path) -> None:
    good = _ask(1).to_dict()
    (tmp_path / HISTORY_FILENAME).write_text(
        json.dumps({"interactions": [good, {"type": "ask_user"}, {"id": "x", "type": "bogus"}]}),
        encoding="utf-8",
    )

    log = InteractionHistoryLog.open(tmp_path)

    assert [r.id for r in log.all()] == ["ask_1"]
    log.close()


def test_clear_keeps_reviews_still_waiting(tmp_path) -> None:
    log = InteractionHistoryLog.open(tmp_path)
    log.record_ask_user(_ask(1))
    review = log.save_plan_review("# Plan", "Plan Review", PlanReviewMode.REVIEW)

    log.clear()

    assert [r.id for r in log.all()] == [review.id]
    assert log.delete(review.id) is True
    assert log.delete(review.id) is False
    log.close()


def test_load_twice_is_an_error(tmp_path) -> None:
    log = InteractionHistoryLog.open(tmp_path)
    with pytest.raises(RuntimeError):
        log.load()
    log.close()


def test_update_of_unknown_or_ask_user_record_returns_none(tmp_path) -> None:
    log = InteractionHistoryLog.open(tmp_path)
    log.record_ask_user(_ask(1))

    assert log.update_plan_review("ask_1", PlanReviewStatus.APPROVED) is None
    assert log.update_plan_review("plan_missing", PlanReviewStatus.APPROVED) is None
    log.close()
