"""Size-bounded, disk-persisted log of ask_user and plan_review records.

Completed records are trimmed to the newest ``max_interactions``.
Pending plan reviews are never trimmed: an agent may still be waiting
on them.

Safe for single-event-loop use only (no locking).
"""
from __future__ import annotations

import logging
from pathlib import Path

from ..models import (
    AskUserInteraction,
    PlanReviewInteraction,
    PlanReviewMode,
    PlanReviewStatus,
    RequiredRevision,
    StoredInteraction,
    interaction_from_dict,
    new_id,
)
from .json_store import JsonDocumentStore

logger = logging.getLogger(__name__)

MAX_INTERACTIONS = 50
HISTORY_FILENAME = "interaction_history.json"


class InteractionHistoryLog:
    """Ordered interaction records keyed by id."""

    def __init__(self, store: JsonDocumentStore, max_interactions: int = MAX_INTERACTIONS) -> None:
        self._store = store
        self._max = max_interactions
        self._records: dict[str, StoredInteraction] = {}
        self._loaded = False

    @classmethod
    def open(cls, storage_dir: Path, max_interactions: int = MAX_INTERACTIONS) -> InteractionHistoryLog:
        """Construct a log backed by ``<storage_dir>/interaction_history.json`` and load it."""
        log = cls(JsonDocumentStore(storage_dir / HISTORY_FILENAME), max_interactions)
        log.load()
        return log

    def load(self) -> None:
        if self._loaded:
            raise RuntimeError("InteractionHistoryLog is already loaded")
        self._loaded = True
        raw = self._store.load()
        if raw is None:
            return
        items = raw.get("interactions") if isinstance(raw, dict) else raw
        if not isinstance(items, list):
            logger.warning("History file has unexpected shape, starting empty")
            return
        skipped = 0
        # Stored newest first; insert oldest first so dict order is append order.
        for item in reversed(items):
            try:
                record = interaction_from_dict(item)
            except (ValueError, TypeError, KeyError):
                skipped += 1
                continue
            self._records[record.id] = record
        if skipped:
            logger.warning("Skipped %d malformed history records", skipped)
        logger.info("Loaded %d history records", len(self._records))

    # ── Queries ──

    def get(self, interaction_id: str) -> StoredInteraction | None:
        return self._records.get(interaction_id)

    def all(self) -> list[StoredInteraction]:
        """Every record, newest first."""
        ordered = sorted(
            enumerate(self._records.values()),
            key=lambda pair: (pair[1].timestamp, pair[0]),
            reverse=True,
        )
        return [record for _, record in ordered]

    def completed(self) -> list[StoredInteraction]:
        """Records the human is done with: everything but pending plan reviews."""
        return [r for r in self.all() if not _is_pending_review(r)]

    def pending_plan_reviews(self) -> list[PlanReviewInteraction]:
        return [r for r in self.all() if _is_pending_review(r)]

    def __len__(self) -> int:
        return len(self._records)

    # ── Mutations ──

    def append(self, record: StoredInteraction) -> None:
        self._records[record.id] = record
        self._trim()
        self._persist()

    def record_ask_user(self, record: AskUserInteraction) -> None:
        logger.debug("History ask_user id=%s status=%s", record.id[:12], record.status.value)
        self.append(record)

    def save_plan_review(
        self,
        plan: str,
        title: str,
        mode: PlanReviewMode,
        chat_id: str | None = None,
    ) -> PlanReviewInteraction:
        """Persist a new pending plan review and return it."""
        record = PlanReviewInteraction(
            id=new_id("plan"),
            plan=plan,
            title=title,
            mode=mode,
            chat_id=chat_id,
        )
        self.append(record)
        return record

    def update_plan_review(
        self,
        interaction_id: str,
        status: PlanReviewStatus,
        required_revisions: list[RequiredRevision] | None = None,
    ) -> PlanReviewInteraction | None:
        record = self._records.get(interaction_id)
        if not isinstance(record, PlanReviewInteraction):
            return None
        record.status = status
        if required_revisions is not None:
            record.required_revisions = list(required_revisions)
        self._trim()
        self._persist()
        return record

    def delete(self, interaction_id: str) -> bool:
        if self._records.pop(interaction_id, None) is None:
            return False
        self._persist()
        return True

    def clear(self) -> None:
        """Drop every record except plan reviews an agent is still waiting on."""
        self._records = {
            r.id: r for r in self._records.values() if _is_pending_review(r)
        }
        self._persist()

    def _trim(self) -> None:
        finished = self.completed()
        if len(finished) <= self._max:
            return
        for record in finished[self._max:]:
            del self._records[record.id]

    def _persist(self) -> None:
        self._store.save({"interactions": [r.to_dict() for r in self.all()]})

    def flush(self) -> None:
        self._store.flush()

    def close(self) -> None:
        self._store.close()


def _is_pending_review(record: StoredInteraction) -> bool:
    return (
        isinstance(record, PlanReviewInteraction)
        and record.status is PlanReviewStatus.PENDING
    )
