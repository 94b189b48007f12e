"""Pending interactive selections, keyed by task id.

An entry holds the ranked candidates of one search until a human (or the
auto-select fallback) resolves it, or until it expires. Every mutation of a
task's entry runs under that task's lock, so exactly one resolution wins and
later attempts see ``NotFoundError``. Expiry is checked on every read; an
entry past ``expires_at`` is purged and reported as ``ExpiredError`` by the
resolution operations.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from dataclasses import asdict, dataclass, replace
from typing import Any, Callable, TypeVar

from config.settings import MAX_STORED_SELECTION_RESULTS
from engine.audio_quality import get_dominant_quality_info
from engine.errors import AcquisitionError, ExpiredError, InvalidInputError, NotFoundError
from engine.json_utils import safe_json_dumps
from engine.keyed_locks import KeyedLocks
from engine.types import CandidateResponse, RankedCandidate, SearchContext

logger = logging.getLogger(__name__)

R = TypeVar("R")

DISPLAY_NAME_MAX_LENGTH = 50
_DISPLAY_STRIP_RE = re.compile(r"[<>&\"']")
# How long an expired task id keeps answering ExpiredError instead of NotFoundError.
EXPIRED_TOMBSTONE_SECONDS = 24 * 60 * 60


def _log_event(level, message, **fields):
    payload = {"message": message, **fields}
    try:
        logger.log(level, safe_json_dumps(payload, sort_keys=True))
    except Exception as exc:
        logger.log(level, f"log_event_serialization_failed: {exc} message={message}")


def sanitize_display_name(username: str | None) -> str:
    return _DISPLAY_STRIP_RE.sub("", str(username or ""))[:DISPLAY_NAME_MAX_LENGTH]


@dataclass(frozen=True)
class PendingSelection:
    task_id: str
    candidates: tuple[RankedCandidate, ...]
    query: str | None
    context: SearchContext
    created_at: float
    expires_at: float | None = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now > self.expires_at

    def find(self, username: str) -> RankedCandidate | None:
        # Exact match first; fall back to a case-insensitive one.
        for candidate in self.candidates:
            if candidate.response.username == username:
                return candidate
        wanted = str(username or "").lower()
        for candidate in self.candidates:
            if candidate.response.username.lower() == wanted:
                return candidate
        return None

    def without(self, username: str) -> "PendingSelection":
        match = self.find(username)
        remaining = tuple(c for c in self.candidates if c is not match)
        return replace(self, candidates=remaining)

    def to_record(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "query": self.query,
            "context": asdict(self.context),
            "candidates": [
                {
                    "response": c.response.to_payload(),
                    "score": c.score,
                    "quality_score": c.quality_score,
                    "reputation_bonus": c.reputation_bonus,
                    "rank": c.rank,
                }
                for c in self.candidates
            ],
            "created_at": self.created_at,
            "expires_at": self.expires_at,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "PendingSelection":
        candidates = tuple(
            RankedCandidate(
                response=CandidateResponse.from_payload(item["response"]),
                score=float(item.get("score") or 0.0),
                quality_score=int(item.get("quality_score") or 0),
                reputation_bonus=int(item.get("reputation_bonus") or 0),
                rank=int(item.get("rank") or 0),
            )
            for item in record.get("candidates") or []
        )
        expires_at = record.get("expires_at")
        return cls(
            task_id=str(record["task_id"]),
            candidates=candidates,
            query=record.get("query"),
            context=SearchContext(**record["context"]),
            created_at=float(record["created_at"]),
            expires_at=float(expires_at) if expires_at is not None else None,
        )

    def to_view(self) -> dict[str, Any]:
        """Public representation. Display names are sanitised; ``username`` stays the identity."""
        candidates = []
        for c in self.candidates:
            dominant = get_dominant_quality_info(c.response.files)
            candidates.append(
                {
                    "username": c.response.username,
                    "display_name": sanitize_display_name(c.response.username),
                    "rank": c.rank,
                    "score": c.score,
                    "file_count": len(c.response.files),
                    "total_bytes": sum(f.size or 0 for f in c.response.files),
                    "has_free_upload_slot": c.response.has_free_upload_slot,
                    "upload_speed": c.response.upload_speed,
                    "quality": asdict(dominant) if dominant else None,
                }
            )
        return {
            "task_id": self.task_id,
            "query": self.query,
            "context": asdict(self.context),
            "candidates": candidates,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
        }


class InMemorySelectionStore:
    def __init__(self) -> None:
        self._entries: dict[str, PendingSelection] = {}
        self._lock = threading.Lock()

    def get(self, task_id: str) -> PendingSelection | None:
        with self._lock:
            return self._entries.get(task_id)

    def put(self, entry: PendingSelection) -> None:
        with self._lock:
            self._entries[entry.task_id] = entry

    def delete(self, task_id: str) -> bool:
        with self._lock:
            return self._entries.pop(task_id, None) is not None

    def task_ids(self) -> list[str]:
        with self._lock:
            return list(self._entries)


class InteractiveSelectionCache:
    def __init__(
        self,
        store=None,
        *,
        timeout_seconds: int | None = None,
        max_candidates: int = MAX_STORED_SELECTION_RESULTS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store if store is not None else InMemorySelectionStore()
        self.timeout_seconds = timeout_seconds
        self.max_candidates = max_candidates
        self.clock = clock
        self._locks = KeyedLocks(threading.RLock)
        self._expired: dict[str, float] = {}
        self._expired_guard = threading.Lock()

    def _prune_tombstones(self, now: float) -> None:
        with self._expired_guard:
            for task_id, expired_at in list(self._expired.items()):
                if now - expired_at > EXPIRED_TOMBSTONE_SECONDS:
                    del self._expired[task_id]

    def _purge(self, entry: PendingSelection, now: float) -> None:
        self.store.delete(entry.task_id)
        with self._expired_guard:
            self._expired[entry.task_id] = now
        _log_event(logging.INFO, "selection_expired", task_id=entry.task_id)

    def _live_entry(self, task_id: str) -> PendingSelection | None:
        now = self.clock()
        self._prune_tombstones(now)
        entry = self.store.get(task_id)
        if entry is None:
            return None
        if entry.is_expired(now):
            self._purge(entry, now)
            return None
        return entry

    def _require(self, task_id: str) -> PendingSelection:
        now = self.clock()
        self._prune_tombstones(now)
        entry = self.store.get(task_id)
        if entry is not None and entry.is_expired(now):
            self._purge(entry, now)
            raise ExpiredError(f"selection for task {task_id} has expired")
        if entry is None:
            with self._expired_guard:
                expired_at = self._expired.get(task_id)
            if expired_at is not None:
                raise ExpiredError(f"selection for task {task_id} has expired")
            raise NotFoundError(f"no pending selection for task {task_id}")
        return entry

    def _forget(self, task_id: str) -> None:
        self.store.delete(task_id)
        with self._expired_guard:
            self._expired.pop(task_id, None)

    def stage(
        self,
        task_id: str,
        candidates,
        *,
        context: SearchContext,
        query: str | None = None,
    ) -> PendingSelection:
        """Store ranked candidates for ``task_id``, superseding any previous entry."""
        if not task_id:
            raise InvalidInputError("task_id is required")
        ranked = tuple(candidates)[: self.max_candidates]
        if not ranked:
            raise InvalidInputError("cannot stage a selection without candidates")
        now = self.clock()
        expires_at = now + self.timeout_seconds if self.timeout_seconds else None
        entry = PendingSelection(
            task_id=task_id,
            candidates=ranked,
            query=query,
            context=context,
            created_at=now,
            expires_at=expires_at,
        )
        with self._locks.hold(task_id):
            self.store.put(entry)
            with self._expired_guard:
                self._expired.pop(task_id, None)
        _log_event(logging.INFO, "selection_staged", task_id=task_id, candidates=len(ranked), expires_at=expires_at)
        return entry

    def get_pending(self, task_id: str) -> PendingSelection | None:
        with self._locks.hold(task_id):
            return self._live_entry(task_id)

    def discard(self, task_id: str) -> bool:
        """Drop a superseded entry. Returns whether one was pending."""
        with self._locks.hold(task_id):
            existed = self.store.delete(task_id)
            with self._expired_guard:
                self._expired.pop(task_id, None)
        if existed:
            _log_event(logging.INFO, "selection_superseded", task_id=task_id)
        return existed

    def select(
        self,
        task_id: str,
        username: str,
        directory: str | None,
        choose: Callable[[PendingSelection, RankedCandidate, str | None], R],
    ) -> R:
        """Resolve the entry with ``username``'s offer.

        ``choose`` validates the offer and starts the download. If it raises,
        the entry stays pending.
        """
        with self._locks.hold(task_id):
            entry = self._require(task_id)
            candidate = entry.find(username)
            if candidate is None:
                raise InvalidInputError(f"{username!r} is not a candidate for task {task_id}")
            result = choose(entry, candidate, directory)
            self._forget(task_id)
        _log_event(logging.INFO, "selection_resolved", task_id=task_id, action="select", username=candidate.response.username)
        return result

    def skip(self, task_id: str, username: str) -> PendingSelection | None:
        """Drop one uploader. Returns the remaining entry, or None once it is empty."""
        with self._locks.hold(task_id):
            entry = self._require(task_id)
            if entry.find(username) is None:
                raise InvalidInputError(f"{username!r} is not a candidate for task {task_id}")
            remaining = entry.without(username)
            if remaining.candidates:
                self.store.put(remaining)
            else:
                self._forget(task_id)
                remaining = None
        _log_event(
            logging.INFO,
            "selection_skipped",
            task_id=task_id,
            username=username,
            remaining=len(remaining.candidates) if remaining else 0,
        )
        return remaining

    def retry_search(
        self,
        task_id: str,
        query: str | None,
        search: Callable[[PendingSelection, str], R],
    ) -> R:
        """Discard the entry and search again with ``query`` or the stored query.

        If ``search`` raises, the previous entry is put back unless the search
        already staged a new one.
        """
        with self._locks.hold(task_id):
            entry = self._require(task_id)
            self._forget(task_id)
            effective = (query or "").strip() or entry.query or ""
            _log_event(logging.INFO, "selection_resolved", task_id=task_id, action="retry", query=effective)
            # Held across the search so a concurrent resolution waits for the fresh entry.
            try:
                return search(entry, effective)
            except AcquisitionError:
                if self.store.get(task_id) is None:
                    self.store.put(entry)
                raise

    def auto_select_best(
        self,
        task_id: str,
        choose: Callable[[PendingSelection, RankedCandidate, str | None], R],
    ) -> R:
        with self._locks.hold(task_id):
            entry = self._require(task_id)
            best = entry.candidates[0]
            return self.select(task_id, best.response.username, None, choose)

    def sweep_expired(self) -> list[str]:
        """Purge every expired entry; returns the purged task ids."""
        purged = []
        for task_id in list(self.store.task_ids()):
            with self._locks.hold(task_id):
                entry = self.store.get(task_id)
                now = self.clock()
                if entry is not None and entry.is_expired(now):
                    self._purge(entry, now)
                    purged.append(task_id)
        self._prune_tombstones(self.clock())
        return purged
