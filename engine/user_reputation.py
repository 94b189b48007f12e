"""Per-uploader reputation tracking.

Download outcomes move an uploader's record through a small state machine.
Only ``neutral`` uploaders are promoted automatically: enough successes make
them ``trusted`` and enough failures make them ``flagged``. Every other
transition, including blocking, is a manual action.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Iterable, Sequence

from config.settings import TRUSTED_USER_BONUS
from db.slskd_users import ReputationRecord, SlskdUserStore, normalize_username
from engine.config import ReputationSettings
from engine.errors import InvalidInputError
from engine.json_utils import safe_json_dumps
from engine.keyed_locks import KeyedLocks
from engine.types import USER_STATUSES, CandidateResponse

logger = logging.getLogger(__name__)

EXPORT_STATUSES = ("trusted", "blocked", "flagged")


def _log_event(level, message, **fields):
    payload = {"message": message, **fields}
    try:
        logger.log(level, safe_json_dumps(payload, sort_keys=True))
    except Exception as exc:
        logger.log(level, f"log_event_serialization_failed: {exc} message={message}")


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _running_mean(previous: int, count: int, value: float) -> int:
    """Count-weighted mean of ``count`` prior values and one new one, rounded half up.

    The first value is rounded as well, so a record only ever holds whole
    bytes per second and whole quality points, matching its INTEGER columns.
    """
    if count <= 0:
        return math.floor(value + 0.5)
    return math.floor((previous * count + value) / (count + 1) + 0.5)


@dataclass(frozen=True)
class SuccessOutcome:
    bytes: int = 0
    speed: float = 0
    quality_score: int = 0


@dataclass(frozen=True)
class FailureOutcome:
    reason: str | None = None


@dataclass(frozen=True)
class UserPage:
    items: list[ReputationRecord]
    total: int


class UserReputationService:
    def __init__(self, store: SlskdUserStore, settings: ReputationSettings | None = None) -> None:
        self.store = store
        self.settings = settings or ReputationSettings()
        self._locks = KeyedLocks()

    @property
    def enabled(self) -> bool:
        return bool(self.settings.enabled)

    def find_or_create_user(self, username: str) -> ReputationRecord:
        return self.store.find_or_create(username)

    def get_user(self, user_id: str) -> ReputationRecord | None:
        return self.store.get_by_id(user_id)

    def get_user_by_username(self, username: str) -> ReputationRecord | None:
        return self.store.get_by_username(username)

    def record_success(self, username: str, outcome: SuccessOutcome) -> ReputationRecord | None:
        if not self.enabled:
            return None
        name = normalize_username(username)
        if not name:
            raise InvalidInputError("username is required")
        threshold = self.settings.auto_trust_threshold
        track_quality = self.settings.track_quality

        def _apply(record: ReputationRecord) -> ReputationRecord:
            count = record.success_count
            new_count = count + 1
            average_speed = _running_mean(record.average_speed, count, outcome.speed)
            quality = record.quality_score
            if track_quality:
                quality = _running_mean(quality, count, outcome.quality_score)
            status = record.status
            if status == "neutral" and new_count >= threshold:
                status = "trusted"
            return replace(
                record,
                success_count=new_count,
                total_bytes=int(record.total_bytes) + int(outcome.bytes or 0),
                average_speed=average_speed,
                quality_score=max(0, min(100, quality)),
                status=status,
                last_seen_at=_utc_now(),
            )

        with self._locks.hold(name):
            before = self.store.get_by_username(name)
            record = self.store.mutate(name, _apply)

        if record.status == "trusted" and (before is None or before.status == "neutral"):
            _log_event(logging.INFO, "reputation_auto_trusted", username=name, success_count=record.success_count)
        _log_event(
            logging.DEBUG,
            "reputation_success_recorded",
            username=name,
            success_count=record.success_count,
            bytes=outcome.bytes,
            speed=outcome.speed,
            quality_score=outcome.quality_score,
        )
        return record

    def record_failure(self, username: str) -> ReputationRecord | None:
        if not self.enabled:
            return None
        name = normalize_username(username)
        if not name:
            raise InvalidInputError("username is required")
        threshold = self.settings.auto_flag_threshold

        def _apply(record: ReputationRecord) -> ReputationRecord:
            new_count = record.failure_count + 1
            status = record.status
            # Failures flag but never block; blocking needs manual review.
            if status == "neutral" and new_count >= threshold:
                status = "flagged"
            return replace(record, failure_count=new_count, status=status, last_seen_at=_utc_now())

        with self._locks.hold(name):
            before = self.store.get_by_username(name)
            record = self.store.mutate(name, _apply)

        if record.status == "flagged" and (before is None or before.status == "neutral"):
            _log_event(logging.INFO, "reputation_auto_flagged", username=name, failure_count=record.failure_count)
        _log_event(logging.DEBUG, "reputation_failure_recorded", username=name, failure_count=record.failure_count)
        return record

    def is_blocked(self, username: str) -> bool:
        if not self.enabled:
            return False
        record = self.store.get_by_username(username)
        return record is not None and record.status == "blocked"

    def score_bonus(self, username: str) -> int:
        if not self.enabled:
            return 0
        record = self.store.get_by_username(username)
        return TRUSTED_USER_BONUS if record is not None and record.status == "trusted" else 0

    def filter_by_reputation(self, responses: Sequence[CandidateResponse]) -> list[CandidateResponse]:
        responses = list(responses)
        if not self.enabled:
            return responses
        blocked = set(self.store.usernames_with_status("blocked"))
        if not blocked:
            return responses
        filtered = [r for r in responses if normalize_username(r.username) not in blocked]
        if len(filtered) < len(responses):
            _log_event(
                logging.INFO,
                "reputation_filtered_blocked",
                original=len(responses),
                filtered=len(filtered),
                removed=len(responses) - len(filtered),
            )
        return filtered

    def update_status(self, user_id: str, status: str, notes: str | None = None) -> ReputationRecord | None:
        if status not in USER_STATUSES:
            raise InvalidInputError(f"status must be one of {', '.join(USER_STATUSES)}")
        changes = {"status": status}
        if notes is not None:
            changes["notes"] = notes
        record = self.store.update(user_id, **changes)
        if record is not None:
            _log_event(logging.INFO, "reputation_status_updated", username=record.username, status=status)
        return record

    def reset_user(self, user_id: str) -> ReputationRecord | None:
        return self.update_status(user_id, "neutral")

    def delete_user(self, user_id: str) -> bool:
        return self.store.delete(user_id)

    def get_users(
        self,
        *,
        status: str | None = None,
        search: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> UserPage:
        if status is not None and status not in USER_STATUSES:
            raise InvalidInputError(f"status must be one of {', '.join(USER_STATUSES)}")
        items, total = self.store.list_users(status=status, search=search, limit=limit, offset=offset)
        return UserPage(items=items, total=total)

    def get_stats(self) -> dict[str, int]:
        counts = self.store.count_by_status()
        return {"total": sum(counts.values()), **counts}

    def bulk_update_status(self, user_ids: Iterable[str], status: str) -> int:
        if status not in USER_STATUSES:
            raise InvalidInputError(f"status must be one of {', '.join(USER_STATUSES)}")
        count = self.store.bulk_update_status(user_ids, status)
        _log_event(logging.INFO, "reputation_bulk_status_updated", count=count, status=status)
        return count

    def export_users(self) -> dict[str, list[str]]:
        return {status: self.store.usernames_with_status(status) for status in EXPORT_STATUSES}

    def import_users(self, data: dict) -> dict[str, int]:
        """Apply exported lists. Users already holding the listed status are skipped."""
        if not isinstance(data, dict):
            raise InvalidInputError("import payload must be an object")
        imported = 0
        updated = 0
        for status in EXPORT_STATUSES:
            usernames = data.get(status) or []
            if not isinstance(usernames, list):
                raise InvalidInputError(f"{status} must be a list of usernames")
            for raw in usernames:
                name = normalize_username(raw if isinstance(raw, str) else "")
                if not name:
                    continue
                with self._locks.hold(name):
                    existing = self.store.get_by_username(name)
                    if existing is None:
                        self.store.create(name, status)
                        imported += 1
                    elif existing.status != status:
                        self.store.update(existing.id, status=status)
                        updated += 1
        _log_event(logging.INFO, "reputation_users_imported", imported=imported, updated=updated)
        return {"imported": imported, "updated": updated}
