"""Public entry points of the acquisition engine.

``AcquisitionService`` wires the query builder, search orchestrator,
reputation tracker, selection cache and download worker together and is the
only object the web layer talks to.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

from db.slskd_users import ReputationRecord, SlskdUserStore
from download.worker import DownloadJob, DownloadWorker
from engine.config import EngineConfig, SearchConfig
from engine.errors import (
    AcquisitionError,
    InvalidInputError,
    NoCandidatesError,
    SearchCancelled,
    http_status_for,
)
from engine.file_selection import select_for_response
from engine.json_utils import safe_json_dumps
from engine.paths import DB_PATH
from engine.search_engine import SearchOrchestrator
from engine.search_query import BuiltQuery, query_for_attempt
from engine.selection_cache import InteractiveSelectionCache, PendingSelection
from engine.slskd_client import get_slskd_client
from engine.types import RankedCandidate, SearchAttemptResult, SearchContext
from engine.user_reputation import FailureOutcome, SuccessOutcome, UserReputationService

logger = logging.getLogger(__name__)

ACTION_SELECT = "select"
ACTION_SKIP = "skip"
ACTION_RETRY = "retry_search"
ACTION_AUTO_SELECT = "auto_select"
_ACTION_ALIASES = {
    "select": ACTION_SELECT,
    "skip": ACTION_SKIP,
    "retry": ACTION_RETRY,
    "retry_search": ACTION_RETRY,
    "retrySearch": ACTION_RETRY,
    "auto": ACTION_AUTO_SELECT,
    "auto_select": ACTION_AUTO_SELECT,
    "autoSelect": ACTION_AUTO_SELECT,
}


def _log_event(level, message, **fields):
    payload = {"message": message, **fields}
    try:
        logger.log(level, safe_json_dumps(payload, sort_keys=True))
    except Exception as exc:
        logger.log(level, f"log_event_serialization_failed: {exc} message={message}")


def _default_wait(seconds: float, stop_event: threading.Event | None) -> bool:
    if stop_event is not None:
        return stop_event.wait(seconds)
    time.sleep(seconds)
    return False


@dataclass(frozen=True)
class ResolutionResult:
    action: str
    error: str | None = None
    message: str | None = None
    job: DownloadJob | None = None
    search: SearchAttemptResult | None = None
    pending: PendingSelection | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def http_status(self) -> int:
        return http_status_for(self.error)


def coerce_outcome(outcome: Any):
    """Accept outcome dataclasses or ``{"status": "success", ...}`` dicts."""
    if isinstance(outcome, (SuccessOutcome, FailureOutcome)):
        return outcome
    if isinstance(outcome, dict):
        status = str(outcome.get("status") or "").lower()
        if status == "success":
            return SuccessOutcome(
                bytes=int(outcome.get("bytes") or 0),
                speed=float(outcome.get("speed") or 0),
                quality_score=int(outcome.get("quality_score", outcome.get("qualityScore")) or 0),
            )
        if status == "failure":
            return FailureOutcome(reason=outcome.get("reason"))
    raise InvalidInputError("outcome must be a success or failure")


class AcquisitionService:
    def __init__(
        self,
        config: EngineConfig,
        *,
        client=None,
        reputation: UserReputationService | None = None,
        cache: InteractiveSelectionCache | None = None,
        worker: DownloadWorker | None = None,
        orchestrator: SearchOrchestrator | None = None,
        db_path: str | None = None,
        wait: Callable[[float, threading.Event | None], bool] = _default_wait,
    ) -> None:
        self.config = config
        self.client = client or get_slskd_client(config.connection)
        self.reputation = reputation or UserReputationService(
            SlskdUserStore(str(db_path or DB_PATH)),
            config.reputation,
        )
        self.cache = cache or InteractiveSelectionCache(timeout_seconds=config.selection.timeout_seconds)
        self.worker = worker or DownloadWorker(self.client, on_outcome=self.record_outcome)
        self.orchestrator = orchestrator or SearchOrchestrator(self.client, self.reputation)
        self.wait = wait

    def search_and_maybe_select(
        self,
        task_id: str,
        context: SearchContext,
        config: SearchConfig | None = None,
        *,
        auto_select: bool | None = None,
        stop_event: threading.Event | None = None,
    ) -> SearchAttemptResult:
        """Search with retries, then download the winner or stage the ranking.

        Raises ``SearchCancelled`` when ``stop_event`` fires; the task can be
        searched again later.
        """
        config = config or self.config.search
        if auto_select is None:
            auto_select = self.config.selection.mode == "auto"
        result = self._search_with_retries(task_id, context, config, stop_event=stop_event)
        self._apply(task_id, context, result, auto_select=auto_select)
        return result

    def _search_with_retries(
        self,
        task_id: str,
        context: SearchContext,
        config: SearchConfig,
        *,
        query: str | None = None,
        stop_event: threading.Event | None = None,
    ) -> SearchAttemptResult:
        """Run attempts until one is not deferred or the retry policy is spent.

        An explicit ``query`` is submitted as-is first and simplified on later
        attempts; otherwise each attempt renders its own query from ``context``.
        """
        retry = config.retry
        max_attempts = max(1, retry.max_attempts) if retry.enabled else 1
        built = BuiltQuery(primary=query.strip()) if query and query.strip() else None

        attempt = 1
        while True:
            attempt_query = query_for_attempt(built, attempt, retry.simplify_on_retry) if built else None
            result = self.orchestrator.search(context, config, attempt=attempt, query=attempt_query, stop_event=stop_event)
            if result.status != "deferred" or attempt >= max_attempts:
                break
            _log_event(logging.INFO, "acquisition_retry_scheduled", task_id=task_id, attempt=attempt, delay_ms=retry.delay_ms)
            if retry.delay_ms and self.wait(retry.delay_ms / 1000.0, stop_event):
                raise SearchCancelled(f"task {task_id} cancelled before attempt {attempt + 1}")
            attempt += 1
        return result

    def _apply(self, task_id: str, context: SearchContext, result: SearchAttemptResult, *, auto_select: bool) -> None:
        if result.succeeded and auto_select:
            try:
                self.worker.start(task_id, result.response.username, result.selection)
            except AcquisitionError as exc:
                _log_event(logging.WARNING, "acquisition_auto_select_failed", task_id=task_id, error=str(exc))
            else:
                self.cache.discard(task_id)
                return
        if result.ranked:
            self.cache.stage(task_id, result.ranked, context=context, query=result.query)
            return
        _log_event(logging.INFO, "acquisition_no_candidates", task_id=task_id, status=result.status, query=result.query)

    def get_pending_selection(self, task_id: str) -> PendingSelection | None:
        return self.cache.get_pending(task_id)

    def _choose(self, entry: PendingSelection, candidate: RankedCandidate, directory: str | None) -> DownloadJob:
        selection = select_for_response(candidate.response, self.config.search, entry.context.kind, directory)
        if selection is None:
            raise InvalidInputError(f"files offered by {candidate.response.username!r} do not satisfy the selection rules")
        return self.worker.start(entry.task_id, candidate.response.username, selection)

    def _retry(self, entry: PendingSelection, query: str) -> SearchAttemptResult:
        result = self._search_with_retries(entry.task_id, entry.context, self.config.search, query=query)
        self._apply(entry.task_id, entry.context, result, auto_select=self.config.selection.mode == "auto")
        if not result.ranked:
            raise NoCandidatesError(f"no candidates for task {entry.task_id} with query {result.query!r}")
        return result

    def resolve_selection(self, task_id: str, action: str, **params) -> ResolutionResult:
        """Resolve a pending selection. Failures come back as ``ResolutionResult.error``."""
        name = _ACTION_ALIASES.get(str(action or ""), str(action or ""))
        try:
            if name == ACTION_SELECT:
                username = str(params.get("username") or "").strip()
                if not username:
                    raise InvalidInputError("username is required")
                job = self.cache.select(task_id, username, params.get("directory"), self._choose)
                return ResolutionResult(action=name, job=job)
            if name == ACTION_SKIP:
                username = str(params.get("username") or "").strip()
                if not username:
                    raise InvalidInputError("username is required")
                remaining = self.cache.skip(task_id, username)
                return ResolutionResult(action=name, pending=remaining)
            if name == ACTION_RETRY:
                result = self.cache.retry_search(task_id, params.get("query"), self._retry)
                return ResolutionResult(action=name, search=result, pending=self.cache.get_pending(task_id))
            if name == ACTION_AUTO_SELECT:
                job = self.cache.auto_select_best(task_id, self._choose)
                return ResolutionResult(action=name, job=job)
            raise InvalidInputError(f"unknown action {action!r}")
        except AcquisitionError as exc:
            _log_event(logging.INFO, "selection_resolution_failed", task_id=task_id, action=name, error=exc.code)
            return ResolutionResult(action=name, error=exc.code, message=exc.message)

    def get_uploader_reputation(self, username: str) -> ReputationRecord:
        if not str(username or "").strip():
            raise InvalidInputError("username is required")
        return self.reputation.find_or_create_user(username)

    def record_outcome(self, username: str, outcome) -> ReputationRecord | None:
        outcome = coerce_outcome(outcome)
        if isinstance(outcome, SuccessOutcome):
            return self.reputation.record_success(username, outcome)
        return self.reputation.record_failure(username)
