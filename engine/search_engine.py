"""Search orchestration against the slskd search network.

One call to ``SearchOrchestrator.search`` is one attempt: submit a query,
poll until the network finishes or a deadline passes, filter and rank the
responses, then walk the ranking until a response yields a valid file
selection. Retrying is the caller's job; a ``deferred`` result says another
attempt is worthwhile.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Sequence

from config.settings import FREE_SLOT_BONUS, UPLOAD_SPEED_BONUS_CAP_BYTES, UPLOAD_SPEED_BONUS_DIVISOR
from engine.audio_quality import calculate_average_quality_score, is_music_file
from engine.config import SearchConfig
from engine.errors import NetworkFailure, SearchCancelled
from engine.file_selection import select_for_response
from engine.json_utils import safe_json_dumps
from engine.search_query import build_query, query_for_attempt
from engine.types import CandidateResponse, RankedCandidate, SearchAttemptResult, SearchContext

logger = logging.getLogger(__name__)


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


def music_file_count(response: CandidateResponse) -> int:
    return sum(1 for f in response.files if is_music_file(f.filename))


def min_files_for(config: SearchConfig, kind: str) -> int:
    if kind == "track":
        return min(config.min_response_files, config.min_files_track)
    return config.min_response_files


class SearchOrchestrator:
    """Runs single search attempts.

    ``clock`` returns monotonic seconds and ``wait(seconds, stop_event)``
    sleeps, returning True when the stop event fired. Both are injectable so
    deadline behaviour can be exercised without real time passing.
    """

    def __init__(
        self,
        client,
        reputation=None,
        *,
        clock: Callable[[], float] = time.monotonic,
        wait: Callable[[float, threading.Event | None], bool] = _default_wait,
    ) -> None:
        self.client = client
        self.reputation = reputation
        self.clock = clock
        self.wait = wait

    def search(
        self,
        context: SearchContext,
        config: SearchConfig,
        *,
        attempt: int = 1,
        query: str | None = None,
        stop_event: threading.Event | None = None,
    ) -> SearchAttemptResult:
        if query is None or not query.strip():
            built = build_query(context, config.templates)
            query = query_for_attempt(built, attempt, config.retry.simplify_on_retry)
        else:
            query = query.strip()

        try:
            search_id = self.client.submit_search(query, search_timeout_ms=config.search_timeout_ms)
        except NetworkFailure as exc:
            _log_event(logging.WARNING, "slskd_search_submit_failed", query=query, attempt=attempt, error=str(exc))
            return SearchAttemptResult.failed(query=query)

        _log_event(logging.INFO, "slskd_search_submitted", query=query, search_id=search_id, attempt=attempt)
        responses = self._collect(search_id, config, stop_event)

        candidates = self._filter(responses, config, context.kind)
        if not candidates:
            retry = config.retry
            if retry.enabled and attempt < retry.max_attempts:
                _log_event(logging.INFO, "slskd_search_deferred", query=query, search_id=search_id, attempt=attempt)
                return SearchAttemptResult.deferred(query=query, search_id=search_id)
            _log_event(logging.INFO, "slskd_search_no_candidates", query=query, search_id=search_id, attempt=attempt)
            return SearchAttemptResult.failed(query=query, search_id=search_id)

        ranked = self.rank_responses(candidates, config)[: config.max_responses_to_eval]
        for candidate in ranked:
            selection = select_for_response(candidate.response, config, context.kind)
            if selection is None:
                _log_event(
                    logging.DEBUG,
                    "slskd_candidate_rejected",
                    username=candidate.response.username,
                    rank=candidate.rank,
                )
                continue
            _log_event(
                logging.INFO,
                "slskd_search_selected",
                query=query,
                search_id=search_id,
                username=candidate.response.username,
                directory=selection.directory,
                files=len(selection.files),
                score=candidate.score,
            )
            return SearchAttemptResult(
                status="success",
                query=query,
                search_id=search_id,
                response=candidate.response,
                selection=selection,
                ranked=tuple(ranked),
            )

        _log_event(logging.INFO, "slskd_search_no_valid_selection", query=query, search_id=search_id, ranked=len(ranked))
        return SearchAttemptResult.failed(query=query, search_id=search_id, ranked=ranked)

    def _collect(self, search_id, config, stop_event) -> tuple[CandidateResponse, ...]:
        try:
            responses, complete = self._poll(search_id, config, stop_event)
        except SearchCancelled:
            self._release(search_id)
            _log_event(logging.INFO, "slskd_search_cancelled", search_id=search_id)
            raise
        if not complete:
            self._release(search_id)
        return responses

    def _poll(self, search_id, config, stop_event):
        """Return ``(responses, complete)``.

        The soft deadline ends polling once something has arrived; the hard
        ceiling ends it regardless. No request is made at or past the ceiling.
        """
        started = self.clock()
        soft_deadline = started + config.search_timeout_ms / 1000.0
        hard_deadline = started + config.max_wait_ms / 1000.0
        interval = config.poll_interval_ms / 1000.0
        responses: tuple[CandidateResponse, ...] = ()
        polls = 0

        while True:
            remaining = hard_deadline - self.clock()
            if remaining <= 0:
                break
            if self.wait(min(interval, remaining), stop_event):
                raise SearchCancelled(f"search {search_id} cancelled")
            if stop_event is not None and stop_event.is_set():
                raise SearchCancelled(f"search {search_id} cancelled")

            now = self.clock()
            if now >= hard_deadline:
                break
            try:
                state = self.client.poll_state(search_id)
            except NetworkFailure as exc:
                _log_event(logging.WARNING, "slskd_search_poll_failed", search_id=search_id, error=str(exc))
                return responses, False
            polls += 1
            responses = tuple(state.responses)
            if state.complete:
                _log_event(logging.DEBUG, "slskd_search_complete", search_id=search_id, polls=polls, responses=len(responses))
                return responses, True
            if responses and self.clock() >= soft_deadline:
                break

        _log_event(
            logging.INFO,
            "slskd_search_deadline",
            search_id=search_id,
            polls=polls,
            responses=len(responses),
            elapsed_ms=int((self.clock() - started) * 1000),
        )
        return responses, False

    def _release(self, search_id) -> None:
        try:
            self.client.cancel_search(search_id)
        except NetworkFailure as exc:
            _log_event(logging.WARNING, "slskd_search_release_failed", search_id=search_id, error=str(exc))

    def _filter(self, responses, config, kind) -> list[CandidateResponse]:
        candidates = list(responses)
        if self.reputation is not None:
            candidates = self.reputation.filter_by_reputation(candidates)
        min_files = min_files_for(config, kind)
        return [r for r in candidates if music_file_count(r) >= min_files]

    def rank_responses(self, responses: Sequence[CandidateResponse], config: SearchConfig) -> list[RankedCandidate]:
        """Order responses best-first. Ties keep the network's listing order."""
        scored = []
        for response in responses:
            music_files = [f for f in response.files if is_music_file(f.filename)]
            quality = calculate_average_quality_score(music_files, config.quality_preferences)
            bonus = self.reputation.score_bonus(response.username) if self.reputation is not None else 0
            score = float(quality + bonus)
            if response.has_free_upload_slot:
                score += FREE_SLOT_BONUS
            speed = max(0, int(response.upload_speed or 0))
            score += min(speed, UPLOAD_SPEED_BONUS_CAP_BYTES) / UPLOAD_SPEED_BONUS_DIVISOR
            scored.append((response, score, quality, bonus))

        scored.sort(key=lambda item: item[1], reverse=True)
        return [
            RankedCandidate(response=response, score=score, quality_score=quality, reputation_bonus=bonus, rank=index)
            for index, (response, score, quality, bonus) in enumerate(scored, start=1)
        ]
