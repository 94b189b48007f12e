import threading

import pytest
from conftest import make_album

from engine.errors import ExpiredError, InvalidInputError, NoCandidatesError, NotFoundError
from engine.selection_cache import (
    EXPIRED_TOMBSTONE_SECONDS,
    InteractiveSelectionCache,
    PendingSelection,
    sanitize_display_name,
)
from engine.types import RankedCandidate, SearchContext

CONTEXT = SearchContext(artist="Artist", album="Album")


def _ranked(*usernames):
    return [
        RankedCandidate(
            response=make_album(name, f"Share\\{name}", count=3),
            score=100.0 - i,
            quality_score=0,
            reputation_bonus=0,
            rank=i + 1,
        )
        for i, name in enumerate(usernames)
    ]


def _choose(entry, candidate, directory):
    return (candidate.response.username, directory)


@pytest.fixture
def cache(clock):
    return InteractiveSelectionCache(timeout_seconds=60, clock=clock)


def test_stage_and_read_back(cache, clock) -> None:
    entry = cache.stage("t1", _ranked("a", "b"), context=CONTEXT, query="Artist Album")
    assert entry.created_at == clock()
    assert entry.expires_at == clock() + 60
    pending = cache.get_pending("t1")
    assert [c.response.username for c in pending.candidates] == ["a", "b"]
    assert cache.get_pending("unknown") is None


def test_stage_requires_candidates(cache) -> None:
    with pytest.raises(InvalidInputError):
        cache.stage("t1", [], context=CONTEXT)


def test_stage_caps_candidates(clock) -> None:
    cache = InteractiveSelectionCache(clock=clock)
    entry = cache.stage("t1", _ranked(*[f"user{i}" for i in range(20)]), context=CONTEXT)
    assert len(entry.candidates) == 15
    assert entry.expires_at is None
    assert entry.candidates[0].response.username == "user0"


def test_restaging_supersedes_previous_entry(cache) -> None:
    cache.stage("t1", _ranked("a"), context=CONTEXT)
    cache.stage("t1", _ranked("z"), context=CONTEXT)
    assert [c.response.username for c in cache.get_pending("t1").candidates] == ["z"]


def test_expired_entry_is_purged_and_reported(cache, clock) -> None:
    cache.stage("t1", _ranked("a"), context=CONTEXT)
    clock.advance(61)
    assert cache.get_pending("t1") is None
    with pytest.raises(ExpiredError):
        cache.select("t1", "a", None, _choose)
    with pytest.raises(ExpiredError):
        cache.skip("t1", "a")


def test_expiry_detected_by_resolution_without_prior_read(cache, clock) -> None:
    cache.stage("t1", _ranked("a"), context=CONTEXT)
    clock.advance(60)
    assert cache.get_pending("t1") is not None
    clock.advance(1)
    with pytest.raises(ExpiredError):
        cache.auto_select_best("t1", _choose)


def test_unknown_task_is_not_found(cache) -> None:
    with pytest.raises(NotFoundError):
        cache.select("missing", "a", None, _choose)
    with pytest.raises(NotFoundError):
        cache.retry_search("missing", None, lambda entry, query: None)


def test_select_resolves_exactly_once(cache) -> None:
    cache.stage("t1", _ranked("Alice", "bob"), context=CONTEXT)
    assert cache.select("t1", "alice", "Share\\Alice", _choose) == ("Alice", "Share\\Alice")
    assert cache.get_pending("t1") is None
    with pytest.raises(NotFoundError):
        cache.select("t1", "bob", None, _choose)


def test_select_unknown_user_keeps_entry(cache) -> None:
    cache.stage("t1", _ranked("a"), context=CONTEXT)
    with pytest.raises(InvalidInputError):
        cache.select("t1", "nobody", None, _choose)
    assert cache.get_pending("t1") is not None


def test_failed_choice_leaves_entry_pending(cache) -> None:
    cache.stage("t1", _ranked("a"), context=CONTEXT)

    def _broken(entry, candidate, directory):
        raise InvalidInputError("no valid files")

    with pytest.raises(InvalidInputError):
        cache.select("t1", "a", None, _broken)
    assert cache.get_pending("t1") is not None


def test_concurrent_selects_have_a_single_winner(cache) -> None:
    cache.stage("t1", _ranked("a", "b"), context=CONTEXT)
    outcomes = []
    barrier = threading.Barrier(2)

    def _worker(username):
        barrier.wait()
        try:
            outcomes.append(cache.select("t1", username, None, _choose))
        except NotFoundError as exc:
            outcomes.append(exc)

    threads = [threading.Thread(target=_worker, args=(name,)) for name in ("a", "b")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sum(1 for o in outcomes if isinstance(o, tuple)) == 1
    assert sum(1 for o in outcomes if isinstance(o, NotFoundError)) == 1


def test_skip_until_empty(cache) -> None:
    cache.stage("t1", _ranked("a", "b"), context=CONTEXT)
    remaining = cache.skip("t1", "A")
    assert [c.response.username for c in remaining.candidates] == ["b"]
    assert cache.skip("t1", "b") is None
    assert cache.get_pending("t1") is None
    with pytest.raises(NotFoundError):
        cache.skip("t1", "b")


def test_auto_select_best_takes_top_candidate(cache) -> None:
    cache.stage("t1", _ranked("top", "second"), context=CONTEXT)
    assert cache.auto_select_best("t1", _choose) == ("top", None)


def test_retry_search_uses_stored_or_new_query(cache) -> None:
    seen = []
    cache.stage("t1", _ranked("a"), context=CONTEXT, query="Artist Album")
    cache.retry_search("t1", "  ", lambda entry, query: seen.append((entry.task_id, query)))
    cache.stage("t2", _ranked("a"), context=CONTEXT, query="Artist Album")
    cache.retry_search("t2", "Artist", lambda entry, query: seen.append((entry.task_id, query)))
    assert seen == [("t1", "Artist Album"), ("t2", "Artist")]
    assert cache.get_pending("t1") is None


def test_sweep_expired(cache, clock) -> None:
    cache.stage("old", _ranked("a"), context=CONTEXT)
    clock.advance(30)
    cache.stage("new", _ranked("a"), context=CONTEXT)
    clock.advance(31)
    assert cache.sweep_expired() == ["old"]
    assert cache.get_pending("new") is not None
    with pytest.raises(ExpiredError):
        cache.select("old", "a", None, _choose)


def test_task_locks_are_released_after_use(cache) -> None:
    for i in range(1000):
        assert cache.get_pending(f"missing-{i}") is None
    assert len(cache._locks) == 0

    cache.stage("t1", _ranked("a", "b"), context=CONTEXT)
    cache.skip("t1", "a")
    cache.auto_select_best("t1", _choose)
    with pytest.raises(NotFoundError):
        cache.select("t1", "b", None, _choose)
    assert len(cache._locks) == 0


def test_stale_tombstones_are_pruned_without_a_sweep(cache, clock) -> None:
    cache.stage("t1", _ranked("a"), context=CONTEXT)
    clock.advance(61)
    assert cache.get_pending("t1") is None
    clock.advance(EXPIRED_TOMBSTONE_SECONDS - 1)
    with pytest.raises(ExpiredError):
        cache.skip("t1", "a")

    clock.advance(2)
    assert cache.get_pending("other") is None
    assert "t1" not in cache._expired
    with pytest.raises(NotFoundError):
        cache.skip("t1", "a")


def test_discard_drops_superseded_entry(cache) -> None:
    cache.stage("t1", _ranked("a"), context=CONTEXT)
    assert cache.discard("t1") is True
    assert cache.discard("t1") is False
    with pytest.raises(NotFoundError):
        cache.auto_select_best("t1", _choose)


def test_failed_retry_search_restores_entry(cache) -> None:
    cache.stage("t1", _ranked("a"), context=CONTEXT, query="Artist Album")

    def _empty(entry, query):
        raise NoCandidatesError("nothing found")

    with pytest.raises(NoCandidatesError):
        cache.retry_search("t1", "Other", _empty)
    pending = cache.get_pending("t1")
    assert [c.response.username for c in pending.candidates] == ["a"]
    assert pending.query == "Artist Album"


def test_view_sanitises_display_names() -> None:
    long_name = "<b>" + "x" * 60
    entry = PendingSelection(
        task_id="t1",
        candidates=tuple(_ranked("o'neil&co", long_name)),
        query="q",
        context=CONTEXT,
        created_at=0.0,
    )
    view = entry.to_view()
    first, second = view["candidates"]
    assert first["username"] == "o'neil&co"
    assert first["display_name"] == "oneilco"
    assert first["file_count"] == 3
    assert first["quality"]["tier"] == "lossless"
    assert second["display_name"] == ("b" + "x" * 60)[:50]
    assert sanitize_display_name(None) == ""


def test_record_round_trip_preserves_entry() -> None:
    entry = PendingSelection(
        task_id="t1",
        candidates=tuple(_ranked("a", "b")),
        query="q",
        context=CONTEXT,
        created_at=10.0,
        expires_at=70.0,
    )
    assert PendingSelection.from_record(entry.to_record()) == entry
