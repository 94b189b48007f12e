import sys
import threading
from pathlib import Path

import pytest


# Ensure tests can import project packages regardless of how pytest is invoked.
ROOT = Path(__file__).resolve().parents[1]
ROOT_STR = str(ROOT)
if ROOT_STR not in sys.path:
    sys.path.insert(0, ROOT_STR)

from engine.slskd_client import SearchState, TransferHandle, UserTransfers  # noqa: E402
from engine.slskd_paths import directory_of  # noqa: E402
from engine.types import CandidateFile, CandidateResponse  # noqa: E402


class FakeClock:
    """Monotonic clock whose ``wait`` advances time instead of sleeping."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.waits: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def wait(self, seconds: float, stop_event: threading.Event | None = None) -> bool:
        if stop_event is not None and stop_event.is_set():
            return True
        self.waits.append(seconds)
        self.now += seconds
        return bool(stop_event is not None and stop_event.is_set())


class FakeSlskdClient:
    """Scripted stand-in for ``SlskdClient``.

    ``states`` is consumed one entry per poll; the last entry repeats. An
    entry that is an exception instance is raised instead of returned.
    """

    def __init__(self, states=None, *, clock: FakeClock | None = None, submit_error=None) -> None:
        self.states = list(states or [SearchState(complete=True, responses=())])
        self.clock = clock
        self.submit_error = submit_error
        self.submitted: list[tuple[str, int]] = []
        self.poll_times: list[float] = []
        self.cancelled: list[str] = []
        self.enqueued: list[tuple[str, tuple]] = []
        self.enqueue_error = None
        self.transfers: dict[str, list] = {}
        self.on_poll = None

    def submit_search(self, query, *, search_timeout_ms):
        if self.submit_error is not None:
            raise self.submit_error
        self.submitted.append((query, search_timeout_ms))
        return f"search-{len(self.submitted)}"

    def poll_state(self, search_id):
        if self.clock is not None:
            self.poll_times.append(self.clock())
        if self.on_poll is not None:
            self.on_poll(len(self.poll_times))
        state = self.states.pop(0) if len(self.states) > 1 else self.states[0]
        if isinstance(state, Exception):
            raise state
        return state

    def cancel_search(self, search_id):
        self.cancelled.append(search_id)

    def enqueue_download(self, username, files):
        if self.enqueue_error is not None:
            raise self.enqueue_error
        files = tuple(files)
        self.enqueued.append((username, files))
        return TransferHandle(
            username=username,
            directory=directory_of(files[0].filename),
            filenames=tuple(f.filename for f in files),
        )

    def get_user_transfers(self, username):
        script = self.transfers.get(username) or [UserTransfers(username=username)]
        entry = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(entry, Exception):
            raise entry
        return entry


def make_file(filename, *, size=20 * 1024 * 1024, bit_rate=None, bit_depth=None, sample_rate=None):
    return CandidateFile(
        filename=filename,
        size=size,
        bit_rate=bit_rate,
        bit_depth=bit_depth,
        sample_rate=sample_rate,
    )


def make_album(username, directory, ext="flac", *, count=10, bit_rate=None, free_slot=False, speed=0, size=None):
    files = tuple(
        make_file(
            f"{directory}\\{index:02d} - Track {index}.{ext}",
            bit_rate=bit_rate,
            size=size if size is not None else 20 * 1024 * 1024,
        )
        for index in range(1, count + 1)
    )
    return CandidateResponse(username=username, files=files, has_free_upload_slot=free_slot, upload_speed=speed)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_client_factory(clock):
    def _build(states=None, **kwargs):
        return FakeSlskdClient(states, clock=clock, **kwargs)

    return _build
