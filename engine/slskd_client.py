import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from engine.config import SlskdConnection
from engine.errors import NetworkFailure
from engine.slskd_paths import directory_of
from engine.types import CandidateResponse

logger = logging.getLogger(__name__)

API_PREFIX = "api/v0"

# slskd transfer states are comma separated flags, e.g. "Completed, Succeeded".
TRANSFER_SUCCEEDED = "succeeded"
TRANSFER_FAILED_FLAGS = ("errored", "rejected", "timedout", "cancelled", "failed", "aborted")


@dataclass(frozen=True)
class SearchState:
    complete: bool
    responses: tuple[CandidateResponse, ...] = ()


@dataclass(frozen=True)
class TransferHandle:
    username: str
    directory: str
    filenames: tuple[str, ...]


@dataclass(frozen=True)
class TransferFile:
    filename: str
    state: str
    size: int = 0
    bytes_transferred: int = 0
    average_speed: float = 0.0

    @property
    def succeeded(self) -> bool:
        return TRANSFER_SUCCEEDED in self.state.lower()

    @property
    def failed(self) -> bool:
        state = self.state.lower().replace(" ", "")
        return any(flag in state for flag in TRANSFER_FAILED_FLAGS)

    @property
    def finished(self) -> bool:
        return self.succeeded or self.failed


@dataclass(frozen=True)
class UserTransfers:
    username: str
    files: tuple[TransferFile, ...] = field(default_factory=tuple)

    def for_handle(self, handle: TransferHandle) -> list[TransferFile]:
        wanted = set(handle.filenames)
        return [f for f in self.files if f.filename in wanted]


def _parse_responses(payload) -> tuple[CandidateResponse, ...]:
    out = []
    for entry in payload or []:
        try:
            out.append(CandidateResponse.from_payload(entry))
        except ValueError:
            logger.debug("Dropping malformed slskd search response: %r", entry)
    return tuple(out)


def _parse_transfers(username: str, payload) -> UserTransfers:
    files = []
    if isinstance(payload, dict):
        directories = payload.get("directories") or []
    else:
        directories = []
    for directory in directories:
        for entry in (directory or {}).get("files") or []:
            filename = entry.get("filename")
            if not filename:
                continue
            files.append(
                TransferFile(
                    filename=filename,
                    state=str(entry.get("state") or ""),
                    size=int(entry.get("size") or 0),
                    bytes_transferred=int(entry.get("bytesTransferred") or 0),
                    average_speed=float(entry.get("averageSpeed") or 0.0),
                )
            )
    return UserTransfers(username=username, files=tuple(files))


class SlskdClient:
    """Thin wrapper over the slskd REST API used by the acquisition engine."""

    def __init__(self, connection: SlskdConnection, *, session: requests.Session | None = None) -> None:
        url_base = "/" + (connection.url_base or "/").strip("/")
        self.base_url = connection.host.rstrip("/") + url_base.rstrip("/") + "/" + API_PREFIX + "/"
        self.timeout_seconds = connection.timeout_seconds
        self._headers = {"Accept": "application/json"}
        if connection.api_key:
            self._headers["X-API-Key"] = connection.api_key
        self._session = session or requests.Session()
        retry = Retry(
            total=3,
            backoff_factor=0.4,
            status_forcelist=(429, 500, 502, 503, 504),
            allowed_methods=frozenset({"GET"}),
            respect_retry_after_header=True,
        )
        adapter = HTTPAdapter(max_retries=retry)
        self._session.mount("https://", adapter)
        self._session.mount("http://", adapter)

    def _request(self, method: str, endpoint: str, *, json_body: Any = None) -> Any:
        url = self.base_url + endpoint.lstrip("/")
        try:
            resp = self._session.request(
                method,
                url,
                json=json_body,
                headers=self._headers,
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            logger.info(f"[SLSKD] request={method} {endpoint} status=error")
            raise NetworkFailure(f"slskd request failed: {exc}") from exc

        status = int(resp.status_code)
        logger.debug(f"[SLSKD] request={method} {endpoint} status={status}")
        if status >= 400:
            raise NetworkFailure(f"slskd {method} {endpoint} returned HTTP {status}")
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise NetworkFailure(f"slskd {method} {endpoint} returned invalid JSON") from exc

    def submit_search(self, query: str, *, search_timeout_ms: int) -> str:
        search_id = str(uuid.uuid4())
        payload = self._request(
            "POST",
            "searches",
            json_body={"id": search_id, "searchText": query, "searchTimeout": int(search_timeout_ms)},
        )
        if isinstance(payload, dict) and payload.get("id"):
            return str(payload["id"])
        return search_id

    def poll_state(self, search_id: str) -> SearchState:
        state = self._request("GET", f"searches/{quote(search_id, safe='')}")
        complete = bool(isinstance(state, dict) and state.get("isComplete"))
        responses = self._request("GET", f"searches/{quote(search_id, safe='')}/responses")
        return SearchState(complete=complete, responses=_parse_responses(responses))

    def cancel_search(self, search_id: str) -> None:
        self._request("PUT", f"searches/{quote(search_id, safe='')}")

    def enqueue_download(self, username: str, files) -> TransferHandle:
        files = tuple(files)
        if not files:
            raise ValueError("enqueue_download requires at least one file")
        body = [{"filename": f.filename, "size": f.size or 0} for f in files]
        self._request("POST", f"transfers/downloads/{quote(username, safe='')}", json_body=body)
        return TransferHandle(
            username=username,
            directory=directory_of(files[0].filename),
            filenames=tuple(f.filename for f in files),
        )

    def get_user_transfers(self, username: str) -> UserTransfers:
        payload = self._request("GET", f"transfers/downloads/{quote(username, safe='')}")
        return _parse_transfers(username, payload)


_CLIENTS: dict[tuple, SlskdClient] = {}
_CLIENTS_LOCK = threading.Lock()


def get_slskd_client(connection: SlskdConnection) -> SlskdClient:
    key = (connection.host, connection.api_key, connection.url_base, connection.timeout_seconds)
    client = _CLIENTS.get(key)
    if client is not None:
        return client
    with _CLIENTS_LOCK:
        if key not in _CLIENTS:
            _CLIENTS[key] = SlskdClient(connection)
        return _CLIENTS[key]
