"""Structured types shared by the acquisition engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

SEARCH_KINDS = ("artist", "album", "track")

AUDIO_FORMATS = ("flac", "wav", "alac", "aiff", "mp3", "m4a", "aac", "ogg", "opus", "wma", "unknown")

QUALITY_TIERS = ("lossless", "high", "standard", "low", "unknown")

USER_STATUSES = ("neutral", "trusted", "flagged", "blocked")

SEARCH_STATUS_SUCCESS = "success"
SEARCH_STATUS_FAILED = "failed"
SEARCH_STATUS_DEFERRED = "deferred"


def _optional_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class SearchContext:
    """What to look for. Supplied by the wishlist / metadata providers."""

    artist: str
    kind: str = "album"
    album: str | None = None
    title: str | None = None
    year: int | None = None

    def __post_init__(self) -> None:
        if self.kind not in SEARCH_KINDS:
            raise ValueError(f"kind must be one of {', '.join(SEARCH_KINDS)}")
        if not str(self.artist or "").strip():
            raise ValueError("artist is required")

    @property
    def label(self) -> str:
        name = self.album or self.title
        return f"{self.artist} - {name}" if name else self.artist


@dataclass(frozen=True)
class CandidateFile:
    filename: str
    size: int | None = None
    bit_rate: int | None = None
    bit_depth: int | None = None
    sample_rate: int | None = None
    length: int | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "CandidateFile":
        filename = payload.get("filename")
        if not isinstance(filename, str) or not filename:
            raise ValueError("file entry requires a filename")
        return cls(
            filename=filename,
            size=_optional_int(payload.get("size")),
            bit_rate=_optional_int(payload.get("bitRate")),
            bit_depth=_optional_int(payload.get("bitDepth")),
            sample_rate=_optional_int(payload.get("sampleRate")),
            length=_optional_int(payload.get("length")),
        )

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"filename": self.filename}
        for key, value in (
            ("size", self.size),
            ("bitRate", self.bit_rate),
            ("bitDepth", self.bit_depth),
            ("sampleRate", self.sample_rate),
            ("length", self.length),
        ):
            if value is not None:
                payload[key] = value
        return payload


@dataclass(frozen=True)
class CandidateResponse:
    """One uploader's offer for a search."""

    username: str
    files: tuple[CandidateFile, ...] = ()
    has_free_upload_slot: bool = False
    upload_speed: int = 0

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "CandidateResponse":
        if not isinstance(payload, dict):
            raise ValueError("response entry must be an object")
        username = payload.get("username")
        if not isinstance(username, str) or not username:
            raise ValueError("response entry requires a username")
        files = payload.get("files")
        if not isinstance(files, list):
            raise ValueError("response entry requires a files array")
        return cls(
            username=username,
            files=tuple(CandidateFile.from_payload(f) for f in files if isinstance(f, dict)),
            has_free_upload_slot=bool(payload.get("hasFreeUploadSlot")),
            upload_speed=_optional_int(payload.get("uploadSpeed")) or 0,
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "username": self.username,
            "files": [f.to_payload() for f in self.files],
            "hasFreeUploadSlot": self.has_free_upload_slot,
            "uploadSpeed": self.upload_speed,
        }


@dataclass(frozen=True)
class QualityInfo:
    format: str
    bit_rate: int | None
    bit_depth: int | None
    sample_rate: int | None
    tier: str


@dataclass(frozen=True)
class FileSelection:
    directory: str
    files: tuple[CandidateFile, ...]

    @property
    def total_bytes(self) -> int:
        return sum(f.size or 0 for f in self.files)


@dataclass(frozen=True)
class RankedCandidate:
    response: CandidateResponse
    score: float
    quality_score: int
    reputation_bonus: int
    rank: int = 0


@dataclass(frozen=True)
class SearchAttemptResult:
    status: str
    query: str | None = None
    search_id: str | None = None
    response: CandidateResponse | None = None
    selection: FileSelection | None = None
    ranked: tuple[RankedCandidate, ...] = field(default_factory=tuple)

    @property
    def succeeded(self) -> bool:
        return self.status == SEARCH_STATUS_SUCCESS

    @classmethod
    def failed(cls, *, query=None, search_id=None, ranked=()) -> "SearchAttemptResult":
        return cls(status=SEARCH_STATUS_FAILED, query=query, search_id=search_id, ranked=tuple(ranked))

    @classmethod
    def deferred(cls, *, query=None, search_id=None) -> "SearchAttemptResult":
        return cls(status=SEARCH_STATUS_DEFERRED, query=query, search_id=search_id)
