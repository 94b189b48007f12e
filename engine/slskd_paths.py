"""Helpers for Soulseek share paths.

Peers report paths with Windows separators (``Music\\Artist\\Album\\01.flac``)
regardless of their platform. Everything here works on forward-slash paths.
"""

from __future__ import annotations

import posixpath


def normalize_slskd_path(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = str(value).replace("\\", "/").rstrip("/")
    return "" if normalized == "." else normalized


def directory_of(filename: str | None) -> str:
    normalized = normalize_slskd_path(filename) or ""
    return posixpath.dirname(normalized)
