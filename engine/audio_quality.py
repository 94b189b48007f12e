"""Audio quality detection and scoring for candidate files."""

from __future__ import annotations

import math
import posixpath
from typing import Iterable

from config.settings import (
    HIGH_QUALITY_BITRATE,
    LOSSLESS_FORMATS,
    MUSIC_EXTENSIONS,
    QUALITY_SCORES,
    QUALITY_TIER_ORDER,
    STANDARD_QUALITY_BITRATE,
)
from engine.config import QualityPreferences
from engine.types import CandidateFile, QualityInfo

_EXTENSION_TO_FORMAT = {
    ".flac": "flac",
    ".wav": "wav",
    ".alac": "alac",
    ".aiff": "aiff",
    ".mp3": "mp3",
    ".m4a": "m4a",
    ".aac": "aac",
    ".ogg": "ogg",
    ".opus": "opus",
    ".wma": "wma",
}


def _extension(filename):
    # Soulseek paths use backslashes; splitext alone would see them as part of the name.
    name = str(filename or "").replace("\\", "/")
    return posixpath.splitext(name)[1].lower()


def detect_format(filename: str) -> str:
    return _EXTENSION_TO_FORMAT.get(_extension(filename), "unknown")


def is_music_file(filename: str) -> bool:
    return _extension(filename) in MUSIC_EXTENSIONS


def is_lossless_format(audio_format: str) -> bool:
    return f".{audio_format}" in LOSSLESS_FORMATS


def determine_quality_tier(audio_format: str, bit_rate: int | None) -> str:
    if is_lossless_format(audio_format):
        return "lossless"
    if not bit_rate:
        return "unknown"
    if bit_rate >= HIGH_QUALITY_BITRATE:
        return "high"
    if bit_rate >= STANDARD_QUALITY_BITRATE:
        return "standard"
    return "low"


def extract_quality_info(file: CandidateFile) -> QualityInfo:
    audio_format = detect_format(file.filename)
    return QualityInfo(
        format=audio_format,
        bit_rate=file.bit_rate,
        bit_depth=file.bit_depth,
        sample_rate=file.sample_rate,
        tier=determine_quality_tier(audio_format, file.bit_rate),
    )


def calculate_quality_score(info: QualityInfo, preferences: QualityPreferences | None) -> int:
    if preferences is None or not preferences.enabled:
        return 0

    score = QUALITY_SCORES.get(info.tier, QUALITY_SCORES["unknown"])
    if info.format in preferences.preferred_formats:
        score += 100
    if preferences.prefer_lossless and info.tier == "lossless":
        score += 500
    if info.bit_rate is not None and info.tier != "lossless":
        if info.bit_rate >= preferences.min_bitrate:
            score += 50
        else:
            score -= 200
    return score


def should_reject_file(info: QualityInfo, preferences: QualityPreferences | None) -> bool:
    if preferences is None or not preferences.enabled:
        return False
    if info.tier == "lossless":
        # Low-quality rules never apply to lossless files.
        return preferences.reject_lossless
    if not preferences.reject_low_quality:
        return False
    if info.bit_rate is None:
        return False
    if info.tier == "low":
        return True
    return info.bit_rate < preferences.min_bitrate


def get_dominant_quality_info(files: Iterable[CandidateFile]) -> QualityInfo | None:
    """Return the most common (format, tier) quality across ``files``.

    Count ties go to the better tier. The reported bitrate is the rounded
    average of known bitrates over every file sharing the winning format, and
    sample rate / bit depth are the first known values within that format.
    """
    infos = [extract_quality_info(f) for f in files]
    if not infos:
        return None

    groups: dict[tuple[str, str], list] = {}
    for info in infos:
        key = (info.format, info.tier)
        if key in groups:
            groups[key][1] += 1
        else:
            groups[key] = [info, 1]

    dominant, _count = min(
        groups.values(),
        key=lambda item: (-item[1], QUALITY_TIER_ORDER.index(item[0].tier)),
    )

    same_format = [info for info in infos if info.format == dominant.format]
    bit_rates = [info.bit_rate for info in same_format if info.bit_rate is not None]
    sample_rates = [info.sample_rate for info in same_format if info.sample_rate is not None]
    bit_depths = [info.bit_depth for info in same_format if info.bit_depth is not None]
    avg_bit_rate = _round_half_up(sum(bit_rates) / len(bit_rates)) if bit_rates else None

    return QualityInfo(
        format=dominant.format,
        bit_rate=avg_bit_rate,
        bit_depth=bit_depths[0] if bit_depths else None,
        sample_rate=sample_rates[0] if sample_rates else None,
        tier=dominant.tier,
    )


def calculate_average_quality_score(files: Iterable[CandidateFile], preferences: QualityPreferences | None) -> int:
    files = list(files)
    if not files or preferences is None or not preferences.enabled:
        return 0
    scores = [calculate_quality_score(extract_quality_info(f), preferences) for f in files]
    return _round_half_up(sum(scores) / len(scores))


def reputation_quality_score(files: Iterable[CandidateFile]) -> int:
    """Map the dominant tier of a transfer onto the 0-100 reputation scale."""
    dominant = get_dominant_quality_info(files)
    if dominant is None:
        return 0
    score = QUALITY_SCORES.get(dominant.tier, QUALITY_SCORES["unknown"]) // 10
    return max(0, min(100, score))


def _round_half_up(value: float) -> int:
    # round() would use banker's rounding; averages round .5 upwards.
    return math.floor(value + 0.5)
