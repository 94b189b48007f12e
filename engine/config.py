"""Typed engine configuration and its boundary validation.

Raw configuration is a JSON object. ``parse_config`` turns its ``slskd``
section into frozen dataclasses and reports every problem it finds instead
of raising, so callers can surface all errors at once. Components receive
these values at construction time; reloading means building new components.
"""

from __future__ import annotations

import json
import string
from dataclasses import dataclass, field

from config.settings import (
    DEFAULT_AUTO_FLAG_THRESHOLD,
    DEFAULT_AUTO_TRUST_THRESHOLD,
    DEFAULT_MIN_BITRATE,
    MAX_RESPONSES_TO_EVAL,
    MB_TO_BYTES,
    MIN_FILES_ALBUM,
    MIN_FILES_TRACK,
    SEARCH_MAX_WAIT_MS,
    SEARCH_POLL_INTERVAL_MS,
    SEARCH_TIMEOUT_MS,
)

SELECTION_MODES = ("auto", "manual")


@dataclass(frozen=True)
class QualityPreferences:
    enabled: bool = False
    preferred_formats: tuple[str, ...] = ("flac", "mp3")
    min_bitrate: int = DEFAULT_MIN_BITRATE
    prefer_lossless: bool = True
    reject_low_quality: bool = False
    reject_lossless: bool = False


@dataclass(frozen=True)
class RetryPolicy:
    enabled: bool = True
    max_attempts: int = 3
    simplify_on_retry: bool = True
    delay_ms: int = 5000


@dataclass(frozen=True)
class QueryTemplates:
    artist_query_template: str = "{artist}"
    album_query_template: str = "{artist} {album}"
    track_query_template: str = "{artist} {title}"
    fallback_queries: tuple[str, ...] = ()
    exclude_terms: tuple[str, ...] = ()


@dataclass(frozen=True)
class SearchConfig:
    search_timeout_ms: int = SEARCH_TIMEOUT_MS
    max_wait_ms: int = SEARCH_MAX_WAIT_MS
    poll_interval_ms: int = SEARCH_POLL_INTERVAL_MS
    min_response_files: int = MIN_FILES_ALBUM
    max_responses_to_eval: int = MAX_RESPONSES_TO_EVAL
    min_file_size_bytes: int = 1 * MB_TO_BYTES
    max_file_size_bytes: int = 0
    prefer_complete_albums: bool = True
    prefer_album_folder: bool = True
    min_files_album: int = MIN_FILES_ALBUM
    min_files_track: int = MIN_FILES_TRACK
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    templates: QueryTemplates = field(default_factory=QueryTemplates)
    quality_preferences: QualityPreferences | None = None


@dataclass(frozen=True)
class ReputationSettings:
    enabled: bool = False
    auto_trust_threshold: int = DEFAULT_AUTO_TRUST_THRESHOLD
    auto_flag_threshold: int = DEFAULT_AUTO_FLAG_THRESHOLD
    track_quality: bool = True


@dataclass(frozen=True)
class SelectionSettings:
    mode: str = "auto"
    timeout_minutes: int = 0

    @property
    def timeout_seconds(self) -> int | None:
        if not self.timeout_minutes:
            return None
        return int(self.timeout_minutes) * 60


@dataclass(frozen=True)
class SlskdConnection:
    host: str
    api_key: str | None = None
    url_base: str = "/"
    timeout_seconds: float = 10.0


@dataclass(frozen=True)
class EngineConfig:
    connection: SlskdConnection
    search: SearchConfig = field(default_factory=SearchConfig)
    reputation: ReputationSettings = field(default_factory=ReputationSettings)
    selection: SelectionSettings = field(default_factory=SelectionSettings)


@dataclass(frozen=True)
class ConfigParseResult:
    config: EngineConfig | None
    errors: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.config is not None and not self.errors


def load_config(path):
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


class _Reader:
    def __init__(self, section, prefix, errors):
        self.section = section if isinstance(section, dict) else {}
        self.prefix = prefix
        self.errors = errors
        if section is not None and not isinstance(section, dict):
            errors.append(f"{prefix} must be an object")

    def _name(self, key):
        return f"{self.prefix}.{key}"

    def get_bool(self, key, default):
        value = self.section.get(key)
        if value is None:
            return default
        if not isinstance(value, bool):
            self.errors.append(f"{self._name(key)} must be true or false")
            return default
        return value

    def get_int(self, key, default, *, minimum=0):
        value = self.section.get(key)
        if value is None:
            return default
        if isinstance(value, bool) or not isinstance(value, (int, float)) or int(value) != value:
            self.errors.append(f"{self._name(key)} must be an integer")
            return default
        if value < minimum:
            self.errors.append(f"{self._name(key)} must be >= {minimum}")
            return default
        return int(value)

    def get_number(self, key, default, *, minimum=0.0):
        value = self.section.get(key)
        if value is None:
            return default
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            self.errors.append(f"{self._name(key)} must be a number")
            return default
        if value < minimum:
            self.errors.append(f"{self._name(key)} must be >= {minimum}")
            return default
        return float(value)

    def get_str(self, key, default):
        value = self.section.get(key)
        if value is None:
            return default
        if not isinstance(value, str):
            self.errors.append(f"{self._name(key)} must be a string")
            return default
        return value

    def get_str_list(self, key, default):
        value = self.section.get(key)
        if value is None:
            return default
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            self.errors.append(f"{self._name(key)} must be a list of strings")
            return default
        return tuple(v for v in value if v.strip())

    def get_child(self, key):
        return _Reader(self.section.get(key), self._name(key), self.errors)


def _parse_quality(reader):
    defaults = QualityPreferences()
    formats = reader.get_str_list("preferred_formats", defaults.preferred_formats)
    return QualityPreferences(
        enabled=reader.get_bool("enabled", defaults.enabled),
        preferred_formats=tuple(f.strip().lower().lstrip(".") for f in formats),
        min_bitrate=reader.get_int("min_bitrate", defaults.min_bitrate),
        prefer_lossless=reader.get_bool("prefer_lossless", defaults.prefer_lossless),
        reject_low_quality=reader.get_bool("reject_low_quality", defaults.reject_low_quality),
        reject_lossless=reader.get_bool("reject_lossless", defaults.reject_lossless),
    )


def _parse_search(reader):
    defaults = SearchConfig()
    retry_defaults = RetryPolicy()
    template_defaults = QueryTemplates()

    retry = reader.get_child("retry")
    templates = reader.get_child("search_query")
    min_size_mb = reader.get_number("min_file_size_mb", defaults.min_file_size_bytes / MB_TO_BYTES)
    max_size_mb = reader.get_number("max_file_size_mb", 0.0)

    quality = None
    if reader.section.get("quality_preferences") is not None:
        quality = _parse_quality(reader.get_child("quality_preferences"))

    search = SearchConfig(
        search_timeout_ms=reader.get_int("search_timeout_ms", defaults.search_timeout_ms, minimum=1),
        max_wait_ms=reader.get_int("max_wait_ms", defaults.max_wait_ms, minimum=1),
        poll_interval_ms=reader.get_int("poll_interval_ms", defaults.poll_interval_ms, minimum=1),
        min_response_files=reader.get_int("min_response_files", defaults.min_response_files),
        max_responses_to_eval=reader.get_int("max_responses_to_eval", defaults.max_responses_to_eval, minimum=1),
        min_file_size_bytes=int(min_size_mb * MB_TO_BYTES),
        max_file_size_bytes=int(max_size_mb * MB_TO_BYTES),
        prefer_complete_albums=reader.get_bool("prefer_complete_albums", defaults.prefer_complete_albums),
        prefer_album_folder=reader.get_bool("prefer_album_folder", defaults.prefer_album_folder),
        min_files_album=reader.get_int("min_files_album", defaults.min_files_album, minimum=1),
        min_files_track=reader.get_int("min_files_track", defaults.min_files_track, minimum=1),
        retry=RetryPolicy(
            enabled=retry.get_bool("enabled", retry_defaults.enabled),
            max_attempts=retry.get_int("max_attempts", retry_defaults.max_attempts, minimum=1),
            simplify_on_retry=retry.get_bool("simplify_on_retry", retry_defaults.simplify_on_retry),
            delay_ms=retry.get_int("delay_ms", retry_defaults.delay_ms),
        ),
        templates=QueryTemplates(
            artist_query_template=templates.get_str("artist_query_template", template_defaults.artist_query_template),
            album_query_template=templates.get_str("album_query_template", template_defaults.album_query_template),
            track_query_template=templates.get_str("track_query_template", template_defaults.track_query_template),
            fallback_queries=templates.get_str_list("fallback_queries", template_defaults.fallback_queries),
            exclude_terms=templates.get_str_list("exclude_terms", template_defaults.exclude_terms),
        ),
        quality_preferences=quality,
    )
    if search.max_file_size_bytes and search.max_file_size_bytes < search.min_file_size_bytes:
        reader.errors.append("slskd.max_file_size_mb must be >= slskd.min_file_size_mb")
    if search.max_wait_ms < search.poll_interval_ms:
        reader.errors.append("slskd.max_wait_ms must be >= slskd.poll_interval_ms")
    for name, template in (
        ("artist_query_template", search.templates.artist_query_template),
        ("album_query_template", search.templates.album_query_template),
        ("track_query_template", search.templates.track_query_template),
        *(("fallback_queries", t) for t in search.templates.fallback_queries),
    ):
        try:
            list(string.Formatter().parse(template))
        except ValueError:
            reader.errors.append(f"slskd.search_query.{name} has unbalanced braces: {template!r}")
    return search


def parse_config(raw) -> ConfigParseResult:
    """Validate a raw config object. Never raises on bad input."""
    errors: list[str] = []
    if not isinstance(raw, dict):
        return ConfigParseResult(None, ("config must be a JSON object",))
    if not isinstance(raw.get("slskd"), dict):
        return ConfigParseResult(None, ("slskd must be an object",))

    reader = _Reader(raw["slskd"], "slskd", errors)
    host = reader.get_str("host", "").strip()
    if not host:
        errors.append("slskd.host is required")
    elif not host.lower().startswith(("http://", "https://")):
        errors.append("slskd.host must be an http(s) URL")

    connection = SlskdConnection(
        host=host.rstrip("/"),
        api_key=reader.get_str("api_key", None),
        url_base=reader.get_str("url_base", "/") or "/",
        timeout_seconds=reader.get_number("timeout_seconds", 10.0, minimum=0.1),
    )
    search = _parse_search(reader)

    rep = reader.get_child("user_reputation")
    rep_defaults = ReputationSettings()
    reputation = ReputationSettings(
        enabled=rep.get_bool("enabled", rep_defaults.enabled),
        auto_trust_threshold=rep.get_int("auto_trust_threshold", rep_defaults.auto_trust_threshold, minimum=1),
        auto_flag_threshold=rep.get_int("auto_flag_threshold", rep_defaults.auto_flag_threshold, minimum=1),
        track_quality=rep.get_bool("track_quality", rep_defaults.track_quality),
    )

    sel = reader.get_child("selection")
    mode = sel.get_str("mode", "auto")
    if mode not in SELECTION_MODES:
        errors.append(f"slskd.selection.mode must be one of {', '.join(SELECTION_MODES)}")
        mode = "auto"
    selection = SelectionSettings(mode=mode, timeout_minutes=sel.get_int("timeout_minutes", 0))

    if errors:
        return ConfigParseResult(None, tuple(errors))
    return ConfigParseResult(
        EngineConfig(connection=connection, search=search, reputation=reputation, selection=selection)
    )


def validate_config(raw):
    return list(parse_config(raw).errors)
