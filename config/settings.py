"""Engine settings constants."""

from __future__ import annotations

# Default search timeout handed to slskd, in milliseconds.
SEARCH_TIMEOUT_MS = 15000

# Interval between search state polls, in milliseconds.
SEARCH_POLL_INTERVAL_MS = 1000

# Hard ceiling on how long a single search is polled, in milliseconds.
SEARCH_MAX_WAIT_MS = 20000

# Minimum number of files expected for an album download.
MIN_FILES_ALBUM = 3

# Minimum number of files expected for a track download.
MIN_FILES_TRACK = 1

MB_TO_BYTES = 1024 * 1024

# Upper bound on candidates kept for interactive selection.
MAX_STORED_SELECTION_RESULTS = 15

# Responses ranked per search before file selection.
MAX_RESPONSES_TO_EVAL = 50

MUSIC_EXTENSIONS = (".mp3", ".flac", ".m4a", ".ogg", ".opus", ".wav", ".aac", ".wma", ".alac", ".aiff")

LOSSLESS_FORMATS = (".flac", ".wav", ".alac", ".aiff")

# Bitrate thresholds in kbps.
HIGH_QUALITY_BITRATE = 320
STANDARD_QUALITY_BITRATE = 256
# Nominal "very low" threshold. Everything under STANDARD_QUALITY_BITRATE is
# reported as the low tier, this value included.
LOW_QUALITY_BITRATE = 96

QUALITY_SCORES = {
    "lossless": 1000,
    "high": 500,
    "standard": 200,
    "low": 50,
    "unknown": 100,
}

QUALITY_TIER_ORDER = ("lossless", "high", "standard", "low", "unknown")

# Ranking bonuses applied on top of the quality score.
FREE_SLOT_BONUS = 1000
UPLOAD_SPEED_BONUS_CAP_BYTES = 1_000_000
UPLOAD_SPEED_BONUS_DIVISOR = 10_000
TRUSTED_USER_BONUS = 100

DEFAULT_AUTO_TRUST_THRESHOLD = 5
DEFAULT_AUTO_FLAG_THRESHOLD = 3
DEFAULT_MIN_BITRATE = 256
