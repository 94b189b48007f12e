import json
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from enum import Enum


def _default(value):
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return repr(value)


def safe_json_dumps(payload, **kwargs):
    kwargs.setdefault("ensure_ascii", False)
    kwargs.setdefault("default", _default)
    return json.dumps(payload, **kwargs)


def safe_json_loads(value, default=None):
    if value is None:
        return default
    if isinstance(value, (dict, list)):
        return value
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return default
