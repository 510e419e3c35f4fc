"""
Deterministic key scheme for the shared key-value store.

Everything owned by a site is prefixed with `{site_id}:` so a site's
data can be listed and deleted by prefix. Global records (daily salts,
site records) start with `_`, which no valid site id can.
"""

from __future__ import annotations

import re
from datetime import date
from urllib.parse import quote, unquote

SALT_PREFIX = "_salt:"
SITE_RECORD_PREFIX = "_site:"

SITE_ID_PATTERN = re.compile(r"[A-Za-z0-9][A-Za-z0-9_.-]{0,127}")


def is_valid_site_id(site_id: str) -> bool:
    return bool(site_id) and SITE_ID_PATTERN.fullmatch(site_id) is not None


def _day(value: date | str) -> str:
    return value if isinstance(value, str) else value.isoformat()


def encode_path(path: str) -> str:
    return quote(path, safe="")


def decode_path(encoded: str) -> str:
    return unquote(encoded)


def site_prefix(site_id: str) -> str:
    return f"{site_id}:"


def rollup_key(site_id: str, day: date | str) -> str:
    return f"{site_id}:{_day(day)}"


def seen_key(site_id: str, returning_key: str) -> str:
    return f"{site_id}:seen:{returning_key}"


def dedupe_key(site_id: str, key: str) -> str:
    return f"{site_id}:dedupe:{key}"


def trail_key(site_id: str, day: date | str, session_id: str) -> str:
    return f"{site_id}:trail:{_day(day)}:{session_id}"


def trail_prefix(site_id: str, day: date | str) -> str:
    return f"{site_id}:trail:{_day(day)}:"


def realtime_key(site_id: str) -> str:
    return f"{site_id}:active"


def heatmap_key(site_id: str, kind: str, day: date | str, path: str) -> str:
    return f"{site_id}:{kind}:{_day(day)}:{encode_path(path)}"


def heatmap_prefix(site_id: str, kind: str, day: date | str) -> str:
    return f"{site_id}:{kind}:{_day(day)}:"


def funnel_key(site_id: str, funnel_id: str) -> str:
    return f"{site_id}:funnel:{funnel_id}"


def goal_key(site_id: str, goal_id: str) -> str:
    return f"{site_id}:goal:{goal_id}"


def funnel_prefix(site_id: str) -> str:
    return f"{site_id}:funnel:"


def goal_prefix(site_id: str) -> str:
    return f"{site_id}:goal:"


def salt_key(day: date | str) -> str:
    return f"{SALT_PREFIX}{_day(day)}"


def site_record_key(site_id: str) -> str:
    return f"{SITE_RECORD_PREFIX}{site_id}"
