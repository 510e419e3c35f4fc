"""
EventClassifier - Bot filtering, PII scanning and payload validation.

Turns a raw tracking payload plus request headers into a validated
Event, or an ignored/rejected outcome.

Key behaviors:
- Ordered and short-circuiting: bot filter -> PII scan -> origin -> structure
- Bots are ignored (success-shaped), never reported as errors
- PII anywhere in free text rejects the payload with the field name
- Origin must be the site domain, its www. variant, or localhost when allowed
- Query strings and fragments are stripped from paths before folding
- Signature and PII pattern sets come from configuration
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any
from urllib.parse import urlparse

from src.core.services.analytics_attrib import (
    TrafficSource,
    attribute,
    is_same_site,
    parse_host,
)
from src.rules.models import Rules

MAX_PATH_LENGTH = 2048
MAX_TEXT_LENGTH = 200
LOCAL_HOSTS = frozenset({"localhost", "127.0.0.1", "::1", "[::1]"})

# Structural keys that never carry free text
PII_EXEMPT_FIELDS = frozenset(
    {"type", "kind", "siteId", "site_id", "timestamp", "ts", "eventId", "event_id"}
)

# --- Enums ---


class EventKind(str, Enum):
    """Tracked event kinds."""

    PAGEVIEW = "pageview"
    CUSTOM = "custom"
    ERROR = "error"
    CLICK = "click"
    SCROLL = "scroll"
    ENGAGEMENT = "engagement"
    HEARTBEAT = "heartbeat"


KIND_ALIASES = {"event": EventKind.CUSTOM, "page_view": EventKind.PAGEVIEW}


class Outcome(str, Enum):
    """Classification outcome."""

    ACCEPTED = "accepted"
    IGNORED = "ignored"
    REJECTED = "rejected"


# --- Configuration ---


@dataclass(frozen=True)
class ClassifierConfig:
    """Classifier configuration (signature set + validation limits)."""

    bot_patterns: tuple[str, ...] = (
        "bot",
        "crawler",
        "spider",
        "scraper",
        "headless",
        "phantom",
        "selenium",
        "webdriver",
        "curl",
        "wget",
        "python-requests",
    )
    pii_patterns: tuple[tuple[str, str], ...] = (
        ("ipv4", r"\b(?:(?:25[0-5]|2[0-4]\d|1?\d?\d)\.){3}(?:25[0-5]|2[0-4]\d|1?\d?\d)\b"),
        ("email", r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}"),
        ("phone", r"(?:\+\d{1,3}[\s.-]?)?\(?\d{3}\)?[\s.-]\d{3}[\s.-]\d{4}\b"),
    )
    allowed_kinds: frozenset[str] = field(
        default_factory=lambda: frozenset(kind.value for kind in EventKind)
    )
    allow_localhost_origin: bool = False
    max_timestamp_age_seconds: int = 3600
    max_timestamp_future_seconds: int = 3600

    @classmethod
    def from_rules(cls, rules: Rules, allow_localhost: bool | None = None) -> ClassifierConfig:
        ingest = rules.ingest
        return cls(
            bot_patterns=tuple(rules.signatures.bot_patterns),
            pii_patterns=tuple(rules.signatures.pii_patterns.items()),
            allowed_kinds=frozenset(ingest.allowed_kinds),
            allow_localhost_origin=(
                ingest.allow_localhost_origin if allow_localhost is None else allow_localhost
            ),
            max_timestamp_age_seconds=ingest.max_timestamp_age_seconds,
            max_timestamp_future_seconds=ingest.max_timestamp_future_seconds,
        )


DEFAULT_CONFIG = ClassifierConfig()


# --- Data Models ---


@dataclass(frozen=True)
class ClientInfo:
    """Coarse client classification derived from the user agent."""

    device: str = "desktop"
    browser: str = "Unknown"
    os: str = "Unknown"


@dataclass(frozen=True)
class Event:
    """Validated, PII-free event ready to be folded."""

    kind: EventKind
    site_id: str
    timestamp: datetime
    path: str = "/"
    event_id: str | None = None

    # Attribution
    traffic_source: TrafficSource = TrafficSource.DIRECT
    referrer_domain: str | None = None
    campaign: str | None = None

    # Client classification
    device: str = "desktop"
    browser: str = "Unknown"
    os: str = "Unknown"
    country: str | None = None
    city: str | None = None
    language: str | None = None
    screen_resolution: str | None = None

    # Custom / error events
    name: str | None = None
    label: str | None = None
    value: float | None = None

    # Click / scroll payload
    x: float | None = None
    y: float | None = None
    element: str | None = None
    viewport: str | None = None
    depth: float | None = None
    fold: float | None = None

    # Engagement payload
    time_on_page: float | None = None
    session_duration: float | None = None
    pages_in_session: int | None = None
    is_exit: bool = False

    @property
    def date_key(self) -> str:
        return self.timestamp.date().isoformat()


@dataclass(frozen=True)
class ClassificationError:
    """Reason a payload was rejected."""

    code: str
    message: str
    field_name: str | None = None


@dataclass(frozen=True)
class ClassificationResult:
    """Outcome of classifying one payload."""

    outcome: Outcome
    event: Event | None = None
    error: ClassificationError | None = None
    reason: str | None = None

    @property
    def accepted(self) -> bool:
        return self.outcome == Outcome.ACCEPTED


class PayloadError(Exception):
    """Raised internally while validating structure."""

    def __init__(self, code: str, message: str, field_name: str) -> None:
        super().__init__(message)
        self.error = ClassificationError(code=code, message=message, field_name=field_name)


def _reject(code: str, message: str, field_name: str | None) -> ClassificationResult:
    return ClassificationResult(
        outcome=Outcome.REJECTED,
        error=ClassificationError(code=code, message=message, field_name=field_name),
    )


# --- Bot Filter ---


def is_bot(user_agent: str | None, config: ClassifierConfig = DEFAULT_CONFIG) -> bool:
    """Substring match against the signature set. Empty UAs count as bots."""
    if not user_agent or not user_agent.strip():
        return True
    ua_lower = user_agent.lower()
    return any(pattern in ua_lower for pattern in config.bot_patterns)


# --- PII Scan ---


class PIIScanner:
    """Compiled PII detectors applied to every free-text value."""

    def __init__(self, patterns: tuple[tuple[str, str], ...]) -> None:
        self._detectors = [(name, re.compile(pattern)) for name, pattern in patterns]

    def detect(self, text: str) -> str | None:
        """Name of the first detector matching text, or None."""
        for name, regex in self._detectors:
            if regex.search(text):
                return name
        return None

    def scan(self, payload: Any, path: str = "") -> tuple[str, str] | None:
        """
        Walk the payload and return (field, detector) for the first hit.

        Nested fields are reported in dotted form, e.g. `props.note`.
        """
        if isinstance(payload, dict):
            for key, value in payload.items():
                if not path and key in PII_EXEMPT_FIELDS:
                    continue
                hit = self.scan(value, f"{path}.{key}" if path else str(key))
                if hit:
                    return hit
        elif isinstance(payload, list):
            for idx, value in enumerate(payload):
                hit = self.scan(value, f"{path}[{idx}]")
                if hit:
                    return hit
        elif isinstance(payload, str):
            detector = self.detect(payload)
            if detector:
                return path or "payload", detector
        return None


# --- Origin Check ---


def request_origin_host(headers: dict[str, str]) -> str | None:
    """Host the request declares it came from (Origin, else Referer)."""
    lowered = {k.lower(): v for k, v in headers.items()}
    for header in ("origin", "referer"):
        host = parse_host(lowered.get(header))
        if host:
            return host
    return None


def origin_allowed(
    headers: dict[str, str],
    site_domain: str,
    allow_localhost: bool = False,
) -> bool:
    host = request_origin_host(headers)
    if host is None:
        return False
    if allow_localhost and host in LOCAL_HOSTS:
        return True
    return is_same_site(host, parse_host(site_domain) or site_domain)


# --- User Agent Parsing ---


def parse_user_agent(user_agent: str | None) -> ClientInfo:
    """Classify device type, browser and OS from a UA string."""
    if not user_agent:
        return ClientInfo()
    ua = user_agent.lower()

    if re.search(r"tablet|ipad|playbook|silk", ua):
        device = "tablet"
    elif re.search(r"mobile|iphone|ipod|android|blackberry|opera mini|iemobile", ua):
        device = "mobile"
    else:
        device = "desktop"

    if "firefox/" in ua or "fxios" in ua:
        browser = "Firefox"
    elif "edg/" in ua or "edge/" in ua:
        browser = "Edge"
    elif "opr/" in ua or "opera" in ua:
        browser = "Opera"
    elif "chrome/" in ua or "crios" in ua:
        browser = "Chrome"
    elif "safari/" in ua:
        browser = "Safari"
    else:
        browser = "Unknown"

    if "windows" in ua:
        os_name = "Windows"
    elif "android" in ua:
        os_name = "Android"
    elif re.search(r"iphone|ipad|ipod", ua):
        os_name = "iOS"
    elif "mac os" in ua or "macintosh" in ua:
        os_name = "macOS"
    elif "cros" in ua:
        os_name = "ChromeOS"
    elif "linux" in ua:
        os_name = "Linux"
    else:
        os_name = "Unknown"

    return ClientInfo(device=device, browser=browser, os=os_name)


# --- Field Parsing ---


def parse_kind(value: Any, allowed: frozenset[str]) -> EventKind:
    if value is None or value == "":
        return EventKind.PAGEVIEW
    if not isinstance(value, str):
        raise PayloadError("invalid_kind", "Event type must be a string", "type")
    lowered = value.strip().lower()
    kind = KIND_ALIASES.get(lowered)
    if kind is None:
        try:
            kind = EventKind(lowered)
        except ValueError:
            raise PayloadError("invalid_kind", f"Invalid event type: {value}", "type") from None
    if kind.value not in allowed:
        raise PayloadError("invalid_kind", f"Event type not allowed: {value}", "type")
    return kind


def parse_timestamp(
    value: Any,
    now: datetime,
    config: ClassifierConfig = DEFAULT_CONFIG,
) -> datetime:
    """
    Parse ISO-8601 or epoch (seconds or milliseconds) timestamps.

    Missing timestamps default to now; values outside the accepted
    age/future window are rejected.
    """
    if value is None:
        return now

    if isinstance(value, bool):
        raise PayloadError("invalid_timestamp", "Invalid timestamp", "timestamp")
    if isinstance(value, int | float):
        if not math.isfinite(value):
            raise PayloadError("invalid_timestamp", "Invalid timestamp", "timestamp")
        seconds = value / 1000 if value > 1e11 else value
        try:
            ts = datetime.fromtimestamp(seconds, UTC)
        except (OverflowError, OSError, ValueError):
            raise PayloadError("invalid_timestamp", "Invalid timestamp", "timestamp") from None
    elif isinstance(value, str):
        try:
            ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise PayloadError("invalid_timestamp", "Invalid timestamp format", "timestamp") from None
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=UTC)
        ts = ts.astimezone(UTC)
    else:
        raise PayloadError("invalid_timestamp", "Invalid timestamp", "timestamp")

    if ts < now - timedelta(seconds=config.max_timestamp_age_seconds):
        raise PayloadError("timestamp_too_old", "Timestamp is too far in the past", "timestamp")
    if ts > now + timedelta(seconds=config.max_timestamp_future_seconds):
        raise PayloadError("timestamp_in_future", "Timestamp is in the future", "timestamp")
    return ts


def parse_path(value: Any, required: bool = False) -> str:
    """Normalise to an absolute path without query string or fragment."""
    if value is None or value == "":
        if required:
            raise PayloadError("missing_field", "Path is required", "path")
        return "/"
    if not isinstance(value, str):
        raise PayloadError("invalid_path", "Path must be a string", "path")
    if len(value) > MAX_PATH_LENGTH:
        raise PayloadError("invalid_path", "Path is too long", "path")

    parsed = urlparse(value)
    path = parsed.path if (parsed.scheme or parsed.netloc) else value.split("?")[0].split("#")[0]
    if not path.startswith("/"):
        path = "/" + path
    return path


def parse_number(
    data: dict[str, Any],
    keys: tuple[str, ...],
    field_name: str,
    *,
    required: bool = False,
    minimum: float | None = None,
    maximum: float | None = None,
    clamp: bool = False,
) -> float | None:
    value = None
    for key in keys:
        if data.get(key) is not None:
            value = data[key]
            break
    if value is None:
        if required:
            raise PayloadError("missing_field", f"{field_name} is required", field_name)
        return None
    if isinstance(value, bool) or not isinstance(value, int | float | str):
        raise PayloadError("invalid_number", f"{field_name} must be a number", field_name)
    try:
        number = float(value)
    except ValueError:
        raise PayloadError("invalid_number", f"{field_name} must be a number", field_name) from None
    if not math.isfinite(number):
        raise PayloadError("invalid_number", f"{field_name} must be a number", field_name)

    if minimum is not None and number < minimum:
        if not clamp:
            raise PayloadError("out_of_range", f"{field_name} must be >= {minimum}", field_name)
        number = minimum
    if maximum is not None and number > maximum:
        if not clamp:
            raise PayloadError("out_of_range", f"{field_name} must be <= {maximum}", field_name)
        number = maximum
    return number


def parse_text(data: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()[:MAX_TEXT_LENGTH]
    return None


def parse_language(value: Any) -> str | None:
    """Primary language subtag, e.g. en-US -> en."""
    if not isinstance(value, str) or not value.strip():
        return None
    primary = re.split(r"[-_]", value.strip())[0].lower()
    return primary if primary.isalpha() and len(primary) <= 8 else None


def parse_resolution(data: dict[str, Any]) -> str | None:
    screen = data.get("screen")
    if isinstance(screen, str) and re.fullmatch(r"\d{2,5}x\d{2,5}", screen):
        return screen
    width = parse_number(data, ("screenWidth", "screen_width"), "screenWidth", minimum=1)
    height = parse_number(data, ("screenHeight", "screen_height"), "screenHeight", minimum=1)
    if width and height:
        return f"{int(width)}x{int(height)}"
    return None


def parse_viewport(data: dict[str, Any], required: bool) -> str | None:
    viewport = data.get("viewport")
    if isinstance(viewport, str) and re.fullmatch(r"\d{1,5}x\d{1,5}", viewport):
        return viewport
    width = parse_number(data, ("viewportWidth", "viewport_width"), "viewportWidth", minimum=1)
    height = parse_number(data, ("viewportHeight", "viewport_height"), "viewportHeight", minimum=1)
    if width and height:
        return f"{int(width)}x{int(height)}"
    if required:
        raise PayloadError("missing_field", "viewport is required", "viewport")
    return None


def _custom_name(data: dict[str, Any]) -> str:
    name = parse_text(data, "name", "eventName", "event_name")
    if name:
        return name
    category = parse_text(data, "category")
    action = parse_text(data, "action")
    if category and action:
        return f"{category}:{action}"
    raise PayloadError("missing_field", "Event name is required", "name")


def build_event(
    data: dict[str, Any],
    headers: dict[str, str],
    site_id: str,
    site_domain: str,
    now: datetime,
    config: ClassifierConfig = DEFAULT_CONFIG,
) -> Event:
    """
    Validate structure and build an Event.

    Raises PayloadError naming the first invalid field.
    """
    kind = parse_kind(data.get("type", data.get("kind")), config.allowed_kinds)
    timestamp = parse_timestamp(data.get("timestamp", data.get("ts")), now, config)
    lowered = {k.lower(): v for k, v in headers.items()}
    client = parse_user_agent(lowered.get("user-agent"))

    values: dict[str, Any] = {
        "kind": kind,
        "site_id": site_id,
        "timestamp": timestamp,
        "path": parse_path(data.get("path") or data.get("url"), required=kind == EventKind.CLICK),
        "event_id": parse_text(data, "eventId", "event_id"),
        "device": client.device,
        "browser": client.browser,
        "os": client.os,
        "country": (lowered.get("x-country") or "").upper() or None,
        "city": lowered.get("x-city") or None,
        "language": parse_language(data.get("language") or data.get("lang")),
        "screen_resolution": parse_resolution(data),
    }

    if kind == EventKind.PAGEVIEW:
        attribution = attribute(data, site_domain)
        values["traffic_source"] = attribution.source
        values["referrer_domain"] = attribution.referrer_domain
        values["campaign"] = attribution.campaign

    elif kind == EventKind.CUSTOM:
        values["name"] = _custom_name(data)
        values["label"] = parse_text(data, "label")
        values["value"] = parse_number(data, ("value",), "value")

    elif kind == EventKind.ERROR:
        values["name"] = parse_text(data, "message", "name") or "Unknown error"
        values["label"] = parse_text(data, "source", "filename")

    elif kind == EventKind.CLICK:
        values["x"] = parse_number(
            data, ("x", "xPercent"), "x", required=True, minimum=0, maximum=100, clamp=True
        )
        values["y"] = parse_number(
            data, ("y", "yPercent"), "y", required=True, minimum=0, maximum=100, clamp=True
        )
        values["element"] = parse_text(data, "element", "selector")
        values["viewport"] = parse_viewport(data, required=True)

    elif kind == EventKind.SCROLL:
        values["depth"] = parse_number(
            data,
            ("depth", "maxScrollDepth", "scrollDepth"),
            "depth",
            required=True,
            minimum=0,
            maximum=100,
        )
        values["fold"] = parse_number(
            data, ("fold", "foldPosition"), "fold", minimum=0, maximum=100, clamp=True
        )

    elif kind == EventKind.ENGAGEMENT:
        values["time_on_page"] = parse_number(data, ("timeOnPage", "time_on_page"), "timeOnPage", minimum=0)
        values["session_duration"] = parse_number(
            data, ("sessionDuration", "session_duration"), "sessionDuration", minimum=0
        )
        values["depth"] = parse_number(
            data, ("maxScrollDepth", "depth"), "maxScrollDepth", minimum=0, maximum=100, clamp=True
        )
        pages = parse_number(data, ("pageCount", "page_count"), "pageCount", minimum=0)
        values["pages_in_session"] = int(pages) if pages is not None else None
        values["is_exit"] = bool(data.get("isExitPage") or data.get("is_exit"))

    return Event(**values)


# --- Classifier ---


class EventClassifier:
    """
    Ordered event classifier.

    bot filter -> PII scan -> origin check -> structural validation.
    """

    def __init__(self, config: ClassifierConfig | None = None) -> None:
        self._config = config or DEFAULT_CONFIG
        self._scanner = PIIScanner(self._config.pii_patterns)

    @property
    def config(self) -> ClassifierConfig:
        return self._config

    def classify(
        self,
        payload: dict[str, Any],
        headers: dict[str, str],
        site_id: str,
        site_domain: str,
        now: datetime,
    ) -> ClassificationResult:
        lowered = {k.lower(): v for k, v in headers.items()}

        if is_bot(lowered.get("user-agent"), self._config):
            return ClassificationResult(outcome=Outcome.IGNORED, reason="bot")

        hit = self._scanner.scan(payload)
        if hit:
            field_name, detector = hit
            return _reject(
                "pii_detected",
                f"Field '{field_name}' appears to contain personal data ({detector})",
                field_name,
            )

        if not origin_allowed(lowered, site_domain, self._config.allow_localhost_origin):
            return _reject("origin_mismatch", "Request origin does not match site domain", "origin")

        try:
            event = build_event(payload, lowered, site_id, site_domain, now, self._config)
        except PayloadError as e:
            return ClassificationResult(outcome=Outcome.REJECTED, error=e.error)

        return ClassificationResult(outcome=Outcome.ACCEPTED, event=event)


def create_event_classifier(config: ClassifierConfig | None = None) -> EventClassifier:
    """Create an EventClassifier."""
    return EventClassifier(config=config)
