"""
AnalyticsAttributionService - Traffic source attribution.

Classifies where a pageview came from using UTM parameters and the
referrer URL, relative to the site's own domain.

Key behaviors:
- UTM medium/source take priority over the referrer
- Referrers on the site's own domain (or its www. variant) are internal
- Internal navigation is never counted as a referrer
- Referrers without a parseable host count as direct
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any
from urllib.parse import urlparse

# --- Enums ---


class TrafficSource(str, Enum):
    """Traffic source classification."""

    DIRECT = "direct"  # No referrer
    SEARCH = "search"  # Google, Bing, etc.
    SOCIAL = "social"  # Facebook, Twitter, etc.
    EMAIL = "email"  # Email campaigns
    CAMPAIGN = "campaign"  # Tagged with UTM but not otherwise classified
    REFERRAL = "referral"  # Other websites
    INTERNAL = "internal"  # Same site


# --- Configuration ---


@dataclass(frozen=True)
class AttributionConfig:
    """Attribution configuration."""

    search_engine_domains: tuple[str, ...] = (
        "google.",
        "bing.",
        "yahoo.",
        "duckduckgo.",
        "baidu.",
        "yandex.",
        "ecosia.",
        "search.brave.",
    )

    social_network_domains: tuple[str, ...] = (
        "facebook.",
        "fb.",
        "twitter.",
        "x.com",
        "t.co",
        "linkedin.",
        "lnkd.",
        "instagram.",
        "pinterest.",
        "reddit.",
        "youtube.",
        "youtu.be",
        "tiktok.",
        "mastodon.",
        "news.ycombinator.",
    )

    email_mediums: tuple[str, ...] = ("email", "newsletter", "e-mail")
    social_mediums: tuple[str, ...] = ("social", "social-media", "social_media")
    search_mediums: tuple[str, ...] = ("cpc", "ppc", "paid", "paidsearch", "organic")


DEFAULT_CONFIG = AttributionConfig()


# --- Data Models ---


@dataclass(frozen=True)
class UTMParams:
    """Parsed UTM parameters."""

    source: str | None = None
    medium: str | None = None
    campaign: str | None = None

    def has_any(self) -> bool:
        return bool(self.source or self.medium or self.campaign)


@dataclass(frozen=True)
class Attribution:
    """Attribution result for one pageview."""

    source: TrafficSource
    referrer_domain: str | None
    campaign: str | None


# --- Parsing Functions ---


def parse_utm_params(data: dict[str, Any]) -> UTMParams:
    """
    Parse UTM parameters from an event payload.

    Accepts a nested `utm` object or flat `utm_source` style keys.
    Values are lowercased; empty strings become None.
    """
    nested = data.get("utm")
    nested = nested if isinstance(nested, dict) else {}

    def get_param(key: str) -> str | None:
        value = nested.get(key) or data.get(f"utm_{key}")
        if value and isinstance(value, str):
            return value.strip().lower() or None
        return None

    return UTMParams(
        source=get_param("source"),
        medium=get_param("medium"),
        campaign=get_param("campaign"),
    )


def parse_host(url: str | None) -> str | None:
    """Lowercased hostname of a URL without port, or None."""
    if not url or not isinstance(url, str):
        return None
    candidate = url if "://" in url else f"https://{url}"
    try:
        host = urlparse(candidate).hostname
    except ValueError:
        return None
    return host.lower() if host else None


def strip_www(host: str) -> str:
    return host[4:] if host.startswith("www.") else host


def is_same_site(host: str | None, site_domain: str | None) -> bool:
    """Exact match or www. variant in either direction."""
    if not host or not site_domain:
        return False
    return strip_www(host) == strip_www(site_domain.lower())


def _matches(host: str, patterns: tuple[str, ...]) -> bool:
    return any(pattern in host for pattern in patterns)


def classify_traffic_source(
    utm: UTMParams,
    referrer_host: str | None,
    site_domain: str | None = None,
    config: AttributionConfig = DEFAULT_CONFIG,
) -> TrafficSource:
    """
    Classify traffic source.

    Priority:
    1. UTM medium
    2. UTM source
    3. Referrer host
    4. Direct
    """
    if utm.medium:
        if utm.medium in config.email_mediums:
            return TrafficSource.EMAIL
        if utm.medium in config.social_mediums:
            return TrafficSource.SOCIAL
        if utm.medium in config.search_mediums:
            return TrafficSource.SEARCH

    if utm.source:
        if _matches(utm.source, tuple(p.rstrip(".") for p in config.search_engine_domains)):
            return TrafficSource.SEARCH
        if _matches(utm.source, tuple(p.rstrip(".") for p in config.social_network_domains)):
            return TrafficSource.SOCIAL
        if "email" in utm.source or "newsletter" in utm.source:
            return TrafficSource.EMAIL

    if utm.has_any():
        return TrafficSource.CAMPAIGN

    if not referrer_host:
        return TrafficSource.DIRECT
    if is_same_site(referrer_host, site_domain):
        return TrafficSource.INTERNAL
    if _matches(referrer_host, config.search_engine_domains):
        return TrafficSource.SEARCH
    if _matches(referrer_host, config.social_network_domains):
        return TrafficSource.SOCIAL
    return TrafficSource.REFERRAL


def attribute(
    data: dict[str, Any],
    site_domain: str | None = None,
    config: AttributionConfig = DEFAULT_CONFIG,
) -> Attribution:
    """Full attribution for an event payload."""
    utm = parse_utm_params(data)
    host = parse_host(data.get("referrer"))
    source = classify_traffic_source(utm, host, site_domain, config)

    referrer_domain = None
    if host and source != TrafficSource.INTERNAL:
        referrer_domain = strip_www(host)

    return Attribution(source=source, referrer_domain=referrer_domain, campaign=utm.campaign)
