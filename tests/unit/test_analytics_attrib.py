"""
Tests for traffic source attribution.
"""

from __future__ import annotations

import pytest

from src.core.services.analytics_attrib import (
    TrafficSource,
    UTMParams,
    attribute,
    classify_traffic_source,
    is_same_site,
    parse_host,
    parse_utm_params,
)


class TestUTMParsing:
    def test_flat_keys(self) -> None:
        utm = parse_utm_params({"utm_source": " Newsletter ", "utm_medium": "EMAIL"})
        assert utm == UTMParams(source="newsletter", medium="email", campaign=None)

    def test_nested_object_wins(self) -> None:
        utm = parse_utm_params({"utm": {"campaign": "Spring"}, "utm_campaign": "other"})
        assert utm.campaign == "spring"

    def test_blank_values_ignored(self) -> None:
        assert not parse_utm_params({"utm_source": "  ", "utm_medium": 3}).has_any()


class TestHosts:
    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("https://WWW.Google.com/search?q=x", "www.google.com"),
            ("example.com:8080/page", "example.com"),
            ("", None),
            (None, None),
        ],
    )
    def test_parse_host(self, url, expected) -> None:
        assert parse_host(url) == expected

    def test_same_site_www_both_ways(self) -> None:
        assert is_same_site("www.example.com", "example.com")
        assert is_same_site("example.com", "WWW.example.com")
        assert not is_same_site("blog.example.com", "example.com")
        assert not is_same_site(None, "example.com")


class TestClassification:
    """UTM medium, then UTM source, then referrer."""

    def test_utm_medium_email(self) -> None:
        result = attribute({"utm_medium": "email", "referrer": "https://www.google.com/"}, "example.com")
        assert result.source == TrafficSource.EMAIL
        assert result.referrer_domain == "google.com"

    def test_utm_source_social(self) -> None:
        assert classify_traffic_source(UTMParams(source="twitter"), None) == TrafficSource.SOCIAL

    def test_campaign_only(self) -> None:
        result = attribute({"utm_campaign": "launch"}, "example.com")
        assert result.source == TrafficSource.CAMPAIGN
        assert result.campaign == "launch"

    def test_search_referrer(self) -> None:
        result = attribute({"referrer": "https://www.google.co.uk/"}, "example.com")
        assert result.source == TrafficSource.SEARCH
        assert result.referrer_domain == "google.co.uk"

    def test_social_referrer(self) -> None:
        assert attribute({"referrer": "https://t.co/abc"}, "example.com").source == TrafficSource.SOCIAL

    def test_other_site_is_referral(self) -> None:
        result = attribute({"referrer": "https://blog.other.test/post"}, "example.com")
        assert result.source == TrafficSource.REFERRAL
        assert result.referrer_domain == "blog.other.test"

    def test_same_site_is_internal_without_domain(self) -> None:
        result = attribute({"referrer": "https://www.example.com/pricing"}, "example.com")
        assert result.source == TrafficSource.INTERNAL
        assert result.referrer_domain is None

    def test_no_referrer_is_direct(self) -> None:
        result = attribute({}, "example.com")
        assert result.source == TrafficSource.DIRECT
        assert result.referrer_domain is None
        assert result.campaign is None
