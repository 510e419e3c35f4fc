from pathlib import Path

import pytest

from src.core.services.analytics_classify import ClassifierConfig, EventClassifier
from src.rules.loader import load_rules, parse_rules


def test_project_rules_file_is_valid(rules):
    assert rules.project.slug == "zero-trust-analytics"
    assert rules.realtime.ttl_seconds == 30
    assert rules.funnels.max_steps == 10
    assert "gptbot" in rules.signatures.bot_patterns
    assert set(rules.signatures.pii_patterns) == {"ipv4", "ipv6", "email", "phone"}


def test_empty_content_gives_defaults():
    rules = parse_rules("")
    assert rules.ingest.max_batch_size == 50
    assert rules.goals.default_target == 1000


def test_fenced_yaml_block():
    content = "Notes first.\n```yaml\nrealtime:\n  ttl_seconds: 45\n```\ntrailing text"
    assert parse_rules(content).realtime.ttl_seconds == 45


def test_unknown_top_level_key_rejected():
    with pytest.raises(ValueError, match="Rules validation failed"):
        parse_rules("dashboards:\n  enabled: true\n")


def test_out_of_range_value_rejected():
    with pytest.raises(ValueError):
        parse_rules("heatmaps:\n  band_width_percent: 0\n")


def test_non_mapping_rejected():
    with pytest.raises(ValueError, match="mapping"):
        parse_rules("- a\n- b\n")


def test_bad_yaml_rejected():
    with pytest.raises(ValueError, match="Invalid YAML"):
        parse_rules("ingest: [unclosed\n")


def test_bot_patterns_lowercased():
    rules = parse_rules("signatures:\n  bot_patterns: [GoogleBot, '']\n")
    assert rules.signatures.bot_patterns == ["googlebot"]


def test_missing_file(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_rules(tmp_path / "missing.yaml")


def test_classifier_uses_configured_signatures(rules):
    config = ClassifierConfig.from_rules(rules)
    assert "claudebot" in config.bot_patterns
    assert config.allow_localhost_origin is False
    assert ClassifierConfig.from_rules(rules, allow_localhost=True).allow_localhost_origin is True

    classifier = EventClassifier(config)
    assert classifier.config.max_timestamp_age_seconds == 3600
