"""Tests for environment configuration loading."""

import sys
from pathlib import Path

import pytest

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from wippulse.config import (
    DEFAULT_API_URL,
    DEFAULT_DATABASE_URL,
    PaginationSettings,
    load_config,
    parse_team_keys,
)
from wippulse.errors import AuthenticationError, ConfigurationError

_ENV_NAMES = (
    "LINEAR_API_KEY",
    "LINEAR_API_URL",
    "WIP_PULSE_DATABASE_URL",
    "IGNORED_TEAM_KEYS",
    "TEAM_DOMAIN_MAPPINGS",
    "TRUE_THROUGHPUT",
    "PAGE_SIZE",
    "NESTED_PAGE_SIZE",
    "MAX_PAGES",
    "FETCH_NESTED",
    "WIP_LIMIT",
    "HEALTHY_THRESHOLD",
    "WARNING_THRESHOLD",
    "SYNC_INTERVAL_SECONDS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def test_load_config_defaults(monkeypatch):
    """Verify defaults are applied when only the API key is set."""
    monkeypatch.setenv("LINEAR_API_KEY", " lin_api_123 ")

    config = load_config()

    assert config.api_key == "lin_api_123"
    assert config.api_url == DEFAULT_API_URL
    assert config.database_url == DEFAULT_DATABASE_URL
    assert config.ignored_team_keys == frozenset()
    assert config.thresholds.wip_limit == 5
    assert config.pagination.page_size == 50
    assert config.sync_interval_seconds == 600


def test_load_config_missing_key_raises_authentication_error():
    """Verify a missing API key is rejected when syncing requires it."""
    with pytest.raises(AuthenticationError):
        load_config()


def test_load_config_without_key_for_metrics_only():
    """Verify metrics-only commands tolerate a missing API key."""
    config = load_config(require_api_key=False)

    assert config.api_key == ""


def test_load_config_parses_mappings_and_overrides(monkeypatch):
    """Verify JSON mappings, team keys and numeric overrides are parsed."""
    monkeypatch.setenv("LINEAR_API_KEY", "k")
    monkeypatch.setenv("IGNORED_TEAM_KEYS", "sec, ops,,")
    monkeypatch.setenv("TEAM_DOMAIN_MAPPINGS", '{"eng": "Platform", "WEB": "Product"}')
    monkeypatch.setenv("TRUE_THROUGHPUT", '{"org": "42", "team:ENG": 12}')
    monkeypatch.setenv("FETCH_NESTED", "false")
    monkeypatch.setenv("PAGE_SIZE", "25")
    monkeypatch.setenv("WIP_LIMIT", "3")
    monkeypatch.setenv("COMMENT_RECENT_HOURS", "48")
    monkeypatch.setenv("PROJECT_STALE_DAYS", "14")

    config = load_config()

    assert config.ignored_team_keys == frozenset({"SEC", "OPS"})
    assert config.team_domains == {"ENG": "Platform", "WEB": "Product"}
    assert config.true_throughput == {"org": 42.0, "team:ENG": 12.0}
    assert config.pagination.page_size == 25
    assert config.thresholds.wip_limit == 3
    assert config.thresholds.comment_recent_hours == 48
    assert config.thresholds.project_stale_days == 14
    assert config.thresholds.as_dict()["hygieneHealthyThreshold"] == 90.0
    assert config.domains() == ["Platform", "Product"]
    assert config.teams_for_domain("Platform") == frozenset({"ENG"})


@pytest.mark.parametrize(
    "name,value",
    [
        ("TEAM_DOMAIN_MAPPINGS", "{not json"),
        ("TEAM_DOMAIN_MAPPINGS", "[1, 2]"),
        ("TRUE_THROUGHPUT", '{"org": "lots"}'),
        ("MAX_PAGES", "0"),
        ("WIP_LIMIT", "five"),
        ("HEALTHY_THRESHOLD", "-1"),
    ],
)
def test_load_config_rejects_malformed_values(monkeypatch, name, value):
    """Verify malformed environment values raise ConfigurationError."""
    monkeypatch.setenv("LINEAR_API_KEY", "k")
    monkeypatch.setenv(name, value)

    with pytest.raises(ConfigurationError):
        load_config()


def test_load_config_rejects_inverted_status_bands(monkeypatch):
    """Verify a warning band above the healthy band is rejected."""
    monkeypatch.setenv("LINEAR_API_KEY", "k")
    monkeypatch.setenv("HEALTHY_THRESHOLD", "50")
    monkeypatch.setenv("WARNING_THRESHOLD", "70")

    with pytest.raises(ConfigurationError):
        load_config()


def test_parse_team_keys_handles_empty_values():
    """Verify empty input yields no keys and entries are upper-cased."""
    assert parse_team_keys(None) == frozenset()
    assert parse_team_keys("") == frozenset()
    assert parse_team_keys(" sec ,Ops") == frozenset({"SEC", "OPS"})


def test_pagination_page_size_depends_on_nested_fetch():
    """Verify nested queries use the smaller page size."""
    assert PaginationSettings(fetch_nested=True).page_size == 50
    assert PaginationSettings(fetch_nested=False).page_size == 100
