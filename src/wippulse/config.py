"""Configuration parsing and validation for wip-pulse."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Mapping, Optional

from .errors import AuthenticationError, ConfigurationError

DEFAULT_API_URL = "https://api.linear.app/graphql"
DEFAULT_DATABASE_URL = "sqlite:///wip-pulse.db"


@dataclass(frozen=True)
class Thresholds:
    """Published policy constants for every metrics pillar.

    Percentages in a snapshot can be recomputed from the stored work items and
    these values alone, so they are embedded in every snapshot payload.
    """

    wip_limit: int = 5
    multi_project_limit: int = 1
    wip_age_days: int = 14
    healthy_threshold: float = 80.0
    warning_threshold: float = 60.0
    throughput_weekly_goal: float = 3.0
    throughput_window_weeks: int = 2
    quality_period_days: int = 14
    bug_penalty_per_engineer: float = 12.0
    net_bug_penalty_per_engineer: float = 200.0
    age_penalty_per_day: float = 0.5
    trend_flat_threshold: float = 2.0
    comment_recent_hours: int = 72
    project_stale_days: int = 7
    date_discrepancy_days: int = 30
    hygiene_healthy_threshold: float = 90.0
    hygiene_warning_threshold: float = 75.0

    def as_dict(self) -> Dict[str, float]:
        return {
            "wipLimit": self.wip_limit,
            "multiProjectLimit": self.multi_project_limit,
            "wipAgeDays": self.wip_age_days,
            "healthyThreshold": self.healthy_threshold,
            "warningThreshold": self.warning_threshold,
            "throughputWeeklyGoal": self.throughput_weekly_goal,
            "throughputWindowWeeks": self.throughput_window_weeks,
            "qualityPeriodDays": self.quality_period_days,
            "bugPenaltyPerEngineer": self.bug_penalty_per_engineer,
            "netBugPenaltyPerEngineer": self.net_bug_penalty_per_engineer,
            "agePenaltyPerDay": self.age_penalty_per_day,
            "commentRecentHours": self.comment_recent_hours,
            "projectStaleDays": self.project_stale_days,
            "dateDiscrepancyDays": self.date_discrepancy_days,
            "hygieneHealthyThreshold": self.hygiene_healthy_threshold,
            "hygieneWarningThreshold": self.hygiene_warning_threshold,
        }


@dataclass(frozen=True)
class PaginationSettings:
    """Page sizes and the runaway-pagination guard for remote fetches.

    Queries that select nested connections (labels, comments) cost more on the
    Linear side, so they use the smaller ``nested_page_size``.
    """

    flat_page_size: int = 100
    nested_page_size: int = 50
    max_pages: int = 100
    fetch_nested: bool = True

    @property
    def page_size(self) -> int:
        return self.nested_page_size if self.fetch_nested else self.flat_page_size


@dataclass(frozen=True)
class Config:
    """Validated runtime settings used by the sync and metrics engines."""

    api_key: str
    api_url: str = DEFAULT_API_URL
    database_url: str = DEFAULT_DATABASE_URL
    ignored_team_keys: FrozenSet[str] = frozenset()
    team_domains: Mapping[str, str] = field(default_factory=dict)
    true_throughput: Mapping[str, float] = field(default_factory=dict)
    thresholds: Thresholds = field(default_factory=Thresholds)
    pagination: PaginationSettings = field(default_factory=PaginationSettings)
    sync_interval_seconds: int = 600

    def domains(self) -> list:
        """Return every configured domain name in sorted order."""
        return sorted(set(self.team_domains.values()))

    def teams_for_domain(self, domain: str) -> FrozenSet[str]:
        return frozenset(
            key.upper() for key, name in self.team_domains.items() if name == domain
        )


def parse_team_keys(raw: Optional[str]) -> FrozenSet[str]:
    """Parse a comma separated team key list such as ``"SEC, ops"``."""
    if not raw:
        return frozenset()
    return frozenset(key.strip().upper() for key in raw.split(",") if key.strip())


def _parse_json_mapping(name: str, raw: Optional[str]) -> Dict[str, object]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid JSON in '{name}'.") from exc
    if not isinstance(parsed, dict):
        raise ConfigurationError(f"'{name}' must be a JSON object.")
    return parsed


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid value for '{name}': expected an integer.") from exc
    if value < minimum:
        raise ConfigurationError(f"Invalid value for '{name}': expected an integer >= {minimum}.")
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid value for '{name}': expected a number.") from exc
    if value <= 0:
        raise ConfigurationError(f"Invalid value for '{name}': expected a number greater than 0.")
    return value


def load_thresholds() -> Thresholds:
    """Build pillar thresholds from the environment, falling back to defaults."""
    defaults = Thresholds()
    thresholds = Thresholds(
        wip_limit=_env_int("WIP_LIMIT", defaults.wip_limit),
        multi_project_limit=_env_int("MULTI_PROJECT_LIMIT", defaults.multi_project_limit),
        wip_age_days=_env_int("WIP_AGE_DAYS", defaults.wip_age_days),
        healthy_threshold=_env_float("HEALTHY_THRESHOLD", defaults.healthy_threshold),
        warning_threshold=_env_float("WARNING_THRESHOLD", defaults.warning_threshold),
        throughput_weekly_goal=_env_float("THROUGHPUT_WEEKLY_GOAL", defaults.throughput_weekly_goal),
        quality_period_days=_env_int("QUALITY_PERIOD_DAYS", defaults.quality_period_days),
        comment_recent_hours=_env_int("COMMENT_RECENT_HOURS", defaults.comment_recent_hours),
        project_stale_days=_env_int("PROJECT_STALE_DAYS", defaults.project_stale_days),
    )
    if thresholds.warning_threshold > thresholds.healthy_threshold:
        raise ConfigurationError(
            "Invalid status bands: 'WARNING_THRESHOLD' must not exceed 'HEALTHY_THRESHOLD'."
        )
    return thresholds


def load_config(require_api_key: bool = True) -> Config:
    """Build and validate application configuration from the environment.

    Args:
        require_api_key: When ``False`` (metrics-only commands), a missing
            ``LINEAR_API_KEY`` is tolerated.

    Returns:
        A validated ``Config`` instance.

    Raises:
        ConfigurationError: If any value is malformed.
        AuthenticationError: If ``LINEAR_API_KEY`` is required but not set.
    """
    api_key = os.getenv("LINEAR_API_KEY", "").strip()
    if require_api_key and not api_key:
        raise AuthenticationError(
            "Missing required Linear API key. "
            "Set the 'LINEAR_API_KEY' environment variable before syncing."
        )

    team_domains = {
        str(key).upper(): str(value)
        for key, value in _parse_json_mapping(
            "TEAM_DOMAIN_MAPPINGS", os.getenv("TEAM_DOMAIN_MAPPINGS")
        ).items()
    }

    true_throughput: Dict[str, float] = {}
    for key, value in _parse_json_mapping("TRUE_THROUGHPUT", os.getenv("TRUE_THROUGHPUT")).items():
        try:
            true_throughput[str(key)] = float(value)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(
                f"Invalid TrueThroughput value for '{key}': expected a number."
            ) from exc

    defaults = PaginationSettings()
    pagination = PaginationSettings(
        flat_page_size=_env_int("PAGE_SIZE", defaults.flat_page_size),
        nested_page_size=_env_int("NESTED_PAGE_SIZE", defaults.nested_page_size),
        max_pages=_env_int("MAX_PAGES", defaults.max_pages),
        fetch_nested=os.getenv("FETCH_NESTED", "1").strip() not in ("0", "false", "no"),
    )

    return Config(
        api_key=api_key,
        api_url=os.getenv("LINEAR_API_URL", "").strip() or DEFAULT_API_URL,
        database_url=os.getenv("WIP_PULSE_DATABASE_URL", "").strip() or DEFAULT_DATABASE_URL,
        ignored_team_keys=parse_team_keys(os.getenv("IGNORED_TEAM_KEYS")),
        team_domains=team_domains,
        true_throughput=true_throughput,
        thresholds=load_thresholds(),
        pagination=pagination,
        sync_interval_seconds=_env_int("SYNC_INTERVAL_SECONDS", 600),
    )
