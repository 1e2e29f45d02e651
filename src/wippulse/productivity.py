"""Sources of the external TrueThroughput productivity signal."""

from __future__ import annotations

from typing import Mapping, Optional, Protocol

from .errors import UpstreamSignalUnavailable


def throughput_key(level: str, level_id: Optional[str]) -> str:
    """Key used in ``TRUE_THROUGHPUT``: ``org``, ``domain:<name>`` or ``team:<KEY>``."""
    if level == "org" or level_id is None:
        return "org"
    if level == "team":
        return f"team:{level_id.upper()}"
    return f"{level}:{level_id}"


class ThroughputSource(Protocol):
    def true_throughput(self, level: str, level_id: Optional[str]) -> float:
        """Return the biweekly TrueThroughput for a level.

        Raises:
            UpstreamSignalUnavailable: If no value can be provided.
        """
        ...


class UnconfiguredThroughputSource:
    """Used when no productivity integration is configured."""

    def true_throughput(self, level: str, level_id: Optional[str]) -> float:
        raise UpstreamSignalUnavailable("TrueThroughput integration is not configured", phase="productivity")


class StaticThroughputSource:
    """Serves TrueThroughput values from configuration."""

    def __init__(self, values: Mapping[str, float]) -> None:
        self._values = dict(values)

    def true_throughput(self, level: str, level_id: Optional[str]) -> float:
        key = throughput_key(level, level_id)
        try:
            return float(self._values[key])
        except KeyError:
            raise UpstreamSignalUnavailable(
                f"No TrueThroughput value configured for '{key}'", phase="productivity"
            ) from None
