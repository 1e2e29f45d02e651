"""Custom exception types for wip-pulse."""

from __future__ import annotations

from typing import Optional


class PulseError(Exception):
    """Base exception for all recoverable wip-pulse errors.

    ``phase`` names the pipeline step that failed (for example ``started`` or
    ``store``) so operators can tell where a sync stopped.
    """

    def __init__(self, message: str = "", *, phase: Optional[str] = None) -> None:
        super().__init__(message)
        self.phase = phase

    def __str__(self) -> str:
        message = super().__str__()
        if self.phase:
            return f"[{self.phase}] {message}"
        return message


class ConfigurationError(PulseError):
    """Raised when runtime configuration values are missing or invalid."""


class AuthenticationError(PulseError):
    """Raised when the Linear API key is unavailable."""


class ApiError(PulseError):
    """Raised when a Linear API request fails or returns an unexpected response."""


class RemoteConnectionError(ApiError):
    """Raised when the remote source cannot be reached before a sync starts."""


class SyncError(PulseError):
    """Base class for reconciliation failures that are not transport errors."""


class PaginationLimitExceeded(SyncError):
    """Raised when a paginated fetch still has pages left after the page cap."""

    def __init__(self, phase: str, pages: int, cursor: Optional[str]) -> None:
        super().__init__(
            f"Pagination limit of {pages} pages reached with more data remaining "
            f"(last cursor: {cursor!r})",
            phase=phase,
        )
        self.pages = pages
        self.cursor = cursor


class SyncInProgressError(SyncError):
    """Raised when a sync is requested while another one is still running."""


class StoreError(PulseError):
    """Raised when a local store query or transaction fails."""


class SnapshotParseError(PulseError):
    """Raised when a stored metrics payload does not match a known schema."""


class UpstreamSignalUnavailable(PulseError):
    """Raised when an external metric source (TrueThroughput) is not configured."""
