"""Exception hierarchy for docs-sync.

Callers can discriminate transport problems, missing upstream sources,
rejected webhook payloads and bad configuration while the original cause
stays chained on ``__cause__``.
"""

from __future__ import annotations


class DocsSyncError(Exception):
    """Base class for all docs-sync exceptions."""


class TransportError(DocsSyncError):
    """Raised when a source cannot be retrieved or decoded from upstream."""

    def __init__(self, source_id: str, cause: str | BaseException) -> None:
        self.source_id = source_id
        self.cause = cause
        super().__init__(f"{source_id}: {cause}")


class NotFoundError(DocsSyncError):
    """Raised when a source no longer exists upstream."""

    def __init__(self, source_id: str) -> None:
        self.source_id = source_id
        super().__init__(f"{source_id}: not found upstream")


class AuthenticationError(DocsSyncError):
    """Raised when an inbound webhook fails signature verification."""


class ConfigurationError(DocsSyncError):
    """Raised when configuration or a staleness policy is malformed."""


class ExhaustedRetriesError(DocsSyncError):
    """Reported (never raised across the timer) when the scheduler gives up."""

    def __init__(self, failures: int, last_error: str | None) -> None:
        self.failures = failures
        self.last_error = last_error
        super().__init__(
            f"Scheduler stopped after {failures} consecutive failures (last error: {last_error})"
        )
