"""Typed error taxonomy shared by queue, clients, adapters and providers.

Every error crossing the core boundary carries a machine-readable
``kind`` discriminator, a human-readable message, and an optional
``details`` dict (HTTP status, provider payload, attempt counts) for
structured logging. Callers branch on the class or on ``kind``; the
core never formats user-facing text from these beyond the message.

Retry semantics hang off this hierarchy: RetryQueue retries
RateLimitError only, and RetriesExhaustedError subclasses it so that
callers matching on rate-limit failures still see the terminal case.
"""

from __future__ import annotations

from typing import Any


class ParleyError(Exception):
    """Base class for all typed Parley errors.

    Attributes:
        kind: Stable discriminator string, one per subclass.
        message: Human-readable description.
        details: Structured context for logging (never None).
    """

    kind: str = "parley_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details: dict[str, Any] = dict(details) if details else {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-friendly representation for logs and reports."""
        return {"kind": self.kind, "message": self.message, "details": self.details}


class ConfigurationError(ParleyError):
    """A required identifier or credential is missing or invalid.

    Raised before any I/O takes place.
    """

    kind = "configuration"


class RateLimitError(ParleyError):
    """The provider rejected the request due to concurrency or throughput limits.

    The only kind RetryQueue retries.
    """

    kind = "rate_limit"

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        status_code: int | None = 429,
    ) -> None:
        super().__init__(message, details)
        self.status_code = status_code
        if status_code is not None:
            self.details.setdefault("status_code", status_code)


class RetriesExhaustedError(RateLimitError):
    """A rate-limited unit of work spent its whole retry budget."""

    kind = "retries_exhausted"

    @property
    def attempts(self) -> int:
        return int(self.details.get("attempts", 0))


class QueueFullError(ParleyError):
    """Enqueue rejected because the queue already holds max_queue_size items.

    Back-pressure from this process, not a remote rejection.
    """

    kind = "queue_full"

    @property
    def queue_size(self) -> int:
        return int(self.details.get("queue_size", 0))


class QueueShutdownError(ParleyError):
    """The queue was shut down before the request could be dispatched."""

    kind = "queue_shutdown"


class ProviderAPIError(ParleyError):
    """The provider answered with a non-success response other than a rate limit."""

    kind = "provider_api"

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, details)
        self.status_code = status_code
        if status_code is not None:
            self.details.setdefault("status_code", status_code)


class NetworkError(ParleyError):
    """No response was received at all (timeout, connection reset, DNS)."""

    kind = "network"


class TranscriptParseError(ParleyError):
    """No recognizable conversation structure could be found in a response."""

    kind = "transcript_parse"
