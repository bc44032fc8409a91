# titlequote/domain/errors.py
from __future__ import annotations

from typing import Any


class QuoteError(Exception):
    """
    Base for every failure the quote service reports to callers.

    `message` is safe to show to a caller; `details` is either structured data
    (validation issues) or an opaque reference string. Anything sensitive goes
    to the log, never into these two fields.
    """

    status_code: int = 500
    code: str = "quote_error"

    def __init__(self, message: str | None = None, *, details: Any = None) -> None:
        self.message = message or self.code
        self.details = details
        super().__init__(self.message)


class InvalidInput(QuoteError):
    status_code = 400
    code = "invalid_input"


class ValidationFailed(QuoteError):
    status_code = 400
    code = "validation_failed"


class NotFound(QuoteError):
    status_code = 404
    code = "not_found"


class SessionConflict(QuoteError):
    status_code = 409
    code = "session_conflict"


class Unauthorized(QuoteError):
    status_code = 401
    code = "unauthorized"


class StorageUnavailable(QuoteError):
    status_code = 500
    code = "storage_unavailable"


class UpstreamAuthFailure(QuoteError):
    status_code = 500
    code = "upstream_auth_failure"


class MalformedUpstreamResponse(QuoteError):
    status_code = 502
    code = "malformed_upstream_response"


class UpstreamRejected(QuoteError):
    """The rate service answered with a NACK instead of a result."""

    status_code = 502
    code = "upstream_rejected"


class UpstreamUnavailable(QuoteError):
    status_code = 502
    code = "upstream_unavailable"


class UpstreamTimeout(QuoteError):
    status_code = 504
    code = "upstream_timeout"


# Failures that leave the session in its prior state so the round can be retried.
RETRYABLE_ROUND_ERRORS: tuple[type[QuoteError], ...] = (UpstreamTimeout,)

# Failures that move a session to the errored state.
UPSTREAM_ERRORS: tuple[type[QuoteError], ...] = (
    UpstreamAuthFailure,
    MalformedUpstreamResponse,
    UpstreamRejected,
    UpstreamUnavailable,
    StorageUnavailable,
)
