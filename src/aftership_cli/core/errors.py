"""Error hierarchy.

All errors raised by this package inherit from `AfterShipCliError` so the CLI
can report them uniformly. Transport failures stay as `httpx.HTTPError`.
"""

from __future__ import annotations


class AfterShipCliError(Exception):
    """Base for all aftership-cli errors."""


class ConfigurationError(AfterShipCliError):
    """Missing or invalid configuration (e.g., no API key)."""


class AfterShipApiError(AfterShipCliError):
    """The Tracking API answered with an error envelope.

    Attributes:
        status_code: HTTP status of the response.
        code: `meta.code` from the response body (AfterShip error code).
        error_type: `meta.type` from the response body, e.g. "NotFound".
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: int | None = None,
        error_type: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.code = code
        self.error_type = error_type
        super().__init__(message)


class AuthenticationError(AfterShipApiError):
    """Authentication failed (401/403)."""


class TrackingNotFoundError(AfterShipApiError):
    """The requested tracking (or resource) does not exist (404)."""


class RateLimitError(AfterShipApiError):
    """Rate limited by the API (429).

    Attributes:
        retry_after: Seconds to wait before retrying (from Retry-After header),
            or None if not provided.
    """

    def __init__(self, message: str = "Rate limited", *, retry_after: float | None = None, **kwargs) -> None:
        self.retry_after = retry_after
        if retry_after is not None:
            message = f"{message} (retry after {retry_after}s)"
        super().__init__(message, **kwargs)
