"""Error taxonomy for calls to metered market-data providers.

Transport failures (``httpx.HTTPError``) are not wrapped; they reach the
caller unchanged.
"""


class GatewayError(Exception):
    """Base class for gateway failures."""

    retryable: bool = False


class RateLimitExceeded(GatewayError):
    """Per-minute token bucket is empty. Retry after a short backoff."""

    retryable = True

    def __init__(self, retry_after: float = 60.0):
        self.retry_after = retry_after
        super().__init__(
            f"Rate limit exceeded. Please try again in {retry_after:.0f} seconds."
        )


class DailyQuotaExceeded(GatewayError):
    """Per-day cap reached. Nothing to retry until the calendar day changes."""

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(
            f"Daily API limit of {limit} requests reached. Please try again tomorrow."
        )


class MalformedResponse(GatewayError):
    """Provider payload is missing a field the normalizer needs."""

    def __init__(self, function: str, field: str, notice: str | None = None):
        self.function = function
        self.field = field
        self.notice = notice
        message = f"{function} response is missing or has an invalid '{field}'"
        if notice:
            message = f"{message} (provider said: {notice})"
        super().__init__(message)


class ProviderNotConfigured(GatewayError):
    """Provider credentials are missing from configuration."""

    def __init__(self, setting: str):
        self.setting = setting
        super().__init__(f"{setting} is not configured")
