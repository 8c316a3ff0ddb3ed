"""
Gateway failure taxonomy.

Only transport-level problems are raised from the ingestion layer. Content
problems (malformed JSON, Markdown fences, truncated lines) are absorbed by
the decoder and the normalizer and never show up here.
"""

from typing import Optional

RETRYABLE_STATUS_CODES = frozenset({408, 409, 429, 500, 502, 503, 504})


class GatewayError(Exception):
    """The AI gateway request failed."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        retryable: bool = False,
        retry_after_s: Optional[float] = None,
        hint: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable
        self.retry_after_s = retry_after_s
        self.hint = hint


class RateLimitError(GatewayError):
    """Rate limit exceeded (HTTP 429)."""


class QuotaExceededError(GatewayError):
    """Gateway credits are exhausted (HTTP 402)."""


class StreamFailedError(GatewayError):
    """The connection failed before or while reading the response."""


def _parse_retry_after(raw: Optional[str]) -> Optional[float]:
    if not raw or not raw.strip():
        return None
    try:
        seconds = float(raw)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def error_for_status(status_code: int, body: str = "", headers=None) -> GatewayError:
    """Map a non-success gateway status to the matching GatewayError."""
    if status_code == 429:
        retry_after = _parse_retry_after(headers.get("Retry-After") if headers else None)
        return RateLimitError(
            "Rate limit exceeded",
            status_code=status_code,
            retryable=True,
            retry_after_s=retry_after,
            hint="Wait and try again later.",
        )
    if status_code == 402:
        return QuotaExceededError(
            "Quota exhausted",
            status_code=status_code,
            retryable=False,
            hint="Add credits to continue.",
        )

    hint = None
    if status_code in (401, 403):
        hint = "Check AI_GATEWAY_API_KEY."

    detail = f": {body}" if body else ""
    return GatewayError(
        f"AI gateway error (status={status_code}){detail}",
        status_code=status_code,
        retryable=status_code in RETRYABLE_STATUS_CODES,
        hint=hint,
    )
