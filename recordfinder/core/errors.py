"""Exception hierarchy shared across search, analysis, and the pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from recordfinder.agents.rate_limiter import RateLimitStatus


class FinderError(Exception):
    """Base class for all record finder errors."""


class ConfigurationError(FinderError):
    """Invalid or incomplete configuration, raised at construction time."""


class SourceSearchError(FinderError):
    """A single source/term search call failed."""

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source


# ── LLM ──────────────────────────────────────────────────────────────


class LLMError(FinderError):
    """Base class for language model gateway failures."""

    retryable = False


class LLMTimeoutError(LLMError):
    """The provider did not answer within the configured timeout."""

    retryable = True

    def __init__(self, provider: str, timeout: float):
        super().__init__(f"LLM request to {provider} timed out after {timeout:g}s")
        self.provider = provider
        self.timeout = timeout


class TransientProviderError(LLMError):
    """Network failure, HTTP 5xx, or HTTP 429."""

    retryable = True

    def __init__(self, provider: str, message: str, status_code: int | None = None):
        super().__init__(f"{provider} error: {message}")
        self.provider = provider
        self.status_code = status_code


class FatalProviderError(LLMError):
    """Any other provider failure (bad credentials, invalid request)."""

    def __init__(self, provider: str, message: str, status_code: int | None = None):
        super().__init__(f"{provider} error: {message}")
        self.provider = provider
        self.status_code = status_code


class RateLimitExceededError(LLMError):
    """Daily quota for a limited provider/model is exhausted."""

    def __init__(self, status: RateLimitStatus):
        super().__init__(
            f"Daily LLM quota exhausted: {status.used}/{status.limit} requests used. "
            f"Resets at {status.resets_at.isoformat()}"
        )
        self.status = status


def classify_status(provider: str, status_code: int, body: str) -> LLMError:
    """Map an HTTP error status to the matching provider error."""
    message = f"{status_code} - {body[:300]}"
    if status_code == 429 or status_code >= 500:
        return TransientProviderError(provider, message, status_code)
    return FatalProviderError(provider, message, status_code)
