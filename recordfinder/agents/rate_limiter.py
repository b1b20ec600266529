"""Daily request quota for rate-limited LLM provider/model combinations.

Usage is counted per UTC calendar day and persisted in the finder store, so
the count survives restarts. A new day starts from zero.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from pydantic import BaseModel

from recordfinder.core.config import FinderConfig
from recordfinder.core.store import FinderStore

logger = logging.getLogger(__name__)

DEFAULT_SCOPE = "default"


class UsageRecord(BaseModel):
    """Requests made on one UTC day."""

    date: str  # YYYY-MM-DD
    count: int = 0
    last_updated: datetime | None = None


class RateLimitStatus(BaseModel):
    used: int
    remaining: int
    limit: int
    is_warning: bool
    is_exceeded: bool
    resets_at: datetime
    warning_threshold: int


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RateLimiter:
    """Quota counter keyed by (scope, UTC day)."""

    def __init__(
        self,
        store: FinderStore,
        daily_limit: int = 1000,
        warning_threshold: int = 900,
        scope: str = DEFAULT_SCOPE,
        clock: Callable[[], datetime] | None = None,
    ):
        if daily_limit < 1:
            raise ValueError("daily_limit must be >= 1")
        self.store = store
        self.daily_limit = daily_limit
        self.warning_threshold = warning_threshold
        self.scope = scope
        self._clock = clock or _utc_now

    @classmethod
    def from_config(cls, config: FinderConfig, store: FinderStore) -> "RateLimiter":
        """One quota per provider/model pair."""
        return cls(
            store,
            daily_limit=config.rate_limit.daily_limit,
            warning_threshold=config.rate_limit.warning_threshold,
            scope=f"{config.llm.provider}:{config.llm.model}",
        )

    # ── Clock ────────────────────────────────────────────────

    def _today(self) -> str:
        return self._clock().astimezone(timezone.utc).strftime("%Y-%m-%d")

    def next_reset(self) -> datetime:
        """Next UTC midnight."""
        now = self._clock().astimezone(timezone.utc)
        midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return midnight + timedelta(days=1)

    # ── Usage ────────────────────────────────────────────────

    def get_usage(self) -> UsageRecord:
        today = self._today()
        row = self.store.get_usage(self.scope, today)
        if row is None:
            return UsageRecord(date=today)
        return UsageRecord.model_validate(row)

    def get_status(self) -> RateLimitStatus:
        used = self.get_usage().count
        return RateLimitStatus(
            used=used,
            remaining=max(0, self.daily_limit - used),
            limit=self.daily_limit,
            is_warning=used >= self.warning_threshold,
            is_exceeded=used >= self.daily_limit,
            resets_at=self.next_reset(),
            warning_threshold=self.warning_threshold,
        )

    def can_make_request(self) -> bool:
        return self.get_usage().count < self.daily_limit

    def increment_usage(self) -> bool:
        """Consume one request. False when today's quota is already used up."""
        ok = self.store.try_increment_usage(self.scope, self._today(), self.daily_limit)
        if not ok:
            logger.warning("Daily quota exhausted for %s (%d)", self.scope, self.daily_limit)
        return ok

    def reset_usage(self) -> None:
        self.store.reset_usage(self.scope, self._today())
        logger.info("Usage reset for %s", self.scope)

    def get_warning_message(self) -> str | None:
        status = self.get_status()
        if status.is_exceeded:
            return (
                f"Daily LLM quota of {status.limit} requests is used up. "
                f"It resets at {status.resets_at:%Y-%m-%d %H:%M} UTC."
            )
        if status.is_warning:
            return (
                f"LLM quota warning: {status.used}/{status.limit} requests used "
                f"({status.remaining} remaining)"
            )
        return None
