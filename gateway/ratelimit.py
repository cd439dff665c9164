"""Store-backed sliding-window rate limiting for registration attempts."""

from __future__ import annotations

import logging
import time
from typing import Callable, Mapping, Optional

from .errors import RecordNotFound, StoreError
from .models import RATE_LIMIT_COLUMNS, RATE_LIMITS_TABLE, RateLimitDecision, RateLimitEntry
from .store import RecordStore

logger = logging.getLogger("accounts.gateway.ratelimit")

UNKNOWN_CLIENT = "unknown"
CLIENT_KEY_HEADERS = ("x-forwarded-for", "client-ip")


def _now_ms() -> int:
    return int(time.time() * 1000)


def client_key_from_headers(headers: Mapping[str, str]) -> str:
    """Derive the rate-limit bucket for a request.

    Requests without any forwarding header share the ``"unknown"`` bucket.
    """

    for name in CLIENT_KEY_HEADERS:
        value = headers.get(name)
        if value and value.strip():
            return value.strip()
    return UNKNOWN_CLIENT


class RateLimiter:
    """Count requests per client key in a record store table.

    The read and the following write are separate store calls, so concurrent
    requests for the same key can both observe the same ``count``. Limits are
    therefore best effort under concurrency.
    """

    def __init__(self, store: RecordStore, *, clock: Optional[Callable[[], int]] = None) -> None:
        self._store = store
        self._clock = clock or _now_ms

    async def _fetch(self, client_key: str) -> RateLimitEntry:
        row = await self._store.get(RATE_LIMITS_TABLE, client_key, RATE_LIMIT_COLUMNS)
        try:
            return RateLimitEntry.from_row(row)
        except (KeyError, TypeError, ValueError) as exc:
            raise StoreError(f"Malformed rate limit row: {exc}") from exc

    async def check_and_increment(
        self,
        client_key: str,
        window_ms: int,
        max_requests: int,
    ) -> RateLimitDecision:
        entry: Optional[RateLimitEntry]
        try:
            entry = await self._fetch(client_key)
        except RecordNotFound:
            entry = None
        except StoreError as exc:
            logger.error("Error checking rate limit for %s: %s (code=%s)", client_key, exc.message, exc.code)
            return RateLimitDecision.ALLOWED

        now = self._clock()
        try:
            if entry is None or now - entry.window_start >= window_ms:
                fresh = RateLimitEntry(client_key=client_key, count=1, window_start=now)
                await self._store.upsert(RATE_LIMITS_TABLE, fresh.to_row())
                return RateLimitDecision.ALLOWED

            if entry.count >= max_requests:
                logger.info("Rate limit exceeded for %s (%d requests)", client_key, entry.count)
                return RateLimitDecision.LIMITED

            await self._store.update(
                RATE_LIMITS_TABLE,
                client_key,
                {"count": entry.count + 1},
                RATE_LIMIT_COLUMNS,
            )
        except StoreError as exc:
            logger.error("Error recording rate limit for %s: %s (code=%s)", client_key, exc.message, exc.code)
        return RateLimitDecision.ALLOWED


__all__ = ["CLIENT_KEY_HEADERS", "RateLimiter", "UNKNOWN_CLIENT", "client_key_from_headers"]
