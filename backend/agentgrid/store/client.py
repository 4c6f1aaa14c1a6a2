"""
Client interface for the shared tabular store

Records are dicts of the form ``{"id": str, "fields": {...}}``. Every query
goes through a client-side sliding-window rate limiter, and mutating queries
can be wrapped in a coordinator lock scoped to the operation and table.
"""

import asyncio
import time
from collections import deque
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Protocol, runtime_checkable

import structlog

from agentgrid.core.config import Settings, get_settings
from agentgrid.core.exceptions import AgentGridException, ConfigurationError, RateLimitExceeded, StoreError

logger = structlog.get_logger(__name__)


class QueryOperation(str, Enum):
    SELECT = "select"
    FIND = "find"
    CREATE = "create"
    UPDATE = "update"
    DESTROY = "destroy"
    FIRST_PAGE = "first_page"

    @property
    def is_mutation(self) -> bool:
        return self in (QueryOperation.CREATE, QueryOperation.UPDATE, QueryOperation.DESTROY)


@runtime_checkable
class TableStoreClient(Protocol):
    async def query(
        self, table: str, op: QueryOperation, options: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]: ...

    async def test_connection(self) -> bool: ...


class SlidingWindowRateLimiter:
    """At most ``max_requests`` within any ``window_seconds`` span"""

    def __init__(self, max_requests: int, window_seconds: float):
        if max_requests < 1 or window_seconds <= 0:
            raise ConfigurationError(
                f"Rate limit needs at least 1 request per positive window, got {max_requests}/{window_seconds}s"
            )
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._timestamps: Deque[float] = deque()
        self._lock = asyncio.Lock()

    def _prune(self, now: float):
        while self._timestamps and now - self._timestamps[0] >= self.window_seconds:
            self._timestamps.popleft()

    def remaining(self) -> int:
        self._prune(time.monotonic())
        return self.max_requests - len(self._timestamps)

    def try_acquire(self) -> bool:
        now = time.monotonic()
        self._prune(now)
        if len(self._timestamps) >= self.max_requests:
            return False
        self._timestamps.append(now)
        return True

    async def acquire(self, timeout: Optional[float] = None):
        """Wait for a free slot; raises RateLimitExceeded if ``timeout`` passes first"""
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout

        async with self._lock:
            while not self.try_acquire():
                wait = self.window_seconds - (time.monotonic() - self._timestamps[0])
                if deadline is not None and loop.time() + wait > deadline:
                    raise RateLimitExceeded(
                        f"No request slot free within {timeout:g}s "
                        f"({self.max_requests} per {self.window_seconds:g}s)"
                    )
                logger.debug("Rate limit reached, waiting", wait_seconds=round(wait, 3))
                await asyncio.sleep(max(wait, 0))


class RateLimitedStoreClient:
    """Wraps a backend client with rate limiting, mutation locks and error accounting"""

    def __init__(
        self,
        backend: TableStoreClient,
        limiter: Optional[SlidingWindowRateLimiter] = None,
        coordinator: Any = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.backend = backend
        self.limiter = limiter or SlidingWindowRateLimiter(
            self.settings.STORE_RATE_LIMIT_REQUESTS,
            self.settings.STORE_RATE_LIMIT_WINDOW_SECONDS,
        )
        self.coordinator = coordinator

        self.request_count = 0
        self.error_count = 0
        self.last_response_ms: Optional[float] = None

    @property
    def error_rate(self) -> float:
        return self.error_count / self.request_count if self.request_count else 0.0

    async def query(
        self, table: str, op: QueryOperation, options: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        op = QueryOperation(op)
        await self.limiter.acquire()

        start = time.perf_counter()
        self.request_count += 1
        try:
            if op.is_mutation and self.coordinator is not None:
                async with self.coordinator.lock(f"store-{op.value}:{table}"):
                    return await self.backend.query(table, op, options)
            return await self.backend.query(table, op, options)
        except AgentGridException:
            self.error_count += 1
            raise
        except Exception as e:
            self.error_count += 1
            logger.error("Store query failed", table=table, operation=op.value, error=str(e))
            raise StoreError(f"{op.value} on {table} failed: {e}") from e
        finally:
            self.last_response_ms = (time.perf_counter() - start) * 1000

    async def test_connection(self) -> bool:
        try:
            return bool(await self.backend.test_connection())
        except Exception as e:
            logger.warning("Store connection test failed", error=str(e))
            return False

    def stats(self) -> Dict[str, Any]:
        return {
            "requests": self.request_count,
            "errors": self.error_count,
            "error_rate": self.error_rate,
            "last_response_ms": self.last_response_ms,
            "rate_limit_remaining": self.limiter.remaining(),
        }
