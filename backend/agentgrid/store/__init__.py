"""
External tabular store client interface and backends
"""

from .client import (
    QueryOperation,
    RateLimitedStoreClient,
    SlidingWindowRateLimiter,
    TableStoreClient,
)
from .memory import InMemoryTableStore

__all__ = [
    "QueryOperation",
    "TableStoreClient",
    "SlidingWindowRateLimiter",
    "RateLimitedStoreClient",
    "InMemoryTableStore",
]
