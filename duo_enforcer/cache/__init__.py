"""
Verdict Cache Module
====================
TTL-bounded verdict memoization with single-flight deduplication.
"""

from .models import CacheConfig, CacheEntry, CacheKey
from .verdict_cache import VerdictCache

__all__ = [
    "CacheConfig",
    "CacheEntry",
    "CacheKey",
    "VerdictCache",
]
