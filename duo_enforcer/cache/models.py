"""
Verdict Cache Models
====================
Configuration and entries for the verdict cache.
"""

from dataclasses import dataclass
from typing import Tuple

from ..models import Verdict

CacheKey = Tuple[str, str]  # (principal id, resource)


@dataclass
class CacheConfig:
    """TTLs (seconds) per verdict kind and the table bound."""
    allow_ttl: float = 60.0
    deny_ttl: float = 2.0
    max_entries: int = 10000


@dataclass
class CacheEntry:
    """A memoized terminal verdict."""
    verdict: Verdict
    stored_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at
