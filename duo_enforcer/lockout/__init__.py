"""
Lockout Module
==============
Failure counting and temporary denial of principals, persisted across restarts.
"""

from .models import LockoutConfig, LockoutRecord
from .store import InMemoryLockoutStore, LockoutStore, RedisLockoutStore
from .tracker import LockoutTracker

__all__ = [
    # Models
    "LockoutConfig",
    "LockoutRecord",
    # Stores
    "LockoutStore",
    "InMemoryLockoutStore",
    "RedisLockoutStore",
    # Tracker
    "LockoutTracker",
]
