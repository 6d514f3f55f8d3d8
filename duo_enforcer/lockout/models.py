"""
Lockout Models
==============
Configuration and persisted state for principal lockout.
"""

from dataclasses import dataclass, asdict
from typing import Any, Dict


@dataclass(frozen=True)
class LockoutConfig:
    """Lockout policy configuration."""
    threshold: int = 5               # Failures before locking
    window_seconds: float = 60.0     # Failures counted from the first one in the window
    lockout_seconds: float = 300.0   # Base lock duration
    backoff_multiplier: float = 1.0  # Growth per failure beyond the threshold
    max_lockout_seconds: float = 3600.0

    def lock_duration(self, failures: int) -> float:
        steps = max(0, failures - self.threshold)
        duration = self.lockout_seconds * (self.backoff_multiplier ** steps)
        return min(self.max_lockout_seconds, max(1.0, duration))


@dataclass
class LockoutRecord:
    """Failure state for one principal."""
    failure_count: int
    window_start: float
    locked_until: float = 0.0

    def is_locked(self, now: float) -> bool:
        return self.locked_until > now

    def is_stale(self, now: float, config: LockoutConfig) -> bool:
        """Neither locked nor inside an active counting window."""
        return not self.is_locked(now) and now - self.window_start > config.window_seconds

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LockoutRecord":
        return cls(
            failure_count=int(data["failure_count"]),
            window_start=float(data["window_start"]),
            locked_until=float(data.get("locked_until", 0.0)),
        )
