"""
Enforcement Models
==================
Data models for principals, enforcement requests, verdicts and decisions.
"""

import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import FrozenSet, Optional, Tuple

from .factors import Factor, FactorKind


class VerdictStatus(str, Enum):
    """Outcome of one authorization attempt."""
    ALLOW = "ALLOW"
    DENY = "DENY"
    CHALLENGE_PENDING = "CHALLENGE_PENDING"
    ERROR = "ERROR"

    @property
    def is_terminal(self) -> bool:
        return self in (VerdictStatus.ALLOW, VerdictStatus.DENY)


class ReasonCode(str, Enum):
    """Machine-readable reason attached to verdicts and decisions."""
    ALLOWED = "allowed"
    BYPASS = "bypass"
    DENY_LIST = "deny-list"
    LOCKOUT = "lockout"
    REJECTED = "rejected"
    FRAUD = "fraud"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    PENDING = "pending"
    UPSTREAM_UNAVAILABLE = "upstream-unavailable"
    UPSTREAM_RATE_LIMITED = "upstream-rate-limited"
    INTEGRATION_UNAUTHORIZED = "integration-unauthorized"
    INVALID_RESPONSE = "invalid-response"
    NOT_ENROLLED = "not-enrolled"
    FACTOR_NOT_PERMITTED = "factor-not-permitted"
    PASSCODES_SENT = "passcodes-sent"
    PREAUTH_ALLOW = "preauth-allow"
    LOCKOUT_STORE_UNAVAILABLE = "lockout-store-unavailable"
    INTERNAL_ERROR = "internal-error"


class DecisionOutcome(str, Enum):
    """What the enforcement point is told to do."""
    ALLOW = "ALLOW"
    DENY = "DENY"
    ERROR = "ERROR"


@dataclass(frozen=True)
class Principal:
    """The identity attempting the protected action."""
    id: str
    enrolled_factors: Optional[FrozenSet[FactorKind]] = None


@dataclass(frozen=True)
class ClientContext:
    """Where the attempt came from."""
    source_address: Optional[str] = None
    application_id: Optional[str] = None


@dataclass(frozen=True)
class EnforcementRequest:
    """One attempt at a protected action. Consumed once, never mutated."""
    principal: Principal
    resource: str
    factor: Factor
    context: ClientContext = field(default_factory=ClientContext)
    requested_at: float = field(default_factory=time.time)
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def cache_key(self) -> Tuple[str, str]:
        return (self.principal.id, self.resource)


@dataclass(frozen=True)
class Verdict:
    """
    Outcome recorded for one authorization attempt.

    ALLOW and DENY are terminal and immutable. CHALLENGE_PENDING may be
    resolved exactly once into ALLOW, DENY or ERROR via ``resolve``.
    """
    status: VerdictStatus
    reason: ReasonCode
    factor: Optional[FactorKind] = None
    issued_at: float = field(default_factory=time.time)
    expires_at: Optional[float] = None
    txid: Optional[str] = None
    definitive: bool = False
    message: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def cacheable(self) -> bool:
        """Only definitive terminal outcomes and bypass grants may be memoized."""
        if not self.is_terminal:
            return False
        if self.reason == ReasonCode.BYPASS:
            return True
        return self.definitive and self.reason != ReasonCode.PASSCODES_SENT

    def resolve(
        self,
        status: VerdictStatus,
        reason: ReasonCode,
        definitive: bool = False,
        message: Optional[str] = None,
    ) -> "Verdict":
        """Transition a pending verdict. Terminal verdicts cannot change."""
        if self.status != VerdictStatus.CHALLENGE_PENDING:
            raise ValueError(f"Verdict already resolved as {self.status.value}")
        if status == VerdictStatus.CHALLENGE_PENDING:
            raise ValueError("A pending verdict must resolve to a final status")
        return replace(
            self,
            status=status,
            reason=reason,
            issued_at=time.time(),
            expires_at=None,
            definitive=definitive,
            message=message or self.message,
        )

    @classmethod
    def pending(cls, factor: FactorKind, txid: str, expires_at: float) -> "Verdict":
        return cls(
            status=VerdictStatus.CHALLENGE_PENDING,
            reason=ReasonCode.PENDING,
            factor=factor,
            txid=txid,
            expires_at=expires_at,
        )


@dataclass(frozen=True)
class Decision:
    """Final answer handed back to the enforcement point."""
    outcome: DecisionOutcome
    reason: ReasonCode
    message: str
    verdict: Optional[Verdict] = None
    fail_open: bool = False
    trail: Tuple[str, ...] = ()

    @property
    def allowed(self) -> bool:
        return self.outcome == DecisionOutcome.ALLOW

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "reason": self.reason.value,
            "message": self.message,
            "fail_open": self.fail_open,
            "factor": self.verdict.factor.value if self.verdict and self.verdict.factor else None,
            "trail": list(self.trail),
        }
