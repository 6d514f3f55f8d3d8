"""
Audit Event Types
=================
Events the enforcement engine writes to its audit trail.
"""

from enum import Enum


class AuditEventType(str, Enum):
    # Decisions
    DECISION_ALLOW = "decision.allow"
    DECISION_DENY = "decision.deny"
    DECISION_ERROR = "decision.error"
    DECISION_FAIL_OPEN = "decision.fail_open"

    # Challenges
    CHALLENGE_SENT = "challenge.sent"
    CHALLENGE_CANCELLED = "challenge.cancelled"

    # Lockout
    LOCKOUT_TRIGGERED = "lockout.triggered"

    # Security
    SECURITY_INVALID_RESPONSE = "security.invalid_response"
    SECURITY_BYPASS_GRANT = "security.bypass_grant"
