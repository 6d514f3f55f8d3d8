"""
Audit Logging Module
====================
Append-only, tamper-evident trail of enforcement decisions.
"""

from .event_types import AuditEventType
from .models import AuditEvent
from .hashing import compute_event_hash, verify_chain_integrity
from .logger import AuditLogger

__all__ = [
    # Event Types
    "AuditEventType",
    # Models
    "AuditEvent",
    # Hashing
    "compute_event_hash",
    "verify_chain_integrity",
    # Logger
    "AuditLogger",
]
