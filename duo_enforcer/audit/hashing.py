"""
Audit Hashing
=============
Hash chaining of audit events and chain verification.
"""

import hashlib
import json
from typing import List, Optional, Tuple
import structlog

from .models import AuditEvent

logger = structlog.get_logger(__name__)


def compute_event_hash(previous_hash: Optional[str], event: AuditEvent) -> str:
    """
    SHA-256 over the previous hash and every content field of the event.

    Args:
        previous_hash: Hash of the preceding event (None for the first)
        event: Event whose content is hashed (its ``hash`` field is ignored)

    Returns:
        Hex digest
    """
    content = event.to_dict()
    content.pop("hash", None)
    content["previous_hash"] = previous_hash
    encoded = json.dumps(content, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def verify_chain_integrity(events: List[AuditEvent]) -> Tuple[bool, Optional[int]]:
    """
    Verify an audit chain.

    Returns:
        Tuple of (is_valid, first_invalid_index)
    """
    previous: Optional[str] = None
    for i, event in enumerate(events):
        if event.previous_hash != previous:
            logger.warning("Audit chain linkage broken", event_id=event.id, index=i)
            return False, i
        if event.hash != compute_event_hash(event.previous_hash, event):
            logger.warning("Audit chain integrity violation", event_id=event.id, index=i)
            return False, i
        previous = event.hash
    return True, None
