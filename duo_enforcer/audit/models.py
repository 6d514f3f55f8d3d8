"""
Audit Models
=============
Hash-chained audit record of enforcement events.
"""

from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class AuditEvent:
    """One audit entry; ``hash`` covers the previous entry's hash."""
    id: str
    timestamp: datetime
    service: str
    event_type: str
    principal: Optional[str]
    resource: Optional[str]
    outcome: str  # "allow", "deny", "error", "info"
    request_id: Optional[str]
    source_address: Optional[str]
    payload: Dict[str, Any]
    hash: str
    previous_hash: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["timestamp"] = self.timestamp.isoformat()
        return d
