"""
Audit Logger
=============
Append-only audit trail for enforcement decisions and security events.
"""

import uuid
from collections import deque
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Optional, Union
import structlog

from .event_types import AuditEventType
from .hashing import compute_event_hash
from .models import AuditEvent

logger = structlog.get_logger(__name__)


class AuditLogger:
    """
    Hash-chained audit logger.

    Events are buffered until ``flush`` and optionally forwarded to a sink
    (file writer, queue publisher) as they are created.
    """

    def __init__(
        self,
        service_name: str = "duo-enforcer",
        sink: Optional[Callable[[AuditEvent], None]] = None,
        max_buffer: int = 10000,
    ):
        self.service_name = service_name
        self.sink = sink
        self._previous_hash: Optional[str] = None
        self._buffer: Deque[AuditEvent] = deque(maxlen=max_buffer)

    def set_previous_hash(self, hash_value: str) -> None:
        """Continue an existing chain (e.g., last hash persisted before restart)."""
        self._previous_hash = hash_value

    def log(
        self,
        event_type: Union[AuditEventType, str],
        outcome: str = "info",
        principal: Optional[str] = None,
        resource: Optional[str] = None,
        request_id: Optional[str] = None,
        source_address: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> AuditEvent:
        """
        Append an audit event to the chain.

        Args:
            event_type: Type of event
            outcome: "allow", "deny", "error" or "info"
            principal: Principal the event concerns
            resource: Protected resource
            request_id: Enforcement request id
            source_address: Client address
            payload: Additional event data

        Returns:
            The chained AuditEvent
        """
        event_type_str = (
            event_type.value if isinstance(event_type, AuditEventType)
            else event_type
        )

        event = AuditEvent(
            id=str(uuid.uuid4()),
            timestamp=datetime.now(timezone.utc),
            service=self.service_name,
            event_type=event_type_str,
            principal=principal,
            resource=resource,
            outcome=outcome,
            request_id=request_id,
            source_address=source_address,
            payload=payload or {},
            hash="",
            previous_hash=self._previous_hash,
        )
        event = replace(event, hash=compute_event_hash(self._previous_hash, event))

        self._previous_hash = event.hash
        self._buffer.append(event)

        if self.sink is not None:
            try:
                self.sink(event)
            except Exception as e:
                logger.error("Audit sink failed", event_id=event.id, error=str(e))

        logger.debug(
            "Audit event logged",
            event_id=event.id,
            event_type=event.event_type,
            outcome=outcome,
        )
        return event

    def flush(self) -> List[AuditEvent]:
        """Return and clear buffered events."""
        events = list(self._buffer)
        self._buffer.clear()
        return events
