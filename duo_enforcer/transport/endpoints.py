"""
Endpoints
=========
Logical endpoint names mapped to their Auth API route.
"""

from dataclasses import dataclass
from typing import Dict


@dataclass(frozen=True)
class Endpoint:
    """A provider route and how it may be called."""
    name: str
    method: str
    path: str
    idempotent: bool
    signed: bool = True


# Only read-style calls are retried; "auth" starts a challenge and a resend
# would put a second notification on the principal's device.
ENDPOINTS: Dict[str, Endpoint] = {
    "ping": Endpoint("ping", "GET", "/auth/v2/ping", idempotent=True, signed=False),
    "check": Endpoint("check", "GET", "/auth/v2/check", idempotent=True),
    "preauth": Endpoint("preauth", "POST", "/auth/v2/preauth", idempotent=True),
    "auth": Endpoint("auth", "POST", "/auth/v2/auth", idempotent=False),
    "auth_status": Endpoint("auth_status", "GET", "/auth/v2/auth_status", idempotent=True),
}


def get_endpoint(name: str) -> Endpoint:
    """Look up an endpoint by name, raising KeyError for unknown names."""
    try:
        return ENDPOINTS[name]
    except KeyError:
        raise KeyError(f"Unknown endpoint: {name}")
