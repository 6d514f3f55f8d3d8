"""
Signed Transport
================
Authenticated HTTPS calls to the authentication provider.
"""

from .config import IntegrationCredentials, TransportConfig
from .endpoints import ENDPOINTS, Endpoint, get_endpoint
from .models import Device, ProviderResponse, ResponseEnvelope
from .signature import (
    MAX_RESPONSE_SKEW_SECONDS,
    SIGNATURE_ALGORITHM,
    SignedAPICall,
    build_auth_headers,
    canonical_request,
    canonicalize_params,
    check_response_timestamp,
    compute_signature,
    parse_server_time,
    sign_call,
)
from .client import SignedTransportClient

__all__ = [
    # Config
    "IntegrationCredentials",
    "TransportConfig",
    # Endpoints
    "ENDPOINTS",
    "Endpoint",
    "get_endpoint",
    # Models
    "Device",
    "ProviderResponse",
    "ResponseEnvelope",
    # Signing
    "MAX_RESPONSE_SKEW_SECONDS",
    "SIGNATURE_ALGORITHM",
    "SignedAPICall",
    "build_auth_headers",
    "canonical_request",
    "canonicalize_params",
    "check_response_timestamp",
    "compute_signature",
    "parse_server_time",
    "sign_call",
    # Client
    "SignedTransportClient",
]
