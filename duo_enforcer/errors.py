"""
Enforcer Exceptions
===================
Error taxonomy for the enforcement engine.

Transport errors are resolved through the fail-open/fail-closed policy,
signature errors are always fatal to the attempt, policy violations become
definitive denials and configuration errors stop the process from enforcing.
"""

from typing import Optional, Any


class EnforcerError(Exception):
    """Base exception for all enforcement engine errors."""

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        status_code: Optional[int] = None,
        code: Optional[int] = None,
        details: Any = None,
    ):
        self.message = message
        self.endpoint = endpoint
        self.status_code = status_code
        self.code = code
        self.details = details
        super().__init__(f"[{endpoint or 'engine'}] {message} (Status: {status_code})")


class TransportError(EnforcerError):
    """The upstream provider could not give a usable answer."""
    pass


class Unauthorized(TransportError):
    """Raised when the provider rejects the integration credentials (401/403)."""
    pass


class RateLimited(TransportError):
    """Raised when the provider throttles the integration (429)."""
    pass


class ServiceUnavailable(TransportError):
    """Raised when the provider is unreachable or answering with 5xx."""
    pass


class ServiceTimeout(ServiceUnavailable):
    """Raised specifically on request timeouts."""
    pass


class MalformedResponse(TransportError):
    """Raised when the response body is not a valid provider envelope."""
    pass


class ProviderRejected(TransportError):
    """Raised when the provider returns a FAIL envelope for a bad request."""
    pass


class SignatureError(EnforcerError):
    """Raised when a response fails local validation (stale or missing timestamp)."""
    pass


class PolicyViolation(EnforcerError):
    """A request violated policy (deny list, lockout, factor rule)."""
    pass


class ConfigurationError(EnforcerError):
    """Missing credentials or malformed policy. Fatal at startup."""
    pass
