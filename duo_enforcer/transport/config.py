"""
Transport Configuration
=======================
Integration credentials and client tuning for the provider connection.
"""

from dataclasses import dataclass, field

from ..errors import ConfigurationError
from .signature import MAX_RESPONSE_SKEW_SECONDS, SIGNATURE_ALGORITHM, SUPPORTED_DIGESTS


@dataclass(frozen=True)
class IntegrationCredentials:
    """Integration key, secret key and API hostname issued by the provider."""
    ikey: str
    skey: str = field(repr=False)
    host: str

    def __post_init__(self):
        missing = [name for name in ("ikey", "skey", "host") if not getattr(self, name)]
        if missing:
            raise ConfigurationError(f"Missing integration credentials: {', '.join(missing)}")
        if "://" in self.host or "/" in self.host:
            raise ConfigurationError(f"API host must be a bare hostname, got {self.host!r}")

    @property
    def base_url(self) -> str:
        return f"https://{self.host}"


@dataclass(frozen=True)
class TransportConfig:
    """Timeouts, retry budget and response validation window."""
    timeout: float = 10.0
    max_attempts: int = 3
    backoff_base: float = 0.2
    backoff_cap: float = 2.0
    response_skew_seconds: int = MAX_RESPONSE_SKEW_SECONDS
    signature_digest: str = SIGNATURE_ALGORITHM
    user_agent: str = "duo-enforcer/0.1.0"

    def __post_init__(self):
        if self.signature_digest not in SUPPORTED_DIGESTS:
            raise ConfigurationError(f"Unsupported signature digest: {self.signature_digest}")
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1")
        if self.timeout <= 0:
            raise ConfigurationError("timeout must be positive")
