"""
Duo Enforcer
============
Second-factor enforcement point backed by the Duo Auth API.
"""

__version__ = "0.1.0"

# Errors
from duo_enforcer.errors import (
    EnforcerError,
    TransportError,
    Unauthorized,
    RateLimited,
    ServiceUnavailable,
    ServiceTimeout,
    MalformedResponse,
    ProviderRejected,
    SignatureError,
    PolicyViolation,
    ConfigurationError,
)

# Factors
from duo_enforcer.factors import (
    FactorKind,
    AutoFactor,
    PushFactor,
    PhoneFactor,
    SmsFactor,
    PasscodeFactor,
    BypassCodeFactor,
    parse_factor,
)

# Models
from duo_enforcer.models import (
    VerdictStatus,
    ReasonCode,
    DecisionOutcome,
    Principal,
    ClientContext,
    EnforcementRequest,
    Verdict,
    Decision,
)

# Transport
from duo_enforcer.transport import (
    IntegrationCredentials,
    TransportConfig,
    SignedTransportClient,
    sign_call,
)

# Cache
from duo_enforcer.cache import CacheConfig, VerdictCache

# Lockout
from duo_enforcer.lockout import (
    LockoutConfig,
    LockoutTracker,
    InMemoryLockoutStore,
    RedisLockoutStore,
)

# Policy
from duo_enforcer.policy import (
    FailMode,
    PolicyConfig,
    ResourcePolicy,
    PolicyEngine,
    EnforcementState,
)

# Adapter
from duo_enforcer.adapter import EnforcementPoint, create_enforcement_router
from duo_enforcer.health import create_health_router

# Logging
from duo_enforcer.logs import setup_logging

__all__ = [
    "__version__",
    # Errors
    "EnforcerError",
    "TransportError",
    "Unauthorized",
    "RateLimited",
    "ServiceUnavailable",
    "ServiceTimeout",
    "MalformedResponse",
    "ProviderRejected",
    "SignatureError",
    "PolicyViolation",
    "ConfigurationError",
    # Factors
    "FactorKind",
    "AutoFactor",
    "PushFactor",
    "PhoneFactor",
    "SmsFactor",
    "PasscodeFactor",
    "BypassCodeFactor",
    "parse_factor",
    # Models
    "VerdictStatus",
    "ReasonCode",
    "DecisionOutcome",
    "Principal",
    "ClientContext",
    "EnforcementRequest",
    "Verdict",
    "Decision",
    # Transport
    "IntegrationCredentials",
    "TransportConfig",
    "SignedTransportClient",
    "sign_call",
    # Cache
    "CacheConfig",
    "VerdictCache",
    # Lockout
    "LockoutConfig",
    "LockoutTracker",
    "InMemoryLockoutStore",
    "RedisLockoutStore",
    # Policy
    "FailMode",
    "PolicyConfig",
    "ResourcePolicy",
    "PolicyEngine",
    "EnforcementState",
    # Adapter
    "EnforcementPoint",
    "create_enforcement_router",
    "create_health_router",
    # Logging
    "setup_logging",
]
