"""
Policy Configuration
====================
Static policy read once at startup: bypass and deny sets, factor rules,
fail mode, timeouts and lockout thresholds.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from fnmatch import fnmatchcase
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple

from ..cache.models import CacheConfig
from ..errors import ConfigurationError
from ..factors import FactorKind
from ..lockout.models import LockoutConfig
from ..transport.config import IntegrationCredentials, TransportConfig
from .vault import load_credentials_from_vault


class FailMode(str, Enum):
    """What to decide when the provider cannot give a definitive answer."""
    OPEN = "open"      # allow
    CLOSED = "closed"  # deny


@dataclass(frozen=True)
class ResourcePolicy:
    """Rules for resources matching a glob pattern."""
    pattern: str
    allowed_factors: Optional[FrozenSet[FactorKind]] = None
    fail_mode: Optional[FailMode] = None
    allow_ttl: Optional[float] = None

    def matches(self, resource: str) -> bool:
        return fnmatchcase(resource, self.pattern)

    def permits(self, kind: FactorKind) -> bool:
        return self.allowed_factors is None or kind in self.allowed_factors


@dataclass(frozen=True)
class PolicyConfig:
    """
    Immutable enforcement policy.

    ``fail_mode`` has no default: every deployment states whether an
    unreachable provider means allow or deny.
    """
    credentials: IntegrationCredentials
    fail_mode: FailMode
    bypass_principals: FrozenSet[str] = frozenset()
    bypass_resources: FrozenSet[str] = frozenset()
    deny_principals: FrozenSet[str] = frozenset()
    deny_resources: FrozenSet[str] = frozenset()
    resource_rules: Tuple[ResourcePolicy, ...] = ()
    lockout: LockoutConfig = field(default_factory=LockoutConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    transport: TransportConfig = field(default_factory=TransportConfig)
    poll_interval: float = 1.5
    poll_timeout: float = 60.0
    max_polls: int = 60
    request_timeout: float = 75.0
    use_preauth: bool = False
    supersede_pending: bool = False

    def __post_init__(self):
        if not isinstance(self.fail_mode, FailMode):
            raise ConfigurationError(f"fail_mode must be a FailMode, got {self.fail_mode!r}")

        for label, bypass, deny in (
            ("principal", self.bypass_principals, self.deny_principals),
            ("resource", self.bypass_resources, self.deny_resources),
        ):
            overlap = bypass & deny
            if overlap:
                raise ConfigurationError(
                    f"{label} listed in both bypass and deny sets: {', '.join(sorted(overlap))}"
                )

        if self.poll_interval <= 0 or self.poll_timeout <= 0 or self.request_timeout <= 0:
            raise ConfigurationError("poll_interval, poll_timeout and request_timeout must be positive")
        if self.request_timeout < self.poll_timeout:
            raise ConfigurationError(
                f"request_timeout ({self.request_timeout}s) must cover poll_timeout ({self.poll_timeout}s)"
            )
        if self.max_polls < 1:
            raise ConfigurationError("max_polls must be at least 1")
        if self.lockout.threshold < 1:
            raise ConfigurationError("lockout threshold must be at least 1")

    def rule_for(self, resource: str) -> Optional[ResourcePolicy]:
        """First resource rule whose pattern matches."""
        for rule in self.resource_rules:
            if rule.matches(resource):
                return rule
        return None

    def fail_mode_for(self, resource: str) -> FailMode:
        rule = self.rule_for(resource)
        if rule is not None and rule.fail_mode is not None:
            return rule.fail_mode
        return self.fail_mode

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "PolicyConfig":
        """
        Build a policy from a plain mapping (e.g., a parsed YAML/JSON file).

        Raises:
            ConfigurationError: Missing credentials, missing fail mode, bad values
        """
        try:
            creds = data.get("credentials") or {}
            if isinstance(creds, IntegrationCredentials):
                credentials = creds
            else:
                credentials = IntegrationCredentials(
                    ikey=creds.get("ikey", ""),
                    skey=creds.get("skey", ""),
                    host=creds.get("host", ""),
                )

            if "fail_mode" not in data or data["fail_mode"] in (None, ""):
                raise ConfigurationError("fail_mode must be set explicitly (open or closed)")

            rules = tuple(
                _parse_rule(pattern, spec)
                for pattern, spec in (data.get("resources") or {}).items()
            )

            return cls(
                credentials=credentials,
                fail_mode=FailMode(str(data["fail_mode"]).lower()),
                bypass_principals=_as_set(data.get("bypass_principals")),
                bypass_resources=_as_set(data.get("bypass_resources")),
                deny_principals=_as_set(data.get("deny_principals")),
                deny_resources=_as_set(data.get("deny_resources")),
                resource_rules=rules,
                lockout=LockoutConfig(**(data.get("lockout") or {})),
                cache=CacheConfig(**(data.get("cache") or {})),
                transport=TransportConfig(**(data.get("transport") or {})),
                poll_interval=float(data.get("poll_interval", 1.5)),
                poll_timeout=float(data.get("poll_timeout", 60.0)),
                max_polls=int(data.get("max_polls", 60)),
                request_timeout=float(data.get("request_timeout", 75.0)),
                use_preauth=_as_bool(data.get("use_preauth", False)),
                supersede_pending=_as_bool(data.get("supersede_pending", False)),
            )
        except ConfigurationError:
            raise
        except (TypeError, ValueError, AttributeError) as e:
            raise ConfigurationError(f"Malformed policy: {e}") from e

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "PolicyConfig":
        """
        Build a policy from ``DUO_*`` environment variables.

        When ``DUO_VAULT_PATH`` is set the integration credentials are read
        from Vault instead of ``DUO_IKEY``/``DUO_SKEY``/``DUO_API_HOST``.
        """
        env = os.environ if environ is None else environ

        vault_path = env.get("DUO_VAULT_PATH")
        if vault_path:
            credentials: Any = load_credentials_from_vault(
                vault_path,
                url=env.get("VAULT_ADDR"),
                token=env.get("VAULT_TOKEN"),
                mount_point=env.get("DUO_VAULT_MOUNT", "secret"),
            )
        else:
            credentials = {
                "ikey": env.get("DUO_IKEY", ""),
                "skey": env.get("DUO_SKEY", ""),
                "host": env.get("DUO_API_HOST", ""),
            }

        data: Dict[str, Any] = {
            "credentials": credentials,
            "fail_mode": env.get("DUO_FAIL_MODE"),
            "bypass_principals": _split(env.get("DUO_BYPASS_PRINCIPALS")),
            "bypass_resources": _split(env.get("DUO_BYPASS_RESOURCES")),
            "deny_principals": _split(env.get("DUO_DENY_PRINCIPALS")),
            "deny_resources": _split(env.get("DUO_DENY_RESOURCES")),
            "use_preauth": env.get("DUO_USE_PREAUTH", "false"),
            "supersede_pending": env.get("DUO_SUPERSEDE_PENDING", "false"),
        }

        for key, var in (
            ("poll_interval", "DUO_POLL_INTERVAL"),
            ("poll_timeout", "DUO_POLL_TIMEOUT"),
            ("max_polls", "DUO_MAX_POLLS"),
            ("request_timeout", "DUO_REQUEST_TIMEOUT"),
        ):
            if env.get(var):
                data[key] = env[var]

        lockout = {}
        for key, var, cast in (
            ("threshold", "DUO_LOCKOUT_THRESHOLD", int),
            ("window_seconds", "DUO_LOCKOUT_WINDOW", float),
            ("lockout_seconds", "DUO_LOCKOUT_DURATION", float),
            ("backoff_multiplier", "DUO_LOCKOUT_BACKOFF", float),
            ("max_lockout_seconds", "DUO_LOCKOUT_MAX", float),
        ):
            if env.get(var):
                try:
                    lockout[key] = cast(env[var])
                except ValueError as e:
                    raise ConfigurationError(f"{var} is not a number: {env[var]!r}") from e
        data["lockout"] = lockout

        cache = {}
        for key, var in (("allow_ttl", "DUO_CACHE_ALLOW_TTL"), ("deny_ttl", "DUO_CACHE_DENY_TTL")):
            if env.get(var):
                try:
                    cache[key] = float(env[var])
                except ValueError as e:
                    raise ConfigurationError(f"{var} is not a number: {env[var]!r}") from e
        data["cache"] = cache

        return cls.from_mapping(data)


def _parse_rule(pattern: str, spec: Mapping[str, Any]) -> ResourcePolicy:
    factors = spec.get("allowed_factors")
    fail_mode = spec.get("fail_mode")
    allow_ttl = spec.get("allow_ttl")
    return ResourcePolicy(
        pattern=pattern,
        allowed_factors=frozenset(FactorKind(f) for f in factors) if factors is not None else None,
        fail_mode=FailMode(fail_mode) if fail_mode else None,
        allow_ttl=float(allow_ttl) if allow_ttl is not None else None,
    )


def _as_set(values: Optional[Iterable[str]]) -> FrozenSet[str]:
    if not values:
        return frozenset()
    if isinstance(values, str):
        return frozenset(_split(values))
    return frozenset(values)


def _split(value: Optional[str]) -> Tuple[str, ...]:
    if not value:
        return ()
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")
