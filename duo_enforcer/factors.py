"""
Authentication Factors
======================
Tagged factor variants. Each variant carries the parameters it needs and
knows how it is expressed on the Auth API.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Union


class FactorKind(str, Enum):
    """Second-factor methods a request may ask for."""
    AUTO = "auto"
    PUSH = "push"
    PASSCODE = "passcode"
    PHONE = "phone"
    SMS = "sms"
    BYPASS_CODE = "bypass_code"

    @classmethod
    def _missing_(cls, value):
        # Accepts "phone-call", "Bypass-Code" and similar spellings
        if not isinstance(value, str):
            return None
        name = value.strip().lower().replace("-", "_")
        name = _KIND_ALIASES.get(name, name)
        for member in cls:
            if member.value == name:
                return member
        return None


_KIND_ALIASES = {"phone_call": "phone", "bypass": "bypass_code"}


@dataclass(frozen=True)
class AutoFactor:
    """Let the provider pick the best factor for the principal's device."""
    device: str = "auto"
    kind: FactorKind = field(default=FactorKind.AUTO, init=False)
    is_async: bool = field(default=True, init=False)

    def auth_params(self) -> Dict[str, str]:
        return {"factor": "auto", "device": self.device, "async": "1"}


@dataclass(frozen=True)
class PushFactor:
    """Push notification to the principal's enrolled device."""
    device: str = "auto"
    pushinfo: Optional[str] = None
    kind: FactorKind = field(default=FactorKind.PUSH, init=False)
    is_async: bool = field(default=True, init=False)

    def auth_params(self) -> Dict[str, str]:
        params = {"factor": "push", "device": self.device, "async": "1"}
        if self.pushinfo:
            params["pushinfo"] = self.pushinfo
        return params


@dataclass(frozen=True)
class PhoneFactor:
    """Phone call callback."""
    device: str = "auto"
    kind: FactorKind = field(default=FactorKind.PHONE, init=False)
    is_async: bool = field(default=True, init=False)

    def auth_params(self) -> Dict[str, str]:
        return {"factor": "phone", "device": self.device, "async": "1"}


@dataclass(frozen=True)
class SmsFactor:
    """Ask the provider to text a batch of passcodes. Never allows by itself."""
    device: str = "auto"
    kind: FactorKind = field(default=FactorKind.SMS, init=False)
    is_async: bool = field(default=False, init=False)

    def auth_params(self) -> Dict[str, str]:
        return {"factor": "sms", "device": self.device}


@dataclass(frozen=True)
class PasscodeFactor:
    """One-time passcode typed by the principal."""
    passcode: str
    kind: FactorKind = field(default=FactorKind.PASSCODE, init=False)
    is_async: bool = field(default=False, init=False)

    def __repr__(self) -> str:
        return "PasscodeFactor(passcode='***')"

    def auth_params(self) -> Dict[str, str]:
        return {"factor": "passcode", "passcode": self.passcode}


@dataclass(frozen=True)
class BypassCodeFactor:
    """Administrator-issued bypass code, submitted upstream as a passcode."""
    code: str
    kind: FactorKind = field(default=FactorKind.BYPASS_CODE, init=False)
    is_async: bool = field(default=False, init=False)

    def __repr__(self) -> str:
        return "BypassCodeFactor(code='***')"

    def auth_params(self) -> Dict[str, str]:
        return {"factor": "passcode", "passcode": self.code}


Factor = Union[AutoFactor, PushFactor, PhoneFactor, SmsFactor, PasscodeFactor, BypassCodeFactor]


def parse_factor(name: str, passcode: Optional[str] = None) -> Factor:
    """
    Build a factor variant from its name.

    Args:
        name: Factor name ("push", "passcode", "phone-call", "sms", "bypass-code", "auto")
        passcode: Code for passcode and bypass-code factors

    Returns:
        The matching factor variant

    Raises:
        ValueError: Unknown factor, or a code-based factor without a code
    """
    try:
        kind = FactorKind(name)
    except ValueError:
        raise ValueError(f"Unknown factor: {name!r}")

    if kind == FactorKind.AUTO:
        return AutoFactor()
    if kind == FactorKind.PUSH:
        return PushFactor()
    if kind == FactorKind.PHONE:
        return PhoneFactor()
    if kind == FactorKind.SMS:
        return SmsFactor()

    if not passcode:
        raise ValueError(f"Factor {kind.value!r} requires a passcode")
    if kind == FactorKind.PASSCODE:
        return PasscodeFactor(passcode=passcode)
    return BypassCodeFactor(code=passcode)
