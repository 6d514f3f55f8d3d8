"""
Policy Module
=============
Policy configuration and the enforcement state machine.
"""

from .config import FailMode, PolicyConfig, ResourcePolicy
from .vault import load_credentials_from_vault
from .states import EnforcementState, InvalidTransition, StateTrail
from .poller import ChallengePoller
from .engine import PolicyEngine

__all__ = [
    # Config
    "FailMode",
    "PolicyConfig",
    "ResourcePolicy",
    "load_credentials_from_vault",
    # Lifecycle
    "EnforcementState",
    "InvalidTransition",
    "StateTrail",
    # Engine
    "ChallengePoller",
    "PolicyEngine",
]
