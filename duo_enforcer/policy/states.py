"""
Enforcement Lifecycle
=====================
States of one evaluation and the transitions allowed between them.
"""

from enum import Enum
from typing import Dict, FrozenSet, List, Tuple


class EnforcementState(str, Enum):
    RECEIVED = "RECEIVED"
    LOCKOUT_CHECK = "LOCKOUT_CHECK"
    DENIED_LOCKOUT = "DENIED_LOCKOUT"
    LIST_CHECK = "LIST_CHECK"
    BYPASSED = "BYPASSED"
    FACTOR_CHECK = "FACTOR_CHECK"
    CACHE_CHECK = "CACHE_CHECK"
    CACHED_RESULT = "CACHED_RESULT"
    SHARED_RESULT = "SHARED_RESULT"
    UPSTREAM_CALL = "UPSTREAM_CALL"
    CHALLENGE_SENT = "CHALLENGE_SENT"
    POLLING = "POLLING"
    ALLOWED = "ALLOWED"
    DENIED = "DENIED"
    TIMED_OUT = "TIMED_OUT"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


S = EnforcementState

TERMINAL_STATES: FrozenSet[EnforcementState] = frozenset({
    S.DENIED_LOCKOUT, S.ALLOWED, S.DENIED, S.TIMED_OUT, S.CANCELLED, S.FAILED,
})

# Reachable from any non-terminal state
ABORT_STATES: FrozenSet[EnforcementState] = frozenset({S.TIMED_OUT, S.CANCELLED, S.FAILED})

TRANSITIONS: Dict[EnforcementState, FrozenSet[EnforcementState]] = {
    S.RECEIVED: frozenset({S.LOCKOUT_CHECK}),
    S.LOCKOUT_CHECK: frozenset({S.DENIED_LOCKOUT, S.LIST_CHECK}),
    S.LIST_CHECK: frozenset({S.DENIED, S.BYPASSED, S.FACTOR_CHECK}),
    S.BYPASSED: frozenset({S.ALLOWED}),
    S.FACTOR_CHECK: frozenset({S.DENIED, S.CACHE_CHECK}),
    S.CACHE_CHECK: frozenset({S.CACHED_RESULT, S.SHARED_RESULT, S.UPSTREAM_CALL}),
    S.CACHED_RESULT: frozenset({S.ALLOWED, S.DENIED}),
    S.SHARED_RESULT: frozenset({S.ALLOWED, S.DENIED}),
    S.UPSTREAM_CALL: frozenset({S.CHALLENGE_SENT, S.ALLOWED, S.DENIED}),
    S.CHALLENGE_SENT: frozenset({S.POLLING}),
    S.POLLING: frozenset({S.ALLOWED, S.DENIED}),
}


class InvalidTransition(RuntimeError):
    """Raised when the lifecycle is driven out of order."""
    pass


class StateTrail:
    """Ordered record of the states one evaluation went through."""

    def __init__(self):
        self._states: List[EnforcementState] = [S.RECEIVED]

    @property
    def current(self) -> EnforcementState:
        return self._states[-1]

    @property
    def is_terminal(self) -> bool:
        return self.current in TERMINAL_STATES

    def advance(self, state: EnforcementState) -> None:
        allowed = TRANSITIONS.get(self.current, frozenset())
        if state not in allowed and not (state in ABORT_STATES and not self.is_terminal):
            raise InvalidTransition(f"{self.current.value} -> {state.value}")
        self._states.append(state)

    def abort(self, state: EnforcementState) -> None:
        """Move to an abort state unless the evaluation already finished."""
        if state not in ABORT_STATES:
            raise InvalidTransition(f"{state.value} is not an abort state")
        if not self.is_terminal:
            self._states.append(state)

    def as_tuple(self) -> Tuple[str, ...]:
        return tuple(s.value for s in self._states)
