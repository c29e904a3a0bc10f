from enum import Enum
from typing import Dict, FrozenSet

class TokenStatus(str, Enum):
    WAITING = "waiting"
    CALLED = "called"
    SERVING = "serving"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no-show"

ACTIVE_STATUSES: FrozenSet[TokenStatus] = frozenset({
    TokenStatus.WAITING,
    TokenStatus.CALLED,
    TokenStatus.SERVING,
})

TERMINAL_STATUSES: FrozenSet[TokenStatus] = frozenset({
    TokenStatus.COMPLETED,
    TokenStatus.CANCELLED,
    TokenStatus.NO_SHOW,
})

# Plain string values for SQL filters on the ``tokens.status`` column
ACTIVE_STATUS_VALUES = sorted(s.value for s in ACTIVE_STATUSES)
TERMINAL_STATUS_VALUES = sorted(s.value for s in TERMINAL_STATUSES)

TRANSITIONS: Dict[TokenStatus, FrozenSet[TokenStatus]] = {
    TokenStatus.WAITING: frozenset({TokenStatus.CALLED, TokenStatus.CANCELLED}),
    TokenStatus.CALLED: frozenset({
        TokenStatus.SERVING,
        TokenStatus.COMPLETED,
        TokenStatus.NO_SHOW,
        TokenStatus.CANCELLED,
    }),
    TokenStatus.SERVING: frozenset({TokenStatus.COMPLETED, TokenStatus.CANCELLED}),
    TokenStatus.COMPLETED: frozenset(),
    TokenStatus.CANCELLED: frozenset(),
    TokenStatus.NO_SHOW: frozenset(),
}

def allowed_targets(status: str) -> FrozenSet[TokenStatus]:
    return TRANSITIONS[TokenStatus(status)]

def can_transition(current: str, target: str) -> bool:
    try:
        return TokenStatus(target) in allowed_targets(current)
    except ValueError:
        return False

def is_active(status: str) -> bool:
    return TokenStatus(status) in ACTIVE_STATUSES

def is_terminal(status: str) -> bool:
    return TokenStatus(status) in TERMINAL_STATUSES
