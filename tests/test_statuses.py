import pytest

from app.core.statuses import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    TRANSITIONS,
    TokenStatus,
    allowed_targets,
    can_transition,
    is_active,
    is_terminal,
)

LEGAL = [
    ("waiting", "called"),
    ("waiting", "cancelled"),
    ("called", "serving"),
    ("called", "completed"),
    ("called", "no-show"),
    ("called", "cancelled"),
    ("serving", "completed"),
    ("serving", "cancelled"),
]

def test_table_covers_every_status():
    assert set(TRANSITIONS) == set(TokenStatus)
    assert ACTIVE_STATUSES | TERMINAL_STATUSES == set(TokenStatus)
    assert not ACTIVE_STATUSES & TERMINAL_STATUSES

@pytest.mark.parametrize("current,target", LEGAL)
def test_legal_transitions(current, target):
    assert can_transition(current, target)

def test_everything_else_is_illegal():
    legal = set(LEGAL)
    for current in TokenStatus:
        for target in TokenStatus:
            if (current.value, target.value) not in legal:
                assert not can_transition(current, target), (current, target)

@pytest.mark.parametrize("status", ["completed", "cancelled", "no-show"])
def test_terminal_statuses_have_no_exits(status):
    assert allowed_targets(status) == frozenset()
    assert is_terminal(status)
    assert not is_active(status)

def test_unknown_target_is_rejected():
    assert not can_transition("waiting", "paused")
