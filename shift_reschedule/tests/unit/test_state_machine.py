"""Unit tests for the reschedule state machine: transition table, terminal states, planning."""
from datetime import UTC, datetime
from types import SimpleNamespace
from uuid import uuid4

import pytest

from shift_reschedule.errors import InvalidTransition, PermissionDenied
from shift_reschedule.schemas import RescheduleAction, RescheduleState, RescheduleType, StaffRole
from shift_reschedule.services.state_machine import (
    NON_TERMINAL_STATES,
    TERMINAL_STATES,
    Actor,
    apply_transition,
    follow_up,
    history_entry_for,
    initial_state,
    is_terminal,
    next_state,
    plan_transition,
)

NOW = datetime(2026, 3, 2, 8, 0, tzinfo=UTC)


def _request(status: RescheduleState, swap_type: RescheduleType = RescheduleType.find_replacement, **kw):
    return SimpleNamespace(
        id=uuid4(),
        status=status,
        swap_type=swap_type,
        requester_staff_id=kw.get("requester", uuid4()),
        target_staff_id=kw.get("target"),
    )


@pytest.mark.unit
@pytest.mark.parametrize(
    ("state", "action", "expected"),
    [
        (RescheduleState.pending_broadcast, RescheduleAction.accept, RescheduleState.pending_approval),
        (RescheduleState.pending_approval, RescheduleAction.approve, RescheduleState.approved),
        (RescheduleState.pending_approval, RescheduleAction.reject, RescheduleState.rejected),
        (RescheduleState.pending_broadcast, RescheduleAction.cancel, RescheduleState.cancelled),
        (RescheduleState.pending_acceptance, RescheduleAction.cancel, RescheduleState.cancelled),
        (RescheduleState.pending_acceptance, RescheduleAction.expire, RescheduleState.expired),
    ],
)
def test_next_state_follows_table(state, action, expected):
    assert next_state(state, action) == expected


@pytest.mark.unit
def test_every_open_state_can_expire():
    for state in NON_TERMINAL_STATES:
        assert next_state(state, RescheduleAction.expire) == RescheduleState.expired


@pytest.mark.unit
@pytest.mark.parametrize("state", sorted(TERMINAL_STATES))
def test_terminal_states_reject_every_action(state):
    assert is_terminal(state)
    for action in RescheduleAction:
        with pytest.raises(InvalidTransition):
            next_state(state, action)


@pytest.mark.unit
def test_cancel_after_approval_requested_is_invalid():
    with pytest.raises(InvalidTransition) as exc:
        next_state(RescheduleState.pending_approval, RescheduleAction.cancel)
    assert exc.value.status_code == 409


@pytest.mark.unit
def test_initial_state_by_swap_type():
    assert initial_state(RescheduleType.find_replacement) == RescheduleState.pending_broadcast
    assert initial_state(RescheduleType.direct_swap) == RescheduleState.pending_broadcast
    assert initial_state(RescheduleType.manager_assign) == RescheduleState.pending_approval


@pytest.mark.unit
def test_plan_transition_does_not_mutate_request():
    request = _request(RescheduleState.pending_broadcast)
    actor = Actor(uuid4(), StaffRole.staff)
    transition = plan_transition(request, RescheduleAction.accept, actor, NOW)
    assert transition.to_state == RescheduleState.pending_approval
    assert transition.from_state == RescheduleState.pending_broadcast
    assert transition.changed_by == actor.staff_id
    assert request.status == RescheduleState.pending_broadcast


@pytest.mark.unit
def test_plan_transition_checks_permission():
    requester = uuid4()
    request = _request(RescheduleState.pending_broadcast, requester=requester)
    with pytest.raises(PermissionDenied):
        plan_transition(request, RescheduleAction.accept, Actor(requester, StaffRole.staff), NOW)


@pytest.mark.unit
def test_invalid_state_wins_over_permission():
    request = _request(RescheduleState.completed)
    with pytest.raises(InvalidTransition):
        plan_transition(request, RescheduleAction.approve, Actor(uuid4(), StaffRole.staff), NOW)


@pytest.mark.unit
def test_expire_skips_permission_check():
    request = _request(RescheduleState.pending_approval)
    transition = plan_transition(
        request, RescheduleAction.expire, Actor.system(), NOW, permission_check=lambda *args: False
    )
    assert transition.to_state == RescheduleState.expired
    assert transition.changed_by is None


@pytest.mark.unit
def test_approval_chains_into_completion():
    request = _request(RescheduleState.pending_approval)
    approval = plan_transition(request, RescheduleAction.approve, Actor(uuid4(), StaffRole.manager), NOW)
    completion = follow_up(approval, RescheduleAction.complete)
    assert completion.from_state == RescheduleState.approved
    assert completion.to_state == RescheduleState.completed
    assert history_entry_for(completion) == {
        "state": RescheduleState.completed,
        "changed_at": NOW,
        "changed_by": approval.changed_by,
        "reason": None,
    }


@pytest.mark.unit
def test_approved_is_closed_to_callers():
    with pytest.raises(InvalidTransition):
        next_state(RescheduleState.approved, RescheduleAction.complete)


@pytest.mark.unit
def test_apply_transition_moves_status_and_returns_entry():
    request = _request(RescheduleState.pending_approval)
    transition = plan_transition(
        request, RescheduleAction.reject, Actor(uuid4(), StaffRole.owner), NOW, reason="Short-staffed"
    )
    entry = apply_transition(request, transition)
    assert request.status == RescheduleState.rejected
    assert entry["state"] == RescheduleState.rejected
    assert entry["reason"] == "Short-staffed"
