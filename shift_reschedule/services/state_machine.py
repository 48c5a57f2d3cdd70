"""Reschedule request state machine.

Transitions are a lookup table keyed by ``(state, action)``. Nothing here
touches the database: the executor in ``reschedule_service`` plans a
transition with :func:`plan_transition`, commits it with a compare-and-swap
on the current status, then records each step with :func:`apply_transition`.
"""
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from shift_reschedule.errors import InvalidTransition, PermissionDenied
from shift_reschedule.schemas import RescheduleAction, RescheduleState, RescheduleType, StaffRole
from shift_reschedule.services.permissions import can_perform

TERMINAL_STATES: frozenset[RescheduleState] = frozenset(
    {
        RescheduleState.approved,
        RescheduleState.rejected,
        RescheduleState.cancelled,
        RescheduleState.expired,
        RescheduleState.completed,
    }
)

NON_TERMINAL_STATES: frozenset[RescheduleState] = frozenset(RescheduleState) - TERMINAL_STATES

TRANSITIONS: dict[tuple[RescheduleState, RescheduleAction], RescheduleState] = {
    (RescheduleState.pending_broadcast, RescheduleAction.accept): RescheduleState.pending_approval,
    (RescheduleState.pending_approval, RescheduleAction.approve): RescheduleState.approved,
    (RescheduleState.approved, RescheduleAction.complete): RescheduleState.completed,
    (RescheduleState.pending_approval, RescheduleAction.reject): RescheduleState.rejected,
    (RescheduleState.pending_broadcast, RescheduleAction.cancel): RescheduleState.cancelled,
    (RescheduleState.pending_acceptance, RescheduleAction.cancel): RescheduleState.cancelled,
    **{(state, RescheduleAction.expire): RescheduleState.expired for state in NON_TERMINAL_STATES},
}

# Manager-assigned requests go straight to the approver.
INITIAL_STATES: dict[RescheduleType, RescheduleState] = {
    RescheduleType.find_replacement: RescheduleState.pending_broadcast,
    RescheduleType.direct_swap: RescheduleState.pending_broadcast,
    RescheduleType.manager_assign: RescheduleState.pending_approval,
}

PermissionCheck = Callable[[RescheduleAction, Any, StaffRole | None, UUID | None], bool]


@dataclass(frozen=True)
class Actor:
    staff_id: UUID | None
    role: StaffRole | None

    @classmethod
    def system(cls) -> "Actor":
        return cls(staff_id=None, role=None)


@dataclass(frozen=True)
class Transition:
    action: RescheduleAction
    from_state: RescheduleState
    to_state: RescheduleState
    changed_at: datetime
    changed_by: UUID | None
    reason: str | None = None


def is_terminal(state: RescheduleState) -> bool:
    return state in TERMINAL_STATES


def initial_state(swap_type: RescheduleType) -> RescheduleState:
    return INITIAL_STATES[swap_type]


def next_state(current: RescheduleState, action: RescheduleAction) -> RescheduleState:
    if is_terminal(current):
        raise InvalidTransition(
            "This request is already closed.",
            f"Cannot {action.value} from terminal state {current.value}.",
        )
    try:
        return TRANSITIONS[(current, action)]
    except KeyError:
        raise InvalidTransition(
            "This action is not available for the request's current status.",
            f"No transition for action {action.value} from state {current.value}.",
        ) from None


def plan_transition(
    request: Any,
    action: RescheduleAction,
    actor: Actor,
    now: datetime,
    reason: str | None = None,
    permission_check: PermissionCheck = can_perform,
) -> Transition:
    """Decide the next state for ``action`` without mutating ``request``.

    Raises InvalidTransition when the state does not admit the action and
    PermissionDenied when the actor may not perform it. Expiry is a system
    action and skips the permission check.
    """
    to_state = next_state(request.status, action)
    if action != RescheduleAction.expire and not permission_check(
        action, request, actor.role, actor.staff_id
    ):
        raise PermissionDenied(
            "You do not have permission to perform this action.",
            f"Actor {actor.staff_id} ({actor.role}) may not {action.value} request {request.id} "
            f"in state {request.status.value}.",
        )
    return Transition(
        action=action,
        from_state=request.status,
        to_state=to_state,
        changed_at=now,
        changed_by=actor.staff_id,
        reason=reason,
    )


def follow_up(transition: Transition, action: RescheduleAction) -> Transition:
    """Chain a system step onto a planned transition inside the same unit of work.

    APPROVED is terminal to callers but folds into COMPLETED here, so the table
    is consulted directly instead of through :func:`next_state`.
    """
    try:
        to_state = TRANSITIONS[(transition.to_state, action)]
    except KeyError:
        raise InvalidTransition(
            "This action is not available for the request's current status.",
            f"No follow-up {action.value} from state {transition.to_state.value}.",
        ) from None
    return Transition(
        action=action,
        from_state=transition.to_state,
        to_state=to_state,
        changed_at=transition.changed_at,
        changed_by=transition.changed_by,
        reason=transition.reason,
    )


def history_entry_for(transition: Transition) -> dict[str, Any]:
    return {
        "state": transition.to_state,
        "changed_at": transition.changed_at,
        "changed_by": transition.changed_by,
        "reason": transition.reason,
    }


def apply_transition(request: Any, transition: Transition) -> dict[str, Any]:
    """Move ``request`` to the transition's target state and return its history entry."""
    request.status = transition.to_state
    return history_entry_for(transition)
