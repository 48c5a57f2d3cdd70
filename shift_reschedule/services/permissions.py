from typing import Any
from uuid import UUID

from shift_reschedule.schemas import RescheduleAction, RescheduleState, RescheduleType, StaffRole

CLOSED_STATES = frozenset(
    {
        RescheduleState.approved,
        RescheduleState.completed,
        RescheduleState.rejected,
        RescheduleState.cancelled,
        RescheduleState.expired,
    }
)
APPROVER_ROLES = frozenset({StaffRole.manager, StaffRole.owner})
# Managers are staff members too; owners hold no shifts.
STAFF_ROLES = frozenset({StaffRole.staff, StaffRole.manager})
CANCELLABLE_STATES = frozenset({RescheduleState.pending_broadcast, RescheduleState.pending_acceptance})

USER_ACTIONS = (
    RescheduleAction.accept,
    RescheduleAction.approve,
    RescheduleAction.reject,
    RescheduleAction.cancel,
    RescheduleAction.edit,
)


def can_perform(
    action: RescheduleAction,
    request: Any,
    actor_role: StaffRole | None,
    actor_id: UUID | None,
) -> bool:
    """True if the actor may perform ``action`` on ``request`` in its current state."""
    if request.status in CLOSED_STATES:
        return False
    is_requester = actor_id is not None and actor_id == request.requester_staff_id

    if action == RescheduleAction.accept:
        if request.status != RescheduleState.pending_broadcast:
            return False
        if is_requester or actor_role not in STAFF_ROLES:
            return False
        if request.swap_type == RescheduleType.direct_swap:
            return actor_id == request.target_staff_id
        return True
    if action in (RescheduleAction.approve, RescheduleAction.reject):
        # TODO: decide whether a manager may approve their own request; not restricted today.
        return request.status == RescheduleState.pending_approval and actor_role in APPROVER_ROLES
    if action == RescheduleAction.cancel:
        return request.status in CANCELLABLE_STATES and is_requester
    if action == RescheduleAction.edit:
        return request.status == RescheduleState.pending_broadcast and is_requester
    return False


def allowed_actions(request: Any, actor_role: StaffRole | None, actor_id: UUID | None) -> list[RescheduleAction]:
    return [action for action in USER_ACTIONS if can_perform(action, request, actor_role, actor_id)]
