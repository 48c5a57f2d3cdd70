from uuid import UUID

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from shift_reschedule.db import get_db_session
from shift_reschedule.errors import AppError, PermissionDenied
from shift_reschedule.models import Staff
from shift_reschedule.schemas import ErrorCode, StaffRole
from shift_reschedule.services.permissions import APPROVER_ROLES


async def get_current_user(
    session: AsyncSession = Depends(get_db_session),
    x_staff_id: str | None = Header(default=None, alias="X-Staff-Id"),
) -> Staff:
    if not x_staff_id:
        raise AppError(
            ErrorCode.unauthenticated,
            "Authentication is required for this operation.",
            "Missing X-Staff-Id header.",
            401,
        )
    try:
        staff_id = UUID(x_staff_id)
    except ValueError as exc:  # noqa: B904
        raise AppError(
            ErrorCode.unauthenticated,
            "Invalid authentication token.",
            f"Invalid X-Staff-Id header: {x_staff_id}",
            401,
        ) from exc

    staff = await session.get(Staff, staff_id)
    if not staff:
        raise AppError(
            ErrorCode.unauthenticated,
            "Staff member for this session no longer exists.",
            f"Staff {staff_id} not found for current user.",
            401,
        )
    return staff


async def require_manager(current_user: Staff = Depends(get_current_user)) -> Staff:
    if current_user.role not in APPROVER_ROLES:
        raise PermissionDenied(
            "You do not have permission to perform this action.",
            f"User {current_user.id} is {current_user.role.value}, not a manager or owner.",
        )
    return current_user


async def require_owner(current_user: Staff = Depends(get_current_user)) -> Staff:
    if current_user.role != StaffRole.owner:
        raise PermissionDenied(
            "You do not have permission to perform this action.",
            f"User {current_user.id} is not an owner.",
        )
    return current_user
