from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shift_reschedule.db import get_db_session
from shift_reschedule.deps import get_current_user, require_owner
from shift_reschedule.errors import NotFound, ValidationError
from shift_reschedule.models import Branch, Staff
from shift_reschedule.schemas import ErrorCode, StaffCreate, StaffOut, StaffRole

router = APIRouter(prefix="/staff", tags=["staff"])


@router.get("", response_model=list[StaffOut])
async def list_staff(
    session: AsyncSession = Depends(get_db_session),
    current_user: Staff = Depends(get_current_user),
) -> list[StaffOut]:
    stmt = select(Staff).order_by(Staff.full_name)
    if current_user.role != StaffRole.owner:
        stmt = stmt.where(Staff.branch_id == current_user.branch_id)
    result = await session.execute(stmt)
    return [StaffOut.model_validate(s) for s in result.scalars().all()]


@router.get("/{staff_id}", response_model=StaffOut)
async def get_staff(
    staff_id: UUID,
    session: AsyncSession = Depends(get_db_session),
    _: Staff = Depends(get_current_user),
) -> StaffOut:
    staff = await session.get(Staff, staff_id)
    if not staff:
        raise NotFound(
            "Staff member not found.",
            f"No staff with id {staff_id}",
            ErrorCode.staff_not_found,
        )
    return StaffOut.model_validate(staff)


@router.post("", response_model=StaffOut, status_code=201)
async def create_staff(
    payload: StaffCreate,
    session: AsyncSession = Depends(get_db_session),
    _: Staff = Depends(require_owner),
) -> StaffOut:
    if payload.role != StaffRole.owner and payload.branch_id is None:
        raise ValidationError(
            "Staff and managers must belong to a branch.",
            f"branch_id is required for role {payload.role.value}.",
        )
    if payload.branch_id is not None and not await session.get(Branch, payload.branch_id):
        raise NotFound(
            "Branch not found.",
            f"No branch with id {payload.branch_id}",
            ErrorCode.branch_not_found,
        )
    staff = Staff(full_name=payload.full_name, role=payload.role, branch_id=payload.branch_id)
    session.add(staff)
    await session.commit()
    await session.refresh(staff)
    return StaffOut.model_validate(staff)
