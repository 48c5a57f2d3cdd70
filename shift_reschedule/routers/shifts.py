from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shift_reschedule.db import get_db_session
from shift_reschedule.deps import get_current_user, require_manager
from shift_reschedule.errors import NotFound, PermissionDenied, ScheduleConflict
from shift_reschedule.models import Branch, Staff, WorkShift
from shift_reschedule.schemas import ErrorCode, StaffRole, WorkShiftCreate, WorkShiftOut, WorkShiftsResponse
from shift_reschedule.services.conflict_detector import find_conflicts
from shift_reschedule.services.shift_store import ShiftStore
from shift_reschedule.time_utils import as_utc, org_now

router = APIRouter(prefix="/shifts", tags=["shifts"])


def _shift_out(shift: WorkShift) -> WorkShiftOut:
    return WorkShiftOut(
        id=shift.id,
        staff_id=shift.staff_id,
        branch_id=shift.branch_id,
        start_time=as_utc(shift.start_time),
        end_time=as_utc(shift.end_time),
        status=shift.status,
        previous_staff_id=shift.previous_staff_id,
    )


@router.get("", response_model=WorkShiftsResponse)
async def list_shifts(
    from_time: datetime | None = Query(default=None, alias="from"),
    to_time: datetime | None = Query(default=None, alias="to"),
    staff_id: UUID | None = None,
    session: AsyncSession = Depends(get_db_session),
    current_user: Staff = Depends(get_current_user),
) -> WorkShiftsResponse:
    effective_staff_id = staff_id
    if current_user.role == StaffRole.staff:
        effective_staff_id = current_user.id
    # Default window starts at the beginning of today in the org's timezone.
    start = as_utc(from_time) if from_time else as_utc(org_now().replace(hour=0, minute=0, second=0, microsecond=0))

    stmt = select(WorkShift).where(WorkShift.end_time > start)
    if to_time:
        stmt = stmt.where(WorkShift.start_time < as_utc(to_time))
    if effective_staff_id:
        stmt = stmt.where(WorkShift.staff_id == effective_staff_id)
    elif current_user.role != StaffRole.owner:
        stmt = stmt.where(WorkShift.branch_id == current_user.branch_id)
    result = await session.execute(stmt.order_by(WorkShift.start_time))
    return WorkShiftsResponse(shifts=[_shift_out(s) for s in result.scalars().all()])


@router.post("", response_model=WorkShiftOut, status_code=201)
async def create_shift(
    payload: WorkShiftCreate,
    session: AsyncSession = Depends(get_db_session),
    current_user: Staff = Depends(require_manager),
) -> WorkShiftOut:
    if current_user.role != StaffRole.owner and payload.branch_id != current_user.branch_id:
        raise PermissionDenied(
            "You can only schedule shifts in your own branch.",
            f"User {current_user.id} of branch {current_user.branch_id} targeted branch {payload.branch_id}.",
        )
    if not await session.get(Branch, payload.branch_id):
        raise NotFound(
            "Branch not found.",
            f"No branch with id {payload.branch_id}",
            ErrorCode.branch_not_found,
        )
    if not await session.get(Staff, payload.staff_id):
        raise NotFound(
            "Staff member not found.",
            f"No staff with id {payload.staff_id}",
            ErrorCode.staff_not_found,
        )

    start, end = as_utc(payload.start_time), as_utc(payload.end_time)
    existing = await ShiftStore(session).list_shifts_for_staff(payload.staff_id)
    conflicts = find_conflicts(existing, start, end)
    if conflicts:
        raise ScheduleConflict(
            "This staff member already works during that time.",
            f"Staff {payload.staff_id} overlaps shift(s) {[str(s.id) for s in conflicts]}.",
        )

    shift = WorkShift(staff_id=payload.staff_id, branch_id=payload.branch_id, start_time=start, end_time=end)
    session.add(shift)
    await session.commit()
    await session.refresh(shift)
    return _shift_out(shift)
