from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shift_reschedule.errors import ShiftReassignmentFailed
from shift_reschedule.models import Staff, WorkShift
from shift_reschedule.schemas import StaffRole, WorkShiftStatus


class ShiftStore:
    """Work-shift reads and the single write the reschedule workflow needs.

    Writes are staged on the caller's session; the caller owns the commit so
    reassignment and the status transition land in one unit of work.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_shift(self, shift_id: UUID) -> WorkShift | None:
        return await self.session.get(WorkShift, shift_id)

    async def list_shifts_for_staff(
        self, staff_id: UUID, status: WorkShiftStatus | None = WorkShiftStatus.scheduled
    ) -> list[WorkShift]:
        stmt = select(WorkShift).where(WorkShift.staff_id == staff_id)
        if status is not None:
            stmt = stmt.where(WorkShift.status == status)
        result = await self.session.execute(stmt.order_by(WorkShift.start_time))
        return list(result.scalars().all())

    async def reassign_shift(
        self, shift_id: UUID, new_staff_id: UUID, expected_staff_id: UUID | None = None
    ) -> WorkShift:
        """Hand a scheduled shift to ``new_staff_id``.

        When ``expected_staff_id`` is given the shift must still be held by that
        staff member; a shift that changed hands since the request was made is
        never moved.
        """
        shift = await self.get_shift(shift_id)
        if shift is None:
            raise ShiftReassignmentFailed(
                "The shift could not be reassigned.",
                f"Shift {shift_id} no longer exists.",
            )
        if shift.status != WorkShiftStatus.scheduled:
            raise ShiftReassignmentFailed(
                "The shift could not be reassigned.",
                f"Shift {shift_id} is {shift.status.value}, expected SCHEDULED.",
            )
        if expected_staff_id is not None and shift.staff_id != expected_staff_id:
            raise ShiftReassignmentFailed(
                "The shift has changed hands since this request was made.",
                f"Shift {shift_id} is held by {shift.staff_id}, expected {expected_staff_id}.",
            )
        shift.previous_staff_id = shift.staff_id
        shift.staff_id = new_staff_id
        return shift


class StaffDirectory:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_staff(self, staff_id: UUID) -> Staff | None:
        return await self.session.get(Staff, staff_id)

    async def role_of(self, staff_id: UUID) -> StaffRole | None:
        staff = await self.get_staff(staff_id)
        return staff.role if staff else None
