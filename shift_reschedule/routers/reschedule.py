from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from shift_reschedule.db import get_db_session
from shift_reschedule.deps import get_current_user, require_manager
from shift_reschedule.errors import PermissionDenied
from shift_reschedule.metrics import get_reschedule_stats
from shift_reschedule.models import Staff
from shift_reschedule.schemas import (
    ApproveIn,
    CleanupOut,
    RejectIn,
    RescheduleCreateIn,
    RescheduleListOut,
    RescheduleListParams,
    RescheduleRequestOut,
    RescheduleState,
    RescheduleStatsOut,
    RescheduleUpdateIn,
    StaffRole,
)
from shift_reschedule.services.reschedule_service import RescheduleService, serialize_request
from shift_reschedule.time_utils import utc_now

router = APIRouter(prefix="/reschedule", tags=["reschedule"])
service = RescheduleService()


def _scoped_branch(current_user: Staff, branch_id: UUID | None) -> UUID | None:
    """Owners see any branch; everyone else is pinned to their own."""
    if current_user.role == StaffRole.owner:
        return branch_id
    if branch_id is not None and branch_id != current_user.branch_id:
        raise PermissionDenied(
            "You cannot view another branch's requests.",
            f"User {current_user.id} of branch {current_user.branch_id} asked for branch {branch_id}.",
        )
    return current_user.branch_id


@router.post("", response_model=RescheduleRequestOut, status_code=201)
async def create_reschedule_request(
    payload: RescheduleCreateIn,
    session: AsyncSession = Depends(get_db_session),
    current_user: Staff = Depends(get_current_user),
) -> RescheduleRequestOut:
    created = await service.create_request(session, current_user, payload)
    return serialize_request(created, current_user, utc_now())


@router.get("/my-requests", response_model=RescheduleListOut)
async def list_my_requests(
    params: Annotated[RescheduleListParams, Query()],
    session: AsyncSession = Depends(get_db_session),
    current_user: Staff = Depends(get_current_user),
) -> RescheduleListOut:
    params = params.model_copy(update={"requesterStaffId": current_user.id})
    return await service.list_requests(session, params, current_user)


@router.get("/broadcasts", response_model=list[RescheduleRequestOut])
async def list_broadcasts(
    session: AsyncSession = Depends(get_db_session),
    current_user: Staff = Depends(get_current_user),
) -> list[RescheduleRequestOut]:
    now = utc_now()
    broadcasts = await service.list_broadcasts(session, current_user, now)
    return [serialize_request(r, current_user, now) for r in broadcasts]


@router.get("/approval-requests", response_model=RescheduleListOut)
async def list_approval_requests(
    params: Annotated[RescheduleListParams, Query()],
    session: AsyncSession = Depends(get_db_session),
    current_user: Staff = Depends(require_manager),
) -> RescheduleListOut:
    params = params.model_copy(
        update={
            "status": RescheduleState.pending_approval,
            "branchId": _scoped_branch(current_user, params.branchId),
        }
    )
    return await service.list_requests(session, params, current_user)


@router.get("/branch/{branch_id}", response_model=RescheduleListOut)
async def list_branch_requests(
    branch_id: UUID,
    params: Annotated[RescheduleListParams, Query()],
    session: AsyncSession = Depends(get_db_session),
    current_user: Staff = Depends(require_manager),
) -> RescheduleListOut:
    params = params.model_copy(update={"branchId": _scoped_branch(current_user, branch_id)})
    return await service.list_requests(session, params, current_user)


@router.get("/staff/{staff_id}", response_model=RescheduleListOut)
async def list_staff_requests(
    staff_id: UUID,
    params: Annotated[RescheduleListParams, Query()],
    session: AsyncSession = Depends(get_db_session),
    current_user: Staff = Depends(get_current_user),
) -> RescheduleListOut:
    update: dict = {"requesterStaffId": staff_id}
    if staff_id != current_user.id:
        if current_user.role == StaffRole.staff:
            raise PermissionDenied(
                "You can only view your own requests.",
                f"User {current_user.id} asked for requests of {staff_id}.",
            )
        update["branchId"] = _scoped_branch(current_user, params.branchId)
    return await service.list_requests(session, params.model_copy(update=update), current_user)


@router.get("/stats", response_model=RescheduleStatsOut)
async def reschedule_stats(
    branch_id: UUID | None = Query(default=None, alias="branchId"),
    session: AsyncSession = Depends(get_db_session),
    current_user: Staff = Depends(require_manager),
) -> RescheduleStatsOut:
    return await get_reschedule_stats(session, _scoped_branch(current_user, branch_id))


@router.post("/admin/cleanup", response_model=CleanupOut)
async def cleanup_expired(
    session: AsyncSession = Depends(get_db_session),
    _: Staff = Depends(require_manager),
) -> CleanupOut:
    cleaned = await service.sweep_expired(session)
    return CleanupOut(message=f"Expired {cleaned} reschedule request(s).", cleanedCount=cleaned)


@router.get("/{request_id}", response_model=RescheduleRequestOut)
async def get_reschedule_request(
    request_id: UUID,
    session: AsyncSession = Depends(get_db_session),
    current_user: Staff = Depends(get_current_user),
) -> RescheduleRequestOut:
    now = utc_now()
    found = await service.get_request(session, request_id, now, viewer=current_user)
    return serialize_request(found, current_user, now)


@router.patch("/{request_id}", response_model=RescheduleRequestOut)
async def update_reschedule_request(
    request_id: UUID,
    payload: RescheduleUpdateIn,
    session: AsyncSession = Depends(get_db_session),
    current_user: Staff = Depends(get_current_user),
) -> RescheduleRequestOut:
    updated = await service.update_request(
        session, request_id, current_user, reason=payload.reason, priority=payload.priority
    )
    return serialize_request(updated, current_user, utc_now())


@router.post("/{request_id}/accept", response_model=RescheduleRequestOut)
async def accept_reschedule_request(
    request_id: UUID,
    session: AsyncSession = Depends(get_db_session),
    current_user: Staff = Depends(get_current_user),
) -> RescheduleRequestOut:
    accepted = await service.accept(session, request_id, current_user)
    return serialize_request(accepted, current_user, utc_now())


@router.post("/{request_id}/approve", response_model=RescheduleRequestOut)
async def approve_reschedule_request(
    request_id: UUID,
    payload: ApproveIn | None = None,
    session: AsyncSession = Depends(get_db_session),
    current_user: Staff = Depends(require_manager),
) -> RescheduleRequestOut:
    assignee = payload.assigneeStaffId if payload else None
    approved = await service.approve(session, request_id, current_user, assignee_staff_id=assignee)
    return serialize_request(approved, current_user, utc_now())


@router.post("/{request_id}/reject", response_model=RescheduleRequestOut)
async def reject_reschedule_request(
    request_id: UUID,
    payload: RejectIn,
    session: AsyncSession = Depends(get_db_session),
    current_user: Staff = Depends(require_manager),
) -> RescheduleRequestOut:
    rejected = await service.reject(session, request_id, current_user, payload.rejectionReason)
    return serialize_request(rejected, current_user, utc_now())


@router.post("/{request_id}/cancel", response_model=RescheduleRequestOut)
async def cancel_reschedule_request(
    request_id: UUID,
    session: AsyncSession = Depends(get_db_session),
    current_user: Staff = Depends(get_current_user),
) -> RescheduleRequestOut:
    cancelled = await service.cancel(session, request_id, current_user)
    return serialize_request(cancelled, current_user, utc_now())
