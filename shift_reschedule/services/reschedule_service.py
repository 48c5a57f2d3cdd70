import logging
import math
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from redis.exceptions import RedisError
from sqlalchemy import and_, case, func, not_, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shift_reschedule.config import get_settings
from shift_reschedule.db import redis_client
from shift_reschedule.errors import (
    ConcurrentModification,
    InvalidTransition,
    NotFound,
    PermissionDenied,
    ScheduleConflict,
    ShiftReassignmentFailed,
    ValidationError,
)
from shift_reschedule.models import AuditLog, RescheduleRequest, RescheduleStateHistory, Staff, WorkShift
from shift_reschedule.schemas import (
    REASON_MAX_LENGTH,
    ErrorCode,
    Pagination,
    RescheduleAction,
    RescheduleCreateIn,
    RescheduleListOut,
    RescheduleListParams,
    ReschedulePriority,
    RescheduleRequestOut,
    RescheduleSortField,
    RescheduleState,
    RescheduleType,
    SortOrder,
    StaffRole,
    StateHistoryOut,
    WorkShiftStatus,
)
from shift_reschedule.services.conflict_detector import find_conflicts, has_conflict
from shift_reschedule.services.expiry_policy import compute_expires_at, is_expired, seconds_remaining
from shift_reschedule.services.permissions import STAFF_ROLES, allowed_actions, can_perform
from shift_reschedule.services.shift_store import ShiftStore, StaffDirectory
from shift_reschedule.services.state_machine import (
    NON_TERMINAL_STATES,
    Actor,
    Transition,
    apply_transition,
    follow_up,
    initial_state,
    plan_transition,
)
from shift_reschedule.time_utils import as_utc, utc_now

logger = logging.getLogger(__name__)

ShiftEffect = Callable[[], Awaitable[None]]

_PRIORITY_RANK = case(
    {
        ReschedulePriority.low: 0,
        ReschedulePriority.medium: 1,
        ReschedulePriority.high: 2,
        ReschedulePriority.urgent: 3,
    },
    value=RescheduleRequest.priority,
)
_SORT_COLUMNS = {
    RescheduleSortField.created_at: RescheduleRequest.created_at,
    RescheduleSortField.updated_at: RescheduleRequest.updated_at,
    RescheduleSortField.expires_at: RescheduleRequest.expires_at,
    RescheduleSortField.priority: _PRIORITY_RANK,
}


def broadcast_key(request_id: UUID) -> str:
    return f"reschedule:broadcast:{request_id}"


# Marker writes are best effort; the committed row is the record.
async def _mark_broadcast(request: RescheduleRequest, ttl: int) -> None:
    try:
        await redis_client.set(broadcast_key(request.id), str(request.branch_id), ex=ttl)
    except RedisError as exc:
        logger.warning(
            "reschedule_broadcast_marker_failed",
            extra={"request_id": str(request.id), "op": "set", "error": str(exc)},
        )


async def _clear_broadcast(request: RescheduleRequest) -> None:
    try:
        await redis_client.delete(broadcast_key(request.id))
    except RedisError as exc:
        logger.warning(
            "reschedule_broadcast_marker_failed",
            extra={"request_id": str(request.id), "op": "delete", "error": str(exc)},
        )


def _validated_reason(reason: str | None) -> str:
    text = (reason or "").strip()
    if not text:
        raise ValidationError(
            "A reason is required.",
            "reason is blank.",
            ErrorCode.reason_required,
        )
    if len(text) > REASON_MAX_LENGTH:
        raise ValidationError(
            f"Reason must be at most {REASON_MAX_LENGTH} characters.",
            f"reason has {len(text)} characters.",
            ErrorCode.reason_too_long,
        )
    return text


def _optional_dt(value: datetime | None) -> datetime | None:
    return as_utc(value) if value is not None else None


def serialize_request(request: RescheduleRequest, viewer: Staff | None, now: datetime) -> RescheduleRequestOut:
    return RescheduleRequestOut(
        id=request.id,
        originalShiftId=request.original_shift_id,
        requesterStaffId=request.requester_staff_id,
        targetStaffId=request.target_staff_id,
        targetShiftId=request.target_shift_id,
        branchId=request.branch_id,
        swapType=request.swap_type,
        priority=request.priority,
        reason=request.reason,
        status=request.status,
        rejectionReason=request.rejection_reason,
        approvedBy=request.approved_by,
        approvedAt=_optional_dt(request.approved_at),
        acceptedAt=_optional_dt(request.accepted_at),
        completedAt=_optional_dt(request.completed_at),
        expiresAt=as_utc(request.expires_at),
        createdAt=as_utc(request.created_at),
        updatedAt=as_utc(request.updated_at),
        stateHistory=[
            StateHistoryOut(
                state=entry.state,
                changedAt=as_utc(entry.changed_at),
                changedBy=entry.changed_by,
                reason=entry.reason,
            )
            for entry in request.state_history
        ],
        isExpired=is_expired(request, now),
        timeRemainingSeconds=seconds_remaining(request, now),
        allowedActions=allowed_actions(request, viewer.role, viewer.id) if viewer else [],
        metadata=request.meta or {},
    )


class RescheduleService:
    def __init__(self) -> None:
        self.settings = get_settings()

    # --- creation ---

    async def create_request(
        self,
        session: AsyncSession,
        actor: Staff,
        payload: RescheduleCreateIn,
        now: datetime | None = None,
    ) -> RescheduleRequest:
        now = as_utc(now or utc_now())
        reason = _validated_reason(payload.reason)
        store = ShiftStore(session)

        shift = await store.get_shift(payload.originalShiftId)
        if shift is None:
            raise NotFound(
                "Shift not found.",
                f"WorkShift {payload.originalShiftId} not found.",
                ErrorCode.shift_not_found,
            )
        if shift.staff_id != actor.id:
            raise PermissionDenied(
                "You can only reschedule your own shifts.",
                f"Shift {shift.id} belongs to {shift.staff_id}, not {actor.id}.",
            )
        if shift.status != WorkShiftStatus.scheduled:
            raise ValidationError(
                "Only scheduled shifts can be rescheduled.",
                f"Shift {shift.id} is {shift.status.value}.",
            )
        notice = timedelta(hours=self.settings.reschedule_min_notice_hours)
        if as_utc(shift.start_time) <= now + notice:
            raise ValidationError(
                "This shift starts too soon to be rescheduled.",
                f"Shift {shift.id} starts at {as_utc(shift.start_time).isoformat()}; "
                f"minimum notice is {notice}.",
                ErrorCode.advance_notice_required,
            )

        if payload.swapType == RescheduleType.direct_swap:
            await self._validate_direct_swap(store, actor, shift, payload)
        elif payload.targetStaffId is not None or payload.targetShiftId is not None:
            raise ValidationError(
                "Only direct swaps name a target staff member or shift.",
                f"targetStaffId/targetShiftId given for {payload.swapType.value}.",
            )

        # A shift may sit in only one open request, whether offered or asked for.
        involved = [shift.id] + ([payload.targetShiftId] if payload.targetShiftId else [])
        duplicate = await session.scalar(
            select(RescheduleRequest.id).where(
                or_(
                    RescheduleRequest.original_shift_id.in_(involved),
                    RescheduleRequest.target_shift_id.in_(involved),
                ),
                RescheduleRequest.status.in_(list(NON_TERMINAL_STATES)),
            )
        )
        if duplicate is not None:
            raise ValidationError(
                "An open reschedule request already involves this shift.",
                f"Request {duplicate} is still open for shift(s) {[str(i) for i in involved]}.",
                ErrorCode.request_already_exists,
                409,
            )

        state = initial_state(payload.swapType)
        request = RescheduleRequest(
            original_shift_id=shift.id,
            requester_staff_id=actor.id,
            target_staff_id=payload.targetStaffId,
            target_shift_id=payload.targetShiftId,
            branch_id=shift.branch_id,
            swap_type=payload.swapType,
            priority=payload.priority,
            reason=reason,
            status=state,
            expires_at=compute_expires_at(
                now, shift.start_time, timedelta(hours=self.settings.reschedule_expiry_hours)
            ),
            created_at=now,
            updated_at=now,
            meta=payload.metadata or {},
            state_history=[
                RescheduleStateHistory(sequence=1, state=state, changed_at=now, changed_by=actor.id)
            ],
        )
        session.add(request)
        await session.flush()
        session.add(
            AuditLog(
                action="reschedule.created",
                meta={
                    "request_id": str(request.id),
                    "swap_type": request.swap_type.value,
                    "status": state.value,
                    "actor_id": str(actor.id),
                },
            )
        )
        await session.commit()
        if state == RescheduleState.pending_broadcast:
            ttl = max(1, math.ceil((as_utc(request.expires_at) - now).total_seconds()))
            await _mark_broadcast(request, ttl)
        logger.info(
            "reschedule_created",
            extra={"request_id": str(request.id), "swap_type": request.swap_type.value, "status": state.value},
        )
        return request

    async def _validate_direct_swap(
        self, store: ShiftStore, actor: Staff, shift: WorkShift, payload: RescheduleCreateIn
    ) -> None:
        if payload.targetStaffId is None or payload.targetShiftId is None:
            raise ValidationError(
                "A direct swap needs a target staff member and their shift.",
                "targetStaffId and targetShiftId are required for DIRECT_SWAP.",
            )
        if payload.targetStaffId == actor.id:
            raise ValidationError(
                "You cannot swap a shift with yourself.",
                f"targetStaffId equals requester {actor.id}.",
            )
        if payload.targetShiftId == shift.id:
            raise ValidationError(
                "Choose a different shift to swap with.",
                "targetShiftId equals originalShiftId.",
            )
        target_shift = await store.get_shift(payload.targetShiftId)
        if target_shift is None:
            raise ValidationError(
                "The shift offered for the swap was not found.",
                f"WorkShift {payload.targetShiftId} not found.",
                ErrorCode.target_shift_not_found,
            )
        if target_shift.staff_id != payload.targetStaffId:
            raise ValidationError(
                "The offered shift does not belong to the chosen staff member.",
                f"Shift {target_shift.id} belongs to {target_shift.staff_id}, not {payload.targetStaffId}.",
            )
        if target_shift.status != WorkShiftStatus.scheduled:
            raise ValidationError(
                "The offered shift is no longer scheduled.",
                f"Shift {target_shift.id} is {target_shift.status.value}.",
            )

    # --- reads ---

    async def get_request(
        self,
        session: AsyncSession,
        request_id: UUID,
        now: datetime | None = None,
        viewer: Staff | None = None,
    ) -> RescheduleRequest:
        """Read one request, expiring it first if its deadline has passed."""
        now = as_utc(now or utc_now())
        request = await self._load(session, request_id)
        if viewer is not None:
            self.check_branch_access(request, viewer)
        if is_expired(request, now):
            try:
                await self._expire(session, request, now)
            except ConcurrentModification:
                # Someone else moved it first; their state is the answer. The
                # rollback expired every loaded instance, the viewer included.
                request = await self._load(session, request_id)
                if viewer is not None:
                    await session.refresh(viewer)
        return request

    async def list_requests(
        self, session: AsyncSession, params: RescheduleListParams, viewer: Staff | None, now: datetime | None = None
    ) -> RescheduleListOut:
        now = as_utc(now or utc_now())
        limit = min(params.limit, self.settings.reschedule_max_page_size)
        conditions = []
        if params.status is not None:
            conditions.append(RescheduleRequest.status == params.status)
        if params.swapType is not None:
            conditions.append(RescheduleRequest.swap_type == params.swapType)
        if params.priority is not None:
            conditions.append(RescheduleRequest.priority == params.priority)
        if params.requesterStaffId is not None:
            conditions.append(RescheduleRequest.requester_staff_id == params.requesterStaffId)
        if params.targetStaffId is not None:
            conditions.append(RescheduleRequest.target_staff_id == params.targetStaffId)
        if params.branchId is not None:
            conditions.append(RescheduleRequest.branch_id == params.branchId)
        if params.startDate is not None:
            conditions.append(RescheduleRequest.created_at >= as_utc(params.startDate))
        if params.endDate is not None:
            conditions.append(RescheduleRequest.created_at <= as_utc(params.endDate))
        if params.isExpired is not None:
            expired_clause = or_(
                RescheduleRequest.status == RescheduleState.expired,
                and_(
                    RescheduleRequest.status.in_(list(NON_TERMINAL_STATES)),
                    RescheduleRequest.expires_at < now,
                ),
            )
            conditions.append(expired_clause if params.isExpired else not_(expired_clause))

        total = await session.scalar(select(func.count(RescheduleRequest.id)).where(*conditions)) or 0
        sort_column = _SORT_COLUMNS[params.sortBy]
        ordering = sort_column.asc() if params.sortOrder == SortOrder.asc else sort_column.desc()
        rows = await session.execute(
            select(RescheduleRequest)
            .where(*conditions)
            .order_by(ordering, RescheduleRequest.id)
            .offset((params.page - 1) * limit)
            .limit(limit)
        )
        return RescheduleListOut(
            data=[serialize_request(request, viewer, now) for request in rows.scalars().all()],
            pagination=Pagination.of(params.page, limit, total),
        )

    async def list_broadcasts(
        self, session: AsyncSession, viewer: Staff, now: datetime | None = None
    ) -> list[RescheduleRequest]:
        """Open broadcasts the viewer could accept right now."""
        now = as_utc(now or utc_now())
        stmt = select(RescheduleRequest).where(
            RescheduleRequest.status == RescheduleState.pending_broadcast,
            RescheduleRequest.expires_at >= now,
        )
        if viewer.role != StaffRole.owner and viewer.branch_id is not None:
            stmt = stmt.where(RescheduleRequest.branch_id == viewer.branch_id)
        rows = await session.execute(stmt.order_by(RescheduleRequest.expires_at))
        return [
            request
            for request in rows.scalars().all()
            if can_perform(RescheduleAction.accept, request, viewer.role, viewer.id)
        ]

    # --- transitions ---

    async def accept(
        self, session: AsyncSession, request_id: UUID, actor: Staff, now: datetime | None = None
    ) -> RescheduleRequest:
        now = as_utc(now or utc_now())
        request = await self._load_for_action(session, request_id, now)
        transition = plan_transition(request, RescheduleAction.accept, Actor(actor.id, actor.role), now)
        self.check_branch_access(request, actor)
        await self._check_schedule_conflicts(session, request, actor.id)
        await self._commit_transition(
            session,
            request,
            [transition],
            values={"target_staff_id": actor.id, "accepted_at": now},
            audit_action="reschedule.accepted",
        )
        return request

    async def approve(
        self,
        session: AsyncSession,
        request_id: UUID,
        actor: Staff,
        assignee_staff_id: UUID | None = None,
        now: datetime | None = None,
    ) -> RescheduleRequest:
        """Approve and complete in one unit of work; the shift reassignment rides the same commit."""
        now = as_utc(now or utc_now())
        request = await self._load_for_action(session, request_id, now)
        approval = plan_transition(request, RescheduleAction.approve, Actor(actor.id, actor.role), now)
        completion = follow_up(approval, RescheduleAction.complete)
        self.check_branch_access(request, actor)

        values: dict[str, Any] = {"approved_by": actor.id, "approved_at": now, "completed_at": now}
        target_staff_id = request.target_staff_id
        if request.swap_type == RescheduleType.manager_assign:
            target_staff_id = await self._resolve_assignee(session, request, assignee_staff_id)
            values["target_staff_id"] = target_staff_id
        elif assignee_staff_id is not None and assignee_staff_id != request.target_staff_id:
            raise ValidationError(
                "Only manager-assigned requests take an assignee.",
                f"assigneeStaffId given for {request.swap_type.value} request {request.id}.",
            )
        if target_staff_id is None:
            raise InvalidTransition(
                "Nobody has taken this shift yet.",
                f"Request {request.id} has no target staff to hand the shift to.",
            )
        if request.swap_type != RescheduleType.manager_assign:
            # Schedules may have changed since accept.
            await self._check_schedule_conflicts(session, request, target_staff_id)

        store = ShiftStore(session)
        original_shift_id = request.original_shift_id
        target_shift_id = request.target_shift_id
        requester_id = request.requester_staff_id
        is_swap = request.swap_type == RescheduleType.direct_swap

        async def reassign() -> None:
            await store.reassign_shift(original_shift_id, target_staff_id, expected_staff_id=requester_id)
            if is_swap:
                await store.reassign_shift(target_shift_id, requester_id, expected_staff_id=target_staff_id)

        await self._commit_transition(
            session,
            request,
            [approval, completion],
            values=values,
            audit_action="reschedule.completed",
            shift_effect=reassign,
        )
        return request

    async def reject(
        self,
        session: AsyncSession,
        request_id: UUID,
        actor: Staff,
        rejection_reason: str,
        now: datetime | None = None,
    ) -> RescheduleRequest:
        now = as_utc(now or utc_now())
        request = await self._load_for_action(session, request_id, now)
        reason = _validated_reason(rejection_reason)
        transition = plan_transition(
            request, RescheduleAction.reject, Actor(actor.id, actor.role), now, reason=reason
        )
        self.check_branch_access(request, actor)
        await self._commit_transition(
            session,
            request,
            [transition],
            values={"rejection_reason": reason},
            audit_action="reschedule.rejected",
        )
        return request

    async def cancel(
        self, session: AsyncSession, request_id: UUID, actor: Staff, now: datetime | None = None
    ) -> RescheduleRequest:
        now = as_utc(now or utc_now())
        request = await self._load_for_action(session, request_id, now)
        transition = plan_transition(
            request, RescheduleAction.cancel, Actor(actor.id, actor.role), now, reason="Cancelled by requester"
        )
        await self._commit_transition(
            session,
            request,
            [transition],
            values={},
            audit_action="reschedule.cancelled",
        )
        return request

    async def update_request(
        self,
        session: AsyncSession,
        request_id: UUID,
        actor: Staff,
        reason: str | None = None,
        priority: ReschedulePriority | None = None,
        now: datetime | None = None,
    ) -> RescheduleRequest:
        """Edit reason/priority while the request is still being broadcast. No history entry."""
        now = as_utc(now or utc_now())
        request = await self._load_for_action(session, request_id, now)
        if request.status != RescheduleState.pending_broadcast:
            raise InvalidTransition(
                "This request can no longer be edited.",
                f"Cannot edit request {request.id} in state {request.status.value}.",
            )
        if not can_perform(RescheduleAction.edit, request, actor.role, actor.id):
            raise PermissionDenied(
                "Only the requester can edit this request.",
                f"Actor {actor.id} is not requester {request.requester_staff_id}.",
            )
        values: dict[str, Any] = {}
        if reason is not None:
            values["reason"] = _validated_reason(reason)
        if priority is not None:
            values["priority"] = priority
        await self._commit_transition(
            session,
            request,
            [],
            values=values,
            audit_action="reschedule.updated",
            now=now,
            actor_id=actor.id,
        )
        return request

    # --- expiry ---

    async def sweep_expired(self, session: AsyncSession, now: datetime | None = None) -> int:
        """Expire every overdue open request. Idempotent; returns how many were transitioned."""
        now = as_utc(now or utc_now())
        result = await session.execute(
            select(RescheduleRequest.id)
            .where(
                RescheduleRequest.status.in_(list(NON_TERMINAL_STATES)),
                RescheduleRequest.expires_at < now,
            )
            .order_by(RescheduleRequest.expires_at)
        )
        expired_count = 0
        for request_id in list(result.scalars().all()):
            request = await session.get(RescheduleRequest, request_id, populate_existing=True)
            if request is None or not is_expired(request, now):
                continue
            try:
                await self._expire(session, request, now)
            except ConcurrentModification:
                logger.info("reschedule_sweep_lost_race", extra={"request_id": str(request_id)})
                continue
            expired_count += 1
        logger.info("reschedule_sweep_complete", extra={"expired_count": expired_count})
        return expired_count

    async def _expire(self, session: AsyncSession, request: RescheduleRequest, now: datetime) -> None:
        transition = plan_transition(
            request, RescheduleAction.expire, Actor.system(), now, reason="Expired before resolution"
        )
        await self._commit_transition(
            session, request, [transition], values={}, audit_action="reschedule.expired"
        )

    # --- internals ---

    async def _load(self, session: AsyncSession, request_id: UUID) -> RescheduleRequest:
        request = await session.get(RescheduleRequest, request_id, populate_existing=True)
        if request is None:
            raise NotFound(
                "Reschedule request not found.",
                f"RescheduleRequest {request_id} not found.",
            )
        return request

    async def _load_for_action(
        self, session: AsyncSession, request_id: UUID, now: datetime
    ) -> RescheduleRequest:
        request = await self._load(session, request_id)
        if is_expired(request, now):
            await self._expire(session, request, now)
            raise InvalidTransition(
                "This request has expired.",
                f"Request {request_id} passed its deadline {as_utc(request.expires_at).isoformat()}.",
                ErrorCode.request_expired,
            )
        return request

    def check_branch_access(self, request: RescheduleRequest, actor: Staff) -> None:
        if actor.role == StaffRole.owner:
            return
        if actor.branch_id != request.branch_id:
            raise PermissionDenied(
                "This request belongs to another branch.",
                f"Actor {actor.id} branch {actor.branch_id} != request branch {request.branch_id}.",
            )

    async def _check_schedule_conflicts(
        self, session: AsyncSession, request: RescheduleRequest, staff_id: UUID
    ) -> None:
        store = ShiftStore(session)
        original = await store.get_shift(request.original_shift_id)
        if original is None:
            raise NotFound(
                "The shift for this request no longer exists.",
                f"WorkShift {request.original_shift_id} not found.",
                ErrorCode.shift_not_found,
            )
        ignore = [request.target_shift_id] if request.target_shift_id else []
        acceptor_shifts = await store.list_shifts_for_staff(staff_id, WorkShiftStatus.scheduled)
        conflicts = find_conflicts(acceptor_shifts, original.start_time, original.end_time, ignore)
        if conflicts:
            raise ScheduleConflict(
                "The staff member taking this shift already has an overlapping shift.",
                f"Staff {staff_id} has overlapping shift(s) {[str(s.id) for s in conflicts]} "
                f"for shift {original.id}.",
            )
        if request.swap_type == RescheduleType.direct_swap and request.target_shift_id:
            offered = await store.get_shift(request.target_shift_id)
            if offered is None:
                raise NotFound(
                    "The shift offered for the swap no longer exists.",
                    f"WorkShift {request.target_shift_id} not found.",
                    ErrorCode.target_shift_not_found,
                )
            requester_shifts = await store.list_shifts_for_staff(
                request.requester_staff_id, WorkShiftStatus.scheduled
            )
            conflicts = find_conflicts(requester_shifts, offered.start_time, offered.end_time, [original.id])
            if conflicts:
                raise ScheduleConflict(
                    "The requester already has a shift that overlaps the offered one.",
                    f"Requester {request.requester_staff_id} overlaps offered shift {offered.id}.",
                )

    async def _resolve_assignee(
        self, session: AsyncSession, request: RescheduleRequest, assignee_staff_id: UUID | None
    ) -> UUID:
        if assignee_staff_id is None:
            raise ValidationError(
                "Choose a staff member to take this shift.",
                f"assigneeStaffId is required to approve MANAGER_ASSIGN request {request.id}.",
            )
        role = await StaffDirectory(session).role_of(assignee_staff_id)
        if role is None:
            raise NotFound(
                "Staff member not found.",
                f"Staff {assignee_staff_id} not found.",
                ErrorCode.staff_not_found,
            )
        if assignee_staff_id == request.requester_staff_id or role not in STAFF_ROLES:
            raise ValidationError(
                "This staff member cannot take the shift.",
                f"Staff {assignee_staff_id} ({role.value}) is the requester or not a shift-holding role.",
            )
        store = ShiftStore(session)
        original = await store.get_shift(request.original_shift_id)
        if original is None:
            raise NotFound(
                "The shift for this request no longer exists.",
                f"WorkShift {request.original_shift_id} not found.",
                ErrorCode.shift_not_found,
            )
        existing = await store.list_shifts_for_staff(assignee_staff_id, WorkShiftStatus.scheduled)
        if has_conflict(existing, original.start_time, original.end_time):
            raise ScheduleConflict(
                "The chosen staff member already has an overlapping shift.",
                f"Staff {assignee_staff_id} overlaps shift {original.id}.",
            )
        return assignee_staff_id

    async def _commit_transition(
        self,
        session: AsyncSession,
        request: RescheduleRequest,
        transitions: list[Transition],
        values: dict[str, Any],
        audit_action: str,
        shift_effect: ShiftEffect | None = None,
        now: datetime | None = None,
        actor_id: UUID | None = None,
    ) -> None:
        """Compare-and-swap the status, append history, apply effects, commit once.

        Nothing is committed unless every step succeeds; on failure the session
        is rolled back before the error is raised.
        """
        expected = request.status
        if transitions:
            actor_id = transitions[0].changed_by
        new_status = transitions[-1].to_state if transitions else expected
        changed_at = transitions[0].changed_at if transitions else as_utc(now or utc_now())
        result = await session.execute(
            update(RescheduleRequest)
            .where(RescheduleRequest.id == request.id, RescheduleRequest.status == expected)
            .values(status=new_status, updated_at=changed_at, **values)
        )
        if result.rowcount != 1:
            await session.rollback()
            raise ConcurrentModification(
                "This request was changed by someone else. Refresh and try again.",
                f"CAS on request {request.id} expecting {expected.value} matched {result.rowcount} rows.",
            )

        sequence = len(request.state_history)
        for transition in transitions:
            sequence += 1
            request.state_history.append(
                RescheduleStateHistory(sequence=sequence, **apply_transition(request, transition))
            )

        if shift_effect is not None:
            try:
                await shift_effect()
                await session.flush()
            except ShiftReassignmentFailed:
                await session.rollback()
                raise
            except SQLAlchemyError as exc:
                await session.rollback()
                raise ShiftReassignmentFailed(
                    "The shift could not be reassigned. Please try approving again.",
                    f"Shift store write failed for request {request.id}: {exc}",
                ) from exc

        session.add(
            AuditLog(
                action=audit_action,
                meta={
                    "request_id": str(request.id),
                    "from_state": expected.value,
                    "to_state": new_status.value,
                    "actor_id": str(actor_id) if actor_id else None,
                    "changed_fields": sorted(values),
                },
            )
        )
        await session.commit()

        if expected == RescheduleState.pending_broadcast and new_status != expected:
            await _clear_broadcast(request)
        logger.info(
            "reschedule_transition",
            extra={
                "request_id": str(request.id),
                "action": audit_action,
                "from_state": expected.value,
                "to_state": new_status.value,
            },
        )
