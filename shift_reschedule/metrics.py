from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from shift_reschedule.models import RescheduleRequest
from shift_reschedule.schemas import (
    CountByPriority,
    CountByType,
    ReschedulePriority,
    RescheduleState,
    RescheduleStatsOut,
    RescheduleType,
)


async def _counts_by(session: AsyncSession, column, where_clause: list) -> dict:
    result = await session.execute(
        select(column, func.count(RescheduleRequest.id)).where(*where_clause).group_by(column)
    )
    return {key: int(count) for key, count in result.all()}


async def get_reschedule_stats(session: AsyncSession, branch_id: UUID | None = None) -> RescheduleStatsOut:
    where_clause = []
    if branch_id:
        where_clause.append(RescheduleRequest.branch_id == branch_id)

    by_status = await _counts_by(session, RescheduleRequest.status, where_clause)
    by_type = await _counts_by(session, RescheduleRequest.swap_type, where_clause)
    by_priority = await _counts_by(session, RescheduleRequest.priority, where_clause)

    return RescheduleStatsOut(
        totalRequests=sum(by_status.values()),
        pendingBroadcast=by_status.get(RescheduleState.pending_broadcast, 0),
        pendingAcceptance=by_status.get(RescheduleState.pending_acceptance, 0),
        pendingApproval=by_status.get(RescheduleState.pending_approval, 0),
        approved=by_status.get(RescheduleState.approved, 0),
        rejected=by_status.get(RescheduleState.rejected, 0),
        cancelled=by_status.get(RescheduleState.cancelled, 0),
        expired=by_status.get(RescheduleState.expired, 0),
        completed=by_status.get(RescheduleState.completed, 0),
        requestsByType=[CountByType(type=t, count=by_type.get(t, 0)) for t in RescheduleType],
        requestsByPriority=[
            CountByPriority(priority=p, count=by_priority.get(p, 0)) for p in ReschedulePriority
        ],
    )
