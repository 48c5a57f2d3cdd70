from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RescheduleState(str, Enum):
    pending_broadcast = "PENDING_BROADCAST"
    pending_acceptance = "PENDING_ACCEPTANCE"
    pending_approval = "PENDING_APPROVAL"
    approved = "APPROVED"
    rejected = "REJECTED"
    cancelled = "CANCELLED"
    expired = "EXPIRED"
    completed = "COMPLETED"


class RescheduleType(str, Enum):
    find_replacement = "FIND_REPLACEMENT"
    direct_swap = "DIRECT_SWAP"
    manager_assign = "MANAGER_ASSIGN"


class ReschedulePriority(str, Enum):
    low = "LOW"
    medium = "MEDIUM"
    high = "HIGH"
    urgent = "URGENT"


class RescheduleAction(str, Enum):
    accept = "accept"
    approve = "approve"
    complete = "complete"
    reject = "reject"
    cancel = "cancel"
    edit = "edit"
    expire = "expire"


class StaffRole(str, Enum):
    staff = "STAFF"
    manager = "MANAGER"
    owner = "OWNER"


class WorkShiftStatus(str, Enum):
    scheduled = "SCHEDULED"
    in_progress = "IN_PROGRESS"
    completed = "COMPLETED"
    cancelled = "CANCELLED"


class ErrorCode(str, Enum):
    validation_error = "VALIDATION_ERROR"
    unauthenticated = "UNAUTHENTICATED"
    permission_denied = "PERMISSION_DENIED"
    invalid_transition = "INVALID_TRANSITION"
    schedule_conflict = "RESCHEDULE_REQUEST_CONFLICT_DETECTED"
    concurrent_modification = "CONCURRENT_MODIFICATION"
    shift_reassignment_failed = "SHIFT_REASSIGNMENT_FAILED"
    request_not_found = "RESCHEDULE_REQUEST_NOT_FOUND"
    request_already_exists = "RESCHEDULE_REQUEST_ALREADY_EXISTS"
    request_expired = "RESCHEDULE_REQUEST_EXPIRED"
    reason_required = "RESCHEDULE_REQUEST_REASON_REQUIRED"
    reason_too_long = "RESCHEDULE_REQUEST_REASON_TOO_LONG"
    target_shift_not_found = "RESCHEDULE_REQUEST_TARGET_SHIFT_NOT_FOUND"
    advance_notice_required = "RESCHEDULE_ADVANCE_NOTICE_REQUIRED"
    shift_not_found = "SHIFT_NOT_FOUND"
    staff_not_found = "STAFF_NOT_FOUND"
    branch_not_found = "BRANCH_NOT_FOUND"


REASON_MAX_LENGTH = 500


class ApiError(BaseModel):
    errorCode: ErrorCode
    userMessage: str
    developerMessage: str
    correlationId: str


# --- Reschedule requests ---


class RescheduleCreateIn(BaseModel):
    """Reason length is checked by the service so the caller gets a specific error code."""

    originalShiftId: UUID
    swapType: RescheduleType = RescheduleType.find_replacement
    reason: str
    priority: ReschedulePriority = ReschedulePriority.medium
    targetStaffId: UUID | None = None
    targetShiftId: UUID | None = None
    metadata: dict[str, Any] | None = None


class RescheduleUpdateIn(BaseModel):
    reason: str | None = None
    priority: ReschedulePriority | None = None

    @model_validator(mode="after")
    def require_any(self) -> "RescheduleUpdateIn":
        if self.reason is None and self.priority is None:
            raise ValueError("Provide at least one of 'reason' or 'priority'")
        return self


class ApproveIn(BaseModel):
    assigneeStaffId: UUID | None = None


class RejectIn(BaseModel):
    rejectionReason: str = Field(min_length=1, max_length=REASON_MAX_LENGTH)


class StateHistoryOut(BaseModel):
    state: RescheduleState
    changedAt: datetime
    changedBy: UUID | None = None
    reason: str | None = None


class RescheduleRequestOut(BaseModel):
    id: UUID
    originalShiftId: UUID
    requesterStaffId: UUID
    targetStaffId: UUID | None = None
    targetShiftId: UUID | None = None
    branchId: UUID
    swapType: RescheduleType
    priority: ReschedulePriority
    reason: str
    status: RescheduleState
    rejectionReason: str | None = None
    approvedBy: UUID | None = None
    approvedAt: datetime | None = None
    acceptedAt: datetime | None = None
    completedAt: datetime | None = None
    expiresAt: datetime
    createdAt: datetime
    updatedAt: datetime
    stateHistory: list[StateHistoryOut]
    isExpired: bool = False
    timeRemainingSeconds: int = 0
    allowedActions: list[RescheduleAction] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int

    @classmethod
    def of(cls, page: int, limit: int, total: int) -> "Pagination":
        return cls(page=page, limit=limit, total=total, pages=(total + limit - 1) // limit if total else 0)


class RescheduleListOut(BaseModel):
    data: list[RescheduleRequestOut]
    pagination: Pagination


class RescheduleSortField(str, Enum):
    created_at = "createdAt"
    updated_at = "updatedAt"
    expires_at = "expiresAt"
    priority = "priority"


class SortOrder(str, Enum):
    asc = "asc"
    desc = "desc"


class RescheduleListParams(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1)
    sortBy: RescheduleSortField = RescheduleSortField.created_at
    sortOrder: SortOrder = SortOrder.desc
    status: RescheduleState | None = None
    swapType: RescheduleType | None = None
    priority: ReschedulePriority | None = None
    requesterStaffId: UUID | None = None
    targetStaffId: UUID | None = None
    branchId: UUID | None = None
    isExpired: bool | None = None
    startDate: datetime | None = None
    endDate: datetime | None = None


class CountByType(BaseModel):
    type: RescheduleType
    count: int


class CountByPriority(BaseModel):
    priority: ReschedulePriority
    count: int


class RescheduleStatsOut(BaseModel):
    totalRequests: int
    pendingBroadcast: int
    pendingAcceptance: int
    pendingApproval: int
    approved: int
    rejected: int
    cancelled: int
    expired: int
    completed: int
    requestsByType: list[CountByType]
    requestsByPriority: list[CountByPriority]


class CleanupOut(BaseModel):
    message: str
    cleanedCount: int


# --- Health ---


class HealthStatus(BaseModel):
    status: str
    latency_ms: float | None = None
    last_error: str | None = None


# --- Staff directory ---


class StaffCreate(BaseModel):
    full_name: str = Field(min_length=1, max_length=255)
    role: StaffRole = StaffRole.staff
    branch_id: UUID | None = None


class StaffOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    full_name: str
    role: StaffRole
    branch_id: UUID | None = None


# --- Work shifts ---


class WorkShiftCreate(BaseModel):
    staff_id: UUID
    branch_id: UUID
    start_time: datetime
    end_time: datetime

    @model_validator(mode="after")
    def check_window(self) -> "WorkShiftCreate":
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class WorkShiftOut(BaseModel):
    id: UUID
    staff_id: UUID
    branch_id: UUID
    start_time: datetime
    end_time: datetime
    status: WorkShiftStatus
    previous_staff_id: UUID | None = None


class WorkShiftsResponse(BaseModel):
    shifts: list[WorkShiftOut]
