import enum
import uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shift_reschedule.db import Base
from shift_reschedule.schemas import (
    ReschedulePriority,
    RescheduleState,
    RescheduleType,
    StaffRole,
    WorkShiftStatus,
)


def _enum_column(enum_cls: type[enum.Enum], name: str) -> Enum:
    # Persist the wire values (e.g. "PENDING_BROADCAST"), not the member names.
    return Enum(enum_cls, name=name, values_callable=lambda members: [m.value for m in members])


JsonDocument = JSON().with_variant(JSONB(), "postgresql")
RescheduleStateType = _enum_column(RescheduleState, "reschedule_state")


class Branch(Base):
    __tablename__ = "branches"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), default="Asia/Ho_Chi_Minh", nullable=False)


class Staff(Base):
    __tablename__ = "staff"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[StaffRole] = mapped_column(
        _enum_column(StaffRole, "staff_role"),
        default=StaffRole.staff,
        nullable=False,
    )
    # Owners span every branch.
    branch_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("branches.id"), nullable=True)


class WorkShift(Base):
    __tablename__ = "work_shifts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    staff_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("staff.id"), index=True, nullable=False)
    branch_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("branches.id"), index=True, nullable=False)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True, nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[WorkShiftStatus] = mapped_column(
        _enum_column(WorkShiftStatus, "work_shift_status"),
        default=WorkShiftStatus.scheduled,
        index=True,
        nullable=False,
    )
    # Staff member who released the shift on its last reassignment.
    previous_staff_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("staff.id"), nullable=True)


class RescheduleStateHistory(Base):
    __tablename__ = "reschedule_state_history"
    __table_args__ = (
        UniqueConstraint("request_id", "sequence", name="uq_reschedule_state_history_sequence"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("reschedule_requests.id"), index=True, nullable=False
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    state: Mapped[RescheduleState] = mapped_column(
        RescheduleStateType, nullable=False
    )
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # Null for system transitions (expiry sweep).
    changed_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)


class RescheduleRequest(Base):
    __tablename__ = "reschedule_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    original_shift_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("work_shifts.id"), index=True, nullable=False
    )
    requester_staff_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("staff.id"), index=True, nullable=False
    )
    target_staff_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("staff.id"), nullable=True)
    target_shift_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("work_shifts.id"), nullable=True
    )
    branch_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("branches.id"), index=True, nullable=False)
    swap_type: Mapped[RescheduleType] = mapped_column(
        _enum_column(RescheduleType, "reschedule_type"), nullable=False
    )
    priority: Mapped[ReschedulePriority] = mapped_column(
        _enum_column(ReschedulePriority, "reschedule_priority"),
        default=ReschedulePriority.medium,
        nullable=False,
    )
    reason: Mapped[str] = mapped_column(String(500), nullable=False)
    status: Mapped[RescheduleState] = mapped_column(
        RescheduleStateType, index=True, nullable=False
    )
    rejection_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    approved_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("staff.id"), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    meta: Mapped[dict] = mapped_column("metadata", JsonDocument, default=dict)

    state_history: Mapped[list[RescheduleStateHistory]] = relationship(
        order_by=RescheduleStateHistory.sequence,
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    action: Mapped[str] = mapped_column(String(255), index=True)
    meta: Mapped[dict] = mapped_column("metadata", JsonDocument, default=dict)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
