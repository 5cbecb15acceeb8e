"""
Destuffing plan SQLAlchemy models with lifecycle transition rules.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum as PyEnum
from typing import Optional, cast

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from core.database import Base


class PlanStatus(PyEnum):
    """Destuffing plan lifecycle states."""
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"
    PENDING = "PENDING"


# DONE and PENDING are not terminal: both are left through IN_PROGRESS
VALID_PLAN_TRANSITIONS = {
    PlanStatus.SCHEDULED: [
        PlanStatus.IN_PROGRESS,
    ],
    PlanStatus.IN_PROGRESS: [
        PlanStatus.DONE,
        PlanStatus.PENDING,
        PlanStatus.SCHEDULED,  # Cancel doing
    ],
    PlanStatus.PENDING: [
        PlanStatus.IN_PROGRESS,  # Reactivation
    ],
    PlanStatus.DONE: [],
}


def is_valid_transition(current: PlanStatus, target: PlanStatus) -> bool:
    return target in VALID_PLAN_TRANSITIONS.get(current, [])


class DestuffingPlan(Base):
    """
    A scheduled destuffing work order.

    Header fields and container membership are only editable while the plan
    is SCHEDULED.
    """
    __tablename__ = "destuffing_plans"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code = Column(String(40), nullable=False, unique=True, index=True)

    status = Column(
        Enum(PlanStatus, native_enum=False),
        nullable=False,
        default=PlanStatus.SCHEDULED,
        doc="Current plan status"
    )

    planned_start = Column(DateTime(timezone=True), nullable=False)
    planned_end = Column(DateTime(timezone=True), nullable=False)
    execution_start = Column(DateTime(timezone=True), nullable=True)
    execution_end = Column(DateTime(timezone=True), nullable=True)
    pending_date = Column(DateTime(timezone=True), nullable=True)

    # Prerequisites for entering execution
    equipment_booked = Column(Boolean, nullable=False, default=False)
    appointment_confirmed = Column(Boolean, nullable=False, default=False)

    forwarder_id = Column(String(120), nullable=True, index=True)
    forwarder_name = Column(String(160), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    containers = relationship(
        "DestuffingPlanContainer",
        back_populates="plan",
        cascade="all, delete-orphan",
        order_by="DestuffingPlanContainer.assigned_at",
    )

    def can_transition_to(self, new_status: PlanStatus) -> bool:
        current_status = cast(PlanStatus, self.status)
        return is_valid_transition(current_status, new_status)

    def transition_to(self, new_status: PlanStatus, at_time: Optional[datetime] = None) -> bool:
        current_status = cast(PlanStatus, self.status)
        if not self.can_transition_to(new_status):
            valid_transitions = VALID_PLAN_TRANSITIONS.get(current_status, [])
            raise ValueError(
                f"Cannot transition from {current_status.value} to {new_status.value}. "
                f"Valid transitions: {[s.value for s in valid_transitions]}"
            )

        now = at_time or datetime.utcnow()
        if new_status == PlanStatus.IN_PROGRESS:
            # Reactivation keeps the original execution start
            if current_status == PlanStatus.SCHEDULED or self.execution_start is None:
                self.execution_start = now
            self.execution_end = None
        elif new_status == PlanStatus.DONE:
            self.execution_end = now
        elif new_status == PlanStatus.PENDING:
            self.pending_date = now
        elif new_status == PlanStatus.SCHEDULED:
            self.execution_start = None
            self.execution_end = None

        self.status = new_status
        self.updated_at = now
        return True

    def __repr__(self) -> str:
        return f"<DestuffingPlan(id={self.id}, code={self.code}, status={self.status.value})>"


class DestuffingPlanContainer(Base):
    """Join row assigning one order container into a plan."""
    __tablename__ = "destuffing_plan_containers"

    __table_args__ = (
        UniqueConstraint("order_container_id", name="uq_plan_container_order_container"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    plan_id = Column(
        UUID(as_uuid=True),
        ForeignKey("destuffing_plans.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    order_container_id = Column(
        UUID(as_uuid=True),
        ForeignKey("order_containers.id", ondelete="CASCADE"),
        nullable=False,
    )
    assigned_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)

    plan = relationship("DestuffingPlan", back_populates="containers")
    order_container = relationship("OrderContainer")
    hbls = relationship(
        "DestuffingPlanHbl",
        back_populates="plan_container",
        cascade="all, delete-orphan",
    )


class DestuffingPlanHbl(Base):
    """A house bill selected for destuffing within a plan container."""
    __tablename__ = "destuffing_plan_hbls"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    plan_container_id = Column(
        UUID(as_uuid=True),
        ForeignKey("destuffing_plan_containers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    hbl_id = Column(String(120), nullable=False)
    hbl_no = Column(String(120), nullable=True)
    packing_list_no = Column(String(120), nullable=True)

    plan_container = relationship("DestuffingPlanContainer", back_populates="hbls")
