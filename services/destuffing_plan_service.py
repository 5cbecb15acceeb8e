"""
Service layer for destuffing plan persistence: plans, container assignments
and status changes.
"""
from __future__ import annotations

import logging
from typing import List, Optional, cast
from uuid import UUID

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from models.destuffing_plan import (
    DestuffingPlan,
    DestuffingPlanContainer,
    DestuffingPlanHbl,
    PlanStatus,
)
from models.order_container import OrderContainer, OrderContainerHbl
from schemas.destuffing_plan import (
    AssignContainerRequest,
    OrderContainerCreate,
    PlanContainerRead,
    PlanCreate,
    PlanHeaderUpdate,
    PlanRead,
    is_valid_window,
)

log = logging.getLogger(__name__)


def _status_value(status) -> str:
    return status.value if hasattr(status, "value") else str(status)


def serialize_plan(plan: DestuffingPlan) -> PlanRead:
    return PlanRead(
        id=cast(UUID, plan.id),
        code=cast(str, plan.code),
        status=_status_value(plan.status),
        planned_start=plan.planned_start,
        planned_end=plan.planned_end,
        execution_start=plan.execution_start,
        execution_end=plan.execution_end,
        pending_date=plan.pending_date,
        equipment_booked=bool(plan.equipment_booked),
        appointment_confirmed=bool(plan.appointment_confirmed),
        forwarder_id=plan.forwarder_id,
        forwarder_name=plan.forwarder_name,
        containers=[PlanContainerRead.model_validate(item) for item in plan.containers],
        created_at=plan.created_at,
        updated_at=plan.updated_at,
    )


class DestuffingPlanService:
    """Backend operations behind the destuffing plan REST API."""

    @staticmethod
    def require_scheduled(plan: DestuffingPlan, action: str) -> None:
        current_status = _status_value(plan.status)
        if current_status != PlanStatus.SCHEDULED.value:
            raise HTTPException(
                status_code=400,
                detail=f"Only SCHEDULED plans can {action} (plan is {current_status})",
            )

    @staticmethod
    def generate_plan_code(db: Session) -> str:
        sequence = db.query(DestuffingPlan).count() + 1
        code = f"DP-{sequence:04d}"
        while db.query(DestuffingPlan).filter(DestuffingPlan.code == code).first():
            sequence += 1
            code = f"DP-{sequence:04d}"
        return code

    @staticmethod
    def get_plan(plan_id: UUID, db: Session) -> DestuffingPlan:
        plan = db.query(DestuffingPlan).filter(DestuffingPlan.id == plan_id).first()
        if not plan:
            raise HTTPException(status_code=404, detail="Plan not found")
        return plan

    @staticmethod
    def list_plans(db: Session, status: Optional[str] = None) -> List[DestuffingPlan]:
        query = db.query(DestuffingPlan)
        if status:
            normalized = status.strip().upper()
            if normalized not in {item.value for item in PlanStatus}:
                raise HTTPException(status_code=400, detail="Invalid status")
            query = query.filter(DestuffingPlan.status == PlanStatus(normalized))
        return query.order_by(DestuffingPlan.planned_start.asc()).all()

    @staticmethod
    def count_in_progress(db: Session, exclude_plan_id: Optional[UUID] = None) -> int:
        query = db.query(DestuffingPlan).filter(DestuffingPlan.status == PlanStatus.IN_PROGRESS)
        if exclude_plan_id is not None:
            query = query.filter(DestuffingPlan.id != exclude_plan_id)
        return query.count()

    @staticmethod
    def create_order_container(payload: OrderContainerCreate, db: Session) -> OrderContainer:
        container = OrderContainer(
            container_no=payload.container_no,
            forwarder_id=payload.forwarder_id,
            forwarder_name=payload.forwarder_name,
            allow_stuffing_or_destuffing=payload.allow_stuffing_or_destuffing,
            cargo_release_status=payload.cargo_release_status,
        )
        for hbl in payload.hbls:
            container.hbls.append(
                OrderContainerHbl(
                    hbl_id=hbl.hbl_id,
                    hbl_no=hbl.hbl_no,
                    packing_list_no=hbl.packing_list_no,
                )
            )
        db.add(container)
        db.commit()
        db.refresh(container)
        return container

    @staticmethod
    def list_unplanned_containers(db: Session, forwarder_id: Optional[str] = None) -> List[OrderContainer]:
        assigned_ids = select(DestuffingPlanContainer.order_container_id)
        query = db.query(OrderContainer).filter(~OrderContainer.id.in_(assigned_ids))
        if forwarder_id:
            query = query.filter(OrderContainer.forwarder_id == forwarder_id)
        return query.order_by(OrderContainer.created_at.asc()).all()

    @staticmethod
    def _build_plan_containers(
        plan: DestuffingPlan,
        assignments: List[AssignContainerRequest],
        db: Session,
    ) -> List[DestuffingPlanContainer]:
        """Validate every assignment before any row is created."""
        rows: List[DestuffingPlanContainer] = []
        seen: set = set()
        for assignment in assignments:
            if assignment.order_container_id in seen:
                raise HTTPException(status_code=400, detail="Duplicate container in assignment request")
            seen.add(assignment.order_container_id)

            container = db.query(OrderContainer).filter(
                OrderContainer.id == assignment.order_container_id
            ).first()
            if not container:
                raise HTTPException(
                    status_code=404,
                    detail=f"Order container {assignment.order_container_id} not found",
                )

            existing = db.query(DestuffingPlanContainer).filter(
                DestuffingPlanContainer.order_container_id == assignment.order_container_id
            ).first()
            if existing:
                raise HTTPException(
                    status_code=409,
                    detail=f"Container {container.container_no or container.id} is already assigned to a plan",
                )

            if plan.forwarder_id and container.forwarder_id and plan.forwarder_id != container.forwarder_id:
                raise HTTPException(
                    status_code=400,
                    detail="Container forwarder does not match the plan forwarder",
                )

            available = {hbl.hbl_id: hbl for hbl in container.hbls}
            if assignment.hbl_ids:
                missing = [hbl_id for hbl_id in assignment.hbl_ids if hbl_id not in available]
                if missing:
                    raise HTTPException(
                        status_code=404,
                        detail=f"HBL(s) not found in container: {', '.join(missing)}",
                    )
                selected = [available[hbl_id] for hbl_id in dict.fromkeys(assignment.hbl_ids)]
            else:
                selected = list(container.hbls)
            if not selected:
                raise HTTPException(status_code=400, detail="Selected container has no HBLs available.")

            row = DestuffingPlanContainer(order_container_id=container.id)
            for hbl in selected:
                row.hbls.append(
                    DestuffingPlanHbl(
                        hbl_id=hbl.hbl_id,
                        hbl_no=hbl.hbl_no,
                        packing_list_no=hbl.packing_list_no,
                    )
                )
            rows.append(row)
        return rows

    @staticmethod
    def create_plan(payload: PlanCreate, db: Session) -> DestuffingPlan:
        forwarder_id = payload.forwarder_id
        container_ids = [item.order_container_id for item in payload.hbl_selections]
        containers = db.query(OrderContainer).filter(OrderContainer.id.in_(container_ids)).all()
        forwarders = {container.forwarder_id for container in containers if container.forwarder_id}
        if len(forwarders) > 1:
            raise HTTPException(
                status_code=400,
                detail="Selected containers must belong to the same forwarder.",
            )
        if not forwarder_id and forwarders:
            forwarder_id = next(iter(forwarders))

        plan = DestuffingPlan(
            code=DestuffingPlanService.generate_plan_code(db),
            status=PlanStatus.SCHEDULED,
            planned_start=payload.planned_start,
            planned_end=payload.planned_end,
            equipment_booked=payload.equipment_booked,
            appointment_confirmed=payload.appointment_confirmed,
            forwarder_id=forwarder_id,
            forwarder_name=payload.forwarder_name,
        )
        for row in DestuffingPlanService._build_plan_containers(plan, payload.hbl_selections, db):
            plan.containers.append(row)
        if not plan.forwarder_id:
            raise HTTPException(status_code=400, detail="Forwarder is required")

        db.add(plan)
        db.commit()
        db.refresh(plan)
        log.info("Created destuffing plan %s with %s container(s)", plan.code, len(plan.containers))
        return plan

    @staticmethod
    def update_header(plan_id: UUID, payload: PlanHeaderUpdate, db: Session) -> DestuffingPlan:
        plan = DestuffingPlanService.get_plan(plan_id, db)
        DestuffingPlanService.require_scheduled(plan, "be edited")

        planned_start = payload.planned_start or plan.planned_start
        planned_end = payload.planned_end or plan.planned_end
        if not is_valid_window(planned_start, planned_end):
            raise HTTPException(status_code=400, detail="planned_end must be after planned_start")

        if payload.planned_start is not None:
            setattr(plan, "planned_start", payload.planned_start)
        if payload.planned_end is not None:
            setattr(plan, "planned_end", payload.planned_end)
        if payload.equipment_booked is not None:
            setattr(plan, "equipment_booked", payload.equipment_booked)
        if payload.appointment_confirmed is not None:
            setattr(plan, "appointment_confirmed", payload.appointment_confirmed)

        db.commit()
        db.refresh(plan)
        return plan

    @staticmethod
    def delete_plan(plan_id: UUID, db: Session) -> None:
        plan = DestuffingPlanService.get_plan(plan_id, db)
        DestuffingPlanService.require_scheduled(plan, "be deleted")
        db.delete(plan)
        db.commit()

    @staticmethod
    def assign_containers(
        plan_id: UUID,
        assignments: List[AssignContainerRequest],
        db: Session,
    ) -> DestuffingPlan:
        plan = DestuffingPlanService.get_plan(plan_id, db)
        DestuffingPlanService.require_scheduled(plan, "change container assignments")
        if not assignments:
            raise HTTPException(status_code=400, detail="No containers to assign")

        for row in DestuffingPlanService._build_plan_containers(plan, assignments, db):
            plan.containers.append(row)

        db.commit()
        db.refresh(plan)
        return plan

    @staticmethod
    def unassign_container(plan_id: UUID, assignment_id: UUID, db: Session) -> None:
        plan = DestuffingPlanService.get_plan(plan_id, db)
        DestuffingPlanService.require_scheduled(plan, "change container assignments")

        row = db.query(DestuffingPlanContainer).filter(
            DestuffingPlanContainer.plan_id == plan.id,
            DestuffingPlanContainer.id == assignment_id,
        ).first()
        if not row:
            # Callers without a join id address the assignment by order container
            row = db.query(DestuffingPlanContainer).filter(
                DestuffingPlanContainer.plan_id == plan.id,
                DestuffingPlanContainer.order_container_id == assignment_id,
            ).first()
        if not row:
            raise HTTPException(status_code=404, detail="Assignment not found.")

        plan.containers.remove(row)
        db.commit()

    @staticmethod
    def change_status(plan_id: UUID, status: str, db: Session) -> DestuffingPlan:
        plan = DestuffingPlanService.get_plan(plan_id, db)

        normalized_status = (status or "").strip().upper()
        allowed_status = {item.value for item in PlanStatus}
        if normalized_status not in allowed_status:
            raise HTTPException(status_code=400, detail="Invalid status")

        try:
            plan.transition_to(PlanStatus(normalized_status))
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))

        db.commit()
        db.refresh(plan)
        log.info("Plan %s moved to %s", plan.code, normalized_status)
        return plan
