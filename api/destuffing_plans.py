from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from core.database import get_db
from schemas.destuffing_plan import (
    AssignContainerRequest,
    OrderContainerCreate,
    OrderContainerRead,
    PlanCreate,
    PlanHeaderUpdate,
    PlanRead,
    PlanStatusChangeRequest,
)
from schemas.reconciliation import PlanGuardResponse, ReconcileRequest, ReconcileResponse
from services.change_classifier import classify_changes
from services.change_orchestrator import apply_changes
from services.destuffing_plan_service import DestuffingPlanService, serialize_plan
from services.guard_service import build_blocked_hints, evaluate_guards
from services.lifecycle_service import can_enter_execution
from services.plan_store import DatabasePlanStore
from services.selection_service import build_container_pool, extract_plan_selections, select_containers

router = APIRouter(prefix="/destuffing-plans", tags=["destuffing-planning"])
order_containers_router = APIRouter(prefix="/order-containers", tags=["order-containers"])


@router.get("/", response_model=List[PlanRead])
def list_plans(
    status: Optional[str] = None,
    db: Session = Depends(get_db),
):
    plans = DestuffingPlanService.list_plans(db, status)
    return [serialize_plan(plan) for plan in plans]


@router.post("/", response_model=PlanRead, status_code=status.HTTP_201_CREATED)
def create_plan(
    payload: PlanCreate,
    db: Session = Depends(get_db),
):
    plan = DestuffingPlanService.create_plan(payload, db)
    return serialize_plan(plan)


@router.get("/unplanned-containers", response_model=List[OrderContainerRead])
def list_unplanned_containers(
    forwarder_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    return DestuffingPlanService.list_unplanned_containers(db, forwarder_id)


@router.get("/{plan_id}", response_model=PlanRead)
def get_plan(
    plan_id: UUID,
    db: Session = Depends(get_db),
):
    return serialize_plan(DestuffingPlanService.get_plan(plan_id, db))


@router.patch("/{plan_id}", response_model=PlanRead)
def update_plan_header(
    plan_id: UUID,
    payload: PlanHeaderUpdate,
    db: Session = Depends(get_db),
):
    plan = DestuffingPlanService.update_header(plan_id, payload, db)
    return serialize_plan(plan)


@router.delete("/{plan_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_plan(
    plan_id: UUID,
    db: Session = Depends(get_db),
):
    DestuffingPlanService.delete_plan(plan_id, db)


@router.post("/{plan_id}/status", response_model=PlanRead)
def change_plan_status(
    plan_id: UUID,
    payload: PlanStatusChangeRequest,
    db: Session = Depends(get_db),
):
    plan = DestuffingPlanService.change_status(plan_id, payload.status, db)
    return serialize_plan(plan)


@router.get("/{plan_id}/guards", response_model=PlanGuardResponse)
def get_plan_guards(
    plan_id: UUID,
    db: Session = Depends(get_db),
):
    plan = serialize_plan(DestuffingPlanService.get_plan(plan_id, db))
    report = evaluate_guards(plan)
    active_count = DestuffingPlanService.count_in_progress(db, exclude_plan_id=plan_id)
    return PlanGuardResponse(
        plan_id=str(plan.id),
        guards=report,
        hints=build_blocked_hints(report),
        execution=can_enter_execution(plan, active_count),
    )


@router.post("/{plan_id}/container-assignments", response_model=PlanRead)
def assign_containers(
    plan_id: UUID,
    payload: List[AssignContainerRequest],
    db: Session = Depends(get_db),
):
    plan = DestuffingPlanService.assign_containers(plan_id, payload, db)
    return serialize_plan(plan)


@router.delete(
    "/{plan_id}/container-assignments/{assignment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def unassign_container(
    plan_id: UUID,
    assignment_id: UUID,
    db: Session = Depends(get_db),
):
    DestuffingPlanService.unassign_container(plan_id, assignment_id, db)


@router.post("/{plan_id}/reconcile", response_model=ReconcileResponse)
async def reconcile_plan_containers(
    plan_id: UUID,
    payload: ReconcileRequest,
    db: Session = Depends(get_db),
):
    """
    Bring the plan's container assignments in line with a submitted selection.

    Selected ids that are neither in the plan nor unplanned for the plan's
    forwarder are ignored.
    """
    plan_row = DestuffingPlanService.get_plan(plan_id, db)
    DestuffingPlanService.require_scheduled(plan_row, "change container assignments")

    store = DatabasePlanStore(db)
    plan = serialize_plan(plan_row)
    unplanned = await store.list_unplanned_containers(plan.forwarder_id)
    pool = build_container_pool(plan, unplanned)
    live = select_containers(pool, payload.selected_container_ids)
    records = classify_changes(extract_plan_selections(plan), live, pool)

    report = await apply_changes(plan.id, records, store)
    fresh_plan = await store.fetch_plan_by_id(plan.id)

    # Containers released by this call must stay selectable when re-deriving
    released = {item.key: item.order_container for item in pool if item.order_container is not None}
    assigned = {str(item.order_container_id) for item in fresh_plan.containers}
    fresh_pool = build_container_pool(
        fresh_plan,
        [container for key, container in released.items() if key not in assigned],
    )
    outstanding = classify_changes(
        extract_plan_selections(fresh_plan),
        select_containers(fresh_pool, payload.selected_container_ids),
        fresh_pool,
    )

    return ReconcileResponse(
        report=report,
        success_count=report.success_count,
        failures=report.failures_by_label(),
        messages=report.summary_messages(),
        plan=fresh_plan,
        outstanding_changes=outstanding,
    )


@order_containers_router.post("/", response_model=OrderContainerRead, status_code=status.HTTP_201_CREATED)
def create_order_container(
    payload: OrderContainerCreate,
    db: Session = Depends(get_db),
):
    if payload.container_no is not None and not payload.container_no.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="container_no cannot be blank")
    return DestuffingPlanService.create_order_container(payload, db)
