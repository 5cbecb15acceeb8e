"""
Destuffing plan lifecycle: guarded status transitions.

Entering IN_PROGRESS requires both prerequisite flags, no blocked containers
and no other plan already in progress. Guards are evaluated against a freshly
fetched plan since cargo release approval can change out-of-band.

The single-active-plan rule is checked here, immediately before the status
call, and is not enforced by the backend; two sessions acting at once can
both pass it.
"""
from __future__ import annotations

import logging
from typing import Optional

from pydantic import BaseModel

from models.destuffing_plan import PlanStatus, is_valid_transition
from schemas.destuffing_plan import PlanRead
from schemas.reconciliation import ExecutionCheck
from services.guard_service import build_blocked_reason, evaluate_guards
from services.plan_store import PlanId, PlanStore

log = logging.getLogger(__name__)

PREREQUISITES_MESSAGE = "Equipment booking and appointment confirmation are required."
ACTIVE_PLAN_MESSAGE = "Another plan is already in progress. Complete it before starting this plan."

# Follow-up actions for the surrounding view after a successful transition
CLEAR_UNPLANNED_FOCUS = "CLEAR_UNPLANNED_FOCUS"
COLLAPSE_PENDING_ROW = "COLLAPSE_PENDING_ROW"


class TransitionResult(BaseModel):
    allowed: bool
    plan: Optional[PlanRead] = None
    reason: Optional[str] = None
    follow_up: Optional[str] = None


def can_enter_execution(plan: Optional[PlanRead], active_in_progress_count: int) -> ExecutionCheck:
    if plan is None:
        return ExecutionCheck(allowed=False, reason="Plan not found.")

    if not plan.equipment_booked or not plan.appointment_confirmed:
        return ExecutionCheck(allowed=False, reason=PREREQUISITES_MESSAGE)

    blocked_reason = build_blocked_reason(evaluate_guards(plan))
    if blocked_reason:
        return ExecutionCheck(allowed=False, reason=blocked_reason)

    if active_in_progress_count > 0:
        return ExecutionCheck(allowed=False, reason=ACTIVE_PLAN_MESSAGE)

    return ExecutionCheck(allowed=True)


def _status(plan: PlanRead) -> PlanStatus:
    return PlanStatus(plan.status.strip().upper())


class PlanLifecycleService:
    def __init__(self, store: PlanStore):
        self.store = store

    async def count_active_plans(self, exclude_plan_id: Optional[PlanId] = None) -> int:
        in_progress = await self.store.list_plans(PlanStatus.IN_PROGRESS.value)
        excluded = str(exclude_plan_id) if exclude_plan_id is not None else None
        return sum(1 for plan in in_progress if str(plan.id) != excluded)

    async def _enter_execution(self, plan_id: PlanId, expected: PlanStatus, follow_up: str) -> TransitionResult:
        plan = await self.store.fetch_plan_by_id(plan_id)
        current = _status(plan)
        if current != expected:
            return self._invalid(plan, current, PlanStatus.IN_PROGRESS)

        active_count = await self.count_active_plans(exclude_plan_id=plan.id)
        check = can_enter_execution(plan, active_count)
        if not check.allowed:
            log.info("Plan %s blocked from entering execution: %s", plan.code, check.reason)
            return TransitionResult(allowed=False, plan=plan, reason=check.reason)

        updated = await self.store.change_plan_status(plan.id, PlanStatus.IN_PROGRESS.value)
        return TransitionResult(allowed=True, plan=updated, follow_up=follow_up)

    async def _move(self, plan_id: PlanId, target: PlanStatus) -> TransitionResult:
        plan = await self.store.fetch_plan_by_id(plan_id)
        current = _status(plan)
        if not is_valid_transition(current, target):
            return self._invalid(plan, current, target)
        updated = await self.store.change_plan_status(plan.id, target.value)
        return TransitionResult(allowed=True, plan=updated)

    @staticmethod
    def _invalid(plan: PlanRead, current: PlanStatus, target: PlanStatus) -> TransitionResult:
        reason = f"Invalid status transition from {current.value} to {target.value}."
        log.info("Plan %s: %s", plan.code, reason)
        return TransitionResult(allowed=False, plan=plan, reason=reason)

    async def start_execution(self, plan_id: PlanId) -> TransitionResult:
        return await self._enter_execution(plan_id, PlanStatus.SCHEDULED, CLEAR_UNPLANNED_FOCUS)

    async def reactivate(self, plan_id: PlanId) -> TransitionResult:
        return await self._enter_execution(plan_id, PlanStatus.PENDING, COLLAPSE_PENDING_ROW)

    async def cancel_execution(self, plan_id: PlanId) -> TransitionResult:
        return await self._move(plan_id, PlanStatus.SCHEDULED)

    async def mark_done(self, plan_id: PlanId) -> TransitionResult:
        return await self._move(plan_id, PlanStatus.DONE)

    async def mark_pending(self, plan_id: PlanId) -> TransitionResult:
        return await self._move(plan_id, PlanStatus.PENDING)
