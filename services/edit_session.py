"""
Plan edit sessions.

`PlanHeaderEditor` keeps an in-progress header edit pinned to the plan it was
started on when the surrounding selection changes. `PlanContainerEditSession`
owns the selection maps for a container edit and saves them through the
change orchestrator, refreshing from the store afterwards.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel

from models.destuffing_plan import PlanStatus
from schemas.destuffing_plan import OrderContainerRead, PlanHeaderUpdate, PlanRead, is_valid_window
from schemas.reconciliation import ChangeRecord, ReconciliationReport
from services.change_classifier import classify_changes
from services.change_orchestrator import apply_changes
from services.plan_store import PlanStore
from services.selection_service import (
    PoolContainer,
    SelectionMap,
    build_container_pool,
    extract_plan_selections,
    select_containers,
    toggle_container,
)

log = logging.getLogger(__name__)

HEADER_FIELDS = ("planned_start", "planned_end", "equipment_booked", "appointment_confirmed")


class PlanNotEditableError(Exception):
    """Raised when an edit is attempted on a plan that is no longer SCHEDULED."""


class SaveInProgressError(Exception):
    """Raised when a save is requested while another save is still running."""


class SwitchConflict(BaseModel):
    displayed_plan_id: str
    pending_plan_id: str
    message: str


def _is_scheduled(plan: PlanRead) -> bool:
    return plan.status.strip().upper() == PlanStatus.SCHEDULED.value


def header_values(plan: PlanRead) -> Dict[str, Any]:
    return {field: getattr(plan, field) for field in HEADER_FIELDS}


class PlanHeaderEditor:
    """
    Header edit state for the plan details view.

    While an edit is active, a selection change to a different plan does not
    replace the displayed plan. The new plan is parked and the caller must
    resolve the conflict with `discard_and_switch` or `cancel_switch`.
    """

    def __init__(self, plan: Optional[PlanRead] = None):
        self.displayed_plan: Optional[PlanRead] = plan
        self.pending_plan: Optional[PlanRead] = None
        self.is_editing = False
        self.form: Dict[str, Any] = {}

    @property
    def has_conflict(self) -> bool:
        return self.pending_plan is not None

    def begin_edit(self) -> Dict[str, Any]:
        if self.displayed_plan is None:
            raise ValueError("No plan is displayed")
        if not _is_scheduled(self.displayed_plan):
            raise PlanNotEditableError(
                f"Plan {self.displayed_plan.code} is {self.displayed_plan.status}; only SCHEDULED plans can be edited"
            )
        self.form = header_values(self.displayed_plan)
        self.is_editing = True
        return dict(self.form)

    def update_field(self, field: str, value: Any) -> None:
        if not self.is_editing:
            raise ValueError("No edit in progress")
        if field not in HEADER_FIELDS:
            raise ValueError(f"Unknown header field: {field}")
        self.form[field] = value

    @property
    def is_dirty(self) -> bool:
        if not self.is_editing or self.displayed_plan is None:
            return False
        return self.form != header_values(self.displayed_plan)

    def on_plan_selected(self, plan: Optional[PlanRead]) -> Optional[SwitchConflict]:
        if not self.is_editing:
            self.displayed_plan = plan
            return None

        if plan is None or self.displayed_plan is None or plan.id == self.displayed_plan.id:
            return None

        self.pending_plan = plan
        return SwitchConflict(
            displayed_plan_id=str(self.displayed_plan.id),
            pending_plan_id=str(plan.id),
            message=(
                f"You have unsaved changes for {self.displayed_plan.code}. "
                f"Discard and switch to {plan.code}?"
            ),
        )

    def discard_and_switch(self) -> PlanRead:
        if self.pending_plan is None:
            raise ValueError("No pending plan to switch to")
        target = self.pending_plan
        self.displayed_plan = target
        self.pending_plan = None
        self.form = header_values(target)
        return target

    def cancel_switch(self) -> str:
        """Drop the pending plan and return the id the view must reselect."""
        if self.displayed_plan is None:
            raise ValueError("No plan is displayed")
        self.pending_plan = None
        return str(self.displayed_plan.id)

    def cancel_edit(self) -> None:
        self.is_editing = False
        self.pending_plan = None
        self.form = {}

    async def save(self, store: PlanStore) -> PlanRead:
        if not self.is_editing or self.displayed_plan is None:
            raise ValueError("No edit in progress")
        if self.has_conflict:
            raise ValueError("Resolve the pending plan switch before saving")

        if not is_valid_window(self.form["planned_start"], self.form["planned_end"]):
            raise ValueError("planned_end must be after planned_start")

        payload = PlanHeaderUpdate(**self.form)
        updated = await store.update_plan_header(self.displayed_plan.id, payload)
        self.displayed_plan = updated
        self.cancel_edit()
        return updated


class PlanContainerEditSession:
    """Container membership edit for one SCHEDULED plan."""

    def __init__(self, plan: PlanRead, pool: Iterable[PoolContainer], store: PlanStore):
        self.store = store
        self.is_saving = False
        self.last_report: Optional[ReconciliationReport] = None
        self._unplanned: List[OrderContainerRead] = [
            item.order_container
            for item in pool
            if item.order_container is not None and not item.plan_container_id
        ]
        self._load(plan)

    def _load(self, plan: PlanRead, live_keys: Optional[Iterable[str]] = None) -> None:
        self.plan = plan
        self.original_selections: SelectionMap = extract_plan_selections(plan)
        self.pool: List[PoolContainer] = build_container_pool(plan, self._unplanned)
        keys = list(self.original_selections) if live_keys is None else list(live_keys)
        self.live_selections: SelectionMap = select_containers(self.pool, keys)

    def container(self, key: str) -> PoolContainer:
        for item in self.pool:
            if item.key == str(key):
                return item
        raise KeyError(key)

    def toggle(self, key: str, selected: bool) -> SelectionMap:
        if self.is_saving:
            raise SaveInProgressError("Changes are being saved")
        self.live_selections = toggle_container(self.live_selections, self.container(key), selected)
        return self.live_selections

    @property
    def changes(self) -> List[ChangeRecord]:
        return classify_changes(self.original_selections, self.live_selections, self.pool)

    @property
    def has_pending_changes(self) -> bool:
        return bool(self.changes)

    async def save(self) -> ReconciliationReport:
        if self.is_saving:
            raise SaveInProgressError("A save is already in progress for this plan")
        if not _is_scheduled(self.plan):
            raise PlanNotEditableError(
                f"Plan {self.plan.code} is {self.plan.status}; containers can only change while SCHEDULED"
            )

        changes = self.changes
        if not changes:
            return ReconciliationReport()

        self.is_saving = True
        try:
            report = await apply_changes(self.plan.id, changes, self.store)
            self.last_report = report
            wanted_keys = list(self.live_selections)
            # Authoritative state always comes from the store, even after failures
            fresh_plan = await self.store.fetch_plan_by_id(self.plan.id)
            self._refresh_unplanned(fresh_plan)
            self._load(fresh_plan, live_keys=wanted_keys)
        finally:
            self.is_saving = False

        if not report.is_complete:
            log.warning(
                "Plan %s saved with %s failed change(s); %s change(s) still outstanding",
                self.plan.code, len(report.failures), len(self.changes),
            )
        return report

    def _refresh_unplanned(self, fresh_plan: PlanRead) -> None:
        """Keep released containers in the pool so they can be re-selected."""
        known = {str(item.id): item for item in self._unplanned}
        for pool_item in self.pool:
            if pool_item.order_container is not None and pool_item.key not in known:
                known[pool_item.key] = pool_item.order_container
        assigned = {str(item.order_container_id) for item in fresh_plan.containers}
        self._unplanned = [item for key, item in known.items() if key not in assigned]
