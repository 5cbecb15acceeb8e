"""
Apply classified container changes to a plan store.

Additions go out as one batch, updates run strictly one after another
(release, then re-assign), and removals fan out concurrently. Individual
failures are recorded as rejected outcomes; nothing is rolled back.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Iterable, List, Optional

from schemas.destuffing_plan import AssignContainerRequest
from schemas.reconciliation import ChangeRecord, MutationKind, MutationOutcome, ReconciliationReport
from services.plan_store import PlanId, PlanStore

log = logging.getLogger(__name__)


def _error_text(exc: BaseException, fallback: str) -> str:
    message = getattr(exc, "message", None) or str(exc)
    return message or fallback


def _assignment(record: ChangeRecord) -> AssignContainerRequest:
    # An empty unit list means "every unit in the container"
    return AssignContainerRequest(
        order_container_id=record.container_key,
        hbl_ids=list(record.unit_ids) or None,
    )


def _outcome(record: ChangeRecord, kind: MutationKind, error: Optional[str] = None) -> MutationOutcome:
    return MutationOutcome(
        label=record.label or record.container_key,
        kind=kind,
        status="rejected" if error is not None else "fulfilled",
        error=error,
    )


class ChangeOrchestrator:
    def __init__(self, store: PlanStore):
        self.store = store

    async def apply(self, plan_id: PlanId, change_records: Iterable[ChangeRecord]) -> ReconciliationReport:
        if not plan_id:
            raise ValueError("plan_id is required to apply container changes")

        records = list(change_records)
        additions = [record for record in records if record.kind == "add"]
        updates = [record for record in records if record.kind == "update"]
        removals = [record for record in records if record.kind == "remove"]

        for record in removals:
            if not record.plan_container_id:
                raise ValueError(f"Removal of {record.container_key} has no plan container id")

        log.info(
            "Applying container changes to plan %s: %s addition(s), %s update(s), %s removal(s)",
            plan_id, len(additions), len(updates), len(removals),
        )

        outcomes: List[MutationOutcome] = []
        outcomes.extend(await self._apply_additions(plan_id, additions))
        for record in updates:
            outcomes.extend(await self._apply_update(plan_id, record))
        outcomes.extend(await self._apply_removals(plan_id, removals))

        for outcome in outcomes:
            if outcome.status == "rejected":
                log.warning(
                    "Plan %s %s failed for %s: %s", plan_id, outcome.kind, outcome.label, outcome.error
                )
        return ReconciliationReport(outcomes=outcomes)

    async def _apply_additions(self, plan_id: PlanId, additions: List[ChangeRecord]) -> List[MutationOutcome]:
        if not additions:
            return []
        try:
            await self.store.assign_containers(plan_id, [_assignment(record) for record in additions])
        except Exception as exc:
            message = _error_text(exc, "Failed to add container.")
            return [_outcome(record, "add", message) for record in additions]
        return [_outcome(record, "add") for record in additions]

    async def _apply_update(self, plan_id: PlanId, record: ChangeRecord) -> List[MutationOutcome]:
        """Release the existing join row, then re-assign with the new units."""
        release_id = record.plan_container_id or record.container_key
        try:
            await self.store.unassign_container(plan_id, release_id)
        except Exception as exc:
            # The prior assignment is unconfirmed, so the re-add is skipped
            message = _error_text(exc, "Failed to remove container before reassigning.")
            return [_outcome(record, "update", message)]

        outcomes = [_outcome(record, "update")]
        try:
            await self.store.assign_containers(plan_id, [_assignment(record)])
        except Exception as exc:
            outcomes.append(_outcome(record, "add", _error_text(exc, "Failed to reassign container.")))
        else:
            outcomes.append(_outcome(record, "add"))
        return outcomes

    async def _remove_one(self, plan_id: PlanId, record: ChangeRecord) -> MutationOutcome:
        try:
            await self.store.unassign_container(plan_id, record.plan_container_id)
        except Exception as exc:
            return _outcome(record, "remove", _error_text(exc, "Failed to remove container."))
        return _outcome(record, "remove")

    async def _apply_removals(self, plan_id: PlanId, removals: List[ChangeRecord]) -> List[MutationOutcome]:
        if not removals:
            return []
        # gather keeps submission order in its results
        results = await asyncio.gather(*(self._remove_one(plan_id, record) for record in removals))
        return list(results)


async def apply_changes(
    plan_id: PlanId,
    change_records: Iterable[ChangeRecord],
    store: PlanStore,
) -> ReconciliationReport:
    return await ChangeOrchestrator(store).apply(plan_id, change_records)
