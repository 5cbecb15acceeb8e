"""
Classify per-container changes between a plan's persisted assignments and a
live edit.
"""
from __future__ import annotations

from typing import Iterable, List, Mapping, Optional

from schemas.reconciliation import CargoUnit, ChangeKind, ChangeRecord
from services.selection_service import PoolContainer, unit_ids


def have_same_units(original: Iterable[CargoUnit], live: Iterable[CargoUnit]) -> bool:
    """Membership comparison only; order is irrelevant."""
    original_ids = set(unit_ids(original))
    live_ids = set(unit_ids(live))
    return len(original_ids) == len(live_ids) and original_ids == live_ids


def classify_container(
    was_assigned: bool,
    is_selected: bool,
    original: Iterable[CargoUnit],
    live: Iterable[CargoUnit],
) -> ChangeKind:
    if is_selected and not was_assigned:
        return "add"
    if is_selected and was_assigned and not have_same_units(original, live):
        return "update"
    if not is_selected and was_assigned:
        return "remove"
    return "unchanged"


def classify_changes(
    original_selections: Mapping[str, List[CargoUnit]],
    live_selections: Mapping[str, List[CargoUnit]],
    container_pool: Iterable[PoolContainer],
) -> List[ChangeRecord]:
    """
    Return one ChangeRecord per touched container, unchanged ones omitted.

    A container counts as previously assigned only when it carries a persisted
    plan-container id; an entry in `original_selections` alone is not enough.
    Records follow pool order. Keys known only to the selection maps come
    after the pool; without a join row they can only classify as `add`.
    """
    records: List[ChangeRecord] = []
    pool = list(container_pool)
    pool_keys = {container.key for container in pool}

    for container in pool:
        record = _classify_pool_container(container, original_selections, live_selections)
        if record is not None:
            records.append(record)

    for key in dict.fromkeys([*original_selections, *live_selections]):
        if key in pool_keys:
            continue
        # No pool entry means no join row, so only a fresh selection can register
        orphan = PoolContainer(key=key, units=list(live_selections.get(key, [])))
        record = _classify_pool_container(orphan, original_selections, live_selections)
        if record is not None:
            records.append(record)

    return records


def _classify_pool_container(
    container: PoolContainer,
    original_selections: Mapping[str, List[CargoUnit]],
    live_selections: Mapping[str, List[CargoUnit]],
) -> Optional[ChangeRecord]:
    was_assigned = bool(container.plan_container_id)
    is_selected = container.key in live_selections
    original = original_selections.get(container.key, [])
    live = live_selections.get(container.key, [])

    kind = classify_container(was_assigned, is_selected, original, live)
    if kind == "unchanged":
        return None

    return ChangeRecord(
        container_key=container.key,
        kind=kind,
        unit_ids=unit_ids(live) if kind != "remove" else unit_ids(original),
        plan_container_id=container.plan_container_id,
        label=container.label,
    )
