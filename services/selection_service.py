"""
Selection model for plan container edits.

A selection map is keyed by order-container id and holds the cargo units
(house bills) included for that container. Selecting a container is
all-or-nothing: the map always carries every unit the container holds.
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from schemas.destuffing_plan import HblRead, OrderContainerRead, PlanContainerRead, PlanRead
from schemas.reconciliation import CargoUnit

SelectionMap = Dict[str, List[CargoUnit]]


class PoolContainer(BaseModel):
    """A candidate container in an edit session's container pool."""
    key: str
    order_container: Optional[OrderContainerRead] = None
    plan_container_id: Optional[str] = None

    units: List[CargoUnit] = Field(default_factory=list)

    @property
    def label(self) -> str:
        return container_label(self.order_container, self.plan_container_id or self.key)

    @property
    def is_selectable(self) -> bool:
        return bool(self.units)


def _to_unit(hbl: HblRead) -> Optional[CargoUnit]:
    if not hbl.hbl_id and not hbl.hbl_no:
        return None
    unit_id = hbl.hbl_id or hbl.hbl_no
    code = hbl.hbl_no or hbl.hbl_id
    return CargoUnit(unit_id=unit_id, code=code, manifest_ref=hbl.packing_list_no)


def _to_units(hbls: Iterable[HblRead]) -> List[CargoUnit]:
    units = []
    for hbl in hbls:
        unit = _to_unit(hbl)
        if unit is not None:
            units.append(unit)
    return units


def container_label(
    order_container: Optional[OrderContainerRead],
    plan_container_id: Optional[str] = None,
) -> str:
    if order_container is not None and order_container.container_no:
        return order_container.container_no
    fallback_id = order_container.id if order_container is not None else plan_container_id
    return f"Container {fallback_id}"


def container_units(order_container: Optional[OrderContainerRead]) -> List[CargoUnit]:
    """Full cargo-unit list of an order container."""
    if order_container is None:
        return []
    return _to_units(order_container.hbls)


def plan_container_units(plan_container: PlanContainerRead) -> List[CargoUnit]:
    """Persisted selection of a plan container, falling back to the full container."""
    selected = _to_units(plan_container.hbls)
    if selected:
        return selected
    return container_units(plan_container.order_container)


def extract_plan_selections(plan: Optional[PlanRead]) -> SelectionMap:
    """Snapshot of a plan's current assignments, taken when an edit session starts."""
    selections: SelectionMap = {}
    if plan is None:
        return selections
    for plan_container in plan.containers:
        selections[str(plan_container.order_container_id)] = plan_container_units(plan_container)
    return selections


def build_container_pool(
    plan: Optional[PlanRead],
    unplanned: Iterable[OrderContainerRead] = (),
) -> List[PoolContainer]:
    """Plan containers first, then unplanned containers of the plan's forwarder."""
    pool: List[PoolContainer] = []
    seen = set()

    if plan is not None:
        for plan_container in plan.containers:
            key = str(plan_container.order_container_id)
            order_container = plan_container.order_container or OrderContainerRead(
                id=plan_container.order_container_id
            )
            pool.append(
                PoolContainer(
                    key=key,
                    order_container=order_container,
                    plan_container_id=str(plan_container.id),
                    units=container_units(order_container),
                )
            )
            seen.add(key)

    forwarder_id = plan.forwarder_id if plan is not None else None
    for container in unplanned:
        key = str(container.id)
        if key in seen:
            continue
        if forwarder_id and container.forwarder_id and container.forwarder_id != forwarder_id:
            continue
        pool.append(PoolContainer(key=key, order_container=container, units=container_units(container)))
        seen.add(key)

    return pool


def toggle_container(selections: SelectionMap, container: PoolContainer, selected: bool) -> SelectionMap:
    """Return a new selection map with the container fully included or excluded."""
    next_selections = dict(selections)
    if selected:
        if not container.is_selectable:
            return next_selections
        next_selections[container.key] = list(container.units)
    else:
        next_selections.pop(container.key, None)
    return next_selections


def select_containers(pool: Iterable[PoolContainer], keys: Iterable[str]) -> SelectionMap:
    """Build a live selection map from a set of selected container keys."""
    wanted = {str(key) for key in keys}
    selections: SelectionMap = {}
    for container in pool:
        if container.key in wanted:
            selections = toggle_container(selections, container, True)
    return selections


def unit_ids(units: Iterable[CargoUnit]) -> List[str]:
    return [unit.unit_id for unit in units]
