"""
Start guards for destuffing plans.

A plan may only enter execution when every container is cleared for
destuffing by the forwarder and has an approved cargo release.
"""
from __future__ import annotations

import re
from typing import Iterable, List, Optional

from schemas.destuffing_plan import PlanContainerRead, PlanRead
from schemas.reconciliation import GuardReport
from services.config_service import get_approved_cargo_release_status
from services.selection_service import container_label

_SEPARATORS = re.compile(r"[\s-]+")


def normalize_cargo_release_status(status: Optional[str]) -> str:
    """Trim, uppercase, and fold whitespace runs and hyphens to underscores."""
    if status is None:
        return ""
    return _SEPARATORS.sub("_", str(status).strip().upper())


def _plan_container_label(plan_container: PlanContainerRead) -> str:
    return container_label(plan_container.order_container, str(plan_container.id))


def _distinct(labels: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(labels))


def get_blocked_destuffing_labels(plan: Optional[PlanRead]) -> List[str]:
    if plan is None:
        return []
    return _distinct(
        _plan_container_label(item)
        for item in plan.containers
        if item.order_container is None or item.order_container.allow_stuffing_or_destuffing is not True
    )


def get_cargo_release_blocked_labels(plan: Optional[PlanRead]) -> List[str]:
    if plan is None:
        return []
    approved = normalize_cargo_release_status(get_approved_cargo_release_status())
    return _distinct(
        _plan_container_label(item)
        for item in plan.containers
        if normalize_cargo_release_status(
            item.order_container.cargo_release_status if item.order_container else None
        ) != approved
    )


def evaluate_guards(plan: Optional[PlanRead]) -> GuardReport:
    return GuardReport(
        destuffing_blocked=get_blocked_destuffing_labels(plan),
        cargo_release_blocked=get_cargo_release_blocked_labels(plan),
    )


def build_destuffing_not_allowed_message(labels: List[str]) -> str:
    return (
        "Destuffing is not allowed for container(s): "
        f"{', '.join(labels)}. Enable destuffing for these containers before starting the plan."
    )


def build_cargo_release_not_allowed_message(labels: List[str]) -> str:
    return (
        "Cargo release is not approved for container(s): "
        f"{', '.join(labels)}. Cargo release must be approved before starting the plan."
    )


def build_destuffing_not_allowed_hint(labels: List[str]) -> str:
    return f"Destuffing not allowed: {', '.join(labels)}"


def build_cargo_release_not_allowed_hint(labels: List[str]) -> str:
    return f"Cargo release not approved: {', '.join(labels)}"


def build_blocked_reason(report: GuardReport) -> Optional[str]:
    """Joined explanation for every violated guard, or None when nothing blocks."""
    reasons = []
    if report.destuffing_blocked:
        reasons.append(build_destuffing_not_allowed_message(report.destuffing_blocked))
    if report.cargo_release_blocked:
        reasons.append(build_cargo_release_not_allowed_message(report.cargo_release_blocked))
    return " ".join(reasons) or None


def build_blocked_hints(report: GuardReport) -> List[str]:
    hints = []
    if report.destuffing_blocked:
        hints.append(build_destuffing_not_allowed_hint(report.destuffing_blocked))
    if report.cargo_release_blocked:
        hints.append(build_cargo_release_not_allowed_hint(report.cargo_release_blocked))
    return hints
