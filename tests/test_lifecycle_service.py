import asyncio

import pytest

from conftest import FakePlanStore, assign, make_container, make_plan
from services.lifecycle_service import (
    ACTIVE_PLAN_MESSAGE,
    CLEAR_UNPLANNED_FOCUS,
    COLLAPSE_PENDING_ROW,
    PREREQUISITES_MESSAGE,
    PlanLifecycleService,
    can_enter_execution,
)


def run(coro):
    return asyncio.run(coro)


def cleared_plan(**kwargs):
    return make_plan([assign(make_container("MSCU0000001"))], **kwargs)


@pytest.mark.parametrize("equipment_booked, appointment_confirmed", [(True, True), (False, True), (True, False)])
def test_guard_violation_blocks_regardless_of_prerequisites(equipment_booked, appointment_confirmed):
    plan = make_plan(
        [assign(make_container("MSCU0000001", allow=False))],
        equipment_booked=equipment_booked,
        appointment_confirmed=appointment_confirmed,
    )

    assert can_enter_execution(plan, 0).allowed is False


def test_blocked_reason_names_the_containers():
    plan = make_plan([assign(make_container("MSCU0000001", release="REQUESTED"))])

    check = can_enter_execution(plan, 0)

    assert not check.allowed
    assert "MSCU0000001" in check.reason
    assert check.reason.startswith("Cargo release is not approved")


def test_prerequisites_checked_first():
    plan = cleared_plan(equipment_booked=False)

    check = can_enter_execution(plan, 3)

    assert check.reason == PREREQUISITES_MESSAGE


def test_active_plan_blocks_even_when_guards_pass():
    check = can_enter_execution(cleared_plan(), 1)

    assert not check.allowed
    assert check.reason == ACTIVE_PLAN_MESSAGE


def test_cleared_plan_with_no_active_plan_may_start():
    assert can_enter_execution(cleared_plan(), 0).allowed
    assert not can_enter_execution(None, 0).allowed


def test_start_execution_moves_plan_in_progress():
    plan = cleared_plan()
    store = FakePlanStore([plan])

    result = run(PlanLifecycleService(store).start_execution(plan.id))

    assert result.allowed
    assert result.plan.status == "IN_PROGRESS"
    assert result.follow_up == CLEAR_UNPLANNED_FOCUS
    assert store.remote_calls("status") == [("status", str(plan.id), "IN_PROGRESS")]


def test_start_blocked_by_guard_makes_no_status_call():
    plan = make_plan([assign(make_container("MSCU0000001", allow=False))])
    store = FakePlanStore([plan])

    result = run(PlanLifecycleService(store).start_execution(plan.id))

    assert not result.allowed
    assert result.plan.status == "SCHEDULED"
    assert store.remote_calls("status") == []


def test_start_uses_freshly_fetched_plan():
    plan = cleared_plan()
    store = FakePlanStore([plan])
    stored = store.plans[str(plan.id)]
    stored.containers[0].order_container.cargo_release_status = "REJECTED"

    result = run(PlanLifecycleService(store).start_execution(plan.id))

    assert not result.allowed
    assert "MSCU0000001" in result.reason
    assert store.remote_calls("status") == []


def test_start_blocked_while_another_plan_is_in_progress():
    active = cleared_plan(status="IN_PROGRESS", code="DP-0001")
    candidate = cleared_plan(code="DP-0002")
    store = FakePlanStore([active, candidate])

    result = run(PlanLifecycleService(store).start_execution(candidate.id))

    assert not result.allowed
    assert result.reason == ACTIVE_PLAN_MESSAGE
    assert store.remote_calls("status") == []


def test_active_count_excludes_the_plan_itself():
    plan = cleared_plan(status="IN_PROGRESS")
    store = FakePlanStore([plan])
    service = PlanLifecycleService(store)

    assert run(service.count_active_plans(exclude_plan_id=plan.id)) == 0
    assert run(service.count_active_plans()) == 1


def test_reactivate_pending_plan():
    plan = cleared_plan(status="PENDING")
    store = FakePlanStore([plan])

    result = run(PlanLifecycleService(store).reactivate(plan.id))

    assert result.allowed
    assert result.plan.status == "IN_PROGRESS"
    assert result.follow_up == COLLAPSE_PENDING_ROW


def test_reactivate_is_guarded_like_start():
    plan = make_plan([assign(make_container("MSCU0000001", release="REQUESTED"))], status="PENDING")
    store = FakePlanStore([plan])

    result = run(PlanLifecycleService(store).reactivate(plan.id))

    assert not result.allowed
    assert store.remote_calls("status") == []


def test_start_from_wrong_state_is_rejected_locally():
    plan = cleared_plan(status="DONE")
    store = FakePlanStore([plan])

    result = run(PlanLifecycleService(store).start_execution(plan.id))

    assert not result.allowed
    assert result.reason == "Invalid status transition from DONE to IN_PROGRESS."
    assert store.remote_calls("status") == []


def test_unguarded_transitions_follow_edge_table():
    plan = cleared_plan(status="IN_PROGRESS")
    store = FakePlanStore([plan])
    service = PlanLifecycleService(store)

    assert run(service.mark_pending(plan.id)).plan.status == "PENDING"
    assert not run(service.mark_done(plan.id)).allowed
    assert run(service.reactivate(plan.id)).allowed
    assert run(service.cancel_execution(plan.id)).plan.status == "SCHEDULED"
    assert not run(service.cancel_execution(plan.id)).allowed
    assert run(service.start_execution(plan.id)).allowed
    assert run(service.mark_done(plan.id)).plan.status == "DONE"
