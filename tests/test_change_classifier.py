import itertools

import pytest

from conftest import assign, make_container, make_plan
from schemas.reconciliation import CargoUnit
from services.change_classifier import classify_changes, classify_container, have_same_units
from services.selection_service import (
    build_container_pool,
    extract_plan_selections,
    select_containers,
    toggle_container,
)


def units(*ids):
    return [CargoUnit(unit_id=unit_id, code=unit_id) for unit_id in ids]


@pytest.mark.parametrize(
    "was_assigned, is_selected, original, live, expected",
    [
        (False, True, [], ["1"], "add"),
        (True, True, ["1", "2"], ["1", "2", "3"], "update"),
        (True, True, ["1", "2"], ["2", "1"], "unchanged"),
        (True, False, ["1"], [], "remove"),
        (False, False, [], [], "unchanged"),
    ],
)
def test_decision_table(was_assigned, is_selected, original, live, expected):
    assert classify_container(was_assigned, is_selected, units(*original), units(*live)) == expected


def test_unit_comparison_ignores_order():
    assert have_same_units(units("1", "2"), units("2", "1"))
    assert not have_same_units(units("1", "2"), units("1"))
    assert not have_same_units(units("1"), units("2"))


def test_classifier_never_emits_unchanged_records():
    first = make_container("MSCU1000001", ["A"])
    second = make_container("MSCU1000002", ["B"])
    third = make_container("MSCU1000003", ["C"])
    plan = make_plan([assign(first), assign(second)])
    pool = build_container_pool(plan, [third])
    original = extract_plan_selections(plan)

    keys = [item.key for item in pool]
    for size in range(len(keys) + 1):
        for chosen in itertools.combinations(keys, size):
            records = classify_changes(original, select_containers(pool, chosen), pool)
            assert all(record.kind != "unchanged" for record in records)
            assert {record.kind for record in records} <= {"add", "update", "remove"}


def test_unchanged_edit_is_idempotent():
    container = make_container("MSCU1000001", ["A", "B"])
    plan = make_plan([assign(container)])
    pool = build_container_pool(plan)
    original = extract_plan_selections(plan)
    live = select_containers(pool, original.keys())

    assert classify_changes(original, live, pool) == []
    assert classify_changes(original, live, pool) == []


def test_new_selection_alongside_untouched_container_is_single_add():
    x = make_container("MSCU0000001", ["X1"])
    y = make_container("MSCU0000002", ["Y1", "Y2"])
    plan = make_plan([assign(x)])
    pool = build_container_pool(plan, [y])
    original = extract_plan_selections(plan)

    live = toggle_container(dict(original), pool[1], True)
    records = classify_changes(original, live, pool)

    assert len(records) == 1
    assert records[0].container_key == str(y.id)
    assert records[0].kind == "add"
    assert records[0].unit_ids == ["Y1", "Y2"]
    assert records[0].plan_container_id is None
    assert records[0].label == "MSCU0000002"


def test_partial_persisted_selection_reselected_in_full_is_update():
    z = make_container("MSCU0000003", ["1", "2", "3"])
    plan_container = assign(z, ["1", "2"])
    plan = make_plan([plan_container])
    pool = build_container_pool(plan)
    original = extract_plan_selections(plan)

    assert [unit.unit_id for unit in original[str(z.id)]] == ["1", "2"]

    live = select_containers(pool, [str(z.id)])
    records = classify_changes(original, live, pool)

    assert len(records) == 1
    assert records[0].kind == "update"
    assert records[0].unit_ids == ["1", "2", "3"]
    assert records[0].plan_container_id == str(plan_container.id)


def test_deselected_container_is_removal_with_join_id():
    container = make_container("MSCU0000004", ["R1"])
    plan_container = assign(container)
    plan = make_plan([plan_container])
    pool = build_container_pool(plan)

    records = classify_changes(extract_plan_selections(plan), {}, pool)

    assert len(records) == 1
    assert records[0].kind == "remove"
    assert records[0].plan_container_id == str(plan_container.id)
    assert records[0].unit_ids == ["R1"]


def test_original_entry_without_join_row_is_not_treated_as_assigned():
    container = make_container("MSCU0000005", ["Q1"])
    pool = build_container_pool(make_plan(), [container])
    key = str(container.id)
    original = {key: units("Q1")}

    assert classify_changes(original, {}, pool) == []
    records = classify_changes(original, {key: units("Q1")}, pool)
    assert [record.kind for record in records] == ["add"]


def test_selection_outside_pool_is_reported_after_pool_records():
    container = make_container("MSCU0000006", ["P1"])
    plan = make_plan([assign(container)])
    pool = build_container_pool(plan)
    live = {"stray-key": units("S1")}

    records = classify_changes(extract_plan_selections(plan), live, pool)

    assert [(record.container_key, record.kind) for record in records] == [
        (str(container.id), "remove"),
        ("stray-key", "add"),
    ]
    assert records[1].label == "Container stray-key"


def test_toggle_is_all_or_nothing_and_skips_empty_containers():
    full = make_container("MSCU0000007", ["A", "B", "C"])
    empty = make_container("MSCU0000008", [])
    pool = build_container_pool(make_plan(), [full, empty])

    selections = toggle_container({}, pool[0], True)
    assert [unit.unit_id for unit in selections[str(full.id)]] == ["A", "B", "C"]

    assert toggle_container(selections, pool[1], True) == selections
    assert toggle_container(selections, pool[0], False) == {}


def test_pool_excludes_other_forwarders_and_labels_missing_numbers():
    own = make_container(None, ["A"])
    foreign = make_container("MSCU0000009", ["B"], forwarder_id="FWD-2")
    pool = build_container_pool(make_plan(), [own, foreign])

    assert [item.key for item in pool] == [str(own.id)]
    assert pool[0].label == f"Container {own.id}"
