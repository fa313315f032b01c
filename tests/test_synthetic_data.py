from datetime import date

import pytest

from laundromat_audit.foundation.machine_class import MachineClass, classify_order
from laundromat_audit.pipeline import run_pipeline
from laundromat_audit.synthetic import (
    WALK_IN_KEY,
    LaundromatScenario,
    generate_customers,
    generate_laundromat_records,
)

START = date(2024, 1, 1)
END = date(2024, 3, 31)


def test_generate_customers_basic() -> None:
    customers = generate_customers(30, START, END, stores=("CENTRO", "SUL"), seed=7)
    assert len(customers) == 30
    assert len({c.customer_key for c in customers}) == 30
    assert all(START <= c.first_visit <= END for c in customers)
    assert {c.store for c in customers} <= {"CENTRO", "SUL"}


def test_generation_is_reproducible() -> None:
    customers = generate_customers(10, START, END, seed=1)
    scenario = LaundromatScenario(seed=42)
    first = generate_laundromat_records(customers, START, END, scenario=scenario)
    second = generate_laundromat_records(customers, START, END, scenario=scenario)
    assert first == second


def test_records_are_consistent() -> None:
    customers = generate_customers(20, START, END, seed=3)
    sales, orders = generate_laundromat_records(
        customers, START, END, scenario=LaundromatScenario(seed=5)
    )
    assert len(sales) == len(orders) > 0
    assert all(txn.amount >= 0 for txn in sales)
    assert all(START <= txn.timestamp.date() <= END for txn in sales)
    assert all(classify_order(order) is not None for order in orders)
    assert any(txn.customer_key == WALK_IN_KEY for txn in sales)


def test_machine_classes_match_scenario() -> None:
    customers = generate_customers(20, START, END, seed=3)
    _, orders = generate_laundromat_records(
        customers,
        START,
        END,
        scenario=LaundromatScenario(wash_machines=2, dry_machines=3, seed=5),
    )
    washers = {o.machine for o in orders if classify_order(o) is MachineClass.WASH}
    dryers = {o.machine for o in orders if classify_order(o) is MachineClass.DRY}
    assert washers <= {"L1", "L2"}
    assert dryers <= {"S1", "S2", "S3"}


def test_pipeline_over_synthetic_history() -> None:
    customers = generate_customers(40, START, END, seed=11)
    sales, orders = generate_laundromat_records(
        customers,
        START,
        END,
        scenario=LaundromatScenario(wash_machines=2, dry_machines=2, seed=11),
    )
    result = run_pipeline(sales, orders)

    assert 0 < len(result.profiles) <= 40
    assert result.anonymous_transactions > 0
    assert result.saturation_grid.total_cycles == len(orders)
    assert result.saturation_grid.unclassified_orders == 0
    assert max(cell.saturation_ratio for cell in result.saturation_grid.cells) > 0.6


def test_empty_inputs_are_handled() -> None:
    assert generate_customers(0, START, END) == []
    sales, orders = generate_laundromat_records(
        [], START, START, scenario=LaundromatScenario(walk_in_sales_per_day=0)
    )
    assert sales == [] and orders == []


def test_invalid_dates_rejected() -> None:
    with pytest.raises(ValueError, match="start date"):
        generate_customers(5, END, START)
    with pytest.raises(ValueError, match="start date"):
        generate_laundromat_records([], END, START)
