"""Tests for the end-to-end batch pipeline."""

import json
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from laundromat_audit.analyses.profiles import CustomerDirectoryEntry
from laundromat_audit.foundation.config import AnalyticsConfig, ConfigurationError
from laundromat_audit.foundation.records import ServiceOrderRecord, TransactionRecord
from laundromat_audit.pipeline import (
    MissingInputError,
    PipelineResult,
    run_pipeline,
    run_pipeline_from_raw,
)

SATURDAY_10 = datetime(2024, 3, 2, 10, 0)


@pytest.fixture
def raw_transactions():
    rows = []
    for week in range(4):
        start = SATURDAY_10 + timedelta(weeks=week)
        rows.append({"customer": "ana", "timestamp": start.isoformat(), "amount": "18", "store": "CENTRO", "machine": "L2"})
        rows.append({"customer": "ana", "timestamp": (start + timedelta(minutes=45)).isoformat(), "amount": "16", "store": "CENTRO", "machine": "S1"})
    rows.append({"customer": "ana", "timestamp": "2024-03-26T07:10:00", "amount": "18", "store": "CENTRO", "machine": "L4"})
    rows.append({"customer": "Consumidor Final", "timestamp": "2024-03-30T12:00:00", "amount": "18", "store": "CENTRO"})
    rows.append({"customer": "bia", "timestamp": "2024-03-02T10:20:00", "amount": "18", "store": "CENTRO"})
    rows.append({"customer": "bia", "timestamp": "bad", "amount": "18"})
    return rows


@pytest.fixture
def raw_orders(raw_transactions):
    orders = [
        {"timestamp": row["timestamp"], "store": row["store"], "machine": row["machine"]}
        for row in raw_transactions
        if row.get("machine")
    ]
    # Washers that only show up in the machine log
    orders.append({"timestamp": "2024-03-07T20:00:00", "store": "CENTRO", "machine": "L6"})
    orders.append({"timestamp": "2024-03-07T20:10:00", "store": "CENTRO", "machine": "L8"})
    orders.append({"timestamp": None, "machine": "L2"})
    return orders


class TestRunPipeline:
    def test_full_run(self, raw_transactions, raw_orders):
        result = run_pipeline_from_raw(raw_transactions, raw_orders)

        assert isinstance(result, PipelineResult)
        assert result.as_of == datetime(2024, 3, 30, 12, 0)
        assert [p.name for p in result.profiles] == ["ANA", "BIA"]
        assert result.anonymous_transactions == 1
        assert "CONSUMIDOR FINAL" not in result.visits_by_customer

        ana = result.profiles[0]
        assert ana.visit_count == 5
        assert ana.total_spent == Decimal("154.00")

        assert result.saturation_grid.capacity == {"wash": 4, "dry": 1}
        assert result.saturation_grid.ratio((5, 10)) == pytest.approx(1.0)
        assert result.saturation_grid.cell(5, 10).slot_occurrences == 4
        assert result.saturation_grid.ratio((1, 7)) == pytest.approx(0.25)

        # Saturday 10h is saturated, Tuesday 07h is quiet
        assert [r.customer_key for r in result.flexible_customers] == ["ANA"]
        assert result.flexible_customers[0].preferred_off_peak_slot == (1, 7)
        assert result.expansion_roi.saturated_slot_count > 0
        assert result.expansion_roi.lost_cycles_per_month == Decimal("4.00")

    def test_skipped_records_are_reported(self, raw_transactions, raw_orders):
        result = run_pipeline_from_raw(raw_transactions, raw_orders)
        assert result.skipped_count == 2
        assert result.skipped_transactions[0].reason == "missing timestamp"
        assert result.as_dict()["skipped_records"]["count"] == 2

    def test_mixed_timezones_are_skipped(self):
        rows = [
            {"customer": "ana", "timestamp": "2024-03-01T10:00:00", "amount": "18"},
            {"customer": "ana", "timestamp": "2024-03-01T11:00:00Z", "amount": "18"},
        ]
        result = run_pipeline_from_raw(rows, [])
        assert result.skipped_count == 1
        assert result.skipped_transactions[0].reason == "timezone mismatch"
        assert result.as_of == datetime(2024, 3, 1, 10, 0)
        assert result.profiles[0].visit_count == 1

    def test_idempotent(self, raw_transactions, raw_orders):
        first = run_pipeline_from_raw(raw_transactions, raw_orders).as_dict()
        second = run_pipeline_from_raw(raw_transactions, raw_orders).as_dict()
        assert json.dumps(first, sort_keys=True) == json.dumps(second, sort_keys=True)

    def test_parallel_matches_sequential(self, raw_transactions, raw_orders):
        sequential = run_pipeline_from_raw(raw_transactions, raw_orders).as_dict()
        parallel = run_pipeline_from_raw(raw_transactions, raw_orders, parallel=True).as_dict()
        assert parallel == sequential

    def test_empty_input(self):
        result = run_pipeline([], [])
        assert result.as_of is None
        assert result.profiles == []
        assert result.flexible_customers == []
        assert len(result.saturation_grid.cells) == 168
        assert result.expansion_roi.estimated_payback_months is None
        assert result.summary.total_customers == 0

    def test_missing_input_raises(self):
        with pytest.raises(MissingInputError, match="Transaction"):
            run_pipeline(None, [])
        with pytest.raises(MissingInputError, match="Service order"):
            run_pipeline_from_raw([], None)

    def test_invalid_config_type(self):
        with pytest.raises(ConfigurationError):
            run_pipeline([], [], config={"visit_gap_minutes": 10})

    def test_custom_anonymous_keys(self):
        txns = [TransactionRecord("BALCAO", datetime(2024, 3, 1), Decimal("10"))]
        config = AnalyticsConfig(anonymous_customer_keys=("BALCAO",))
        result = run_pipeline(txns, [], config=config)
        assert result.profiles == []
        assert result.anonymous_transactions == 1
        assert result.as_of == datetime(2024, 3, 1)

    def test_customer_directory_is_threaded_through(self):
        txns = [TransactionRecord("ANA", datetime(2024, 3, 1), Decimal("10"))]
        directory = {"ANA": CustomerDirectoryEntry("ANA", gender="F")}
        result = run_pipeline(txns, [], customer_directory=directory)
        assert result.profiles[0].gender == "F"
        assert result.summary.gender_counts == {"F": 1}


class TestPipelineResultAsDict:
    def test_json_serialisable(self, raw_transactions, raw_orders):
        payload = run_pipeline_from_raw(raw_transactions, raw_orders).as_dict()
        text = json.dumps(payload)
        assert "methodology_note" in text

        assert len(payload["saturation_grid"]["cells"]) == 168
        assert payload["profiles"][0]["total_spent"] == "154.00"
        assert payload["profiles"][0]["churn_risk"] in {"low", "medium", "high"}
        assert payload["flexible_customers"][0]["preferred_peak_slot"] == [5, 10]
        assert "Sat 10h" in payload["saturation_grid"]["peak_slots"]

        ana = payload["profiles"][0]
        assert ana["total_washes"] == 5
        assert ana["total_dries"] == 4
        assert ana["cycle_mix"] == "wash_and_dry"
        assert ana["top_day"] == 5
        assert ana["top_shift"] == "morning"
        assert ana["top_slots"][0] == {"weekday": 5, "shift": "morning", "count": 8}
        assert ana["last_visits"][0]["start_time"] == "2024-03-26T07:10:00"
        assert payload["summary"]["cycle_mix_counts"]["wash_and_dry"] == 1
        assert payload["summary"]["churn_rate"] == "0.00"

    def test_orders_without_transactions(self):
        orders = [ServiceOrderRecord(datetime(2024, 3, 4, 10), "CENTRO", "L2")]
        payload = run_pipeline([], orders).as_dict()
        assert payload["as_of"] is None
        assert payload["saturation_grid"]["total_cycles"] == 1
