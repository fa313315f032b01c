"""Tests for visit reconstruction."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from laundromat_audit.foundation.records import TransactionRecord
from laundromat_audit.foundation.visits import (
    Visit,
    group_by_customer,
    reconstruct_all_visits,
    reconstruct_visits,
)


def _txn(hour: int, minute: int = 0, amount: str = "18", key: str = "ANA", second: int = 0):
    return TransactionRecord(
        customer_key=key,
        timestamp=datetime(2024, 3, 1, hour, minute, second),
        amount=Decimal(amount),
    )


class TestReconstructVisits:
    def test_window_anchored_at_visit_start(self):
        """13:01 is 181 minutes after the 10:00 start, so it opens a new visit."""
        visits = reconstruct_visits([_txn(10), _txn(10, 30), _txn(12, 59), _txn(13, 1)])

        assert len(visits) == 2
        first, second = visits
        assert first.member_count == 3
        assert first.start_time == datetime(2024, 3, 1, 10, 0)
        assert first.end_time == datetime(2024, 3, 1, 12, 59)
        assert first.total_value == Decimal("54")
        assert second.member_count == 1
        assert second.total_value == Decimal("18")

    def test_session_cannot_chain_past_window(self):
        visits = reconstruct_visits([_txn(h) for h in range(10, 17)])
        assert [v.member_count for v in visits] == [4, 3]

    def test_four_hour_gap_opens_new_visit(self):
        visits = reconstruct_visits([_txn(10), _txn(14)])
        assert [v.member_count for v in visits] == [1, 1]

    def test_exact_window_merges(self):
        visits = reconstruct_visits([_txn(10), _txn(13)])
        assert len(visits) == 1

    def test_one_second_past_window_splits(self):
        visits = reconstruct_visits([_txn(10), _txn(13, second=1)])
        assert len(visits) == 2

    def test_custom_gap(self):
        visits = reconstruct_visits([_txn(10), _txn(10, 45)], gap_minutes=30)
        assert len(visits) == 2

    def test_unsorted_input_is_sorted(self):
        visits = reconstruct_visits([_txn(14), _txn(10), _txn(10, 20)])
        assert [v.start_time.hour for v in visits] == [10, 14]
        assert visits[0].members[1].timestamp == datetime(2024, 3, 1, 10, 20)

    def test_every_transaction_in_exactly_one_visit(self):
        txns = [_txn(h, m) for h in (8, 9, 13, 18, 22) for m in (0, 15)]
        visits = reconstruct_visits(txns)
        members = [m for v in visits for m in v.members]
        assert len(members) == len(txns)
        assert sorted(members, key=lambda t: t.timestamp) == sorted(
            txns, key=lambda t: t.timestamp
        )
        assert sum(v.total_value for v in visits) == sum(t.amount for t in txns)

    def test_decimal_totals_are_exact(self):
        visits = reconstruct_visits([_txn(10, amount="0.10"), _txn(10, 5, amount="0.20")])
        assert visits[0].total_value == Decimal("0.30")

    def test_empty_input(self):
        assert reconstruct_visits([]) == []

    def test_multiple_customers_rejected(self):
        with pytest.raises(ValueError, match="single customer"):
            reconstruct_visits([_txn(10), _txn(11, key="BIA")])

    def test_slot_uses_visit_start(self):
        visit = reconstruct_visits([_txn(10, 50), _txn(11, 10)])[0]
        # 2024-03-01 is a Friday
        assert visit.slot == (4, 10)


class TestVisitValidation:
    def test_stores_are_distinct_and_sorted(self):
        members = (
            TransactionRecord("ANA", datetime(2024, 3, 1, 10), Decimal("1"), store="SUL"),
            TransactionRecord("ANA", datetime(2024, 3, 1, 11), Decimal("1"), store="CENTRO"),
            TransactionRecord("ANA", datetime(2024, 3, 1, 12), Decimal("1"), store="SUL"),
        )
        visit = Visit("ANA", members[0].timestamp, members[-1].timestamp, Decimal("3"), members)
        assert visit.stores == ("CENTRO", "SUL")

    def test_visit_requires_members(self):
        with pytest.raises(ValueError, match="must have members"):
            Visit("ANA", datetime(2024, 3, 1), datetime(2024, 3, 1), Decimal("0"), ())

    def test_total_must_match_members(self):
        txn = _txn(10)
        with pytest.raises(ValueError, match="total_value"):
            Visit("ANA", txn.timestamp, txn.timestamp, Decimal("1"), (txn,))

    def test_end_time_must_match_last_member(self):
        txn = _txn(10)
        with pytest.raises(ValueError, match="end_time"):
            Visit(
                "ANA",
                txn.timestamp,
                txn.timestamp + timedelta(minutes=1),
                txn.amount,
                (txn,),
            )


class TestReconstructAllVisits:
    @pytest.fixture
    def mixed_transactions(self):
        return [
            _txn(10, key="BIA"),
            _txn(10, key="ANA"),
            _txn(15, key="ANA"),
            _txn(10, 30, key="BIA"),
            _txn(9, key="CAIO"),
        ]

    def test_group_by_customer_sorted(self, mixed_transactions):
        grouped = group_by_customer(mixed_transactions)
        assert list(grouped) == ["ANA", "BIA", "CAIO"]
        assert len(grouped["ANA"]) == 2

    def test_sequential(self, mixed_transactions):
        visits = reconstruct_all_visits(mixed_transactions, parallel=False)
        assert {k: len(v) for k, v in visits.items()} == {"ANA": 2, "BIA": 1, "CAIO": 1}

    def test_parallel_matches_sequential(self, mixed_transactions):
        sequential = reconstruct_all_visits(mixed_transactions, parallel=False)
        parallel = reconstruct_all_visits(
            mixed_transactions, parallel=True, parallel_threshold=1, n_workers=2
        )
        assert parallel == sequential
        assert list(parallel) == list(sequential)

    def test_empty(self):
        assert reconstruct_all_visits([]) == {}
