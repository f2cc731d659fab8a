"""Batch store: intake, FIFO depletion and corrections."""
import threading

import pytest

from posledger.errors import InsufficientStock, InvalidAdjustment, InvalidInput, InvalidQuantity, NotFound
from posledger.models import BatchStatus, MovementType
from posledger.services import batches, ledger
from posledger.services.batches import (
    adjust_available,
    create_batch,
    deplete,
    deplete_fifo,
    get_batch,
    list_available,
    receive_batch,
)


def _batch(conn, item, qty=50.0, day="2026-03-01", cost=500.0, price=700.0):
    return create_batch(
        conn, item_id=item.id, initial_qty=qty, unit_cost=cost, unit_price=price, acquired_on=day
    )


class TestCreateBatch:

    def test_new_batch_is_available_in_full(self, conn, beef):
        b = _batch(conn, beef)
        assert b.available_qty == 50.0
        assert b.initial_qty == 50.0
        assert b.status is BatchStatus.AVAILABLE

    @pytest.mark.parametrize("qty", [0, -3, "abc", float("nan")])
    def test_rejects_non_positive_quantity(self, conn, beef, qty):
        with pytest.raises(InvalidQuantity):
            _batch(conn, beef, qty=qty)

    def test_unknown_item(self, conn):
        with pytest.raises(NotFound):
            create_batch(conn, item_id=999, initial_qty=5, unit_cost=1, unit_price=2)

    def test_batch_codes_sequence_per_day(self, conn, beef):
        a = _batch(conn, beef, day="2026-03-01")
        b = _batch(conn, beef, day="2026-03-01")
        c = _batch(conn, beef, day="2026-03-02")
        assert a.batch_code == "STK-20260301-001"
        assert b.batch_code == "STK-20260301-002"
        assert c.batch_code == "STK-20260302-001"

    def test_auto_code_skips_hand_entered_codes(self, conn, beef):
        manual = create_batch(
            conn, item_id=beef.id, initial_qty=5, unit_cost=1, unit_price=2,
            acquired_on="2026-03-01", batch_code="STK-20260301-002",
        )
        auto = _batch(conn, beef, day="2026-03-01")
        assert manual.batch_code == "STK-20260301-002"
        assert auto.batch_code == "STK-20260301-003"

    def test_duplicate_code_rejected(self, conn, beef):
        first = _batch(conn, beef, day="2026-03-01")
        with pytest.raises(InvalidInput):
            create_batch(
                conn, item_id=beef.id, initial_qty=5, unit_cost=1, unit_price=2,
                acquired_on="2026-03-02", batch_code=first.batch_code,
            )
        assert [b.id for b in batches.list_batches(conn)] == [first.id]

    @pytest.mark.parametrize("field", ["unit_cost", "unit_price"])
    def test_negative_money_rejected(self, conn, beef, field):
        kwargs = dict(item_id=beef.id, initial_qty=5, unit_cost=1, unit_price=2)
        kwargs[field] = -1
        with pytest.raises(InvalidInput):
            create_batch(conn, **kwargs)

    def test_receive_posts_purchase_movement(self, conn, beef):
        b = receive_batch(
            conn, item_id=beef.id, initial_qty=40, unit_cost=480, unit_price=650, acquired_on="2026-03-01"
        )
        entries = ledger.list_entries(conn, item_id=beef.id)
        assert len(entries) == 1
        assert entries[0].type is MovementType.PURCHASE
        assert entries[0].delta == 40
        assert entries[0].batch_id == b.id
        assert entries[0].unit_value == 480


class TestDeplete:

    def test_returns_unit_cost_consumed(self, conn, beef):
        b = _batch(conn, beef, cost=520.0)
        res = deplete(conn, b.id, 10)
        assert res.unit_cost == 520.0
        assert res.cost == 5200.0
        assert res.remaining_qty == 40.0
        assert get_batch(conn, b.id).sold_qty == 10.0

    def test_exact_depletion_marks_sold_out(self, conn, beef):
        b = _batch(conn, beef, qty=5)
        res = deplete(conn, b.id, 5)
        assert res.sold_out
        after = get_batch(conn, b.id)
        assert after.available_qty == 0
        assert after.status is BatchStatus.SOLD_OUT
        assert list_available(conn, beef.id) == []

    def test_insufficient_stock_leaves_batch_unchanged(self, conn, beef):
        b = _batch(conn, beef, qty=5)
        with pytest.raises(InsufficientStock):
            deplete(conn, b.id, 5.001)
        assert get_batch(conn, b.id) == b

    def test_unknown_batch(self, conn):
        with pytest.raises(NotFound):
            deplete(conn, 42, 1)

    def test_stale_read_is_treated_as_insufficient_stock(self, conn, beef):
        b = _batch(conn, beef, qty=10)
        # Someone else takes stock after we read the batch.
        conn.execute("UPDATE batches SET available_qty=4 WHERE id=?", (b.id,))
        with pytest.raises(InsufficientStock):
            batches._apply_depletion(conn, b, 6, counter="sold_qty")
        assert get_batch(conn, b.id).available_qty == 4

    def test_concurrent_depletions_never_oversell(self, conn, beef):
        b = _batch(conn, beef, qty=50)
        barrier = threading.Barrier(2)
        outcomes = []

        def worker():
            barrier.wait()
            try:
                deplete(conn, b.id, 30)
                outcomes.append("ok")
            except InsufficientStock:
                outcomes.append("short")

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["ok", "short"]
        assert get_batch(conn, b.id).available_qty == 20

    def test_depletions_from_two_connections_never_oversell(self, conn, other_conn, beef):
        b = _batch(conn, beef, qty=50)
        barrier = threading.Barrier(2)
        outcomes = []

        def worker(c):
            barrier.wait()
            try:
                deplete(c, b.id, 30)
                outcomes.append("ok")
            except InsufficientStock:
                outcomes.append("short")

        threads = [threading.Thread(target=worker, args=(c,)) for c in (conn, other_conn)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["ok", "short"]
        after = get_batch(other_conn, b.id)
        assert after.available_qty == 20
        assert after.sold_qty == 30


class TestFifo:

    def test_list_available_oldest_first(self, conn, beef):
        newer = _batch(conn, beef, day="2026-03-05")
        older = _batch(conn, beef, day="2026-03-01")
        assert [b.id for b in list_available(conn, beef.id)] == [older.id, newer.id]

    def test_small_request_only_touches_oldest(self, conn, beef):
        b1 = _batch(conn, beef, qty=20, day="2026-03-01")
        b2 = _batch(conn, beef, qty=20, day="2026-03-02")
        used = deplete_fifo(conn, beef.id, 15)
        assert [r.batch_id for r in used] == [b1.id]
        assert get_batch(conn, b1.id).available_qty == 5
        assert get_batch(conn, b2.id) == b2

    def test_spills_into_next_batch(self, conn, beef):
        b1 = _batch(conn, beef, qty=20, day="2026-03-01", cost=500)
        b2 = _batch(conn, beef, qty=20, day="2026-03-02", cost=600)
        used = deplete_fifo(conn, beef.id, 25)
        assert [(r.batch_id, r.quantity) for r in used] == [(b1.id, 20), (b2.id, 5)]
        assert sum(r.cost for r in used) == 20 * 500 + 5 * 600
        assert get_batch(conn, b1.id).status is BatchStatus.SOLD_OUT

    def test_all_or_nothing(self, conn, beef):
        b1 = _batch(conn, beef, qty=20, day="2026-03-01")
        b2 = _batch(conn, beef, qty=20, day="2026-03-02")
        with pytest.raises(InsufficientStock):
            deplete_fifo(conn, beef.id, 41)
        assert get_batch(conn, b1.id) == b1
        assert get_batch(conn, b2.id) == b2

    def test_posts_issue_movements_when_dated(self, conn, beef):
        _batch(conn, beef, qty=20, day="2026-03-01")
        _batch(conn, beef, qty=20, day="2026-03-02")
        deplete_fifo(conn, beef.id, 25, movement_date="2026-03-03")
        issues = ledger.list_entries(conn, item_id=beef.id, mtype=MovementType.ISSUE)
        assert [e.delta for e in issues] == [-20, -5]
        assert all(e.reason == "Sale" for e in issues)


class TestAdjustAvailable:

    def test_correction_within_bounds(self, conn, beef):
        b = _batch(conn, beef, qty=10)
        deplete(conn, b.id, 4)
        after = adjust_available(conn, b.id, 2, "Stocktake recount")
        assert after.available_qty == 8
        row = conn.execute("SELECT before_qty, after_qty FROM batch_adjustments").fetchone()
        assert (row["before_qty"], row["after_qty"]) == (6, 8)

    def test_cannot_exceed_initial_quantity(self, conn, beef):
        b = _batch(conn, beef, qty=10)
        deplete(conn, b.id, 1)
        with pytest.raises(InvalidAdjustment):
            adjust_available(conn, b.id, 2, "found more")
        assert get_batch(conn, b.id).available_qty == 9

    def test_cannot_go_negative(self, conn, beef):
        b = _batch(conn, beef, qty=10)
        with pytest.raises(InvalidAdjustment):
            adjust_available(conn, b.id, -10.5, "spoiled")

    def test_reason_required(self, conn, beef):
        b = _batch(conn, beef, qty=10)
        with pytest.raises(InvalidAdjustment):
            adjust_available(conn, b.id, -1, "  ")

    def test_down_to_zero_sells_out_and_can_come_back(self, conn, beef):
        b = _batch(conn, beef, qty=10)
        assert adjust_available(conn, b.id, -10, "write-off").status is BatchStatus.SOLD_OUT
        assert adjust_available(conn, b.id, 3, "miscounted").status is BatchStatus.AVAILABLE

    def test_optional_ledger_adjustment(self, conn, beef):
        b = receive_batch(
            conn, item_id=beef.id, initial_qty=10, unit_cost=500, unit_price=700, acquired_on="2026-03-01"
        )
        adjust_available(conn, b.id, -1.5, "trim recount", movement_date="2026-03-02")
        assert ledger.compute_balance(conn, beef.id, "2026-03-02").closing == 8.5
