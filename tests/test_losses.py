"""Loss recorder: batch decrement and Loss movement move together."""
import pytest

from posledger.errors import InsufficientStock, InvalidInput, InvalidQuantity, NotFound
from posledger.models import LossCategory, MovementType
from posledger.services import ledger
from posledger.services.batches import get_batch, receive_batch
from posledger.services.losses import category_totals, list_losses, record_loss


@pytest.fixture
def batch(conn, beef):
    return receive_batch(
        conn, item_id=beef.id, initial_qty=50.0, unit_cost=500, unit_price=700, acquired_on="2026-03-01"
    )


def _snapshot(conn):
    return {
        t: [tuple(r) for r in conn.execute(f"SELECT * FROM {t} ORDER BY id").fetchall()]
        for t in ("batches", "movements", "loss_records")
    }


def test_batch_depletion_scenario(conn, batch):
    rec = record_loss(conn, batch.id, 2.5, "Drying", recorded_by="clerk", loss_date="2026-03-02")

    after = get_batch(conn, batch.id)
    assert after.available_qty == 47.5
    assert after.loss_qty == 2.5
    assert rec.category is LossCategory.DRYING

    losses = ledger.list_entries(conn, item_id=batch.item_id, mtype=MovementType.LOSS)
    assert len(losses) == 1
    assert losses[0].delta == -2.5
    assert losses[0].batch_id == batch.id
    assert losses[0].id == rec.movement_id

    before = _snapshot(conn)
    with pytest.raises(InsufficientStock):
        record_loss(conn, batch.id, 100, "Spoilage", recorded_by="clerk")
    assert get_batch(conn, batch.id).available_qty == 47.5
    assert _snapshot(conn) == before


@pytest.mark.parametrize("qty", [0, -1, "x"])
def test_invalid_quantity_changes_nothing(conn, batch, qty):
    before = _snapshot(conn)
    with pytest.raises(InvalidQuantity):
        record_loss(conn, batch.id, qty, "Bone", recorded_by="clerk")
    assert _snapshot(conn) == before


def test_unknown_category(conn, batch):
    before = _snapshot(conn)
    with pytest.raises(InvalidInput):
        record_loss(conn, batch.id, 1, "Theft", recorded_by="clerk")
    assert _snapshot(conn) == before


def test_recorder_is_required(conn, batch):
    with pytest.raises(InvalidInput):
        record_loss(conn, batch.id, 1, "Bone", recorded_by="   ")
    assert get_batch(conn, batch.id).available_qty == 50


def test_category_is_case_insensitive(conn, batch):
    rec = record_loss(conn, batch.id, 1, "trim", recorded_by="clerk")
    assert rec.category is LossCategory.TRIM


def test_unknown_batch(conn):
    with pytest.raises(NotFound):
        record_loss(conn, 404, 1, "Other", recorded_by="clerk")


def test_ledger_failure_rolls_back_batch(conn, batch, monkeypatch):
    before = _snapshot(conn)

    def boom(*args, **kwargs):
        raise RuntimeError("ledger unavailable")

    monkeypatch.setattr(ledger, "append", boom)
    with pytest.raises(RuntimeError):
        record_loss(conn, batch.id, 3, "Spoilage", recorded_by="clerk")
    assert _snapshot(conn) == before
    assert not conn.in_transaction


def test_category_totals(conn, batch):
    record_loss(conn, batch.id, 1.0, "Drying", recorded_by="a", loss_date="2026-03-02")
    record_loss(conn, batch.id, 0.5, "Drying", recorded_by="a", loss_date="2026-03-03")
    record_loss(conn, batch.id, 2.0, "Bone", recorded_by="b", loss_date="2026-03-03")
    record_loss(conn, batch.id, 4.0, "Spoilage", recorded_by="b", loss_date="2026-03-10")

    totals = category_totals(conn, "2026-03-01", "2026-03-05")
    assert totals[LossCategory.DRYING] == 1.5
    assert totals[LossCategory.BONE] == 2.0
    assert totals[LossCategory.SPOILAGE] == 0.0
    assert set(totals) == set(LossCategory)


def test_list_losses_newest_first(conn, batch):
    first = record_loss(conn, batch.id, 1, "Drying", recorded_by="a")
    second = record_loss(conn, batch.id, 1, "Trim", recorded_by="a", reason="fat trim")
    assert [r.id for r in list_losses(conn, batch_id=batch.id)] == [second.id, first.id]
    assert list_losses(conn)[0].reason == "fat trim"
