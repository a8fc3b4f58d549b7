from datetime import datetime, timedelta, timezone
from decimal import Decimal

from pujar import db, pricing

from conftest import LOT_ID, RIVAL_ID, VIEWER_ID, make_lot

T0 = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


def record(lot, at):
    return db.record_if_changed(lot, pricing.quote(lot, VIEWER_ID, Decimal("0.01")), observed_at=at)


class TestJournal:
    def test_first_snapshot_is_stored(self, memory_db):
        row = record(make_lot(), T0)
        assert row.id is not None
        assert row.status == "activa"
        assert row.top_amount == 0
        assert row.minimum_next_bid == Decimal("100000")

    def test_unchanged_snapshot_is_skipped(self, memory_db):
        record(make_lot(), T0)
        assert record(make_lot(), T0 + timedelta(seconds=3)) is None
        assert len(db.history_for(LOT_ID)) == 1

    def test_changes_are_stored_newest_first(self, memory_db):
        record(make_lot(), T0)
        record(
            make_lot(ultima_puja={"monto": "120000"}, id_ganador=RIVAL_ID),
            T0 + timedelta(seconds=3),
        )
        record(
            make_lot(
                estado_subasta="finalizada", ultima_puja={"monto": "120000"}, id_ganador=RIVAL_ID
            ),
            T0 + timedelta(seconds=6),
        )

        rows = db.history_for(LOT_ID)
        assert [r.status for r in rows] == ["finalizada", "activa", "activa"]
        assert rows[0].winner_id == RIVAL_ID
        assert rows[1].top_amount == Decimal("120000")
        assert db.latest_for(LOT_ID).status == "finalizada"
        assert len(db.history_for(LOT_ID, limit=2)) == 2

    def test_other_lots_are_separate(self, memory_db):
        record(make_lot(), T0)
        assert db.history_for(LOT_ID + 1) == []
        assert db.latest_for(LOT_ID + 1) is None
