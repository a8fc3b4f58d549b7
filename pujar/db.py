# pujar/db.py
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import Engine
from sqlmodel import SQLModel, Field, create_engine, Session, select

from pujar.models import Lot
from pujar.pricing import BidQuote


class LotSnapshot(SQLModel, table=True):
    __tablename__ = "lot_snapshot"
    id: Optional[int] = Field(default=None, primary_key=True)
    lot_id: int = Field(index=True)
    lot_name: str = ""
    observed_at: datetime = Field(index=True, description="Poll time (UTC)")
    status: str
    top_amount: Decimal = Field(default=Decimal(0), max_digits=18, decimal_places=2)
    minimum_next_bid: Decimal = Field(
        default=Decimal(0), max_digits=18, decimal_places=2
    )
    winner_id: Optional[int] = None


_engine: Optional[Engine] = None


def configure(db_url: str) -> Engine:
    """Point the journal at ``db_url`` and create the table if needed."""
    global _engine
    kwargs = {}
    if db_url in ("sqlite://", "sqlite:///:memory:"):
        from sqlalchemy.pool import StaticPool

        # one shared connection, otherwise every session sees an empty db
        kwargs = {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
    _engine = create_engine(db_url, echo=False, **kwargs)
    SQLModel.metadata.create_all(_engine)
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        from pujar.settings import load_settings

        return configure(load_settings().storage.db_url)
    return _engine


def latest_for(lot_id: int) -> Optional[LotSnapshot]:
    with Session(get_engine()) as s:
        stmt = (
            select(LotSnapshot)
            .where(LotSnapshot.lot_id == lot_id)
            .order_by(LotSnapshot.observed_at.desc(), LotSnapshot.id.desc())
            .limit(1)
        )
        return s.exec(stmt).first()


def history_for(lot_id: int, limit: int = 100) -> list[LotSnapshot]:
    with Session(get_engine()) as s:
        stmt = (
            select(LotSnapshot)
            .where(LotSnapshot.lot_id == lot_id)
            .order_by(LotSnapshot.observed_at.desc(), LotSnapshot.id.desc())
            .limit(limit)
        )
        return list(s.exec(stmt).all())


def record_if_changed(
    lot: Lot, quote: BidQuote, observed_at: Optional[datetime] = None
) -> Optional[LotSnapshot]:
    """Store a row when status, top amount or winner moved since the last one."""
    last = latest_for(lot.id)
    if (
        last is not None
        and last.status == lot.estado_subasta.value
        and last.top_amount == quote.current_top_amount
        and last.winner_id == lot.id_ganador
    ):
        return None

    row = LotSnapshot(
        lot_id=lot.id,
        lot_name=lot.nombre_lote,
        observed_at=observed_at or datetime.now(timezone.utc),
        status=lot.estado_subasta.value,
        top_amount=quote.current_top_amount,
        minimum_next_bid=quote.minimum_next_bid,
        winner_id=lot.id_ganador,
    )
    with Session(get_engine()) as s:
        s.add(row)
        s.commit()
        s.refresh(row)
        return row
