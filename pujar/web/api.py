# pujar/web/api.py
from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Union

from fastapi import Depends, FastAPI, HTTPException, Query
from pydantic import BaseModel

from pujar import db, pricing
from pujar.bidding import BidOutcome, DialogState
from pujar.cache import lot_key
from pujar.core import BidNotAllowed, Capability, can
from pujar.session import BiddingSession

api = FastAPI(
    title="pujar API", version="0.1.0", docs_url="/docs", openapi_url="/openapi.json"
)

_session: Optional[BiddingSession] = None


def get_session() -> BiddingSession:
    global _session
    if _session is None:
        _session = BiddingSession()
    return _session


async def close_session() -> None:
    global _session
    if _session is not None:
        await _session.close()
        _session = None


class QuoteOut(BaseModel):
    base_price: Decimal
    current_top_amount: Decimal
    minimum_next_bid: Decimal
    has_existing_bids: bool
    is_leader: bool


class LotOut(BaseModel):
    id: int
    name: str
    status: str
    closes_at: Optional[datetime] = None
    time_left: Optional[str] = None
    quote: QuoteOut
    subscribed: bool
    tokens: Optional[int] = None
    mode: Optional[str] = None
    token_notice: Optional[str] = None
    can_bid: bool


class BidIn(BaseModel):
    amount: Union[Decimal, str]


class ProblemOut(BaseModel):
    code: str
    message: str


class BidOut(BaseModel):
    ok: bool
    state: DialogState
    message: Optional[str] = None
    problems: List[ProblemOut] = []


class SnapshotOut(BaseModel):
    observed_at: datetime
    status: str
    top_amount: Decimal
    minimum_next_bid: Decimal
    winner_id: Optional[int] = None


def _to_bid_out(outcome: BidOutcome) -> BidOut:
    return BidOut(
        ok=outcome.ok,
        state=outcome.state,
        message=outcome.message,
        problems=[ProblemOut(code=p.code.value, message=p.message) for p in outcome.problems],
    )


async def _mounted_lot(session: BiddingSession, lot_id: int):
    session.mount(lot_id)
    lot = session.cache.get(lot_key(lot_id)) or await session.load(lot_id)
    if lot is None:
        raise HTTPException(404, "Lot not available")
    return lot


def lot_view(session: BiddingSession, lot_id: int) -> Optional[LotOut]:
    dlg = session.dialog(lot_id)
    lot, q = dlg.lot, dlg.quote()
    if lot is None or q is None:
        return None
    sub = dlg.subscription
    mode = dlg.mode()
    # checked at the minimum amount: only lot and token gating remain
    gating = pricing.check_bid(q, q.minimum_next_bid, lot.estado_subasta, sub)
    return LotOut(
        id=lot.id,
        name=lot.nombre_lote,
        status=lot.estado_subasta.value,
        closes_at=lot.fecha_fin,
        time_left=lot.time_left(),
        quote=QuoteOut(
            base_price=q.base_price,
            current_top_amount=q.current_top_amount,
            minimum_next_bid=q.minimum_next_bid,
            has_existing_bids=q.has_existing_bids,
            is_leader=q.is_leader,
        ),
        subscribed=sub is not None,
        tokens=sub.tokens_disponibles if sub else None,
        mode=mode.value if mode else None,
        token_notice=pricing.token_notice(mode) if mode else None,
        can_bid=not gating and can(session.viewer.role, Capability.PLACE_BID),
    )


@api.get("/lots", response_model=List[int])
async def mounted(session: BiddingSession = Depends(get_session)):
    return session.mounted()


@api.get("/lots/{lot_id}", response_model=LotOut)
async def get_lot(lot_id: int, session: BiddingSession = Depends(get_session)):
    await _mounted_lot(session, lot_id)
    view = lot_view(session, lot_id)
    if view is None:
        raise HTTPException(404, "Lot not available")
    return view


@api.post("/lots/{lot_id}/bids", response_model=BidOut, status_code=201)
async def place_bid(
    lot_id: int, payload: BidIn, session: BiddingSession = Depends(get_session)
):
    await _mounted_lot(session, lot_id)
    dlg = session.dialog(lot_id)
    # a request already in flight keeps its amount; this one joins it
    if dlg.state is not DialogState.SUBMITTING:
        if dlg.state is DialogState.CLOSED:
            dlg.open()
        dlg.set_amount(str(payload.amount))
    try:
        outcome = await dlg.submit()
    except BidNotAllowed as exc:
        raise HTTPException(403, str(exc))
    if outcome.problems:
        raise HTTPException(422, _to_bid_out(outcome).model_dump(mode="json"))
    if not outcome.ok:
        raise HTTPException(409, _to_bid_out(outcome).model_dump(mode="json"))
    return _to_bid_out(outcome)


@api.delete("/lots/{lot_id}/watch", status_code=204)
async def unwatch(lot_id: int, session: BiddingSession = Depends(get_session)):
    if not session.unmount(lot_id):
        raise HTTPException(404, "Not currently watched")


@api.get("/lots/{lot_id}/history", response_model=List[SnapshotOut])
def history(lot_id: int, limit: int = Query(100, ge=1, le=1000)):
    return [
        SnapshotOut(
            observed_at=r.observed_at,
            status=r.status,
            top_amount=r.top_amount,
            minimum_next_bid=r.minimum_next_bid,
            winner_id=r.winner_id,
        )
        for r in db.history_for(lot_id, limit=limit)
    ]
