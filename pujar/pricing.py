"""Minimum-bid arithmetic and client-side bid checks.

Everything here is a pure function of a lot snapshot; the server stays the
authority and re-checks every rule on submission.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional, Union

from pujar.core import AuctionStatus
from pujar.models import BidStatus, Lot, Subscription

ZERO = Decimal(0)

QUICK_STEPS = (Decimal(10_000), Decimal(100_000), Decimal(500_000))


@dataclass(frozen=True)
class BidQuote:
    base_price: Decimal
    current_top_amount: Decimal
    minimum_next_bid: Decimal
    has_existing_bids: bool
    is_leader: bool

    @property
    def lot_is_valid(self) -> bool:
        return self.base_price > 0


class BidProblem(str, Enum):
    INVALID_LOT = "invalid_lot"
    LOT_NOT_ACTIVE = "lot_not_active"
    INVALID_AMOUNT = "invalid_amount"
    NOT_POSITIVE = "not_positive"
    BELOW_MINIMUM = "below_minimum"
    NOT_SUBSCRIBED = "not_subscribed"
    NO_TOKENS = "no_tokens"


@dataclass(frozen=True)
class Problem:
    code: BidProblem
    message: str


class DialogMode(str, Enum):
    DEFEND = "defend"  # viewer already leads
    OUTBID = "outbid"  # viewer bid before but was overtaken
    FIRST = "first"


@dataclass(frozen=True)
class Position:
    bid_id: Optional[int]
    amount: Decimal
    is_leading: bool
    status: Optional[BidStatus]


def current_top_amount(lot: Lot) -> Decimal:
    if lot.ultima_puja is not None and lot.ultima_puja.monto > 0:
        return lot.ultima_puja.monto
    if lot.monto_ganador_lote is not None and lot.monto_ganador_lote > 0:
        return lot.monto_ganador_lote
    return ZERO


def quote(lot: Lot, viewer_id: Optional[int], increment: Decimal) -> BidQuote:
    top = current_top_amount(lot)
    has_bids = top > 0
    base = lot.precio_base if lot.precio_base is not None else ZERO
    return BidQuote(
        base_price=base,
        current_top_amount=top,
        minimum_next_bid=top + increment if has_bids else base,
        has_existing_bids=has_bids,
        is_leader=(
            has_bids
            and viewer_id is not None
            and lot.id_ganador is not None
            and lot.id_ganador == viewer_id
        ),
    )


def parse_amount(raw: Union[str, int, float, Decimal, None]) -> Optional[Decimal]:
    """Form text → Decimal, or None when it is not a usable number."""
    if raw is None:
        return None
    text = str(raw).strip()
    if not text:
        return None
    try:
        value = Decimal(text)
    except InvalidOperation:
        return None
    # the backend receives a JSON number, so it must survive float()
    if not value.is_finite() or not math.isfinite(float(value)):
        return None
    return value


def bump(raw: Union[str, Decimal, None], step: Decimal) -> Decimal:
    """Quick-raise button: add ``step`` to whatever is typed (blank counts as 0)."""
    return (parse_amount(raw) or ZERO) + step


def check_bid(
    q: BidQuote,
    amount: Optional[Decimal],
    status: AuctionStatus,
    subscription: Optional[Subscription],
) -> list[Problem]:
    """Every reason the bid would be refused; empty means it may be sent."""
    problems: list[Problem] = []

    if not q.lot_is_valid:
        problems.append(
            Problem(BidProblem.INVALID_LOT, "Lot has no base price; bidding is unavailable.")
        )
    if status is not AuctionStatus.ACTIVE:
        problems.append(
            Problem(
                BidProblem.LOT_NOT_ACTIVE,
                f"Lot is not accepting bids (auction {status.value}).",
            )
        )

    if amount is None:
        problems.append(Problem(BidProblem.INVALID_AMOUNT, "Enter a valid amount."))
    elif amount <= 0:
        problems.append(
            Problem(BidProblem.NOT_POSITIVE, "Amount must be greater than zero.")
        )
    elif amount < q.minimum_next_bid:
        problems.append(
            Problem(
                BidProblem.BELOW_MINIMUM,
                f"Bid must be at least {q.minimum_next_bid}.",
            )
        )

    # the leader raising their own bid spends no token
    if not q.is_leader:
        if subscription is None or not subscription.activo:
            problems.append(
                Problem(
                    BidProblem.NOT_SUBSCRIBED,
                    "You are not subscribed to this project. Subscribe to take part.",
                )
            )
        elif not subscription.has_tokens:
            problems.append(
                Problem(
                    BidProblem.NO_TOKENS,
                    "Your token is in use. It is released if your bid is outbid.",
                )
            )
    return problems


def viewer_position(lot: Lot, viewer_id: Optional[int]) -> Optional[Position]:
    """The viewer's highest bid among those embedded in the lot, if any."""
    if viewer_id is None:
        return None
    mine = [b for b in lot.pujas if b.id_usuario == viewer_id]
    if not mine:
        return None
    best = max(mine, key=lambda b: b.monto_puja)
    return Position(
        bid_id=best.id,
        amount=best.monto_puja,
        is_leading=lot.id_ganador == viewer_id,
        status=best.estado_puja,
    )


def dialog_mode(q: BidQuote, participating: bool) -> DialogMode:
    if q.is_leader:
        return DialogMode.DEFEND
    if participating:
        return DialogMode.OUTBID
    return DialogMode.FIRST


def token_notice(mode: DialogMode) -> str:
    if mode is DialogMode.DEFEND:
        return "Free improvement: no token consumed."
    return "This bid will consume 1 token."
