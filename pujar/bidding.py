from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional

from pujar import pricing
from pujar.cache import (
    QueryCache,
    active_bids_key,
    favorites_key,
    lot_key,
    my_bids_key,
    project_lots_key,
    subscription_key,
)
from pujar.core import ApiError, AuctionBackend, BidNotAllowed, Capability, PujarError, can
from pujar.models import Bid, Lot, Subscription, Viewer
from pujar.pricing import BidProblem, BidQuote, DialogMode, Problem
from pujar.settings import BiddingCfg

log = logging.getLogger("pujar.bidding")

UNEXPECTED_MESSAGE = "The bid could not be sent. Try again."


class DialogState(str, Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    CLOSED = "closed"
    ERROR = "error"  # still open, amount kept for correction


@dataclass
class BidOutcome:
    ok: bool
    state: DialogState
    message: Optional[str] = None
    problems: list[Problem] = field(default_factory=list)
    bid: Optional[Bid] = None
    sent: bool = False


class BidDialog:
    """One open bid dialog for one lot.

    Reads the lot and token status from the shared cache, never writes
    amounts into it, and allows a single request in flight at a time.
    """

    def __init__(
        self,
        lot_id: int,
        viewer: Viewer,
        backend: AuctionBackend,
        cache: QueryCache,
        bidding: Optional[BiddingCfg] = None,
    ):
        self.lot_id = lot_id
        self.viewer = viewer
        self.backend = backend
        self.cache = cache
        self.bidding = bidding or BiddingCfg()
        self.amount = ""
        self.state = DialogState.IDLE
        self.error: Optional[str] = None
        self.notice: Optional[str] = None
        self._inflight: Optional[asyncio.Task] = None

    # ---- snapshot views ----------------------------------------------
    @property
    def lot(self) -> Optional[Lot]:
        return self.cache.get(lot_key(self.lot_id))

    @property
    def subscription(self) -> Optional[Subscription]:
        lot = self.lot
        if lot is None or lot.id_proyecto is None:
            return None
        return self.cache.get(subscription_key(lot.id_proyecto, self.viewer.id))

    def quote(self) -> Optional[BidQuote]:
        lot = self.lot
        if lot is None:
            return None
        return pricing.quote(lot, self.viewer.id, self.bidding.minimum_increment)

    def mode(self) -> Optional[DialogMode]:
        lot, q = self.lot, self.quote()
        if lot is None or q is None:
            return None
        participating = pricing.viewer_position(lot, self.viewer.id) is not None
        return pricing.dialog_mode(q, participating)

    # ---- form --------------------------------------------------------
    def open(self) -> None:
        """Reset the form, pre-filled with the minimum acceptable bid."""
        q = self.quote()
        self.amount = str(q.minimum_next_bid) if q else ""
        self.state = DialogState.IDLE
        self.error = None
        self.notice = None

    def set_amount(self, text: str) -> None:
        self.amount = text
        self.error = None

    def bump(self, step: Decimal) -> None:
        self.set_amount(str(pricing.bump(self.amount, step)))

    def problems(self) -> list[Problem]:
        lot, q = self.lot, self.quote()
        if lot is None or q is None:
            return [Problem(BidProblem.INVALID_LOT, "Lot details are not loaded yet.")]
        return pricing.check_bid(
            q, pricing.parse_amount(self.amount), lot.estado_subasta, self.subscription
        )

    @property
    def can_submit(self) -> bool:
        return (
            self.state in (DialogState.IDLE, DialogState.ERROR)
            and can(self.viewer.role, Capability.PLACE_BID)
            and not self.problems()
        )

    # ---- submission --------------------------------------------------
    async def submit(self) -> BidOutcome:
        if not can(self.viewer.role, Capability.PLACE_BID):
            raise BidNotAllowed(f"role {self.viewer.role.value!r} cannot place bids")
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._submit())
            # cleared by the task itself, callers may be cancelled
            self._inflight.add_done_callback(self._clear_inflight)
        # a second click while pending shares the first request
        return await asyncio.shield(self._inflight)

    def _clear_inflight(self, task: asyncio.Future) -> None:
        if self._inflight is task:
            self._inflight = None

    async def _submit(self) -> BidOutcome:
        if self.state is DialogState.CLOSED:
            return BidOutcome(False, self.state, message="Dialog is closed.")

        problems = self.problems()
        if problems:
            return BidOutcome(False, self.state, problems=problems)

        amount = pricing.parse_amount(self.amount)
        mode = self.mode()
        lot = self.lot
        self.state = DialogState.SUBMITTING
        try:
            bid = await self.backend.create_bid(self.lot_id, amount)
        except PujarError as exc:
            message = exc.message if isinstance(exc, ApiError) else str(exc)
            log.info("bid %s on lot %s rejected: %s", amount, self.lot_id, message)
            return self._fail(message)
        except asyncio.CancelledError:
            self.state = DialogState.ERROR
            raise
        except Exception:
            log.exception("bid %s on lot %s failed", amount, self.lot_id)
            return self._fail(UNEXPECTED_MESSAGE)

        log.info("bid %s on lot %s accepted", amount, self.lot_id)
        self.state = DialogState.CLOSED
        self.amount = ""
        self.error = None
        self.notice = (
            "Participation confirmed!"
            if mode is DialogMode.FIRST
            else "Offer improved!"
        )
        self._invalidate_after_bid(lot)
        return BidOutcome(True, self.state, message=self.notice, bid=bid, sent=True)

    def _fail(self, message: str) -> BidOutcome:
        self.state = DialogState.ERROR
        self.error = message
        return BidOutcome(False, self.state, message=message, sent=True)

    def _invalidate_after_bid(self, lot: Lot) -> None:
        keys = [lot_key(self.lot_id), my_bids_key(), active_bids_key(), favorites_key()]
        if lot.id_proyecto is not None:
            keys.append(project_lots_key(lot.id_proyecto))
            keys.append(subscription_key(lot.id_proyecto, self.viewer.id))
        self.cache.invalidate(*keys)
