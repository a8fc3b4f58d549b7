from __future__ import annotations

import logging
from typing import Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from pujar import db, pricing
from pujar.bidding import BidDialog
from pujar.cache import QueryCache, lot_key
from pujar.core import AuctionBackend
from pujar.fetchers.rest import RestBackend
from pujar.models import Lot, Viewer
from pujar.scheduler import AuctionSynchronizer, make_scheduler
from pujar.settings import Settings, load_settings

log = logging.getLogger("pujar.session")


class BiddingSession:
    """Everything one viewer needs: backend, cache, polling and dialogs.

    Lots are "mounted" while something displays them; mounting is
    idempotent and unmounting stops the lot's polling job.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        backend: Optional[AuctionBackend] = None,
        cache: Optional[QueryCache] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.settings = settings or load_settings()
        self.backend = backend or RestBackend.from_settings(self.settings)
        self.cache = cache or QueryCache()
        self.scheduler = scheduler or make_scheduler()
        self.viewer = Viewer(id=self.settings.viewer.id, role=self.settings.viewer.role)
        self._syncs: Dict[int, AuctionSynchronizer] = {}
        self._dialogs: Dict[int, BidDialog] = {}

    def _ensure_scheduler(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()
            log.info("APScheduler started")

    def _synchronizer(self, lot_id: int) -> AuctionSynchronizer:
        sync = AuctionSynchronizer(
            lot_id,
            self.backend,
            self.cache,
            self.scheduler,
            viewer_id=self.viewer.id,
            polling=self.settings.polling,
        )
        if self.settings.storage.journal:
            sync.add_listener(self._journal)
        return sync

    # ---- mount / unmount ---------------------------------------------
    def mount(self, lot_id: int) -> AuctionSynchronizer:
        sync = self._syncs.get(lot_id)
        if sync is None:
            self._ensure_scheduler()
            sync = self._syncs[lot_id] = self._synchronizer(lot_id)
            sync.start()
        return sync

    def unmount(self, lot_id: int) -> bool:
        sync = self._syncs.pop(lot_id, None)
        self._dialogs.pop(lot_id, None)
        if sync is None:
            return False
        sync.stop()
        return True

    def mounted(self) -> list[int]:
        return sorted(self._syncs)

    # ---- one-shot loads ----------------------------------------------
    async def load(self, lot_id: int) -> Optional[Lot]:
        """Fetch the lot and token status once, without scheduling."""
        sync = self._syncs.get(lot_id) or self._synchronizer(lot_id)
        lot = await sync.poll_once()
        return lot if lot is not None else self.cache.get(lot_key(lot_id))

    def dialog(self, lot_id: int) -> BidDialog:
        dlg = self._dialogs.get(lot_id)
        if dlg is None:
            dlg = self._dialogs[lot_id] = BidDialog(
                lot_id, self.viewer, self.backend, self.cache, self.settings.bidding
            )
        return dlg

    def quote(self, lot_id: int) -> Optional[pricing.BidQuote]:
        lot = self.cache.get(lot_key(lot_id))
        if lot is None:
            return None
        return pricing.quote(lot, self.viewer.id, self.settings.bidding.minimum_increment)

    def _journal(self, lot: Lot) -> None:
        q = pricing.quote(lot, self.viewer.id, self.settings.bidding.minimum_increment)
        db.record_if_changed(lot, q)

    async def close(self) -> None:
        for lot_id in list(self._syncs):
            self.unmount(lot_id)
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        await self.backend.close()
