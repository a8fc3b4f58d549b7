import asyncio, itertools, logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from pujar.cache import INVALIDATED, QueryCache, lot_key, subscription_key
from pujar.core import AuctionBackend, PujarError
from pujar.models import Lot
from pujar.pricing import current_top_amount
from pujar.settings import PollingCfg

log = logging.getLogger("pujar")

SnapshotListener = Callable[[Lot], None]

_job_ids = itertools.count(1)


def make_scheduler() -> AsyncIOScheduler:
    return AsyncIOScheduler(timezone="UTC")


class JobState:
    def __init__(self):
        self.last_top: Optional[Decimal] = None
        self.last_status: Optional[str] = None
        self.polls = 0
        self.failures = 0


class AuctionSynchronizer:
    """Keeps one lot's cache entry fresh while its view is mounted.

    ``start`` mounts: an interval job polls the lot (first run immediately)
    and any invalidation of the lot entry triggers a refetch right away.
    ``stop`` unmounts: the job goes, and polls still in flight are ignored
    when they resolve.
    """

    def __init__(
        self,
        lot_id: int,
        backend: AuctionBackend,
        cache: QueryCache,
        scheduler: AsyncIOScheduler,
        *,
        viewer_id: Optional[int] = None,
        polling: Optional[PollingCfg] = None,
    ):
        self.lot_id = lot_id
        self.backend = backend
        self.cache = cache
        self.scheduler = scheduler
        self.viewer_id = viewer_id
        self.polling = polling or PollingCfg()
        self.state = JobState()
        self.job_id = f"lot-{lot_id}-{next(_job_ids)}"
        self._listeners: list[SnapshotListener] = []
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._running = False
        self._stopped = False
        self._pending: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._running

    def add_listener(self, listener: SnapshotListener) -> None:
        self._listeners.append(listener)

    # ---- mount / unmount ---------------------------------------------
    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._stopped = False
        self._unsubscribe = self.cache.subscribe(lot_key(self.lot_id), self._on_cache_event)
        self.scheduler.add_job(
            self.poll_once,
            "interval",
            seconds=self.polling.interval_seconds,
            next_run_time=datetime.now(timezone.utc),
            id=self.job_id,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=int(self.polling.interval_seconds) or 1,
        )
        log.info("Watching lot %s every %ss", self.lot_id, self.polling.interval_seconds)

    def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        self._stopped = True
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
        try:
            self.scheduler.remove_job(self.job_id)
        except JobLookupError:
            pass
        log.info("Stopped watching lot %s", self.lot_id)

    # ---- polling -----------------------------------------------------
    async def poll_once(self) -> Optional[Lot]:
        self.state.polls += 1
        try:
            lot = await self.cache.fetch(
                lot_key(self.lot_id), lambda: self.backend.fetch_lot(self.lot_id)
            )
        except PujarError as exc:
            # keep showing the last good snapshot; next tick tries again
            self.state.failures += 1
            log.warning("lot %s poll failed: %s", self.lot_id, exc)
            return None

        if self._stopped:
            log.debug("lot %s unmounted, dropping poll result", self.lot_id)
            return None

        await self._refresh_subscription(lot)
        self._track(lot)
        for listener in list(self._listeners):
            try:
                listener(lot)
            except Exception:
                log.exception("snapshot listener failed for lot %s", self.lot_id)
        return lot

    async def _refresh_subscription(self, lot: Lot) -> None:
        if lot.id_proyecto is None or self.viewer_id is None:
            return
        key = subscription_key(lot.id_proyecto, self.viewer_id)
        if not self.cache.is_stale(key, self.polling.subscription_max_age_seconds):
            return
        try:
            await self.cache.fetch(
                key, lambda: self.backend.fetch_subscription(lot.id_proyecto)
            )
        except PujarError as exc:
            log.warning("token status for project %s failed: %s", lot.id_proyecto, exc)

    def _track(self, lot: Lot) -> None:
        top = current_top_amount(lot)
        status = lot.estado_subasta.value
        if top != self.state.last_top or status != self.state.last_status:
            log.info(
                "%s [%s] → $%s",
                lot.nombre_lote or f"lot {lot.id}",
                status,
                f"{top:,.2f}",
            )
            self.state.last_top = top
            self.state.last_status = status

    def _on_cache_event(self, event: str, key) -> None:
        if event != INVALIDATED or not self._running:
            return
        task = asyncio.ensure_future(self.poll_once())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
