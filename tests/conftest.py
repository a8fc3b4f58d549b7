"""Shared fixtures: lot payloads, a fake backend and a fake scheduler."""

from __future__ import annotations

import os
from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock

import pytest

os.environ.setdefault("PUJAR_LOG_FILE", os.devnull)

from apscheduler.jobstores.base import JobLookupError  # noqa: E402

from pujar import db  # noqa: E402
from pujar.cache import QueryCache, lot_key, subscription_key  # noqa: E402
from pujar.core import AuctionBackend  # noqa: E402
from pujar.models import Bid, Lot, Subscription, Viewer  # noqa: E402
from pujar.settings import BiddingCfg, Settings, StorageCfg, ViewerCfg  # noqa: E402

LOT_ID = 5
PROJECT_ID = 3
VIEWER_ID = 7
RIVAL_ID = 9


def make_lot(**overrides: Any) -> Lot:
    data = {
        "id": LOT_ID,
        "nombre_lote": "Lote 5 - Manzana B",
        "precio_base": "100000.00",
        "estado_subasta": "activa",
        "id_proyecto": PROJECT_ID,
        "id_ganador": None,
        "monto_ganador_lote": None,
        "fecha_fin": "2030-01-01T12:00:00.000Z",
    }
    data.update(overrides)
    return Lot.model_validate(data)


def make_subscription(tokens: int = 1, **overrides: Any) -> Subscription:
    data = {"id": 11, "id_proyecto": PROJECT_ID, "tokens_disponibles": tokens, "activo": True}
    data.update(overrides)
    return Subscription.model_validate(data)


class FakeScheduler:
    """Just enough of AsyncIOScheduler to see what got scheduled."""

    def __init__(self):
        self.running = False
        self.jobs: dict[str, dict] = {}

    def start(self):
        self.running = True

    def shutdown(self, wait: bool = True):
        self.running = False

    def add_job(self, func, trigger, **kwargs):
        self.jobs[kwargs["id"]] = {"func": func, "trigger": trigger, **kwargs}

    def remove_job(self, job_id):
        if job_id not in self.jobs:
            raise JobLookupError(job_id)
        del self.jobs[job_id]


@pytest.fixture
def backend():
    backend = AsyncMock(spec=AuctionBackend)
    backend.fetch_lot.return_value = make_lot()
    backend.fetch_subscription.return_value = make_subscription()
    backend.create_bid.side_effect = lambda lot_id, amount: Bid(
        id=99, id_lote=lot_id, id_usuario=VIEWER_ID, monto_puja=amount
    )
    return backend


@pytest.fixture
def cache():
    return QueryCache()


@pytest.fixture
def viewer():
    return Viewer(id=VIEWER_ID)


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def seed(cache):
    """Put a lot (and optionally a subscription) in the cache."""

    def _seed(lot: Lot, subscription: Subscription | None = None):
        cache.set_from_response(lot_key(lot.id), lot)
        if subscription is not None:
            cache.set_from_response(subscription_key(PROJECT_ID, VIEWER_ID), subscription)
        return lot

    return _seed


@pytest.fixture
def settings():
    return Settings(
        viewer=ViewerCfg(id=VIEWER_ID),
        bidding=BiddingCfg(minimum_increment=Decimal("10000")),
        storage=StorageCfg(journal=False),
    )


@pytest.fixture
def memory_db():
    return db.configure("sqlite://")
