import threading

import pytest
from starlette.testclient import TestClient

from pujar.session import BiddingSession
from pujar.web import api as api_module
from pujar.web.app import app

from conftest import LOT_ID, RIVAL_ID, make_lot


@pytest.fixture
def session(monkeypatch, settings, backend, cache, scheduler):
    s = BiddingSession(settings, backend=backend, cache=cache, scheduler=scheduler)
    monkeypatch.setattr(api_module, "_session", s)
    return s


@pytest.fixture
def client(session, memory_db):
    with TestClient(app) as c:
        yield c


def test_lot_page_polls_its_panel(client, backend):
    backend.fetch_lot.return_value = make_lot(
        ultima_puja={"monto": "250000", "id_usuario": RIVAL_ID}, id_ganador=RIVAL_ID
    )
    r = client.get(f"/lots/{LOT_ID}")
    assert r.status_code == 200
    assert "every 3s" in r.text
    assert "$260,000.00" in r.text
    assert 'value="260000"' in r.text
    assert "+10k" in r.text


def test_bid_form_round_trip(client, backend):
    client.get(f"/lots/{LOT_ID}")

    r = client.post(f"/lots/{LOT_ID}/bump?step=10000", data={"amount": "100000"})
    assert 'value="110000"' in r.text

    r = client.post(f"/lots/{LOT_ID}/bid", data={"amount": "90000"})
    assert "Bid must be at least" in r.text
    backend.create_bid.assert_not_awaited()

    r = client.post(f"/lots/{LOT_ID}/bid", data={"amount": "100000"})
    assert "Participation confirmed!" in r.text


def test_api_is_mounted(client):
    r = client.get(f"/api/lots/{LOT_ID}")
    assert r.status_code == 200
    assert r.json()["id"] == LOT_ID


def test_unwatch(client, session):
    client.get(f"/lots/{LOT_ID}")
    client.post(f"/lots/{LOT_ID}/unwatch")
    assert session.mounted() == []


def test_session_handlers_run_on_the_event_loop(client, session, backend, monkeypatch):
    threads = {}

    async def fetch(lot_id):
        threads["loop"] = threading.get_ident()
        return make_lot()

    real_dialog, real_unmount = session.dialog, session.unmount

    def dialog(lot_id):
        threads["dialog"] = threading.get_ident()
        return real_dialog(lot_id)

    def unmount(lot_id):
        threads["unmount"] = threading.get_ident()
        return real_unmount(lot_id)

    backend.fetch_lot.side_effect = fetch
    monkeypatch.setattr(session, "dialog", dialog)
    monkeypatch.setattr(session, "unmount", unmount)

    client.get(f"/lots/{LOT_ID}")
    threads.pop("dialog")
    client.get(f"/lots/{LOT_ID}/panel")
    client.post(f"/lots/{LOT_ID}/unwatch")
    assert threads["dialog"] == threads["loop"]
    assert threads["unmount"] == threads["loop"]
