from decimal import Decimal
from typing import Callable

from fasthtml.common import *
from monsterui.all import *
from starlette.requests import Request

from pujar import db, pricing
from pujar.bidding import DialogState
from pujar.core import AuctionStatus, BidNotAllowed
from pujar.session import BiddingSession

_STATUS_LABELS = {
    AuctionStatus.ACTIVE: ("Live auction", "badge badge-success"),
    AuctionStatus.PENDING: ("Coming soon", "badge badge-warning"),
    AuctionStatus.CLOSED: ("Closed", "badge badge-error"),
}

_MODE_TITLES = {
    pricing.DialogMode.DEFEND: "Defend my place",
    pricing.DialogMode.OUTBID: "Beat the offer",
    pricing.DialogMode.FIRST: "Bid now",
}


def _money(value: Decimal) -> str:
    return f"${value:,.2f}"


def _status_badge(status: AuctionStatus):
    label, cls = _STATUS_LABELS.get(status, (status.value, "badge"))
    return Span(label, cls=cls)


def _lot_panel(session: BiddingSession, lot_id: int):
    dlg = session.dialog(lot_id)
    lot, q = dlg.lot, dlg.quote()
    if lot is None or q is None:
        return P("Lot not available yet.")
    sub = dlg.subscription
    position = pricing.viewer_position(lot, session.viewer.id)
    rows = [
        ("Status", _status_badge(lot.estado_subasta)),
        ("Base price", _money(q.base_price)),
        ("Leading bid", _money(q.current_top_amount) if q.has_existing_bids else "-"),
        ("Minimum to bid", Strong(_money(q.minimum_next_bid))),
        ("You lead", "yes" if q.is_leader else "no"),
        ("Your best bid", _money(position.amount) if position else "-"),
        ("Tokens", str(sub.tokens_disponibles) if sub else "not subscribed"),
        ("Closes in", lot.time_left() or "-"),
    ]
    return Table(
        Tbody(*[Tr(Td(label), Td(value)) for label, value in rows]),
        cls="table table-compact w-full",
    )


def _amount_field(lot_id: int, value: str):
    return Div(id="amount-field")(
        LabelInput(
            "Your amount",
            id="amount",
            name="amount",
            type="number",
            step="0.01",
            value=value,
            required=True,
        )
    )


def _bid_form(session: BiddingSession, lot_id: int):
    dlg = session.dialog(lot_id)
    if dlg.state is DialogState.CLOSED or not dlg.amount:
        dlg.open()
    mode = dlg.mode() or pricing.DialogMode.FIRST
    steps = session.settings.bidding.quick_steps
    return Card(
        H3(_MODE_TITLES[mode]),
        Form(
            hx_post=f"/lots/{lot_id}/bid",
            hx_target="#bid-result",
            hx_swap="innerHTML",
            cls="space-y-4",
        )(
            _amount_field(lot_id, dlg.amount),
            Div(cls="flex gap-2")(
                *[
                    Button(
                        f"+{int(step) // 1000}k",
                        type="button",
                        cls=ButtonT.secondary,
                        hx_post=f"/lots/{lot_id}/bump?step={step}",
                        hx_include="#amount",
                        hx_target="#amount-field",
                        hx_swap="outerHTML",
                    )
                    for step in steps
                ]
            ),
            P(pricing.token_notice(mode), cls=TextPresets.muted_sm),
            Button("Confirm bid", type="submit", cls=ButtonT.primary),
        ),
        Div(id="bid-result"),
    )


def _bid_result(outcome):
    if outcome.ok:
        return P(outcome.message, cls="text-success")
    lines = [p.message for p in outcome.problems]
    if outcome.message:
        lines.append(outcome.message)
    return Div(*[P(line, cls="text-error") for line in lines])


def _history_table(lot_id: int):
    hist = db.history_for(lot_id, limit=50)
    if not hist:
        return P("No history yet.")
    return Table(
        Thead(Tr(Td("Time (UTC)"), Td("Status"), Td("Leading bid"), Td("Winner"))),
        Tbody(*[
            Tr(
                Td(r.observed_at.isoformat(timespec="seconds")),
                Td(r.status),
                Td(_money(r.top_amount)),
                Td(r.winner_id if r.winner_id is not None else "-"),
            )
            for r in hist
        ]),
        cls="table table-compact w-full",
    )


def add_ui_routes(app, rt, get_session: Callable[[], BiddingSession]):
    @rt("/")
    async def get():
        session = get_session()
        watched = [
            Li(A(f"Lot {lot_id}", href=f"/lots/{lot_id}", cls="link"))
            for lot_id in session.mounted()
        ]
        return Titled(
            "pujar",
            Container(
                Card(
                    H3("Open a lot"),
                    Form(action="/open", method="get", cls="space-y-2")(
                        LabelInput("Lot id", id="lot_id", name="lot_id", type="number", required=True),
                        Button("Open", type="submit", cls=ButtonT.primary),
                    ),
                ),
                Card(H3("Watching"), Ul(*watched) if watched else P("Nothing yet.")),
                cls="space-y-6",
            ),
        )

    @rt("/open")
    def get(lot_id: int):
        return Redirect(f"/lots/{lot_id}")

    @rt("/lots/{lot_id}")
    async def get(lot_id: int):
        session = get_session()
        session.mount(lot_id)
        lot = session.dialog(lot_id).lot or await session.load(lot_id)
        title = lot.nombre_lote if lot and lot.nombre_lote else f"Lot {lot_id}"
        return Titled(
            title,
            Container(
                Div(cls="flex gap-6")(
                    Div(cls="basis-1/2")(
                        Card(
                            H3("Auction"),
                            Div(
                                id="lot-panel",
                                hx_get=f"/lots/{lot_id}/panel",
                                hx_trigger=f"every {session.settings.polling.interval_seconds:g}s",
                                hx_swap="innerHTML",
                            )(_lot_panel(session, lot_id)),
                        ),
                    ),
                    Div(_bid_form(session, lot_id), cls="basis-1/2"),
                ),
                Card(H3("Observed changes"), _history_table(lot_id), cls="mt-6"),
                Div(cls="mt-4")(
                    Button(
                        "Stop watching",
                        cls=ButtonT.destructive,
                        hx_post=f"/lots/{lot_id}/unwatch",
                        hx_swap="none",
                    ),
                    " ",
                    A("Back", href="/", cls="link"),
                ),
            ),
        )

    @rt("/lots/{lot_id}/panel")
    async def get(lot_id: int):
        return _lot_panel(get_session(), lot_id)

    @app.post("/lots/{lot_id}/bump")
    async def bump(request: Request):
        lot_id = int(request.path_params["lot_id"])
        form = await request.form()
        step = pricing.parse_amount(request.query_params.get("step")) or Decimal(0)
        dlg = get_session().dialog(lot_id)
        dlg.set_amount(form.get("amount") or dlg.amount)
        dlg.bump(step)
        return _amount_field(lot_id, dlg.amount)

    @app.post("/lots/{lot_id}/bid")
    async def place_bid(request: Request):
        lot_id = int(request.path_params["lot_id"])
        form = await request.form()
        session = get_session()
        dlg = session.dialog(lot_id)
        if dlg.state is not DialogState.SUBMITTING:
            if dlg.state is DialogState.CLOSED:
                dlg.open()
            dlg.set_amount((form.get("amount") or "").strip())
        try:
            outcome = await dlg.submit()
        except BidNotAllowed as exc:
            return P(str(exc), cls="text-error")
        return _bid_result(outcome)

    @app.post("/lots/{lot_id}/unwatch")
    async def unwatch(lot_id: int):
        get_session().unmount(lot_id)
        return P("Stopped.")
