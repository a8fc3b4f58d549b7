import asyncio
import logging
from decimal import Decimal
from logging.handlers import RotatingFileHandler
from typing import Annotated
import os
import typer

from pujar import db, pricing
from pujar.bidding import BidOutcome
from pujar.session import BiddingSession

if os.getenv("DEBUG_CLI", "0") == "1":
    import debugpy

    debugpy.listen(("0.0.0.0", 5679))
    if os.getenv("DEBUGPY_WAIT", "0") == "1":
        debugpy.wait_for_client()


# ---------------------------------------------------------------------------
# Global logging configuration - set once at import time
# ---------------------------------------------------------------------------
LOG_LEVEL = logging.DEBUG if os.getenv("PUJAR_DEBUG", "0") == "1" else logging.INFO
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s -- %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
file_handler = RotatingFileHandler(
    os.getenv("PUJAR_LOG_FILE", "./pujar.log"),
    maxBytes=10 * 1024 * 1024,
    backupCount=5,
    encoding="utf-8",
    delay=True,
)
file_handler.setLevel(LOG_LEVEL)
file_handler.setFormatter(
    logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s -- %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
)

root = logging.getLogger()  # root logger
root.addHandler(file_handler)


app = typer.Typer(help="pujar CLI")


def _money(value: Decimal) -> str:
    return f"${value:,.2f}"


async def _watch(lot_id: int) -> None:
    session = BiddingSession()
    session.mount(lot_id)
    print(f"watching lot {lot_id} – Ctrl+C to quit")
    try:
        await asyncio.Event().wait()
    finally:
        await session.close()


@app.command()
def watch(lot_id: int):
    """Poll a lot and log every change of its leading bid."""
    try:
        asyncio.run(_watch(lot_id))
    except KeyboardInterrupt:
        pass


async def _quote(lot_id: int) -> list[str]:
    session = BiddingSession()
    try:
        lot = await session.load(lot_id)
        if lot is None:
            return [f"lot {lot_id} could not be loaded"]
        q = session.quote(lot_id)
        dlg = session.dialog(lot_id)
        sub = dlg.subscription
        lines = [
            f"{lot.nombre_lote or lot_id} [{lot.estado_subasta.value}]",
            f"base price:   {_money(q.base_price)}",
            f"leading bid:  {_money(q.current_top_amount) if q.has_existing_bids else '-'}",
            f"minimum bid:  {_money(q.minimum_next_bid)}",
            f"you lead:     {'yes' if q.is_leader else 'no'}",
            f"tokens:       {sub.tokens_disponibles if sub else 'not subscribed'}",
        ]
        if left := lot.time_left():
            lines.append(f"closes in:    {left}")
        mode = dlg.mode()
        if mode is not None:
            lines.append(pricing.token_notice(mode))
        return lines
    finally:
        await session.close()


@app.command()
def quote(lot_id: int):
    """Show the leading bid and the minimum acceptable next bid."""
    for line in asyncio.run(_quote(lot_id)):
        print(line)


async def _bid(lot_id: int, amount: str) -> BidOutcome:
    session = BiddingSession()
    try:
        await session.load(lot_id)
        dlg = session.dialog(lot_id)
        dlg.open()
        dlg.set_amount(amount)
        return await dlg.submit()
    finally:
        await session.close()


@app.command()
def bid(
    lot_id: int,
    amount: Annotated[str, typer.Argument(help="Amount to offer, e.g. 260000")],
):
    """Validate and place a bid."""
    outcome = asyncio.run(_bid(lot_id, amount))
    if outcome.ok:
        print(outcome.message)
        return
    for problem in outcome.problems:
        print(problem.message)
    if outcome.message:
        print(outcome.message)
    raise typer.Exit(code=1)


@app.command()
def history(
    lot_id: int,
    limit: Annotated[
        int, typer.Option("--limit", "-n", help="Number of rows to show.")
    ] = 20,
):
    """Show journalled changes of a lot."""
    rows = db.history_for(lot_id, limit=limit)
    if not rows:
        print("No history yet.")
    for row in rows:
        print(
            f"{row.observed_at:%Y-%m-%d %H:%M:%S} | {row.status:10} | "
            f"{_money(row.top_amount):>16} | winner {row.winner_id or '-'}"
        )


@app.command()
def web(
    host: Annotated[str, typer.Option(help="Bind address.")] = "127.0.0.1",
    port: Annotated[int, typer.Option(help="Bind port.")] = 8000,
):
    """Run the lot dashboard."""
    import uvicorn

    uvicorn.run("pujar.web.app:app", host=host, port=port)


if __name__ == "__main__":
    app()
