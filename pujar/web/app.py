"""pujar dashboard (MonsterUI + FastAPI)

Run:

    uvicorn pujar.web.app:app --reload

The JSON API lives under /api; the lot pages poll their panel with htmx
while the server-side synchronizer keeps the cached lot fresh.
"""

from __future__ import annotations
import logging, os

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware
from fasthtml.common import fast_app
from monsterui.all import Theme

from .api import api as api_app, close_session, get_session
from .ui import add_ui_routes

if os.getenv("DEBUG_WEB", "0") == "1":
    import debugpy

    debugpy.listen(("0.0.0.0", 5679))
    if os.getenv("DEBUGPY_WAIT", "0") == "1":
        debugpy.wait_for_client()

LOG_LEVEL = os.getenv("PUJAR_LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s -- %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
for name in ("apscheduler", "httpx"):
    # one line per 3s poll is noise at INFO
    logging.getLogger(name).setLevel(logging.WARNING)
logger = logging.getLogger("pujar_web")


async def _shutdown():
    await close_session()
    logger.info("pujar web stopped")


hdrs = Theme.blue.headers()

ui_app, rt = fast_app(hdrs=hdrs, on_shutdown=[_shutdown])
add_ui_routes(ui_app, rt, get_session)

api = FastAPI(title="pujar API", version="0.1.0")
api.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ALLOW_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
api.mount("", api_app)
ui_app.mount("/api", api)

app = ui_app
