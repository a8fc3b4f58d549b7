"""
REST backend for the bidding workflow.

Endpoints used:
  • GET  /lotes/{id}                        lot snapshot
  • GET  /lotes/proyecto/{id_proyecto}      lots of a project
  • POST /pujas                             {id_lote, monto_puja}
  • GET  /pujas/mis_pujas                   viewer's bid history
  • GET  /pujas/activas                     active bids
  • GET  /suscripciones/mis_suscripciones   viewer's subscriptions (tokens)
  • GET  /favoritos/mis-favoritos           favourite lots

Error bodies carry ``error`` or ``message``; that text reaches the user as-is.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Optional, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from pujar.core import ApiError, AuctionBackend, ErrorKind, PayloadError
from pujar.models import Bid, Lot, Subscription
from pujar.settings import Settings

log = logging.getLogger("pujar.rest")

M = TypeVar("M", bound=BaseModel)

NETWORK_MESSAGE = "Could not reach the server. Check your connection."

_DEFAULT_MESSAGES = {
    401: "Invalid credentials or expired session.",
    403: "You do not have permission.",
    429: "Too many attempts. Try again later.",
}


# --------------------------------------------------------------------------- #
#  Error mapping
# --------------------------------------------------------------------------- #


def _body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _server_message(body: Any) -> Optional[str]:
    if isinstance(body, dict):
        return body.get("error") or body.get("message")
    return None


def classify(status: int, body: Any) -> ApiError:
    message = _server_message(body) or _DEFAULT_MESSAGES.get(
        status, "Unexpected error."
    )
    if status == 401:
        return ApiError(status, message, ErrorKind.AUTH_ERROR)
    if status == 403:
        action = body.get("action_required") if isinstance(body, dict) else None
        if action:
            return ApiError(status, message, ErrorKind.SECURITY_ACTION, action)
        return ApiError(status, message, ErrorKind.ROLE_RESTRICTION)
    if status == 429:
        return ApiError(status, message, ErrorKind.RATE_LIMIT)
    return ApiError(status, message, ErrorKind.VALIDATION_ERROR)


# --------------------------------------------------------------------------- #
#  Backend
# --------------------------------------------------------------------------- #


class RestBackend(AuctionBackend):
    """httpx client against the platform's REST API."""

    def __init__(
        self,
        base_url: str,
        *,
        token: Optional[str] = None,
        timeout: float = 30,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "RestBackend":
        return cls(
            settings.api.base_url,
            token=settings.api.token,
            timeout=settings.api.timeout_seconds,
            **kwargs,
        )

    async def close(self) -> None:
        await self.client.aclose()

    # ---------------- HTTP ---------------- #

    async def _request(self, method: str, path: str, *, json: Any = None) -> Any:
        try:
            r = await self.client.request(method, path, json=json)
        except httpx.RequestError as exc:
            log.warning("%s %s failed: %s", method, path, exc)
            raise ApiError(0, NETWORK_MESSAGE, ErrorKind.UNKNOWN) from exc

        body = _body(r)
        if r.is_error:
            err = classify(r.status_code, body)
            log.info("%s %s → %s %s", method, path, r.status_code, err.message)
            raise err
        # 2xx responses can still carry {"success": false, "error": ...}
        if isinstance(body, dict) and body.get("success") is False:
            raise ApiError(
                r.status_code,
                body.get("error") or "Operation failed.",
                ErrorKind.VALIDATION_ERROR,
            )
        return body

    # --------------- PARSE ---------------- #

    @staticmethod
    def _one(model: type[M], data: Any) -> M:
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            raise PayloadError(f"Unexpected {model.__name__} payload: {exc}") from exc

    @classmethod
    def _many(cls, model: type[M], data: Any) -> list[M]:
        if not isinstance(data, list):
            raise PayloadError(f"Expected a list of {model.__name__}, got {type(data).__name__}")
        return [cls._one(model, item) for item in data]

    # --------------- LOTS ----------------- #

    async def fetch_lot(self, lot_id: int) -> Lot:
        return self._one(Lot, await self._request("GET", f"/lotes/{lot_id}"))

    async def fetch_project_lots(self, project_id: int) -> list[Lot]:
        data = await self._request("GET", f"/lotes/proyecto/{project_id}")
        return self._many(Lot, data)

    async def fetch_favorites(self) -> list[Lot]:
        return self._many(Lot, await self._request("GET", "/favoritos/mis-favoritos"))

    # --------------- BIDS ----------------- #

    async def create_bid(self, lot_id: int, amount: Decimal) -> Bid:
        # the backend takes a JSON number here
        payload = {"id_lote": lot_id, "monto_puja": float(amount)}
        data = await self._request("POST", "/pujas", json=payload)
        if isinstance(data, dict) and "monto_puja" not in data:
            # some deployments answer with a bare confirmation
            return Bid(id_lote=lot_id, monto_puja=amount, id=data.get("id"))
        return self._one(Bid, data)

    async def fetch_my_bids(self) -> list[Bid]:
        return self._many(Bid, await self._request("GET", "/pujas/mis_pujas"))

    async def fetch_active_bids(self) -> list[Bid]:
        return self._many(Bid, await self._request("GET", "/pujas/activas"))

    # ------------ SUBSCRIPTIONS ----------- #

    async def fetch_subscription(self, project_id: int) -> Optional[Subscription]:
        """Active subscription for ``project_id`` (None when not subscribed)."""
        data = await self._request("GET", "/suscripciones/mis_suscripciones")
        for sub in self._many(Subscription, data):
            if sub.id_proyecto == project_id and sub.activo:
                return sub
        return None
