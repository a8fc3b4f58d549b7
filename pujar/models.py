"""Wire models for the backend's lot, bid and subscription payloads.

Field names follow the backend's JSON so responses validate as-is; money
fields arrive as strings ("100000.00") or numbers and are held as Decimal.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from pujar.core import AuctionStatus, Role


class BidStatus(str, Enum):
    ACTIVE = "activa"
    WINNER_PENDING = "ganadora_pendiente"
    WINNER_PAID = "ganadora_pagada"
    LOST = "perdedora"
    CANCELLED = "cancelada"
    OUTBID = "cubierto_por_puja"
    WINNER_DEFAULTED = "ganadora_incumplimiento"


class _Wire(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class LastBid(_Wire):
    id: Optional[int] = None
    monto: Decimal
    id_usuario: Optional[int] = None
    fecha_puja: Optional[datetime] = None


class Bid(_Wire):
    id: Optional[int] = None
    id_lote: Optional[int] = None
    id_usuario: Optional[int] = None
    id_proyecto: Optional[int] = None
    monto_puja: Decimal
    fecha_puja: Optional[datetime] = None
    estado_puja: Optional[BidStatus] = None


class Lot(_Wire):
    id: int
    nombre_lote: str = ""
    precio_base: Optional[Decimal] = None
    estado_subasta: AuctionStatus = AuctionStatus.PENDING
    fecha_inicio: Optional[datetime] = None
    fecha_fin: Optional[datetime] = None
    id_proyecto: Optional[int] = None
    id_ganador: Optional[int] = None
    monto_ganador_lote: Optional[Decimal] = None
    ultima_puja: Optional[LastBid] = None
    pujas: List[Bid] = Field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.estado_subasta is AuctionStatus.ACTIVE

    def time_left(self, now: Optional[datetime] = None) -> Optional[str]:
        """Countdown text for the closing timestamp, or None without one."""
        if self.fecha_fin is None:
            return None
        now = now or datetime.now(timezone.utc)
        end = self.fecha_fin
        if end.tzinfo is None:
            end = end.replace(tzinfo=timezone.utc)
        seconds = int((end - now).total_seconds())
        if seconds <= 0:
            return "Auction closed"
        h, rest = divmod(seconds, 3600)
        m, s = divmod(rest, 60)
        return f"{h}h {m}m {s}s"


class Subscription(_Wire):
    id: Optional[int] = None
    id_proyecto: int
    tokens_disponibles: int = 0
    activo: bool = True

    @property
    def has_tokens(self) -> bool:
        return self.tokens_disponibles > 0


class Viewer(_Wire):
    id: Optional[int] = None
    role: Role = Role.CLIENT
