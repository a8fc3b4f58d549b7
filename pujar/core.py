from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from decimal import Decimal
    from pujar.models import Bid, Lot, Subscription


class AuctionStatus(str, Enum):
    """Lifecycle of a lot's auction, using the backend's wire values."""

    PENDING = "pendiente"
    ACTIVE = "activa"
    CLOSED = "finalizada"


class Role(str, Enum):
    ADMIN = "admin"
    CLIENT = "cliente"


class Capability(str, Enum):
    PLACE_BID = "place_bid"
    VIEW_LOTS = "view_lots"
    MANAGE_AUCTIONS = "manage_auctions"


_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.CLIENT: frozenset({Capability.PLACE_BID, Capability.VIEW_LOTS}),
    Role.ADMIN: frozenset({Capability.VIEW_LOTS, Capability.MANAGE_AUCTIONS}),
}


def can(role: Role, capability: Capability) -> bool:
    return capability in _CAPABILITIES.get(role, frozenset())


class ErrorKind(str, Enum):
    UNKNOWN = "UNKNOWN"
    AUTH_ERROR = "AUTH_ERROR"
    ROLE_RESTRICTION = "ROLE_RESTRICTION"
    SECURITY_ACTION = "SECURITY_ACTION"
    RATE_LIMIT = "RATE_LIMIT"
    VALIDATION_ERROR = "VALIDATION_ERROR"


class PujarError(Exception):
    """Base class for errors raised by this package."""


class ApiError(PujarError):
    """A request the backend refused or that never reached it.

    ``message`` is what the user sees; it is the server's ``error`` or
    ``message`` field when one was sent.
    """

    def __init__(
        self,
        status: int,
        message: str,
        kind: ErrorKind = ErrorKind.VALIDATION_ERROR,
        action_required: Optional[str] = None,
    ):
        super().__init__(message)
        self.status = status
        self.message = message
        self.kind = kind
        self.action_required = action_required


class PayloadError(PujarError):
    """Raised when a response body is not the shape the client expects."""


class BidNotAllowed(PujarError):
    """Raised when the viewer's role cannot place bids."""


class AuctionBackend(ABC):
    """Server side of the bidding workflow."""

    @abstractmethod
    async def fetch_lot(self, lot_id: int) -> Lot: ...

    @abstractmethod
    async def fetch_project_lots(self, project_id: int) -> list[Lot]: ...

    @abstractmethod
    async def create_bid(self, lot_id: int, amount: Decimal) -> Bid: ...

    @abstractmethod
    async def fetch_my_bids(self) -> list[Bid]: ...

    @abstractmethod
    async def fetch_active_bids(self) -> list[Bid]: ...

    @abstractmethod
    async def fetch_subscription(self, project_id: int) -> Optional[Subscription]: ...

    @abstractmethod
    async def fetch_favorites(self) -> list[Lot]: ...

    async def close(self) -> None: ...
