"""
Domain events published after a successful commit.

Delivery is at-least-once: a handler may see the same event twice (for
example when a caller retries after a timeout) and must deduplicate on its
own.  Handler failures are logged and never undo committed state.
"""

import asyncio
import inspect
from datetime import datetime
from decimal import Decimal
from typing import Awaitable, Callable, ClassVar, List, Optional, Union

from pydantic import BaseModel, Field

from gavel.clients.base_model import utcnow
from gavel.utils import log

logger = log.get_logger(__name__)


class AuctionEvent(BaseModel):
    kind: ClassVar[str] = ""

    auction_id: str
    occurred_at: datetime = Field(default_factory=utcnow)


class NewBid(AuctionEvent):
    kind: ClassVar[str] = "new_bid"

    bid_id: str
    amount: Decimal
    bidder_id: str
    timestamp: datetime


class Outbid(AuctionEvent):
    kind: ClassVar[str] = "outbid"

    bid_id: str
    bidder_id: str
    new_amount: Decimal


class AuctionStarted(AuctionEvent):
    kind: ClassVar[str] = "auction_started"


class AuctionEnded(AuctionEvent):
    kind: ClassVar[str] = "auction_ended"

    winner_id: Optional[str] = None
    final_price: Optional[Decimal] = None


class AuctionCompleted(AuctionEvent):
    kind: ClassVar[str] = "auction_completed"


class AuctionCancelled(AuctionEvent):
    kind: ClassVar[str] = "auction_cancelled"

    cancelled_by_id: Optional[str] = None


class AuctionEndingSoon(AuctionEvent):
    kind: ClassVar[str] = "auction_ending_soon"

    end_date: datetime
    bidder_ids: List[str] = Field(default_factory=list)


Handler = Callable[[AuctionEvent], Union[None, Awaitable[None]]]


class EventEmitter:
    """Fan-out of committed domain events to subscribed handlers.

    Handlers may be plain functions or coroutine functions.  They run in
    subscription order; one failing handler does not stop the others.
    """

    def __init__(self):
        self._handlers: List[Handler] = []

    def subscribe(self, handler: Handler) -> Callable[[], None]:
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    async def emit(self, event: AuctionEvent) -> None:
        logger.debug(f"Emitting {event.kind} for auction {event.auction_id}")
        for handler in list(self._handlers):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    f"Event handler {getattr(handler, '__name__', handler)!r} failed on "
                    f"{event.kind} for auction {event.auction_id}: {e}",
                    exc_info=True,
                )

    async def emit_all(self, events: List[AuctionEvent]) -> None:
        for event in events:
            await self.emit(event)
