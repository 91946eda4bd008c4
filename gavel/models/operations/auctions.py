"""
Auction lifecycle with version-guarded transitions.

Every transition is a read-decide-commit attempt run through
``with_version_retry``: the decision function receives a freshly read
auction, mutates it in place and returns the events to publish (or ``None``
when there is nothing to do).  Events go out only after the commit lands.

Time-driven transitions (activate at ``start_date``, close at ``end_date``)
are applied lazily by ``get``/``advance`` and by the closing sweep; there is
no timer per auction.
"""

from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple, Union

from gavel.clients import VersionedStore, Write, utcnow
from gavel.conf import EngineConf
from gavel.events import (
    AuctionCancelled,
    AuctionEnded,
    AuctionEvent,
    AuctionStarted,
    EventEmitter,
)
from gavel.exceptions import (
    AuctionEnded as AuctionEndedError,
    AuctionNotFound,
    InvalidStateError,
    UnauthorizedError,
    ValidationFailure,
)
from gavel.models.entities.auctions import Auction, AuctionData
from gavel.utils import log

from .base import Clock, get_actor, with_version_retry

logger = log.get_logger(__name__)

Decision = Callable[[Auction, datetime], Optional[List[AuctionEvent]]]


# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------

TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    "upcoming": ("active", "cancelled"),
    "active": ("ended", "cancelled"),
    "ended": ("sold",),
    "sold": ("completed",),
    "completed": (),
    "cancelled": (),
}


def check_transition(auction: Auction, target: str) -> None:
    current = auction.data.status
    if target not in TRANSITIONS.get(current, ()):
        raise InvalidStateError(
            f"Auction {auction.id} cannot move from {current} to {target}",
            auction_id=auction.id,
            status=current,
            target=target,
        )


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------

async def auction_create(
    store: VersionedStore,
    seller_id: str,
    starting_price: Union[Decimal, int, str],
    start_date: datetime,
    end_date: datetime,
    title: str = "",
    description: Optional[str] = None,
    bid_increment: Union[Decimal, int, str] = Decimal("0"),
) -> Auction:
    """Create an auction in ``upcoming``.

    Listing content is owned elsewhere; this is the entry point the listing
    service (and the tests) use to hand an auction to the engine.
    """
    if start_date.tzinfo is None or end_date.tzinfo is None:
        raise ValidationFailure(
            "Auction start_date and end_date must carry a timezone",
            start_date=start_date.isoformat(),
            end_date=end_date.isoformat(),
        )
    if end_date <= start_date:
        raise ValidationFailure(
            "Auction end_date must be after start_date",
            start_date=start_date.isoformat(),
            end_date=end_date.isoformat(),
        )
    starting_price = Decimal(str(starting_price))
    data = AuctionData(
        seller_id=seller_id,
        title=title,
        description=description,
        starting_price=starting_price,
        current_price=starting_price,
        bid_increment=Decimal(str(bid_increment)),
        start_date=start_date,
        end_date=end_date,
        status="upcoming",
    )
    auction = await store.insert(Auction.new(data))
    logger.info(f"Auction {auction.id} created by seller {seller_id}, starts {start_date.isoformat()}")
    return auction


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

class AuctionStateMachine:

    def __init__(
        self,
        store: VersionedStore,
        emitter: EventEmitter,
        conf: Optional[EngineConf] = None,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.emitter = emitter
        self.conf = conf or EngineConf()
        self.clock = clock

    async def _load(self, auction_id: str, include_deleted: bool = False) -> Auction:
        auction = await self.store.get(Auction, auction_id)
        if auction is None or (auction.data.is_deleted and not include_deleted):
            raise AuctionNotFound(f"Auction {auction_id} not found", auction_id=auction_id)
        return auction

    async def _transition(
        self,
        auction_id: str,
        decide: Decision,
        operation: str,
        include_deleted: bool = True,
    ) -> Optional[Auction]:
        async def attempt():
            auction = await self._load(auction_id, include_deleted)
            version = auction.version
            events = decide(auction, self.clock())
            if events is None:
                return None, []
            [updated] = await self.store.commit([Write.update(auction, version)])
            return updated, events

        updated, events = await with_version_retry(
            attempt, self.conf.max_retries, f"{operation} auction {auction_id}", auction_id=auction_id
        )
        if updated is not None:
            await self.emitter.emit_all(events)
        return updated

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    async def get(self, auction_id: str) -> Auction:
        """Return a non-deleted auction with due transitions applied."""
        auction = await self._load(auction_id)
        return await self.advance(auction)

    async def advance(self, auction: Auction) -> Auction:
        """Apply whatever time-driven transitions are due for *auction*."""
        if auction.data.is_deleted:
            return auction
        now = self.clock()
        if auction.data.status == "upcoming" and auction.data.start_date <= now:
            auction = await self.activate(auction.id) or await self._load(auction.id, include_deleted=True)
        if auction.data.status == "active" and auction.data.end_date <= now:
            auction = await self.close(auction.id) or await self._load(auction.id, include_deleted=True)
        return auction

    # -----------------------------------------------------------------------
    # Time-driven transitions
    # -----------------------------------------------------------------------

    async def activate(self, auction_id: str) -> Optional[Auction]:
        """upcoming -> active once ``start_date`` has passed.

        Returns the updated auction, or ``None`` if this call made no change.
        """

        def decide(auction: Auction, now: datetime) -> Optional[List[AuctionEvent]]:
            d = auction.data
            if d.is_deleted or d.status != "upcoming" or d.start_date > now:
                return None
            check_transition(auction, "active")
            d.status = "active"
            return [AuctionStarted(auction_id=auction.id)]

        updated = await self._transition(auction_id, decide, "activate")
        if updated:
            logger.info(f"Auction {auction_id} is now active")
        return updated

    async def close(self, auction_id: str) -> Optional[Auction]:
        """active -> ended once ``end_date`` has passed, and straight on to
        sold when there is a leading bid.

        Both steps land in one versioned write, so no reader ever sees an
        ``ended`` auction that has a winner waiting to be assigned.  Returns
        the updated auction, or ``None`` if this call made no change.
        """

        def decide(auction: Auction, now: datetime) -> Optional[List[AuctionEvent]]:
            d = auction.data
            if d.is_deleted or d.status != "active" or d.end_date > now:
                return None
            check_transition(auction, "ended")
            d.status = "ended"
            d.ended_at = now
            if d.highest_bid_id:
                check_transition(auction, "sold")
                d.status = "sold"
                d.winner_id = d.highest_bidder_id
            return [
                AuctionEnded(
                    auction_id=auction.id,
                    winner_id=d.winner_id,
                    final_price=d.current_price if d.winner_id else None,
                )
            ]

        updated = await self._transition(auction_id, decide, "close")
        if updated:
            if updated.data.winner_id:
                logger.info(
                    f"Auction {auction_id} sold to {updated.data.winner_id} "
                    f"for {updated.data.current_price}"
                )
            else:
                logger.info(f"Auction {auction_id} ended without bids")
        return updated

    # -----------------------------------------------------------------------
    # Actor-driven transitions
    # -----------------------------------------------------------------------

    async def cancel(self, auction_id: str, actor_id: str) -> Auction:
        """Cancel an upcoming or active auction.

        The seller may cancel until the first bid arrives; after that only an
        admin can.  Cancelling an already cancelled auction is a no-op.
        """
        actor = await get_actor(self.store, actor_id)
        auction = await self.get(auction_id)
        if auction.data.seller_id != actor.id and not actor.is_admin:
            raise UnauthorizedError(
                f"User {actor.id} cannot cancel auction {auction_id}",
                auction_id=auction_id,
            )

        def decide(a: Auction, now: datetime) -> Optional[List[AuctionEvent]]:
            d = a.data
            if d.status == "cancelled":
                return None
            if d.status == "active" and d.end_date <= now:
                raise AuctionEndedError(
                    f"Auction {a.id} has ended", auction_id=a.id, status=d.status
                )
            check_transition(a, "cancelled")
            if d.bid_count > 0 and not actor.is_admin:
                raise UnauthorizedError(
                    f"Auction {a.id} has bids and can only be cancelled by an admin",
                    auction_id=a.id,
                    bid_count=d.bid_count,
                )
            d.status = "cancelled"
            d.cancelled_at = now
            return [AuctionCancelled(auction_id=a.id, cancelled_by_id=actor.id)]

        updated = await self._transition(auction_id, decide, "cancel", include_deleted=False)
        if updated:
            logger.info(f"Auction {auction_id} cancelled by {actor.id}")
            return updated
        return await self._load(auction_id)

    # -----------------------------------------------------------------------
    # Soft delete / restore
    # -----------------------------------------------------------------------

    async def soft_delete(self, auction_id: str, actor_id: str) -> Auction:
        """Soft-delete an auction. Sellers may only delete before it starts."""
        actor = await get_actor(self.store, actor_id)
        auction = await self._load(auction_id)
        if auction.data.seller_id != actor.id and not actor.is_admin:
            raise UnauthorizedError(
                f"User {actor.id} cannot delete auction {auction_id}",
                auction_id=auction_id,
            )

        def decide(a: Auction, now: datetime) -> Optional[List[AuctionEvent]]:
            d = a.data
            if d.is_deleted:
                return None
            if not actor.is_admin and d.start_date <= now:
                raise InvalidStateError(
                    f"Auction {a.id} has already started",
                    auction_id=a.id,
                    status=d.status,
                )
            d.is_deleted = True
            d.deleted_at = now
            d.deleted_by_id = actor.id
            return []

        updated = await self._transition(auction_id, decide, "delete")
        if updated:
            logger.info(f"Auction {auction_id} soft-deleted by {actor.id}")
            return updated
        return await self._load(auction_id, include_deleted=True)

    async def restore(self, auction_id: str, actor_id: str) -> Auction:
        """Undo a soft delete. Admin only, and only before ``end_date``."""
        actor = await get_actor(self.store, actor_id)
        if not actor.is_admin:
            raise UnauthorizedError("Only admins can restore auctions", auction_id=auction_id)

        def decide(a: Auction, now: datetime) -> Optional[List[AuctionEvent]]:
            d = a.data
            if not d.is_deleted:
                raise InvalidStateError(
                    f"Auction {a.id} is not deleted", auction_id=a.id, status=d.status
                )
            if d.end_date <= now:
                raise AuctionEndedError(
                    f"Auction {a.id} has already ended and cannot be restored",
                    auction_id=a.id,
                    end_date=d.end_date.isoformat(),
                )
            d.is_deleted = False
            d.deleted_at = None
            d.deleted_by_id = None
            d.restored_by_id = actor.id
            return []

        restored = await self._transition(auction_id, decide, "restore")
        logger.info(f"Auction {auction_id} restored by {actor.id}")
        return await self.advance(restored)

    async def mark_deleted(self, auction_id: str, deleted_by_id: Optional[str]) -> Optional[Auction]:
        """Soft-delete without permission checks, for cascades. Idempotent."""

        def decide(a: Auction, now: datetime) -> Optional[List[AuctionEvent]]:
            d = a.data
            if d.is_deleted:
                return None
            d.is_deleted = True
            d.deleted_at = now
            d.deleted_by_id = deleted_by_id
            return []

        return await self._transition(auction_id, decide, "delete")
