"""
Bid placement and bid history.

``BidLedger.place_bid`` is the only writer of new bids.  One accepted bid is
one atomic commit of three documents: the new bid, the previously leading
bid (flagged outbid) and the auction (price, leading bid, bid count and the
first-bid extension).  Nothing is locked; a version conflict on any of the
three re-runs the whole check-and-commit sequence from fresh reads.
"""

from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel

from gavel.clients import VersionedStore, Write, utcnow
from gavel.conf import EngineConf
from gavel.events import EventEmitter, NewBid, Outbid
from gavel.exceptions import (
    AuctionEnded,
    AuctionNotActive,
    BidNotFound,
    BidTooLow,
    InvalidStateError,
    SelfBidForbidden,
    UnauthorizedError,
    ValidationFailure,
)
from gavel.models.entities.auctions import CLOSED_STATUSES, WON_STATUSES, Auction, AuctionData
from gavel.models.entities.bids import Bid, BidData
from gavel.utils import log

from .auctions import AuctionStateMachine
from .base import Clock, get_actor, with_version_retry

logger = log.get_logger(__name__)

BidSort = Literal["amount", "placed_at"]
SortOrder = Literal["asc", "desc"]
BidderBidStatus = Literal["active", "won", "lost", "outbid"]


class BidPage(BaseModel):
    items: List[Bid]
    total: int
    page: int
    limit: int
    has_next: bool
    has_prev: bool


def minimum_bid(auction: AuctionData, enforce_increment: bool = True) -> Tuple[Decimal, bool]:
    """Return ``(floor, inclusive)`` for the next acceptable bid.

    Without an increment a bid must be strictly above the current price;
    with one it must reach ``current_price + bid_increment``.  An increment
    too small to survive decimal rounding falls back to the strict floor.
    """
    if enforce_increment and auction.bid_increment > 0:
        floor = auction.current_price + auction.bid_increment
        if floor > auction.current_price:
            return floor, True
    return auction.current_price, False


def _to_amount(amount: Union[Decimal, int, float, str]) -> Decimal:
    try:
        return Decimal(str(amount))
    except InvalidOperation as e:
        raise ValidationFailure(f"Invalid bid amount {amount!r}", amount=str(amount)) from e


def _paginate(bids: List[Bid], page: int, limit: int) -> BidPage:
    page = max(1, page)
    limit = max(1, limit)
    start = (page - 1) * limit
    items = bids[start:start + limit]
    return BidPage(
        items=items,
        total=len(bids),
        page=page,
        limit=limit,
        has_next=start + limit < len(bids),
        has_prev=page > 1,
    )


class BidLedger:

    def __init__(
        self,
        store: VersionedStore,
        machine: AuctionStateMachine,
        emitter: EventEmitter,
        conf: Optional[EngineConf] = None,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.machine = machine
        self.emitter = emitter
        self.conf = conf or EngineConf()
        self.clock = clock

    # -----------------------------------------------------------------------
    # Bid placement
    # -----------------------------------------------------------------------

    async def place_bid(
        self,
        auction_id: str,
        bidder_id: str,
        amount: Union[Decimal, int, float, str],
    ) -> Bid:
        """
        Place a bid on an auction.

        Checks, in order:
        1. the auction exists and is not deleted (``AuctionNotFound``)
        2. the bidder is a known, non-deleted user (``UnauthorizedError``)
        3. the auction is open: ``AuctionNotActive`` before start or after
           cancellation, ``AuctionEnded`` once ``end_date`` has passed (the
           auction is closed on the spot in that case)
        4. the bidder is not the seller (``SelfBidForbidden``)
        5. the amount is above the current price and clears the increment
           floor (``BidTooLow``)

        All checks and the commit are retried together on version conflicts.
        """
        amount = _to_amount(amount)

        async def attempt() -> Tuple[Bid, Optional[Bid]]:
            auction = await self.machine.get(auction_id)
            bidder = await get_actor(self.store, bidder_id)
            now = self.clock()
            d = auction.data

            if d.status == "upcoming":
                raise AuctionNotActive(
                    f"Auction {auction_id} has not started yet",
                    auction_id=auction_id,
                    status=d.status,
                    start_date=d.start_date.isoformat(),
                )
            if d.status == "cancelled":
                raise AuctionNotActive(
                    f"Auction {auction_id} was cancelled", auction_id=auction_id, status=d.status
                )
            if d.status in CLOSED_STATUSES or d.end_date <= now:
                if d.status == "active":
                    # End passed after the lazy transitions ran
                    await self.machine.close(auction_id)
                raise AuctionEnded(
                    f"Auction {auction_id} has ended",
                    auction_id=auction_id,
                    status=d.status,
                    end_date=d.end_date.isoformat(),
                )

            if d.seller_id == bidder.id:
                raise SelfBidForbidden(
                    "Sellers cannot bid on their own auction", auction_id=auction_id
                )

            floor, inclusive = minimum_bid(d, self.conf.enforce_bid_increment)
            if (
                not amount.is_finite()
                or amount <= d.current_price
                or amount < floor
                or (amount == floor and not inclusive)
            ):
                qualifier = "at least" if inclusive else "greater than"
                raise BidTooLow(
                    f"Bid must be {qualifier} {floor}",
                    auction_id=auction_id,
                    current_price=str(d.current_price),
                    minimum_amount=str(floor),
                    inclusive=inclusive,
                )

            return await self._commit_bid(auction, bidder.id, amount, now)

        bid, outbid = await with_version_retry(
            attempt, self.conf.max_retries, f"bid on auction {auction_id}", auction_id=auction_id
        )

        logger.info(f"Bid {bid.id} of {amount} accepted on auction {auction_id} from {bid.data.bidder_id}")

        await self.emitter.emit(
            NewBid(
                auction_id=auction_id,
                bid_id=bid.id,
                amount=bid.data.amount,
                bidder_id=bid.data.bidder_id,
                timestamp=bid.data.placed_at,
            )
        )
        if outbid is not None:
            await self.emitter.emit(
                Outbid(
                    auction_id=auction_id,
                    bid_id=outbid.id,
                    bidder_id=outbid.data.bidder_id,
                    new_amount=bid.data.amount,
                )
            )
        return bid

    async def _commit_bid(
        self, auction: Auction, bidder_id: str, amount: Decimal, now: datetime
    ) -> Tuple[Bid, Optional[Bid]]:
        d = auction.data
        auction_version = auction.version

        bid = Bid.new(BidData(auction_id=auction.id, bidder_id=bidder_id, amount=amount, placed_at=now))
        writes = [Write.insert(bid)]

        previous = await self.store.get(Bid, d.highest_bid_id) if d.highest_bid_id else None
        if previous is not None and not previous.data.is_outbid:
            previous_version = previous.version
            previous.data.is_outbid = True
            previous.data.outbid_at = now
            writes.append(Write.update(previous, previous_version))
        else:
            previous = None

        first_bid = d.bid_count == 0
        d.current_price = amount
        d.highest_bid_id = bid.id
        d.highest_bidder_id = bidder_id
        d.bid_count += 1

        # One-time extension, keyed on bid_count so a restored auction that
        # already has bids is never extended again.
        if first_bid and self.conf.anti_sniping_enabled:
            extended = now + timedelta(minutes=self.conf.anti_sniping_window_minutes)
            if extended > d.end_date:
                logger.info(f"Auction {auction.id} extended to {extended.isoformat()} by first bid")
                d.end_date = extended
                d.extensions_count += 1

        writes.append(Write.update(auction, auction_version))
        committed = await self.store.commit(writes)
        return committed[0], committed[1] if previous is not None else None

    # -----------------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------------

    async def get_bid(self, bid_id: str, include_deleted: bool = False) -> Bid:
        bid = await self.store.get(Bid, bid_id)
        if bid is None or (bid.data.is_deleted and not include_deleted):
            raise BidNotFound(f"Bid {bid_id} not found", bid_id=bid_id)
        return bid

    async def list_auction_bids(
        self,
        auction_id: str,
        include_deleted: bool = False,
        sort: BidSort = "amount",
        order: SortOrder = "desc",
        page: int = 1,
        limit: int = 20,
    ) -> BidPage:
        """Bid history of one auction."""
        await self.machine.get(auction_id)
        bids = await self.store.find(Bid, auction_id=auction_id)
        if not include_deleted:
            bids = [b for b in bids if not b.data.is_deleted]
        bids.sort(key=lambda b: getattr(b.data, sort), reverse=(order == "desc"))
        return _paginate(bids, page, limit)

    async def list_bidder_bids(
        self,
        bidder_id: str,
        status: Optional[BidderBidStatus] = None,
        page: int = 1,
        limit: int = 20,
    ) -> BidPage:
        """A bidder's own bids, newest first, optionally filtered by outcome."""
        bids = [b for b in await self.store.find(Bid, bidder_id=bidder_id) if not b.data.is_deleted]

        if status is not None:
            auctions: Dict[str, Optional[Auction]] = {}
            for auction_id in {b.data.auction_id for b in bids}:
                auctions[auction_id] = await self.store.get(Auction, auction_id)
            bids = [b for b in bids if self._matches(b, auctions.get(b.data.auction_id), status)]

        bids.sort(key=lambda b: b.data.placed_at, reverse=True)
        return _paginate(bids, page, limit)

    @staticmethod
    def _matches(bid: Bid, auction: Optional[Auction], status: BidderBidStatus) -> bool:
        if status == "outbid":
            return bid.data.is_outbid
        if auction is None:
            return False
        a = auction.data
        is_winning = a.status in WON_STATUSES and a.highest_bid_id == bid.id
        if status == "active":
            return a.status == "active" and not bid.data.is_outbid
        if status == "won":
            return is_winning
        # lost
        return a.status in CLOSED_STATUSES and not is_winning

    # -----------------------------------------------------------------------
    # Soft delete / restore
    # -----------------------------------------------------------------------

    async def _update_bid(
        self,
        bid_id: str,
        decide: Callable[[Bid, datetime], bool],
        operation: str,
    ) -> Optional[Bid]:
        async def attempt() -> Optional[Bid]:
            bid = await self.get_bid(bid_id, include_deleted=True)
            version = bid.version
            if not decide(bid, self.clock()):
                return None
            [updated] = await self.store.commit([Write.update(bid, version)])
            return updated

        return await with_version_retry(attempt, self.conf.max_retries, f"{operation} bid {bid_id}", bid_id=bid_id)

    async def _check_deletable(self, bid: Bid) -> None:
        auction = await self.store.get(Auction, bid.data.auction_id)
        if auction is None:
            return
        auction = await self.machine.advance(auction)
        if auction.data.status == "active":
            raise InvalidStateError(
                "Cannot delete bids on active auctions",
                auction_id=auction.id,
                bid_id=bid.id,
                status=auction.data.status,
            )
        if auction.data.highest_bid_id == bid.id and auction.data.status != "cancelled":
            raise InvalidStateError(
                "Cannot delete the leading bid of an auction",
                auction_id=auction.id,
                bid_id=bid.id,
                status=auction.data.status,
            )

    async def soft_delete_bid(self, bid_id: str, actor_id: str) -> Bid:
        actor = await get_actor(self.store, actor_id)
        bid = await self.get_bid(bid_id)
        if bid.data.bidder_id != actor.id and not actor.is_admin:
            raise UnauthorizedError(f"User {actor.id} cannot delete bid {bid_id}", bid_id=bid_id)
        await self._check_deletable(bid)

        def decide(b: Bid, now: datetime) -> bool:
            if b.data.is_deleted:
                return False
            b.data.is_deleted = True
            b.data.deleted_at = now
            b.data.deleted_by_id = actor.id
            return True

        updated = await self._update_bid(bid_id, decide, "delete")
        if updated:
            logger.info(f"Bid {bid_id} soft-deleted by {actor.id}")
            return updated
        return await self.get_bid(bid_id, include_deleted=True)

    async def restore_bid(self, bid_id: str, actor_id: str) -> Bid:
        actor = await get_actor(self.store, actor_id)
        if not actor.is_admin:
            raise UnauthorizedError("Only admins can restore deleted bids", bid_id=bid_id)

        def decide(b: Bid, now: datetime) -> bool:
            if not b.data.is_deleted:
                raise InvalidStateError(f"Bid {b.id} is not deleted", bid_id=b.id)
            b.data.is_deleted = False
            b.data.deleted_at = None
            b.data.deleted_by_id = None
            return True

        restored = await self._update_bid(bid_id, decide, "restore")
        logger.info(f"Bid {bid_id} restored by {actor.id}")
        return restored

    async def mark_bid_deleted(self, bid_id: str, deleted_by_id: Optional[str]) -> Optional[Bid]:
        """Soft-delete without permission checks, for cascades. Idempotent."""

        def decide(b: Bid, now: datetime) -> bool:
            if b.data.is_deleted:
                return False
            b.data.is_deleted = True
            b.data.deleted_at = now
            b.data.deleted_by_id = deleted_by_id
            return True

        return await self._update_bid(bid_id, decide, "delete")
