"""
User-deletion cascade.

User accounts belong to the user-management service.  Before it deletes a
user it asks ``deletion_blockers``; if the list is empty it calls ``apply``,
which soft-deletes the user's auctions and bids through the engine's own
hooks so every write stays version-checked.
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from gavel.clients import VersionedStore
from gavel.exceptions import InvalidStateError, UnauthorizedError
from gavel.models.entities.auctions import Auction
from gavel.models.entities.bids import Bid
from gavel.models.entities.users import User
from gavel.utils import log

from .auctions import AuctionStateMachine
from .base import get_actor
from .bids import BidLedger

logger = log.get_logger(__name__)


class CascadeResult(BaseModel):
    user_id: str
    auctions_deleted: List[str] = Field(default_factory=list)
    bids_deleted: List[str] = Field(default_factory=list)
    bids_kept: List[str] = Field(default_factory=list)


class UserCascadePolicy:

    def __init__(self, store: VersionedStore, machine: AuctionStateMachine, ledger: BidLedger):
        self.store = store
        self.machine = machine
        self.ledger = ledger

    async def _seller_auctions(self, user_id: str) -> List[Auction]:
        auctions = await self.store.find(Auction, seller_id=user_id, is_deleted=False)
        return [await self.machine.advance(a) for a in auctions]

    async def deletion_blockers(self, user_id: str) -> List[str]:
        """Reasons the user cannot be deleted right now; empty when deletable."""
        blockers = []
        selling = await self._seller_auctions(user_id)

        if any(a.data.status == "upcoming" for a in selling):
            blockers.append("User has upcoming auctions")
        if any(a.data.status == "active" for a in selling):
            blockers.append("User has active auctions")
        if any(a.data.status == "sold" for a in selling):
            blockers.append("User has sold auctions awaiting completion")

        leading = False
        for bid in await self.store.find(Bid, bidder_id=user_id, is_deleted=False, is_outbid=False):
            auction = await self.store.get(Auction, bid.data.auction_id)
            if auction is None or auction.data.is_deleted:
                continue
            auction = await self.machine.advance(auction)
            if auction.data.status == "active" and auction.data.highest_bid_id == bid.id:
                leading = True
        if leading:
            blockers.append("User is the highest bidder on an active auction")

        won = await self.store.find(Auction, winner_id=user_id, status="sold", is_deleted=False)
        if won:
            blockers.append("User has won auctions awaiting completion")

        return blockers

    async def apply(self, user_id: str, actor_id: Optional[str] = None) -> CascadeResult:
        """Soft-delete everything the user owns in the engine.

        Leading bids of auctions that have not been cancelled are kept, since
        they back an auction's price and winner.
        """
        actor = await get_actor(self.store, actor_id or user_id)
        if actor.id != user_id and not actor.is_admin:
            raise UnauthorizedError(f"User {actor.id} cannot delete user {user_id}", user_id=user_id)
        if await self.store.get(User, user_id) is None:
            raise UnauthorizedError(f"User {user_id} does not exist", user_id=user_id)

        blockers = await self.deletion_blockers(user_id)
        if blockers:
            raise InvalidStateError(
                f"User {user_id} cannot be deleted: {'; '.join(blockers)}",
                user_id=user_id,
                blockers=blockers,
            )

        result = CascadeResult(user_id=user_id)

        for auction in await self.store.find(Auction, seller_id=user_id, is_deleted=False):
            await self.machine.mark_deleted(auction.id, actor.id)
            result.auctions_deleted.append(auction.id)

        for bid in await self.store.find(Bid, bidder_id=user_id, is_deleted=False):
            auction = await self.store.get(Auction, bid.data.auction_id)
            if auction and auction.data.highest_bid_id == bid.id and auction.data.status != "cancelled":
                result.bids_kept.append(bid.id)
                continue
            await self.ledger.mark_bid_deleted(bid.id, actor.id)
            result.bids_deleted.append(bid.id)

        logger.info(
            f"Cascade for user {user_id}: {len(result.auctions_deleted)} auctions and "
            f"{len(result.bids_deleted)} bids soft-deleted, {len(result.bids_kept)} leading bids kept"
        )
        return result
