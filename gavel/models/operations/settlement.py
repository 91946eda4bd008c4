"""
Post-sale settlement: payment and delivery confirmation, then completion.

Each confirmation is a version-checked write of flag, timestamp and actor.
Re-confirming is a no-op.  As soon as both flags are set the auction moves
``sold -> completed`` and ``AuctionCompleted`` is published once.
"""

from datetime import datetime
from typing import Callable, List, Literal, Optional

from gavel.clients import VersionedStore, Write, utcnow
from gavel.conf import EngineConf
from gavel.events import AuctionCompleted, AuctionEvent, EventEmitter
from gavel.exceptions import InvalidStateError, UnauthorizedError
from gavel.models.entities.auctions import Auction, AuctionData
from gavel.models.entities.users import User
from gavel.utils import log

from .auctions import AuctionStateMachine, check_transition
from .base import Clock, get_actor, with_version_retry

logger = log.get_logger(__name__)

Confirmation = Literal["payment", "delivery"]


class SettlementTracker:

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

    async def _settle(
        self,
        auction_id: str,
        mutate: Callable[[AuctionData, datetime], bool],
        operation: str,
    ) -> Auction:
        async def attempt():
            auction = await self.machine.get(auction_id)
            d = auction.data
            if d.status == "completed":
                return auction, []
            if d.status != "sold":
                raise InvalidStateError(
                    f"Auction {auction_id} is not awaiting settlement (status: {d.status})",
                    auction_id=auction_id,
                    status=d.status,
                )

            version = auction.version
            now = self.clock()
            changed = mutate(d, now)
            events: List[AuctionEvent] = []
            if d.is_settled:
                check_transition(auction, "completed")
                d.status = "completed"
                d.completed_at = now
                events.append(AuctionCompleted(auction_id=auction_id))
                changed = True
            if not changed:
                return auction, []
            [updated] = await self.store.commit([Write.update(auction, version)])
            return updated, events

        auction, events = await with_version_retry(
            attempt, self.conf.max_retries, f"{operation} auction {auction_id}", auction_id=auction_id
        )
        if events:
            logger.info(f"Auction {auction_id} completed")
        await self.emitter.emit_all(events)
        return auction

    async def _authorize(self, auction_id: str, actor_id: str) -> User:
        actor = await get_actor(self.store, actor_id)
        auction = await self.machine.get(auction_id)
        if actor.id not in (auction.data.seller_id, auction.data.winner_id) and not actor.is_admin:
            raise UnauthorizedError(
                f"User {actor.id} is not a party to auction {auction_id}",
                auction_id=auction_id,
            )
        return actor

    async def _confirm(self, auction_id: str, actor_id: str, which: Confirmation) -> Auction:
        actor = await self._authorize(auction_id, actor_id)

        def mutate(d: AuctionData, now: datetime) -> bool:
            if getattr(d, f"is_{which}_confirmed"):
                return False
            setattr(d, f"is_{which}_confirmed", True)
            setattr(d, f"{which}_confirmed_at", now)
            setattr(d, f"{which}_confirmed_by_id", actor.id)
            return True

        auction = await self._settle(auction_id, mutate, f"confirm {which} on")
        logger.info(f"Auction {auction_id} {which} confirmed by {actor.id}")
        return auction

    async def confirm_payment(self, auction_id: str, actor_id: str) -> Auction:
        return await self._confirm(auction_id, actor_id, "payment")

    async def confirm_delivery(self, auction_id: str, actor_id: str) -> Auction:
        return await self._confirm(auction_id, actor_id, "delivery")

    async def complete_auction(self, auction_id: str) -> Auction:
        """sold -> completed once both sides have confirmed. Idempotent.

        Raises ``InvalidStateError`` while a confirmation is still missing.
        """

        def mutate(d: AuctionData, now: datetime) -> bool:
            if not d.is_settled:
                raise InvalidStateError(
                    f"Auction {auction_id} still awaits "
                    f"{'payment' if not d.is_payment_confirmed else 'delivery'} confirmation",
                    auction_id=auction_id,
                    is_payment_confirmed=d.is_payment_confirmed,
                    is_delivery_confirmed=d.is_delivery_confirmed,
                )
            return False

        return await self._settle(auction_id, mutate, "complete")
