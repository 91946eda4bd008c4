"""
Closing sweep: activates auctions whose start has passed and closes auctions
whose end has passed.

The sweep is the backstop for the lazy transitions in
``AuctionStateMachine.get``; it is safe to run on any interval or by hand.
Each auction is handled on its own, so one failure is logged and counted
and the rest of the batch still runs.  A conflicted auction is simply picked
up again on the next run.
"""

from datetime import timedelta
from typing import Optional

from pydantic import BaseModel

from gavel.clients import VersionedStore, Write, utcnow
from gavel.conf import EngineConf
from gavel.events import AuctionEndingSoon, EventEmitter
from gavel.exceptions import ConflictError
from gavel.models.entities.auctions import Auction
from gavel.models.entities.bids import Bid
from gavel.models.operations import AuctionStateMachine
from gavel.models.operations.base import Clock
from gavel.utils import log

logger = log.get_logger(__name__)


class SweepResult(BaseModel):
    processed: int = 0
    errored: int = 0
    activated: int = 0
    closed: int = 0
    skipped: bool = False


class ReminderResult(BaseModel):
    sent: int = 0
    errored: int = 0


class ClosingSweeper:

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
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def run_closing_sweep(self) -> SweepResult:
        """Drive every due auction through activate/close.

        ``processed`` counts auctions this run transitioned; ``errored``
        counts auctions whose transition raised.  An auction that activated
        and then failed to close counts in both.  A call made while another
        sweep is still running returns immediately with ``skipped=True``.
        """
        if self._running:
            logger.warning("Closing sweep already running, skipping")
            return SweepResult(skipped=True)

        self._running = True
        result = SweepResult()
        try:
            now = self.clock()
            due = await self.store.find_due_auctions(now)
            logger.info(f"Closing sweep starting: {len(due)} auctions due")

            for auction in due:
                activated = closed = None
                try:
                    activated = await self.machine.activate(auction.id)
                    if activated:
                        result.activated += 1
                    closed = await self.machine.close(auction.id)
                    if closed:
                        result.closed += 1
                except Exception as e:
                    result.errored += 1
                    logger.error(f"Closing sweep failed for auction {auction.id}: {e}", exc_info=True)

                if activated or closed:
                    result.processed += 1
        finally:
            self._running = False

        logger.info(
            f"Closing sweep finished: processed={result.processed} errored={result.errored} "
            f"(activated={result.activated}, closed={result.closed})"
        )
        return result

    async def send_ending_reminders(self) -> ReminderResult:
        """Publish one ``AuctionEndingSoon`` per active auction that ends
        within the reminder window.

        The send is recorded on the auction with a versioned write before the
        event goes out, so a second run does not repeat it.
        """
        now = self.clock()
        horizon = now + timedelta(minutes=self.conf.reminder_window_minutes)
        result = ReminderResult()

        for auction in await self.store.find(Auction, status="active", is_deleted=False):
            d = auction.data
            if d.ending_reminder_sent_at is not None or not (now < d.end_date <= horizon):
                continue
            try:
                version = auction.version
                d.ending_reminder_sent_at = now
                await self.store.commit([Write.update(auction, version)])
            except ConflictError:
                # Changed under us (new bid, close); the next run re-evaluates it.
                logger.debug(f"Ending reminder for auction {auction.id} deferred by a concurrent write")
                continue
            except Exception as e:
                result.errored += 1
                logger.error(f"Ending reminder failed for auction {auction.id}: {e}", exc_info=True)
                continue

            bids = await self.store.find(Bid, auction_id=auction.id, is_deleted=False)
            bidder_ids = sorted({b.data.bidder_id for b in bids})
            await self.emitter.emit(
                AuctionEndingSoon(auction_id=auction.id, end_date=d.end_date, bidder_ids=bidder_ids)
            )
            result.sent += 1

        logger.info(f"Ending reminders sent: {result.sent} (errored={result.errored})")
        return result
