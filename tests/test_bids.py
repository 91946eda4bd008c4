"""
Tests for bid placement: validation order, the outbid cascade, first-bid
extension and behaviour under concurrent bidders.
"""

import asyncio
import random
from datetime import timedelta
from decimal import Decimal

import pytest

from gavel.clients.memory import MemoryStore
from gavel.conf import EngineConf
from gavel.engine import build_engine
from gavel.events import NewBid, Outbid
from gavel.exceptions import (
    AuctionEnded,
    AuctionNotActive,
    AuctionNotFound,
    BidTooLow,
    ConcurrentModification,
    SelfBidForbidden,
    UnauthorizedError,
    ValidationFailure,
)
from gavel.models.entities import Auction, Bid
from gavel.models.operations import auction_create

from conftest import FakeClock, FlakyStore, RecordingHandler, seed_users


class TestPlaceBidScenario:

    @pytest.mark.asyncio
    async def test_walkthrough(self, engine, users, new_auction, events):
        auction = await new_auction(starting_price="100", ends_in=timedelta(minutes=5))

        with pytest.raises(BidTooLow):
            await engine.ledger.place_bid(auction.id, "buyer_a", Decimal("50"))

        with pytest.raises(SelfBidForbidden):
            await engine.ledger.place_bid(auction.id, "seller", Decimal("150"))

        bid_a = await engine.ledger.place_bid(auction.id, "buyer_a", Decimal("150"))
        current = await engine.machine.get(auction.id)
        assert current.data.current_price == Decimal("150")
        assert current.data.highest_bid_id == bid_a.id
        assert current.data.highest_bidder_id == "buyer_a"

        bid_b = await engine.ledger.place_bid(auction.id, "buyer_b", Decimal("200"))
        current = await engine.machine.get(auction.id)
        assert current.data.current_price == Decimal("200")
        assert current.data.highest_bid_id == bid_b.id
        assert current.data.bid_count == 2

        stored_a = await engine.store.get(Bid, bid_a.id)
        assert stored_a.data.is_outbid is True
        assert stored_a.data.outbid_at is not None
        assert (await engine.store.get(Bid, bid_b.id)).data.is_outbid is False

        assert [e.bid_id for e in events.of_kind(NewBid)] == [bid_a.id, bid_b.id]
        [outbid] = events.of_kind(Outbid)
        assert outbid.bid_id == bid_a.id
        assert outbid.bidder_id == "buyer_a"
        assert outbid.new_amount == Decimal("200")


class TestBidValidation:

    @pytest.mark.asyncio
    async def test_bid_equal_to_current_price_is_too_low(self, engine, users, new_auction):
        auction = await new_auction(starting_price="100")

        with pytest.raises(BidTooLow) as exc_info:
            await engine.ledger.place_bid(auction.id, "buyer_a", "100")

        assert "100" in exc_info.value.message
        assert exc_info.value.context["minimum_amount"] == "100"

    @pytest.mark.asyncio
    async def test_increment_sets_minimum(self, engine, users, new_auction):
        auction = await new_auction(starting_price="100", bid_increment="10")

        with pytest.raises(BidTooLow) as exc_info:
            await engine.ledger.place_bid(auction.id, "buyer_a", "105")
        assert "110" in exc_info.value.message

        bid = await engine.ledger.place_bid(auction.id, "buyer_a", "110")
        assert bid.data.amount == Decimal("110")

    @pytest.mark.asyncio
    async def test_increment_lost_to_rounding_still_requires_higher_bid(self, engine, users, new_auction):
        auction = await new_auction(starting_price="100", bid_increment="0.0000000000000000000000000001")

        with pytest.raises(BidTooLow) as exc_info:
            await engine.ledger.place_bid(auction.id, "buyer_a", "100")
        assert exc_info.value.context["minimum_amount"] == "100"
        assert exc_info.value.context["inclusive"] is False

        assert (await engine.store.get(Auction, auction.id)).data.bid_count == 0

    @pytest.mark.asyncio
    async def test_increment_not_enforced(self, store, clock, users):
        engine = build_engine(store=store, conf=EngineConf(enforce_bid_increment=False), clock=clock)
        auction = await auction_create(
            store, "seller", "100", clock() - timedelta(minutes=1), clock() + timedelta(minutes=5), bid_increment="10"
        )

        bid = await engine.ledger.place_bid(auction.id, "buyer_a", "100.01")
        assert bid.data.amount == Decimal("100.01")

    @pytest.mark.asyncio
    async def test_non_finite_amount_is_too_low(self, engine, users, new_auction):
        auction = await new_auction()

        with pytest.raises(BidTooLow):
            await engine.ledger.place_bid(auction.id, "buyer_a", float("nan"))
        with pytest.raises(BidTooLow):
            await engine.ledger.place_bid(auction.id, "buyer_a", "Infinity")

    @pytest.mark.asyncio
    async def test_unparseable_amount(self, engine, users, new_auction):
        auction = await new_auction()

        with pytest.raises(ValidationFailure):
            await engine.ledger.place_bid(auction.id, "buyer_a", "a lot")

    @pytest.mark.asyncio
    async def test_unknown_bidder(self, engine, users, new_auction):
        auction = await new_auction()

        with pytest.raises(UnauthorizedError):
            await engine.ledger.place_bid(auction.id, "nobody", "150")

    @pytest.mark.asyncio
    async def test_missing_auction_reported_before_unknown_bidder(self, engine, users):
        with pytest.raises(AuctionNotFound):
            await engine.ledger.place_bid("missing", "nobody", "150")

    @pytest.mark.asyncio
    async def test_missing_and_deleted_auctions(self, engine, users, new_auction):
        with pytest.raises(AuctionNotFound):
            await engine.ledger.place_bid("missing", "buyer_a", "150")

        auction = await new_auction()
        await engine.machine.mark_deleted(auction.id, "admin")
        with pytest.raises(AuctionNotFound):
            await engine.ledger.place_bid(auction.id, "buyer_a", "150")

    @pytest.mark.asyncio
    async def test_upcoming_auction_not_active(self, engine, users, new_auction):
        auction = await new_auction(starts_in=timedelta(minutes=30), ends_in=timedelta(hours=2))

        with pytest.raises(AuctionNotActive):
            await engine.ledger.place_bid(auction.id, "buyer_a", "150")

    @pytest.mark.asyncio
    async def test_upcoming_auction_is_activated_lazily(self, engine, clock, users, new_auction):
        auction = await new_auction(starts_in=timedelta(minutes=1), ends_in=timedelta(hours=2))
        assert auction.data.status == "upcoming"

        clock.advance(minutes=2)
        await engine.ledger.place_bid(auction.id, "buyer_a", "150")

        assert (await engine.machine.get(auction.id)).data.status == "active"

    @pytest.mark.asyncio
    async def test_cancelled_auction_not_active(self, engine, users, new_auction):
        auction = await new_auction()
        await engine.machine.cancel(auction.id, "seller")

        with pytest.raises(AuctionNotActive):
            await engine.ledger.place_bid(auction.id, "buyer_a", "150")

    @pytest.mark.asyncio
    async def test_bid_after_end_closes_auction(self, engine, clock, users, new_auction):
        auction = await new_auction(ends_in=timedelta(minutes=5))
        await engine.ledger.place_bid(auction.id, "buyer_a", "150")

        clock.advance(minutes=30)
        with pytest.raises(AuctionEnded):
            await engine.ledger.place_bid(auction.id, "buyer_b", "200")

        closed = await engine.store.get(Auction, auction.id)
        assert closed.data.status == "sold"
        assert closed.data.winner_id == "buyer_a"

    @pytest.mark.asyncio
    async def test_end_passing_after_read_still_closes(self, engine, clock, users, new_auction, monkeypatch):
        auction = await new_auction(ends_in=timedelta(minutes=5))
        await engine.ledger.place_bid(auction.id, "buyer_a", "150")

        async def read_before_end(auction_id):
            return await engine.store.get(Auction, auction_id)

        monkeypatch.setattr(engine.machine, "get", read_before_end)
        clock.advance(minutes=30)
        with pytest.raises(AuctionEnded):
            await engine.ledger.place_bid(auction.id, "buyer_b", "200")

        closed = await engine.store.get(Auction, auction.id)
        assert closed.data.status == "sold"
        assert closed.data.winner_id == "buyer_a"

    @pytest.mark.asyncio
    async def test_seller_check_precedes_amount_check(self, engine, users, new_auction):
        auction = await new_auction()

        with pytest.raises(SelfBidForbidden):
            await engine.ledger.place_bid(auction.id, "seller", "1")

    @pytest.mark.asyncio
    async def test_state_check_precedes_seller_check(self, engine, clock, users, new_auction):
        auction = await new_auction()
        clock.advance(minutes=10)

        with pytest.raises(AuctionEnded):
            await engine.ledger.place_bid(auction.id, "seller", "150")


class TestAntiSniping:

    @pytest.mark.asyncio
    async def test_first_bid_extends_once(self, engine, clock, users, new_auction):
        auction = await new_auction(ends_in=timedelta(minutes=2))

        await engine.ledger.place_bid(auction.id, "buyer_a", "150")
        extended = await engine.store.get(Auction, auction.id)
        assert extended.data.end_date == clock() + timedelta(minutes=10)
        assert extended.data.extensions_count == 1

        clock.advance(minutes=8)
        await engine.ledger.place_bid(auction.id, "buyer_b", "200")
        after = await engine.store.get(Auction, auction.id)
        assert after.data.end_date == extended.data.end_date
        assert after.data.extensions_count == 1

    @pytest.mark.asyncio
    async def test_first_bid_never_shortens(self, engine, clock, users, new_auction):
        auction = await new_auction(ends_in=timedelta(days=3))

        await engine.ledger.place_bid(auction.id, "buyer_a", "150")

        after = await engine.store.get(Auction, auction.id)
        assert after.data.end_date == auction.data.end_date
        assert after.data.extensions_count == 0

    @pytest.mark.asyncio
    async def test_disabled(self, store, clock, users):
        engine = build_engine(store=store, conf=EngineConf(anti_sniping_enabled=False), clock=clock)
        auction = await auction_create(
            store, "seller", "100", clock() - timedelta(minutes=1), clock() + timedelta(minutes=2)
        )

        await engine.ledger.place_bid(auction.id, "buyer_a", "150")

        assert (await store.get(Auction, auction.id)).data.end_date == auction.data.end_date


class TestConcurrentBids:

    @pytest.mark.asyncio
    async def test_final_price_is_max_accepted(self):
        store = MemoryStore(latency=0.001)
        clock = FakeClock()
        engine = build_engine(store=store, conf=EngineConf(), clock=clock)
        await seed_users(store)
        auction = await auction_create(
            store, "seller", "100", clock() - timedelta(minutes=1), clock() + timedelta(hours=1)
        )

        amounts = [Decimal(a) for a in range(110, 310, 10)]
        random.Random(7).shuffle(amounts)
        bidders = ["buyer_a", "buyer_b", "buyer_c"]
        results = await asyncio.gather(
            *[engine.ledger.place_bid(auction.id, bidders[i % 3], amount) for i, amount in enumerate(amounts)],
            return_exceptions=True,
        )

        accepted = [r for r in results if isinstance(r, Bid)]
        rejected = [r for r in results if not isinstance(r, Bid)]
        assert accepted
        assert all(isinstance(r, (BidTooLow, ConcurrentModification)) for r in rejected)

        final = await store.get(Auction, auction.id)
        assert final.data.current_price == max(b.data.amount for b in accepted)
        assert final.data.bid_count == len(accepted)

        bids = await store.find(Bid, auction_id=auction.id)
        leading = [b for b in bids if not b.data.is_outbid]
        assert len(leading) == 1
        assert leading[0].id == final.data.highest_bid_id

    @pytest.mark.asyncio
    async def test_seller_never_wins_a_race(self):
        store = MemoryStore(latency=0.001)
        clock = FakeClock()
        engine = build_engine(store=store, conf=EngineConf(), clock=clock)
        await seed_users(store)
        auction = await auction_create(
            store, "seller", "100", clock() - timedelta(minutes=1), clock() + timedelta(hours=1)
        )

        results = await asyncio.gather(
            engine.ledger.place_bid(auction.id, "buyer_a", "150"),
            engine.ledger.place_bid(auction.id, "seller", "500"),
            engine.ledger.place_bid(auction.id, "buyer_b", "160"),
            return_exceptions=True,
        )

        assert isinstance(results[1], SelfBidForbidden)
        final = await store.get(Auction, auction.id)
        assert final.data.highest_bidder_id != "seller"


class TestEventDelivery:

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_undo_bid(self, engine, users, new_auction):
        auction = await new_auction()
        recorder = RecordingHandler()

        def broken(event):
            raise RuntimeError("mail server down")

        engine.emitter.subscribe(broken)
        engine.emitter.subscribe(recorder)

        bid = await engine.ledger.place_bid(auction.id, "buyer_a", "150")

        assert (await engine.store.get(Auction, auction.id)).data.highest_bid_id == bid.id
        assert len(recorder.of_kind(NewBid)) == 1


class TestVersionConflicts:

    @pytest.mark.asyncio
    async def test_conflicting_commits_are_retried(self, clock):
        store = FlakyStore()
        engine = build_engine(store=store, conf=EngineConf(), clock=clock)
        await seed_users(store)
        auction = await auction_create(
            store, "seller", "100", clock() - timedelta(minutes=1), clock() + timedelta(hours=1)
        )
        await engine.machine.activate(auction.id)

        store.conflicts = 2
        store.commit_attempts = 0
        bid = await engine.ledger.place_bid(auction.id, "buyer_a", "150")

        assert store.commit_attempts == 3
        final = await store.get(Auction, auction.id)
        assert final.data.highest_bid_id == bid.id
        assert final.data.bid_count == 1
        assert len(await store.find(Bid, auction_id=auction.id)) == 1

    @pytest.mark.asyncio
    async def test_retry_budget_exhausted(self, clock):
        store = FlakyStore()
        engine = build_engine(store=store, conf=EngineConf(max_retries=2), clock=clock)
        await seed_users(store)
        auction = await auction_create(
            store, "seller", "100", clock() - timedelta(minutes=1), clock() + timedelta(hours=1)
        )
        await engine.machine.activate(auction.id)
        recorder = RecordingHandler()
        engine.emitter.subscribe(recorder)

        store.conflicts = 10
        store.commit_attempts = 0
        with pytest.raises(ConcurrentModification) as exc_info:
            await engine.ledger.place_bid(auction.id, "buyer_a", "150")

        assert exc_info.value.context["attempts"] == 3
        assert store.commit_attempts == 3
        unchanged = await store.get(Auction, auction.id)
        assert unchanged.data.bid_count == 0
        assert unchanged.data.current_price == Decimal("100")
        assert await store.find(Bid, auction_id=auction.id) == []
        assert recorder.of_kind(NewBid) == []
