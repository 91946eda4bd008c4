"""
Tests for the user-deletion cascade policy.
"""

from datetime import timedelta

import pytest

from gavel.exceptions import InvalidStateError, UnauthorizedError
from gavel.models.entities import Auction, Bid


class TestDeletionBlockers:

    @pytest.mark.asyncio
    async def test_no_activity_means_no_blockers(self, engine, users):
        assert await engine.cascade.deletion_blockers("buyer_c") == []

    @pytest.mark.asyncio
    async def test_upcoming_and_active_auctions_block_seller(self, engine, users, new_auction):
        await new_auction(starts_in=timedelta(hours=1), ends_in=timedelta(hours=2))
        await new_auction()

        blockers = await engine.cascade.deletion_blockers("seller")

        assert "User has upcoming auctions" in blockers
        assert "User has active auctions" in blockers

    @pytest.mark.asyncio
    async def test_leading_bidder_is_blocked(self, engine, users, new_auction):
        auction = await new_auction()
        await engine.ledger.place_bid(auction.id, "buyer_a", "150")
        await engine.ledger.place_bid(auction.id, "buyer_b", "160")

        assert await engine.cascade.deletion_blockers("buyer_a") == []
        assert await engine.cascade.deletion_blockers("buyer_b") == [
            "User is the highest bidder on an active auction"
        ]

    @pytest.mark.asyncio
    async def test_unsettled_sale_blocks_both_sides(self, engine, clock, users, new_auction):
        auction = await new_auction()
        await engine.ledger.place_bid(auction.id, "buyer_a", "150")
        clock.advance(hours=1)

        assert "User has sold auctions awaiting completion" in await engine.cascade.deletion_blockers("seller")
        assert "User has won auctions awaiting completion" in await engine.cascade.deletion_blockers("buyer_a")

        await engine.settlement.confirm_payment(auction.id, "seller")
        await engine.settlement.confirm_delivery(auction.id, "buyer_a")

        assert await engine.cascade.deletion_blockers("seller") == []
        assert await engine.cascade.deletion_blockers("buyer_a") == []


class TestApplyCascade:

    @pytest.mark.asyncio
    async def test_blocked_user_is_refused(self, engine, users, new_auction):
        await new_auction()

        with pytest.raises(InvalidStateError) as exc_info:
            await engine.cascade.apply("seller", "admin")
        assert exc_info.value.context["blockers"] == ["User has active auctions"]

    @pytest.mark.asyncio
    async def test_only_self_or_admin(self, engine, users):
        with pytest.raises(UnauthorizedError):
            await engine.cascade.apply("buyer_c", "buyer_a")

    @pytest.mark.asyncio
    async def test_soft_deletes_auctions_and_non_leading_bids(self, engine, clock, users, new_auction):
        auction = await new_auction()
        await engine.ledger.place_bid(auction.id, "buyer_a", "150")
        outbid = await engine.ledger.place_bid(auction.id, "buyer_b", "160")
        winning = await engine.ledger.place_bid(auction.id, "buyer_a", "170")
        unsold = await new_auction(seller_id="buyer_b")
        clock.advance(hours=1)
        await engine.sweeper.run_closing_sweep()

        result = await engine.cascade.apply("buyer_b")

        assert result.auctions_deleted == [unsold.id]
        assert result.bids_deleted == [outbid.id]
        assert (await engine.store.get(Auction, unsold.id)).data.is_deleted is True
        assert (await engine.store.get(Bid, outbid.id)).data.deleted_by_id == "buyer_b"
        assert (await engine.store.get(Bid, winning.id)).data.is_deleted is False

    @pytest.mark.asyncio
    async def test_leading_bid_on_finished_auction_is_kept(self, engine, clock, users, new_auction):
        auction = await new_auction()
        winning = await engine.ledger.place_bid(auction.id, "buyer_a", "150")
        clock.advance(hours=1)
        await engine.settlement.confirm_payment(auction.id, "seller")
        await engine.settlement.confirm_delivery(auction.id, "buyer_a")

        result = await engine.cascade.apply("buyer_a")

        assert result.bids_kept == [winning.id]
        assert (await engine.store.get(Bid, winning.id)).data.is_deleted is False
