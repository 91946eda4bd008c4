"""
API endpoints for auctions and bidding.

GET    /auctions/{id}                   - auction detail
GET    /auctions/{id}/bids              - bid history
POST   /auctions/{id}/bids              - place a bid
POST   /auctions/{id}/cancel            - cancel auction (seller before bids, admin any time)
DELETE /auctions/{id}                   - soft-delete auction
POST   /auctions/{id}/restore           - restore a soft-deleted auction (admin)
POST   /auctions/{id}/confirm-payment   - confirm payment received
POST   /auctions/{id}/confirm-delivery  - confirm delivery
GET    /auctions/{id}/stream            - SSE stream of live auction events
"""

import asyncio
import json
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from gavel.engine import Engine
from gavel.events import AuctionCancelled, AuctionCompleted, AuctionEnded, AuctionEvent
from gavel.exceptions import GavelError
from gavel.models.entities import Auction, Bid
from gavel.models.operations.bids import BidSort, SortOrder
from gavel.utils import log

from .dependencies import current_user_id, engine_get, http_error

logger = log.get_logger(__name__)

router = APIRouter(prefix="/auctions", tags=["auctions"])

STREAM_KEEPALIVE_SECONDS = 15.0


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------

class PlaceBidRequest(BaseModel):
    amount: Decimal


class BidResponse(BaseModel):
    id: str
    auction_id: str
    bidder_id: str
    amount: Decimal
    placed_at: datetime
    is_outbid: bool
    outbid_at: Optional[datetime] = None
    is_deleted: bool


class BidPageResponse(BaseModel):
    items: List[BidResponse]
    total: int
    page: int
    limit: int
    has_next: bool
    has_prev: bool


class AuctionResponse(BaseModel):
    id: str
    version: int
    seller_id: str
    title: str
    description: Optional[str] = None
    starting_price: Decimal
    current_price: Decimal
    bid_increment: Decimal
    start_date: datetime
    end_date: datetime
    extensions_count: int
    status: str
    highest_bid_id: Optional[str] = None
    highest_bidder_id: Optional[str] = None
    bid_count: int
    winner_id: Optional[str] = None
    ended_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    is_payment_confirmed: bool
    payment_confirmed_at: Optional[datetime] = None
    is_delivery_confirmed: bool
    delivery_confirmed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    is_deleted: bool


def auction_to_response(auction: Auction) -> AuctionResponse:
    d = auction.data
    return AuctionResponse(
        id=auction.id,
        version=d.version,
        seller_id=d.seller_id,
        title=d.title,
        description=d.description,
        starting_price=d.starting_price,
        current_price=d.current_price,
        bid_increment=d.bid_increment,
        start_date=d.start_date,
        end_date=d.end_date,
        extensions_count=d.extensions_count,
        status=d.status,
        highest_bid_id=d.highest_bid_id,
        highest_bidder_id=d.highest_bidder_id,
        bid_count=d.bid_count,
        winner_id=d.winner_id,
        ended_at=d.ended_at,
        cancelled_at=d.cancelled_at,
        is_payment_confirmed=d.is_payment_confirmed,
        payment_confirmed_at=d.payment_confirmed_at,
        is_delivery_confirmed=d.is_delivery_confirmed,
        delivery_confirmed_at=d.delivery_confirmed_at,
        completed_at=d.completed_at,
        is_deleted=d.is_deleted,
    )


def bid_to_response(bid: Bid) -> BidResponse:
    d = bid.data
    return BidResponse(
        id=bid.id,
        auction_id=d.auction_id,
        bidder_id=d.bidder_id,
        amount=d.amount,
        placed_at=d.placed_at,
        is_outbid=d.is_outbid,
        outbid_at=d.outbid_at,
        is_deleted=d.is_deleted,
    )


# ---------------------------------------------------------------------------
# GET /auctions/{id} - auction detail
# ---------------------------------------------------------------------------

@router.get("/{auction_id}", response_model=AuctionResponse)
async def route_auction_detail(auction_id: str, engine: Engine = Depends(engine_get)):
    """Get a single auction, with any due transition applied."""
    try:
        auction = await engine.machine.get(auction_id)
    except GavelError as e:
        raise http_error(e)
    return auction_to_response(auction)


# ---------------------------------------------------------------------------
# GET /auctions/{id}/bids - bid history
# ---------------------------------------------------------------------------

@router.get("/{auction_id}/bids", response_model=BidPageResponse)
async def route_auction_bids(
    auction_id: str,
    sort: BidSort = "amount",
    order: SortOrder = "desc",
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    engine: Engine = Depends(engine_get),
):
    """Get bid history for an auction, highest amount first by default."""
    try:
        result = await engine.ledger.list_auction_bids(
            auction_id, sort=sort, order=order, page=page, limit=limit
        )
    except GavelError as e:
        raise http_error(e)
    return BidPageResponse(
        items=[bid_to_response(b) for b in result.items],
        total=result.total,
        page=result.page,
        limit=result.limit,
        has_next=result.has_next,
        has_prev=result.has_prev,
    )


# ---------------------------------------------------------------------------
# POST /auctions/{id}/bids - place a bid
# ---------------------------------------------------------------------------

@router.post("/{auction_id}/bids", response_model=BidResponse, status_code=201)
async def route_place_bid(
    auction_id: str,
    body: PlaceBidRequest,
    user_id: str = Depends(current_user_id),
    engine: Engine = Depends(engine_get),
):
    """Place a bid on an active auction."""
    try:
        bid = await engine.ledger.place_bid(auction_id, user_id, body.amount)
    except GavelError as e:
        raise http_error(e)
    return bid_to_response(bid)


# ---------------------------------------------------------------------------
# POST /auctions/{id}/cancel - cancel auction
# ---------------------------------------------------------------------------

@router.post("/{auction_id}/cancel", response_model=AuctionResponse)
async def route_auction_cancel(
    auction_id: str,
    user_id: str = Depends(current_user_id),
    engine: Engine = Depends(engine_get),
):
    """Cancel an upcoming or active auction."""
    try:
        auction = await engine.machine.cancel(auction_id, user_id)
    except GavelError as e:
        raise http_error(e)
    return auction_to_response(auction)


# ---------------------------------------------------------------------------
# DELETE /auctions/{id}, POST /auctions/{id}/restore - soft delete
# ---------------------------------------------------------------------------

@router.delete("/{auction_id}", response_model=AuctionResponse)
async def route_auction_delete(
    auction_id: str,
    user_id: str = Depends(current_user_id),
    engine: Engine = Depends(engine_get),
):
    try:
        auction = await engine.machine.soft_delete(auction_id, user_id)
    except GavelError as e:
        raise http_error(e)
    return auction_to_response(auction)


@router.post("/{auction_id}/restore", response_model=AuctionResponse)
async def route_auction_restore(
    auction_id: str,
    user_id: str = Depends(current_user_id),
    engine: Engine = Depends(engine_get),
):
    try:
        auction = await engine.machine.restore(auction_id, user_id)
    except GavelError as e:
        raise http_error(e)
    return auction_to_response(auction)


# ---------------------------------------------------------------------------
# POST /auctions/{id}/confirm-payment, /confirm-delivery - settlement
# ---------------------------------------------------------------------------

@router.post("/{auction_id}/confirm-payment", response_model=AuctionResponse)
async def route_confirm_payment(
    auction_id: str,
    user_id: str = Depends(current_user_id),
    engine: Engine = Depends(engine_get),
):
    try:
        auction = await engine.settlement.confirm_payment(auction_id, user_id)
    except GavelError as e:
        raise http_error(e)
    return auction_to_response(auction)


@router.post("/{auction_id}/confirm-delivery", response_model=AuctionResponse)
async def route_confirm_delivery(
    auction_id: str,
    user_id: str = Depends(current_user_id),
    engine: Engine = Depends(engine_get),
):
    try:
        auction = await engine.settlement.confirm_delivery(auction_id, user_id)
    except GavelError as e:
        raise http_error(e)
    return auction_to_response(auction)


# ---------------------------------------------------------------------------
# GET /auctions/{id}/stream - SSE for live auction events
# ---------------------------------------------------------------------------

def _sse(event: str, data: str) -> str:
    return f"event: {event}\ndata: {data}\n\n"


@router.get("/{auction_id}/stream")
async def route_auction_stream(auction_id: str, engine: Engine = Depends(engine_get)):
    """Server-Sent Events stream for live auction updates.

    Sends a snapshot first, then every engine event for this auction as it
    is published.  The stream closes after the auction ends, is cancelled
    or completes.
    """
    try:
        auction = await engine.machine.get(auction_id)
    except GavelError as e:
        raise http_error(e)

    queue: asyncio.Queue = asyncio.Queue()

    def on_event(event: AuctionEvent) -> None:
        if event.auction_id == auction_id:
            queue.put_nowait(event)

    unsubscribe = engine.emitter.subscribe(on_event)

    async def event_generator():
        try:
            yield _sse("snapshot", auction_to_response(auction).model_dump_json())
            if auction.data.status not in ("upcoming", "active"):
                return
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=STREAM_KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                payload = json.loads(event.model_dump_json())
                payload["kind"] = event.kind
                yield _sse(event.kind, json.dumps(payload))
                if isinstance(event, (AuctionEnded, AuctionCancelled, AuctionCompleted)):
                    return
        finally:
            unsubscribe()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
