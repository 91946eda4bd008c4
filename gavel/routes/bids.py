"""
API endpoints for a bidder's own bids.

GET    /bids/me              - the caller's bids, optionally filtered by outcome
DELETE /bids/{id}            - soft-delete a bid (bidder or admin, not on active auctions)
POST   /bids/{id}/restore    - restore a soft-deleted bid (admin)
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from gavel.engine import Engine
from gavel.exceptions import GavelError
from gavel.models.operations.bids import BidderBidStatus
from gavel.utils import log

from .auctions import BidPageResponse, BidResponse, bid_to_response
from .dependencies import current_user_id, engine_get, http_error

logger = log.get_logger(__name__)

router = APIRouter(prefix="/bids", tags=["bids"])


@router.get("/me", response_model=BidPageResponse)
async def route_my_bids(
    status: Optional[BidderBidStatus] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    user_id: str = Depends(current_user_id),
    engine: Engine = Depends(engine_get),
):
    result = await engine.ledger.list_bidder_bids(user_id, status=status, page=page, limit=limit)
    return BidPageResponse(
        items=[bid_to_response(b) for b in result.items],
        total=result.total,
        page=result.page,
        limit=result.limit,
        has_next=result.has_next,
        has_prev=result.has_prev,
    )


@router.delete("/{bid_id}", response_model=BidResponse)
async def route_bid_delete(
    bid_id: str,
    user_id: str = Depends(current_user_id),
    engine: Engine = Depends(engine_get),
):
    try:
        bid = await engine.ledger.soft_delete_bid(bid_id, user_id)
    except GavelError as e:
        raise http_error(e)
    return bid_to_response(bid)


@router.post("/{bid_id}/restore", response_model=BidResponse)
async def route_bid_restore(
    bid_id: str,
    user_id: str = Depends(current_user_id),
    engine: Engine = Depends(engine_get),
):
    try:
        bid = await engine.ledger.restore_bid(bid_id, user_id)
    except GavelError as e:
        raise http_error(e)
    return bid_to_response(bid)
