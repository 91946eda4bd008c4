"""
Internal endpoints for the scheduler/ops, listing and user-management services.
Secured with GAVEL_INTERNAL_API_KEY, not exposed publicly.
"""

from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import AwareDatetime, BaseModel

from gavel.engine import Engine
from gavel.exceptions import GavelError
from gavel.models.operations import CascadeResult, auction_create
from gavel.sweeper import ReminderResult, SweepResult
from gavel.utils import log

from .auctions import AuctionResponse, auction_to_response
from .dependencies import current_user_id, engine_get, http_error, require_internal_api_key

logger = log.get_logger(__name__)

router = APIRouter(
    prefix="/internal",
    tags=["internal"],
    dependencies=[Depends(require_internal_api_key)],
)


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------

class CreateAuctionRequest(BaseModel):
    seller_id: str
    title: str = ""
    description: Optional[str] = None
    starting_price: Decimal
    bid_increment: Decimal = Decimal("0")
    start_date: AwareDatetime
    end_date: AwareDatetime


class DeletionBlockersResponse(BaseModel):
    user_id: str
    blockers: List[str]
    can_delete: bool


# ---------------------------------------------------------------------------
# Ops
# ---------------------------------------------------------------------------

@router.get("/health")
async def route_health(engine: Engine = Depends(engine_get)):
    await engine.store.check()
    return {"status": "ok", "sweep_running": engine.sweeper.is_running}


@router.post("/sweep", response_model=SweepResult)
async def route_run_sweep(engine: Engine = Depends(engine_get)):
    """Run the closing sweep now. Safe to call at any time."""
    return await engine.sweeper.run_closing_sweep()


@router.post("/reminders", response_model=ReminderResult)
async def route_send_reminders(engine: Engine = Depends(engine_get)):
    return await engine.sweeper.send_ending_reminders()


# ---------------------------------------------------------------------------
# Listing service
# ---------------------------------------------------------------------------

@router.post("/auctions", response_model=AuctionResponse, status_code=201)
async def route_auction_create(body: CreateAuctionRequest, engine: Engine = Depends(engine_get)):
    try:
        auction = await auction_create(
            engine.store,
            seller_id=body.seller_id,
            starting_price=body.starting_price,
            start_date=body.start_date,
            end_date=body.end_date,
            title=body.title,
            description=body.description,
            bid_increment=body.bid_increment,
        )
    except GavelError as e:
        raise http_error(e)
    return auction_to_response(auction)


# ---------------------------------------------------------------------------
# User-management service
# ---------------------------------------------------------------------------

@router.get("/users/{user_id}/deletion-blockers", response_model=DeletionBlockersResponse)
async def route_deletion_blockers(user_id: str, engine: Engine = Depends(engine_get)):
    blockers = await engine.cascade.deletion_blockers(user_id)
    return DeletionBlockersResponse(user_id=user_id, blockers=blockers, can_delete=not blockers)


@router.post("/users/{user_id}/cascade", response_model=CascadeResult)
async def route_user_cascade(
    user_id: str,
    actor_id: str = Depends(current_user_id),
    engine: Engine = Depends(engine_get),
):
    try:
        return await engine.cascade.apply(user_id, actor_id)
    except GavelError as e:
        raise http_error(e)
