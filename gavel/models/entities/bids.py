from datetime import datetime
from decimal import Decimal
from typing import Optional

from gavel.clients import BaseEntity, BaseEntityData


class BidData(BaseEntityData):
    auction_id: str
    bidder_id: str
    amount: Decimal
    placed_at: datetime
    is_outbid: bool = False
    outbid_at: Optional[datetime] = None


class Bid(BaseEntity[BidData]):
    collection_name = "bids"
