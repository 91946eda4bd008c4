from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import AwareDatetime, Field, model_validator

from gavel.clients import BaseEntity, BaseEntityData

AuctionStatus = Literal[
    "upcoming",
    "active",
    "ended",
    "sold",
    "completed",
    "cancelled",
]

OPEN_STATUSES = ("upcoming", "active")
CLOSED_STATUSES = ("ended", "sold", "completed")
WON_STATUSES = ("sold", "completed")


class AuctionData(BaseEntityData):
    # Ownership
    seller_id: str

    # Listing content (opaque to the engine)
    title: str = ""
    description: Optional[str] = None

    # Pricing
    starting_price: Decimal = Field(ge=0)
    current_price: Decimal = Field(ge=0)
    bid_increment: Decimal = Field(default=Decimal("0"), ge=0)

    # Schedule
    start_date: AwareDatetime
    end_date: AwareDatetime  # may be extended once by the first bid
    extensions_count: int = 0

    status: AuctionStatus = "upcoming"

    # Denormalized leading bid (written in the same commit as each bid)
    highest_bid_id: Optional[str] = None
    highest_bidder_id: Optional[str] = None
    bid_count: int = 0

    # Outcome
    winner_id: Optional[str] = None
    ended_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    # Settlement
    is_payment_confirmed: bool = False
    payment_confirmed_at: Optional[datetime] = None
    payment_confirmed_by_id: Optional[str] = None
    is_delivery_confirmed: bool = False
    delivery_confirmed_at: Optional[datetime] = None
    delivery_confirmed_by_id: Optional[str] = None
    completed_at: Optional[datetime] = None

    restored_by_id: Optional[str] = None
    ending_reminder_sent_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _check_prices(self):
        if self.current_price < self.starting_price:
            raise ValueError("current_price cannot be below starting_price")
        return self

    @property
    def is_settled(self) -> bool:
        return self.is_payment_confirmed and self.is_delivery_confirmed


class Auction(BaseEntity[AuctionData]):
    collection_name = "auctions"
