from .auctions import (
    TRANSITIONS,
    AuctionStateMachine,
    auction_create,
    check_transition,
)
from .base import (
    get_actor,
    with_version_retry,
)
from .bids import (
    BidLedger,
    BidPage,
    minimum_bid,
)
from .settlement import SettlementTracker
from .users import (
    CascadeResult,
    UserCascadePolicy,
)
