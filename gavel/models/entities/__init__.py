from .auctions import Auction, AuctionData, AuctionStatus
from .bids import Bid, BidData
from .users import User, UserData
