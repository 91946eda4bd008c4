from fastapi import APIRouter

from gavel.utils import log

from .auctions import router as auctions_router
from .bids import router as bids_router
from .internal import router as internal_router

logger = log.get_logger(__name__)

router = APIRouter(prefix="/api")
router.include_router(auctions_router)
router.include_router(bids_router)
router.include_router(internal_router)
