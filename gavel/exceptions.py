from typing import Any


class GavelError(Exception):
    """Base exception for the auction engine.

    ``context`` carries whatever the caller needs to decide whether to retry
    with corrected input (auction id, status, current price, ...).
    """

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------

class NotFoundError(GavelError):
    """Raised when an entity is absent or soft-deleted."""
    pass


class AuctionNotFound(NotFoundError):
    pass


class BidNotFound(NotFoundError):
    pass


# ---------------------------------------------------------------------------
# Invalid state
# ---------------------------------------------------------------------------

class InvalidStateError(GavelError):
    """Raised when an action is attempted against the wrong auction status."""
    pass


class AuctionNotActive(InvalidStateError):
    pass


class AuctionEnded(InvalidStateError):
    pass


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class ValidationFailure(GavelError):
    pass


class SelfBidForbidden(ValidationFailure):
    pass


class BidTooLow(ValidationFailure):
    pass


# ---------------------------------------------------------------------------
# Concurrency / authorization
# ---------------------------------------------------------------------------

class ConflictError(GavelError):
    """Raised by a store when the expected version no longer matches."""
    pass


class ConcurrencyConflict(GavelError):
    """Raised when version conflicts exhaust the retry budget."""
    pass


class ConcurrentModification(ConcurrencyConflict):
    pass


class UnauthorizedError(GavelError):
    """Raised when the actor is not permitted to perform the action."""
    pass
