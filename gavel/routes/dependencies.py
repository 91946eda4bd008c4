from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import Header, HTTPException, Request, status

from gavel import conf
from gavel.engine import Engine
from gavel.exceptions import (
    ConcurrencyConflict,
    ConflictError,
    GavelError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
    ValidationFailure,
)
from gavel.utils import log

logger = log.get_logger(__name__)

_STATUS_BY_ERROR = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidStateError, status.HTTP_409_CONFLICT),
    (ValidationFailure, status.HTTP_400_BAD_REQUEST),
    (ConcurrencyConflict, status.HTTP_409_CONFLICT),
    (ConflictError, status.HTTP_409_CONFLICT),
    (UnauthorizedError, status.HTTP_403_FORBIDDEN),
)


def engine_get(request: Request) -> Engine:
    return request.app.state.engine


async def current_user_id(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> str:
    """The acting user, as asserted by the authentication gateway."""
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header")
    return x_user_id


async def require_internal_api_key(
    x_internal_api_key: Optional[str] = Header(None, alias="X-Internal-API-Key"),
):
    expected = conf.get_internal_api_key()
    if not expected:
        # No key configured, allow all internal callers
        return
    if x_internal_api_key != expected:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid internal API key")


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    return value


def http_error(e: GavelError) -> HTTPException:
    """Translate a domain error into an HTTPException carrying its context."""
    code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, error_code in _STATUS_BY_ERROR:
        if isinstance(e, error_type):
            code = error_code
            break
    if code >= 500:
        logger.error(f"Unmapped engine error {type(e).__name__}: {e.message}")
    detail: Dict[str, Any] = {
        "error": type(e).__name__,
        "message": e.message,
        "context": {k: _jsonable(v) for k, v in e.context.items()},
    }
    return HTTPException(status_code=code, detail=detail)
