"""
Admin authorization dependency.

Session handling lives outside this service; callers reach the admin API
through a gateway that forwards the shared admin token. Every admin router
declares `require_admin` as a router-level dependency so the check runs before
any database or Strava access.
"""
import hmac
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader
from starlette.requests import Request

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

ADMIN_TOKEN_HEADER = "X-Admin-Token"

admin_token_header = APIKeyHeader(name=ADMIN_TOKEN_HEADER, auto_error=False)


@dataclass(frozen=True)
class AdminPrincipal:
    """The authenticated caller as seen by the sync core."""
    is_admin: bool


def is_admin_token(token: Optional[str]) -> bool:
    """Constant-time comparison against the configured admin token."""
    if not token or not settings.ADMIN_TOKEN:
        return False
    return hmac.compare_digest(token.encode("utf-8"), settings.ADMIN_TOKEN.encode("utf-8"))


def require_admin(
    request: Request,
    admin_token: Optional[str] = Security(admin_token_header)
) -> AdminPrincipal:
    """
    Reject non-admin callers with 401.

    The response never says whether the targeted club exists.

    Raises:
        HTTPException: 401 if the admin token is missing or wrong
    """
    if not settings.ADMIN_TOKEN:
        logger.warning("ADMIN_TOKEN not configured - rejecting admin request")

    if not is_admin_token(admin_token):
        client = request.client.host if request.client else "unknown"
        logger.warning(f"Rejected admin request to {request.url.path} from {client}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Admin access required"
        )

    return AdminPrincipal(is_admin=True)
