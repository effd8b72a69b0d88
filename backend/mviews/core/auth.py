"""Internal access authentication for the admin surface.

Admin routes are called by operators and automation (schedulers, deploy
hooks), never by end users. They present the shared internal access token in
the ``internal_access_token`` header.
"""

import hmac

import structlog
from fastapi import HTTPException, Request, status

from mviews.core.config import settings

logger = structlog.stdlib.get_logger(__name__)

INTERNAL_TOKEN_HEADER = "internal_access_token"


async def require_internal_access(request: Request) -> None:
    """Reject requests without a valid internal access token.

    In development with no token configured, every request is allowed.
    """
    expected = settings.internal_access_token
    if not expected:
        if settings.app_env == "development":
            return
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Internal access is not configured",
        )

    provided = request.headers.get(INTERNAL_TOKEN_HEADER)
    if not provided or not hmac.compare_digest(provided, expected):
        logger.warning("internal_access_denied", path=request.url.path)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid internal access token",
        )
