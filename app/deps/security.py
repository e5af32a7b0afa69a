"""Security dependencies for FastAPI routes.

Operator endpoints (cleanup, intervention resolution, maintenance and
recovery) require the X-Admin-Token header. The caller may name itself with
X-Operator; the name is recorded on resolutions and maintenance windows.
"""

import hmac
import os

import structlog
from fastapi import HTTPException, Request, status

logger = structlog.get_logger(__name__)

DEFAULT_OPERATOR = "operator"


def require_admin_token(request: Request) -> str:
    """
    Require a valid admin token. Returns the operator name.

    - hmac.compare_digest() for constant-time comparison
    - 401 for a missing token, 403 for an invalid or unconfigured token

    Usage:
        @router.post("/jobs/cleanup")
        async def cleanup(..., operator: str = Depends(require_admin_token)):
            ...
    """
    admin_token = os.environ.get("ADMIN_TOKEN")
    if not admin_token:
        logger.warning("admin_token_not_configured", path=request.url.path)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="ADMIN_TOKEN not configured. Contact system administrator.",
        )

    provided_token = request.headers.get("X-Admin-Token")
    if not provided_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Admin token required. Provide X-Admin-Token header.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not hmac.compare_digest(provided_token.encode(), admin_token.encode()):
        logger.warning(
            "admin_token_invalid",
            path=request.url.path,
            client=request.client.host if request.client else "unknown",
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid admin token",
        )

    return request.headers.get("X-Operator") or DEFAULT_OPERATOR
