"""
Admin authentication for routes that register domains or create resources.
"""

import os
from typing import Optional

from fastapi import HTTPException, Header

from log import init_logger
from services.provisioning_service import get_provisioning_service

logger = init_logger(__name__)


def get_admin_token() -> Optional[str]:
    """Get the admin token from the service configuration, else the environment."""
    service = get_provisioning_service()
    if service is not None:
        return service.config.admin_token
    return os.getenv("ADMIN_TOKEN")


def verify_admin_token(
    authorization: Optional[str] = Header(None, alias="Authorization"),
):
    """
    Verify the admin token from Authorization header.

    Args:
        authorization: The Authorization header value (expected format: "Bearer <token>")

    Raises:
        HTTPException: If authentication fails
    """
    admin_token = get_admin_token()

    # If no admin token is configured, allow access (for development/testing)
    if not admin_token:
        logger.warning(
            "No ADMIN_TOKEN configured - admin routes are accessible without authentication"
        )
        return

    if not authorization:
        logger.warning("Admin access denied: Missing Authorization header")
        raise HTTPException(
            status_code=401,
            detail="Admin access required. Missing Authorization header.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # Extract token from "Bearer <token>" format
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        logger.warning("Admin access denied: Invalid Authorization header format")
        raise HTTPException(
            status_code=401,
            detail="Invalid Authorization header format. Expected: 'Bearer <token>'",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if parts[1] != admin_token:
        logger.warning("Admin access denied: Invalid token provided")
        raise HTTPException(
            status_code=403,
            detail="Invalid admin token. Access denied.",
        )

    logger.debug("Admin authentication successful")


def require_admin_token():
    """
    Dependency function that can be used in FastAPI route handlers.

    Usage:
        @router.post("/domain/register/{name}")
        async def register(name: str, _auth: None = Depends(require_admin_token())):
            ...
    """

    def dependency(authorization: Optional[str] = Header(None, alias="Authorization")):
        verify_admin_token(authorization)
        return None

    return dependency
