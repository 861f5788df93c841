"""
Shared FastAPI dependencies.
"""

import logging

from fastapi import Header, HTTPException, Request

from app.config import settings
from app.services.container import ServiceContainer

logger = logging.getLogger(__name__)


def get_services(request: Request) -> ServiceContainer:
    """
    Return the service container built at startup.

    Raises:
        HTTPException: If the application has not finished starting
    """
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Services not initialized")
    return services


async def verify_bearer_token(
    request: Request,
    authorization: str = Header(None)
) -> None:
    """
    Verify the Bearer token on debug endpoints.

    Raises:
        HTTPException: 401 when the header is missing or malformed,
            403 when the token is wrong
    """
    if not authorization:
        logger.warning(f"Missing Authorization header: {request.url.path}")
        raise HTTPException(status_code=401, detail="Missing Authorization header")

    scheme, _, token = authorization.partition(" ")
    if scheme != "Bearer" or not token:
        logger.warning(f"Invalid Authorization format: {request.url.path}")
        raise HTTPException(
            status_code=401,
            detail="Invalid Authorization format. Use: Bearer <token>"
        )

    if token != settings.api_bearer_token:
        logger.warning(f"Invalid Bearer token: {request.url.path}")
        raise HTTPException(status_code=403, detail="Invalid Bearer token")
