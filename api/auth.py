"""
API Authentication for the Strategy Command Center.

Single shared bearer token read from the CC_API_TOKEN env var.
Without this env var, auth is disabled (development mode).

Token extraction order:
1. Authorization: Bearer <token> header
2. X-API-Token header

Usage:
    from api.auth import require_auth

    router = APIRouter(dependencies=[Depends(require_auth)])
"""

import logging
import os
import secrets

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

logger = logging.getLogger(__name__)

# Security scheme for OpenAPI docs
security = HTTPBearer(auto_error=False)


def _get_token_from_env() -> str | None:
    """Get the expected token from environment."""
    return os.environ.get("CC_API_TOKEN")


def _get_token_from_request(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:]  # Strip "Bearer "

    x_token = request.headers.get("X-API-Token")
    if x_token:
        return x_token

    return None


async def require_auth(
    request: Request, credentials: HTTPAuthorizationCredentials | None = Depends(security)
) -> str:
    """
    Dependency that requires a valid bearer token.

    Returns the validated token on success.
    Raises HTTPException 401 on failure.
    If CC_API_TOKEN is unset, WARNS but allows (development mode).
    """
    expected_token = _get_token_from_env()
    if not expected_token:
        logger.warning("CC_API_TOKEN not set - authentication disabled!")
        return "auth_disabled"

    provided_token = _get_token_from_request(request)
    if not provided_token:
        logger.warning("Auth failed: no token provided for %s", request.url.path)
        raise HTTPException(
            status_code=401,
            detail="Authentication required. Provide Bearer token in Authorization header.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # Constant-time comparison
    if not secrets.compare_digest(provided_token, expected_token):
        logger.warning("Auth failed: invalid token for %s", request.url.path)
        raise HTTPException(
            status_code=401,
            detail="Invalid authentication token.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return provided_token


def is_auth_enabled() -> bool:
    """Check if authentication is configured."""
    return bool(_get_token_from_env())
