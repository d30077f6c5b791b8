"""
Admin authentication - HS256 bearer JWTs carrying role=admin.
Tokens are minted offline with scripts/create_admin_token.py.
"""
import logging

import jwt as pyjwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from leadgate.config import get_settings

logger = logging.getLogger(__name__)
bearer_scheme = HTTPBearer()


async def get_current_admin(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> dict:
    """Dependency that verifies the bearer token and requires the admin role."""
    secret = get_settings().admin_jwt_secret
    if not secret:
        logger.error("ADMIN_JWT_SECRET not configured - admin API disabled")
        raise HTTPException(status_code=503, detail="Admin API not configured")

    try:
        payload = pyjwt.decode(credentials.credentials, secret, algorithms=["HS256"])
    except pyjwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except pyjwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    if payload.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")
    return payload
