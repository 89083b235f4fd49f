"""Authentication dependencies for FastAPI."""

import logging
import secrets
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from cortex_insights.core.config import get_settings

logger = logging.getLogger(__name__)

# HTTP Bearer scheme for Authorization header
security = HTTPBearer(auto_error=False)

# Identity used for admin API key callers
SYSTEM_ADMIN_ID = "00000000-0000-0000-0000-000000000001"


class AuthContext:
    """Context object containing authenticated caller info."""

    def __init__(self, user_id: str, token: str, is_admin: bool = False):
        self.user_id = user_id
        self.token = token
        self.is_admin = is_admin


def _is_admin_key(x_api_key: Optional[str]) -> bool:
    admin_key = get_settings().ADMIN_API_KEY
    if not x_api_key or not admin_key:
        return False
    return secrets.compare_digest(x_api_key, admin_key)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> Optional[AuthContext]:
    """
    Extract and validate the current caller from the request.

    Supports two authentication methods:
    1. Supabase JWT tokens (Bearer auth) - for end users
    2. Admin API key (X-API-Key header) - for internal diagnostic tools

    Returns None if no valid auth is present.
    """
    if _is_admin_key(x_api_key):
        logger.debug("Authenticated via admin API key")
        return AuthContext(user_id=SYSTEM_ADMIN_ID, token="api-key", is_admin=True)

    if not credentials:
        return None

    token = credentials.credentials

    try:
        from cortex_insights.db.supabase_client import get_supabase

        # Validates the JWT signature and expiration
        auth_response = get_supabase().auth.get_user(token)
        if not auth_response or not auth_response.user:
            return None

        return AuthContext(user_id=str(auth_response.user.id), token=token)

    except Exception as e:
        logger.warning(f"Auth error: {e}")
        return None


async def require_auth(
    auth: Optional[AuthContext] = Depends(get_current_user),
) -> AuthContext:
    """Require authentication. Raises 401 if not authenticated."""
    if not auth:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return auth
