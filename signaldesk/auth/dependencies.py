"""
FastAPI dependencies for authentication and tier gating.
"""

from typing import Optional
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from signaldesk.subscriptions.access import user_has_access, get_upgrade_message
from .models import User
from .service import auth_service

# HTTP Bearer token security scheme
security = HTTPBearer(auto_error=False)


async def get_token_from_header(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Optional[str]:
    """Extract token from Authorization header"""
    if credentials:
        return credentials.credentials
    return None


async def get_token_from_cookie(request: Request) -> Optional[str]:
    """Extract token from cookie (alternative to header)"""
    return request.cookies.get("access_token")


async def get_current_user(
    token_header: Optional[str] = Depends(get_token_from_header),
    token_cookie: Optional[str] = Depends(get_token_from_cookie),
) -> Optional[User]:
    """
    Get current user from JWT token.

    Checks both Authorization header and cookie.
    Returns None if no valid token is found (for optional auth).
    """
    token = token_header or token_cookie
    if not token:
        return None
    return auth_service.resolve_token(token)


async def get_current_active_user(
    current_user: Optional[User] = Depends(get_current_user),
) -> User:
    """
    Get current active user (required authentication).

    Raises 401 if not authenticated or 403 if the account is inactive.
    """
    if not current_user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not current_user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )

    return current_user


async def get_admin_user(
    current_user: User = Depends(get_current_active_user),
) -> User:
    """
    Get current admin user (requires admin role).

    Raises 403 if user is not an admin.
    """
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )

    return current_user


def require_feature(feature: str):
    """
    Dependency factory gating an endpoint on a subscription feature.

    Usage: `user: User = Depends(require_feature("heatmap_analysis"))`
    """
    async def dependency(
        current_user: User = Depends(get_current_active_user),
    ) -> User:
        if not user_has_access(current_user, feature):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=get_upgrade_message(feature),
            )
        return current_user

    return dependency

