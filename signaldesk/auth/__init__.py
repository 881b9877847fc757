"""
Authentication module for SignalDesk.

Provides JWT-based authentication with:
- User registration and login by email
- Password hashing with bcrypt
- JWT token generation and validation
- Role (admin/user) and subscription-tier gating
"""

from .models import User, UserCreate, UserLogin, UserRole, Token, TokenData
from .service import AuthService, auth_service
from .dependencies import (
    get_current_user, get_current_active_user, get_admin_user, require_feature,
)

__all__ = [
    "User",
    "UserCreate",
    "UserLogin",
    "UserRole",
    "Token",
    "TokenData",
    "AuthService",
    "auth_service",
    "get_current_user",
    "get_current_active_user",
    "get_admin_user",
    "require_feature",
]
