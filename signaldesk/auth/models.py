"""
Authentication data models using Pydantic.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, EmailStr, Field, field_validator

from signaldesk.subscriptions.models import SubscriptionTier, SubscriptionStatus


class UserRole(str, Enum):
    ADMIN = "admin"
    USER = "user"


def _check_password_strength(v: str) -> str:
    if not any(c.isupper() for c in v):
        raise ValueError('Password must contain at least one uppercase letter')
    if not any(c.islower() for c in v):
        raise ValueError('Password must contain at least one lowercase letter')
    if not any(c.isdigit() for c in v):
        raise ValueError('Password must contain at least one digit')
    return v


class UserBase(BaseModel):
    """Base user model"""
    email: EmailStr
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)

    @field_validator('email')
    @classmethod
    def email_lowercase(cls, v: str) -> str:
        return v.lower()


class UserCreate(UserBase):
    """User registration model"""
    password: str = Field(..., min_length=8, max_length=100)

    @field_validator('password')
    @classmethod
    def password_strength(cls, v: str) -> str:
        return _check_password_strength(v)


class UserLogin(BaseModel):
    """User login model"""
    email: str
    password: str


class User(UserBase):
    """User model returned from API"""
    id: str
    role: UserRole = UserRole.USER
    is_active: bool = True
    subscription_tier: Optional[SubscriptionTier] = None
    subscription_status: Optional[SubscriptionStatus] = None
    subscription_ends_at: Optional[datetime] = None
    created_at: datetime
    last_login_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class UserInDB(User):
    """User model with password hash (internal use only)"""
    password_hash: str


class Token(BaseModel):
    """JWT token response"""
    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds until expiration
    user: User


class TokenData(BaseModel):
    """Data decoded from JWT token"""
    email: Optional[str] = None
    user_id: Optional[str] = None
    role: UserRole = UserRole.USER
    exp: Optional[datetime] = None


class PasswordChange(BaseModel):
    """Password change request"""
    current_password: str
    new_password: str = Field(..., min_length=8, max_length=100)

    @field_validator('new_password')
    @classmethod
    def password_strength(cls, v: str) -> str:
        return _check_password_strength(v)


class RoleUpdate(BaseModel):
    role: UserRole


class SubscriptionUpdate(BaseModel):
    """Admin or billing update of a user's plan"""
    tier: Optional[SubscriptionTier] = None
    status: Optional[SubscriptionStatus] = None
    ends_at: Optional[datetime] = None
