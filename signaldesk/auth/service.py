"""
Authentication service with JWT token management.
"""

import os
import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional, Dict, List

from jose import JWTError, jwt
from passlib.context import CryptContext

from signaldesk.subscriptions.models import SubscriptionTier, SubscriptionStatus
from .models import (
    User, UserCreate, UserInDB, UserRole, Token, TokenData, SubscriptionUpdate,
)

logger = logging.getLogger(__name__)

# Password hashing configuration
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# JWT Configuration (from environment or defaults)
JWT_SECRET = os.getenv("JWT_SECRET", "change-me-signaldesk-development-secret")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRY_HOURS = int(os.getenv("JWT_EXPIRY_HOURS", "24"))


class AuthService:
    """
    Authentication service providing:
    - User registration and storage
    - Password hashing and verification
    - JWT token generation and validation
    - Role and subscription administration

    Users are held in memory, keyed by lower-cased email.
    """

    def __init__(self, create_admin: bool = True):
        self._users: Dict[str, UserInDB] = {}

        if create_admin:
            self._create_default_admin()

    def _create_default_admin(self):
        """Create default admin user from environment variables"""
        admin_email = os.getenv("ADMIN_EMAIL", "admin@signaldesk.io").lower()
        admin_password = os.getenv("ADMIN_PASSWORD", "Changeme123")

        if admin_email in self._users:
            return
        self._users[admin_email] = UserInDB(
            id=str(uuid.uuid4()),
            email=admin_email,
            password_hash=self.hash_password(admin_password),
            role=UserRole.ADMIN,
            is_active=True,
            created_at=datetime.utcnow(),
        )
        logger.info(f"Created default admin user: {admin_email}")

    @staticmethod
    def hash_password(password: str) -> str:
        """Hash a password using bcrypt"""
        return pwd_context.hash(password)

    @staticmethod
    def verify_password(plain_password: str, hashed_password: str) -> bool:
        """Verify a password against its hash"""
        return pwd_context.verify(plain_password, hashed_password)

    @staticmethod
    def to_public(user: UserInDB) -> User:
        """Strip the password hash"""
        return User(**user.model_dump(exclude={"password_hash"}))

    def get_user(self, email: str) -> Optional[UserInDB]:
        """Get user by email"""
        return self._users.get(email.lower())

    def get_user_by_id(self, user_id: str) -> Optional[UserInDB]:
        """Get user by ID"""
        for user in self._users.values():
            if user.id == user_id:
                return user
        return None

    def authenticate_user(self, email: str, password: str) -> Optional[UserInDB]:
        """Authenticate user with email and password"""
        user = self.get_user(email)
        if not user:
            return None
        if not self.verify_password(password, user.password_hash):
            return None
        return user

    def create_user(
        self,
        user_data: UserCreate,
        role: UserRole = UserRole.USER,
        subscription_tier: Optional[SubscriptionTier] = None,
    ) -> User:
        """Create a new user"""
        email = user_data.email.lower()

        if email in self._users:
            raise ValueError(f"Email '{email}' already registered")

        user = UserInDB(
            id=str(uuid.uuid4()),
            email=email,
            first_name=user_data.first_name,
            last_name=user_data.last_name,
            password_hash=self.hash_password(user_data.password),
            role=role,
            is_active=True,
            subscription_tier=subscription_tier or SubscriptionTier.FREE,
            subscription_status=SubscriptionStatus.ACTIVE if subscription_tier else None,
            created_at=datetime.utcnow(),
        )
        self._users[email] = user

        logger.info(f"Created new user: {email} ({role.value})")
        return self.to_public(user)

    def create_access_token(
        self,
        user: UserInDB,
        expires_delta: Optional[timedelta] = None
    ) -> Token:
        """Create JWT access token for user"""
        if expires_delta is None:
            expires_delta = timedelta(hours=JWT_EXPIRY_HOURS)

        expire = datetime.utcnow() + expires_delta

        to_encode = {
            "sub": user.email,
            "user_id": user.id,
            "role": user.role.value,
            "exp": expire,
        }

        access_token = jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGORITHM)

        user.last_login_at = datetime.utcnow()

        return Token(
            access_token=access_token,
            token_type="bearer",
            expires_in=int(expires_delta.total_seconds()),
            user=self.to_public(user),
        )

    def verify_token(self, token: str) -> Optional[TokenData]:
        """Verify and decode JWT token"""
        try:
            payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
        except JWTError as e:
            logger.warning(f"JWT verification failed: {e}")
            return None

        email = payload.get("sub")
        if email is None:
            return None

        try:
            role = UserRole(payload.get("role", UserRole.USER.value))
        except ValueError:
            return None

        exp = payload.get("exp")
        return TokenData(
            email=email,
            user_id=payload.get("user_id"),
            role=role,
            exp=datetime.utcfromtimestamp(exp) if exp else None,
        )

    def resolve_token(self, token: str) -> Optional[User]:
        """Token -> current user record, or None"""
        token_data = self.verify_token(token)
        if not token_data:
            return None
        user = self.get_user(token_data.email)
        if not user:
            return None
        return self.to_public(user)

    def change_password(
        self,
        email: str,
        current_password: str,
        new_password: str
    ) -> bool:
        """Change user password"""
        user = self.authenticate_user(email, current_password)
        if not user:
            return False

        user.password_hash = self.hash_password(new_password)
        logger.info(f"Password changed for user: {email}")
        return True

    def list_users(self) -> List[User]:
        """List all users (admin only)"""
        return [self.to_public(u) for u in self._users.values()]

    def set_active(self, user_id: str, active: bool) -> Optional[User]:
        """Activate or deactivate a user account"""
        user = self.get_user_by_id(user_id)
        if not user:
            return None
        user.is_active = active
        logger.info(f"{'Activated' if active else 'Deactivated'} user: {user.email}")
        return self.to_public(user)

    def set_role(self, user_id: str, role: UserRole) -> Optional[User]:
        user = self.get_user_by_id(user_id)
        if not user:
            return None
        user.role = role
        logger.info(f"Role for {user.email} set to {role.value}")
        return self.to_public(user)

    def update_subscription(
        self,
        user_id: str,
        update: SubscriptionUpdate,
    ) -> Optional[User]:
        """Apply a plan change (tier, billing status, end date)"""
        user = self.get_user_by_id(user_id)
        if not user:
            return None

        fields = update.model_dump(exclude_unset=True)
        if "tier" in fields:
            user.subscription_tier = update.tier
        if "status" in fields:
            user.subscription_status = update.status
        if "ends_at" in fields:
            user.subscription_ends_at = update.ends_at

        logger.info(
            f"Subscription for {user.email}: tier={user.subscription_tier} "
            f"status={user.subscription_status} ends_at={user.subscription_ends_at}"
        )
        return self.to_public(user)


# Global auth service instance
auth_service = AuthService()
