"""
Authentication API routes.
"""

from typing import List
from fastapi import APIRouter, Depends, HTTPException, status, Response
from fastapi.security import OAuth2PasswordRequestForm

from .models import (
    User, UserCreate, UserLogin, UserInDB, Token, PasswordChange,
    RoleUpdate, UserRole, SubscriptionUpdate,
)
from .service import auth_service
from .dependencies import get_current_active_user, get_admin_user

router = APIRouter(prefix="/api/auth", tags=["Authentication"])


def _issue_token(response: Response, user: UserInDB) -> Token:
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )

    token = auth_service.create_access_token(user)

    # Also set cookie for browser-based access
    response.set_cookie(
        key="access_token",
        value=token.access_token,
        max_age=token.expires_in,
        httponly=True,
        samesite="lax",
        secure=False,  # Set to True in production with HTTPS
    )
    return token


def _invalid_credentials() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid email or password",
        headers={"WWW-Authenticate": "Bearer"},
    )


@router.post("/register", response_model=User, status_code=status.HTTP_201_CREATED)
async def register(user_data: UserCreate):
    """
    Register a new user account on the free tier.

    Password requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    """
    try:
        return auth_service.create_user(user_data)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e),
        )


@router.post("/login", response_model=Token)
async def login(response: Response, form_data: OAuth2PasswordRequestForm = Depends()):
    """
    Authenticate and receive JWT token. The form's `username` field carries the email.

    The token can be used in:
    - Authorization header: `Bearer <token>`
    - Cookie: `access_token=<token>`
    """
    user = auth_service.authenticate_user(form_data.username, form_data.password)
    if not user:
        raise _invalid_credentials()
    return _issue_token(response, user)


@router.post("/login/json", response_model=Token)
async def login_json(response: Response, credentials: UserLogin):
    """
    Alternative login endpoint accepting JSON body.
    """
    user = auth_service.authenticate_user(credentials.email, credentials.password)
    if not user:
        raise _invalid_credentials()
    return _issue_token(response, user)


@router.post("/logout")
async def logout(response: Response):
    """
    Logout by clearing the auth cookie.

    JWT tokens cannot be invalidated server-side; the client discards it.
    """
    response.delete_cookie(key="access_token")
    return {"message": "Successfully logged out"}


@router.get("/me", response_model=User)
async def get_current_user_info(
    current_user: User = Depends(get_current_active_user),
):
    return current_user


@router.post("/change-password")
async def change_password(
    password_data: PasswordChange,
    current_user: User = Depends(get_current_active_user),
):
    success = auth_service.change_password(
        current_user.email,
        password_data.current_password,
        password_data.new_password,
    )

    if not success:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Current password is incorrect",
        )

    return {"message": "Password changed successfully"}


# Admin-only routes

def _user_or_404(user):
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )
    return user


@router.get("/users", response_model=List[User])
async def list_users(admin: User = Depends(get_admin_user)):
    return auth_service.list_users()


@router.post("/users/{user_id}/deactivate", response_model=User)
async def deactivate_user(
    user_id: str,
    admin: User = Depends(get_admin_user),
):
    if user_id == admin.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot deactivate your own account",
        )
    return _user_or_404(auth_service.set_active(user_id, False))


@router.post("/users/{user_id}/activate", response_model=User)
async def activate_user(
    user_id: str,
    admin: User = Depends(get_admin_user),
):
    return _user_or_404(auth_service.set_active(user_id, True))


@router.put("/users/{user_id}/role", response_model=User)
async def update_role(
    user_id: str,
    data: RoleUpdate,
    admin: User = Depends(get_admin_user),
):
    if user_id == admin.id and data.role != UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot remove your own admin role",
        )
    return _user_or_404(auth_service.set_role(user_id, data.role))


@router.put("/users/{user_id}/subscription", response_model=User)
async def update_subscription(
    user_id: str,
    data: SubscriptionUpdate,
    admin: User = Depends(get_admin_user),
):
    """
    Set a user's tier, billing status or end date (admin only).
    """
    return _user_or_404(auth_service.update_subscription(user_id, data))
