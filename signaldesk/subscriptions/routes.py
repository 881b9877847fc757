"""
Subscription plan and feature-access API routes.
"""

from typing import List
from fastapi import APIRouter, Depends, HTTPException, status

from signaldesk.auth.dependencies import get_current_active_user
from signaldesk.auth.models import User

from .models import SubscriptionPlan, AccessSummary, FeatureCheck, FeatureAccess
from .access import (
    SUBSCRIPTION_PLANS, effective_tier, user_feature_access, user_has_access,
    accessible_routes, get_upgrade_message,
)

router = APIRouter(prefix="/api/subscriptions", tags=["Subscriptions"])


@router.get("/plans", response_model=List[SubscriptionPlan])
async def list_plans():
    """Public plan catalog with prices in cents."""
    return SUBSCRIPTION_PLANS


@router.get("/me", response_model=AccessSummary)
async def my_access(current_user: User = Depends(get_current_active_user)):
    """
    Effective tier, feature matrix and visible dashboard routes for the caller.
    """
    return AccessSummary(
        tier=effective_tier(current_user),
        status=current_user.subscription_status,
        is_admin=current_user.is_admin,
        features=user_feature_access(current_user),
        routes=accessible_routes(current_user),
    )


@router.get("/check/{feature}", response_model=FeatureCheck)
async def check_feature(
    feature: str,
    current_user: User = Depends(get_current_active_user),
):
    if feature not in FeatureAccess.model_fields:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown feature '{feature}'",
        )

    allowed = user_has_access(current_user, feature)
    return FeatureCheck(
        feature=feature,
        allowed=allowed,
        tier=effective_tier(current_user),
        upgrade_message=None if allowed else get_upgrade_message(feature),
    )
