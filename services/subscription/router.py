"""
services/subscription/router.py
Pro subscription activation for talents. The billing provider owns the
subscription itself; this records the result on the talent profile.
"""

import logging
from datetime import datetime, timezone

from dateutil.relativedelta import relativedelta
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.notification.service import dispatch_emails, notify
from services.subscription.service import booking_allowance
from shared.middleware.auth import get_talent_profile, require_admin
from shared.models.models import NotificationType, TalentProfile, User
from shared.schemas.schemas import SubscriptionActivateRequest, SubscriptionActivateResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subscriptions", tags=["Subscriptions"])


def subscription_period(plan_id: str) -> str:
    plan = plan_id.lower()
    return "yearly" if "yearly" in plan or "annual" in plan else "monthly"


def period_end(start: datetime, period: str) -> datetime:
    return start + (relativedelta(years=1) if period == "yearly" else relativedelta(months=1))


@router.post("/activate", response_model=SubscriptionActivateResponse)
async def activate_subscription(
    data: SubscriptionActivateRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Mark a talent as Pro for one billing period starting now."""
    profile = await db.scalar(select(TalentProfile).where(TalentProfile.user_id == data.user_id))
    if not profile:
        raise HTTPException(status_code=404, detail="Talent profile not found")

    now = datetime.now(timezone.utc)
    period = subscription_period(data.plan_id)
    end = period_end(now, period)

    profile.is_pro_subscriber = True
    profile.subscription_status = "active"
    profile.plan_id = data.plan_id
    profile.subscription_id = data.subscription_id
    profile.subscription_started_at = now
    profile.current_period_end = end
    await db.flush()

    notification = await notify(
        db,
        profile.user_id,
        NotificationType.SUBSCRIPTION_ACTIVATED,
        period=period,
    )
    await db.commit()
    dispatch_emails([notification])

    logger.info(f"Admin {admin.id} activated {period} Pro subscription for talent {profile.id} until {end.isoformat()}")
    return SubscriptionActivateResponse(
        message=f"{period.capitalize()} subscription activated successfully",
        subscription_period=period,
        subscription_end=end,
    )


@router.get("/me")
async def get_my_subscription(
    profile: TalentProfile = Depends(get_talent_profile),
    db: AsyncSession = Depends(get_db),
):
    """Subscription state plus this month's booking allowance."""
    return {
        "is_pro_subscriber": profile.is_pro_subscriber,
        "subscription_status": profile.subscription_status,
        "plan_id": profile.plan_id,
        "current_period_end": profile.current_period_end,
        **(await booking_allowance(db, profile)),
    }
