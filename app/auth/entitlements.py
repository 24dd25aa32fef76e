"""Subscription entitlement checks."""
from datetime import datetime, timezone
from typing import Optional

from app.models import User

FREE_TIER = "free"


def _as_aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def tier_allows_pos_integration(user: User, now: Optional[datetime] = None) -> bool:
    """Paid, unexpired subscriptions may link a POS account."""
    if not user.subscription_tier or user.subscription_tier == FREE_TIER:
        return False

    if user.subscription_expires_at:
        now = now or datetime.now(timezone.utc)
        if _as_aware(user.subscription_expires_at) < now:
            return False

    return True
