"""Pure entitlement decisions derived from a user's subscription record.

Nothing in this module performs I/O or raises. Inputs that cannot be read as a
:class:`SubscriptionRecord` are treated as "no subscription", which is the
most restrictive outcome a signed-in user can get.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional

from pydantic import ValidationError

from .catalog import FREE_FEATURES, FREE_LIMITS, PRO_LIMITS
from .models import LimitTable, SubscriptionRecord, SubscriptionStatus

logger = logging.getLogger(__name__)

GRACE_PERIOD = timedelta(days=30)


def coerce_subscription(subscription: object) -> Optional[SubscriptionRecord]:
    """Return a record for ``subscription`` or ``None`` when it is absent or malformed."""

    if subscription is None or isinstance(subscription, SubscriptionRecord):
        return subscription
    if isinstance(subscription, Mapping):
        try:
            return SubscriptionRecord.model_validate(dict(subscription))
        except ValidationError:
            logger.warning("Ignoring malformed subscription payload keys=%s", list(subscription))
            return None
    logger.warning("Ignoring unsupported subscription value type=%s", type(subscription).__name__)
    return None


def grace_period_end(subscription: object) -> Optional[datetime]:
    """End of the post-cancellation grace window, anchored on the paid period end."""

    record = coerce_subscription(subscription)
    if record is None or record.status != SubscriptionStatus.CANCELLED:
        return None
    if record.current_period_end is None:
        return None
    try:
        return record.current_period_end + GRACE_PERIOD
    except OverflowError:
        # Period ends within 30 days of datetime.max saturate.
        return datetime.max.replace(tzinfo=timezone.utc)


def has_feature_access(
    subscription: object,
    feature: str,
    *,
    now: Optional[datetime] = None,
) -> bool:
    """Decide whether the holder of ``subscription`` may use ``feature``."""

    record = coerce_subscription(subscription)
    if record is None:
        return isinstance(feature, str) and feature in FREE_FEATURES

    if record.is_active_pro:
        return True

    ends_at = grace_period_end(record)
    if ends_at is not None:
        current = now or datetime.now(timezone.utc)
        if current.tzinfo is None:
            current = current.replace(tzinfo=timezone.utc)
        # Inclusive: access lasts through the final instant of the window.
        return current <= ends_at

    return False


def get_subscription_limits(subscription: object) -> LimitTable:
    """Return the limit table that applies to ``subscription``."""

    record = coerce_subscription(subscription)
    if record is not None and record.is_active_pro:
        return PRO_LIMITS
    return FREE_LIMITS


__all__ = [
    "GRACE_PERIOD",
    "coerce_subscription",
    "get_subscription_limits",
    "grace_period_end",
    "has_feature_access",
]
