"""Request-scoped view of a user's subscription for feature gating."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from ..entitlements import (
    LimitTable,
    PlanKey,
    SubscriptionRecord,
    get_subscription_limits,
    has_feature_access,
)
from .enforcement import require_feature
from .quota import UsageCheck, assert_can_export, assert_can_fork, assert_can_save


@dataclass(frozen=True)
class EntitlementContext:
    """Facade exposing gating-centric helpers for one user's subscription.

    The evaluation instant is fixed when the context is created so every check
    made while serving a request agrees with the others.
    """

    user_id: str
    subscription: Optional[SubscriptionRecord] = None
    now: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def limits(self) -> LimitTable:
        return get_subscription_limits(self.subscription)

    @property
    def plan(self) -> PlanKey:
        if self.subscription is not None and self.subscription.is_active_pro:
            return PlanKey.PRO
        return PlanKey.FREE

    def has(self, feature: str) -> bool:
        """Return whether the feature is currently available."""

        return has_feature_access(self.subscription, feature, now=self.now)

    def require(self, feature: str, *, error_code: str = "entitlement_required") -> None:
        """Ensure a feature is available, raising :class:`FeatureGateError` otherwise."""

        require_feature(self.subscription, feature, now=self.now, error_code=error_code)

    def assert_can_save(self, current_count: int) -> UsageCheck:
        return assert_can_save(self.limits, current_count)

    def assert_can_fork(self, forks_this_month: int) -> UsageCheck:
        return assert_can_fork(self.limits, forks_this_month)

    def assert_can_export(self) -> UsageCheck:
        return assert_can_export(self.limits)
