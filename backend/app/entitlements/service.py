"""Service responsible for computing and caching entitlement payloads."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol, Tuple

from .cache import EntitlementCache
from .catalog import PLAN_CATALOG
from .evaluator import get_subscription_limits, grace_period_end, has_feature_access
from .models import EntitlementPayload, PlanKey, SubscriptionRecord

logger = logging.getLogger(__name__)


class SubscriptionRepository(Protocol):
    """Data access layer for subscription records."""

    def get_latest_for_user(self, user_id: str) -> Optional[SubscriptionRecord]:
        ...


def _catalog_features() -> Tuple[str, ...]:
    names = set()
    for definition in PLAN_CATALOG.values():
        names.update(definition.features)
    return tuple(sorted(names))


class EntitlementService:
    """Resolves the authoritative subscription of a user and evaluates it."""

    def __init__(
        self,
        subscription_repository: SubscriptionRepository,
        cache: EntitlementCache,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        ttl_seconds: int = 300,
    ) -> None:
        self._subscription_repository = subscription_repository
        self._cache = cache
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._ttl_seconds = max(ttl_seconds, 60)

    def get_entitlements(self, user_id: str) -> EntitlementPayload:
        """Return the entitlements of ``user_id``, served from cache when fresh."""

        cache_key = f"user:{user_id}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        subscription = self._subscription_repository.get_latest_for_user(user_id)
        payload = self.evaluate(user_id, subscription)
        ttl = timedelta(seconds=self._ttl_seconds)
        # Never cache past the end of a grace window.
        expires_at = self._clock() + ttl
        if payload.grace_period_ends_at is not None:
            expires_at = min(expires_at, payload.grace_period_ends_at)
        self._cache.set(cache_key, payload, expires_at, payload.tags())
        return payload

    def evaluate(
        self,
        user_id: str,
        subscription: Optional[SubscriptionRecord],
    ) -> EntitlementPayload:
        now = self._clock()
        limits = get_subscription_limits(subscription)
        features = tuple(
            feature
            for feature in _catalog_features()
            if has_feature_access(subscription, feature, now=now)
        )
        plan = PlanKey.PRO if subscription is not None and subscription.is_active_pro else PlanKey.FREE
        return EntitlementPayload(
            user_id=user_id,
            plan=plan,
            limits=limits.to_flags(),
            features=features,
            subscription_id=subscription.id if subscription else None,
            subscription_status=subscription.status if subscription else None,
            grace_period_ends_at=grace_period_end(subscription),
            generated_at=now,
        )

    def invalidate_user(self, user_id: str) -> None:
        logger.debug("Invalidate user entitlements %s", user_id)
        self._cache.invalidate({f"user:{user_id}"})

    def invalidate_subscription(self, subscription_id: str) -> None:
        logger.debug("Invalidate subscription entitlements %s", subscription_id)
        self._cache.invalidate({f"subscription:{subscription_id}"})
