"""Entitlements domain models and services."""

from .catalog import (
    FREE_FEATURES,
    FREE_LIMITS,
    PLAN_CATALOG,
    PRO_FEATURES,
    PRO_LIMITS,
    PlanDefinition,
    get_plan_definition,
    limit_discrepancies,
)
from .cache import EntitlementCache, InMemoryEntitlementCache
from .evaluator import (
    GRACE_PERIOD,
    coerce_subscription,
    get_subscription_limits,
    grace_period_end,
    has_feature_access,
)
from .models import (
    UNLIMITED,
    EntitlementPayload,
    Finite,
    Limit,
    LimitTable,
    PlanKey,
    SubscriptionRecord,
    SubscriptionStatus,
    Unlimited,
)
from .service import EntitlementService, SubscriptionRepository

__all__ = [
    "FREE_FEATURES",
    "FREE_LIMITS",
    "PLAN_CATALOG",
    "PRO_FEATURES",
    "PRO_LIMITS",
    "PlanDefinition",
    "get_plan_definition",
    "limit_discrepancies",
    "EntitlementCache",
    "InMemoryEntitlementCache",
    "GRACE_PERIOD",
    "coerce_subscription",
    "get_subscription_limits",
    "grace_period_end",
    "has_feature_access",
    "UNLIMITED",
    "EntitlementPayload",
    "Finite",
    "Limit",
    "LimitTable",
    "PlanKey",
    "SubscriptionRecord",
    "SubscriptionStatus",
    "Unlimited",
    "EntitlementService",
    "SubscriptionRepository",
]
