"""Static catalog definitions for plans and their limits."""
from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Dict, FrozenSet, Optional, Tuple

from .models import UNLIMITED, Finite, LimitTable, PlanKey

FREE_FEATURES: FrozenSet[str] = frozenset(
    {
        "create_prompts",
        "view_prompts",
        "heart_prompts",
        "comment_prompts",
        "basic_search",
    }
)

# Features only unlocked by an active (or grace-period) Pro subscription.
PRO_FEATURES: FrozenSet[str] = frozenset(
    {
        "advanced_search",
        "unlimited_saves",
        "unlimited_forks",
        "export_collections",
        "api_access",
        "priority_support",
        "pro_badge",
    }
)

FREE_LIMITS = LimitTable(
    saves=Finite(10),
    forks_per_month=Finite(3),
    invites_per_month=Finite(0),
    export_collections=False,
    api_access=False,
)

PRO_LIMITS = LimitTable(
    saves=UNLIMITED,
    forks_per_month=UNLIMITED,
    invites_per_month=Finite(3),
    export_collections=True,
    api_access=True,
)


@dataclass(frozen=True)
class PlanPrice:
    """Advertised price in USD for each billing interval."""

    monthly: float
    yearly: Optional[float] = None


@dataclass(frozen=True)
class PlanDefinition:
    """Describes a subscription plan, its enforced limits and pricing copy."""

    key: PlanKey
    display_name: str
    price: PlanPrice
    limits: LimitTable
    advertised_limits: LimitTable
    features: FrozenSet[str]


PLAN_CATALOG: Dict[PlanKey, PlanDefinition] = {
    PlanKey.FREE: PlanDefinition(
        key=PlanKey.FREE,
        display_name="Starter",
        price=PlanPrice(monthly=0.0),
        limits=FREE_LIMITS,
        advertised_limits=LimitTable(
            saves=Finite(10),
            forks_per_month=Finite(3),
            invites_per_month=Finite(5),
            export_collections=False,
            api_access=False,
        ),
        features=FREE_FEATURES,
    ),
    PlanKey.PRO: PlanDefinition(
        key=PlanKey.PRO,
        display_name="Pro",
        price=PlanPrice(monthly=7.99, yearly=79.99),
        limits=PRO_LIMITS,
        advertised_limits=LimitTable(
            saves=UNLIMITED,
            forks_per_month=UNLIMITED,
            invites_per_month=Finite(10),
            export_collections=True,
            api_access=True,
        ),
        features=FREE_FEATURES | PRO_FEATURES,
    ),
}


def get_plan_definition(plan_key: PlanKey) -> PlanDefinition:
    """Return a plan definition, raising if unsupported."""

    try:
        return PLAN_CATALOG[plan_key]
    except KeyError as exc:  # pragma: no cover - guarded by static catalog
        raise KeyError(f"Unknown plan key: {plan_key}") from exc


def limit_discrepancies(plan_key: PlanKey) -> Tuple[str, ...]:
    """Return the limit fields whose pricing-page value differs from enforcement."""

    definition = get_plan_definition(plan_key)
    return tuple(
        field.name
        for field in fields(LimitTable)
        if getattr(definition.limits, field.name) != getattr(definition.advertised_limits, field.name)
    )
