"""Application wiring for the subscription gateway and entitlement service."""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Dict, Optional, Tuple

from ..billing import (
    BillingAuditEvent,
    BillingEventLogger,
    PaymentProvider,
    SubscriptionGateway,
    SubscriptionStore,
)
from ..billing.config import BillingConfig, load_billing_config
from ..billing.providers import (
    LocalSandboxPaymentProvider,
    StripeSubscriptionLookup,
    SupabaseFunctionsProvider,
)
from ..billing.repository import PostgresSubscriptionRepository
from ..entitlements import (
    PLAN_CATALOG,
    EntitlementService,
    InMemoryEntitlementCache,
    PlanKey,
    limit_discrepancies,
)


logger = logging.getLogger("billing")


class LoggingBillingEventLogger(BillingEventLogger):
    """Simple event logger forwarding billing audit events to logging."""

    def log(self, event: BillingAuditEvent) -> None:
        logger.info(
            "Billing event %s subscription=%s actor=%s metadata=%s",
            event.event_type.value,
            event.subscription_id,
            event.actor_id,
            event.metadata,
        )


@lru_cache(maxsize=1)
def get_billing_config() -> BillingConfig:
    return load_billing_config()


def create_payment_provider(
    config: BillingConfig, store: Optional[SubscriptionStore] = None
) -> PaymentProvider:
    if config.payment_provider == "supabase":
        return SupabaseFunctionsProvider(
            supabase_url=config.supabase_url,
            anon_key=config.supabase_anon_key,
            timeout=config.functions_timeout,
        )
    return LocalSandboxPaymentProvider(store=store)


@lru_cache(maxsize=1)
def get_entitlement_service() -> EntitlementService:
    config = get_billing_config()
    return EntitlementService(
        subscription_repository=PostgresSubscriptionRepository(),
        cache=InMemoryEntitlementCache(),
        ttl_seconds=config.entitlement_cache_ttl,
    )


@lru_cache(maxsize=1)
def get_subscription_gateway() -> SubscriptionGateway:
    config = get_billing_config()
    lookup = None
    if config.stripe_secret_key:
        lookup = StripeSubscriptionLookup(api_key=config.stripe_secret_key)
    else:
        logger.warning("STRIPE_SECRET_KEY is not set; webhook period ends will not be resolved")
    store = PostgresSubscriptionRepository()
    return SubscriptionGateway(
        store=store,
        provider=create_payment_provider(config, store),
        event_logger=LoggingBillingEventLogger(),
        entitlement_invalidator=get_entitlement_service(),
        subscription_lookup=lookup,
    )


def report_limit_discrepancies() -> Dict[PlanKey, Tuple[str, ...]]:
    """Log every plan whose pricing-page limits disagree with the enforced ones."""

    report: Dict[PlanKey, Tuple[str, ...]] = {}
    for plan_key in PLAN_CATALOG:
        mismatched = limit_discrepancies(plan_key)
        if mismatched:
            report[plan_key] = mismatched
            logger.warning(
                "Advertised limits for plan %s differ from enforced limits: %s",
                plan_key.value,
                ", ".join(mismatched),
            )
    return report


__all__ = [
    "LoggingBillingEventLogger",
    "create_payment_provider",
    "get_billing_config",
    "get_entitlement_service",
    "get_subscription_gateway",
    "report_limit_discrepancies",
]
