"""Billing domain package: subscription gateway, providers and webhook handling."""

from .exceptions import GatewayError, InvalidWebhookPayloadError, SubscriptionNotFoundError
from .models import (
    BillingAuditEvent,
    BillingAuditEventType,
    BillingWebhookEvent,
    BillingWebhookEventType,
    CheckoutMode,
    CheckoutSession,
    PaymentIntent,
)
from .service import (
    BillingEventLogger,
    EntitlementInvalidator,
    PaymentProvider,
    SubscriptionGateway,
    SubscriptionLookup,
    SubscriptionStore,
)

__all__ = [
    "BillingAuditEvent",
    "BillingAuditEventType",
    "BillingEventLogger",
    "BillingWebhookEvent",
    "BillingWebhookEventType",
    "CheckoutMode",
    "CheckoutSession",
    "EntitlementInvalidator",
    "GatewayError",
    "InvalidWebhookPayloadError",
    "PaymentIntent",
    "PaymentProvider",
    "SubscriptionGateway",
    "SubscriptionLookup",
    "SubscriptionNotFoundError",
    "SubscriptionStore",
]
