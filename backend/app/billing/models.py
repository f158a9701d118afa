"""Checkout, payment and webhook models exchanged with the payment provider."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CheckoutMode(str, Enum):
    """Modes accepted by the ``create-payment-intent`` remote function."""

    SUBSCRIPTION = "subscription"
    PAYMENT = "payment"


class BillingWebhookEventType(str, Enum):
    """Webhook event types that the application reacts to."""

    CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"


class CheckoutSession(BaseModel):
    """Hosted checkout session created for a subscription purchase."""

    session_id: str = Field(alias="sessionId")
    url: str

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class PaymentIntent(BaseModel):
    """One-time payment intent returned by the payment provider."""

    id: str
    client_secret: str
    amount: int = Field(ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    status: str = "requires_payment_method"

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()


class BillingWebhookEvent(BaseModel):
    """Normalized webhook payload stored for idempotency tracking.

    ``event_type`` stays a plain string so unknown provider events can be
    acknowledged without failing validation.
    """

    event_id: str
    event_type: str
    data: Dict[str, object] = Field(default_factory=dict)
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def known_type(self) -> Optional[BillingWebhookEventType]:
        try:
            return BillingWebhookEventType(self.event_type)
        except ValueError:
            return None


class BillingAuditEventType(str, Enum):
    """Audit event categories emitted by the billing subsystem."""

    CHECKOUT_STARTED = "checkout_started"
    SUBSCRIPTION_ACTIVATED = "subscription_activated"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"
    PLAN_CHANGE_REQUESTED = "plan_change_requested"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_RECOVERED = "payment_recovered"


class BillingAuditEvent(BaseModel):
    """Audit record of a billing change, written to the ``billing`` logger."""

    event_type: BillingAuditEventType
    subscription_id: Optional[str] = None
    actor_id: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)
