"""API schemas for billing and entitlement endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ..billing import PaymentIntent
from ..entitlements import EntitlementPayload, PlanKey, SubscriptionRecord, SubscriptionStatus


class SubscriptionResponse(BaseModel):
    subscription: Optional[SubscriptionRecord] = None

    model_config = ConfigDict(populate_by_name=True)


class EntitlementsResponse(BaseModel):
    plan: PlanKey
    limits: Dict[str, Union[int, str, bool]]
    features: List[str]
    subscription_id: Optional[str] = Field(alias="subscriptionId", default=None)
    subscription_status: Optional[SubscriptionStatus] = Field(alias="subscriptionStatus", default=None)
    grace_period_ends_at: Optional[datetime] = Field(alias="gracePeriodEndsAt", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_payload(cls, payload: EntitlementPayload) -> "EntitlementsResponse":
        return cls(
            plan=payload.plan,
            limits=dict(payload.limits),
            features=list(payload.features),
            subscription_id=payload.subscription_id,
            subscription_status=payload.subscription_status,
            grace_period_ends_at=payload.grace_period_ends_at,
        )


class FeatureAccessResponse(BaseModel):
    feature: str
    allowed: bool

    model_config = ConfigDict(populate_by_name=True)


class CheckoutSessionRequest(BaseModel):
    price_id: str = Field(alias="priceId", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class CheckoutSessionResponse(BaseModel):
    session_id: str = Field(alias="sessionId")
    url: str

    model_config = ConfigDict(populate_by_name=True)


class PaymentIntentRequest(BaseModel):
    amount: int = Field(gt=0)
    currency: str = Field(default="usd", min_length=3, max_length=3)

    model_config = ConfigDict(populate_by_name=True)


class PaymentIntentResponse(BaseModel):
    intent: PaymentIntent

    model_config = ConfigDict(populate_by_name=True)


class CancelSubscriptionRequest(BaseModel):
    subscription_id: str = Field(alias="subscriptionId", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class UpdateSubscriptionRequest(BaseModel):
    subscription_id: str = Field(alias="subscriptionId", min_length=1)
    new_price_id: str = Field(alias="newPriceId", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class BillingActionResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)
