"""API routes exposing subscription, entitlement and checkout functionality."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from starlette.concurrency import run_in_threadpool

from ..billing import (
    BillingWebhookEvent,
    GatewayError,
    InvalidWebhookPayloadError,
    SubscriptionNotFoundError,
)
from ..billing.providers import construct_webhook_event
from ..entitlements import has_feature_access
from ..schemas.billing import (
    BillingActionResponse,
    CancelSubscriptionRequest,
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    EntitlementsResponse,
    FeatureAccessResponse,
    PaymentIntentRequest,
    PaymentIntentResponse,
    SubscriptionResponse,
    UpdateSubscriptionRequest,
)
from ..services.billing import get_billing_config, get_entitlement_service, get_subscription_gateway

try:  # pragma: no cover - resolve auth hook when imported from FastAPI app
    from backend import app_context
except ModuleNotFoundError as exc:  # pragma: no cover
    if exc.name != "backend":
        raise
    from ... import app_context  # type: ignore[no-redef]

logger = logging.getLogger("billing")


def _get_current_user(authorization: Optional[str] = Header(None)):
    return app_context.get_current_user(authorization=authorization)


def _gateway_http_error(exc: GatewayError) -> HTTPException:
    if isinstance(exc, SubscriptionNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message)
    if isinstance(exc, InvalidWebhookPayloadError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.message)


router = APIRouter(prefix="/api/billing", tags=["billing"])


@router.get("/subscription", response_model=SubscriptionResponse)
def get_subscription(*, current_user=Depends(_get_current_user)) -> SubscriptionResponse:
    gateway = get_subscription_gateway()
    try:
        subscription = gateway.get_user_subscription(str(current_user.id))
    except GatewayError as exc:
        raise _gateway_http_error(exc) from exc
    return SubscriptionResponse(subscription=subscription)


@router.get("/entitlements", response_model=EntitlementsResponse)
def get_entitlements(*, current_user=Depends(_get_current_user)) -> EntitlementsResponse:
    service = get_entitlement_service()
    try:
        payload = service.get_entitlements(str(current_user.id))
    except Exception as exc:
        logger.exception("Entitlement lookup failed user=%s", current_user.id)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to load entitlements"
        ) from exc
    return EntitlementsResponse.from_payload(payload)


@router.get("/features/{feature}", response_model=FeatureAccessResponse)
def check_feature(feature: str, *, current_user=Depends(_get_current_user)) -> FeatureAccessResponse:
    gateway = get_subscription_gateway()
    try:
        subscription = gateway.get_user_subscription(str(current_user.id))
    except GatewayError as exc:
        raise _gateway_http_error(exc) from exc
    return FeatureAccessResponse(feature=feature, allowed=has_feature_access(subscription, feature))


@router.post("/checkout-session", response_model=CheckoutSessionResponse)
def create_checkout_session(
    payload: CheckoutSessionRequest,
    *,
    current_user=Depends(_get_current_user),
) -> CheckoutSessionResponse:
    gateway = get_subscription_gateway()
    try:
        session = gateway.create_subscription_payment_intent(
            payload.price_id,
            str(current_user.id),
            access_token=getattr(current_user, "access_token", None),
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except GatewayError as exc:
        raise _gateway_http_error(exc) from exc
    return CheckoutSessionResponse(session_id=session.session_id, url=session.url)


@router.post("/payment-intent", response_model=PaymentIntentResponse)
def create_payment_intent(
    payload: PaymentIntentRequest,
    *,
    current_user=Depends(_get_current_user),
) -> PaymentIntentResponse:
    gateway = get_subscription_gateway()
    try:
        intent = gateway.create_one_time_payment_intent(
            payload.amount,
            str(current_user.id),
            currency=payload.currency,
            access_token=getattr(current_user, "access_token", None),
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except GatewayError as exc:
        raise _gateway_http_error(exc) from exc
    return PaymentIntentResponse(intent=intent)


@router.post("/cancel", response_model=BillingActionResponse)
def cancel_subscription(
    payload: CancelSubscriptionRequest,
    *,
    current_user=Depends(_get_current_user),
) -> BillingActionResponse:
    gateway = get_subscription_gateway()
    try:
        gateway.cancel_subscription(
            payload.subscription_id,
            user_id=str(current_user.id),
            access_token=getattr(current_user, "access_token", None),
        )
    except GatewayError as exc:
        raise _gateway_http_error(exc) from exc
    return BillingActionResponse(message="Subscription cancelled successfully")


@router.post("/update", response_model=BillingActionResponse)
def update_subscription(
    payload: UpdateSubscriptionRequest,
    *,
    current_user=Depends(_get_current_user),
) -> BillingActionResponse:
    gateway = get_subscription_gateway()
    try:
        gateway.update_subscription(
            payload.subscription_id,
            payload.new_price_id,
            user_id=str(current_user.id),
            access_token=getattr(current_user, "access_token", None),
        )
    except GatewayError as exc:
        raise _gateway_http_error(exc) from exc
    return BillingActionResponse(message="Subscription updated successfully")


def _event_from_stripe(event: Dict[str, Any]) -> BillingWebhookEvent:
    created = event.get("created")
    received_at = (
        datetime.fromtimestamp(created, tz=timezone.utc)
        if isinstance(created, (int, float))
        else datetime.now(timezone.utc)
    )
    data = event.get("data") or {}
    return BillingWebhookEvent(
        event_id=str(event["id"]),
        event_type=str(event["type"]),
        data=dict(data.get("object") or {}),
        received_at=received_at,
    )


@router.post("/webhook")
async def receive_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
) -> Dict[str, bool]:
    config = get_billing_config()
    if not config.stripe_webhook_secret:
        logger.error("STRIPE_WEBHOOK_SECRET is not set; rejecting webhook")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Configuration error")

    body = await request.body()
    try:
        event = _event_from_stripe(
            construct_webhook_event(body, stripe_signature, config.stripe_webhook_secret)
        )
    except (ValueError, KeyError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    gateway = get_subscription_gateway()
    try:
        await run_in_threadpool(gateway.handle_webhook, event)
    except GatewayError as exc:
        raise _gateway_http_error(exc) from exc
    return {"received": True}
