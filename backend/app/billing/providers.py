"""Payment provider implementations used by the subscription gateway."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional
from uuid import uuid4

import httpx
import stripe

from .exceptions import GatewayError, SubscriptionNotFoundError
from .models import CheckoutMode

if TYPE_CHECKING:
    from .service import SubscriptionStore

logger = logging.getLogger(__name__)

CREATE_PAYMENT_INTENT_FUNCTION = "create-payment-intent"
CANCEL_SUBSCRIPTION_FUNCTION = "cancel-subscription"
UPDATE_SUBSCRIPTION_FUNCTION = "update-subscription"


class SupabaseFunctionsProvider:
    """Invokes the project's Supabase edge functions over HTTPS.

    The functions authenticate the caller from the bearer token, so requests
    made on behalf of a user must pass that user's access token. The anon key
    is used only as the ``apikey`` header and as a fallback bearer.
    """

    name = "supabase"

    def __init__(
        self,
        *,
        supabase_url: str,
        anon_key: str,
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        if not supabase_url:
            raise ValueError("supabase_url must be provided")
        self._anon_key = anon_key
        self._client = client or httpx.Client(
            base_url=supabase_url.rstrip("/"),
            timeout=timeout,
        )

    def _invoke(self, function_name: str, body: Dict[str, Any], access_token: Optional[str]) -> Dict[str, object]:
        headers = {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {access_token or self._anon_key}",
            "Content-Type": "application/json",
        }
        try:
            response = self._client.post(f"/functions/v1/{function_name}", json=body, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("Edge function %s request failed: %s", function_name, exc)
            raise GatewayError(f"{function_name} request failed", operation=function_name) from exc

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if not response.is_success:
            message = payload.get("error") if isinstance(payload, dict) else None
            logger.warning(
                "Edge function %s returned %s: %s", function_name, response.status_code, message
            )
            raise GatewayError(
                str(message or f"{function_name} failed"),
                operation=function_name,
                status_code=response.status_code,
            )
        if not isinstance(payload, dict):
            raise GatewayError(f"{function_name} returned an invalid body", operation=function_name)
        return payload

    def create_checkout_session(
        self,
        *,
        price_id: str,
        user_id: str,
        access_token: Optional[str] = None,
    ) -> Dict[str, object]:
        return self._invoke(
            CREATE_PAYMENT_INTENT_FUNCTION,
            {"priceId": price_id, "userId": user_id, "mode": CheckoutMode.SUBSCRIPTION.value},
            access_token,
        )

    def create_payment_intent(
        self,
        *,
        amount: int,
        currency: str,
        user_id: str,
        access_token: Optional[str] = None,
    ) -> Dict[str, object]:
        return self._invoke(
            CREATE_PAYMENT_INTENT_FUNCTION,
            {
                "amount": amount,
                "currency": currency,
                "userId": user_id,
                "mode": CheckoutMode.PAYMENT.value,
            },
            access_token,
        )

    def cancel_subscription(
        self,
        subscription_id: str,
        *,
        access_token: Optional[str] = None,
    ) -> Dict[str, object]:
        return self._invoke(
            CANCEL_SUBSCRIPTION_FUNCTION, {"subscriptionId": subscription_id}, access_token
        )

    def update_subscription(
        self,
        subscription_id: str,
        new_price_id: str,
        *,
        access_token: Optional[str] = None,
    ) -> Dict[str, object]:
        return self._invoke(
            UPDATE_SUBSCRIPTION_FUNCTION,
            {"subscriptionId": subscription_id, "newPriceId": new_price_id},
            access_token,
        )

    def close(self) -> None:
        self._client.close()


class LocalSandboxPaymentProvider:
    """Minimal provider implementation for local development and tests.

    With a ``store`` attached, cancellations are written to it the way the
    cancel-subscription edge function writes them to the database.
    """

    name = "sandbox"

    def __init__(self, *, store: Optional[SubscriptionStore] = None) -> None:
        self._store = store

    def create_checkout_session(
        self,
        *,
        price_id: str,
        user_id: str,
        access_token: Optional[str] = None,
    ) -> Dict[str, object]:
        session_id = f"cs_{uuid4().hex}"
        logger.info("Sandbox checkout session %s price=%s user=%s", session_id, price_id, user_id)
        return {
            "sessionId": session_id,
            "url": f"https://billing.local/checkout/{session_id}",
            "expires_at": datetime.now(timezone.utc) + timedelta(minutes=30),
        }

    def create_payment_intent(
        self,
        *,
        amount: int,
        currency: str,
        user_id: str,
        access_token: Optional[str] = None,
    ) -> Dict[str, object]:
        intent_id = f"pi_{uuid4().hex}"
        return {
            "id": intent_id,
            "client_secret": f"{intent_id}_secret_{uuid4().hex[:12]}",
            "amount": amount,
            "currency": currency,
            "status": "requires_payment_method",
        }

    def cancel_subscription(
        self,
        subscription_id: str,
        *,
        access_token: Optional[str] = None,
    ) -> Dict[str, object]:
        logger.info("Sandbox cancel subscription %s", subscription_id)
        if self._store is not None and self._store.mark_cancelled(subscription_id) is None:
            raise SubscriptionNotFoundError(
                "Subscription not found or access denied",
                operation="cancel_subscription",
                status_code=404,
            )
        return {"success": True, "message": "Subscription cancelled successfully"}

    def update_subscription(
        self,
        subscription_id: str,
        new_price_id: str,
        *,
        access_token: Optional[str] = None,
    ) -> Dict[str, object]:
        logger.info("Sandbox update subscription %s price=%s", subscription_id, new_price_id)
        return {"success": True}


class StripeSubscriptionLookup:
    """Retrieves subscriptions from Stripe while processing webhook events."""

    def __init__(self, *, api_key: str) -> None:
        if not api_key:
            raise ValueError("api_key must be provided")
        self._api_key = api_key

    def retrieve(self, provider_subscription_id: str) -> Mapping[str, object]:
        subscription = stripe.Subscription.retrieve(provider_subscription_id, api_key=self._api_key)
        data = subscription.to_dict() if hasattr(subscription, "to_dict") else dict(subscription)
        if data.get("current_period_end") is None:
            # Newer API versions report the period on the subscription items.
            items = (data.get("items") or {}).get("data") or []
            if items:
                data["current_period_end"] = items[0].get("current_period_end")
        return data


def construct_webhook_event(payload: bytes, signature: Optional[str], secret: str) -> Dict[str, Any]:
    """Verify a Stripe webhook signature and return the event as a plain dict."""

    if not signature:
        raise ValueError("No signature found")
    try:
        event = stripe.Webhook.construct_event(payload=payload, sig_header=signature, secret=secret)
    except stripe.SignatureVerificationError as exc:
        raise ValueError("Invalid webhook signature") from exc
    return event.to_dict() if hasattr(event, "to_dict") else dict(event)
