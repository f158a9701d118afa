"""Subscription gateway coordinating the remote store and payment provider."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Mapping, Optional, Protocol
from uuid import uuid4

from pydantic import ValidationError

from ..entitlements.models import PlanKey, SubscriptionRecord, SubscriptionStatus
from .exceptions import GatewayError, InvalidWebhookPayloadError, SubscriptionNotFoundError
from .models import (
    BillingAuditEvent,
    BillingAuditEventType,
    BillingWebhookEvent,
    BillingWebhookEventType,
    CheckoutSession,
    PaymentIntent,
)

logger = logging.getLogger("billing")


class SubscriptionStore(Protocol):
    """Persistence operations required by the gateway."""

    def get_latest_for_user(self, user_id: str) -> Optional[SubscriptionRecord]:
        ...

    def get_subscription(self, subscription_id: str) -> Optional[SubscriptionRecord]:
        ...

    def get_by_provider_id(self, stripe_subscription_id: str) -> Optional[SubscriptionRecord]:
        ...

    def upsert_subscription(self, subscription: SubscriptionRecord) -> SubscriptionRecord:
        ...

    def update_status(
        self,
        stripe_subscription_id: str,
        *,
        status: SubscriptionStatus,
        current_period_end: Optional[datetime] = None,
    ) -> Optional[SubscriptionRecord]:
        ...

    def mark_cancelled(self, subscription_id: str) -> Optional[SubscriptionRecord]:
        ...

    def set_profile_plan(self, user_id: str, plan: PlanKey) -> None:
        ...

    def record_webhook_event(self, event: BillingWebhookEvent) -> bool:
        ...

    def release_webhook_event(self, event_id: str) -> None:
        ...


class PaymentProvider(Protocol):
    """Remote payment operations, normally the project's edge functions."""

    def create_checkout_session(
        self,
        *,
        price_id: str,
        user_id: str,
        access_token: Optional[str] = None,
    ) -> Dict[str, object]:
        """Create a hosted checkout session in subscription mode."""

    def create_payment_intent(
        self,
        *,
        amount: int,
        currency: str,
        user_id: str,
        access_token: Optional[str] = None,
    ) -> Dict[str, object]:
        """Create a one-time payment intent."""

    def cancel_subscription(
        self,
        subscription_id: str,
        *,
        access_token: Optional[str] = None,
    ) -> Dict[str, object]:
        """Cancel a subscription at the end of its paid period."""

    def update_subscription(
        self,
        subscription_id: str,
        new_price_id: str,
        *,
        access_token: Optional[str] = None,
    ) -> Dict[str, object]:
        """Move a subscription to another price."""


class SubscriptionLookup(Protocol):
    """Reads provider-side subscription objects while processing webhooks."""

    def retrieve(self, provider_subscription_id: str) -> Mapping[str, object]:
        ...


class BillingEventLogger(Protocol):
    """Captures structured billing audit events."""

    def log(self, event: BillingAuditEvent) -> None:
        ...


class EntitlementInvalidator(Protocol):
    """Invalidates entitlement caches affected by billing changes."""

    def invalidate_subscription(self, subscription_id: str) -> None:
        ...

    def invalidate_user(self, user_id: str) -> None:
        ...


@dataclass(slots=True)
class SubscriptionGateway:
    """Fetches and mutates subscription state; every failure becomes :class:`GatewayError`."""

    store: SubscriptionStore
    provider: PaymentProvider
    event_logger: BillingEventLogger
    entitlement_invalidator: EntitlementInvalidator
    subscription_lookup: Optional[SubscriptionLookup] = None

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def get_user_subscription(self, user_id: str) -> Optional[SubscriptionRecord]:
        """Return the user's authoritative subscription, or ``None`` when there is none."""

        if not user_id:
            raise ValueError("user_id is required")
        try:
            return self.store.get_latest_for_user(user_id)
        except Exception as exc:
            logger.exception("Fetching subscription failed user=%s", user_id)
            raise GatewayError(
                "Failed to fetch subscription", operation="get_user_subscription"
            ) from exc

    def create_subscription_payment_intent(
        self,
        price_id: str,
        user_id: str,
        *,
        access_token: Optional[str] = None,
    ) -> CheckoutSession:
        if not price_id or not user_id:
            raise ValueError("price_id and user_id are required")

        response = self._call_provider(
            "create_subscription_payment_intent",
            lambda: self.provider.create_checkout_session(
                price_id=price_id, user_id=user_id, access_token=access_token
            ),
        )
        try:
            session = CheckoutSession.model_validate(dict(response))
        except ValidationError as exc:
            raise GatewayError(
                "Invalid payment intent response", operation="create_subscription_payment_intent"
            ) from exc
        if not session.session_id or not session.url:
            raise GatewayError(
                "Invalid payment intent response", operation="create_subscription_payment_intent"
            )

        self.event_logger.log(
            BillingAuditEvent(
                event_type=BillingAuditEventType.CHECKOUT_STARTED,
                actor_id=user_id,
                metadata={"price_id": price_id, "session_id": session.session_id},
            )
        )
        return session

    def create_one_time_payment_intent(
        self,
        amount: int,
        user_id: str,
        *,
        currency: str = "usd",
        access_token: Optional[str] = None,
    ) -> PaymentIntent:
        if amount <= 0:
            raise ValueError("amount must be > 0")
        if not user_id:
            raise ValueError("user_id is required")

        response = self._call_provider(
            "create_one_time_payment_intent",
            lambda: self.provider.create_payment_intent(
                amount=amount, currency=currency, user_id=user_id, access_token=access_token
            ),
        )
        if not response.get("client_secret"):
            raise GatewayError("Invalid payment intent response", operation="create_one_time_payment_intent")
        try:
            return PaymentIntent.model_validate(dict(response))
        except ValidationError as exc:
            raise GatewayError(
                "Invalid payment intent response", operation="create_one_time_payment_intent"
            ) from exc

    def cancel_subscription(
        self,
        subscription_id: str,
        *,
        user_id: Optional[str] = None,
        access_token: Optional[str] = None,
    ) -> None:
        """Cancel at period end. Access continues through the grace window."""

        if not subscription_id:
            raise ValueError("subscription_id is required")
        owner = self._verify_owner(subscription_id, user_id, operation="cancel_subscription")

        self._call_provider(
            "cancel_subscription",
            lambda: self.provider.cancel_subscription(subscription_id, access_token=access_token),
        )

        self.event_logger.log(
            BillingAuditEvent(
                event_type=BillingAuditEventType.SUBSCRIPTION_CANCELLED,
                subscription_id=subscription_id,
                actor_id=owner,
            )
        )
        self._invalidate(subscription_id, owner)

    def update_subscription(
        self,
        subscription_id: str,
        new_price_id: str,
        *,
        user_id: Optional[str] = None,
        access_token: Optional[str] = None,
    ) -> None:
        if not subscription_id or not new_price_id:
            raise ValueError("subscription_id and new_price_id are required")
        owner = self._verify_owner(subscription_id, user_id, operation="update_subscription")

        self._call_provider(
            "update_subscription",
            lambda: self.provider.update_subscription(
                subscription_id, new_price_id, access_token=access_token
            ),
        )

        self.event_logger.log(
            BillingAuditEvent(
                event_type=BillingAuditEventType.PLAN_CHANGE_REQUESTED,
                subscription_id=subscription_id,
                actor_id=owner,
                metadata={"price_id": new_price_id},
            )
        )
        self._invalidate(subscription_id, owner)

    def handle_webhook(self, event: BillingWebhookEvent) -> Optional[SubscriptionRecord]:
        """Apply a provider event to the store. Replayed events are ignored.

        The event id is released again when processing fails, so the
        provider's retry of the same event is applied instead of skipped.
        """

        try:
            stored = self.store.record_webhook_event(event)
        except Exception as exc:
            logger.exception("Recording webhook event %s failed", event.event_id)
            raise GatewayError("Failed to record webhook event", operation="handle_webhook") from exc
        if not stored:
            logger.info("Skipping already processed webhook event %s", event.event_id)
            return None

        try:
            return self._dispatch(event)
        except GatewayError:
            self._release_event(event.event_id)
            raise
        except Exception as exc:
            logger.exception("Processing webhook event %s failed", event.event_id)
            self._release_event(event.event_id)
            raise GatewayError("Failed to process webhook event", operation="handle_webhook") from exc

    def _dispatch(self, event: BillingWebhookEvent) -> Optional[SubscriptionRecord]:
        event_type = event.known_type
        if event_type == BillingWebhookEventType.CHECKOUT_SESSION_COMPLETED:
            return self._handle_checkout_completed(event)
        if event_type == BillingWebhookEventType.SUBSCRIPTION_UPDATED:
            return self._handle_subscription_updated(event)
        if event_type == BillingWebhookEventType.SUBSCRIPTION_DELETED:
            cancelled = self._transition(
                event.data.get("id"),
                SubscriptionStatus.CANCELLED,
                BillingAuditEventType.SUBSCRIPTION_CANCELLED,
            )
            if cancelled is not None:
                self.store.set_profile_plan(cancelled.user_id, PlanKey.FREE)
            return cancelled
        if event_type == BillingWebhookEventType.INVOICE_PAYMENT_FAILED:
            return self._transition(
                event.data.get("subscription"),
                SubscriptionStatus.PAST_DUE,
                BillingAuditEventType.PAYMENT_FAILED,
            )
        if event_type == BillingWebhookEventType.INVOICE_PAYMENT_SUCCEEDED:
            return self._transition(
                event.data.get("subscription"),
                SubscriptionStatus.ACTIVE,
                BillingAuditEventType.PAYMENT_RECOVERED,
            )

        logger.info("Unhandled webhook event type %s", event.event_type)
        return None

    def _handle_checkout_completed(self, event: BillingWebhookEvent) -> Optional[SubscriptionRecord]:
        session = event.data
        metadata = session.get("metadata")
        user_id = metadata.get("user_id") if isinstance(metadata, dict) else None
        if not user_id:
            logger.error("Checkout session %s has no user_id metadata", session.get("id"))
            return None
        provider_subscription_id = session.get("subscription")
        if session.get("mode") != "subscription" or not provider_subscription_id:
            return None

        period_end: Optional[datetime] = None
        if self.subscription_lookup is not None:
            provider_subscription = self._call_provider(
                "retrieve_subscription",
                lambda: self.subscription_lookup.retrieve(str(provider_subscription_id)),
            )
            period_end = _period_end(provider_subscription.get("current_period_end"))

        record = SubscriptionRecord(
            id=str(uuid4()),
            user_id=str(user_id),
            plan=PlanKey.PRO,
            status=SubscriptionStatus.ACTIVE,
            current_period_end=period_end,
            created_at=self._now(),
            stripe_subscription_id=str(provider_subscription_id),
        )
        persisted = self.store.upsert_subscription(record)
        self.store.set_profile_plan(persisted.user_id, PlanKey.PRO)
        self.event_logger.log(
            BillingAuditEvent(
                event_type=BillingAuditEventType.SUBSCRIPTION_ACTIVATED,
                subscription_id=persisted.id,
                actor_id=persisted.user_id,
            )
        )
        self._invalidate(persisted.id, persisted.user_id)
        return persisted

    def _handle_subscription_updated(self, event: BillingWebhookEvent) -> Optional[SubscriptionRecord]:
        provider_subscription = event.data
        provider_status = str(provider_subscription.get("status", ""))
        if provider_status == "canceled" or provider_subscription.get("cancel_at_period_end"):
            status = SubscriptionStatus.CANCELLED
        elif provider_status == "past_due":
            status = SubscriptionStatus.PAST_DUE
        else:
            status = SubscriptionStatus.ACTIVE

        return self._transition(
            provider_subscription.get("id"),
            status,
            BillingAuditEventType.SUBSCRIPTION_UPDATED,
            current_period_end=_period_end(provider_subscription.get("current_period_end")),
        )

    def _transition(
        self,
        provider_subscription_id: object,
        status: SubscriptionStatus,
        audit_type: BillingAuditEventType,
        *,
        current_period_end: Optional[datetime] = None,
    ) -> Optional[SubscriptionRecord]:
        if not provider_subscription_id:
            logger.warning("Webhook payload missing subscription reference for %s", audit_type.value)
            return None

        updated = self.store.update_status(
            str(provider_subscription_id),
            status=status,
            current_period_end=current_period_end,
        )
        if updated is None:
            logger.warning("No subscription row for provider subscription %s", provider_subscription_id)
            return None

        self.event_logger.log(
            BillingAuditEvent(
                event_type=audit_type,
                subscription_id=updated.id,
                actor_id=updated.user_id,
                metadata={"status": updated.status.value},
            )
        )
        self._invalidate(updated.id, updated.user_id)
        return updated

    def _verify_owner(self, subscription_id: str, user_id: Optional[str], *, operation: str) -> Optional[str]:
        if user_id is None:
            return None
        try:
            record = self.store.get_subscription(subscription_id)
        except Exception as exc:
            logger.exception("Fetching subscription %s failed", subscription_id)
            raise GatewayError("Failed to fetch subscription", operation=operation) from exc
        if record is None or record.user_id != user_id:
            raise SubscriptionNotFoundError(
                "Subscription not found or access denied", operation=operation, status_code=404
            )
        return record.user_id

    def _call_provider(self, operation: str, call) -> Mapping[str, object]:
        try:
            response = call()
        except GatewayError:
            raise
        except Exception as exc:
            logger.exception("Payment provider call failed operation=%s", operation)
            raise GatewayError(str(exc) or "Payment provider error", operation=operation) from exc
        if not isinstance(response, Mapping):
            raise GatewayError("Unexpected payment provider response", operation=operation)
        return response

    def _invalidate(self, subscription_id: str, user_id: Optional[str]) -> None:
        self.entitlement_invalidator.invalidate_subscription(subscription_id)
        if user_id:
            self.entitlement_invalidator.invalidate_user(user_id)

    def _release_event(self, event_id: str) -> None:
        try:
            self.store.release_webhook_event(event_id)
        except Exception:
            logger.exception("Releasing webhook event %s failed", event_id)


def _period_end(value: object) -> Optional[datetime]:
    try:
        return _epoch_to_datetime(value)
    except (TypeError, ValueError, OverflowError, OSError) as exc:
        raise InvalidWebhookPayloadError(
            f"Invalid current_period_end value: {value!r}",
            operation="handle_webhook",
            status_code=400,
        ) from exc


def _epoch_to_datetime(value: object) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        if value.isdigit():
            return datetime.fromtimestamp(int(value), tz=timezone.utc)
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise TypeError("Unsupported datetime value")


__all__ = [
    "BillingEventLogger",
    "EntitlementInvalidator",
    "PaymentProvider",
    "SubscriptionGateway",
    "SubscriptionLookup",
    "SubscriptionStore",
]
