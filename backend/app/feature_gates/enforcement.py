"""Helpers for enforcing entitlement checks on API and service layers."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from ..entitlements import has_feature_access
from .exceptions import FeatureGateError


def require_feature(
    subscription: object,
    feature: str,
    *,
    now: Optional[datetime] = None,
    error_code: str = "entitlement_required",
    message: str | None = None,
) -> None:
    """Ensure the holder of ``subscription`` may use ``feature`` before proceeding.

    Parameters
    ----------
    subscription:
        The user's current :class:`SubscriptionRecord`, or ``None`` for users
        without one.
    feature:
        Canonical feature name, e.g. ``"export_collections"``.
    error_code:
        Optional override for the surfaced error code when access is denied.
        Defaults to ``"entitlement_required"``.
    message:
        Optional human-friendly message explaining the failure. If omitted, a
        default message mentioning the feature is used.
    """

    if not has_feature_access(subscription, feature, now=now):
        failure_message = message or f"Feature '{feature}' requires a Pro subscription."
        raise FeatureGateError(
            code=error_code,
            message=failure_message,
            detail={"missing_entitlement": feature},
        )
