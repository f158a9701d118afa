"""Billing and entitlement configuration helpers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional
import os

_PROVIDERS = {"supabase", "sandbox"}


@dataclass(frozen=True)
class BillingConfig:
    """Configuration for the subscription gateway and entitlement service."""

    payment_provider: str
    supabase_url: str
    supabase_anon_key: str
    functions_timeout: float
    stripe_secret_key: Optional[str]
    stripe_webhook_secret: Optional[str]
    pro_monthly_price_id: str
    pro_yearly_price_id: str
    entitlement_cache_ttl: int
    app_base_url: str


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _to_float(value: Optional[str], *, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected float value, got {value!r}") from exc


def load_billing_config(env: Optional[Mapping[str, str]] = None) -> BillingConfig:
    """Load :class:`BillingConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    supabase_url = (env_mapping.get("SUPABASE_URL") or "").strip()
    default_provider = "supabase" if supabase_url else "sandbox"
    payment_provider = (env_mapping.get("PAYMENT_PROVIDER") or default_provider).strip().lower()
    if payment_provider not in _PROVIDERS:
        raise ValueError(f"Unsupported PAYMENT_PROVIDER {payment_provider!r}")
    if payment_provider == "supabase" and not supabase_url:
        raise ValueError("SUPABASE_URL is required when PAYMENT_PROVIDER=supabase")

    return BillingConfig(
        payment_provider=payment_provider,
        supabase_url=supabase_url.rstrip("/"),
        supabase_anon_key=env_mapping.get("SUPABASE_ANON_KEY", ""),
        functions_timeout=max(0.1, _to_float(env_mapping.get("SUPABASE_FUNCTIONS_TIMEOUT"), default=10.0)),
        stripe_secret_key=env_mapping.get("STRIPE_SECRET_KEY") or None,
        stripe_webhook_secret=env_mapping.get("STRIPE_WEBHOOK_SECRET") or None,
        pro_monthly_price_id=env_mapping.get("STRIPE_PRO_MONTHLY_PRICE_ID", "price_pro_monthly"),
        pro_yearly_price_id=env_mapping.get("STRIPE_PRO_YEARLY_PRICE_ID", "price_pro_yearly"),
        entitlement_cache_ttl=max(60, _to_int(env_mapping.get("ENTITLEMENT_CACHE_TTL"), default=300)),
        app_base_url=env_mapping.get("APP_BASE_URL", "http://localhost:5173").rstrip("/"),
    )
