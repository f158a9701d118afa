"""Domain models for entitlements and plan computation."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional, Set, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PlanKey(str, Enum):
    """Canonical identifiers for subscription plans."""

    FREE = "free"
    PRO = "pro"


class SubscriptionStatus(str, Enum):
    """Lifecycle state for subscriptions."""

    ACTIVE = "active"
    CANCELLED = "cancelled"
    PAST_DUE = "past_due"


@dataclass(frozen=True)
class Finite:
    """A countable ceiling on an action."""

    value: int

    def permits(self, used: int) -> bool:
        return used < self.value

    def remaining(self, used: int) -> int:
        return max(self.value - used, 0)

    def to_json(self) -> int:
        return self.value


class Unlimited:
    """Sentinel ceiling that always permits. Use the ``UNLIMITED`` instance."""

    _instance: Optional["Unlimited"] = None

    def __new__(cls) -> "Unlimited":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def permits(self, used: int) -> bool:
        return True

    def remaining(self, used: int) -> None:
        return None

    def to_json(self) -> str:
        return "unlimited"

    def __repr__(self) -> str:
        return "UNLIMITED"

    def __reduce__(self):
        return (Unlimited, ())


UNLIMITED = Unlimited()

Limit = Union[Finite, Unlimited]


@dataclass(frozen=True)
class LimitTable:
    """Per-plan ceilings on countable actions plus boolean capabilities."""

    saves: Limit
    forks_per_month: Limit
    invites_per_month: Limit
    export_collections: bool = False
    api_access: bool = False

    def to_flags(self) -> Dict[str, Union[int, str, bool]]:
        """Serialize to the flat camelCase keys used by the clients."""

        return {
            "saves": self.saves.to_json(),
            "forksPerMonth": self.forks_per_month.to_json(),
            "invitesPerMonth": self.invites_per_month.to_json(),
            "exportCollections": self.export_collections,
            "apiAccess": self.api_access,
        }


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class SubscriptionRecord(BaseModel):
    """A user's billing relationship as stored in the ``subscriptions`` table."""

    id: str
    user_id: str
    plan: PlanKey = PlanKey.FREE
    status: SubscriptionStatus
    current_period_end: Optional[datetime] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    stripe_subscription_id: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: object) -> object:
        # Stripe spells it "canceled"; the table uses "cancelled".
        if isinstance(value, str) and value.strip().lower() == "canceled":
            return SubscriptionStatus.CANCELLED.value
        return value

    @field_validator("current_period_end", "created_at")
    @classmethod
    def _ensure_aware(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is None:
            return None
        return _as_utc(value)

    @property
    def is_active_pro(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE and self.plan == PlanKey.PRO


class EntitlementPayload(BaseModel):
    """Computed entitlement payload returned to clients."""

    user_id: str
    plan: PlanKey
    limits: Dict[str, Union[int, str, bool]]
    features: Tuple[str, ...] = ()
    subscription_id: Optional[str] = None
    subscription_status: Optional[SubscriptionStatus] = None
    grace_period_ends_at: Optional[datetime] = None
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)

    def tags(self) -> Set[str]:
        tags: Set[str] = {f"user:{self.user_id}"}
        if self.subscription_id:
            tags.add(f"subscription:{self.subscription_id}")
        return tags
