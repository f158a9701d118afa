from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend.app.entitlements import (
    FREE_FEATURES,
    FREE_LIMITS,
    PRO_FEATURES,
    PRO_LIMITS,
    UNLIMITED,
    Finite,
    PlanKey,
    SubscriptionRecord,
    SubscriptionStatus,
    Unlimited,
    get_subscription_limits,
    grace_period_end,
    has_feature_access,
    limit_discrepancies,
)

PERIOD_END = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
NON_FREE_FEATURES = sorted(PRO_FEATURES | {"custom_domains", "", "CREATE_PROMPTS"})
ALL_FEATURES = sorted(FREE_FEATURES | PRO_FEATURES | {"custom_domains"})


def _record(
    *,
    plan: PlanKey = PlanKey.PRO,
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    current_period_end=PERIOD_END,
) -> SubscriptionRecord:
    return SubscriptionRecord(
        id="sub-1",
        user_id="user-1",
        plan=plan,
        status=status,
        current_period_end=current_period_end,
        created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )


@pytest.mark.parametrize("feature", sorted(FREE_FEATURES))
def test_free_features_allowed_without_subscription(feature: str) -> None:
    assert has_feature_access(None, feature) is True


@pytest.mark.parametrize("feature", NON_FREE_FEATURES)
def test_other_features_denied_without_subscription(feature: str) -> None:
    assert has_feature_access(None, feature) is False


@pytest.mark.parametrize("feature", ALL_FEATURES)
def test_active_pro_allows_every_feature(feature: str) -> None:
    assert has_feature_access(_record(), feature) is True


@pytest.mark.parametrize("feature", ALL_FEATURES)
def test_past_due_pro_denies_every_feature(feature: str) -> None:
    assert has_feature_access(_record(status=SubscriptionStatus.PAST_DUE), feature) is False


def test_active_free_plan_denies_even_free_features() -> None:
    record = _record(plan=PlanKey.FREE)

    assert has_feature_access(record, "create_prompts") is False
    assert has_feature_access(record, "export_collections") is False


@pytest.mark.parametrize(
    ("offset", "expected"),
    [
        (timedelta(days=-5), True),
        (timedelta(days=29), True),
        (timedelta(days=30), True),
        (timedelta(days=30, seconds=1), False),
        (timedelta(days=31), False),
    ],
)
def test_cancelled_grace_period_is_anchored_on_period_end(offset: timedelta, expected: bool) -> None:
    record = _record(status=SubscriptionStatus.CANCELLED)

    assert has_feature_access(record, "export_collections", now=PERIOD_END + offset) is expected


def test_cancelled_without_period_end_is_denied() -> None:
    record = _record(status=SubscriptionStatus.CANCELLED, current_period_end=None)

    assert has_feature_access(record, "view_prompts", now=PERIOD_END) is False
    assert grace_period_end(record) is None


def test_grace_period_end_only_for_cancelled_records() -> None:
    assert grace_period_end(_record(status=SubscriptionStatus.CANCELLED)) == PERIOD_END + timedelta(days=30)
    assert grace_period_end(_record()) is None
    assert grace_period_end(None) is None


def test_period_end_near_datetime_max_does_not_overflow() -> None:
    far_end = datetime(9999, 12, 15, tzinfo=timezone.utc)
    record = _record(status=SubscriptionStatus.CANCELLED, current_period_end=far_end)

    assert grace_period_end(record) == datetime.max.replace(tzinfo=timezone.utc)
    assert has_feature_access(record, "api_access", now=PERIOD_END) is True
    assert has_feature_access(
        {"id": "sub-1", "user_id": "user-1", "plan": "pro", "status": "canceled",
         "current_period_end": "9999-12-31T00:00:00Z", "created_at": "2026-01-01T00:00:00Z"},
        "api_access",
        now=PERIOD_END,
    ) is True


def test_naive_now_is_treated_as_utc() -> None:
    record = _record(status=SubscriptionStatus.CANCELLED)
    naive_now = (PERIOD_END + timedelta(days=29)).replace(tzinfo=None)

    assert has_feature_access(record, "api_access", now=naive_now) is True


def test_limits_for_absent_subscription_are_free() -> None:
    limits = get_subscription_limits(None)

    assert limits is FREE_LIMITS
    assert limits.saves == Finite(10)
    assert limits.forks_per_month == Finite(3)
    assert limits.invites_per_month == Finite(0)
    assert limits.export_collections is False
    assert limits.api_access is False


def test_limits_for_active_pro_use_unlimited_sentinel() -> None:
    limits = get_subscription_limits(_record())

    assert limits is PRO_LIMITS
    assert limits.saves is UNLIMITED
    assert isinstance(limits.forks_per_month, Unlimited)
    assert limits.invites_per_month == Finite(3)
    assert limits.saves.permits(10**9) is True
    assert limits.to_flags()["saves"] == "unlimited"


@pytest.mark.parametrize(
    "status",
    [SubscriptionStatus.CANCELLED, SubscriptionStatus.PAST_DUE],
)
def test_limits_for_non_active_pro_fall_back_to_free(status: SubscriptionStatus) -> None:
    assert get_subscription_limits(_record(status=status)) is FREE_LIMITS


def test_finite_limit_permits_strictly_below_ceiling() -> None:
    limit = Finite(3)

    assert limit.permits(2) is True
    assert limit.permits(3) is False
    assert limit.remaining(5) == 0


def test_unlimited_is_a_singleton() -> None:
    assert Unlimited() is UNLIMITED
    assert UNLIMITED != Finite(10**9)


def test_mapping_input_is_coerced() -> None:
    raw = {
        "id": "sub-raw",
        "user_id": "user-9",
        "plan": "pro",
        "status": "active",
        "current_period_end": "2026-03-01T12:00:00Z",
        "created_at": "2026-01-01T00:00:00Z",
    }

    assert has_feature_access(raw, "api_access") is True
    assert get_subscription_limits(raw) is PRO_LIMITS


def test_stripe_spelling_of_cancelled_is_accepted() -> None:
    raw = {
        "id": "sub-raw",
        "user_id": "user-9",
        "plan": "pro",
        "status": "canceled",
        "current_period_end": PERIOD_END,
    }

    assert has_feature_access(raw, "api_access", now=PERIOD_END + timedelta(days=1)) is True


@pytest.mark.parametrize(
    "malformed",
    [
        {"status": "active", "plan": "pro"},
        {"id": "x", "user_id": "y", "plan": "enterprise", "status": "active"},
        {"id": "x", "user_id": "y", "plan": "pro", "status": "trialing"},
        "active",
        42,
    ],
)
def test_malformed_input_fails_closed(malformed) -> None:
    assert has_feature_access(malformed, "export_collections") is False
    assert has_feature_access(malformed, "view_prompts") is True
    assert get_subscription_limits(malformed) is FREE_LIMITS


def test_evaluation_is_idempotent() -> None:
    record = _record(status=SubscriptionStatus.CANCELLED)
    now = PERIOD_END + timedelta(days=10)

    first = [has_feature_access(record, feature, now=now) for feature in ALL_FEATURES]
    second = [has_feature_access(record, feature, now=now) for feature in ALL_FEATURES]

    assert first == second
    assert get_subscription_limits(record) == get_subscription_limits(record)


def test_limit_discrepancies_flag_invite_allowances() -> None:
    assert limit_discrepancies(PlanKey.FREE) == ("invites_per_month",)
    assert limit_discrepancies(PlanKey.PRO) == ("invites_per_month",)
