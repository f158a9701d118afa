from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from types import SimpleNamespace

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend.app.entitlements import (
    FREE_LIMITS,
    PRO_LIMITS,
    UNLIMITED,
    Finite,
    PlanKey,
    SubscriptionRecord,
    SubscriptionStatus,
)
from backend.app.feature_gates import (
    EntitlementContext,
    FeatureGateError,
    UsageCheck,
    assert_can_export,
    assert_can_fork,
    assert_can_save,
    check_fork_allowance,
    check_save_allowance,
    count_forks_this_month,
    limit_usage_text,
    require_feature,
)

NOW = datetime(2026, 4, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def pro_subscription() -> SubscriptionRecord:
    return SubscriptionRecord(
        id="sub-123",
        user_id="user-1",
        plan=PlanKey.PRO,
        status=SubscriptionStatus.ACTIVE,
        current_period_end=NOW + timedelta(days=10),
        created_at=NOW - timedelta(days=20),
    )


def test_require_feature_allows_free_feature_without_subscription() -> None:
    require_feature(None, "basic_search")


def test_require_feature_raises_when_missing() -> None:
    with pytest.raises(FeatureGateError) as exc:
        require_feature(None, "export_collections")

    assert exc.value.code == "entitlement_required"
    assert exc.value.status_code == 403
    assert exc.value.payload["missing_entitlement"] == "export_collections"
    assert "export_collections" in exc.value.message


def test_require_feature_accepts_custom_code_and_message() -> None:
    with pytest.raises(FeatureGateError) as exc:
        require_feature(None, "api_access", error_code="upgrade_required", message="Go Pro")

    assert exc.value.payload["error"] == "upgrade_required"
    assert exc.value.payload["message"] == "Go Pro"


def test_entitlement_context_helpers(pro_subscription: SubscriptionRecord) -> None:
    context = EntitlementContext(user_id="user-1", subscription=pro_subscription, now=NOW)

    assert context.plan == PlanKey.PRO
    assert context.limits is PRO_LIMITS
    assert context.has("advanced_search") is True
    context.require("export_collections")
    assert context.assert_can_save(500).allowed is True
    assert context.assert_can_export().allowed is True


def test_entitlement_context_for_free_user() -> None:
    context = EntitlementContext(user_id="user-2", now=NOW)

    assert context.plan == PlanKey.FREE
    assert context.limits is FREE_LIMITS
    assert context.has("comment_prompts") is True

    with pytest.raises(FeatureGateError):
        context.require("priority_support")
    with pytest.raises(FeatureGateError) as exc:
        context.assert_can_export()
    assert exc.value.code == "export_not_available"


def test_cancelled_context_keeps_features_but_not_limits(pro_subscription: SubscriptionRecord) -> None:
    cancelled = pro_subscription.model_copy(update={"status": SubscriptionStatus.CANCELLED})
    context = EntitlementContext(user_id="user-1", subscription=cancelled, now=NOW + timedelta(days=20))

    assert context.has("export_collections") is True
    assert context.plan == PlanKey.FREE
    with pytest.raises(FeatureGateError):
        context.assert_can_export()


@pytest.mark.parametrize(
    ("count", "allowed"),
    [(0, True), (9, True), (10, False), (25, False)],
)
def test_save_allowance_on_free_plan(count: int, allowed: bool) -> None:
    check = check_save_allowance(FREE_LIMITS, count)

    assert isinstance(check, UsageCheck)
    assert check.allowed is allowed
    if not allowed:
        assert "limited to 10 saves" in check.message


def test_save_allowance_on_pro_plan_is_unbounded() -> None:
    check = check_save_allowance(PRO_LIMITS, 10_000)

    assert check.allowed is True
    assert check.to_dict()["limit"] == "unlimited"


def test_fork_allowance_blocks_at_monthly_ceiling() -> None:
    assert check_fork_allowance(FREE_LIMITS, 2).allowed is True
    assert check_fork_allowance(FREE_LIMITS, 3).allowed is False


def test_assert_helpers_raise_with_usage_detail() -> None:
    with pytest.raises(FeatureGateError) as save_exc:
        assert_can_save(FREE_LIMITS, 10)
    assert save_exc.value.code == "save_limit_reached"
    assert save_exc.value.payload["limit"] == 10
    assert save_exc.value.payload["used"] == 10

    with pytest.raises(FeatureGateError) as fork_exc:
        assert_can_fork(FREE_LIMITS, 3)
    assert fork_exc.value.code == "fork_limit_reached"

    assert assert_can_fork(PRO_LIMITS, 99).allowed is True
    assert assert_can_export(PRO_LIMITS).allowed is True


def test_count_forks_this_month_filters_owner_parent_and_month() -> None:
    prompts = [
        {"user_id": "user-1", "parent_id": "p-1", "created_at": "2026-04-02T10:00:00Z"},
        {"userId": "user-1", "parentId": "p-2", "createdAt": "2026-04-14T23:59:59+00:00"},
        SimpleNamespace(user_id="user-1", parent_id="p-3", created_at=datetime(2026, 4, 1)),
        {"user_id": "user-1", "parent_id": None, "created_at": "2026-04-05T00:00:00Z"},
        {"user_id": "user-2", "parent_id": "p-4", "created_at": "2026-04-05T00:00:00Z"},
        {"user_id": "user-1", "parent_id": "p-5", "created_at": "2026-03-31T23:59:59Z"},
        {"user_id": "user-1", "parent_id": "p-6", "created_at": "not-a-date"},
    ]

    assert count_forks_this_month(prompts, "user-1", now=NOW) == 3


@pytest.mark.parametrize(
    ("kind", "limit", "used", "expected"),
    [
        ("saves", Finite(10), 3, "3/10 saves used"),
        ("forks", Finite(3), 1, "1/3 forks this month"),
        ("saves", UNLIMITED, 42, "Unlimited saves"),
        ("forks", UNLIMITED, 0, "Unlimited forks"),
    ],
)
def test_limit_usage_text(kind, limit, used, expected) -> None:
    assert limit_usage_text(kind, limit, used) == expected


def test_feature_gate_error_converts_to_http_exception() -> None:
    error = FeatureGateError(code="entitlement_required", message="flag missing")
    http_exc = error.to_http_exception()

    assert http_exc.status_code == 403
    assert http_exc.detail["error"] == "entitlement_required"
    assert http_exc.detail["message"] == "flag missing"
    assert http_exc.detail["upgradeTo"] == "pro"
