"""Feature gating utilities coordinating entitlement enforcement."""
from .context import EntitlementContext
from .enforcement import require_feature
from .exceptions import FeatureGateError
from .quota import (
    UsageCheck,
    assert_can_export,
    assert_can_fork,
    assert_can_save,
    check_export_allowance,
    check_fork_allowance,
    check_save_allowance,
    count_forks_this_month,
    limit_usage_text,
)

__all__ = [
    "EntitlementContext",
    "FeatureGateError",
    "UsageCheck",
    "assert_can_export",
    "assert_can_fork",
    "assert_can_save",
    "check_export_allowance",
    "check_fork_allowance",
    "check_save_allowance",
    "count_forks_this_month",
    "limit_usage_text",
    "require_feature",
]
