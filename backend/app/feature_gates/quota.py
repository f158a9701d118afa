"""Usage allowance checks for saves, forks and exports."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional, Union

from ..entitlements import Finite, Limit, LimitTable
from .exceptions import FeatureGateError

_NOUNS = {
    "saves": ("saves", "saves used"),
    "forks": ("forks", "forks this month"),
    "invites": ("invites", "invites this month"),
}


@dataclass(frozen=True)
class UsageCheck:
    """Represents the outcome of a usage allowance check."""

    allowed: bool
    used: int
    limit: Limit
    message: Optional[str] = None

    def to_dict(self) -> dict[str, Union[int, str, bool, None]]:
        """Serialize the check for logging or API responses."""

        return {
            "allowed": self.allowed,
            "used": self.used,
            "limit": self.limit.to_json(),
            "message": self.message,
        }


def check_save_allowance(limits: LimitTable, current_count: int) -> UsageCheck:
    if limits.saves.permits(current_count):
        return UsageCheck(allowed=True, used=current_count, limit=limits.saves)
    return UsageCheck(
        allowed=False,
        used=current_count,
        limit=limits.saves,
        message=(
            f"Free users are limited to {limits.saves.to_json()} saves. "
            "Upgrade to Pro for unlimited saves!"
        ),
    )


def check_fork_allowance(limits: LimitTable, forks_this_month: int) -> UsageCheck:
    if limits.forks_per_month.permits(forks_this_month):
        return UsageCheck(allowed=True, used=forks_this_month, limit=limits.forks_per_month)
    return UsageCheck(
        allowed=False,
        used=forks_this_month,
        limit=limits.forks_per_month,
        message=(
            f"Free users are limited to {limits.forks_per_month.to_json()} forks per month. "
            "Upgrade to Pro for unlimited forking!"
        ),
    )


def check_export_allowance(limits: LimitTable) -> UsageCheck:
    if limits.export_collections:
        return UsageCheck(allowed=True, used=0, limit=Finite(1))
    return UsageCheck(
        allowed=False,
        used=0,
        limit=Finite(0),
        message="Export feature is only available for Pro users. Upgrade to unlock!",
    )


def _raise_if_denied(check: UsageCheck, error_code: str) -> UsageCheck:
    if not check.allowed:
        raise FeatureGateError(
            code=error_code,
            message=check.message or "Usage limit reached.",
            detail={"limit": check.limit.to_json(), "used": check.used},
        )
    return check


def assert_can_save(limits: LimitTable, current_count: int) -> UsageCheck:
    """Raise when saving one more prompt would exceed the plan ceiling."""

    return _raise_if_denied(check_save_allowance(limits, current_count), "save_limit_reached")


def assert_can_fork(limits: LimitTable, forks_this_month: int) -> UsageCheck:
    """Raise when the monthly fork allowance has been used up."""

    return _raise_if_denied(check_fork_allowance(limits, forks_this_month), "fork_limit_reached")


def assert_can_export(limits: LimitTable) -> UsageCheck:
    return _raise_if_denied(check_export_allowance(limits), "export_not_available")


def _field(prompt: Any, *names: str) -> Any:
    for name in names:
        if isinstance(prompt, Mapping):
            if name in prompt:
                return prompt[name]
        elif hasattr(prompt, name):
            return getattr(prompt, name)
    return None


def _parse_created(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def count_forks_this_month(
    prompts: Iterable[Any],
    user_id: str,
    *,
    now: Optional[datetime] = None,
) -> int:
    """Count prompts forked by ``user_id`` during the current calendar month (UTC)."""

    current = now or datetime.now(timezone.utc)
    count = 0
    for prompt in prompts:
        owner = _field(prompt, "user_id", "userId")
        parent = _field(prompt, "parent_id", "parentId")
        if owner is None or str(owner) != str(user_id) or not parent:
            continue
        created = _parse_created(_field(prompt, "created_at", "createdAt"))
        if created is None:
            continue
        created = created.astimezone(current.tzinfo or timezone.utc)
        if created.year == current.year and created.month == current.month:
            count += 1
    return count


def limit_usage_text(kind: str, limit: Limit, used: int) -> str:
    """Render the usage summary shown next to counters, e.g. ``"3/10 saves used"``."""

    noun, suffix = _NOUNS.get(kind, (kind, kind))
    if not isinstance(limit, Finite):
        return f"Unlimited {noun}"
    return f"{used}/{limit.value} {suffix}"
