"""Errors raised when a plan does not cover the requested action."""
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status

from ..entitlements.models import PlanKey


class FeatureGateError(Exception):
    """A denied feature or exhausted allowance, surfaced to clients as an upgrade prompt.

    ``payload`` is the JSON body the clients read to decide which upgrade
    dialog to show: ``error`` is the machine code, ``upgradeTo`` the plan that
    lifts the restriction, and any ``detail`` keys (limit, used, missing
    feature) are merged in.
    """

    def __init__(
        self,
        code: str,
        message: str,
        *,
        status_code: int = status.HTTP_403_FORBIDDEN,
        detail: Optional[Mapping[str, Any]] = None,
        upgrade_to: PlanKey = PlanKey.PRO,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.detail = dict(detail or {})
        self.upgrade_to = upgrade_to

    @property
    def payload(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "error": self.code,
            "message": self.message,
            "upgradeTo": self.upgrade_to.value,
        }
        body.update(self.detail)
        return body

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=self.payload)

    def __repr__(self) -> str:
        return f"FeatureGateError(code={self.code!r}, message={self.message!r})"
