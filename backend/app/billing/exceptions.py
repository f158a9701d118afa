"""Errors raised by the subscription gateway."""
from __future__ import annotations

from typing import Optional


class GatewayError(RuntimeError):
    """A remote store or payment provider operation did not succeed."""

    def __init__(self, message: str, *, operation: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.status_code = status_code


class SubscriptionNotFoundError(GatewayError, LookupError):
    """The subscription targeted by a mutation does not exist or is not owned by the caller."""


class InvalidWebhookPayloadError(GatewayError):
    """A webhook event carried a field that could not be interpreted."""
