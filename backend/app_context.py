"""Late-bound hooks shared between ``backend.main`` and the modular routers.

``backend.main`` owns the database settings and the Supabase token decoding;
it registers both here at import time so the billing repository and routes
can use them without importing ``main`` themselves.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional


@dataclass
class _Hooks:
    connect: Optional[Callable[[], Any]] = None
    current_user: Optional[Callable[..., Any]] = None


_hooks = _Hooks()


def configure(
    *,
    get_conn: Callable[[], Any],
    get_current_user: Callable[..., Any],
) -> None:
    _hooks.connect = get_conn
    _hooks.current_user = get_current_user


def reset() -> None:
    """Forget registered hooks (used by tests)."""

    _hooks.connect = None
    _hooks.current_user = None


def get_conn() -> Any:
    """Open a new psycopg2 connection using the registered factory."""

    if _hooks.connect is None:
        raise RuntimeError("Database connection factory is not configured; import backend.main first")
    return _hooks.connect()


def get_current_user(*args: Any, **kwargs: Any) -> Any:
    if _hooks.current_user is None:
        raise RuntimeError("Authentication dependency is not configured; import backend.main first")
    return _hooks.current_user(*args, **kwargs)
