"""Persistence layer for subscription records in the Supabase Postgres database."""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ..entitlements.models import PlanKey, SubscriptionRecord, SubscriptionStatus
from .models import BillingWebhookEvent

try:  # pragma: no cover - resolve connection helper when imported from FastAPI app
    from backend.app_context import get_conn
except ModuleNotFoundError as exc:  # pragma: no cover
    if exc.name != "backend":
        raise
    from ...app_context import get_conn  # type: ignore[no-redef]


_SUBSCRIPTION_COLUMNS = """
    id, user_id, plan, status, current_period_end, created_at, stripe_subscription_id
"""


@contextmanager
def managed_connection(conn: Optional[PgConnection] = None) -> Iterator[PgConnection]:
    """Yield ``conn`` untouched, or open a connection that commits on success.

    A caller-supplied connection belongs to the caller, who decides when to
    commit. Otherwise the connection lives for one unit of work only.
    """

    if conn is not None:
        yield conn
        return

    owned = get_conn()
    try:
        yield owned
    except Exception:
        owned.rollback()
        raise
    else:
        owned.commit()
    finally:
        owned.close()


def _row_to_subscription(row: dict) -> SubscriptionRecord:
    return SubscriptionRecord(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        plan=PlanKey(row.get("plan") or PlanKey.FREE.value),
        status=row["status"],
        current_period_end=row.get("current_period_end"),
        created_at=row["created_at"],
        stripe_subscription_id=row.get("stripe_subscription_id"),
    )


class PostgresSubscriptionRepository:
    """Reads and writes the ``subscriptions`` table."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterator[PgCursor]:
        with managed_connection(self._conn) as connection:
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cursor
            finally:
                cursor.close()

    def get_latest_for_user(self, user_id: str) -> Optional[SubscriptionRecord]:
        """Return the authoritative (most recently created) record for a user."""

        with self._cursor() as cursor:
            cursor.execute(
                f"""
                SELECT {_SUBSCRIPTION_COLUMNS}
                FROM subscriptions
                WHERE user_id = %s
                ORDER BY created_at DESC
                LIMIT 1
                """,
                (user_id,),
            )
            row = cursor.fetchone()
            return _row_to_subscription(row) if row else None

    def get_subscription(self, subscription_id: str) -> Optional[SubscriptionRecord]:
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                SELECT {_SUBSCRIPTION_COLUMNS}
                FROM subscriptions
                WHERE id = %s
                LIMIT 1
                """,
                (subscription_id,),
            )
            row = cursor.fetchone()
            return _row_to_subscription(row) if row else None

    def get_by_provider_id(self, stripe_subscription_id: str) -> Optional[SubscriptionRecord]:
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                SELECT {_SUBSCRIPTION_COLUMNS}
                FROM subscriptions
                WHERE stripe_subscription_id = %s
                ORDER BY created_at DESC
                LIMIT 1
                """,
                (stripe_subscription_id,),
            )
            row = cursor.fetchone()
            return _row_to_subscription(row) if row else None

    def upsert_subscription(self, subscription: SubscriptionRecord) -> SubscriptionRecord:
        """Insert a record, or refresh the one tied to the same provider subscription."""

        with self._cursor() as cursor:
            cursor.execute(
                f"""
                INSERT INTO subscriptions (
                    id,
                    user_id,
                    plan,
                    status,
                    current_period_end,
                    created_at,
                    stripe_subscription_id
                )
                VALUES (%(id)s, %(user_id)s, %(plan)s, %(status)s,
                        %(current_period_end)s, %(created_at)s, %(stripe_subscription_id)s)
                ON CONFLICT (stripe_subscription_id) DO UPDATE SET
                    plan = EXCLUDED.plan,
                    status = EXCLUDED.status,
                    current_period_end = EXCLUDED.current_period_end
                RETURNING {_SUBSCRIPTION_COLUMNS}
                """,
                {
                    "id": subscription.id,
                    "user_id": subscription.user_id,
                    "plan": subscription.plan.value,
                    "status": subscription.status.value,
                    "current_period_end": subscription.current_period_end,
                    "created_at": subscription.created_at,
                    "stripe_subscription_id": subscription.stripe_subscription_id,
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist subscription")
            return _row_to_subscription(row)

    def update_status(
        self,
        stripe_subscription_id: str,
        *,
        status: SubscriptionStatus,
        current_period_end: Optional[datetime] = None,
    ) -> Optional[SubscriptionRecord]:
        """Transition the record of a provider subscription; ``None`` when unknown."""

        with self._cursor() as cursor:
            cursor.execute(
                f"""
                UPDATE subscriptions
                SET status = %s,
                    current_period_end = COALESCE(%s, current_period_end)
                WHERE stripe_subscription_id = %s
                RETURNING {_SUBSCRIPTION_COLUMNS}
                """,
                (status.value, current_period_end, stripe_subscription_id),
            )
            row = cursor.fetchone()
            return _row_to_subscription(row) if row else None

    def mark_cancelled(self, subscription_id: str) -> Optional[SubscriptionRecord]:
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                UPDATE subscriptions
                SET status = %s
                WHERE id = %s
                RETURNING {_SUBSCRIPTION_COLUMNS}
                """,
                (SubscriptionStatus.CANCELLED.value, subscription_id),
            )
            row = cursor.fetchone()
            return _row_to_subscription(row) if row else None

    def set_profile_plan(self, user_id: str, plan: PlanKey) -> None:
        """Mirror the plan onto ``profiles.subscription_plan`` for the client app."""

        with self._cursor() as cursor:
            cursor.execute(
                "UPDATE profiles SET subscription_plan = %s WHERE id = %s",
                (plan.value, user_id),
            )

    def record_webhook_event(self, event: BillingWebhookEvent) -> bool:
        """Store the event id; ``False`` when it was already processed."""

        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO billing_webhook_events (
                    event_id,
                    event_type,
                    payload,
                    received_at,
                    processed_at
                )
                VALUES (%s, %s, %s, %s, NOW())
                ON CONFLICT (event_id) DO NOTHING
                """,
                (
                    event.event_id,
                    event.event_type,
                    psycopg2.extras.Json(event.data),
                    event.received_at,
                ),
            )
            return cursor.rowcount > 0

    def release_webhook_event(self, event_id: str) -> None:
        """Forget an event id so a redelivery of the event is processed."""

        with self._cursor() as cursor:
            cursor.execute("DELETE FROM billing_webhook_events WHERE event_id = %s", (event_id,))
