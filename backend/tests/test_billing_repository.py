from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List, Optional

import pytest

from backend.app.billing import BillingWebhookEvent
from backend.app.billing import repository as repository_module
from backend.app.billing.repository import PostgresSubscriptionRepository
from backend.app.entitlements import PlanKey, SubscriptionRecord, SubscriptionStatus

CREATED = datetime(2026, 2, 1, 8, 0, tzinfo=timezone.utc)


class FakeCursor:
    def __init__(self, rows: List[Optional[dict]], rowcount: int = 1) -> None:
        self._rows = list(rows)
        self.rowcount = rowcount
        self.executed: List[tuple[str, Any]] = []
        self.closed = False

    def execute(self, sql: str, params: Any = None) -> None:
        self.executed.append((" ".join(sql.split()), params))

    def fetchone(self) -> Optional[dict]:
        return self._rows.pop(0) if self._rows else None

    def close(self) -> None:
        self.closed = True


class FakeConnection:
    def __init__(self, cursor: FakeCursor) -> None:
        self._cursor = cursor
        self.commits = 0
        self.rollbacks = 0
        self.closed = False

    def cursor(self, cursor_factory=None) -> FakeCursor:
        return self._cursor

    def commit(self) -> None:
        self.commits += 1

    def rollback(self) -> None:
        self.rollbacks += 1

    def close(self) -> None:
        self.closed = True


def _row(**overrides) -> dict:
    row = {
        "id": "3f1d",
        "user_id": "user-1",
        "plan": "pro",
        "status": "active",
        "current_period_end": datetime(2026, 3, 1),
        "created_at": CREATED,
        "stripe_subscription_id": "sub_stripe_1",
    }
    row.update(overrides)
    return row


def test_get_latest_for_user_orders_by_creation():
    cursor = FakeCursor([_row()])
    repository = PostgresSubscriptionRepository(conn=FakeConnection(cursor))

    record = repository.get_latest_for_user("user-1")

    sql, params = cursor.executed[0]
    assert "ORDER BY created_at DESC LIMIT 1" in sql
    assert params == ("user-1",)
    assert record is not None
    assert record.plan == PlanKey.PRO
    assert record.current_period_end == datetime(2026, 3, 1, tzinfo=timezone.utc)
    assert cursor.closed is True


def test_rows_with_provider_spelling_are_normalized():
    cursor = FakeCursor([_row(status="canceled", plan=None)])
    repository = PostgresSubscriptionRepository(conn=FakeConnection(cursor))

    record = repository.get_subscription("3f1d")

    assert record is not None
    assert record.status == SubscriptionStatus.CANCELLED
    assert record.plan == PlanKey.FREE


def test_missing_rows_return_none():
    repository = PostgresSubscriptionRepository(conn=FakeConnection(FakeCursor([])))

    assert repository.get_latest_for_user("nobody") is None
    assert repository.get_by_provider_id("sub_missing") is None
    assert repository.update_status("sub_missing", status=SubscriptionStatus.PAST_DUE) is None


def test_upsert_subscription_conflicts_on_provider_id():
    cursor = FakeCursor([_row()])
    repository = PostgresSubscriptionRepository(conn=FakeConnection(cursor))
    record = SubscriptionRecord(
        id="new-id",
        user_id="user-1",
        plan=PlanKey.PRO,
        status=SubscriptionStatus.ACTIVE,
        created_at=CREATED,
        stripe_subscription_id="sub_stripe_1",
    )

    persisted = repository.upsert_subscription(record)

    sql, params = cursor.executed[0]
    assert "ON CONFLICT (stripe_subscription_id) DO UPDATE" in sql
    assert params["plan"] == "pro"
    assert "updated_at" not in sql
    assert params["status"] == "active"
    assert persisted.id == "3f1d"


def test_update_status_keeps_period_end_when_not_given():
    cursor = FakeCursor([_row(status="past_due")])
    repository = PostgresSubscriptionRepository(conn=FakeConnection(cursor))

    record = repository.update_status("sub_stripe_1", status=SubscriptionStatus.PAST_DUE)

    sql, params = cursor.executed[0]
    assert "COALESCE(%s, current_period_end)" in sql
    assert params == ("past_due", None, "sub_stripe_1")
    assert "updated_at" not in sql
    assert record is not None and record.status == SubscriptionStatus.PAST_DUE


@pytest.mark.parametrize(("rowcount", "expected"), [(1, True), (0, False)])
def test_record_webhook_event_reports_first_delivery(rowcount, expected):
    cursor = FakeCursor([], rowcount=rowcount)
    repository = PostgresSubscriptionRepository(conn=FakeConnection(cursor))
    event = BillingWebhookEvent(event_id="evt_1", event_type="invoice.payment_failed", data={"subscription": "s"})

    assert repository.record_webhook_event(event) is expected
    assert "ON CONFLICT (event_id) DO NOTHING" in cursor.executed[0][0]


def test_managed_connection_commits_and_closes(monkeypatch):
    connection = FakeConnection(FakeCursor([None]))
    monkeypatch.setattr(repository_module, "get_conn", lambda: connection)

    PostgresSubscriptionRepository().get_subscription("3f1d")

    assert connection.commits >= 1
    assert connection.rollbacks == 0
    assert connection.closed is True


def test_managed_connection_rolls_back_on_error(monkeypatch):
    class FailingCursor(FakeCursor):
        def execute(self, sql: str, params: Any = None) -> None:
            raise RuntimeError("relation does not exist")

    connection = FakeConnection(FailingCursor([]))
    monkeypatch.setattr(repository_module, "get_conn", lambda: connection)

    with pytest.raises(RuntimeError):
        PostgresSubscriptionRepository().get_latest_for_user("user-1")

    assert connection.rollbacks >= 1
    assert connection.closed is True


def test_mark_cancelled_targets_internal_id():
    cursor = FakeCursor([_row(status="cancelled")])
    repository = PostgresSubscriptionRepository(conn=FakeConnection(cursor))

    record = repository.mark_cancelled("3f1d")

    sql, params = cursor.executed[0]
    assert sql.startswith("UPDATE subscriptions SET status = %s WHERE id = %s")
    assert params == ("cancelled", "3f1d")
    assert record is not None and record.status == SubscriptionStatus.CANCELLED


def test_set_profile_plan_updates_profiles():
    cursor = FakeCursor([])
    repository = PostgresSubscriptionRepository(conn=FakeConnection(cursor))

    repository.set_profile_plan("user-1", PlanKey.FREE)

    assert cursor.executed == [
        ("UPDATE profiles SET subscription_plan = %s WHERE id = %s", ("free", "user-1"))
    ]


def test_release_webhook_event_deletes_the_event_id():
    cursor = FakeCursor([])
    repository = PostgresSubscriptionRepository(conn=FakeConnection(cursor))

    repository.release_webhook_event("evt_1")

    assert cursor.executed == [("DELETE FROM billing_webhook_events WHERE event_id = %s", ("evt_1",))]
