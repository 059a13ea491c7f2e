import asyncio
from datetime import datetime, timezone

import httpx
import pytest
from sqlalchemy import func, select

from batch_alert.core.config import get_settings
from batch_alert.core.db import dispose_engine, get_session_factory
from batch_alert.core.errors import ValidationError
from batch_alert.core.roles import capabilities_for
from batch_alert.models import NotificationRecord, Profile, WebhookConfig
from batch_alert.services.batches import create_batch
from batch_alert.services.notification_logging import list_notifications, record_notification
from batch_alert.services.notifications import (
    _PENDING_DISPATCHES,
    build_batch_full_payload,
    dispatch_batch_full,
    dispatch_batch_full_detached,
    send_test_notification,
)
from batch_alert.services.webhooks import create_webhook_config, normalize_webhook_url

ADMIN = capabilities_for("admin", "marketing")
TECH_HOOK = "https://hooks.example.com/tech"
TECH_BACKUP_HOOK = "https://hooks.example.com/tech-backup"
FINANCE_HOOK = "https://hooks.example.com/finance"


@pytest.fixture(autouse=True)
def notifications_db(tmp_path, monkeypatch):
    db_path = tmp_path / "notifications.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{db_path}")
    monkeypatch.setenv("BATCH_ALERT_WEBHOOK_RETRY_DELAY_MS", "0")
    get_settings.cache_clear()
    yield
    asyncio.run(dispose_engine())
    get_settings.cache_clear()


class _DummyResponse:
    def __init__(self, status_code: int = 200):
        self.status_code = status_code


class _DummyAsyncClient:
    calls: list[dict] = []
    outcomes: dict[str, list] = {}

    def __init__(self, *args, **kwargs):
        self.kwargs = kwargs

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def post(self, url, *, json, headers):
        _DummyAsyncClient.calls.append({"url": url, "json": json, "headers": headers})
        queued = _DummyAsyncClient.outcomes.get(url)
        outcome = queued.pop(0) if queued else 200
        if isinstance(outcome, Exception):
            raise outcome
        return _DummyResponse(outcome)

    @classmethod
    def reset(cls):
        cls.calls = []
        cls.outcomes = {}


@pytest.fixture(autouse=True)
def dummy_client(monkeypatch):
    _DummyAsyncClient.reset()
    monkeypatch.setattr(httpx, "AsyncClient", _DummyAsyncClient)
    yield _DummyAsyncClient
    _DummyAsyncClient.reset()


async def _create_webhook(session, url, department="tech", *, is_active=True, name="Alerts"):
    return await create_webhook_config(
        session,
        ADMIN,
        {"name": name, "webhook_url": url, "department": department, "is_active": is_active},
    )


async def _create_full_batch(session, **overrides):
    data = {
        "name": "Data Science 101",
        "department": "tech",
        "max_capacity": 30,
        "current_count": 30,
        "coordinator": "Dana Reyes",
    }
    data.update(overrides)
    return await create_batch(session, ADMIN, data)


async def _count_records(session) -> int:
    result = await session.execute(select(func.count()).select_from(NotificationRecord))
    return int(result.scalar_one())


@pytest.mark.asyncio
async def test_dispatch_posts_alert_and_records_success(dummy_client):
    session_factory = await get_session_factory()
    async with session_factory() as session:
        webhook = await _create_webhook(session, TECH_HOOK)
        await _create_webhook(session, FINANCE_HOOK, department="finance")
        batch = await _create_full_batch(session)

        records = await dispatch_batch_full(session, batch)

    assert len(dummy_client.calls) == 1
    call = dummy_client.calls[0]
    assert call["url"] == TECH_HOOK
    assert call["headers"]["Content-Type"] == "application/json"
    payload = call["json"]
    assert payload["text"].startswith(
        "Batch Full Alert: Data Science 101 in tech department is now full (30/30 enrolled)."
    )
    assert "Course Coordinator: Dana Reyes" in payload["text"]
    assert payload["timestamp"].endswith("Z")
    assert payload["batchData"] == {
        "name": "Data Science 101",
        "status": "full",
        "capacity": "30/30",
        "department": "tech",
        "coordinator": "Dana Reyes",
        "seatsRemaining": 0,
    }

    assert len(records) == 1
    record = records[0]
    assert record.status == "sent"
    assert record.sent_at is not None
    assert record.error_message is None
    assert record.attempts == 1
    assert record.response_status_code == 200
    assert record.batch_id == batch.id
    assert record.webhook_config_id == webhook.id
    assert record.message == payload["text"]


@pytest.mark.asyncio
async def test_dispatch_retries_before_succeeding(dummy_client):
    dummy_client.outcomes[TECH_HOOK] = [
        httpx.ConnectError("connection refused"),
        httpx.ConnectError("connection refused"),
        200,
    ]
    session_factory = await get_session_factory()
    async with session_factory() as session:
        await _create_webhook(session, TECH_HOOK)
        batch = await _create_full_batch(session)
        records = await dispatch_batch_full(session, batch)

    assert len(dummy_client.calls) == 3
    assert records[0].status == "sent"
    assert records[0].attempts == 3


@pytest.mark.asyncio
async def test_dispatch_records_failure_after_exhausting_attempts(dummy_client):
    dummy_client.outcomes[TECH_HOOK] = [httpx.ConnectError("connection refused")] * 3
    session_factory = await get_session_factory()
    async with session_factory() as session:
        await _create_webhook(session, TECH_HOOK)
        batch = await _create_full_batch(session)
        records = await dispatch_batch_full(session, batch)

    assert len(dummy_client.calls) == 3
    record = records[0]
    assert record.status == "failed"
    assert record.sent_at is None
    assert record.attempts == 3
    assert "connection refused" in record.error_message


@pytest.mark.asyncio
async def test_dispatch_fans_out_and_isolates_failures(dummy_client):
    dummy_client.outcomes[TECH_BACKUP_HOOK] = [httpx.ReadTimeout("timed out")] * 3
    session_factory = await get_session_factory()
    async with session_factory() as session:
        primary = await _create_webhook(session, TECH_HOOK, name="Primary")
        backup = await _create_webhook(session, TECH_BACKUP_HOOK, name="Backup")
        await _create_webhook(
            session, "https://hooks.example.com/disabled", is_active=False, name="Disabled"
        )
        batch = await _create_full_batch(session)
        records = await dispatch_batch_full(session, batch)

    called = {call["url"] for call in dummy_client.calls}
    assert called == {TECH_HOOK, TECH_BACKUP_HOOK}
    outcomes = {record.webhook_config_id: record.status for record in records}
    assert outcomes == {primary.id: "sent", backup.id: "failed"}


@pytest.mark.asyncio
async def test_non_success_response_counts_as_sent_unless_verified(dummy_client, monkeypatch):
    dummy_client.outcomes[TECH_HOOK] = [500]
    session_factory = await get_session_factory()
    async with session_factory() as session:
        await _create_webhook(session, TECH_HOOK)
        batch = await _create_full_batch(session)
        optimistic = await dispatch_batch_full(session, batch)

        monkeypatch.setenv("BATCH_ALERT_WEBHOOK_VERIFY_RESPONSE", "true")
        get_settings.cache_clear()
        dummy_client.outcomes[TECH_HOOK] = [500, 502, 503]
        verified = await dispatch_batch_full(session, batch)

    assert optimistic[0].status == "sent"
    assert optimistic[0].response_status_code == 500
    assert optimistic[0].attempts == 1

    assert verified[0].status == "failed"
    assert verified[0].attempts == 3
    assert verified[0].response_status_code == 503
    assert verified[0].error_message == "Webhook responded with HTTP 503"


@pytest.mark.asyncio
async def test_dispatch_without_active_webhooks_writes_nothing(dummy_client):
    session_factory = await get_session_factory()
    async with session_factory() as session:
        await _create_webhook(session, TECH_HOOK, is_active=False)
        await _create_webhook(session, FINANCE_HOOK, department="finance")
        batch = await _create_full_batch(session)

        records = await dispatch_batch_full(session, batch)
        total = await _count_records(session)

    assert records == []
    assert total == 0
    assert dummy_client.calls == []


@pytest.mark.asyncio
async def test_coordinator_falls_back_to_creator_then_placeholder(dummy_client):
    session_factory = await get_session_factory()
    async with session_factory() as session:
        creator = Profile(
            email="lead@example.com",
            full_name="Morgan Lee",
            role="tech_lead",
            department="tech",
            hashed_password="not-a-real-hash",
        )
        session.add(creator)
        await session.commit()
        await session.refresh(creator)

        await _create_webhook(session, TECH_HOOK)
        owned = await create_batch(
            session,
            ADMIN,
            {"name": "Owned", "department": "tech", "max_capacity": 2, "current_count": 2},
            created_by=creator.id,
        )
        orphan = await _create_full_batch(session, name="Orphan", coordinator=None)

        await dispatch_batch_full(session, owned)
        await dispatch_batch_full(session, orphan)

    coordinators = [call["json"]["batchData"]["coordinator"] for call in dummy_client.calls]
    assert coordinators == ["Morgan Lee", "Unassigned"]


def test_payload_uses_utc_timestamp_and_remaining_seats():
    class _Batch:
        name = "Evening Cohort"
        status = "open"
        department = "design"
        current_count = 18
        max_capacity = 20

    payload = build_batch_full_payload(
        _Batch(),
        message="hello",
        coordinator="Sam",
        timestamp=datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc),
    )

    assert payload["timestamp"] == "2024-05-01T09:30:00Z"
    assert payload["batchData"]["capacity"] == "18/20"
    assert payload["batchData"]["seatsRemaining"] == 2


@pytest.mark.asyncio
async def test_send_test_notification_records_without_batch(dummy_client):
    session_factory = await get_session_factory()
    async with session_factory() as session:
        webhook = await _create_webhook(session, TECH_HOOK)
        record = await send_test_notification(session, webhook)

    assert len(dummy_client.calls) == 1
    payload = dummy_client.calls[0]["json"]
    assert payload["isTest"] is True
    assert payload["text"].startswith("Test notification from ")
    assert record.batch_id is None
    assert record.webhook_config_id == webhook.id
    assert record.status == "sent"


@pytest.mark.asyncio
async def test_history_is_newest_first_and_stable():
    session_factory = await get_session_factory()
    async with session_factory() as session:
        first = await record_notification(session, message="first")
        second = await record_notification(session, message="second", error_message="boom")
        third = await record_notification(session, message="third")

        history = await list_notifications(session, limit=50)
        again = await list_notifications(session, limit=50)
        limited = await list_notifications(session, limit=2)
        failed = await list_notifications(session, limit=50, status="failed")

    assert [record.id for record in history] == [third.id, second.id, first.id]
    assert [record.id for record in again] == [record.id for record in history]
    assert [record.id for record in limited] == [third.id, second.id]
    assert [record.message for record in failed] == ["second"]
    assert failed[0].sent_at is None


def test_urls_httpx_cannot_send_are_rejected_at_registration():
    with pytest.raises(ValidationError):
        normalize_webhook_url("http://ex\u0001ample.com/hook")
    assert normalize_webhook_url(" https://hooks.example.com/tech ") == TECH_HOOK


@pytest.mark.asyncio
async def test_unsendable_url_is_recorded_as_failed_without_blocking_siblings(dummy_client):
    bad_url = "http://ex\u0001ample.com/hook"
    dummy_client.outcomes[bad_url] = [
        httpx.InvalidURL("Invalid non-printable ASCII character in URL")
    ]
    session_factory = await get_session_factory()
    async with session_factory() as session:
        good = await _create_webhook(session, TECH_HOOK, name="Good")
        # Rows stored before URL validation tightened can still hold such values.
        bad = WebhookConfig(name="Legacy", webhook_url=bad_url, department="tech")
        session.add(bad)
        await session.commit()
        await session.refresh(bad)
        batch = await _create_full_batch(session)

        records = await dispatch_batch_full(session, batch)

    by_webhook = {record.webhook_config_id: record for record in records}
    assert set(by_webhook) == {good.id, bad.id}
    assert by_webhook[good.id].status == "sent"
    failed = by_webhook[bad.id]
    assert failed.status == "failed"
    assert failed.attempts == 1
    assert "non-printable" in failed.error_message
    assert [call["url"] for call in dummy_client.calls].count(bad_url) == 1


@pytest.mark.asyncio
async def test_detached_dispatch_finishes_after_caller_is_cancelled(monkeypatch):
    entered = asyncio.Event()
    release = asyncio.Event()

    class _BlockingAsyncClient(_DummyAsyncClient):
        async def post(self, url, *, json, headers):
            entered.set()
            await release.wait()
            return await super().post(url, json=json, headers=headers)

    monkeypatch.setattr(httpx, "AsyncClient", _BlockingAsyncClient)
    session_factory = await get_session_factory()
    async with session_factory() as session:
        webhook = await _create_webhook(session, TECH_HOOK)
        batch = await _create_full_batch(session)

    caller = asyncio.ensure_future(dispatch_batch_full_detached(batch))
    await entered.wait()
    caller.cancel()
    with pytest.raises(asyncio.CancelledError):
        await caller

    release.set()
    await asyncio.gather(*list(_PENDING_DISPATCHES))

    async with session_factory() as session:
        result = await session.execute(select(NotificationRecord))
        records = result.scalars().all()

    assert len(records) == 1
    assert records[0].status == "sent"
    assert records[0].batch_id == batch.id
    assert records[0].webhook_config_id == webhook.id
