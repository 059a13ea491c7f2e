"""Batch-full notification dispatch.

A dispatch looks up every active webhook for the batch's department, posts
the alert to all of them concurrently, and writes one notification record per
webhook whatever the outcome. Delivery failures are recorded, never raised to
the caller of the batch mutation.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence
from urllib.parse import urlsplit

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from batch_alert.core.config import Settings, get_settings
from batch_alert.core.db import session_scope
from batch_alert.core.errors import DeliveryError, StoreError
from batch_alert.models import Batch, NotificationRecord, Profile, WebhookConfig, utcnow
from batch_alert.services.notification_logging import record_notification
from batch_alert.services.webhooks import find_active_webhooks

logger = logging.getLogger(__name__)

UNASSIGNED_COORDINATOR = "Unassigned"


@dataclass(frozen=True)
class DeliveryPolicy:
    attempts: int
    delay_ms: int
    timeout_seconds: float
    verify_response: bool

    @classmethod
    def from_settings(cls, settings: Settings) -> "DeliveryPolicy":
        return cls(
            attempts=max(1, settings.webhook_retry_attempts),
            delay_ms=max(0, settings.webhook_retry_delay_ms),
            timeout_seconds=settings.webhook_timeout_seconds,
            verify_response=settings.webhook_verify_response,
        )

    def build_timeout(self) -> httpx.Timeout:
        return httpx.Timeout(self.timeout_seconds, connect=min(5.0, self.timeout_seconds))


@dataclass
class DeliveryResult:
    webhook_id: int
    attempts: int
    status_code: int | None = None
    error: str | None = None

    @property
    def delivered(self) -> bool:
        return self.error is None


def _isoformat(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _redact_url(url: str) -> str:
    # The URL is the webhook's only credential; keep the path out of logs.
    try:
        parts = urlsplit(url)
    except ValueError:
        return "<invalid url>"
    return f"{parts.scheme}://{parts.hostname or ''}/..."


def _describe_error(exc: BaseException) -> str:
    text = str(exc).strip()
    return text or exc.__class__.__name__


def build_batch_full_message(batch: Batch, coordinator: str) -> str:
    seats_remaining = max(0, batch.max_capacity - batch.current_count)
    return (
        f"Batch Full Alert: {batch.name} in {batch.department} department is now full "
        f"({batch.current_count}/{batch.max_capacity} enrolled).\n"
        f"Course Coordinator: {coordinator}\n"
        f"Seats Remaining: {seats_remaining}"
    )


def build_batch_full_payload(
    batch: Batch,
    *,
    message: str,
    coordinator: str,
    timestamp: datetime,
) -> dict[str, Any]:
    return {
        "text": message,
        "timestamp": _isoformat(timestamp),
        "batchData": {
            "name": batch.name,
            "status": batch.status,
            "capacity": f"{batch.current_count}/{batch.max_capacity}",
            "department": batch.department,
            "coordinator": coordinator,
            "seatsRemaining": max(0, batch.max_capacity - batch.current_count),
        },
    }


async def resolve_coordinator(session: AsyncSession, batch: Batch) -> str:
    """Coordinator named on the batch, else its creator, else a placeholder."""

    if batch.coordinator:
        return batch.coordinator
    if batch.created_by is not None:
        creator = await session.get(Profile, batch.created_by)
        if creator is not None:
            return creator.full_name or creator.email
    return UNASSIGNED_COORDINATOR


async def post_webhook(
    client: httpx.AsyncClient,
    url: str,
    payload: Mapping[str, Any],
    policy: DeliveryPolicy,
) -> tuple[int, int | None]:
    """POST ``payload`` until it goes through or the attempts run out.

    Returns ``(attempts_used, status_code)``. Unless the policy verifies
    responses, any response that arrives counts as delivered.
    Raises :class:`DeliveryError` once every attempt has failed, or at once
    when httpx refuses the URL.
    """

    last_error = "Webhook delivery failed"
    status_code: int | None = None
    for attempt in range(1, policy.attempts + 1):
        try:
            response = await client.post(
                url,
                json=dict(payload),
                headers={"Content-Type": "application/json"},
            )
        except httpx.InvalidURL as exc:
            # Raised while building the request, outside the HTTPError hierarchy.
            raise DeliveryError(_describe_error(exc), attempts=attempt) from exc
        except httpx.HTTPError as exc:
            status_code = None
            last_error = _describe_error(exc)
        else:
            status_code = getattr(response, "status_code", None)
            if not policy.verify_response or status_code is None or 200 <= status_code < 300:
                return attempt, status_code
            last_error = f"Webhook responded with HTTP {status_code}"

        if attempt < policy.attempts:
            logger.warning(
                "Webhook delivery to %s failed (attempt %s/%s): %s; retrying in %sms",
                _redact_url(url),
                attempt,
                policy.attempts,
                last_error,
                policy.delay_ms,
            )
            if policy.delay_ms:
                await asyncio.sleep(policy.delay_ms / 1000)

    raise DeliveryError(last_error, attempts=policy.attempts, status_code=status_code)


async def _deliver(
    client: httpx.AsyncClient,
    webhook: WebhookConfig,
    payload: Mapping[str, Any],
    policy: DeliveryPolicy,
) -> DeliveryResult:
    try:
        attempts, status_code = await post_webhook(client, webhook.webhook_url, payload, policy)
    except DeliveryError as exc:
        logger.warning(
            "Failed to deliver notification to webhook %s (%s) after %s attempt(s): %s",
            webhook.id,
            _redact_url(webhook.webhook_url),
            exc.attempts,
            exc.message,
        )
        return DeliveryResult(
            webhook_id=webhook.id,
            attempts=exc.attempts,
            status_code=exc.status_code,
            error=exc.message,
        )
    logger.info(
        "Delivered notification to webhook %s (%s) in %s attempt(s)",
        webhook.id,
        _redact_url(webhook.webhook_url),
        attempts,
    )
    return DeliveryResult(webhook_id=webhook.id, attempts=attempts, status_code=status_code)


async def deliver_to_webhooks(
    webhooks: Sequence[WebhookConfig],
    payload: Mapping[str, Any],
    policy: DeliveryPolicy | None = None,
) -> list[DeliveryResult]:
    """Post ``payload`` to every webhook concurrently, preserving input order."""

    policy = policy or DeliveryPolicy.from_settings(get_settings())
    async with httpx.AsyncClient(timeout=policy.build_timeout()) as client:
        return list(
            await asyncio.gather(
                *(_deliver(client, webhook, payload, policy) for webhook in webhooks)
            )
        )


async def _record_results(
    session: AsyncSession,
    results: Sequence[DeliveryResult],
    *,
    message: str,
    batch_id: int | None,
) -> list[NotificationRecord]:
    records: list[NotificationRecord] = []
    for result in results:
        records.append(
            await record_notification(
                session,
                message=message,
                batch_id=batch_id,
                webhook_config_id=result.webhook_id,
                attempts=result.attempts,
                response_status_code=result.status_code,
                error_message=result.error,
            )
        )
    return records


async def dispatch_batch_full(
    session: AsyncSession,
    batch: Batch,
) -> list[NotificationRecord]:
    """Notify every active webhook of ``batch``'s department that it is full.

    Returns the notification records written, one per webhook. When the
    department has no active webhook nothing is sent or written.
    """

    batch_id = batch.id
    webhooks = await find_active_webhooks(session, batch.department)
    if not webhooks:
        logger.debug(
            "No active webhook for department %s; skipping alert for batch %s",
            batch.department,
            batch_id,
        )
        return []

    coordinator = await resolve_coordinator(session, batch)
    message = build_batch_full_message(batch, coordinator)
    payload = build_batch_full_payload(
        batch,
        message=message,
        coordinator=coordinator,
        timestamp=utcnow(),
    )
    results = await deliver_to_webhooks(webhooks, payload)
    records = await _record_results(session, results, message=message, batch_id=batch_id)
    logger.info(
        "Batch %s full alert: %s of %s webhook(s) delivered",
        batch_id,
        sum(1 for result in results if result.delivered),
        len(results),
    )
    return records


_PENDING_DISPATCHES: set[asyncio.Task] = set()


async def _dispatch_in_own_session(batch: Batch) -> list[NotificationRecord]:
    async with session_scope() as session:
        try:
            return await dispatch_batch_full(session, batch)
        except StoreError:
            logger.exception("Could not record full alert for batch %s", batch.id)
            return []


async def dispatch_batch_full_detached(batch: Batch) -> list[NotificationRecord]:
    """Run :func:`dispatch_batch_full` so that it outlives a cancelled caller.

    The dispatch uses its own session; if the awaiting request goes away the
    sends and their records still complete.
    """

    task = asyncio.ensure_future(_dispatch_in_own_session(batch))
    _PENDING_DISPATCHES.add(task)
    task.add_done_callback(_PENDING_DISPATCHES.discard)
    return await asyncio.shield(task)


async def send_test_notification(
    session: AsyncSession,
    webhook: WebhookConfig,
) -> NotificationRecord:
    """Send a test message to ``webhook`` and record it without a batch reference."""

    settings = get_settings()
    timestamp = utcnow()
    message = (
        f"Test notification from {settings.app_name} - "
        f"{timestamp:%Y-%m-%d %H:%M:%S} UTC"
    )
    payload = {
        "text": message,
        "timestamp": _isoformat(timestamp),
        "isTest": True,
    }
    results = await deliver_to_webhooks([webhook], payload)
    records = await _record_results(session, results, message=message, batch_id=None)
    return records[0]
