from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from batch_alert.models import NotificationRecord, utcnow
from batch_alert.schemas import NotificationStatus
from batch_alert.services.store import TableStore

_MAX_MESSAGE_LENGTH = 4000
_MAX_ERROR_LENGTH = 1000


def _truncate_value(value: str, limit: int) -> str:
    if len(value) <= limit:
        return value
    return value[: limit - 3] + "..."


async def record_notification(
    session: AsyncSession,
    *,
    message: str,
    batch_id: int | None = None,
    webhook_config_id: int | None = None,
    attempts: int = 1,
    response_status_code: int | None = None,
    error_message: str | None = None,
) -> NotificationRecord:
    """Persist the outcome of one webhook delivery.

    A record with an ``error_message`` is ``failed``; anything else is
    ``sent`` and stamped with ``sent_at``. Records are never updated after
    this insert.
    """

    status = NotificationStatus.SENT.value
    sent_at = utcnow()
    if error_message:
        status = NotificationStatus.FAILED.value
        sent_at = None
        error_message = _truncate_value(error_message, _MAX_ERROR_LENGTH)

    return await TableStore(session, NotificationRecord).insert(
        {
            "batch_id": batch_id,
            "webhook_config_id": webhook_config_id,
            "message": _truncate_value(message, _MAX_MESSAGE_LENGTH),
            "status": status,
            "sent_at": sent_at,
            "error_message": error_message,
            "attempts": attempts,
            "response_status_code": response_status_code,
        }
    )


async def list_notifications(
    session: AsyncSession,
    *,
    limit: int,
    batch_id: int | None = None,
    status: str | None = None,
) -> list[NotificationRecord]:
    filters: dict[str, Any] = {}
    if batch_id is not None:
        filters["batch_id"] = batch_id
    if status is not None:
        filters["status"] = getattr(status, "value", status)
    store = TableStore(session, NotificationRecord)
    return await store.select(filters, ["created_at"], descending=True, limit=limit)
