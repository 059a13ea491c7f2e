from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from batch_alert.api.dependencies import CurrentProfile, get_current_profile
from batch_alert.core.config import get_settings
from batch_alert.core.db import get_session
from batch_alert.schemas import NotificationRead, NotificationStatus
from batch_alert.services.notification_logging import list_notifications

router = APIRouter(prefix="/api/notifications", tags=["Notifications"])


@router.get("/", response_model=list[NotificationRead])
async def list_notification_history(
    batch_id: int | None = Query(default=None, ge=1),
    notification_status: NotificationStatus | None = Query(default=None, alias="status"),
    limit: int | None = Query(default=None, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
    current: CurrentProfile = Depends(get_current_profile),
) -> list[NotificationRead]:
    records = await list_notifications(
        session,
        limit=limit or get_settings().notification_history_limit,
        batch_id=batch_id,
        status=notification_status,
    )
    return [NotificationRead.model_validate(record) for record in records]
