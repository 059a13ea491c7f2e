from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from batch_alert.api.dependencies import CurrentProfile, get_current_profile
from batch_alert.core.db import get_session
from batch_alert.schemas import (
    Department,
    NotificationRead,
    WebhookConfigCreate,
    WebhookConfigRead,
    WebhookConfigUpdate,
)
from batch_alert.services import send_test_notification
from batch_alert.services.webhooks import (
    create_webhook_config,
    delete_webhook_config,
    get_webhook_config,
    list_webhook_configs,
    update_webhook_config,
)

router = APIRouter(prefix="/api/webhook-configs", tags=["Webhooks"])


@router.get("/", response_model=list[WebhookConfigRead])
async def list_webhooks(
    department: Department | None = None,
    session: AsyncSession = Depends(get_session),
    current: CurrentProfile = Depends(get_current_profile),
) -> list[WebhookConfigRead]:
    webhooks = await list_webhook_configs(session, department=department)
    return [
        WebhookConfigRead.model_validate(webhook)
        for webhook in webhooks
        if current.capabilities.can_manage_webhooks(webhook.department)
    ]


@router.post("/", response_model=WebhookConfigRead, status_code=status.HTTP_201_CREATED)
async def create_webhook(
    payload: WebhookConfigCreate,
    session: AsyncSession = Depends(get_session),
    current: CurrentProfile = Depends(get_current_profile),
) -> WebhookConfigRead:
    webhook = await create_webhook_config(
        session,
        current.capabilities,
        payload.model_dump(),
        created_by=current.id,
    )
    return WebhookConfigRead.model_validate(webhook)


@router.patch("/{webhook_id}", response_model=WebhookConfigRead)
async def update_webhook(
    webhook_id: int,
    payload: WebhookConfigUpdate,
    session: AsyncSession = Depends(get_session),
    current: CurrentProfile = Depends(get_current_profile),
) -> WebhookConfigRead:
    webhook = await update_webhook_config(
        session,
        current.capabilities,
        webhook_id,
        payload.model_dump(exclude_unset=True),
    )
    return WebhookConfigRead.model_validate(webhook)


@router.delete(
    "/{webhook_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
)
async def delete_webhook(
    webhook_id: int,
    session: AsyncSession = Depends(get_session),
    current: CurrentProfile = Depends(get_current_profile),
) -> Response:
    await delete_webhook_config(session, current.capabilities, webhook_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{webhook_id}/test", response_model=NotificationRead)
async def test_webhook(
    webhook_id: int,
    session: AsyncSession = Depends(get_session),
    current: CurrentProfile = Depends(get_current_profile),
) -> NotificationRead:
    webhook = await get_webhook_config(session, webhook_id)
    current.capabilities.require_webhook_access(webhook.department)
    record = await send_test_notification(session, webhook)
    return NotificationRead.model_validate(record)
