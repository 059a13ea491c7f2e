"""Webhook registry adapter: department-scoped notification targets."""

from __future__ import annotations

import logging
from typing import Any, Mapping
from urllib.parse import urlsplit

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from batch_alert.core.errors import ValidationError
from batch_alert.core.roles import Capabilities
from batch_alert.models import NotificationRecord, WebhookConfig
from batch_alert.schemas import Department
from batch_alert.services.store import TableStore

logger = logging.getLogger(__name__)

_DEPARTMENTS = {item.value for item in Department}
_ALLOWED_SCHEMES = {"http", "https"}


def _clean_name(value: Any) -> str:
    cleaned = str(value).strip() if value is not None else ""
    if not cleaned:
        raise ValidationError("name cannot be empty")
    return cleaned


def normalize_webhook_url(value: Any) -> str:
    """Return ``value`` stripped, or raise when it is not an absolute http(s) URL."""

    url = str(value).strip() if value is not None else ""
    if not url:
        raise ValidationError("webhook_url cannot be empty")
    try:
        parts = urlsplit(url)
        # Accessing the port validates it.
        parts.port
    except ValueError as exc:
        raise ValidationError(f"webhook_url is not a valid URL: {exc}") from exc
    if parts.scheme.lower() not in _ALLOWED_SCHEMES or not parts.hostname:
        raise ValidationError("webhook_url must be an absolute http or https URL")
    if any(char.isspace() for char in url):
        raise ValidationError("webhook_url cannot contain whitespace")
    try:
        httpx.URL(url)
    except httpx.InvalidURL as exc:
        raise ValidationError(f"webhook_url is not a valid URL: {exc}") from exc
    return url


def _validate_department(value: Any) -> str:
    department = getattr(value, "value", value)
    if department not in _DEPARTMENTS:
        raise ValidationError(
            f"department must be one of: {', '.join(sorted(_DEPARTMENTS))}"
        )
    return department


async def list_webhook_configs(
    session: AsyncSession,
    *,
    department: str | None = None,
) -> list[WebhookConfig]:
    filters: dict[str, Any] = {}
    if department is not None:
        filters["department"] = _validate_department(department)
    store = TableStore(session, WebhookConfig)
    return await store.select(filters, ["created_at"], descending=True)


async def get_webhook_config(session: AsyncSession, webhook_id: int) -> WebhookConfig:
    return await TableStore(session, WebhookConfig).get(webhook_id)


async def find_active_webhooks(session: AsyncSession, department: str) -> list[WebhookConfig]:
    """Every active webhook registered for ``department``, oldest first."""

    store = TableStore(session, WebhookConfig)
    return await store.select(
        {"department": _validate_department(department), "is_active": True},
        ["created_at"],
    )


async def create_webhook_config(
    session: AsyncSession,
    capabilities: Capabilities,
    data: Mapping[str, Any],
    *,
    created_by: int | None = None,
) -> WebhookConfig:
    name = _clean_name(data.get("name"))
    webhook_url = normalize_webhook_url(data.get("webhook_url"))
    department = _validate_department(data.get("department"))
    capabilities.require_webhook_access(department)

    webhook = await TableStore(session, WebhookConfig).insert(
        {
            "name": name,
            "webhook_url": webhook_url,
            "department": department,
            "is_active": bool(data.get("is_active", True)),
            "created_by": created_by,
        }
    )
    logger.info(
        "Registered webhook %s '%s' for %s", webhook.id, webhook.name, webhook.department
    )
    return webhook


async def update_webhook_config(
    session: AsyncSession,
    capabilities: Capabilities,
    webhook_id: int,
    partial: Mapping[str, Any],
) -> WebhookConfig:
    changes: dict[str, Any] = {}
    if partial.get("name") is not None:
        changes["name"] = _clean_name(partial["name"])
    if partial.get("webhook_url") is not None:
        changes["webhook_url"] = normalize_webhook_url(partial["webhook_url"])
    if partial.get("department") is not None:
        changes["department"] = _validate_department(partial["department"])
    if partial.get("is_active") is not None:
        changes["is_active"] = bool(partial["is_active"])

    store = TableStore(session, WebhookConfig)
    webhook = await store.get(webhook_id)
    capabilities.require_webhook_access(webhook.department)
    if "department" in changes and changes["department"] != webhook.department:
        capabilities.require_webhook_access(changes["department"])

    if not changes:
        return webhook
    updated = await store.update(webhook_id, changes)
    logger.info("Updated webhook %s (%s)", updated.id, ", ".join(sorted(changes)))
    return updated


async def delete_webhook_config(
    session: AsyncSession,
    capabilities: Capabilities,
    webhook_id: int,
) -> None:
    store = TableStore(session, WebhookConfig)
    webhook = await store.get(webhook_id)
    name = webhook.name
    capabilities.require_webhook_access(webhook.department)
    await TableStore(session, NotificationRecord).null_references(
        "webhook_config_id", webhook_id, commit=False
    )
    await store.delete(webhook_id)
    logger.info("Deleted webhook %s '%s'", webhook_id, name)
