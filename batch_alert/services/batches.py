"""Batch store adapter and the capacity mutation contract."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from batch_alert.core.errors import ValidationError
from batch_alert.core.roles import Capabilities
from batch_alert.models import Batch, NotificationRecord, WebhookConfig
from batch_alert.schemas import TERMINAL_BATCH_STATUSES, BatchStatus, Department
from batch_alert.services.store import TableStore

logger = logging.getLogger(__name__)

_DEPARTMENTS = {item.value for item in Department}
_UPDATABLE_FIELDS = {
    "name",
    "description",
    "max_capacity",
    "current_count",
    "department",
    "status",
    "coordinator",
    "start_date",
    "end_date",
}


@dataclass(frozen=True)
class BatchSnapshot:
    """Detached copy of the counters a mutation started from."""

    id: int
    name: str
    department: str
    status: str
    current_count: int
    max_capacity: int

    @classmethod
    def from_row(cls, batch: Batch) -> "BatchSnapshot":
        return cls(
            id=batch.id,
            name=batch.name,
            department=batch.department,
            status=batch.status,
            current_count=batch.current_count,
            max_capacity=batch.max_capacity,
        )


@dataclass
class BatchUpdateResult:
    before: BatchSnapshot
    batch: Batch

    @property
    def became_full(self) -> bool:
        return is_full_transition(self.before, self.batch)


def _clean_optional(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


def _require_int(field: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer")
    return value


def _validate_department(value: Any) -> str:
    department = _enum_value(value)
    if department not in _DEPARTMENTS:
        raise ValidationError(
            f"department must be one of: {', '.join(sorted(_DEPARTMENTS))}"
        )
    return department


def validate_capacity(max_capacity: Any, current_count: Any) -> tuple[int, int]:
    """Check ``0 <= current_count <= max_capacity`` with a positive maximum."""

    max_capacity = _require_int("max_capacity", max_capacity)
    current_count = _require_int("current_count", current_count)
    if max_capacity < 1:
        raise ValidationError("max_capacity must be a positive integer")
    if current_count < 0:
        raise ValidationError("current_count cannot be negative")
    if current_count > max_capacity:
        raise ValidationError(
            f"current_count ({current_count}) cannot exceed max_capacity ({max_capacity})"
        )
    return max_capacity, current_count


def _validate_dates(start_date: date | None, end_date: date | None) -> None:
    if start_date is not None and end_date is not None and end_date < start_date:
        raise ValidationError("end_date cannot be earlier than start_date")


def derive_status(current_count: int, max_capacity: int, current_status: str | None = None) -> str:
    """Return the status implied by the counters.

    Terminal statuses (closed, cancelled) are kept as they are.
    """

    if current_status in TERMINAL_BATCH_STATUSES:
        return current_status
    if current_count == max_capacity:
        return BatchStatus.FULL.value
    return BatchStatus.OPEN.value


def is_full_transition(before: BatchSnapshot | Batch, after: Batch | BatchSnapshot) -> bool:
    """True only when a non-full, non-terminal batch is persisted at capacity."""

    if before.status == BatchStatus.FULL.value or before.status in TERMINAL_BATCH_STATUSES:
        return False
    if before.current_count >= before.max_capacity:
        return False
    return (
        after.status == BatchStatus.FULL.value
        and after.current_count == after.max_capacity
    )


async def list_batches(
    session: AsyncSession,
    *,
    department: str | None = None,
    status: str | None = None,
) -> list[Batch]:
    filters: dict[str, Any] = {}
    if department is not None:
        filters["department"] = _enum_value(department)
    if status is not None:
        filters["status"] = _enum_value(status)
    store = TableStore(session, Batch)
    return await store.select(filters, ["created_at"], descending=True)


async def get_batch(session: AsyncSession, batch_id: int) -> Batch:
    return await TableStore(session, Batch).get(batch_id)


async def summarize_batches(
    session: AsyncSession,
    *,
    department: str | None = None,
) -> dict[str, int]:
    """Counters behind the dashboard overview."""

    batches = await list_batches(session, department=department)
    webhook_filters: dict[str, Any] = {"is_active": True}
    if department is not None:
        webhook_filters["department"] = _validate_department(department)
    webhooks = await TableStore(session, WebhookConfig).select(webhook_filters)
    return {
        "total_batches": len(batches),
        "open_batches": sum(1 for batch in batches if batch.status == BatchStatus.OPEN.value),
        "full_batches": sum(1 for batch in batches if batch.status == BatchStatus.FULL.value),
        "total_capacity": sum(batch.max_capacity for batch in batches),
        "current_enrollment": sum(batch.current_count for batch in batches),
        "active_webhooks": len(webhooks),
    }


async def create_batch(
    session: AsyncSession,
    capabilities: Capabilities,
    data: Mapping[str, Any],
    *,
    created_by: int | None = None,
) -> Batch:
    name = _clean_optional(data.get("name"))
    if not name:
        raise ValidationError("name cannot be empty")
    department = _validate_department(data.get("department"))
    max_capacity, current_count = validate_capacity(
        data.get("max_capacity"), data.get("current_count", 0)
    )
    start_date = data.get("start_date")
    end_date = data.get("end_date")
    _validate_dates(start_date, end_date)

    capabilities.require_batch_access(department)

    values = {
        "name": name,
        "description": _clean_optional(data.get("description")),
        "max_capacity": max_capacity,
        "current_count": current_count,
        "department": department,
        "status": derive_status(current_count, max_capacity),
        "coordinator": _clean_optional(data.get("coordinator")),
        "start_date": start_date,
        "end_date": end_date,
        "created_by": created_by,
    }
    batch = await TableStore(session, Batch).insert(values)
    logger.info(
        "Created batch %s '%s' in %s (%s/%s)",
        batch.id,
        batch.name,
        batch.department,
        batch.current_count,
        batch.max_capacity,
    )
    return batch


def _validate_partial(partial: Mapping[str, Any]) -> dict[str, Any]:
    unknown = set(partial) - _UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"Unsupported batch fields: {', '.join(sorted(unknown))}")

    cleaned: dict[str, Any] = {}
    for key, value in partial.items():
        value = _enum_value(value)
        if key == "name":
            name = _clean_optional(value)
            if not name:
                raise ValidationError("name cannot be empty")
            cleaned[key] = name
        elif key in {"description", "coordinator"}:
            cleaned[key] = _clean_optional(value)
        elif key in {"max_capacity", "current_count"}:
            if value is None:
                continue
            cleaned[key] = _require_int(key, value)
        elif key == "department":
            if value is None:
                continue
            cleaned[key] = _validate_department(value)
        elif key == "status":
            if value is None:
                continue
            if value not in TERMINAL_BATCH_STATUSES:
                raise ValidationError(
                    "status can only be set to 'closed' or 'cancelled'; open and full are derived"
                )
            cleaned[key] = value
        else:
            cleaned[key] = value
    return cleaned


async def update_batch(
    session: AsyncSession,
    capabilities: Capabilities,
    batch_id: int,
    partial: Mapping[str, Any],
) -> BatchUpdateResult:
    """Apply a partial update and return the pre-state with the persisted row.

    The caller decides on notification by checking
    :attr:`BatchUpdateResult.became_full`, which compares against the row the
    store returned rather than the requested values.
    """

    changes = _validate_partial(partial)
    if "max_capacity" in changes and changes["max_capacity"] < 1:
        raise ValidationError("max_capacity must be a positive integer")
    if "current_count" in changes and changes["current_count"] < 0:
        raise ValidationError("current_count cannot be negative")

    store = TableStore(session, Batch)
    batch = await store.get(batch_id)
    before = BatchSnapshot.from_row(batch)

    capabilities.require_batch_access(before.department)
    if "department" in changes and changes["department"] != before.department:
        capabilities.require_batch_access(changes["department"])

    max_capacity, current_count = validate_capacity(
        changes.get("max_capacity", before.max_capacity),
        changes.get("current_count", before.current_count),
    )
    _validate_dates(
        changes.get("start_date", batch.start_date),
        changes.get("end_date", batch.end_date),
    )
    changes["status"] = derive_status(
        current_count,
        max_capacity,
        changes.get("status", before.status),
    )

    updated = await store.update(batch_id, changes)
    logger.info(
        "Updated batch %s: %s/%s -> %s/%s (%s -> %s)",
        updated.id,
        before.current_count,
        before.max_capacity,
        updated.current_count,
        updated.max_capacity,
        before.status,
        updated.status,
    )
    return BatchUpdateResult(before=before, batch=updated)


async def delete_batch(
    session: AsyncSession,
    capabilities: Capabilities,
    batch_id: int,
) -> None:
    store = TableStore(session, Batch)
    batch = await store.get(batch_id)
    name = batch.name
    capabilities.require_batch_access(batch.department)
    await TableStore(session, NotificationRecord).null_references(
        "batch_id", batch_id, commit=False
    )
    await store.delete(batch_id)
    logger.info("Deleted batch %s '%s'", batch_id, name)
