from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from batch_alert.api.dependencies import CurrentProfile, get_current_profile
from batch_alert.core.db import get_session
from batch_alert.schemas import (
    BatchCreate,
    BatchRead,
    BatchStatus,
    BatchSummaryRead,
    BatchUpdate,
    BatchUpdateResponse,
    Department,
    NotificationRead,
)
from batch_alert.services.batches import (
    create_batch,
    delete_batch,
    get_batch,
    list_batches,
    summarize_batches,
    update_batch,
)
from batch_alert.services.notifications import dispatch_batch_full_detached

router = APIRouter(prefix="/api/batches", tags=["Batches"])


@router.get("/", response_model=list[BatchRead])
async def list_batch_records(
    department: Department | None = None,
    batch_status: BatchStatus | None = Query(default=None, alias="status"),
    session: AsyncSession = Depends(get_session),
    current: CurrentProfile = Depends(get_current_profile),
) -> list[BatchRead]:
    batches = await list_batches(session, department=department, status=batch_status)
    return [BatchRead.model_validate(batch) for batch in batches]


@router.get("/summary", response_model=BatchSummaryRead)
async def summarize_batch_records(
    department: Department | None = None,
    session: AsyncSession = Depends(get_session),
    current: CurrentProfile = Depends(get_current_profile),
) -> BatchSummaryRead:
    summary = await summarize_batches(session, department=department)
    return BatchSummaryRead(**summary)


@router.post("/", response_model=BatchRead, status_code=status.HTTP_201_CREATED)
async def create_batch_record(
    payload: BatchCreate,
    session: AsyncSession = Depends(get_session),
    current: CurrentProfile = Depends(get_current_profile),
) -> BatchRead:
    batch = await create_batch(
        session,
        current.capabilities,
        payload.model_dump(),
        created_by=current.id,
    )
    return BatchRead.model_validate(batch)


@router.get("/{batch_id}", response_model=BatchRead)
async def get_batch_record(
    batch_id: int,
    session: AsyncSession = Depends(get_session),
    current: CurrentProfile = Depends(get_current_profile),
) -> BatchRead:
    batch = await get_batch(session, batch_id)
    return BatchRead.model_validate(batch)


@router.patch("/{batch_id}", response_model=BatchUpdateResponse)
async def update_batch_record(
    batch_id: int,
    payload: BatchUpdate,
    session: AsyncSession = Depends(get_session),
    current: CurrentProfile = Depends(get_current_profile),
) -> BatchUpdateResponse:
    result = await update_batch(
        session,
        current.capabilities,
        batch_id,
        payload.model_dump(exclude_unset=True),
    )
    notifications = []
    if result.became_full:
        notifications = await dispatch_batch_full_detached(result.batch)
    return BatchUpdateResponse(
        batch=BatchRead.model_validate(result.batch),
        notifications=[NotificationRead.model_validate(record) for record in notifications],
    )


@router.delete(
    "/{batch_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
)
async def delete_batch_record(
    batch_id: int,
    session: AsyncSession = Depends(get_session),
    current: CurrentProfile = Depends(get_current_profile),
) -> Response:
    await delete_batch(session, current.capabilities, batch_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
