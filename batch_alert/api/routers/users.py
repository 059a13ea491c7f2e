from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from batch_alert.api.dependencies import CurrentProfile, get_current_profile
from batch_alert.core.db import get_session
from batch_alert.schemas import ProfileInvite, ProfileInviteRead, ProfileRead, ProfileUpdate
from batch_alert.services.profiles import (
    invite_profile,
    list_profiles,
    toggle_profile_active,
    update_profile,
)

router = APIRouter(prefix="/api/users", tags=["Users"])


@router.get("/", response_model=list[ProfileRead])
async def list_users(
    session: AsyncSession = Depends(get_session),
    current: CurrentProfile = Depends(get_current_profile),
) -> list[ProfileRead]:
    profiles = await list_profiles(session, current.capabilities)
    return [ProfileRead.model_validate(profile) for profile in profiles]


@router.post("/", response_model=ProfileInviteRead, status_code=status.HTTP_201_CREATED)
async def invite_user(
    payload: ProfileInvite,
    session: AsyncSession = Depends(get_session),
    current: CurrentProfile = Depends(get_current_profile),
) -> ProfileInviteRead:
    profile, temporary_password = await invite_profile(
        session, current.capabilities, payload.model_dump()
    )
    return ProfileInviteRead(
        profile=ProfileRead.model_validate(profile),
        temporary_password=temporary_password,
    )


@router.patch("/{profile_id}", response_model=ProfileRead)
async def update_user(
    profile_id: int,
    payload: ProfileUpdate,
    session: AsyncSession = Depends(get_session),
    current: CurrentProfile = Depends(get_current_profile),
) -> ProfileRead:
    profile = await update_profile(
        session,
        current.capabilities,
        profile_id,
        payload.model_dump(exclude_unset=True),
    )
    return ProfileRead.model_validate(profile)


@router.post("/{profile_id}/toggle-active", response_model=ProfileRead)
async def toggle_user_active(
    profile_id: int,
    session: AsyncSession = Depends(get_session),
    current: CurrentProfile = Depends(get_current_profile),
) -> ProfileRead:
    profile = await toggle_profile_active(
        session,
        current.capabilities,
        profile_id,
        acting_profile_id=current.id,
    )
    return ProfileRead.model_validate(profile)
