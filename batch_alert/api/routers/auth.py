from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from batch_alert.api.dependencies import CurrentProfile, get_current_profile
from batch_alert.core.db import get_session
from batch_alert.core.security import create_access_token
from batch_alert.core.sessions import session_registry
from batch_alert.schemas import (
    CapabilitySummary,
    CurrentProfileRead,
    LoginRequest,
    ProfileRead,
    RegisterRequest,
    SessionRead,
)
from batch_alert.services.profiles import authenticate, register_first_admin

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post("/register", response_model=ProfileRead, status_code=status.HTTP_201_CREATED)
async def register_admin(
    payload: RegisterRequest, session: AsyncSession = Depends(get_session)
) -> ProfileRead:
    profile = await register_first_admin(
        session,
        email=payload.email,
        full_name=payload.full_name,
        password=payload.password,
        department=payload.department,
    )
    return ProfileRead.model_validate(profile)


@router.post("/login", response_model=SessionRead)
async def login(payload: LoginRequest, session: AsyncSession = Depends(get_session)) -> SessionRead:
    profile = await authenticate(session, email=payload.email, password=payload.password)
    if profile is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    if not profile.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Profile is inactive")
    token, token_payload = create_access_token(profile.id)
    return SessionRead(
        access_token=token,
        expires_at=token_payload.expires_at,
        profile=ProfileRead.model_validate(profile),
    )


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
async def logout(current: CurrentProfile = Depends(get_current_profile)) -> Response:
    await session_registry.revoke(
        token_id=current.token.token_id,
        profile_id=current.id,
        expires_at=current.token.expires_at,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/me", response_model=CurrentProfileRead)
async def read_current_profile(
    current: CurrentProfile = Depends(get_current_profile),
) -> CurrentProfileRead:
    return CurrentProfileRead(
        profile=ProfileRead.model_validate(current.profile),
        capabilities=CapabilitySummary(**current.capabilities.summary()),
    )
