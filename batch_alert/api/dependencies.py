"""Session and profile dependencies for the HTTP surface."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from batch_alert.core.db import get_session
from batch_alert.core.roles import Capabilities, capabilities_for
from batch_alert.core.security import TokenPayload, decode_access_token
from batch_alert.core.sessions import session_registry
from batch_alert.models import Profile

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class CurrentProfile:
    """The signed-in profile together with its session token and capabilities."""

    profile: Profile
    token: TokenPayload
    capabilities: Capabilities

    @property
    def id(self) -> int:
        return self.profile.id


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_profile(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    session: AsyncSession = Depends(get_session),
) -> CurrentProfile:
    if credentials is None:
        raise _unauthorized("Not authenticated")

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise _unauthorized("Invalid or expired token")
    if await session_registry.is_revoked(payload.token_id):
        raise _unauthorized("Session has been signed out")

    profile = await session.get(Profile, payload.profile_id)
    if profile is None:
        raise _unauthorized("Profile not found")
    if not profile.is_active:
        logger.info("Rejected request from inactive profile %s", profile.id)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Profile is inactive",
        )

    return CurrentProfile(
        profile=profile,
        token=payload,
        capabilities=capabilities_for(profile.role, profile.department, profile.is_active),
    )
