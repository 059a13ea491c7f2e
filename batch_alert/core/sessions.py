"""Signed-out session registry."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Dict

from batch_alert.models import utcnow


@dataclass
class RevokedSession:
    token_id: str
    profile_id: int
    expires_at: datetime


class SessionRegistry:
    """In-process record of tokens revoked by sign-out.

    Entries are dropped once the underlying token would have expired anyway.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._revoked: Dict[str, RevokedSession] = {}

    async def revoke(self, *, token_id: str, profile_id: int, expires_at: datetime) -> None:
        async with self._lock:
            self._prune()
            self._revoked[token_id] = RevokedSession(
                token_id=token_id,
                profile_id=profile_id,
                expires_at=expires_at,
            )

    async def is_revoked(self, token_id: str) -> bool:
        async with self._lock:
            self._prune()
            return token_id in self._revoked

    async def reset(self) -> None:
        async with self._lock:
            self._revoked.clear()

    def _prune(self) -> None:
        now = utcnow()
        expired = [key for key, entry in self._revoked.items() if entry.expires_at <= now]
        for key in expired:
            del self._revoked[key]


session_registry = SessionRegistry()
