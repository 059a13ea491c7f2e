"""Profile management: bootstrap registration, sign-in, and admin user administration."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from batch_alert.core.errors import (
    AuthorizationError,
    ConflictError,
    StoreError,
    ValidationError,
)
from batch_alert.core.roles import Capabilities
from batch_alert.core.security import (
    PasswordTooLongError,
    generate_temporary_password,
    hash_password,
    verify_password,
)
from batch_alert.models import Profile
from batch_alert.schemas import Department, UserRole
from batch_alert.services.store import TableStore

logger = logging.getLogger(__name__)

_ROLES = {item.value for item in UserRole}
_DEPARTMENTS = {item.value for item in Department}


class RegistrationClosedError(AuthorizationError):
    """Raised when bootstrap registration is attempted after the first profile exists."""


def _normalize_email(value: Any) -> str:
    email = str(value or "").strip().lower()
    if not email:
        raise ValidationError("email cannot be empty")
    return email


def _clean_full_name(value: Any) -> str:
    full_name = str(value or "").strip()
    if not full_name:
        raise ValidationError("full_name cannot be empty")
    return full_name


def _validate_role(value: Any) -> str:
    role = getattr(value, "value", value)
    if role not in _ROLES:
        raise ValidationError(f"role must be one of: {', '.join(sorted(_ROLES))}")
    return role


def _validate_department(value: Any) -> str:
    department = getattr(value, "value", value)
    if department not in _DEPARTMENTS:
        raise ValidationError(
            f"department must be one of: {', '.join(sorted(_DEPARTMENTS))}"
        )
    return department


def _hash(password: str) -> str:
    try:
        return hash_password(password)
    except PasswordTooLongError as exc:
        raise ValidationError(str(exc)) from exc


async def count_profiles(session: AsyncSession) -> int:
    try:
        result = await session.execute(select(func.count()).select_from(Profile))
    except SQLAlchemyError as exc:
        raise StoreError("Failed to count profiles") from exc
    return int(result.scalar_one())


async def get_profile_by_email(session: AsyncSession, email: str) -> Profile | None:
    rows = await TableStore(session, Profile).select({"email": _normalize_email(email)}, limit=1)
    return rows[0] if rows else None


async def _ensure_email_available(session: AsyncSession, email: str) -> None:
    if await get_profile_by_email(session, email) is not None:
        raise ConflictError("A profile with this email already exists")


async def register_first_admin(
    session: AsyncSession,
    *,
    email: str,
    full_name: str,
    password: str,
    department: Any = Department.MARKETING,
) -> Profile:
    """Create the first profile as an administrator; closed once any profile exists."""

    values = {
        "email": _normalize_email(email),
        "full_name": _clean_full_name(full_name),
        "role": UserRole.ADMIN.value,
        "department": _validate_department(department),
        "is_active": True,
        "hashed_password": _hash(password),
    }
    if await count_profiles(session) > 0:
        raise RegistrationClosedError("Registration is closed")
    profile = await TableStore(session, Profile).insert(values)
    logger.info("Registered bootstrap administrator %s", profile.id)
    return profile


async def authenticate(session: AsyncSession, *, email: str, password: str) -> Profile | None:
    profile = await get_profile_by_email(session, email)
    if profile is None or not verify_password(password, profile.hashed_password):
        return None
    return profile


async def list_profiles(session: AsyncSession, capabilities: Capabilities) -> list[Profile]:
    capabilities.require_user_admin()
    return await TableStore(session, Profile).select(None, ["created_at"], descending=True)


async def get_profile(session: AsyncSession, profile_id: int) -> Profile:
    return await TableStore(session, Profile).get(profile_id)


async def invite_profile(
    session: AsyncSession,
    capabilities: Capabilities,
    data: Mapping[str, Any],
) -> tuple[Profile, str | None]:
    """Create a profile on behalf of an administrator.

    Returns the profile and, when no password was supplied, the generated
    temporary password. The temporary password is not retrievable later.
    """

    email = _normalize_email(data.get("email"))
    full_name = _clean_full_name(data.get("full_name"))
    role = _validate_role(data.get("role"))
    department = _validate_department(data.get("department"))
    password = data.get("password")
    temporary_password: str | None = None
    if not password:
        temporary_password = generate_temporary_password()
        password = temporary_password
    hashed_password = _hash(password)

    capabilities.require_user_admin()
    await _ensure_email_available(session, email)

    profile = await TableStore(session, Profile).insert(
        {
            "email": email,
            "full_name": full_name,
            "role": role,
            "department": department,
            "is_active": True,
            "hashed_password": hashed_password,
        }
    )
    logger.info("Invited profile %s as %s in %s", profile.id, role, department)
    return profile, temporary_password


async def update_profile(
    session: AsyncSession,
    capabilities: Capabilities,
    profile_id: int,
    partial: Mapping[str, Any],
) -> Profile:
    changes: dict[str, Any] = {}
    if partial.get("full_name") is not None:
        changes["full_name"] = _clean_full_name(partial["full_name"])
    if partial.get("role") is not None:
        changes["role"] = _validate_role(partial["role"])
    if partial.get("department") is not None:
        changes["department"] = _validate_department(partial["department"])

    capabilities.require_user_admin()
    store = TableStore(session, Profile)
    profile = await store.get(profile_id)
    if not changes:
        return profile
    updated = await store.update(profile_id, changes)
    logger.info("Updated profile %s (%s)", profile_id, ", ".join(sorted(changes)))
    return updated


async def toggle_profile_active(
    session: AsyncSession,
    capabilities: Capabilities,
    profile_id: int,
    *,
    acting_profile_id: int,
) -> Profile:
    capabilities.require_user_admin()
    store = TableStore(session, Profile)
    profile = await store.get(profile_id)
    if profile.id == acting_profile_id and profile.is_active:
        raise ValidationError("You cannot deactivate your own account")
    updated = await store.update(profile_id, {"is_active": not profile.is_active})
    logger.info(
        "Profile %s %s", profile_id, "activated" if updated.is_active else "deactivated"
    )
    return updated
