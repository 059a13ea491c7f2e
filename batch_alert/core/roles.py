"""Role policy: maps a profile's role and department to permitted actions.

All predicates fail closed. An unknown or missing role, an unknown department,
or an inactive profile grants nothing. Non-admin leads are scoped to their own
department: when a target department is supplied it must match theirs.
"""

from __future__ import annotations

from dataclasses import dataclass

from batch_alert.core.errors import AuthorizationError
from batch_alert.schemas import Department, UserRole

_DEPARTMENTS = frozenset(item.value for item in Department)

_BATCH_MANAGERS = frozenset(
    {
        UserRole.PROJECT_LEAD.value,
        UserRole.TECH_LEAD.value,
        UserRole.FINANCE_LEAD.value,
        UserRole.DESIGN_LEAD.value,
    }
)

_WEBHOOK_MANAGERS = frozenset(
    {
        UserRole.TECH_LEAD.value,
        UserRole.FINANCE_LEAD.value,
        UserRole.DESIGN_LEAD.value,
    }
)


def _normalize(value: object | None) -> str | None:
    if value is None:
        return None
    if isinstance(value, (UserRole, Department)):
        return value.value
    cleaned = str(value).strip().lower()
    return cleaned or None


def _within_department(department: object | None, target_department: object | None) -> bool:
    own = _normalize(department)
    target = _normalize(target_department)
    if target is None:
        return own in _DEPARTMENTS
    return own in _DEPARTMENTS and own == target


def is_admin(role: object | None) -> bool:
    return _normalize(role) == UserRole.ADMIN.value


def can_manage_batches(
    role: object | None,
    department: object | None = None,
    target_department: object | None = None,
) -> bool:
    if is_admin(role):
        return target_department is None or _normalize(target_department) in _DEPARTMENTS
    if _normalize(role) not in _BATCH_MANAGERS:
        return False
    return _within_department(department, target_department)


def can_manage_webhooks(
    role: object | None,
    department: object | None = None,
    target_department: object | None = None,
) -> bool:
    if is_admin(role):
        return target_department is None or _normalize(target_department) in _DEPARTMENTS
    if _normalize(role) not in _WEBHOOK_MANAGERS:
        return False
    return _within_department(department, target_department)


def can_manage_users(role: object | None) -> bool:
    return is_admin(role)


@dataclass(frozen=True)
class Capabilities:
    """Capability set bound to one ``(role, department)`` pair."""

    role: str | None
    department: str | None
    is_active: bool = True

    @property
    def is_admin(self) -> bool:
        return self.is_active and is_admin(self.role)

    def can_manage_batches(self, target_department: object | None = None) -> bool:
        return self.is_active and can_manage_batches(
            self.role, self.department, target_department
        )

    def can_manage_webhooks(self, target_department: object | None = None) -> bool:
        return self.is_active and can_manage_webhooks(
            self.role, self.department, target_department
        )

    def can_manage_users(self) -> bool:
        return self.is_active and can_manage_users(self.role)

    def require_batch_access(self, target_department: object | None) -> None:
        if not self.can_manage_batches(target_department):
            raise AuthorizationError(
                f"Not permitted to manage batches in department '{_normalize(target_department)}'"
            )

    def require_webhook_access(self, target_department: object | None) -> None:
        if not self.can_manage_webhooks(target_department):
            raise AuthorizationError(
                f"Not permitted to manage webhooks in department '{_normalize(target_department)}'"
            )

    def require_user_admin(self) -> None:
        if not self.can_manage_users():
            raise AuthorizationError("Only administrators can manage users")

    def summary(self) -> dict[str, bool]:
        return {
            "is_admin": self.is_admin,
            "can_manage_batches": self.can_manage_batches(),
            "can_manage_webhooks": self.can_manage_webhooks(),
            "can_manage_users": self.can_manage_users(),
        }


def capabilities_for(
    role: object | None,
    department: object | None,
    is_active: bool = True,
) -> Capabilities:
    return Capabilities(
        role=_normalize(role),
        department=_normalize(department),
        is_active=bool(is_active),
    )
