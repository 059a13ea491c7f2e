from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, constr

ShortText = constr(strip_whitespace=True, min_length=1, max_length=255)


class Department(str, Enum):
    MARKETING = "marketing"
    TECH = "tech"
    FINANCE = "finance"
    DESIGN = "design"


class UserRole(str, Enum):
    ADMIN = "admin"
    PROJECT_LEAD = "project_lead"
    TECH_LEAD = "tech_lead"
    FINANCE_LEAD = "finance_lead"
    DESIGN_LEAD = "design_lead"


class BatchStatus(str, Enum):
    OPEN = "open"
    FULL = "full"
    CLOSED = "closed"
    CANCELLED = "cancelled"


TERMINAL_BATCH_STATUSES = frozenset({BatchStatus.CLOSED.value, BatchStatus.CANCELLED.value})


class NotificationStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class ProfileBase(BaseModel):
    email: EmailStr
    full_name: ShortText


class RegisterRequest(ProfileBase):
    password: str = Field(min_length=8, max_length=128)
    department: Department = Department.MARKETING


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ProfileRead(ProfileBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    role: UserRole
    department: Department
    is_active: bool
    created_at: datetime
    updated_at: datetime


class CapabilitySummary(BaseModel):
    is_admin: bool
    can_manage_batches: bool
    can_manage_webhooks: bool
    can_manage_users: bool


class SessionRead(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    profile: ProfileRead


class CurrentProfileRead(BaseModel):
    profile: ProfileRead
    capabilities: CapabilitySummary


class ProfileInvite(ProfileBase):
    role: UserRole
    department: Department
    password: Optional[str] = Field(default=None, min_length=8, max_length=128)


class ProfileUpdate(BaseModel):
    full_name: Optional[ShortText] = None
    role: Optional[UserRole] = None
    department: Optional[Department] = None


class ProfileInviteRead(BaseModel):
    profile: ProfileRead
    temporary_password: Optional[str] = None


class BatchCreate(BaseModel):
    name: ShortText
    description: Optional[str] = Field(default=None, max_length=2048)
    max_capacity: int
    current_count: int = 0
    department: Department
    coordinator: Optional[str] = Field(default=None, max_length=255)
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class BatchUpdate(BaseModel):
    name: Optional[ShortText] = None
    description: Optional[str] = Field(default=None, max_length=2048)
    max_capacity: Optional[int] = None
    current_count: Optional[int] = None
    department: Optional[Department] = None
    status: Optional[BatchStatus] = None
    coordinator: Optional[str] = Field(default=None, max_length=255)
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class BatchRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str]
    max_capacity: int
    current_count: int
    department: Department
    status: BatchStatus
    coordinator: Optional[str]
    start_date: Optional[date]
    end_date: Optional[date]
    created_by: Optional[int]
    created_at: datetime
    updated_at: datetime


class WebhookConfigCreate(BaseModel):
    name: str = Field(max_length=255)
    webhook_url: str = Field(max_length=2048)
    department: Department
    is_active: bool = True


class WebhookConfigUpdate(BaseModel):
    name: Optional[str] = Field(default=None, max_length=255)
    webhook_url: Optional[str] = Field(default=None, max_length=2048)
    department: Optional[Department] = None
    is_active: Optional[bool] = None


class WebhookConfigRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    webhook_url: str
    department: Department
    is_active: bool
    created_by: Optional[int]
    created_at: datetime
    updated_at: datetime


class NotificationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    batch_id: Optional[int]
    webhook_config_id: Optional[int]
    message: str
    status: NotificationStatus
    sent_at: Optional[datetime]
    error_message: Optional[str]
    attempts: int
    response_status_code: Optional[int]
    created_at: datetime


class BatchSummaryRead(BaseModel):
    total_batches: int
    open_batches: int
    full_batches: int
    total_capacity: int
    current_enrollment: int
    active_webhooks: int


class BatchUpdateResponse(BaseModel):
    batch: BatchRead
    notifications: list[NotificationRead] = Field(default_factory=list)


