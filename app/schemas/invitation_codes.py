from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class CreateInvitationCodeRequest(BaseModel):
    code: str | None = Field(default=None, min_length=6, max_length=32, pattern="^[A-Za-z0-9]+$")
    max_uses: int = Field(default=1, ge=1, le=10000)
    expires_at: datetime | None = None
    description: str | None = Field(default=None, max_length=500)


class BatchCreateInvitationCodesRequest(BaseModel):
    count: int = Field(default=10, ge=1, le=500)
    max_uses: int = Field(default=1, ge=1, le=10000)
    expires_at: datetime | None = None
    description: str | None = Field(default=None, max_length=500)


class UpdateInvitationCodeRequest(BaseModel):
    max_uses: int | None = Field(default=None, ge=1, le=10000)
    expires_at: datetime | None = None
    status: str | None = Field(default=None, pattern="^(active|disabled)$")


class SetInvitationCodeStatusRequest(BaseModel):
    enabled: bool


class ValidateInvitationCodeRequest(BaseModel):
    code: str = Field(min_length=1, max_length=32)


class UseInvitationCodeRequest(BaseModel):
    code: str = Field(min_length=1, max_length=32)


class InvitationCodeOut(BaseModel):
    id: UUID
    code: str
    max_uses: int
    used_count: int
    remaining_uses: int
    expires_at: datetime | None = None
    is_expired: bool
    is_available: bool
    status: str
    description: str | None = None
    created_by: UUID
    created_by_name: str
    created_at: datetime
    updated_at: datetime


class InvitationCodeValidationResponse(BaseModel):
    is_valid: bool
    message: str
    invitation_code: InvitationCodeOut | None = None


class InvitationCodeUsageOut(BaseModel):
    id: UUID
    code: str
    user_id: UUID
    user_name: str
    user_email: str
    used_at: datetime
    ip_address: str | None = None
    user_agent: str | None = None


class InvitationCodeListResponse(BaseModel):
    items: list[InvitationCodeOut]
    total_count: int
    page: int
    page_size: int
    total_pages: int
    has_next_page: bool
    has_previous_page: bool


class InvitationCodeUsageListResponse(BaseModel):
    items: list[InvitationCodeUsageOut]
    total_count: int
    page: int
    page_size: int
    total_pages: int
    has_next_page: bool
    has_previous_page: bool


class BatchCreateInvitationCodesResponse(BaseModel):
    codes: list[InvitationCodeOut]
    count: int


class InvitationCodeStatsResponse(BaseModel):
    total_codes: int
    active_codes: int
    disabled_codes: int
    expired_codes: int
    total_usages: int
    today_usages: int
    week_usages: int
    month_usages: int
    total_max_uses: int
    usage_rate: float
    recent_codes_count: int
    recent_usages_count: int
    generated_at: datetime


class OperationResponse(BaseModel):
    success: bool
    message: str = ""
