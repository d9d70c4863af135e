from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    display_name: str | None = Field(default=None, min_length=1, max_length=120)
    invitation_code: str = Field(min_length=4, max_length=32)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)


class UserOut(BaseModel):
    id: UUID
    email: EmailStr
    display_name: str
    role: str
    status: str
    last_login_at: datetime | None = None
    created_at: datetime


class RegisterResponse(BaseModel):
    user: UserOut
    invitation_redeemed: bool
    invitation_error: str | None = None


class AuthResponse(BaseModel):
    user: UserOut
    access_token: str
    access_token_expires_in: int
    token_type: str = "bearer"
