# filerunner/schemas/auth.py
from typing import Optional
from pydantic import BaseModel, EmailStr, Field

from filerunner.schemas.user import UserRead


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int  # access token 剩餘秒數


class TokenAuthResponse(TokenPair):
    user: UserRead


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, description="Password must be at least 8 characters")


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1)


class LogoutRequest(BaseModel):
    refresh_token: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(min_length=8, description="Password must be at least 8 characters")


class MessageResponse(BaseModel):
    message: str


class RevocationResponse(MessageResponse):
    revoked_count: int
