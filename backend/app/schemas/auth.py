"""
HD Notes Backend: Authentication Schemas
==========================================

What:  Request and response bodies of the /api/auth endpoints.

Field validation here is shape-only (types, lengths). Email format, profile
completeness and date-of-birth rules are enforced by OtpService so that the
service behaves the same whether it is called over HTTP or directly.
"""

import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import Field

from app.schemas.common import CamelModel


class SignupSendOtpRequest(CamelModel):
    email: str = Field(max_length=320, description="Email address to register")
    full_name: Optional[str] = Field(default=None, max_length=200)
    date_of_birth: Optional[date] = Field(default=None, description="ISO date, YYYY-MM-DD")


class SignupVerifyOtpRequest(CamelModel):
    email: str = Field(max_length=320)
    code: str = Field(min_length=1, max_length=16, description="One-time code from the email")
    full_name: Optional[str] = Field(default=None, max_length=200)
    date_of_birth: Optional[date] = None


class SigninSendOtpRequest(CamelModel):
    email: str = Field(max_length=320)


class SigninVerifyOtpRequest(CamelModel):
    email: str = Field(max_length=320)
    code: str = Field(min_length=1, max_length=16)


class OtpSentResponse(CamelModel):
    """
    Returned by both send-otp endpoints.

    For signin the body is identical whether or not the email is
    registered.
    """
    message: str
    expires_in_seconds: int


class UserResponse(CamelModel):
    id: uuid.UUID
    email: str
    full_name: str
    date_of_birth: date
    created_at: datetime


class AuthResponse(CamelModel):
    message: str
    user: UserResponse


class ProfileResponse(CamelModel):
    user: UserResponse
