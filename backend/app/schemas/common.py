"""
HD Notes Backend: Shared API Schemas
======================================

What:  Base model with the camelCase wire convention, plus the error, health
       and plain message envelopes used across routers.

The SPA speaks camelCase (`fullName`, `createdAt`); Python code keeps
snake_case attributes. `populate_by_name` accepts either spelling on input,
and FastAPI serializes responses by alias.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class MessageResponse(CamelModel):
    message: str = Field(description="Human-readable outcome")


class ErrorResponse(CamelModel):
    """
    Uniform error body for every failure.

    Example:
        {
            "error": "already_consumed",
            "message": "The verification code has already been used.",
            "requestId": "1f9c02ab"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(CamelModel):
    status: str = Field(description="Overall status: healthy, degraded, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    mail: str = Field(description="Mail transport: smtp, console, unavailable")
    uptime_seconds: float = Field(description="Seconds since the service started")
