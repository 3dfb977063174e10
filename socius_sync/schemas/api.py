"""
Socius Sync — Reference Server Response Schemas
=================================================

What:  Pydantic models for the reference server's non-record responses.
Who:   Used as response models by the health route and in the OpenAPI
       description of error responses.

Record bodies are validated by the collection adapters instead, so the
server accepts exactly what the client sends and nothing else.
"""

from typing import Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """
    Standardized error body for every failed request.

    Example:
        {
            "error": "not_found",
            "message": "passwords record '1718000000000-4f2a' was not found",
            "details": {"collection": "passwords"},
            "request_id": "a1b2c3d4"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    """Health check response: overall status plus database connectivity."""
    status: str = Field(description="Overall service status: healthy, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    uptime_seconds: float = Field(description="Seconds since service started")
