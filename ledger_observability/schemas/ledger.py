"""Pydantic schemas for the throttled ledger endpoints."""

from pydantic import BaseModel, Field


class MessageResponse(BaseModel):
    """Acknowledgement returned by the ledger endpoints."""

    message: str = Field(..., description="Human-readable result of the action.")


class ThrottleErrorBody(BaseModel):
    """Body of a 429 Too Many Requests response."""

    error: str = Field("Rate limit exceeded", description="Constant error label.")
    message: str = Field(..., description="Human-readable retry hint.")
    limit: int = Field(..., ge=1, description="Requests allowed per window for the rule that denied.")
    remaining: int = Field(0, ge=0, description="Requests left in the window (always 0).")
    retry_after: int = Field(..., ge=1, description="Seconds until the window resets.")
    reset_at: str = Field(..., description="ISO8601 instant at which the window resets.")
