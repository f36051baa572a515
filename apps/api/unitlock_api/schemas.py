"""Pydantic schemas for API requests/responses."""

from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# POST /api/gate/open
# ============================================================================


class GateOpenRequest(BaseModel):
    """Request body for POST /api/gate/open.

    unit_id is validated by the authorization engine so malformed values are
    reported with the same 400 problem as every other invalid request.
    """

    model_config = ConfigDict(populate_by_name=True)

    unit_id: Optional[Union[int, str]] = Field(
        None, alias="unitId", description="Storage unit identifier"
    )


class GateOpenResponse(BaseModel):
    """Response for a granted gate request (200)."""

    success: bool = True
    granted: bool = True
    message: str
    actuation: str = Field(..., description="OPENED | SIMULATED | FAILED")
    fallback_code: Optional[str] = Field(
        None, description="Present when the gate controller did not respond"
    )


# ============================================================================
# POST /api/webhooks/stripe
# ============================================================================


class WebhookAck(BaseModel):
    """Acknowledgement for a processed or intentionally ignored event."""

    status: str = Field(..., description="processed | duplicate | ignored")
    event_type: Optional[str] = None


# ============================================================================
# RFC 9457 Problem Details
# ============================================================================


class ProblemDetail(BaseModel):
    """RFC 9457 Problem Details for HTTP API errors.

    detail can be either a string or a structured object (dict).
    """

    type: str = Field(..., description="URI reference identifying the problem type")
    title: str = Field(..., description="Short, human-readable summary")
    status: int = Field(..., description="HTTP status code")
    detail: str | dict[str, Any] = Field(..., description="Human-readable explanation")
    instance: Optional[str] = Field(None, description="URI reference identifying the specific occurrence")
    error_code: Optional[str] = Field(None, description="Machine-readable error code")
    reason: Optional[str] = Field(None, description="Access decision reason (402 only)")
