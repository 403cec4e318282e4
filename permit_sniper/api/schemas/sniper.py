"""
Sniper API schemas.

Request/response models for the /sniper endpoints.
Business validation (range order, credentials present) happens in the
service and maps to 400; malformed payloads are rejected here with 422.
"""

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field


# =============================================================================
# Requests
# =============================================================================


class DateRangeModel(BaseModel):
    """An entry date and an exit date (YYYY-MM-DD)."""

    start_date: date = Field(..., description="Entry date")
    end_date: date = Field(..., description="Exit date (must be after start_date)")


class SniperJobCreateRequest(BaseModel):
    """Request to schedule a new sniper job."""

    permit_id: str = Field(..., description="Permit identifier on recreation.gov")
    permit_name: str = Field(default="", description="Display label")
    division_id: str = Field(..., description="Division / entrance identifier")
    desired_ranges: List[DateRangeModel] = Field(
        ...,
        description="Acceptable date ranges in priority order (first = most preferred)",
    )
    group_size: int = Field(default=1, description="Party size")
    window_opens_at: datetime = Field(
        ...,
        description="Instant the reservation window opens (ISO 8601, naive = UTC)",
    )
    email: str = Field(default="", description="recreation.gov account email")
    password: str = Field(default="", description="recreation.gov account password")


class CredentialsUpdateRequest(BaseModel):
    """Supply or replace credentials for a job."""

    email: str = Field(default="", description="recreation.gov account email")
    password: str = Field(default="", description="recreation.gov account password")


# =============================================================================
# Responses
# =============================================================================


class DateRangeResponse(BaseModel):
    start_date: str
    end_date: str


class SniperJobResponse(BaseModel):
    """Snapshot of a sniper job. Never carries credentials."""

    job_id: str = Field(..., description="Unique job identifier")
    permit_id: str
    permit_name: str = ""
    division_id: str
    desired_ranges: List[DateRangeResponse] = Field(default_factory=list)
    group_size: int
    window_opens_at: str = Field(..., description="Window opening instant (ISO format, UTC)")
    status: str = Field(
        ...,
        description="pending | pre-warming | watching | booking | in-cart | failed | cancelled",
    )
    attempts: int = Field(default=0, description="Availability polls performed")
    message: str = Field(default="", description="Human-readable progress note")
    booked_range: Optional[DateRangeResponse] = Field(
        default=None, description="Range placed in the cart, if any"
    )
    created_at: str
    updated_at: str


class SniperJobEnvelope(BaseModel):
    job: SniperJobResponse


class SniperJobListResponse(BaseModel):
    jobs: List[SniperJobResponse] = Field(default_factory=list)


class SniperJobDetailResponse(BaseModel):
    job: SniperJobResponse
    needs_credentials: bool = Field(
        ..., description="True if the job cannot proceed until credentials are re-entered"
    )


class CredentialsUpdateResponse(BaseModel):
    updated: bool
    job: SniperJobResponse


class SniperJobDeleteResponse(BaseModel):
    deleted: bool
