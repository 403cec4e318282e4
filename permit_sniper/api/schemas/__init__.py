"""
API Schemas package.

Pydantic models for request/response validation.
"""

from .sniper import (
    DateRangeModel,
    SniperJobCreateRequest,
    CredentialsUpdateRequest,
    DateRangeResponse,
    SniperJobResponse,
    SniperJobEnvelope,
    SniperJobListResponse,
    SniperJobDetailResponse,
    CredentialsUpdateResponse,
    SniperJobDeleteResponse,
)

__all__ = [
    "DateRangeModel",
    "SniperJobCreateRequest",
    "CredentialsUpdateRequest",
    "DateRangeResponse",
    "SniperJobResponse",
    "SniperJobEnvelope",
    "SniperJobListResponse",
    "SniperJobDetailResponse",
    "CredentialsUpdateResponse",
    "SniperJobDeleteResponse",
]
