"""Pydantic schemas for request/response validation and cache payloads.

Schema Hierarchy
=================
::
    LinkCreate (Input)
    ├─ url: str (validated http/https URL)
    ├─ custom_code: str | None
    ├─ expires_at: datetime | None
    └─ metadata: dict[str, str]

    LinkUpdate (Input)
    ├─ url: str | None
    ├─ active: bool | None
    ├─ expires_at: datetime | None
    └─ metadata: dict[str, str] | None (merged)

    LinkResponse / LinkStats (Output)
    AnalyticsResponse (Output: RealtimeStats + AnalyticsSummary)
    CachedTarget (Redis payload under url:<code>)
    ClickEvent (Redis analytics entry)
    HealthResponse (Output)

Key Behaviours
===============
- URL validation uses the validators library plus an http/https scheme check.
- Custom codes must be 4-20 letters, digits, '-' or '_'.
- Schema validation is a convenience for the HTTP layer; the service repeats
  the same checks so direct callers get the same guarantees.
"""

import datetime

from pydantic import BaseModel, Field, field_validator

from shortlink.codegen import is_valid_custom_code
from shortlink.enums import BrowserFamily, DeviceType, HealthStatus
from shortlink.urls import is_valid_target

__all__ = [
    "LinkCreate",
    "LinkUpdate",
    "LinkResponse",
    "LinkStats",
    "RealtimeStats",
    "AnalyticsSummary",
    "AnalyticsResponse",
    "HealthResponse",
    "ClickEvent",
    "CachedTarget",
]


class LinkCreate(BaseModel):
    url: str
    custom_code: str | None = None
    expires_at: datetime.datetime | None = None
    metadata: dict[str, str] = Field(default_factory=dict)

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not is_valid_target(v):
            raise ValueError("Invalid URL provided")
        return v

    @field_validator("custom_code")
    @classmethod
    def validate_custom_code(cls, v: str | None) -> str | None:
        if v is not None and not is_valid_custom_code(v):
            raise ValueError("Custom code must be 4-20 letters, digits, '-' or '_'")
        return v


class LinkUpdate(BaseModel):
    url: str | None = None
    active: bool | None = None
    expires_at: datetime.datetime | None = None
    metadata: dict[str, str] | None = None

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        if v is not None and not is_valid_target(v):
            raise ValueError("Invalid URL provided")
        return v


class LinkResponse(BaseModel):
    code: str
    target: str
    short_url: str
    owner_id: str | None
    is_custom: bool
    active: bool
    click_count: int
    metadata: dict[str, str]
    created_at: datetime.datetime
    expires_at: datetime.datetime


class LinkStats(LinkResponse):
    realtime_clicks: int | None


class RealtimeStats(BaseModel):
    clicks_last_hour: int
    clicks_last_24_hours: int
    current_hour: dict[int, int]
    top_referrers: list[dict[str, str | int]]
    devices: dict[str, int]


class AnalyticsSummary(BaseModel):
    total: int
    devices: dict[str, int]
    browsers: dict[str, int]
    referrers: dict[str, int]
    hourly: dict[int, int]


class AnalyticsResponse(BaseModel):
    code: str
    realtime: RealtimeStats
    summary: AnalyticsSummary


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus


class ClickEvent(BaseModel):
    """One entry of the bounded analytics log, scored by ``timestamp``."""

    id: str
    timestamp: int = Field(..., description="Milliseconds since the epoch")
    device: DeviceType
    browser: BrowserFamily
    referrer: str = "direct"
    country: str = "unknown"


class CachedTarget(BaseModel):
    """Redis payload for a resolvable link; a projection of the durable record."""

    code: str
    target: str
    owner_id: str | None = None
    expires_at: datetime.datetime

    model_config = {"from_attributes": True}
