"""Shared enums for the shortlink service.

This module defines all status and classification enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = ["HealthStatus", "RequestStatus", "CacheStatus", "DeviceType", "BrowserFamily"]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class RequestStatus(StrEnum):
    """Request status values for metrics and logging."""

    SUCCESS = "success"
    VALIDATION_ERROR = "validation_error"
    CODE_TAKEN = "code_taken"
    RATE_LIMITED = "rate_limited"
    EXHAUSTED = "exhausted"
    NOT_FOUND = "not_found"
    ERROR = "error"


class CacheStatus(StrEnum):
    """Cache lookup result labels for metrics."""

    HIT = "hit"
    MISS = "miss"
    DEGRADED = "degraded"


class DeviceType(StrEnum):
    """Coarse device classification derived from the user agent."""

    MOBILE = "mobile"
    TABLET = "tablet"
    DESKTOP = "desktop"


class BrowserFamily(StrEnum):
    """Coarse browser classification derived from the user agent."""

    EDGE = "edge"
    CHROME = "chrome"
    FIREFOX = "firefox"
    SAFARI = "safari"
    OTHER = "other"
