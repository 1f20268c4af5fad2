"""Closed set of results the core hands to its callers.

The core is transport-agnostic: it never raises for client-visible conditions
and never knows about status codes. The HTTP boundary maps each variant
through ``HTTP_STATUS`` in ``shortlink.routes``.
"""

from dataclasses import dataclass, field

from shortlink.models import ShortLink

__all__ = [
    "Created",
    "Resolved",
    "Updated",
    "Deleted",
    "Stats",
    "NotFound",
    "CodeTaken",
    "RateLimited",
    "GenerationExhausted",
    "ValidationFailed",
    "Forbidden",
    "Outcome",
    "OUTCOME_TYPES",
]


@dataclass(frozen=True)
class Created:
    code: str
    link: ShortLink


@dataclass(frozen=True)
class Resolved:
    target: str


@dataclass(frozen=True)
class Updated:
    link: ShortLink


@dataclass(frozen=True)
class Deleted:
    code: str


@dataclass(frozen=True)
class Stats:
    link: ShortLink
    realtime_clicks: int | None
    analytics: dict = field(default_factory=dict)


@dataclass(frozen=True)
class NotFound:
    code: str


@dataclass(frozen=True)
class CodeTaken:
    code: str


@dataclass(frozen=True)
class RateLimited:
    retry_after: int


@dataclass(frozen=True)
class GenerationExhausted:
    attempts: int


@dataclass(frozen=True)
class ValidationFailed:
    reason: str


@dataclass(frozen=True)
class Forbidden:
    reason: str = "Not the owner of this link"


Outcome = (
    Created
    | Resolved
    | Updated
    | Deleted
    | Stats
    | NotFound
    | CodeTaken
    | RateLimited
    | GenerationExhausted
    | ValidationFailed
    | Forbidden
)

OUTCOME_TYPES: tuple[type, ...] = Outcome.__args__
