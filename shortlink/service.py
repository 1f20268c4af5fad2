"""Shortlink Service Layer - Core Business Logic

This module composes the core components into the operations the HTTP
boundary calls, and turns every client-visible condition into an outcome.

Architecture Overview
==================
::
    ┌──────────────────────────────────────────────────────────────────┐
    │                          LinkService                              │
    │  ┌─────────────┐ ┌─────────────┐ ┌──────────────┐ ┌────────────┐ │
    │  │ RateLimiter │ │CodeGenerator│ │ResolutionCache│ │ClickAccount│ │
    │  └──────┬──────┘ └──────┬──────┘ └──────┬───────┘ └─────┬──────┘ │
    └─────────┼───────────────┼───────────────┼───────────────┼────────┘
              ▼               ▼               ▼               ▼
        ┌──────────┐    ┌──────────┐    ┌──────────┐    ┌──────────┐
        │  Redis   │    │LinkStore │    │Redis +   │    │Redis +   │
        │ rate:*   │    │ (SQL)    │    │LinkStore │    │TaskRunner│
        └──────────┘    └──────────┘    └──────────┘    └──────────┘

Link Creation Flow
-----------------
::
    ┌─────────────┐
    │ create()     │
    └──────┬──────┘
           ▼
    ┌─────────────┐  over budget
    │ RateLimiter  │──────────────► RateLimited
    └──────┬──────┘
           ▼
    ┌─────────────┐  invalid
    │ Validate URL │──────────────► ValidationFailed
    │ & options    │
    └──────┬──────┘
           ▼
    ┌─────────────┐  custom taken
    │ CodeGenerator│──────────────► CodeTaken
    │ claim        │  budget spent
    │ (insert via  │──────────────► GenerationExhausted
    │  write())    │
    └──────┬──────┘
           ▼
       Created(code, link)

Error Handling
==============
- Client conditions come back as outcomes and are logged at info/warning.
- ``StoreUnavailableError`` and ``EntropyUnavailableError`` propagate; the
  HTTP boundary turns them into server errors.
"""

import datetime
import logging
import time
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError

from shortlink.clicks import ClickAccountant, Visit
from shortlink.codegen import CodeGenerator, looks_like_code
from shortlink.config import Settings
from shortlink.enums import RequestStatus
from shortlink.exceptions import CodeTakenError, GenerationExhaustedError, InvalidCodeError, InvalidPatchError
from shortlink.metrics import LINK_CREATION_DURATION, LINK_CREATION_REQUESTS_TOTAL
from shortlink.models import ShortLink, as_utc, utcnow
from shortlink.outcomes import (
    CodeTaken,
    Created,
    Deleted,
    Forbidden,
    GenerationExhausted,
    NotFound,
    Outcome,
    RateLimited,
    Resolved,
    Stats,
    Updated,
    ValidationFailed,
)
from shortlink.rate_limit import ActorKey, RateLimiter
from shortlink.resolution import ResolutionCache
from shortlink.store import LinkStore
from shortlink.tasks import TaskRunner
from shortlink.urls import is_valid_target, sanitize_target

__all__ = ["LinkService"]


class LinkService:
    """Create, resolve, update and delete short links.

    All collaborators are injected; the service holds no global state.

    Example:
        >>> service = LinkService(cache=redis_client, store=store, tasks=TaskRunner(), settings=settings)
        >>> outcome = await service.create("https://example.com/page", ActorKey.for_address("10.0.0.1"))
        >>> isinstance(outcome, Created)
        True
    """

    def __init__(
        self,
        cache: redis.Redis,
        store: LinkStore,
        tasks: TaskRunner,
        settings: Settings,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        self._store = store
        self._settings = settings
        self._logger = logger or logging.getLogger("shortlink.service")
        self.codes = CodeGenerator(
            store,
            length=settings.SHORT_CODE_LENGTH,
            max_attempts=settings.CODE_MAX_ATTEMPTS,
            logger=self._logger,
        )
        self.limiter = RateLimiter(cache, settings, logger=self._logger)
        self.clicks = ClickAccountant(cache, store, tasks, settings, logger=self._logger)
        self.resolution = ResolutionCache(cache, store, self.clicks, settings, logger=self._logger)

    @classmethod
    def from_context(cls, ctx: "RequestContext") -> "LinkService":  # noqa: F821
        return cls(
            cache=ctx.cache,
            store=ctx.store,
            tasks=ctx.tasks,
            settings=ctx.settings,
            logger=ctx.logger,
        )

    # ========================================================================
    # CREATE
    # ========================================================================

    async def create(
        self,
        url: str,
        actor: ActorKey,
        custom_code: str | None = None,
        expires_at: datetime.datetime | None = None,
        metadata: dict[str, str] | None = None,
    ) -> Outcome:
        start_time = time.perf_counter()
        outcome = await self._create(url, actor, custom_code, expires_at, metadata)
        LINK_CREATION_DURATION.observe(time.perf_counter() - start_time)
        LINK_CREATION_REQUESTS_TOTAL.labels(status=_creation_status(outcome)).inc()
        return outcome

    async def _create(
        self,
        url: str,
        actor: ActorKey,
        custom_code: str | None,
        expires_at: datetime.datetime | None,
        metadata: dict[str, str] | None,
    ) -> Outcome:
        decision = await self.limiter.check(actor)
        if not decision.allowed:
            return RateLimited(retry_after=decision.retry_after)

        if not is_valid_target(url):
            self._logger.info(f"Rejected invalid target URL: {url!r}")
            return ValidationFailed("Invalid URL: an absolute http or https URL is required")
        target = sanitize_target(url) if self._settings.STRIP_TRACKING_PARAMS else url

        if expires_at is not None:
            expires_at = as_utc(expires_at)
            if expires_at <= utcnow():
                return ValidationFailed("expires_at must be in the future")

        owner_id = actor.identity if actor.is_authenticated else None

        async def insert(code: str) -> ShortLink:
            link = ShortLink.new(
                code=code,
                target=target,
                retention_days=self._settings.LINK_RETENTION_DAYS,
                owner_id=owner_id,
                is_custom=custom_code is not None,
                expires_at=expires_at,
                meta=metadata,
            )
            return await self.resolution.write(link)

        try:
            if custom_code is not None:
                link = await self.codes.claim_custom(custom_code, insert)
            else:
                link = await self.codes.claim(insert)
        except InvalidCodeError as exc:
            return ValidationFailed(exc.reason)
        except CodeTakenError as exc:
            self._logger.info(f"Custom code already taken: {exc.code}")
            return CodeTaken(exc.code)
        except GenerationExhaustedError as exc:
            return GenerationExhausted(exc.attempts)

        self._logger.info(f"Link created: {link.code} -> {link.target} (owner={owner_id})")
        return Created(code=link.code, link=link)

    # ========================================================================
    # RESOLVE
    # ========================================================================

    async def resolve(self, code: str, visit: Visit | None = None) -> Resolved | NotFound:
        if not looks_like_code(code):
            return NotFound(code)
        resolved = await self.resolution.resolve(code, visit)
        if resolved is None:
            return NotFound(code)
        return Resolved(target=resolved.target)

    # ========================================================================
    # OWNER OPERATIONS
    # ========================================================================

    async def update(
        self,
        code: str,
        actor: ActorKey,
        url: str | None = None,
        active: bool | None = None,
        expires_at: datetime.datetime | None = None,
        metadata: dict[str, str] | None = None,
    ) -> Outcome:
        decision = await self.limiter.check(actor)
        if not decision.allowed:
            return RateLimited(retry_after=decision.retry_after)

        link, denied = await self._owned(code, actor)
        if denied is not None:
            return denied

        patch: dict[str, Any] = {}
        if url is not None:
            if not is_valid_target(url):
                return ValidationFailed("Invalid URL: an absolute http or https URL is required")
            patch["target"] = sanitize_target(url) if self._settings.STRIP_TRACKING_PARAMS else url
        if active is not None:
            patch["active"] = bool(active)
        if expires_at is not None:
            expires_at = as_utc(expires_at)
            if expires_at <= as_utc(link.created_at):
                return ValidationFailed("expires_at must be after the link was created")
            patch["expires_at"] = expires_at
        if metadata is not None:
            patch["meta"] = dict(metadata)
        if not patch:
            return ValidationFailed("No fields to update")

        try:
            updated = await self.resolution.apply(code, patch)
        except InvalidPatchError as exc:
            return ValidationFailed(exc.reason)
        if updated is None:
            return NotFound(code)
        self._logger.info(f"Link updated: {code} fields={sorted(patch)}")
        return Updated(link=updated)

    async def delete(self, code: str, actor: ActorKey) -> Outcome:
        decision = await self.limiter.check(actor)
        if not decision.allowed:
            return RateLimited(retry_after=decision.retry_after)

        link, denied = await self._owned(code, actor)
        if denied is not None:
            return denied

        removed = await self._store.delete(code)
        if removed is None:
            return NotFound(code)
        await self.resolution.invalidate(code, link.owner_id)
        await self.clicks.forget(code)
        self._logger.info(f"Link deleted: {code}")
        return Deleted(code=code)

    async def stats(
        self,
        code: str,
        actor: ActorKey,
        with_analytics: bool = False,
        summary_days: int = 30,
    ) -> Outcome:
        """Durable record plus the fast counter; owned links are visible to their owner only.

        With ``with_analytics`` the outcome also carries ``{"realtime": ..., "summary": ...}``
        built from the analytics log. An unreadable log leaves ``analytics`` empty.
        """
        if not looks_like_code(code):
            return NotFound(code)
        link = await self._store.find_by_code(code)
        if link is None:
            return NotFound(code)
        if link.owner_id is not None and not _is_owner(link, actor):
            return Forbidden()

        realtime = await self.clicks.realtime_clicks(code)
        analytics: dict = {}
        if with_analytics:
            try:
                analytics = {
                    "realtime": await self.clicks.realtime_stats(code),
                    "summary": await self.clicks.summary(code, days=summary_days),
                }
            except (RedisError, TimeoutError) as exc:
                self._logger.warning(f"Analytics unavailable for {code}: {exc}")
        return Stats(link=link, realtime_clicks=realtime, analytics=analytics)

    async def _owned(self, code: str, actor: ActorKey) -> tuple[ShortLink | None, Outcome | None]:
        if not looks_like_code(code):
            return None, NotFound(code)
        link = await self._store.find_by_code(code)
        if link is None:
            return None, NotFound(code)
        if not _is_owner(link, actor):
            self._logger.warning(f"Actor {actor} denied access to {code}")
            return link, Forbidden()
        return link, None


def _is_owner(link: ShortLink, actor: ActorKey) -> bool:
    return link.owner_id is not None and actor.is_authenticated and actor.identity == link.owner_id


def _creation_status(outcome: Outcome) -> RequestStatus:
    if isinstance(outcome, Created):
        return RequestStatus.SUCCESS
    if isinstance(outcome, CodeTaken):
        return RequestStatus.CODE_TAKEN
    if isinstance(outcome, RateLimited):
        return RequestStatus.RATE_LIMITED
    if isinstance(outcome, GenerationExhausted):
        return RequestStatus.EXHAUSTED
    if isinstance(outcome, ValidationFailed):
        return RequestStatus.VALIDATION_ERROR
    return RequestStatus.ERROR
