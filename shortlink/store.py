"""Durable store adapter for short links.

``LinkStore`` is the only code that talks to the database. Each operation
opens its own short-lived session and runs under a bounded timeout, so the
store can be shared by concurrent requests and by fire-and-forget tasks.

Operation Overview
==================
::
    find_by_code      SELECT by code
    find_resolvable   SELECT by code AND active AND expires_at > now
    exists            SELECT 1 by code
    insert            INSERT (unique violation -> ConflictError)
    increment_clicks  UPDATE click_count = click_count + n
    update_fields     SELECT ... FOR UPDATE, merge, UPDATE changed columns
    delete            DELETE by code, returning the removed record
    purge_expired     DELETE a batch of expired rows

Key Behaviours
===============
- Uniqueness of ``code`` is enforced by the schema, not by ``exists``.
- Click counts are changed only with an in-database increment.
- Timeouts and connection failures raise ``StoreUnavailableError``.
"""

import asyncio
import datetime
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from sqlalchemy import delete, select, text, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortlink.exceptions import ConflictError, InvalidPatchError, StoreUnavailableError
from shortlink.metrics import STORE_ERRORS_TOTAL
from shortlink.models import MUTABLE_FIELDS, ShortLink, utcnow

__all__ = ["LinkStore"]

T = TypeVar("T")


class LinkStore:
    """Durable store operations the core needs, backed by SQLAlchemy async sessions."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        timeout_seconds: float = 5.0,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        self._session_factory = session_factory
        self._timeout = timeout_seconds
        self._logger = logger or logging.getLogger("shortlink.store")

    async def _run(self, operation: str, work: Callable[[AsyncSession], Awaitable[T]]) -> T:
        try:
            async with asyncio.timeout(self._timeout):
                async with self._session_factory() as session:
                    return await work(session)
        except TimeoutError as exc:
            STORE_ERRORS_TOTAL.labels(operation=operation).inc()
            self._logger.error(f"Store timeout during {operation} after {self._timeout}s")
            raise StoreUnavailableError(operation, exc) from exc
        except (OperationalError, InterfaceError, OSError) as exc:
            STORE_ERRORS_TOTAL.labels(operation=operation).inc()
            self._logger.error(f"Store failure during {operation}: {exc}")
            raise StoreUnavailableError(operation, exc) from exc

    async def ping(self) -> None:
        async def work(session: AsyncSession) -> None:
            await session.execute(text("SELECT 1"))

        await self._run("ping", work)

    async def find_by_code(self, code: str) -> ShortLink | None:
        async def work(session: AsyncSession) -> ShortLink | None:
            result = await session.execute(select(ShortLink).where(ShortLink.code == code))
            return result.scalar_one_or_none()

        return await self._run("find_by_code", work)

    async def find_resolvable(self, code: str, now: datetime.datetime | None = None) -> ShortLink | None:
        now = now or utcnow()

        async def work(session: AsyncSession) -> ShortLink | None:
            result = await session.execute(
                select(ShortLink).where(
                    ShortLink.code == code,
                    ShortLink.active.is_(True),
                    ShortLink.expires_at > now,
                )
            )
            return result.scalar_one_or_none()

        link = await self._run("find_resolvable", work)
        # The SQL filter and the model predicate must agree; the model is authoritative.
        if link is not None and not link.is_resolvable(now):
            return None
        return link

    async def exists(self, code: str) -> bool:
        async def work(session: AsyncSession) -> bool:
            result = await session.execute(select(ShortLink.id).where(ShortLink.code == code).limit(1))
            return result.scalar_one_or_none() is not None

        return await self._run("exists", work)

    async def insert(self, link: ShortLink) -> ShortLink:
        async def work(session: AsyncSession) -> ShortLink:
            session.add(link)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise ConflictError(link.code, exc) from exc
            return link

        return await self._run("insert", work)

    async def increment_clicks(self, code: str, n: int = 1) -> bool:
        """Atomically add ``n`` clicks. Returns False when the code no longer exists."""
        if n < 1:
            raise ValueError(f"click increment must be positive, got {n!r}")

        async def work(session: AsyncSession) -> bool:
            result = await session.execute(
                update(ShortLink).where(ShortLink.code == code).values(click_count=ShortLink.click_count + n)
            )
            await session.commit()
            return result.rowcount > 0

        return await self._run("increment_clicks", work)

    async def update_fields(self, code: str, patch: dict[str, Any]) -> ShortLink | None:
        """Apply an owner field update. ``meta`` is merged key by key; other fields are replaced."""
        unknown = set(patch) - MUTABLE_FIELDS
        if unknown:
            raise InvalidPatchError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        async def work(session: AsyncSession) -> ShortLink | None:
            result = await session.execute(select(ShortLink).where(ShortLink.code == code).with_for_update())
            link = result.scalar_one_or_none()
            if link is None:
                return None
            for field, value in patch.items():
                if field == "meta":
                    link.meta = {**(link.meta or {}), **value}
                else:
                    setattr(link, field, value)
            link.updated_at = utcnow()
            await session.commit()
            return link

        return await self._run("update_fields", work)

    async def delete(self, code: str) -> ShortLink | None:
        async def work(session: AsyncSession) -> ShortLink | None:
            result = await session.execute(select(ShortLink).where(ShortLink.code == code))
            link = result.scalar_one_or_none()
            if link is None:
                return None
            await session.delete(link)
            await session.commit()
            return link

        return await self._run("delete", work)

    async def purge_expired(self, now: datetime.datetime | None = None, limit: int = 500) -> list[tuple[str, str | None]]:
        """Delete up to ``limit`` expired links and return their ``(code, owner_id)`` pairs."""
        now = now or utcnow()

        async def work(session: AsyncSession) -> list[tuple[str, str | None]]:
            result = await session.execute(
                select(ShortLink.code, ShortLink.owner_id).where(ShortLink.expires_at <= now).limit(limit)
            )
            rows = [(code, owner_id) for code, owner_id in result.all()]
            if rows:
                await session.execute(delete(ShortLink).where(ShortLink.code.in_([code for code, _ in rows])))
                await session.commit()
            return rows

        return await self._run("purge_expired", work)
