"""Dependency injection with a process-owned service manager.

The service manager owns the shared clients (Redis, the durable store, the
background task runner, the logger). Each request gets a lightweight
``RequestContext`` and a ``LinkService`` built from it; the core components
receive every client through their constructors.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

import redis.asyncio as redis
from fastapi import Depends, Request

from shortlink.clicks import Visit
from shortlink.config import Settings, get_settings
from shortlink.database import get_session_factory
from shortlink.rate_limit import ActorKey
from shortlink.redis import build_redis
from shortlink.service import LinkService
from shortlink.store import LinkStore
from shortlink.tasks import TaskRunner

USER_HEADER = "x-user-id"


# ============================================================================
# SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Shared resources created once at startup and reused by every request."""

    _instance: Optional["ServiceManager"] = None
    _initialized: bool = False

    def __new__(cls) -> "ServiceManager":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def initialize(self) -> None:
        """Initialize shared resources once at startup."""
        if not self._initialized:
            self.settings = get_settings()
            self.logger = self._setup_logger()
            self.cache = build_redis(self.settings.REDIS_URL, self.settings.REDIS_TIMEOUT_SECONDS)
            self.store = LinkStore(
                get_session_factory(),
                timeout_seconds=self.settings.STORE_TIMEOUT_SECONDS,
                logger=self.logger.getChild("store"),
            )
            self.tasks = TaskRunner(logger=self.logger.getChild("tasks"))
            self._initialized = True

    def _setup_logger(self) -> logging.Logger:
        """Setup logger once."""
        logger = logging.getLogger("shortlink")
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
            logger.setLevel(self.settings.LOG_LEVEL)
        return logger

    async def cleanup(self) -> None:
        """Let in-flight background work finish, then close shared clients."""
        if not self._initialized:
            return
        try:
            await self.tasks.drain(timeout=self.settings.STORE_TIMEOUT_SECONDS)
        except TimeoutError:
            self.logger.warning(f"Cancelling {self.tasks.pending} background tasks at shutdown")
            await self.tasks.cancel_all()
        await self.cache.aclose()
        self._initialized = False


_service_manager = ServiceManager()


# ============================================================================
# REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request view over shared resources plus request identity.

    Attributes:
        service_manager: Process-owned shared resources
        request_id: Unique identifier for this request
        user_id: Authenticated user, set by the upstream auth layer
        client_ip: Client IP address
        user_agent: Client user agent string
        referrer: Referer header
        country: Country code from the edge proxy, if any
        start_time: Request start timestamp
    """

    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    user_id: Optional[str] = None
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None
    referrer: Optional[str] = None
    country: Optional[str] = None
    start_time: float = field(default_factory=lambda: time.time())

    @property
    def cache(self) -> redis.Redis:
        return self.service_manager.cache

    @property
    def store(self) -> LinkStore:
        return self.service_manager.store

    @property
    def tasks(self) -> TaskRunner:
        return self.service_manager.tasks

    @property
    def settings(self) -> Settings:
        return self.service_manager.settings

    @property
    def logger(self) -> logging.LoggerAdapter:
        """Shared logger with request context attached."""
        return logging.LoggerAdapter(
            self.service_manager.logger,
            {
                "request_id": self.request_id,
                "client_ip": self.client_ip,
                "user_agent": self.user_agent,
            },
        )

    @property
    def actor(self) -> ActorKey:
        return ActorKey.of(self.user_id, self.client_ip)

    @property
    def visit(self) -> Visit:
        return Visit(
            user_agent=self.user_agent,
            referrer=self.referrer,
            country=self.country,
            client_ip=self.client_ip,
        )

    def get_duration(self) -> float:
        """Request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


async def get_service_manager() -> ServiceManager:
    if not _service_manager._initialized:
        await _service_manager.initialize()
    return _service_manager


async def get_request_context(
    request: Request,
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    return RequestContext(
        service_manager=manager,
        request_id=request.headers.get("x-request-id") or str(uuid.uuid4()),
        user_id=request.headers.get(USER_HEADER) or None,
        client_ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        referrer=request.headers.get("referer"),
        country=request.headers.get("cf-ipcountry"),
    )


def get_link_service(ctx: RequestContext = Depends(get_request_context)) -> LinkService:
    return LinkService.from_context(ctx)
