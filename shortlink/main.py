"""FastAPI application entry point for the shortlink service.

Application Lifecycle Diagram
=============================
::
    ┌─────────────┐
    │  uvicorn    │
    │  startup    │
    └──────┬──────┘
           ▼
    ┌──────────────┐
    │ lifespan()   │
    │ init_db()    │
    │ services up  │
    └──────┬───────┘
           ▼
    ┌─────────────┐
    │ Serve HTTP  │
    │ requests    │
    └──────┬──────┘
           ▼
    ┌──────────────────┐
    │ lifespan()       │
    │ drain tasks      │
    │ close cache      │
    │ close_db()       │
    └──────────────────┘

How to Use
===========
**Run with uvicorn**::
    uvicorn shortlink.main:app --host 0.0.0.0 --port 8080

**Shorten a URL**::
    curl -X POST http://localhost:8080/api/shorten \
         -H "Content-Type: application/json" \
         -d '{"url": "https://example.com"}'

Key Behaviours
===============
- Database tables are created on startup.
- Background click increments are drained before the cache client closes.
- ``StoreUnavailableError`` becomes 503 and ``EntropyUnavailableError`` 500;
  every other condition reaches the client as a mapped outcome.
- Prometheus metrics are exposed at ``/metrics``.
"""

__all__ = ["app"]

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from shortlink.config import get_settings
from shortlink.database import close_db, init_db
from shortlink.dependencies import _service_manager
from shortlink.exceptions import EntropyUnavailableError, StoreUnavailableError
from shortlink.routes import router

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    await init_db()
    await _service_manager.initialize()
    yield
    # Shutdown
    await _service_manager.cleanup()
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="URL shortener with cached resolution and click accounting",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StoreUnavailableError)
async def store_unavailable_handler(request: Request, exc: StoreUnavailableError) -> JSONResponse:
    return JSONResponse(status_code=503, content={"detail": "Storage temporarily unavailable"})


@app.exception_handler(EntropyUnavailableError)
async def entropy_unavailable_handler(request: Request, exc: EntropyUnavailableError) -> JSONResponse:
    return JSONResponse(status_code=500, content={"detail": "Could not generate a short code"})


Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=False,
    should_respect_env_var=False,
).instrument(app).expose(app)

app.include_router(router)
