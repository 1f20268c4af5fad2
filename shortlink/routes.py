"""FastAPI route definitions for the shortlink REST API.

The routes are a thin boundary: they parse the request, build the actor and
visit from the request context, call ``LinkService`` and map the returned
outcome to a status code through ``HTTP_STATUS``.

API Endpoint Overview
=====================
::
    GET    /health
        └─ HealthResponse (200)

    POST   /api/shorten
        ├─ LinkCreate (request body)
        └─ LinkResponse (201) or 409/422/429/503

    GET    /api/stats/:code
        └─ LinkStats (200) or 403/404

    GET    /api/analytics/:code
        └─ AnalyticsResponse (200) or 403/404/503

    PATCH  /api/links/:code
        ├─ LinkUpdate (request body)
        └─ LinkResponse (200) or 403/404/422/429

    DELETE /api/links/:code
        └─ 204 or 403/404/429

    GET    /:code
        └─ 307 Redirect or 404

Outcome Mapping
===============
::
    Created 201   Resolved 307   Updated 200   Deleted 204   Stats 200
    NotFound 404  CodeTaken 409  RateLimited 429 (+ Retry-After)
    GenerationExhausted 503      ValidationFailed 422         Forbidden 403

Key Behaviours
===============
- The actor is the ``X-User-Id`` header set by the auth layer, or the client
  address when the header is absent.
- 307 redirects preserve the HTTP method.
- ``/{code}`` is registered last so it never shadows the API paths.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from fastapi.responses import RedirectResponse

from shortlink.dependencies import RequestContext, get_link_service, get_request_context
from shortlink.enums import HealthStatus
from shortlink.models import ShortLink
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
from shortlink.schemas import (
    AnalyticsResponse,
    HealthResponse,
    LinkCreate,
    LinkResponse,
    LinkStats,
    LinkUpdate,
)
from shortlink.service import LinkService

__all__ = ["router", "HTTP_STATUS"]

router = APIRouter()

HTTP_STATUS: dict[type, int] = {
    Created: 201,
    Resolved: 307,
    Updated: 200,
    Deleted: 204,
    Stats: 200,
    NotFound: 404,
    CodeTaken: 409,
    RateLimited: 429,
    GenerationExhausted: 503,
    ValidationFailed: 422,
    Forbidden: 403,
}


def _fail(outcome: Outcome) -> HTTPException:
    """Build the error response for a non-success outcome."""
    status_code = HTTP_STATUS[type(outcome)]
    if isinstance(outcome, NotFound):
        return HTTPException(status_code=status_code, detail="Short URL not found")
    if isinstance(outcome, CodeTaken):
        return HTTPException(status_code=status_code, detail=f"Short code '{outcome.code}' is already taken")
    if isinstance(outcome, RateLimited):
        return HTTPException(
            status_code=status_code,
            detail="Rate limit exceeded",
            headers={"Retry-After": str(outcome.retry_after)},
        )
    if isinstance(outcome, GenerationExhausted):
        return HTTPException(
            status_code=status_code,
            detail=f"Could not allocate a short code after {outcome.attempts} attempts",
        )
    if isinstance(outcome, ValidationFailed | Forbidden):
        return HTTPException(status_code=status_code, detail=outcome.reason)
    return HTTPException(status_code=500, detail="Unexpected outcome")


def _link_response(link: ShortLink, ctx: RequestContext) -> LinkResponse:
    return LinkResponse(
        code=link.code,
        target=link.target,
        short_url=f"{ctx.settings.BASE_URL}/{link.code}",
        owner_id=link.owner_id,
        is_custom=link.is_custom,
        active=link.active,
        click_count=link.click_count,
        metadata=link.meta or {},
        created_at=link.created_at,
        expires_at=link.expires_at,
    )


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(ctx: RequestContext = Depends(get_request_context)) -> HealthResponse:
    db_status = HealthStatus.HEALTHY
    cache_status = HealthStatus.HEALTHY

    try:
        await ctx.store.ping()
        ctx.logger.debug("Database health check passed")
    except Exception as e:
        ctx.logger.error(f"Database health check failed: {e}")
        db_status = HealthStatus.UNHEALTHY

    try:
        await ctx.cache.ping()
        ctx.logger.debug("Cache health check passed")
    except Exception as e:
        ctx.logger.error(f"Cache health check failed: {e}")
        cache_status = HealthStatus.UNHEALTHY

    status = (
        HealthStatus.HEALTHY
        if db_status is HealthStatus.HEALTHY and cache_status is HealthStatus.HEALTHY
        else HealthStatus.UNHEALTHY
    )
    ctx.logger.info(f"Health check completed: {status.value}")
    return HealthResponse(status=status, database=db_status, cache=cache_status)


@router.post("/api/shorten", response_model=LinkResponse, status_code=201, tags=["links"])
async def shorten_url(
    payload: LinkCreate,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> LinkResponse:
    ctx.logger.info(f"Link creation requested: {payload.url}")
    outcome = await service.create(
        payload.url,
        ctx.actor,
        custom_code=payload.custom_code,
        expires_at=payload.expires_at,
        metadata=payload.metadata,
    )
    if not isinstance(outcome, Created):
        ctx.logger.warning(f"Link creation rejected: {type(outcome).__name__} ({ctx.get_duration():.1f}ms)")
        raise _fail(outcome)
    return _link_response(outcome.link, ctx)


@router.get("/api/stats/{code}", response_model=LinkStats, tags=["links"])
async def get_stats(
    code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> LinkStats:
    outcome = await service.stats(code, ctx.actor)
    if not isinstance(outcome, Stats):
        raise _fail(outcome)
    return LinkStats(
        **_link_response(outcome.link, ctx).model_dump(),
        realtime_clicks=outcome.realtime_clicks,
    )


@router.get("/api/analytics/{code}", response_model=AnalyticsResponse, tags=["links"])
async def get_analytics(
    code: str,
    days: int = Query(30, ge=1, le=365),
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> AnalyticsResponse:
    outcome = await service.stats(code, ctx.actor, with_analytics=True, summary_days=days)
    if not isinstance(outcome, Stats):
        raise _fail(outcome)
    if not outcome.analytics:
        raise HTTPException(status_code=503, detail="Analytics temporarily unavailable")
    return AnalyticsResponse(code=code, **outcome.analytics)


@router.patch("/api/links/{code}", response_model=LinkResponse, tags=["links"])
async def update_link(
    code: str,
    payload: LinkUpdate,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> LinkResponse:
    outcome = await service.update(
        code,
        ctx.actor,
        url=payload.url,
        active=payload.active,
        expires_at=payload.expires_at,
        metadata=payload.metadata,
    )
    if not isinstance(outcome, Updated):
        raise _fail(outcome)
    return _link_response(outcome.link, ctx)


@router.delete("/api/links/{code}", status_code=204, tags=["links"])
async def delete_link(
    code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> Response:
    outcome = await service.delete(code, ctx.actor)
    if not isinstance(outcome, Deleted):
        raise _fail(outcome)
    return Response(status_code=HTTP_STATUS[Deleted])


@router.get("/{code}", tags=["redirect"])
async def redirect_to_url(
    code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> RedirectResponse:
    outcome = await service.resolve(code, ctx.visit)
    if not isinstance(outcome, Resolved):
        ctx.logger.info(f"Redirect failed - short code not found: {code}")
        raise _fail(outcome)
    ctx.logger.debug(f"Redirect: {code} -> {outcome.target} ({ctx.get_duration():.1f}ms)")
    return RedirectResponse(url=outcome.target, status_code=HTTP_STATUS[Resolved])
