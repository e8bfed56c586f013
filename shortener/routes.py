"""FastAPI route definitions for the URL shortener.

API Endpoint Overview
=====================
::
    GET    /health, /api/health
        └─ HealthResponse (200) or 503 while storage is disconnected

    POST   /api/shorten
        ├─ {"originalUrl": ...} or {"url": ...}
        └─ URLRecord (201) or 400/503/500

    GET    /api/urls
        └─ [URLRecord] newest first, or 503

    DELETE /api/urls/:id
        └─ {"success": true} or 404/503

    GET    /api/stats/:short_code
        └─ URLRecord or 404/503

    GET    /:short_code
        └─ 307 Redirect or 404/503

    WS     /ws
        └─ realtime channel, see shortener.realtime

Key Behaviours
===============
- Domain errors carry their HTTP status; routes translate them into
  HTTPException with the error's message.
- Storage failures are logged by the registry and surfaced only as
  "Storage unavailable".
- The redirect route returns before the click is written.
- The catch-all redirect route is registered last.
"""

from fastapi import APIRouter, Depends, HTTPException, Response, WebSocket
from fastapi.responses import RedirectResponse

from shortener.dependencies import (
    RequestContext,
    ServiceManager,
    get_redirect_service,
    get_request_context,
    get_service_manager,
    get_url_service,
)
from shortener.enums import HealthStatus
from shortener.exceptions import ShortenerError
from shortener.realtime import RealtimeSession
from shortener.redirect_service import RedirectService
from shortener.schemas import DeleteResponse, HealthResponse, ShortenRequest, URLRecord
from shortener.url_service import URLShorteningService

__all__ = ["router"]

router = APIRouter()


@router.get("/health", response_model=HealthResponse, tags=["health"])
@router.get("/api/health", response_model=HealthResponse, tags=["health"])
async def health_check(
    response: Response,
    ctx: RequestContext = Depends(get_request_context),
    manager: ServiceManager = Depends(get_service_manager),
) -> HealthResponse:
    ctx.logger.debug("Health check requested")
    db_status = HealthStatus.HEALTHY
    cache_status = HealthStatus.HEALTHY

    if not manager.supervisor.is_connected:
        db_status = HealthStatus.UNHEALTHY
    else:
        try:
            await manager.registry.ping()
        except ShortenerError as e:
            ctx.logger.error(f"Database health check failed: {e.message}")
            db_status = HealthStatus.UNHEALTHY

    try:
        await manager.caches.ping()
    except Exception as e:
        ctx.logger.error(f"Cache health check failed: {e}")
        cache_status = HealthStatus.UNHEALTHY

    status = (
        HealthStatus.HEALTHY
        if db_status is HealthStatus.HEALTHY and cache_status is HealthStatus.HEALTHY
        else HealthStatus.UNHEALTHY
    )
    if db_status is HealthStatus.UNHEALTHY:
        response.status_code = 503

    ctx.logger.debug(f"Health check completed: {status.value}")
    return HealthResponse(status=status, database=db_status, cache=cache_status)


@router.post("/api/shorten", response_model=URLRecord, status_code=201, tags=["urls"])
async def shorten_url(
    payload: ShortenRequest,
    ctx: RequestContext = Depends(get_request_context),
    service: URLShorteningService = Depends(get_url_service),
) -> URLRecord:
    ctx.logger.info(
        f"URL shortening requested: {payload.original_url}",
        extra={"operation": "create_short_url", "target_url": payload.original_url},
    )
    try:
        result = await service.shorten(payload.original_url)
    except ShortenerError as exc:
        ctx.logger.warning(
            f"URL shortening failed: {exc.message}",
            extra={"operation": "create_short_url", "error": exc.message, "duration_ms": ctx.get_duration()},
        )
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc
    except Exception as exc:
        ctx.logger.exception(f"Error creating short URL: {exc}")
        raise HTTPException(status_code=500, detail="Failed to create short URL") from exc

    ctx.logger.info(
        f"URL shortened: {result.record.short_code}",
        extra={
            "operation": "create_short_url",
            "short_code": result.record.short_code,
            "url_id": result.record.id,
            "existing": result.is_existing,
            "duration_ms": ctx.get_duration(),
        },
    )
    return result.record


@router.get("/api/urls", response_model=list[URLRecord], tags=["urls"])
async def list_urls(
    ctx: RequestContext = Depends(get_request_context),
    service: URLShorteningService = Depends(get_url_service),
) -> list[URLRecord]:
    try:
        return await service.list_urls()
    except ShortenerError as exc:
        ctx.logger.warning(f"Listing URLs failed: {exc.message}")
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc


@router.delete("/api/urls/{record_id}", response_model=DeleteResponse, tags=["urls"])
async def delete_url(
    record_id: str,
    ctx: RequestContext = Depends(get_request_context),
    service: URLShorteningService = Depends(get_url_service),
) -> DeleteResponse:
    ctx.logger.info(f"Delete requested for id: {record_id}", extra={"operation": "delete", "url_id": record_id})
    try:
        await service.delete_url(record_id)
    except ShortenerError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc
    return DeleteResponse()


@router.get("/api/stats/{short_code}", response_model=URLRecord, tags=["urls"])
async def get_stats(
    short_code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: URLShorteningService = Depends(get_url_service),
) -> URLRecord:
    ctx.logger.info(f"Stats requested for short code: {short_code}")
    try:
        return await service.get_url(short_code)
    except ShortenerError as exc:
        ctx.logger.warning(f"Stats lookup failed for {short_code}: {exc.message}")
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc


@router.websocket("/ws")
async def realtime_channel(
    websocket: WebSocket,
    manager: ServiceManager = Depends(get_service_manager),
) -> None:
    ctx = RequestContext.from_connection(websocket, manager)
    session = RealtimeSession(
        hub=manager.hub,
        service=URLShorteningService.from_context(ctx),
        storage_state=manager.supervisor.state,
    )
    await session.run(websocket)


@router.get("/{short_code}", tags=["redirect"])
async def redirect_to_url(
    short_code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: RedirectService = Depends(get_redirect_service),
) -> RedirectResponse:
    ctx.logger.info(
        f"Redirect requested for short code: {short_code}",
        extra={"operation": "redirect", "short_code": short_code, "client_ip": ctx.client_ip},
    )
    try:
        record = await service.resolve(short_code)
    except ShortenerError as exc:
        ctx.logger.warning(
            f"Redirect failed for {short_code}: {exc.message}",
            extra={"operation": "redirect", "short_code": short_code, "duration_ms": ctx.get_duration()},
        )
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc

    ctx.logger.info(
        f"Redirect successful: {short_code} -> {record.original_url}",
        extra={"operation": "redirect", "url_id": record.id, "duration_ms": ctx.get_duration()},
    )
    return RedirectResponse(url=record.original_url, status_code=307)
