"""FastAPI application entry point for the URL shortener service.

Application Lifecycle Diagram
=============================
::
    ┌──────────────┐
    │  uvicorn     │
    │  startup     │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ lifespan()   │
    │ initialize   │──► supervisor checks storage,
    │ services     │    starts the reconnect loop
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ Serve HTTP + │
    │ WebSocket    │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ lifespan()   │
    │ cleanup:     │
    │ drain clicks,│
    │ close sockets│
    │ and storage  │
    └──────────────┘

How to Use
===========
**Run with uvicorn**::
    uvicorn shortener.main:app --host 0.0.0.0 --port 3002

**Shorten a URL**::
    curl -X POST http://localhost:3002/api/shorten \
         -H "Content-Type: application/json" \
         -d '{"originalUrl": "github.com"}'

Key Behaviours
===============
- The service starts even when storage is down; requests answer 503 until
  the supervisor reconnects.
- Request-body validation errors are answered with 400.
- Prometheus metrics are exposed at /metrics.
"""

__all__ = ["app"]

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from shortener.config import get_settings
from shortener.dependencies import _service_manager
from shortener.routes import router

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    await _service_manager.initialize()
    yield
    # Shutdown
    await _service_manager.cleanup()


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="URL shortener with realtime updates",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": "Invalid request body"})


Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=False,
    should_respect_env_var=False,
).instrument(app).expose(app)

app.include_router(router)
