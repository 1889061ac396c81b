from __future__ import annotations

from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from opentrack.api.routes import pixel, tracking
from opentrack.core.config import get_settings
from opentrack.core.database import db
from opentrack.core.logging import configure_logging, log_info, log_warning
from opentrack.security.request_logger import RequestLoggingMiddleware

configure_logging()
settings = get_settings()

tags_metadata = [
    {
        "name": "Tracking Pixel",
        "description": "Pixel generation and the image endpoint that records email opens.",
    },
    {
        "name": "Tracking",
        "description": "Tracked email records, open statistics and self-open cleanup.",
    },
]

app = FastAPI(
    title=settings.app_name,
    description="Email open tracking via 1x1 transparent image pixels.",
    openapi_tags=tags_metadata,
)

# The browser extension calls the API cross-origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=[str(origin).rstrip("/") for origin in settings.allowed_origins] or ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(
    RequestLoggingMiddleware,
    exempt_paths=("/health",),
)

app.include_router(pixel.router)
app.include_router(tracking.router)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code >= 500:
        log_warning(
            "Request failed",
            method=request.method,
            path=request.url.path,
            status_code=exc.status_code,
            error=exc.detail,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.on_event("startup")
async def on_startup() -> None:
    await db.connect()
    await db.run_migrations()
    log_info(
        "Application started",
        environment=settings.environment,
        backend="sqlite" if db.is_sqlite() else "mysql",
    )


@app.on_event("shutdown")
async def on_shutdown() -> None:
    await db.disconnect()
    log_info("Application shutdown")


@app.get("/health")
async def health_check():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}
