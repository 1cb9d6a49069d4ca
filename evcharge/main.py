import json
import logging
import time

import sentry_sdk
import yaml
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.trustedhost import TrustedHostMiddleware

from .config import settings
from .database import engine
from .errors import BookingError, StorageError
from .models import Base
from .middleware_request_id import RequestIDMiddleware
from .routers import bookings as bookings_router
from .routers import operator as operator_router
from .routers import stations as stations_router
from .utils.rate_limit import RedisRateLimiter, SlidingWindowLimiter
from .utils.security import SecurityHeadersMiddleware


logger = logging.getLogger("evcharge.app")

REQ = Counter("http_requests_total", "HTTP requests", ["method", "path", "status"])
REQ_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
)

PUBLIC_PATHS = {"/health", "/metrics", "/openapi.yaml", "/openapi.json"}


def _error_response(err: BookingError) -> JSONResponse:
    return JSONResponse(
        status_code=err.status_code,
        content={"error": {"code": err.code, "message": err.message}},
    )


def create_app() -> FastAPI:
    if settings.SENTRY_DSN:
        sentry_sdk.init(dsn=settings.SENTRY_DSN, traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE)
    app = FastAPI(title="EV Charging API", version="0.1.0")

    allowed_origins = settings.ALLOWED_ORIGINS or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials="*" not in allowed_origins,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    )
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.ALLOWED_HOSTS or ["*"])

    limiter_kwargs = dict(
        limit_per_minute=settings.RATE_LIMIT_PER_MINUTE,
        auth_boost=settings.RATE_LIMIT_AUTH_BOOST,
        exclude_paths=PUBLIC_PATHS,
    )
    if settings.RATE_LIMIT_BACKEND.lower() == "redis":
        app.add_middleware(
            RedisRateLimiter,
            redis_url=settings.REDIS_URL,
            prefix=settings.RATE_LIMIT_REDIS_PREFIX,
            **limiter_kwargs,
        )
    else:
        app.add_middleware(SlidingWindowLimiter, **limiter_kwargs)

    if settings.AUTO_CREATE_SCHEMA:
        Base.metadata.create_all(bind=engine)

    @app.exception_handler(BookingError)
    async def _booking_error(request: Request, exc: BookingError):
        return _error_response(exc)

    @app.exception_handler(SQLAlchemyError)
    async def _storage_error(request: Request, exc: SQLAlchemyError):
        logger.error(json.dumps({"event": "unhandled_storage_error", "path": request.url.path, "error": exc.__class__.__name__}))
        return _error_response(StorageError())

    @app.middleware("http")
    async def _metrics_mw(request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        route = getattr(request.scope.get("route"), "path", None) or request.url.path
        REQ.labels(request.method, route, str(response.status_code)).inc()
        REQ_DURATION.labels(request.method, route).observe(time.perf_counter() - start)
        return response

    @app.get("/health", tags=["health"])
    def health():
        with engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")
        return {"status": "ok", "env": settings.ENV}

    @app.get("/metrics", tags=["health"])
    def metrics():
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(stations_router.router)
    app.include_router(bookings_router.router)
    app.include_router(operator_router.router)

    def custom_openapi():
        if app.openapi_schema:
            return app.openapi_schema
        schema = get_openapi(title=app.title, version=app.version, routes=app.routes)
        schema["tags"] = [
            {"name": "stations", "description": "Charging stations, availability and nearby search"},
            {"name": "bookings", "description": "Reserve, pay, cancel and fetch QR tickets"},
            {"name": "operator", "description": "QR verification and expiry sweep for station admins"},
            {"name": "health", "description": "Liveness and metrics"},
        ]
        comps = schema.setdefault("components", {})
        comps.setdefault("securitySchemes", {})["HTTPBearer"] = {"type": "http", "scheme": "bearer", "bearerFormat": "JWT"}
        schema["security"] = [{"HTTPBearer": []}]
        for path, ops in schema.get("paths", {}).items():
            if path in PUBLIC_PATHS:
                for op in ops.values():
                    op["security"] = []
        app.openapi_schema = schema
        return app.openapi_schema

    app.openapi = custom_openapi

    @app.get("/openapi.yaml", include_in_schema=False)
    def openapi_yaml():
        return PlainTextResponse(yaml.safe_dump(app.openapi(), sort_keys=False), media_type="application/yaml")

    @app.get("/", include_in_schema=False)
    def root():
        return {
            "service": app.title,
            "links": {
                "docs": "/docs",
                "openapi": "/openapi.yaml",
                "health": "/health",
                "metrics": "/metrics",
            },
        }

    return app


app = create_app()
