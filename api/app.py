"""
FastAPI application factory.

Usage:
    python main.py serve                              # Dev server on port 8000
    APP_DB_PATH=/data/referrals.sqlite python -m api.app

OpenAPI docs available at http://localhost:8000/docs after starting.

- X-Forwarded-For is honoured only from TRUSTED_PROXIES.
- Rate limit counters are per app and pruned periodically.
- APP_LOG_FORMAT=json switches logging to newline-delimited JSON.
- CORS origins come from APP_CORS_ORIGINS.
"""

import json
import logging
import os
import sqlite3
import time
import uuid
from collections import defaultdict
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

import api.database as _db_mod
from api.auth import bootstrap_admin, get_current_user
from api.database import get_db_path, open_db
from api.routes import auth, contacts, download, imports, metrics, reference, referrals
from utils.config import AppConfig
from utils.database import get_table_count, table_exists

_logger = logging.getLogger("referral_intake.api")


class _JsonFormatter(logging.Formatter):
    """Emit log records as newline-delimited JSON."""

    def format(self, record: logging.LogRecord) -> str:
        data: dict = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        # Merge extra fields added via logger.info("...", extra={...})
        for key in ("method", "path", "status", "duration_ms", "client_ip",
                    "request_id"):
            if hasattr(record, key):
                data[key] = getattr(record, key)
        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(data)


def configure_logging(log_format: str = "text") -> None:
    """Install a single stream handler on the root logger."""
    handler = logging.StreamHandler()
    if log_format == "json":
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
        )
    logging.basicConfig(handlers=[handler], level=logging.INFO, force=True)


class _RateLimiter:
    """Per-IP, per-path sliding one-minute window."""

    MAX_TRACKED_IPS = 10_000
    CLEANUP_INTERVAL = 300.0

    def __init__(self, limits: dict[str, int], default_limit: int) -> None:
        self.limits = limits
        self.default_limit = default_limit
        self._counters: dict[str, dict[str, list]] = defaultdict(lambda: defaultdict(list))
        self._last_cleanup = 0.0
        self.blocked = 0

    @property
    def tracked_ips(self) -> int:
        return len(self._counters)

    def limit_for(self, path: str) -> int:
        return self.limits.get(path, self.default_limit)

    def hit(self, client_ip: str, path: str) -> bool:
        """Record a request; False when the caller is over its limit."""
        self._cleanup()
        now = time.time()
        window_start = now - 60.0
        hits = [t for t in self._counters[client_ip][path] if t > window_start]
        if len(hits) >= self.limit_for(path):
            self._counters[client_ip][path] = hits
            self.blocked += 1
            return False
        hits.append(now)
        self._counters[client_ip][path] = hits
        return True

    def _cleanup(self) -> None:
        """Remove stale entries to bound memory usage."""
        now = time.time()
        if now - self._last_cleanup < self.CLEANUP_INTERVAL:
            return
        self._last_cleanup = now
        window_start = now - 60.0
        for ip in list(self._counters):
            paths = self._counters[ip]
            for path in list(paths):
                paths[path] = [t for t in paths[path] if t > window_start]
                if not paths[path]:
                    del paths[path]
            if not paths:
                del self._counters[ip]
        if len(self._counters) > self.MAX_TRACKED_IPS:
            excess = len(self._counters) - self.MAX_TRACKED_IPS
            quietest = sorted(
                self._counters,
                key=lambda ip: sum(len(v) for v in self._counters[ip].values()),
            )[:excess]
            for ip in quietest:
                del self._counters[ip]


_ERROR_TITLES = {
    400: "Bad request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not found",
    405: "Method not allowed",
    413: "Payload too large",
    422: "Validation error",
    429: "Too many requests",
    503: "Service unavailable",
}


def _describe_validation(errors: list[dict]) -> str:
    """Flatten pydantic errors into one line, e.g.
    "Missing required fields: last name; limit: Input should be ..."
    """
    parts = []
    for err in errors:
        msg = str(err.get("msg", "")).removeprefix("Value error, ")
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        parts.append(f"{'.'.join(loc)}: {msg}" if loc else msg)
    return "; ".join(parts)


def _get_client_ip(request: Request, trusted_proxies: set[str]) -> str:
    """Return the real client IP, respecting X-Forwarded-For from trusted proxies."""
    direct_ip = request.client.host if request.client else "unknown"
    if not trusted_proxies or direct_ip not in trusted_proxies:
        return direct_ip
    xff = request.headers.get("X-Forwarded-For", "")
    if xff:
        # leftmost entry is the original client
        real_ip = xff.split(",")[0].strip()
        if real_ip:
            return real_ip
    return direct_ip


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the schema and the configured admin account on startup."""
    cfg: AppConfig = app.state.config
    _logger.info("starting with settings %s", cfg.to_dict())
    conn = open_db(get_db_path())
    try:
        if bootstrap_admin(conn, cfg.admin_email, cfg.admin_password):
            _logger.info("bootstrapped admin account %s", cfg.admin_email)
    except ValueError as exc:
        _logger.warning("admin bootstrap for %s skipped: %s", cfg.admin_email, exc)
    finally:
        conn.close()
    yield


def create_app(db_path: Path | None = None, config: AppConfig | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        db_path: Override the database path (useful for testing).
        config: Settings to use instead of reading the environment.

    Returns:
        Configured FastAPI application instance.
    """
    cfg = config or AppConfig.from_env()
    if db_path is not None:
        cfg.db_path = Path(db_path)
    _db_mod.set_db_path(cfg.db_path)
    configure_logging(cfg.log_format)

    app = FastAPI(
        title="Referral Intake API",
        summary="Intake, administration and reporting for treatment referrals.",
        description=(
            "## Referral Intake API\n\n"
            "Staff submit referrals, administrators review and edit them, and the "
            "metrics endpoints report counts and conversion rates.\n\n"
            "### Authentication\n"
            "`POST /api/v1/auth/login` returns a bearer token; send it as "
            "`Authorization: Bearer <token>` on every other `/api/v1` call.\n\n"
            "### Rate limits\n"
            f"- `/api/v1/auth/login`: {cfg.rate_limit_login} req/min per IP\n"
            f"- All other endpoints: {cfg.rate_limit_default} req/min per IP\n\n"
            "Returns `429 Too Many Requests` with `Retry-After: 60` when exceeded."
        ),
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_tags=[
            {"name": "auth", "description": "Sign in and out."},
            {"name": "referrals", "description": "Intake form and admin table."},
            {"name": "import", "description": "Bulk CSV import of referrals."},
            {"name": "metrics", "description": "Counts and conversion rates by dimension and quarter."},
            {"name": "download", "description": "Export filtered referrals as CSV, NDJSON or Excel."},
            {"name": "contacts", "description": "Referent contacts."},
            {"name": "reference", "description": "Choice lists and values in use."},
            {"name": "meta", "description": "Health checks."},
        ],
    )
    app.state.config = cfg
    app.state.started_at = time.time()
    app.state.metrics = {
        "request_count": 0,
        "error_count": 0,
        "response_times_ms": [],  # capped at last 100 entries
    }
    limiter = _RateLimiter(
        limits={"/api/v1/auth/login": cfg.rate_limit_login},
        default_limit=cfg.rate_limit_default,
    )
    app.state.rate_limiter = limiter
    response_time_window = 100

    # ── CORS middleware ───────────────────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Total-Count", "X-Request-ID", "Content-Disposition"],
    )

    # ── Request logging + rate limiting middleware ────────────────────────────

    @app.middleware("http")
    async def log_and_rate_limit(request: Request, call_next):
        """Log each request, enforce per-IP rate limits, and record metrics."""
        request_id = str(uuid.uuid4())[:8]
        start = time.monotonic()
        client_ip = _get_client_ip(request, cfg.trusted_proxies)
        path = request.url.path
        stats = app.state.metrics

        # Health check bypass
        if path == "/health":
            return await call_next(request)

        if not limiter.hit(client_ip, path):
            _logger.warning(
                "rate_limited ip=%s path=%s limit=%d", client_ip, path,
                limiter.limit_for(path),
            )
            return JSONResponse(
                status_code=429,
                content={"error": "Too many requests", "status_code": 429},
                headers={"Retry-After": "60"},
            )

        stats["request_count"] += 1
        response = await call_next(request)
        duration_ms = (time.monotonic() - start) * 1000

        stats["response_times_ms"].append(duration_ms)
        if len(stats["response_times_ms"]) > response_time_window:
            stats["response_times_ms"] = stats["response_times_ms"][-response_time_window:]
        if response.status_code >= 500:
            stats["error_count"] += 1

        response.headers["X-Request-ID"] = request_id

        if cfg.log_format == "json":
            _logger.info(
                "request",
                extra={
                    "method": request.method,
                    "path": path,
                    "status": response.status_code,
                    "duration_ms": round(duration_ms, 1),
                    "client_ip": client_ip,
                    "request_id": request_id,
                },
            )
        else:
            _logger.info(
                "method=%s path=%s status=%d duration_ms=%.1f ip=%s rid=%s",
                request.method, path, response.status_code, duration_ms,
                client_ip, request_id,
            )
        return response

    # ── Security headers ──────────────────────────────────────────────────────

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        """Add X-Content-Type-Options and X-Frame-Options to every response."""
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        return response

    # ── Error handling ────────────────────────────────────────────────────────

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Catch unhandled exceptions and return JSON instead of HTML traceback."""
        _logger.exception("unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "detail": str(exc),
                "status_code": 500,
            },
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(
            status_code=400,
            content={"error": "Bad request", "detail": str(exc), "status_code": 400},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": _ERROR_TITLES.get(exc.status_code, "Error"),
                "detail": exc.detail,
                "status_code": exc.status_code,
            },
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content={
                "error": "Validation error",
                "detail": _describe_validation(exc.errors()),
                "status_code": 422,
                "errors": jsonable_encoder(exc.errors()),
            },
        )

    # ── Health check ──────────────────────────────────────────────────────────

    @app.get("/health", tags=["meta"], summary="Health check")
    def health():
        """Return 200 OK if the API is running and can reach the database."""
        db_path = get_db_path()
        if not db_path.exists():
            return JSONResponse(
                status_code=503,
                content={"status": "no_database", "database": str(db_path)},
            )
        try:
            conn = sqlite3.connect(str(db_path))
            try:
                count = get_table_count(conn, "referrals")
            finally:
                conn.close()
        except sqlite3.Error as e:
            return JSONResponse(
                status_code=503,
                content={"status": "degraded", "error": str(e)},
            )
        return {"status": "ok", "database": str(db_path), "referrals": count}

    @app.get(
        "/health/detailed",
        tags=["meta"],
        summary="Detailed health metrics",
        response_description="Operational metrics for monitoring dashboards",
    )
    def health_detailed():
        """Return uptime, request/error counters, table counts, average
        response time and rate-limiter stats.  Counters reset on restart.
        """
        db_path = get_db_path()
        if not db_path.exists():
            return JSONResponse(
                status_code=503,
                content={"status": "no_database", "database": str(db_path)},
            )
        try:
            conn = sqlite3.connect(str(db_path))
            try:
                counts = {
                    table: get_table_count(conn, table)
                    for table in ("referrals", "referent_contacts", "users", "sessions")
                    if table_exists(conn, table)
                }
            finally:
                conn.close()
        except sqlite3.Error as exc:
            return JSONResponse(
                status_code=503,
                content={"status": "degraded", "error": str(exc)},
            )

        stats = app.state.metrics
        rts = stats["response_times_ms"]
        return {
            "status": "ok",
            "uptime_seconds": round(time.time() - app.state.started_at, 2),
            "request_count": stats["request_count"],
            "error_count": stats["error_count"],
            "db_size_bytes": os.path.getsize(str(db_path)),
            "table_counts": counts,
            "avg_response_time_ms": round(sum(rts) / len(rts), 2) if rts else 0.0,
            "rate_limiter_stats": {
                "tracked_ips": limiter.tracked_ips,
                "blocked_requests": limiter.blocked,
            },
            "metrics_cache": metrics.metrics_cache.stats(),
        }

    # ── Register routers ──────────────────────────────────────────────────────

    prefix = "/api/v1"
    gated = [Depends(get_current_user)]
    app.include_router(auth.router,      prefix=prefix)
    app.include_router(imports.router,   prefix=prefix, dependencies=gated)
    app.include_router(referrals.router, prefix=prefix, dependencies=gated)
    app.include_router(metrics.router,   prefix=prefix, dependencies=gated)
    app.include_router(download.router,  prefix=prefix, dependencies=gated)
    app.include_router(contacts.router,  prefix=prefix, dependencies=gated)
    app.include_router(reference.router, prefix=prefix, dependencies=gated)

    return app


if __name__ == "__main__":
    import uvicorn

    _cfg = AppConfig.from_env()
    uvicorn.run(
        "api.app:create_app",
        factory=True,
        host=_cfg.api_host,
        port=_cfg.api_port,
        reload=True,
        log_level="info",
    )
