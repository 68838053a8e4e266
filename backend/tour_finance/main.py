"""
Tour Finance API
FastAPI backend for booking cost ledgers and settlement, with async
PostgreSQL, JWT-verified roles and a Celery beat status resync.
"""
import os
import logging
import time
from contextlib import asynccontextmanager
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from tour_finance.api.responses import error_response
from tour_finance.services.errors import FinanceError
from tour_finance.services.logging_config import setup_logging
from tour_finance.services.middleware import RequestTimingMiddleware

load_dotenv()

_log_level = os.getenv("LOG_LEVEL", "INFO")
_json_logs = os.getenv("LOG_FORMAT", "json").lower() != "text"
setup_logging(level=_log_level, json_output=_json_logs)
logger = logging.getLogger("tour-finance-api")

_PROCESS_START = time.monotonic()

for var in ["DATABASE_URL", "JWT_SECRET_KEY"]:
    if not os.getenv(var):
        logger.warning(f"MISSING env var: {var} — running in dev mode")


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        from tour_finance.db import init_db
        await init_db()
        logger.info("SQLAlchemy models synced.")
    except Exception as e:
        logger.warning(f"Table init warning (OK if using Alembic): {e}")
    yield


app = FastAPI(
    title="Tour Finance API",
    version="1.0.0",
    description="Booking cost ledgers, commission splits, settlement and booking status",
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Security Headers Middleware
# ---------------------------------------------------------------------------
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds standard security headers to every response."""
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        return response


_cors_default = "http://localhost:3000,http://localhost:8000"
cors_origins = [o.strip() for o in os.getenv("CORS_ORIGINS", _cors_default).split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
)
app.add_middleware(SecurityHeadersMiddleware)
# Request timing + X-Request-ID must be outermost so it wraps all other middleware
app.add_middleware(RequestTimingMiddleware)


# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------
@app.exception_handler(FinanceError)
async def finance_error_handler(request: Request, exc: FinanceError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return error_response(exc.status_code, exc.code, exc.message, exc.details)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code in (401, 403):
        code = "UNAUTHORIZED"
    elif exc.status_code == 404:
        code = "NOT_FOUND"
    elif exc.status_code < 500:
        code = "VALIDATION"
    else:
        code = "INTERNAL"
    response = error_response(exc.status_code, code, str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{field}: {first.get('msg', 'invalid request')}" if field else first.get("msg", "invalid request")
    return error_response(400, "VALIDATION", message)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return error_response(500, "INTERNAL", "Internal server error")


# Routers
from tour_finance.api.finance_routes import router as finance_router
from tour_finance.api.catalog_routes import router as catalog_router
from tour_finance.api.settings_routes import router as settings_router
from tour_finance.api.report_routes import router as report_router

app.include_router(finance_router)
app.include_router(catalog_router)
app.include_router(settings_router)
app.include_router(report_router)


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "uptime_seconds": round(time.monotonic() - _PROCESS_START, 1),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("tour_finance.main:app", host="0.0.0.0", port=8000, reload=True)
