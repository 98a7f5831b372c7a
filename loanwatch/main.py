# loanwatch/main.py
"""
FastAPI application entry point.
Includes request timing middleware, error handlers for the service error
taxonomy, and all routers.
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from loanwatch.routers import alerts, health, monitoring, reliability, reports
from loanwatch.database import create_tables
from loanwatch.config import settings
from loanwatch.utils.errors import (
    AlertAlreadyResolvedError,
    NotFoundError,
    TransientStoreError,
    ValidationError,
)
from loanwatch.utils.logger import get_logger
import time

logger = get_logger(__name__)

app = FastAPI(
    title="LoanWatch Monitoring API",
    description="Overdue/no-show detection, alert backlog, user reliability and scheduled reports "
                "for the equipment loan system.",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── CORS (admin dashboard calls the API from the browser) ────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],   # Restrict to the dashboard origin in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request Timing Middleware ────────────────────────────────────────────────
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    duration = round((time.time() - start) * 1000, 2)
    logger.debug(f"{request.method} {request.url.path} → {response.status_code} ({duration}ms)")
    return response


# ── Service Error Handlers ───────────────────────────────────────────────────
@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(AlertAlreadyResolvedError)
async def already_resolved_handler(request: Request, exc: AlertAlreadyResolvedError):
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})


@app.exception_handler(ValidationError)
async def validation_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content={"detail": str(exc)})


@app.exception_handler(TransientStoreError)
async def store_error_handler(request: Request, exc: TransientStoreError):
    logger.error(f"Database unavailable on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Database temporarily unavailable, retry later"},
    )


# ── Global Exception Handler ─────────────────────────────────────────────────
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


# ── Routers ──────────────────────────────────────────────────────────────────
app.include_router(alerts.router,      prefix="/api/v1", tags=["🔔 Alerts"])
app.include_router(monitoring.router,  prefix="/api/v1", tags=["🔎 Monitoring scans"])
app.include_router(reliability.router, prefix="/api/v1", tags=["👤 User reliability"])
app.include_router(reports.router,     prefix="/api/v1", tags=["📊 Reports"])
app.include_router(health.router,      prefix="/api/v1", tags=["💚 Health"])


# ── Startup ───────────────────────────────────────────────────────────────────
@app.on_event("startup")
async def startup():
    logger.info("🚀 LoanWatch starting up...")
    create_tables()
    logger.info("✅ Database tables ready")
    logger.info(f"🌐 Listening on http://{settings.BACKEND_IP}:{settings.BACKEND_PORT}")
    logger.info("📖 API docs at /docs")


@app.on_event("shutdown")
async def shutdown():
    logger.info("🛑 LoanWatch shutting down...")
