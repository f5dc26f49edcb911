"""
Course Marketplace Payments - FastAPI Application Entry Point

Aggregates the routers, configures middleware and error translation,
and initializes logging and the database on startup.
"""
import time
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from coursepay.config import get_settings
from coursepay.database import SessionLocal, init_db
from coursepay.exceptions import PaymentError
from coursepay.routes import payment_router, admin_router
from coursepay.utils.logger import configure_logging, get_logger

settings = get_settings()
logger = get_logger("coursepay")

# ─── Startup ─────────────────────────────────────────────────────────
BOOT_TIME = time.time()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging, create tables and log boot info."""
    configure_logging(level=settings.LOG_LEVEL, log_dir=settings.LOG_DIR)
    init_db()

    logger.info(
        "%s v%s started at %s | gateway key: %s | database: %s | debug: %s",
        settings.APP_NAME,
        settings.APP_VERSION,
        datetime.now().isoformat(),
        "loaded" if settings.PAYSTACK_SECRET_KEY else "MISSING",
        settings.DATABASE_URL.split("@")[-1],
        settings.DEBUG,
    )
    yield
    logger.info("%s shutting down", settings.APP_NAME)


# ─── Application Instance ───────────────────────────────────────────
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=(
        "Payment core for the course marketplace: checkout initiation through the "
        "payment gateway, client-side verification, signed webhook reconciliation, "
        "and idempotent course enrollment."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


# ─── Middleware ──────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log every API request with timing."""
    start = time.time()
    response = await call_next(request)
    duration = round((time.time() - start) * 1000, 1)
    logger.info("%s %s -> %s (%sms)", request.method, request.url.path, response.status_code, duration)
    return response


# ─── Error Translation ───────────────────────────────────────────────
@app.exception_handler(PaymentError)
async def payment_error_handler(request: Request, exc: PaymentError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s %s", request.method, request.url.path, exc.error_code, exc.details)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return JSONResponse(
        status_code=422,
        content={"error": "; ".join(messages) or "Invalid request", "code": "validation_error", "retryable": False},
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail), "code": "http_error", "retryable": False},
        headers=getattr(exc, "headers", None),
    )


# ─── API Routers ─────────────────────────────────────────────────────
app.include_router(payment_router)
app.include_router(admin_router)


@app.get("/health", tags=["Health"])
def deep_health():
    """Detailed health check including dependency statuses."""
    db_ok = False
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        db_ok = True
    except Exception as e:
        logger.warning("Health check: database unreachable: %s", e)
    finally:
        db.close()

    return {
        "status": "healthy" if db_ok else "degraded",
        "database": "connected" if db_ok else "disconnected",
        "payment_gateway": "configured" if settings.PAYSTACK_SECRET_KEY else "unconfigured",
        "uptime_seconds": round(time.time() - BOOT_TIME, 1),
        "version": settings.APP_VERSION,
    }
