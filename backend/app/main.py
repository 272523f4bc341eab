from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import inspect

from app.config import settings
from app.database import engine
from app.logging_config import setup_logging
from app.middleware.logging import CORRELATION_HEADER, LoggingMiddleware
from app.middleware.rate_limit import limiter
from app.routers import agent_keys, auth, certification, downloads
from app.services.alert_service import send_error_alert
from app.services.errors import CertificationError, PersistenceError
from app.services.token_codec import TokenCodec

# Database tables are managed by Alembic migrations
# Run: alembic upgrade head

REQUIRED_TABLES = (
    "users",
    "skills",
    "purchases",
    "download_grants",
    "agent_credentials",
    "certification_criteria",
    "certification_requests",
    "skill_certifications",
)

logger = structlog.get_logger()


def check_database_tables() -> None:
    """Fail fast with an actionable message when migrations have not been run."""
    existing = set(inspect(engine).get_table_names())
    missing = [table for table in REQUIRED_TABLES if table not in existing]
    if missing:
        raise RuntimeError(
            f"Database tables missing: {', '.join(missing)}. "
            "Run `alembic upgrade head` from backend/ before starting the server."
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Validate configuration and schema before serving; the HMAC secret is mandatory."""
    setup_logging(settings)
    app.state.token_codec = TokenCodec(settings.token_secret)
    check_database_tables()
    logger.info("application_started")
    yield
    app.state.token_codec = None


app = FastAPI(
    title="SkillMarket Trust",
    description="Identity tokens, download grants, agent keys and skill certification",
    version="0.1.0",
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Request logging with correlation IDs
app.add_middleware(LoggingMiddleware)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CertificationError)
async def certification_error_handler(request: Request, exc: CertificationError):
    content = {"success": False, "error": exc.code, "message": exc.message}
    if exc.details:
        content["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError):
    """Storage failures are never detailed to callers."""
    logger.error("persistence_error_response", operation=exc.operation, path=request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    correlation_id = getattr(request.state, "correlation_id", None)
    logger.error(
        "unhandled_exception",
        error_type=type(exc).__name__,
        path=request.url.path,
        exc_info=exc,
    )
    await send_error_alert(
        error_type=type(exc).__name__,
        message=str(exc),
        path=request.url.path,
        correlation_id=correlation_id,
        status_code=500,
    )
    headers = {CORRELATION_HEADER: correlation_id} if correlation_id else None
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"}, headers=headers)


# Routers
app.include_router(auth.router, prefix="/api/v1", tags=["identity"])
app.include_router(downloads.router, prefix="/api/v1", tags=["downloads"])
app.include_router(agent_keys.router, prefix="/api/v1", tags=["agent-keys"])
app.include_router(certification.router, prefix="/api/v1", tags=["certification"])


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
