"""Main FastAPI application."""
import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from voxelhub.settings import settings
from voxelhub.api.admin import router as admin_router
from voxelhub.api.bids import router as bids_router
from voxelhub.api.maker import router as maker_router
from voxelhub.api.projects import router as projects_router
from voxelhub.api.realtime import router as realtime_router
from voxelhub.domain.common.errors import (
    AuthorizationError as DomainAuthorizationError,
    ConflictError as DomainConflictError,
    NotFoundError as DomainNotFoundError,
    ValidationError as DomainValidationError,
)
from voxelhub.infra.db import base as db_base
from voxelhub.infra.db.base import Base
# Import all models to ensure they're registered with Base
from voxelhub.infra.db.models import (  # noqa: F401
    BidModel,
    EarningModel,
    MakerProfileModel,
    PayoutModel,
    ProjectModel,
    ReviewModel,
    UserModel,
)
from voxelhub.infra.payments import build_providers
from voxelhub.infra.realtime.notifier import RealtimeNotifier
from voxelhub.services.payout_executor import PayoutExecutor

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    engine = db_base.engine
    if engine is not None:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except Exception as e:
            # database might not be ready yet; alembic owns the schema anyway
            logger.warning("create_all on startup failed: %s", e)
    logger.info(
        "Payout execution mode: %s (currency %s)",
        "simulated" if settings.is_development else "live",
        settings.payout_currency.upper(),
    )
    try:
        yield
    except asyncio.CancelledError:
        logger.info("Lifespan shutdown cancelled (e.g. Ctrl+C); cleanup attempted.")
        raise
    finally:
        await app.state.payout_executor.drain()
        if engine is not None:
            await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)

# One notifier per process, shared by request handlers and the payout executor
app.state.notifier = RealtimeNotifier()
app.state.payout_executor = PayoutExecutor(
    session_factory=db_base.AsyncSessionLocal,
    notifier=app.state.notifier,
    providers=build_providers(settings),
    step_delay=settings.payout_simulation_step_seconds,
)

app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r".*",
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"],
    allow_headers=["*"],
    max_age=3600,
)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log all requests and responses."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        logger.info(f"[SERVER REQUEST] {request.method} {request.url.path}")
        logger.debug(f"   Query params: {dict(request.query_params)}")

        response = await call_next(request)

        process_time = time.time() - start_time
        logger.info(
            f"[SERVER RESPONSE] {request.method} {request.url.path} - {response.status_code} ({process_time:.3f}s)"
        )
        return response


# Add logging middleware AFTER CORS (CORS must be first)
app.add_middleware(LoggingMiddleware)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are client errors: 400 with the field errors."""
    errors = exc.errors()
    logger.error(f"[VALIDATION ERROR] {request.method} {request.url.path}")
    for i, error in enumerate(errors, 1):
        logger.error(f"   Error {i}: {json.dumps(error, default=str)}")
    return JSONResponse(
        status_code=400,
        content={"detail": json.loads(json.dumps(errors, default=str))},
    )


@app.exception_handler(DomainNotFoundError)
async def domain_not_found_handler(request: Request, exc: DomainNotFoundError):
    """Return 404 when a resource is not found."""
    return JSONResponse(status_code=404, content={"detail": exc.message})


@app.exception_handler(DomainAuthorizationError)
async def domain_authorization_handler(request: Request, exc: DomainAuthorizationError):
    """Return 403 when the user has the wrong role or does not own the resource."""
    return JSONResponse(status_code=403, content={"detail": exc.message})


@app.exception_handler(DomainValidationError)
async def domain_validation_handler(request: Request, exc: DomainValidationError):
    """Return 400 for malformed input."""
    return JSONResponse(status_code=400, content={"detail": exc.message})


@app.exception_handler(DomainConflictError)
async def domain_conflict_handler(request: Request, exc: DomainConflictError):
    """Return 400 for state conflicts; the message tells the user what to do."""
    return JSONResponse(status_code=400, content={"detail": exc.message})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"[SERVER ERROR] {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.get("/health")
@app.get(f"{settings.api_v1_prefix}/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "version": settings.app_version}


app.include_router(projects_router, prefix=settings.api_v1_prefix)
app.include_router(bids_router, prefix=settings.api_v1_prefix)
app.include_router(maker_router, prefix=settings.api_v1_prefix)
app.include_router(realtime_router, prefix=settings.api_v1_prefix)
app.include_router(admin_router, prefix=settings.api_v1_prefix)
