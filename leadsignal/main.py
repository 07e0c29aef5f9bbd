import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from leadsignal import __version__
from leadsignal.api.v1.router import router as api_v1_router
from leadsignal.core.config import settings as app_settings
from leadsignal.core.database import AsyncSessionLocal
from leadsignal.core.exceptions import (
    AuthenticationError,
    ConfigurationError,
    PermissionDeniedError,
    ValidationError,
)
from leadsignal.core.rate_limit import limiter
from leadsignal.core.security import PayloadCipher
from leadsignal.services.dispatch.runtime import DispatchRuntime, create_redis_client

# Configure logging
logging.basicConfig(level=app_settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the Redis client and, if enabled, run the dispatch workers."""
    redis_client = create_redis_client()
    app.state.redis = redis_client

    runtime = None
    if app_settings.RUN_DISPATCH_WORKERS:
        runtime = DispatchRuntime(redis_client, AsyncSessionLocal, PayloadCipher())
        runtime.start()
        logger.info("Dispatch workers running in the API process")
    yield
    if runtime is not None:
        await runtime.stop()
        logger.info("Dispatch workers stopped")
    await redis_client.aclose()


app = FastAPI(
    title="leadsignal",
    description="Conversion-event scoring, valuation and ad-platform dispatch",
    version=__version__,
    lifespan=lifespan,
)

# Attach rate limiter state so slowapi middleware can find it
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS middleware – restricted to configured origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        o.strip() for o in app_settings.CORS_ORIGINS.split(",") if o.strip()
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_v1_router)


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.warning("Configuration error: %s", exc.detail)
    return JSONResponse(
        status_code=400,
        content={"detail": exc.detail, "type": "configuration_error"},
    )


@app.exception_handler(AuthenticationError)
async def authentication_error_handler(request: Request, exc: AuthenticationError):
    logger.warning("Authentication failed on %s: %s", request.url.path, exc.detail)
    return JSONResponse(
        status_code=401,
        content={"detail": exc.detail, "type": "authentication_error"},
        headers={"WWW-Authenticate": "Bearer"},
    )


@app.exception_handler(PermissionDeniedError)
async def permission_denied_handler(request: Request, exc: PermissionDeniedError):
    logger.warning("Permission denied on %s: %s", request.url.path, exc.detail)
    return JSONResponse(
        status_code=403,
        content={"detail": exc.detail, "type": "permission_denied"},
    )


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    logger.warning("Invalid event payload: %s", exc.detail)
    return JSONResponse(
        status_code=400,
        content={"detail": exc.detail, "type": "validation_error"},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.warning("Request validation error: %s", exc.errors())
    return JSONResponse(
        status_code=400,
        content={
            "detail": "Request validation failed",
            "errors": jsonable_encoder(exc.errors()),
            "type": "validation_error",
        },
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Catch-all handler for unexpected/unhandled exceptions.

    Returns a generic 500 response so that raw stack traces are never
    leaked to the client.
    """
    logger.error(
        "Unhandled exception on %s %s: %s",
        request.method,
        request.url.path,
        exc,
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content={
            "detail": "An unexpected internal error occurred. Please try again later.",
            "type": "internal_server_error",
        },
    )
