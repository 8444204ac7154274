import math
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ratechat.app.api.chat import router as chat_router
from ratechat.app.core.config import SEND_MESSAGE, Settings, settings as default_settings
from ratechat.app.core.logging import get_logger, setup_logging
from ratechat.app.exceptions import ChatServiceError, RateLimitedError
from ratechat.app.middleware.request_id import RequestIdMiddleware, get_request_id
from ratechat.app.ratelimit.limiter import RateLimiter
from ratechat.app.ratelimit.sweeper import BucketSweeper
from ratechat.app.ratelimit.store import (
    InMemoryTokenBucketStore,
    RedisTokenBucketStore,
    TokenBucketStore,
)
from ratechat.app.services.message_store import MessageStore


def create_bucket_store(settings: Settings) -> TokenBucketStore:
    """Build the bucket store selected by ``settings.rate_limit_backend``."""
    if settings.rate_limit_backend == "redis":
        return RedisTokenBucketStore(
            redis_url=settings.redis_url,
            key_prefix=settings.rate_limit_key_prefix,
        )
    return InMemoryTokenBucketStore(max_entries=settings.rate_limit_max_entries)


def create_app(
    settings: Optional[Settings] = None,
    *,
    bucket_store: Optional[TokenBucketStore] = None,
    message_store: Optional[MessageStore] = None,
    clock: Optional[Callable[[], float]] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    The bucket store and message store are owned by the returned app and
    closed on shutdown; pass them in to share or inspect them in tests.

    Returns:
        Configured FastAPI application instance
    """
    settings = settings or default_settings

    setup_logging(settings.log_level, settings.log_format)
    logger = get_logger(__name__)

    bucket_store = bucket_store or create_bucket_store(settings)
    # Invalid policies fail here, before the app serves anything
    rate_limiter = RateLimiter(bucket_store, settings.rate_limit_configs(), clock=clock)
    rate_limiter.config_for(SEND_MESSAGE)

    if message_store is None:
        message_store = MessageStore(settings.database_url, echo=settings.database_echo)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Create the message schema on startup, release stores on shutdown."""
        await message_store.create_schema()
        sweeper = BucketSweeper(
            bucket_store,
            rate_limiter.limits,
            interval=settings.rate_limit_cleanup_interval_seconds,
        )
        sweeper.start()
        app.state.bucket_sweeper = sweeper
        logger.info(
            "Application startup complete",
            extra={
                "rate_limit_backend": type(bucket_store).__name__,
                "operations": rate_limiter.operations,
                "debug_mode": settings.debug,
            },
        )
        try:
            yield
        finally:
            await sweeper.shutdown()
            await bucket_store.close()
            await message_store.close()
            logger.info("Application shutdown complete")

    app = FastAPI(
        title="ratechat",
        description="Chat service with per-sender token bucket rate limiting",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.rate_limiter = rate_limiter
    app.state.message_store = message_store

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-RateLimit-Limit", "X-RateLimit-Remaining", "Retry-After"],
        max_age=600,
    )
    app.add_middleware(RequestIdMiddleware)

    app.include_router(chat_router)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Health check with message store and bucket store status."""
        health_status: dict[str, Any] = {"status": "ok", "components": {}}

        try:
            await message_store.ping()
            health_status["components"]["database"] = {"status": "ok"}
        except Exception as e:
            health_status["status"] = "degraded"
            health_status["components"]["database"] = {
                "status": "error",
                "error": str(e)[:100],
            }

        if await bucket_store.ping():
            health_status["components"]["rate_limit_store"] = {"status": "ok"}
        else:
            health_status["status"] = "degraded"
            health_status["components"]["rate_limit_store"] = {"status": "error"}

        return health_status

    @app.exception_handler(ChatServiceError)
    async def chat_service_error_handler(request: Request, exc: ChatServiceError) -> JSONResponse:
        """Serialize service errors as ``{"kind", "message", ...}`` payloads."""
        headers = {}
        if isinstance(exc, RateLimitedError):
            headers["Retry-After"] = str(max(1, math.ceil(exc.retry_after)))
        else:
            logger.error(
                f"{exc.kind} while serving {request.url.path}: {exc.message}",
                extra={"path": request.url.path, "method": request.method},
            )
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_response(),
            headers=headers,
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions.

        Logs full details server-side; the client gets the exception message
        only in debug mode and never a traceback.
        """
        request_id = get_request_id(request)
        logger.exception(
            f"Unhandled exception [request_id={request_id}]",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__,
            },
        )
        message = str(exc) if settings.debug else "Internal server error"
        return JSONResponse(
            status_code=500,
            content={"kind": "InternalError", "message": message, "request_id": request_id},
        )

    return app


# Create the application instance
app = create_app()
