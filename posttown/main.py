"""PostTown API - Main Application."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from posttown.config import Settings, get_settings
from posttown.core.database import init_async_cassandra, shutdown_async_cassandra
from posttown.core.logging import configure_structlog, get_logger
from posttown.core.middleware import RequestContextMiddleware
from posttown.core.redis import init_redis, shutdown_redis
from posttown.files import FirebaseFileStore, InMemoryFileStore
from posttown.health import router as health_router
from posttown.moderation import ModerationFilter
from posttown.posts.cassandra_store import CassandraPostCommentStore
from posttown.posts.router import router as posts_router
from posttown.posts.schemas import error_envelope
from posttown.posts.store import InMemoryPostCommentStore
from posttown.sessions import InMemorySessionRegistry, RedisSessionRegistry


# Configure logging early (before creating logger)
settings = get_settings()
configure_structlog(settings, log_dir=Path(settings.log_dir))

logger = get_logger(__name__)


async def init_post_store(app: FastAPI, settings: Settings) -> None:
    """Create the post/comment store selected by ``store_backend``."""
    if settings.store_backend == "memory":
        app.state.post_store = InMemoryPostCommentStore()
        logger.info("post_store_initialized", backend="memory")
        return

    try:
        session = await init_async_cassandra(settings)
        app.state.post_store = CassandraPostCommentStore(
            session=session,
            keyspace=settings.cassandra_keyspace,
        )
        logger.info("post_store_initialized", backend="cassandra")
    except Exception as e:
        logger.warning(
            "database_init_skipped",
            error=str(e),
            message="Running without database connection",
        )


async def init_session_registry(app: FastAPI, settings: Settings) -> None:
    """Create the town/session registry selected by ``session_backend``."""
    if settings.session_backend == "memory":
        app.state.session_registry = InMemorySessionRegistry()
        logger.info("session_registry_initialized", backend="memory")
        return

    try:
        redis_client = await init_redis(settings)
        app.state.session_registry = RedisSessionRegistry(
            redis=redis_client,
            key_prefix=settings.redis_key_prefix,
            session_ttl=settings.session_ttl_seconds,
        )
        logger.info("session_registry_initialized", backend="redis")
    except Exception as e:
        logger.warning(
            "redis_init_skipped",
            error=str(e),
            message="Running without session registry",
        )


def init_file_store(app: FastAPI, settings: Settings) -> None:
    """Create the attachment store selected by ``file_backend``."""
    if settings.file_backend == "memory":
        app.state.file_store = InMemoryFileStore()
        logger.info("file_store_initialized", backend="memory")
        return

    if not settings.firebase_configured:
        logger.warning(
            "file_store_init_skipped",
            message="Firebase Storage is not configured",
        )
        return

    # Firebase itself starts on first use
    app.state.file_store = FirebaseFileStore(settings)
    logger.info("file_store_initialized", backend="firebase")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Collaborators already present on ``app.state`` are kept as they are;
    only the missing ones are built from settings.
    """
    settings: Settings = app.state.settings
    logger.info(
        "starting_application",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
    )

    if getattr(app.state, "moderation", None) is None:
        app.state.moderation = ModerationFilter.from_settings(settings)
    if getattr(app.state, "max_file_size", None) is None:
        app.state.max_file_size = settings.upload_max_file_size
    if getattr(app.state, "post_store", None) is None:
        await init_post_store(app, settings)
    if getattr(app.state, "session_registry", None) is None:
        await init_session_registry(app, settings)
    if getattr(app.state, "file_store", None) is None:
        init_file_store(app, settings)

    registry = getattr(app.state, "session_registry", None)
    if settings.demo_town_id and registry is not None:
        await registry.register_town(settings.demo_town_id)
        logger.info("demo_town_registered", town_id=settings.demo_town_id)

    yield

    # Shutdown
    logger.info("shutting_down_application")
    await shutdown_redis()
    await shutdown_async_cassandra()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    # Never expose stack traces in responses; handlers below log the details
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="PostTown - posts and threaded comments for shared towns",
        debug=False,
        lifespan=lifespan,
        default_response_class=ORJSONResponse,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
    )
    app.state.settings = settings

    # Request context middleware (must be added first - outermost)
    app.add_middleware(
        RequestContextMiddleware,
        log_requests=settings.log_requests,
        exclude_paths=settings.log_exclude_paths,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
        max_age=settings.cors_max_age,
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> ORJSONResponse:
        """Wrap HTTP errors in the response envelope."""
        logger.warning(
            "http_exception",
            status_code=exc.status_code,
            detail=str(exc.detail),
            path=request.url.path,
            method=request.method,
        )

        message = (
            str(exc.detail)
            if exc.status_code != status.HTTP_500_INTERNAL_SERVER_ERROR
            else "Internal server error"
        )
        return ORJSONResponse(
            status_code=exc.status_code,
            content=error_envelope(message),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> ORJSONResponse:
        """Report malformed requests through the envelope."""
        logger.warning(
            "validation_error",
            errors=exc.errors(),
            path=request.url.path,
            method=request.method,
        )

        details = "; ".join(
            f"{'.'.join(str(loc) for loc in err.get('loc', []))}: "
            f"{err.get('msg', 'Invalid value')}"
            for err in exc.errors()
        )
        return ORJSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=error_envelope(f"Validation error: {details}"),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(
        request: Request, exc: Exception
    ) -> ORJSONResponse:
        """Catch-all handler; details are logged, never returned."""
        logger.exception(
            "unhandled_exception",
            error_type=type(exc).__name__,
            error_message=str(exc),
            path=request.url.path,
            method=request.method,
        )

        return ORJSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_envelope(
                "An unexpected error occurred. Please try again later."
            ),
        )

    app.include_router(health_router)
    app.include_router(posts_router)

    @app.get("/", include_in_schema=False)
    async def root(request: Request) -> dict[str, str]:
        """Root endpoint."""
        return {
            "message": "PostTown API",
            "version": settings.app_version,
            "docs": f"{request.url}docs",
        }

    return app


app = create_app()
