import sys
import time
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional
from loguru import logger
from tracker.codec import SymmetricCodec
from tracker.config import Settings, get_settings
from tracker.database import configure_engine, init_db
from tracker.errors import setup_exception_handlers
from tracker.middleware import UploadLimitMiddleware
from tracker.routers import auth_router, photos_router, sharing_router, transactions_router


def configure_logging(settings: Settings):
    """Single stderr sink at the configured level."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.log_level.upper(),
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{line} - {message}",
    )


def create_app(settings: Optional[Settings] = None, engine=None) -> FastAPI:
    """
    Build the application.

    The codec key and access policy are resolved here once and shared
    by every request. Fails fast when the encryption key is unusable.
    """
    settings = settings or get_settings()
    configure_logging(settings)

    # Raises CodecConfigError on a missing or malformed key
    codec = SymmetricCodec.from_setting(settings.encryption_key)

    owns_engine = engine is None
    if owns_engine:
        engine = configure_engine(settings.database_url, echo=settings.debug and settings.log_level.upper() == "DEBUG")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan handler.
        Runs on startup and shutdown.
        """
        init_db(engine)
        Path(settings.upload_dir).mkdir(parents=True, exist_ok=True)
        if settings.viewer_write_access:
            logger.warning("Connected viewers may modify owners' transactions")
        logger.info("Tracker started in {} mode", settings.environment)
        yield
        if owns_engine:
            engine.dispose()

    app = FastAPI(
        title="Transaction Tracker",
        description="Personal transactions shared between users through revocable tokens",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.codec = codec

    # CORS configuration
    # The web client is served from the same origin; list extra origins explicitly
    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=False,
            allow_methods=["*"],
            allow_headers=["Authorization", "Content-Type", "If-None-Match"],
            expose_headers=["ETag"],
        )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "{} {} {} {:.1f}ms",
            request.method, request.url.path, response.status_code,
            (time.perf_counter() - start) * 1000,
        )
        return response

    app.add_middleware(UploadLimitMiddleware, max_bytes=settings.max_upload_bytes)

    setup_exception_handlers(app)

    # Register routers
    app.include_router(auth_router.router)
    app.include_router(sharing_router.router)
    app.include_router(transactions_router.router)
    app.include_router(photos_router.router)

    @app.get("/health")
    def health():
        """
        Health check endpoint.
        """
        return {
            "status": "running",
            "version": "1.0.0"
        }

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "tracker.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        reload=get_settings().debug
    )
