from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional
import logging

from .album_routes import router as album_router
from .auth import DownloadUrlSigner, JWTManager
from .blob_routes import router as blob_router
from .config import Settings, configure_logging, load_settings
from .constants import DEFAULT_STORAGE_CONCURRENCY, DEFAULT_STORAGE_WORKERS
from .db import init_db
from .errors import ServerError, StarkeeperError, Unauthorized
from .item_routes import router as item_router
from .room_routes import router as room_router
from .star_routes import router as star_router
from .storage import S3BlobStore, WebDavBlobStore
from .storage_workers import BlobWorkerPool
from .user_routes import router as user_router

logger = logging.getLogger(__name__)


def build_jwt_manager(settings: Settings) -> Optional[JWTManager]:
    if not settings.jwt_secret:
        return None
    return JWTManager(settings.jwt_secret, settings.jwt_expiry_days, settings.jwt_algorithm)


def build_storage(settings: Settings, jwt_manager: Optional[JWTManager] = None) -> Optional[BlobWorkerPool]:
    """Instantiate the configured blob store adapter wrapped in a worker pool."""
    backend = settings.storage_backend
    if backend == "none":
        logger.warning("Blob storage disabled; uploads and signed URLs will fail")
        return None

    if backend == "s3":
        if not settings.s3_bucket:
            logger.error("S3 storage selected but S3_BUCKET is not set; storage disabled")
            return None
        base_storage: Any = S3BlobStore(
            settings.s3_bucket,
            endpoint_url=settings.s3_endpoint_url,
            region=settings.s3_region,
            access_key=settings.s3_access_key,
            secret_key=settings.s3_secret_key,
        )
    else:
        if not settings.webdav_url:
            logger.error("WebDAV storage selected but WEBDAV_URL is not set; storage disabled")
            return None
        base_url = settings.webdav_url.rstrip('/') + '/' + (settings.webdav_path or '').lstrip('/')
        signer = DownloadUrlSigner(jwt_manager, settings.public_base_url) if jwt_manager else None
        if signer is None:
            logger.warning("JWT_SECRET is not set; WebDAV blobs cannot be signed")
        base_storage = WebDavBlobStore(
            base_url,
            auth=(settings.webdav_username, settings.webdav_password),
            url_signer=signer,
        )

    try:
        storage_workers = int(settings.storage_workers or DEFAULT_STORAGE_WORKERS)
    except (TypeError, ValueError):
        storage_workers = DEFAULT_STORAGE_WORKERS
    try:
        storage_concurrency = int(settings.storage_concurrency or DEFAULT_STORAGE_CONCURRENCY)
    except (TypeError, ValueError):
        storage_concurrency = DEFAULT_STORAGE_CONCURRENCY

    logger.info("Using %s blob storage (%d workers, %d concurrent)", backend, storage_workers, storage_concurrency)
    return BlobWorkerPool(base_storage, max_workers=storage_workers, max_concurrent=storage_concurrency)


@asynccontextmanager
async def lifespan(app_instance: FastAPI):
    """Manage application lifecycle (startup and shutdown events)."""
    state = app_instance.state
    if getattr(state, 'settings', None) is None:
        state.settings = load_settings()
        configure_logging(state.settings)
    settings = state.settings
    logger.info("Starting starkeeper (storage backend: %s)", settings.storage_backend)

    if getattr(state, 'engine', None) is None:
        state.engine = init_db(settings.database_url)
    if getattr(state, 'jwt_manager', None) is None:
        state.jwt_manager = build_jwt_manager(settings)

    owns_storage = getattr(state, 'storage', None) is None
    if owns_storage:
        state.storage = build_storage(settings, state.jwt_manager)
    state._started = True

    try:
        yield
    finally:
        logger.info("Shutting down starkeeper")
        if owns_storage and state.storage is not None:
            try:
                state.storage.shutdown(wait=True)
            except Exception:
                logger.exception("Error shutting down storage worker pool")
        state._started = False


async def starkeeper_error_handler(request: Request, exc: StarkeeperError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthorized) else None
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message}, headers=headers)


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": ServerError.default_message})


def create_app(settings: Optional[Settings] = None, engine=None, storage=None,
               jwt_manager: Optional[JWTManager] = None) -> FastAPI:
    """Build the API. Anything passed in is used as-is; the rest is created at startup."""
    app_instance = FastAPI(title="starkeeper", lifespan=lifespan)
    app_instance.state.settings = settings
    app_instance.state.engine = engine
    app_instance.state.storage = storage
    if jwt_manager is None and settings is not None:
        jwt_manager = build_jwt_manager(settings)
    app_instance.state.jwt_manager = jwt_manager
    app_instance.state._started = False

    app_instance.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app_instance.add_exception_handler(StarkeeperError, starkeeper_error_handler)
    app_instance.add_exception_handler(Exception, unhandled_error_handler)

    @app_instance.get("/health", tags=["health"])
    def health() -> Dict[str, Any]:
        return {"status": "ok"}

    app_instance.include_router(star_router)
    app_instance.include_router(album_router)
    app_instance.include_router(item_router)
    app_instance.include_router(room_router)
    app_instance.include_router(user_router)
    app_instance.include_router(blob_router)
    return app_instance


app = create_app()
