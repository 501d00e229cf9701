## src/service/service.py

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core import LoggingMiddleware, get_settings
from object_store import build_object_store
from schema.files import ErrorResponse
from service.errors import (
    DocumentStoreError,
    InvalidKeyError,
    InvalidTypeError,
    MetadataWriteError,
    SizeExceededError,
    StoreError,
    UploadValidationError,
)
from service.files_router import router as files_router
from service.gateway import StorageGateway

logger = logging.getLogger(__name__)

# most specific first
_STATUS_BY_ERROR: list[tuple[type[DocumentStoreError], int]] = [
    (SizeExceededError, 413),
    (InvalidTypeError, 415),
    (UploadValidationError, 400),
    (MetadataWriteError, 422),
    (InvalidKeyError, 400),
]


def status_for_error(exc: DocumentStoreError) -> int:
    if isinstance(exc, StoreError):
        return 404 if exc.is_not_found else 502
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


async def document_store_error_handler(request: Request, exc: DocumentStoreError) -> JSONResponse:
    status_code = status_for_error(exc)
    log = logger.error if status_code >= 500 else logger.warning
    log(
        "Request failed",
        extra={"path": request.url.path, "error_code": exc.code, "status": status_code, "error": str(exc)},
    )
    body = ErrorResponse(error=exc.code, detail=str(exc))
    return JSONResponse(body.model_dump(), status_code=status_code)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Build the storage gateway from settings unless one was injected, and close
    it on shutdown if it was built here.
    """
    owned: StorageGateway | None = None
    if getattr(app.state, "gateway", None) is None:
        try:
            settings = get_settings()
            owned = StorageGateway.from_settings(build_object_store(settings), settings)
        except Exception as e:
            logger.error(f"Error during storage initialization: {e}")
            raise
        app.state.gateway = owned
        app.state.presign_expires_in = settings.PRESIGN_EXPIRES_IN
        logger.info(
            "Storage gateway ready",
            extra={
                "backend": settings.STORAGE_BACKEND.value,
                "bucket": owned.bucket,
                "presign_enabled": owned.presign_enabled,
            },
        )
    try:
        yield
    finally:
        if owned is not None:
            await owned.close()
            app.state.gateway = None


def create_app(
    gateway: StorageGateway | None = None, presign_expires_in: int | None = None
) -> FastAPI:
    app = FastAPI(lifespan=lifespan)
    app.state.gateway = gateway
    if presign_expires_in is not None:
        app.state.presign_expires_in = presign_expires_in

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(LoggingMiddleware)
    app.add_exception_handler(DocumentStoreError, document_store_error_handler)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "ok"}

    app.include_router(files_router, prefix="/files")
    return app


app = create_app()
