from schema.files import (
    ErrorResponse,
    FileCategory,
    ListFilesResponse,
    PresignResponse,
    StoredFile,
    UploadRequest,
    UploadResult,
)

__all__ = [
    "FileCategory",
    "StoredFile",
    "UploadRequest",
    "UploadResult",
    "ListFilesResponse",
    "PresignResponse",
    "ErrorResponse",
]
