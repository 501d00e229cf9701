"""Failure taxonomy shared by every storage-layer operation.

Callers branch on the exception type (or its ``code``), never on the message:

* :class:`UploadValidationError` - the input was rejected before any work.
* :class:`MetadataWriteError` - the PDF could not be rewritten; nothing stored.
* :class:`InvalidKeyError` - a delete was refused; no backend call issued.
* :class:`StoreError` - the backend was called and failed.
"""

from __future__ import annotations


class DocumentStoreError(Exception):
    code = "document_store_error"


class UploadValidationError(DocumentStoreError):
    code = "validation_error"


class SizeExceededError(UploadValidationError):
    code = "size_exceeded"

    def __init__(self, size_bytes: int, max_size_mb: float) -> None:
        self.size_bytes = size_bytes
        self.max_size_mb = max_size_mb
        super().__init__(f"File too large. Maximum size is {max_size_mb:g}MB.")


class InvalidTypeError(UploadValidationError):
    code = "invalid_type"

    def __init__(self, value: str, allowed: frozenset[str]) -> None:
        self.value = value
        self.allowed = allowed
        super().__init__(
            f"Invalid file type '{value}'. Allowed: {', '.join(sorted(allowed))}"
        )


class MissingSourceLinkError(UploadValidationError):
    code = "missing_source_link"

    def __init__(self) -> None:
        super().__init__("A source link is required for PDF uploads")


class MetadataWriteError(DocumentStoreError):
    code = "metadata_write_failed"

    def __init__(self, cause: str) -> None:
        self.cause = cause
        super().__init__(f"Failed to modify PDF metadata: {cause}")


class InvalidKeyError(DocumentStoreError):
    code = "invalid_key"

    def __init__(self, key: str, reason: str) -> None:
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid file key {key!r}: {reason}")


class StoreError(DocumentStoreError):
    code = "store_error"

    # Backend codes that mean the object is simply not there.
    NOT_FOUND_CODES = frozenset({"NoSuchKey", "NotFound", "404", "BlobNotFound"})

    def __init__(self, operation: str, backend_code: str, backend_message: str) -> None:
        self.operation = operation
        self.backend_code = backend_code
        self.backend_message = backend_message
        super().__init__(f"Object store {operation} operation failed: {backend_code} - {backend_message}")

    @property
    def is_not_found(self) -> bool:
        return self.backend_code in self.NOT_FOUND_CODES
