from __future__ import annotations

from dataclasses import dataclass
from pathlib import PurePosixPath

from service.errors import InvalidTypeError, SizeExceededError

BYTES_PER_MB = 1_048_576

PDF_MIME_TYPES = frozenset({"application/pdf"})
EXCEL_MIME_TYPES = frozenset(
    {
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.oasis.opendocument.spreadsheet",
    }
)

DROPZONE_MAX_MB = 10


@dataclass(frozen=True)
class ValidationRules:
    """Size cap plus either an extension allow-list or a MIME allow-list.

    Extension lists are used for dropzone-level checks (what the user picked),
    MIME lists for upload-level checks (what is about to be stored).
    """

    max_size_mb: float
    allowed_extensions: frozenset[str] | None = None
    allowed_mime_types: frozenset[str] | None = None

    def __post_init__(self) -> None:
        if (self.allowed_extensions is None) == (self.allowed_mime_types is None):
            raise ValueError("Exactly one of allowed_extensions / allowed_mime_types is required")
        if self.allowed_extensions is not None:
            object.__setattr__(
                self,
                "allowed_extensions",
                frozenset(ext.lower() for ext in self.allowed_extensions),
            )

    @property
    def max_size_bytes(self) -> float:
        return self.max_size_mb * BYTES_PER_MB


def pdf_upload_rules(max_size_mb: float) -> ValidationRules:
    return ValidationRules(max_size_mb=max_size_mb, allowed_mime_types=PDF_MIME_TYPES)


def excel_upload_rules(max_size_mb: float) -> ValidationRules:
    return ValidationRules(max_size_mb=max_size_mb, allowed_mime_types=EXCEL_MIME_TYPES)


PDF_DROPZONE_RULES = ValidationRules(
    max_size_mb=DROPZONE_MAX_MB, allowed_extensions=frozenset({".pdf"})
)
EXCEL_DROPZONE_RULES = ValidationRules(
    max_size_mb=DROPZONE_MAX_MB, allowed_extensions=frozenset({".xls", ".xlsx"})
)


def file_extension(name: str) -> str:
    return PurePosixPath(name).suffix.lower()


def validate(name: str, size_bytes: int, mime_type: str | None, rules: ValidationRules) -> None:
    """Raise if the file breaks ``rules``. Pure; touches nothing else."""
    if size_bytes > rules.max_size_bytes:
        raise SizeExceededError(size_bytes, rules.max_size_mb)

    if rules.allowed_extensions is not None:
        ext = file_extension(name)
        if ext not in rules.allowed_extensions:
            raise InvalidTypeError(ext or name, rules.allowed_extensions)
    else:
        assert rules.allowed_mime_types is not None
        if (mime_type or "") not in rules.allowed_mime_types:
            raise InvalidTypeError(mime_type or "unknown", rules.allowed_mime_types)
