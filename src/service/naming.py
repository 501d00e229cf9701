from __future__ import annotations

import re

from schema.files import FileCategory

CATEGORY_PREFIXES: dict[FileCategory, str] = {
    FileCategory.PDF: "pdf_files",
    FileCategory.EXCEL: "excel_sheets",
}

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def sanitize_name(name: str) -> str:
    # one "_" per rejected character so the result keeps the original length
    return _UNSAFE_CHARS.sub("_", name)


def category_prefix(category: FileCategory) -> str:
    return CATEGORY_PREFIXES[FileCategory(category)]


def build_key(category: FileCategory, original_name: str, timestamp_ms: int) -> str:
    """Derive the storage key ``<prefix>/<timestamp>-<sanitized name>``.

    The timestamp always leads the last segment, so no segment can be ``..``
    and the key is safe to use as a ``Content-Disposition`` filename.
    """
    return f"{category_prefix(category)}/{timestamp_ms}-{sanitize_name(original_name)}"


def category_for_key(key: str) -> FileCategory | None:
    for category, prefix in CATEGORY_PREFIXES.items():
        if key.startswith(f"{prefix}/"):
            return category
    return None


def has_known_prefix(key: str) -> bool:
    return category_for_key(key) is not None
