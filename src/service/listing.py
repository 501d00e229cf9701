from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from datetime import datetime
from typing import Literal

from object_store.base import ObjectEntry
from schema.files import FileCategory, StoredFile

# Listing order is also output order: PDFs first, then spreadsheets.
LISTED_CATEGORIES: tuple[FileCategory, ...] = (FileCategory.PDF, FileCategory.EXCEL)

CATEGORY_EXTENSIONS: dict[FileCategory, tuple[str, ...]] = {
    FileCategory.PDF: (".pdf",),
    FileCategory.EXCEL: (".xlsx", ".xls", ".ods"),
}

SortField = Literal["name", "type", "uploaded_at", "size"]


def to_stored_file(
    entry: ObjectEntry,
    category: FileCategory,
    *,
    access_url: str,
    now: datetime,
) -> StoredFile:
    return StoredFile(
        id=entry.key,
        display_name=entry.key.rsplit("/", 1)[-1],
        category=category,
        uploaded_at=entry.last_modified or now,
        size_bytes=entry.size or 0,
        access_url=access_url,
    )


def normalize(
    entries: Iterable[ObjectEntry],
    category: FileCategory,
    *,
    url_for: Callable[[str], str],
    now: datetime,
) -> list[StoredFile]:
    """Keep entries with the category's extension and map them to StoredFile."""
    suffixes = CATEGORY_EXTENSIONS[category]
    return [
        to_stored_file(entry, category, access_url=url_for(entry.key), now=now)
        for entry in entries
        if entry.key and entry.key.endswith(suffixes)
    ]


def aggregate(
    batches: Sequence[Sequence[ObjectEntry]],
    *,
    url_for: Callable[[str], str],
    now: datetime,
) -> list[StoredFile]:
    """Merge one raw listing per entry of LISTED_CATEGORIES, in that order."""
    if len(batches) != len(LISTED_CATEGORIES):
        raise ValueError(f"expected {len(LISTED_CATEGORIES)} listings, got {len(batches)}")
    files: list[StoredFile] = []
    for category, entries in zip(LISTED_CATEGORIES, batches):
        files.extend(normalize(entries, category, url_for=url_for, now=now))
    return files


_SORT_KEYS: dict[str, Callable[[StoredFile], object]] = {
    "name": lambda f: f.display_name.lower(),
    "type": lambda f: f.category.value,
    "uploaded_at": lambda f: f.uploaded_at,
    "size": lambda f: f.size_bytes,
}


def sort_files(
    files: Iterable[StoredFile], field: SortField = "uploaded_at", descending: bool = True
) -> list[StoredFile]:
    """Presentation-side ordering; the aggregate itself is never re-sorted."""
    try:
        key = _SORT_KEYS[field]
    except KeyError:
        raise ValueError(f"Unknown sort field: {field}") from None
    return sorted(files, key=key, reverse=descending)
