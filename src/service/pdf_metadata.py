"""Provenance stamping for PDF uploads, backed by PyMuPDF."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone

import fitz  # PyMuPDF

from service.errors import MetadataWriteError

logger = logging.getLogger(__name__)

AUTHOR = "Document Management System"
TOOL_NAME = "DMS Upload Tool"

SOURCE_KEYWORD = "source:"
UPLOAD_KEYWORD = "upload:"

_KEPT_KEYS = ("creationDate", "modDate")

# PDF keywords are one string; entries are space-joined and split back on the known tags
_KEYWORD_SPLIT = re.compile(r"\s+(?=(?:source|upload):)")


@dataclass
class DocumentProvenance:
    title: str = ""
    subject: str = ""
    keywords: list[str] = field(default_factory=list)

    @property
    def source_link(self) -> str | None:
        for kw in self.keywords:
            if kw.startswith(SOURCE_KEYWORD):
                return kw[len(SOURCE_KEYWORD):]
        return None


def _open_pdf(pdf_bytes: bytes) -> fitz.Document:
    doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    if doc.needs_pass:
        doc.close()
        raise MetadataWriteError("document is encrypted")
    return doc


def embed_provenance(
    pdf_bytes: bytes,
    source_link: str,
    *,
    filename: str,
    uploaded_at: datetime | None = None,
) -> bytes:
    """Return a copy of ``pdf_bytes`` with the provenance written into its info dict.

    ``subject`` carries ``source_link`` verbatim so any viewer shows it; the
    keywords carry ``source:<link>`` and ``upload:<ISO-8601 time>``.
    """
    uploaded_at = uploaded_at or datetime.now(timezone.utc)
    keywords = [f"{SOURCE_KEYWORD}{source_link}", f"{UPLOAD_KEYWORD}{uploaded_at.isoformat()}"]
    try:
        doc = _open_pdf(pdf_bytes)
    except MetadataWriteError:
        raise
    except Exception as exc:
        logger.error("Unreadable PDF", extra={"file_name": filename, "error": str(exc)})
        raise MetadataWriteError(str(exc) or exc.__class__.__name__) from exc

    try:
        with doc:
            existing = doc.metadata or {}
            # set_metadata rejects unknown keys and clears omitted ones
            meta = {k: existing[k] for k in _KEPT_KEYS if existing.get(k)}
            meta.update(
                {
                    "title": f"Document: {filename}",
                    "author": AUTHOR,
                    "subject": source_link,
                    "keywords": " ".join(keywords),
                    "producer": TOOL_NAME,
                    "creator": TOOL_NAME,
                }
            )
            doc.set_metadata(meta)
            return doc.tobytes(garbage=1, deflate=True)
    except Exception as exc:
        logger.error("PDF metadata rewrite failed", extra={"file_name": filename, "error": str(exc)})
        raise MetadataWriteError(str(exc) or exc.__class__.__name__) from exc


def read_provenance(pdf_bytes: bytes) -> DocumentProvenance:
    try:
        with _open_pdf(pdf_bytes) as doc:
            meta = doc.metadata or {}
    except MetadataWriteError:
        raise
    except Exception as exc:
        raise MetadataWriteError(str(exc) or exc.__class__.__name__) from exc

    raw_keywords = (meta.get("keywords") or "").strip()
    return DocumentProvenance(
        title=meta.get("title") or "",
        subject=meta.get("subject") or "",
        keywords=_KEYWORD_SPLIT.split(raw_keywords) if raw_keywords else [],
    )
