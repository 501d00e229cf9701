from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from urllib.parse import quote

from core.settings import DEFAULT_PUBLIC_URL_TEMPLATE, Settings
from object_store.base import ObjectEntry, ObjectStore, ObjectStoreError
from schema.files import FileCategory, StoredFile, UploadRequest
from service import listing
from service.errors import InvalidKeyError, MissingSourceLinkError, StoreError
from service.naming import build_key, category_prefix, has_known_prefix, sanitize_name
from service.pdf_metadata import embed_provenance
from service.validation import excel_upload_rules, pdf_upload_rules, validate

logger = logging.getLogger(__name__)

DEFAULT_PRESIGN_EXPIRES_IN = 3600
DEFAULT_LIST_MAX_KEYS = 1000


def encode_metadata_value(value: str) -> str:
    # object-store metadata must be ASCII; same escaping as JS encodeURIComponent
    return quote(value, safe="!~*'()")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def epoch_ms(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return (moment - _EPOCH) // timedelta(milliseconds=1)


class StorageGateway:
    """Validate, stamp and store uploads; list, inspect and delete stored files.

    The gateway owns no state beyond its configuration: every read goes to the
    object store, every write is a single put or delete at one key, and no
    call is retried.

    Args:
        store: The object-store capability.
        bucket: Bucket (or container) holding every category prefix.
        presign_enabled: Whether time-limited URLs may be minted. Combined with
            ``store.supports_presign`` once, here, never re-probed per call.
        max_upload_mb: Upload-level size cap shared by both categories.
        list_max_keys: Page size of each per-category listing.
        list_timeout: Optional ceiling in seconds on the aggregate listing.
        public_url_template: Shape of non-presigned access URLs.
        clock: Source of "now" for keys, keywords and missing listing times.
    """

    def __init__(
        self,
        store: ObjectStore,
        bucket: str,
        *,
        presign_enabled: bool = True,
        max_upload_mb: float = 100,
        list_max_keys: int = DEFAULT_LIST_MAX_KEYS,
        list_timeout: float | None = None,
        public_url_template: str = DEFAULT_PUBLIC_URL_TEMPLATE,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if not bucket:
            raise ValueError("A bucket name is required")
        self.store = store
        self.bucket = bucket
        self.presign_enabled = bool(presign_enabled and store.supports_presign)
        self.max_upload_mb = max_upload_mb
        self.list_max_keys = list_max_keys
        self.list_timeout = list_timeout
        self.public_url_template = public_url_template
        self.clock = clock

    @classmethod
    def from_settings(cls, store: ObjectStore, settings: Settings) -> StorageGateway:
        assert settings.AWS_S3_BUCKET_NAME
        return cls(
            store,
            settings.AWS_S3_BUCKET_NAME,
            presign_enabled=settings.PRESIGN_ENABLED,
            max_upload_mb=settings.MAX_UPLOAD_MB,
            list_max_keys=settings.LIST_MAX_KEYS,
            list_timeout=settings.LIST_TIMEOUT_SECONDS,
            public_url_template=settings.PUBLIC_URL_TEMPLATE,
        )

    async def close(self) -> None:
        await self.store.close()

    def public_url(self, key: str) -> str:
        return self.public_url_template.format(bucket=self.bucket, key=key)

    # -------- uploads --------
    async def put(self, upload: UploadRequest) -> str:
        match upload.category:
            case FileCategory.PDF:
                return await self.put_pdf(upload)
            case FileCategory.EXCEL:
                return await self.put_excel(upload)
            case _:
                raise ValueError(f"Unsupported category: {upload.category}")

    async def put_pdf(self, upload: UploadRequest, source_link: str | None = None) -> str:
        if source_link is None:
            source_link = upload.provenance or ""
        validate(
            upload.original_name,
            upload.size_bytes,
            upload.declared_mime_type,
            pdf_upload_rules(self.max_upload_mb),
        )
        if not source_link.strip():
            raise MissingSourceLinkError()

        now = self.clock()
        # Embedding finishes before the put so a failure never leaves a partial object.
        body = embed_provenance(
            upload.raw_bytes, source_link, filename=upload.original_name, uploaded_at=now
        )
        timestamp_ms = epoch_ms(now)
        key = build_key(FileCategory.PDF, upload.original_name, timestamp_ms)
        await self._put(
            key,
            body,
            original_name=upload.original_name,
            content_type="application/pdf",
            metadata={
                "sourceLink": encode_metadata_value(source_link),
                "originalName": encode_metadata_value(upload.original_name),
                "uploadTimestamp": str(timestamp_ms),
                "fileSize": str(upload.size_bytes),
            },
        )
        return key

    async def put_excel(self, upload: UploadRequest) -> str:
        validate(
            upload.original_name,
            upload.size_bytes,
            upload.declared_mime_type,
            excel_upload_rules(self.max_upload_mb),
        )
        timestamp_ms = epoch_ms(self.clock())
        key = build_key(FileCategory.EXCEL, upload.original_name, timestamp_ms)
        await self._put(
            key,
            upload.raw_bytes,
            original_name=upload.original_name,
            content_type=upload.declared_mime_type,
            metadata={
                "originalName": encode_metadata_value(upload.original_name),
                "uploadTimestamp": str(timestamp_ms),
                "fileSize": str(upload.size_bytes),
            },
        )
        return key

    async def _put(
        self,
        key: str,
        body: bytes,
        *,
        original_name: str,
        content_type: str,
        metadata: dict[str, str],
    ) -> None:
        logger.info(
            "Uploading object",
            extra={"bucket": self.bucket, "key": key, "size": len(body), "content_type": content_type},
        )
        try:
            await self.store.put(
                self.bucket,
                key,
                body,
                content_type=content_type,
                content_disposition=f'attachment; filename="{sanitize_name(original_name)}"',
                metadata=metadata,
            )
        except ObjectStoreError as exc:
            raise StoreError("upload", exc.code, exc.message) from exc

    # -------- reads --------
    async def list_files(self) -> list[StoredFile]:
        """List both categories concurrently; all-or-nothing."""
        tasks = [
            asyncio.create_task(self._list_prefix(category_prefix(category)))
            for category in listing.LISTED_CATEGORIES
        ]
        try:
            async with asyncio.timeout(self.list_timeout):
                batches = await asyncio.gather(*tasks)
        except ObjectStoreError as exc:
            raise StoreError("list", exc.code, exc.message) from exc
        except TimeoutError as exc:
            logger.error("Listing timed out", extra={"bucket": self.bucket, "timeout": self.list_timeout})
            raise StoreError("list", "Timeout", f"listing exceeded {self.list_timeout}s") from exc
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

        return listing.aggregate(batches, url_for=self.public_url, now=self.clock())

    async def _list_prefix(self, prefix: str) -> list[ObjectEntry]:
        return await self.store.list(self.bucket, f"{prefix}/", self.list_max_keys)

    async def head_metadata(self, key: str) -> dict[str, str]:
        try:
            return await self.store.head(self.bucket, key)
        except ObjectStoreError as exc:
            raise StoreError("head", exc.code, exc.message) from exc

    async def presign(self, key: str, expires_in: int = DEFAULT_PRESIGN_EXPIRES_IN) -> str:
        if not self.presign_enabled:
            return self._fallback_url(key)
        try:
            return await self.store.presign(self.bucket, key, expires_in)
        except ObjectStoreError as exc:
            raise StoreError("presign", exc.code, exc.message) from exc

    def _fallback_url(self, key: str) -> str:
        """Public-style URL used when presigning is off. Not access-controlled."""
        logger.warning("Presigning unavailable, returning public URL", extra={"key": key})
        return self.public_url(key)

    # -------- deletes --------
    async def remove(self, key: str) -> None:
        if not key:
            raise InvalidKeyError(key, "file key is required")
        if not has_known_prefix(key):
            logger.warning("Refusing to delete foreign key", extra={"key": key})
            raise InvalidKeyError(key, "not under a known category prefix")
        try:
            await self.store.delete(self.bucket, key)
        except ObjectStoreError as exc:
            raise StoreError("delete", exc.code, exc.message) from exc
        logger.info("Deleted object", extra={"bucket": self.bucket, "key": key})
