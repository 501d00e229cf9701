from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone

from object_store.base import ObjectEntry, ObjectStoreError


@dataclass
class StoredObject:
    data: bytes
    content_type: str
    content_disposition: str
    metadata: dict[str, str]
    last_modified: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class MemoryObjectStore:
    """Process-local object store for development (``STORAGE_BACKEND=memory``).

    Mirrors S3 semantics where they matter to callers: deleting a missing key
    succeeds, heading one fails with ``NoSuchKey``.
    """

    supports_presign = False

    def __init__(self) -> None:
        self.buckets: dict[str, dict[str, StoredObject]] = {}

    def _bucket(self, bucket: str) -> dict[str, StoredObject]:
        return self.buckets.setdefault(bucket, {})

    async def put(
        self,
        bucket: str,
        key: str,
        data: bytes,
        *,
        content_type: str,
        content_disposition: str,
        metadata: Mapping[str, str],
    ) -> None:
        self._bucket(bucket)[key] = StoredObject(
            data=bytes(data),
            content_type=content_type,
            content_disposition=content_disposition,
            metadata=dict(metadata),
        )

    async def list(self, bucket: str, prefix: str, max_keys: int) -> list[ObjectEntry]:
        keys = sorted(k for k in self._bucket(bucket) if k.startswith(prefix))[:max_keys]
        objects = self._bucket(bucket)
        return [
            ObjectEntry(key=k, size=len(objects[k].data), last_modified=objects[k].last_modified)
            for k in keys
        ]

    async def delete(self, bucket: str, key: str) -> None:
        self._bucket(bucket).pop(key, None)

    async def head(self, bucket: str, key: str) -> dict[str, str]:
        obj = self._bucket(bucket).get(key)
        if obj is None:
            raise ObjectStoreError("NoSuchKey", f"The specified key does not exist: {key}")
        return dict(obj.metadata)

    async def presign(self, bucket: str, key: str, expires_in: int) -> str:
        raise ObjectStoreError("NotImplemented", "in-memory store cannot presign URLs")

    async def close(self) -> None:
        return None
