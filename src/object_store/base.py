from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, runtime_checkable


class ObjectStoreError(Exception):
    """A backend call was made and failed. Carries the backend's own code."""

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(f"{code} - {message}")


@dataclass(frozen=True)
class ObjectEntry:
    key: str
    size: int | None = None
    last_modified: datetime | None = None


@runtime_checkable
class ObjectStore(Protocol):
    """Network capability the storage gateway talks to.

    Implementations translate SDK failures into :class:`ObjectStoreError` and
    perform no retries of their own.
    """

    @property
    def supports_presign(self) -> bool: ...

    async def put(
        self,
        bucket: str,
        key: str,
        data: bytes,
        *,
        content_type: str,
        content_disposition: str,
        metadata: Mapping[str, str],
    ) -> None: ...

    async def list(self, bucket: str, prefix: str, max_keys: int) -> list[ObjectEntry]: ...

    async def delete(self, bucket: str, key: str) -> None: ...

    async def head(self, bucket: str, key: str) -> dict[str, str]: ...

    async def presign(self, bucket: str, key: str, expires_in: int) -> str: ...

    async def close(self) -> None: ...
