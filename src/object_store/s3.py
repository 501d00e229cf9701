from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from contextlib import AsyncExitStack
from typing import Any

import aioboto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from object_store.base import ObjectEntry, ObjectStoreError

logger = logging.getLogger("app.s3")


def _translate(exc: Exception) -> ObjectStoreError:
    if isinstance(exc, ClientError):
        err = exc.response.get("Error", {})
        code = str(err.get("Code") or exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode") or "ClientError")
        message = err.get("Message") or str(exc)
        return ObjectStoreError(code, message)
    return ObjectStoreError(exc.__class__.__name__, str(exc))


class S3ObjectStore:
    """Object store backed by S3 (or any S3-compatible endpoint) via aioboto3.

    The underlying client is opened lazily on first use and kept until
    :meth:`close`.
    """

    supports_presign = True

    def __init__(
        self,
        region: str = "us-east-1",
        access_key: str | None = None,
        secret_key: str | None = None,
        endpoint_url: str | None = None,
    ) -> None:
        self.region = region
        self.endpoint_url = endpoint_url
        self._session = aioboto3.Session(
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
        )
        self._stack: AsyncExitStack | None = None
        self._client: Any = None
        self._client_lock = asyncio.Lock()

    async def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        # concurrent first calls (both listings) must share one client
        async with self._client_lock:
            if self._client is None:
                stack = AsyncExitStack()
                self._client = await stack.enter_async_context(
                    self._session.client(
                        "s3",
                        endpoint_url=self.endpoint_url,
                        config=Config(signature_version="s3v4"),
                    )
                )
                self._stack = stack
        return self._client

    async def close(self) -> None:
        if self._stack is not None:
            await self._stack.aclose()
        self._stack = None
        self._client = None

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
        try:
            client = await self._get_client()
            await client.put_object(
                Bucket=bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                ContentDisposition=content_disposition,
                Metadata=dict(metadata),
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("Failed to put object", extra={"bucket": bucket, "key": key, "error": str(e)})
            raise _translate(e) from e

    async def list(self, bucket: str, prefix: str, max_keys: int) -> list[ObjectEntry]:
        try:
            client = await self._get_client()
            resp = await client.list_objects_v2(Bucket=bucket, Prefix=prefix, MaxKeys=max_keys)
        except (ClientError, BotoCoreError) as e:
            logger.error("Failed to list objects", extra={"bucket": bucket, "prefix": prefix, "error": str(e)})
            raise _translate(e) from e
        return [
            ObjectEntry(
                key=item["Key"],
                size=item.get("Size"),
                last_modified=item.get("LastModified"),
            )
            for item in resp.get("Contents", [])
            if item.get("Key")
        ]

    async def delete(self, bucket: str, key: str) -> None:
        try:
            client = await self._get_client()
            await client.delete_object(Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            logger.error("Failed to delete object", extra={"bucket": bucket, "key": key, "error": str(e)})
            raise _translate(e) from e

    async def head(self, bucket: str, key: str) -> dict[str, str]:
        try:
            client = await self._get_client()
            resp = await client.head_object(Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            logger.warning("Failed to head object", extra={"bucket": bucket, "key": key, "error": str(e)})
            raise _translate(e) from e
        return dict(resp.get("Metadata") or {})

    async def presign(self, bucket: str, key: str, expires_in: int) -> str:
        try:
            client = await self._get_client()
            return await client.generate_presigned_url(
                "get_object",
                Params={"Bucket": bucket, "Key": key},
                ExpiresIn=expires_in,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("Failed to presign object", extra={"bucket": bucket, "key": key, "error": str(e)})
            raise _translate(e) from e
