import logging
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone

from azure.core.exceptions import (
    AzureError,
    HttpResponseError,
    ResourceNotFoundError,
)
from azure.storage.blob import BlobSasPermissions, ContentSettings, generate_blob_sas
from azure.storage.blob.aio import BlobServiceClient

from object_store.base import ObjectEntry, ObjectStoreError


logger = logging.getLogger("app.blob")  # a dedicated channel for the blob adapter


def _translate(exc: AzureError) -> ObjectStoreError:
    if isinstance(exc, ResourceNotFoundError):
        code = getattr(exc, "error_code", None) or "BlobNotFound"
    elif isinstance(exc, HttpResponseError):
        code = exc.error_code or str(exc.status_code or "HttpResponseError")
    else:
        code = exc.__class__.__name__
    message = getattr(exc, "message", None) or str(exc)
    return ObjectStoreError(str(code), message)


class AzureBlobObjectStore:
    """Object store backed by an Azure Storage account; ``bucket`` maps to a container."""

    def __init__(self, connection_string: str):
        self.connection_string = connection_string
        self.account_name = self.get_value_from_connection_string("AccountName")
        self.account_key = self.get_optional_value("AccountKey")
        self.blob_service_client = BlobServiceClient.from_connection_string(
            connection_string
        )

    def get_value_from_connection_string(self, key: str) -> str:
        value = self.get_optional_value(key)
        if value is None:
            raise ValueError(f"{key} not found in connection string")
        return value

    def get_optional_value(self, key: str) -> str | None:
        for component in self.connection_string.split(";"):
            if component.startswith(f"{key}="):
                # account keys are base64 and may end in "="
                return component.split("=", 1)[1]
        return None

    @property
    def supports_presign(self) -> bool:
        # SAS tokens need the shared key; SAS-only connection strings cannot mint them
        return self.account_key is not None

    async def close(self) -> None:
        await self.blob_service_client.close()

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
            blob_client = self.blob_service_client.get_blob_client(
                container=bucket, blob=key
            )
            await blob_client.upload_blob(
                data,
                overwrite=True,
                content_settings=ContentSettings(
                    content_type=content_type,
                    content_disposition=content_disposition,
                ),
                metadata=dict(metadata),
            )
        except AzureError as e:
            logger.error("Failed to upload blob", extra={"blob": key, "container": bucket, "error": str(e)})
            raise _translate(e) from e

    async def list(self, bucket: str, prefix: str, max_keys: int) -> list[ObjectEntry]:
        try:
            container_client = self.blob_service_client.get_container_client(bucket)
            entries = []
            async for blob in container_client.list_blobs(
                name_starts_with=prefix, results_per_page=max_keys
            ):
                entries.append(
                    ObjectEntry(key=blob.name, size=blob.size, last_modified=blob.last_modified)
                )
                if len(entries) >= max_keys:
                    break
            return entries
        except AzureError as e:
            logger.error("Failed to list blobs", extra={"container": bucket, "prefix": prefix, "error": str(e)})
            raise _translate(e) from e

    async def delete(self, bucket: str, key: str) -> None:
        try:
            blob_client = self.blob_service_client.get_blob_client(
                container=bucket, blob=key
            )
            await blob_client.delete_blob(delete_snapshots="include")
        except AzureError as e:
            logger.error("Failed to delete blob", extra={"blob": key, "container": bucket, "error": str(e)})
            raise _translate(e) from e

    async def head(self, bucket: str, key: str) -> dict[str, str]:
        try:
            blob_client = self.blob_service_client.get_blob_client(
                container=bucket, blob=key
            )
            properties = await blob_client.get_blob_properties()
            return dict(properties.metadata or {})
        except ResourceNotFoundError as e:
            logger.warning("Blob not found", extra={"blob": key, "container": bucket})
            raise _translate(e) from e
        except AzureError as e:
            logger.error("Failed to retrieve blob metadata", extra={"blob": key, "container": bucket, "error": str(e)})
            raise _translate(e) from e

    async def presign(self, bucket: str, key: str, expires_in: int) -> str:
        if self.account_key is None:
            raise ObjectStoreError("PresignUnavailable", "connection string carries no AccountKey")
        token = generate_blob_sas(
            account_name=self.account_name,
            container_name=bucket,
            blob_name=key,
            account_key=self.account_key,
            permission=BlobSasPermissions(read=True),
            expiry=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        )
        blob_client = self.blob_service_client.get_blob_client(container=bucket, blob=key)
        return f"{blob_client.url}?{token}"
