from core.settings import Settings, StorageBackend
from object_store.base import ObjectEntry, ObjectStore, ObjectStoreError
from object_store.memory import MemoryObjectStore


def build_object_store(settings: Settings) -> ObjectStore:
    """Construct the configured backend. SDK imports stay local to their branch."""

    match settings.STORAGE_BACKEND:
        case StorageBackend.S3:
            from object_store.s3 import S3ObjectStore

            return S3ObjectStore(
                region=settings.AWS_REGION,
                access_key=settings.AWS_ACCESS_KEY_ID,
                secret_key=(
                    settings.AWS_SECRET_ACCESS_KEY.get_secret_value()
                    if settings.AWS_SECRET_ACCESS_KEY
                    else None
                ),
                endpoint_url=settings.AWS_S3_ENDPOINT_URL,
            )
        case StorageBackend.AZURE:
            from object_store.azure_blob import AzureBlobObjectStore

            assert settings.AZURE_STORAGE_CONNECTION_STRING is not None
            return AzureBlobObjectStore(
                settings.AZURE_STORAGE_CONNECTION_STRING.get_secret_value()
            )
        case StorageBackend.MEMORY:
            return MemoryObjectStore()
        case _:
            raise ValueError(f"Unknown storage backend: {settings.STORAGE_BACKEND}")


__all__ = [
    "ObjectEntry",
    "ObjectStore",
    "ObjectStoreError",
    "MemoryObjectStore",
    "build_object_store",
]
