import asyncio
import os
from collections.abc import Mapping
from datetime import datetime, timezone
from unittest.mock import patch

import fitz
import pytest
from fastapi.testclient import TestClient

from object_store import MemoryObjectStore, ObjectEntry, ObjectStoreError
from service import create_app
from service.gateway import StorageGateway

FIXED_NOW = datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)
BUCKET = "test-bucket"


def pytest_addoption(parser):
    parser.addoption(
        "--run-s3", action="store_true", default=False, help="run tests against a real S3 bucket"
    )


def pytest_configure(config):
    config.addinivalue_line("markers", "s3: mark test as requiring a real S3 bucket")


def pytest_collection_modifyitems(config, items):
    if not config.getoption("--run-s3"):
        skip_s3 = pytest.mark.skip(reason="need --run-s3 option to run")
        for item in items:
            if "s3" in item.keywords:
                item.add_marker(skip_s3)


class RecordingStore(MemoryObjectStore):
    """In-memory store that records every call and can be told to fail or stall."""

    def __init__(self, supports_presign: bool = False) -> None:
        super().__init__()
        self.supports_presign = supports_presign
        self.calls: list[tuple[str, str]] = []
        self.failures: dict[str, ObjectStoreError] = {}
        self.delays: dict[str, float] = {}
        self.cancelled: list[str] = []

    async def _enter(self, op: str, target: str) -> None:
        self.calls.append((op, target))
        delay = self.delays.get(target)
        if delay:
            try:
                await asyncio.sleep(delay)
            except asyncio.CancelledError:
                self.cancelled.append(target)
                raise
        failure = self.failures.get(op) or self.failures.get(target)
        if failure is not None:
            raise failure

    def calls_to(self, op: str) -> list[str]:
        return [target for name, target in self.calls if name == op]

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
        await self._enter("put", key)
        await super().put(
            bucket,
            key,
            data,
            content_type=content_type,
            content_disposition=content_disposition,
            metadata=metadata,
        )

    async def list(self, bucket: str, prefix: str, max_keys: int) -> list[ObjectEntry]:
        await self._enter("list", prefix)
        return await super().list(bucket, prefix, max_keys)

    async def delete(self, bucket: str, key: str) -> None:
        await self._enter("delete", key)
        await super().delete(bucket, key)

    async def head(self, bucket: str, key: str) -> dict[str, str]:
        await self._enter("head", key)
        return await super().head(bucket, key)

    async def presign(self, bucket: str, key: str, expires_in: int) -> str:
        await self._enter("presign", key)
        return f"https://signed.example/{bucket}/{key}?expires={expires_in}"


@pytest.fixture
def mock_env():
    """Fixture to ensure environment is clean for each test."""
    defaults = {
        "AWS_S3_BUCKET_NAME": BUCKET,
        "AWS_REGION": "us-east-1",
        "STORAGE_BACKEND": "memory",
    }
    with patch.dict(os.environ, defaults, clear=True):
        yield


@pytest.fixture
def store() -> RecordingStore:
    return RecordingStore()


@pytest.fixture
def gateway(store: RecordingStore) -> StorageGateway:
    return StorageGateway(store, BUCKET, clock=lambda: FIXED_NOW)


@pytest.fixture
def pdf_bytes() -> bytes:
    doc = fitz.open()
    page = doc.new_page()
    page.insert_text((72, 72), "Quarterly report")
    data = doc.tobytes()
    doc.close()
    return data


@pytest.fixture
def test_client(gateway: StorageGateway) -> TestClient:
    """Fixture to create a FastAPI test client around the shared gateway."""
    return TestClient(create_app(gateway, presign_expires_in=900))


@pytest.fixture
def mock_httpx(test_client: TestClient):
    """Patch the module-level httpx helpers the client uses to hit our test client."""

    def strip(url: str) -> str:
        # Strip the base URL since TestClient expects just the path
        return url.replace("http://0.0.0.0:8080", "")

    def mock_get(url: str, **kwargs):
        kwargs.pop("timeout", None)
        return test_client.get(strip(url), **kwargs)

    def mock_post(url: str, **kwargs):
        kwargs.pop("timeout", None)
        return test_client.post(strip(url), **kwargs)

    def mock_delete(url: str, **kwargs):
        kwargs.pop("timeout", None)
        return test_client.delete(strip(url), **kwargs)

    with patch("httpx.get", mock_get), patch("httpx.post", mock_post), patch(
        "httpx.delete", mock_delete
    ):
        yield test_client
