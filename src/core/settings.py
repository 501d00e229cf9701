## src/core/settings.py

from enum import StrEnum
from functools import lru_cache
from typing import Annotated, Any

from dotenv import find_dotenv
from pydantic import BeforeValidator, Field, SecretStr, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageBackend(StrEnum):
    S3 = "s3"
    AZURE = "azure"
    MEMORY = "memory"


DEFAULT_PUBLIC_URL_TEMPLATE = "https://{bucket}.s3.amazonaws.com/{key}"


def check_url_template(x: str) -> str:
    if "{key}" not in x:
        raise ValueError("PUBLIC_URL_TEMPLATE must contain a {key} placeholder")
    return x


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=find_dotenv(),
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        extra="ignore",
        validate_default=False,
    )
    MODE: str | None = None

    HOST: str = "0.0.0.0"
    PORT: int = 8080

    # -- Object store --
    STORAGE_BACKEND: StorageBackend = StorageBackend.S3
    AWS_S3_BUCKET_NAME: str | None = None
    AWS_REGION: str = "us-east-1"
    AWS_ACCESS_KEY_ID: str | None = None
    AWS_SECRET_ACCESS_KEY: SecretStr | None = None
    AWS_S3_ENDPOINT_URL: str | None = None  # MinIO / LocalStack

    AZURE_STORAGE_CONNECTION_STRING: SecretStr | None = None

    PUBLIC_URL_TEMPLATE: Annotated[str, BeforeValidator(check_url_template)] = (
        DEFAULT_PUBLIC_URL_TEMPLATE
    )
    PRESIGN_ENABLED: bool = True
    PRESIGN_EXPIRES_IN: int = Field(default=3600, gt=0)

    # -- Uploads --
    MAX_UPLOAD_MB: float = 100
    LIST_MAX_KEYS: int = Field(default=1000, gt=0, le=1000)
    LIST_TIMEOUT_SECONDS: float | None = None

    def model_post_init(self, __context: Any) -> None:
        # Fatal: nothing can run without a bucket, so refuse to build settings at all.
        if not self.AWS_S3_BUCKET_NAME:
            raise ValueError("AWS_S3_BUCKET_NAME must be set")

        match self.STORAGE_BACKEND:
            case StorageBackend.AZURE:
                if not self.AZURE_STORAGE_CONNECTION_STRING:
                    raise ValueError(
                        "AZURE_STORAGE_CONNECTION_STRING must be set when STORAGE_BACKEND=azure"
                    )
            case StorageBackend.S3 | StorageBackend.MEMORY:
                pass
            case _:
                raise ValueError(f"Unknown storage backend: {self.STORAGE_BACKEND}")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def BASE_URL(self) -> str:
        return f"http://{self.HOST}:{self.PORT}"

    def is_dev(self) -> bool:
        return self.MODE == "dev"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached instance so settings are evaluated once only."""

    return Settings()
