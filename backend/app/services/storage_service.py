from __future__ import annotations

from dataclasses import dataclass

import aioboto3
import httpx
import structlog
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from app.config import Settings

logger = structlog.get_logger()


class ObjectStorageConfigError(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class ObjectStorageConfig:
    endpoint: str | None
    bucket: str
    access_key: str
    secret_key: str
    region: str

    @staticmethod
    def from_settings(settings: Settings) -> "ObjectStorageConfig":
        if not settings.object_storage_bucket:
            raise ObjectStorageConfigError(
                "OBJECT_STORAGE_BUCKET is required when object storage is enabled"
            )
        if not settings.object_storage_access_key:
            raise ObjectStorageConfigError(
                "OBJECT_STORAGE_ACCESS_KEY is required when object storage is enabled"
            )
        if not settings.object_storage_secret_key:
            raise ObjectStorageConfigError(
                "OBJECT_STORAGE_SECRET_KEY is required when object storage is enabled"
            )

        return ObjectStorageConfig(
            endpoint=settings.object_storage_endpoint,
            bucket=settings.object_storage_bucket,
            access_key=settings.object_storage_access_key,
            secret_key=settings.object_storage_secret_key,
            region=settings.object_storage_region,
        )


class ObjectStorageService:
    def __init__(self, settings: Settings) -> None:
        self._enabled = settings.object_storage_enabled
        self._config = ObjectStorageConfig.from_settings(settings) if self._enabled else None

    @property
    def enabled(self) -> bool:
        return self._enabled

    def _require_enabled(self) -> ObjectStorageConfig:
        if not self._enabled or self._config is None:
            raise RuntimeError("Object storage is not enabled (set OBJECT_STORAGE_ENABLED=true)")
        return self._config

    def _client_kwargs(self, config: ObjectStorageConfig) -> dict:
        return {
            "service_name": "s3",
            "endpoint_url": config.endpoint,
            "aws_access_key_id": config.access_key,
            "aws_secret_access_key": config.secret_key,
            "region_name": config.region,
            "config": BotoConfig(signature_version="s3v4", s3={"addressing_style": "path"}),
        }

    async def download_bytes(self, *, object_key: str) -> bytes:
        config = self._require_enabled()
        session = aioboto3.Session()
        async with session.client(**self._client_kwargs(config)) as s3:
            response = await s3.get_object(Bucket=config.bucket, Key=object_key)
            body = response["Body"]
            return await body.read()


class ArtifactFetcher:
    """
    Loads skill archives from the location stored on the skill.

    ``http(s)://`` URLs are fetched directly; anything else is treated as an
    object key in the configured bucket. Returns None when the archive
    cannot be retrieved.
    """

    def __init__(self, settings: Settings, storage: ObjectStorageService | None = None) -> None:
        self._timeout = settings.artifact_fetch_timeout_seconds
        self._storage = storage or ObjectStorageService(settings)

    async def fetch(self, file_url: str) -> bytes | None:
        if file_url.startswith(("http://", "https://")):
            return await self._fetch_http(file_url)
        return await self._fetch_object(file_url)

    async def _fetch_http(self, url: str) -> bytes | None:
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(url, timeout=self._timeout, follow_redirects=True)
                response.raise_for_status()
                return response.content
        except httpx.HTTPStatusError as e:
            logger.error("artifact_fetch_failed", source="http", status_code=e.response.status_code)
            return None
        except httpx.RequestError as e:
            logger.error("artifact_fetch_failed", source="http", error=str(e))
            return None

    async def _fetch_object(self, object_key: str) -> bytes | None:
        if not self._storage.enabled:
            logger.error("artifact_fetch_failed", source="object_storage", error="object storage disabled")
            return None
        try:
            return await self._storage.download_bytes(object_key=object_key)
        except (ClientError, BotoCoreError) as e:
            logger.error("artifact_fetch_failed", source="object_storage", error=str(e))
            return None
