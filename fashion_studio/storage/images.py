"""Object stores for archived images."""

import asyncio
from pathlib import Path

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from ..exceptions import StorageError


class LocalImageStore:
    """Filesystem store served by the API under a static mount."""

    def __init__(self, root: str, base_url: str = "/media"):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    async def startup(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    async def shutdown(self) -> None:
        pass

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise StorageError(f"Invalid object key: {key}")
        return path

    async def save(self, key: str, data: bytes, content_type: str = "image/png") -> str:
        path = self._path(key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, _write)
        except OSError as e:
            raise StorageError(f"Failed to store image {key}: {e}") from e
        return f"{self.base_url}/{key}"

    async def delete(self, key: str) -> None:
        path = self._path(key)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, lambda: path.unlink(missing_ok=True))

    async def health_check(self) -> bool:
        return self.root.is_dir()


class S3ImageStore:
    """S3 bucket store with public object URLs."""

    def __init__(self, bucket: str, region: str | None = None, public_url: str | None = None):
        self.bucket = bucket
        self.region = region
        self.public_url = (
            public_url or f"https://{bucket}.s3.{region or 'us-east-1'}.amazonaws.com"
        ).rstrip("/")
        self.client = None

    async def startup(self) -> None:
        self.client = boto3.client("s3", region_name=self.region)
        logger.info(f"Using S3 bucket {self.bucket} for images")

    async def shutdown(self) -> None:
        pass

    async def save(self, key: str, data: bytes, content_type: str = "image/png") -> str:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                None,
                lambda: self.client.put_object(  # type: ignore[attr-defined]
                    Bucket=self.bucket, Key=key, Body=data, ContentType=content_type
                ),
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"S3 upload failed for {key}: {e}")
            raise StorageError(f"Failed to store image {key}: {e}") from e
        return f"{self.public_url}/{key}"

    async def delete(self, key: str) -> None:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                None,
                lambda: self.client.delete_object(Bucket=self.bucket, Key=key),  # type: ignore[attr-defined]
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to delete image {key}: {e}") from e

    async def health_check(self) -> bool:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                None,
                lambda: self.client.head_bucket(Bucket=self.bucket),  # type: ignore[attr-defined]
            )
            return True
        except (BotoCoreError, ClientError, AttributeError) as e:
            logger.warning(f"S3 health check failed: {e}")
            return False
