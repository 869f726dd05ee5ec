"""Storage module with factories for the repository and image store."""

import os
from urllib.parse import urlparse

from loguru import logger

from ..config import settings
from .dynamodb import DynamoDBRepository
from .images import LocalImageStore, S3ImageStore
from .protocols import ImageStore, Repository
from .sqlite import SQLiteRepository


def create_repository(database_url: str | None = None) -> Repository:
    """Create repository instance based on database URL.

    Args:
        database_url: Database URL. Uses settings if not provided.

    Returns:
        Repository instance.
    """
    url = database_url or settings.database_url

    # Auto-detect AWS environment
    if not database_url and settings.is_lambda_environment:
        url = settings.effective_database_url
        logger.info(f"AWS Lambda detected, using DynamoDB: {settings.dynamodb_table}")

    parsed = urlparse(url)

    if parsed.scheme == "dynamodb":
        logger.info("Creating DynamoDB repository")
        return DynamoDBRepository(url)
    logger.info("Creating SQLite repository")
    return SQLiteRepository(url)


def create_image_store() -> ImageStore:
    """Create the image store: S3 when a bucket is configured, else local files."""
    if settings.s3_bucket:
        logger.info(f"Creating S3 image store: {settings.s3_bucket}")
        return S3ImageStore(settings.s3_bucket, settings.aws_region, settings.s3_public_url)

    if os.environ.get("AWS_LAMBDA_FUNCTION_NAME"):
        logger.warning("Running in Lambda without STUDIO_S3_BUCKET; images go to /tmp")
        return LocalImageStore("/tmp/media", settings.media_base_url)  # nosec B108

    logger.info(f"Creating local image store: {settings.media_dir}")
    return LocalImageStore(settings.media_dir, settings.media_base_url)


__all__ = [
    "DynamoDBRepository",
    "ImageStore",
    "LocalImageStore",
    "Repository",
    "S3ImageStore",
    "SQLiteRepository",
    "create_image_store",
    "create_repository",
]
