"""Saved-image archive: projects and generations."""

import base64
import binascii
import copy
import time
import uuid
from datetime import UTC, datetime
from typing import Any

from loguru import logger

from .accounts import Principal
from .exceptions import NotFoundError, ValidationError
from .prompts import extract_base64
from .storage import ImageStore, Repository
from .types import GenerationRecord, ProjectRecord

OUTFIT_SLOTS = ("top", "bottom", "shoes", "accessories")


def scrub_config(config: dict[str, Any]) -> dict[str, Any]:
    """Strip uploaded images from a saved configuration, keeping the settings."""
    clean = copy.deepcopy(config)
    outfit = clean.get("outfit")
    if isinstance(outfit, dict):
        for slot in OUTFIT_SLOTS:
            item = outfit.get(slot)
            if isinstance(item, dict):
                item["images"] = []
                item["sizeChart"] = None
    clean.pop("referenceModelImage", None)
    return clean


class LibraryService:
    """Per-user archive of generated images."""

    def __init__(self, repository: Repository, images: ImageStore) -> None:
        self.repository = repository
        self.images = images

    async def list_projects(self, principal: Principal) -> list[ProjectRecord]:
        return await self.repository.list_projects(principal.user_id)

    async def create_project(self, principal: Principal, name: str) -> ProjectRecord:
        record: ProjectRecord = {
            "id": str(uuid.uuid4()),
            "user_id": principal.user_id,
            "name": name,
            "created_at": datetime.now(UTC).isoformat(),
        }
        await self.repository.create_project(record)
        return record

    async def save_generation(
        self,
        principal: Principal,
        image: str,
        config: dict[str, Any],
        project_id: str | None = None,
    ) -> GenerationRecord:
        """Upload a generated image and archive it with its scrubbed configuration."""
        if project_id and await self.repository.get_project(principal.user_id, project_id) is None:
            raise NotFoundError("Project not found")

        image_key = None
        image_url = image
        if image.startswith("data:image"):
            try:
                data = base64.b64decode(extract_base64(image), validate=True)
            except (binascii.Error, ValueError) as e:
                raise ValidationError("Image is not valid base64 data") from e
            image_key = f"{principal.user_id}/{int(time.time() * 1000)}.png"
            image_url = await self.images.save(image_key, data, "image/png")
        elif not image.startswith(("http://", "https://", "/")):
            raise ValidationError("Image must be a data URL or an absolute URL")

        record: GenerationRecord = {
            "id": str(uuid.uuid4()),
            "user_id": principal.user_id,
            "project_id": project_id,
            "image_url": image_url,
            "image_key": image_key,
            "config": scrub_config(config),
            "created_at": datetime.now(UTC).isoformat(),
        }
        await self.repository.save_generation(record)
        logger.info(f"Saved generation {record['id']} for {principal.user_id[:8]}...")
        return record

    async def list_generations(
        self, principal: Principal, project_id: str | None = None
    ) -> list[GenerationRecord]:
        return await self.repository.list_generations(principal.user_id, project_id)

    async def delete_generation(self, principal: Principal, generation_id: str) -> None:
        record = await self.repository.delete_generation(principal.user_id, generation_id)
        if record is None:
            raise NotFoundError("Generation not found")
        if record["image_key"]:
            try:
                await self.images.delete(record["image_key"])
            except Exception as e:  # noqa: BLE001
                logger.warning(f"Could not remove image {record['image_key']}: {e}")

    async def health_check(self) -> bool:
        try:
            return await self.images.health_check()
        except Exception:  # noqa: BLE001
            return False
