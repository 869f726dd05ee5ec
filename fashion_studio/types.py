"""Type definitions for the Fashion Studio API."""

from typing import Any

from typing_extensions import TypedDict


class HealthStatus(TypedDict):
    """Health status of system components."""

    storage: bool
    images: bool
    provider: bool


class ProfileRecord(TypedDict):
    """Stored user profile."""

    id: str
    email: str | None
    tier: str
    credits: int | None
    created_at: str


class GuestUsageRecord(TypedDict):
    """Per-IP guest usage row."""

    ip_address: str
    usage_count: int
    last_updated: str


class ProjectRecord(TypedDict):
    id: str
    user_id: str
    name: str
    created_at: str


class GenerationRecord(TypedDict):
    """Archived generation."""

    id: str
    user_id: str
    project_id: str | None
    image_url: str
    image_key: str | None
    config: dict[str, Any]
    created_at: str


class GenerationResult(TypedDict, total=False):
    """Result from the generation pipeline."""

    image: str
    cost: int
    model: str
    seed: int
    pose: str
    model_features: str
    credits_remaining: int
    guest_remaining: int


class WebhookResult(TypedDict, total=False):
    success: bool
    processed: int
    trace: list[str]
    error: bool
    message: str
