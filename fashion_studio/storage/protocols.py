"""Storage protocol definitions using typing.Protocol."""

from typing import Protocol

from ..types import GenerationRecord, GuestUsageRecord, ProfileRecord, ProjectRecord


class Repository(Protocol):
    """Repository protocol for profiles, guest usage and the image archive."""

    async def get_profile(self, user_id: str) -> ProfileRecord | None:
        """Get a profile by user id."""
        ...

    async def find_profile_by_email(self, email: str) -> ProfileRecord | None:
        """Get a profile by case-insensitive email."""
        ...

    async def create_profile(
        self, user_id: str, email: str | None, tier: str, credits: int
    ) -> ProfileRecord:
        """Insert a new profile."""
        ...

    async def update_profile(
        self, user_id: str, *, tier: str | None = None, credits: int | None = None
    ) -> bool:
        """Update tier and/or credits. Returns False when the profile does not exist."""
        ...

    async def adjust_credits(self, user_id: str, delta: int) -> int | None:
        """Atomically add delta to the balance.

        Returns the new balance, or None when the profile is missing or the
        balance would drop below zero.
        """
        ...

    async def count_generations(self, user_id: str) -> int:
        """Count archived generations for a user."""
        ...

    async def save_generation(self, record: GenerationRecord) -> None:
        """Archive a generation."""
        ...

    async def list_generations(
        self, user_id: str, project_id: str | None = None
    ) -> list[GenerationRecord]:
        """List a user's generations, newest first."""
        ...

    async def delete_generation(
        self, user_id: str, generation_id: str
    ) -> GenerationRecord | None:
        """Delete a user's generation and return it, or None when nothing matched."""
        ...

    async def create_project(self, record: ProjectRecord) -> None:
        """Insert a project."""
        ...

    async def get_project(self, user_id: str, project_id: str) -> ProjectRecord | None:
        """Get one of the user's projects."""
        ...

    async def list_projects(self, user_id: str) -> list[ProjectRecord]:
        """List a user's projects, newest first."""
        ...

    async def get_guest_usage(self, ip_address: str) -> GuestUsageRecord | None:
        """Get the usage row for an IP."""
        ...

    async def save_guest_usage(self, record: GuestUsageRecord) -> None:
        """Insert or replace the usage row for an IP."""
        ...

    async def health_check(self) -> bool:
        """Check if repository is healthy."""
        ...

    async def startup(self) -> None:
        """Initialize repository on startup."""
        ...

    async def shutdown(self) -> None:
        """Cleanup repository on shutdown."""
        ...


class ImageStore(Protocol):
    """Object store for archived images."""

    async def save(self, key: str, data: bytes, content_type: str = "image/png") -> str:
        """Store bytes under key and return the public URL."""
        ...

    async def delete(self, key: str) -> None:
        """Remove an object if present."""
        ...

    async def health_check(self) -> bool:
        ...

    async def startup(self) -> None:
        ...

    async def shutdown(self) -> None:
        ...

