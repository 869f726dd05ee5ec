"""SQLite repository implementation."""

import json
from datetime import UTC, datetime
from typing import Any

import databases
import sqlalchemy as sa
from loguru import logger
from sqlalchemy.dialects import sqlite
from sqlalchemy.schema import CreateIndex, CreateTable

from ..types import GenerationRecord, GuestUsageRecord, ProfileRecord, ProjectRecord


class SQLiteRepository:
    """SQLite repository using databases."""

    def __init__(self, database_url: str):
        """Initialize SQLite repository.

        Args:
            database_url: Database connection URL.
        """
        self.database = databases.Database(database_url)
        self.metadata = sa.MetaData()

        self.profiles = sa.Table(
            "profiles",
            self.metadata,
            sa.Column("id", sa.String, primary_key=True),
            sa.Column("email", sa.String, index=True),
            sa.Column("tier", sa.String, nullable=False),
            sa.Column("credits", sa.Integer),
            sa.Column("created_at", sa.String, nullable=False),
        )
        self.projects = sa.Table(
            "projects",
            self.metadata,
            sa.Column("id", sa.String, primary_key=True),
            sa.Column("user_id", sa.String, nullable=False, index=True),
            sa.Column("name", sa.String, nullable=False),
            sa.Column("created_at", sa.String, nullable=False),
        )
        self.generations = sa.Table(
            "generations",
            self.metadata,
            sa.Column("id", sa.String, primary_key=True),
            sa.Column("user_id", sa.String, nullable=False, index=True),
            sa.Column("project_id", sa.String, index=True),
            sa.Column("image_url", sa.Text, nullable=False),
            sa.Column("image_key", sa.String),
            sa.Column("config", sa.Text),
            sa.Column("created_at", sa.String, nullable=False),
        )
        self.guest_usage = sa.Table(
            "guest_usage",
            self.metadata,
            sa.Column("ip_address", sa.String, primary_key=True),
            sa.Column("usage_count", sa.Integer, nullable=False),
            sa.Column("last_updated", sa.String, nullable=False),
        )

    async def startup(self) -> None:
        """Initialize database connection and create tables."""
        await self.database.connect()
        await self._create_tables()

    async def shutdown(self) -> None:
        """Close database connection."""
        await self.database.disconnect()

    async def _create_tables(self) -> None:
        """Create tables and indexes on the open connection."""
        dialect = sqlite.dialect()
        for table in self.metadata.sorted_tables:
            await self.database.execute(
                str(CreateTable(table, if_not_exists=True).compile(dialect=dialect))
            )
            for index in table.indexes:
                await self.database.execute(
                    str(CreateIndex(index, if_not_exists=True).compile(dialect=dialect))
                )

    # Profiles

    async def get_profile(self, user_id: str) -> ProfileRecord | None:
        query = self.profiles.select().where(self.profiles.c.id == user_id)
        row = await self.database.fetch_one(query)
        return self._profile(row) if row else None

    async def find_profile_by_email(self, email: str) -> ProfileRecord | None:
        query = self.profiles.select().where(
            sa.func.lower(self.profiles.c.email) == email.strip().lower()
        )
        row = await self.database.fetch_one(query)
        return self._profile(row) if row else None

    async def create_profile(
        self, user_id: str, email: str | None, tier: str, credits: int
    ) -> ProfileRecord:
        record: ProfileRecord = {
            "id": user_id,
            "email": email,
            "tier": tier,
            "credits": credits,
            "created_at": _now(),
        }
        await self.database.execute(self.profiles.insert().values(**record))
        return record

    async def update_profile(
        self, user_id: str, *, tier: str | None = None, credits: int | None = None
    ) -> bool:
        values: dict[str, Any] = {}
        if tier is not None:
            values["tier"] = tier
        if credits is not None:
            values["credits"] = credits

        async with self.database.transaction():
            if await self.get_profile(user_id) is None:
                return False
            if values:
                await self.database.execute(
                    self.profiles.update().where(self.profiles.c.id == user_id).values(**values)
                )
        return True

    async def adjust_credits(self, user_id: str, delta: int) -> int | None:
        async with self.database.transaction():
            profile = await self.get_profile(user_id)
            if profile is None:
                return None
            balance = (profile["credits"] or 0) + delta
            if balance < 0:
                return None
            await self.database.execute(
                self.profiles.update().where(self.profiles.c.id == user_id).values(credits=balance)
            )
        return balance

    # Archive

    async def count_generations(self, user_id: str) -> int:
        query = (
            sa.select(sa.func.count())
            .select_from(self.generations)
            .where(self.generations.c.user_id == user_id)
        )
        return int(await self.database.fetch_val(query) or 0)

    async def save_generation(self, record: GenerationRecord) -> None:
        values = dict(record)
        values["config"] = json.dumps(record["config"])
        await self.database.execute(self.generations.insert().values(**values))

    async def list_generations(
        self, user_id: str, project_id: str | None = None
    ) -> list[GenerationRecord]:
        query = self.generations.select().where(self.generations.c.user_id == user_id)
        if project_id is not None:
            query = query.where(self.generations.c.project_id == project_id)
        query = query.order_by(self.generations.c.created_at.desc())
        rows = await self.database.fetch_all(query)
        return [self._generation(row) for row in rows]

    async def delete_generation(
        self, user_id: str, generation_id: str
    ) -> GenerationRecord | None:
        condition = sa.and_(
            self.generations.c.id == generation_id,
            self.generations.c.user_id == user_id,
        )
        async with self.database.transaction():
            row = await self.database.fetch_one(self.generations.select().where(condition))
            if row is None:
                return None
            await self.database.execute(self.generations.delete().where(condition))
        return self._generation(row)

    async def create_project(self, record: ProjectRecord) -> None:
        await self.database.execute(self.projects.insert().values(**record))

    async def get_project(self, user_id: str, project_id: str) -> ProjectRecord | None:
        query = self.projects.select().where(
            self.projects.c.id == project_id,
            self.projects.c.user_id == user_id,
        )
        row = await self.database.fetch_one(query)
        return ProjectRecord(**row._mapping) if row else None  # type: ignore[typeddict-item]

    async def list_projects(self, user_id: str) -> list[ProjectRecord]:
        query = (
            self.projects.select()
            .where(self.projects.c.user_id == user_id)
            .order_by(self.projects.c.created_at.desc())
        )
        rows = await self.database.fetch_all(query)
        return [ProjectRecord(**row._mapping) for row in rows]  # type: ignore[typeddict-item]

    # Guest quota

    async def get_guest_usage(self, ip_address: str) -> GuestUsageRecord | None:
        query = self.guest_usage.select().where(self.guest_usage.c.ip_address == ip_address)
        row = await self.database.fetch_one(query)
        return GuestUsageRecord(**row._mapping) if row else None  # type: ignore[typeddict-item]

    async def save_guest_usage(self, record: GuestUsageRecord) -> None:
        query = (
            sqlite.insert(self.guest_usage)
            .values(**record)
            .on_conflict_do_update(
                index_elements=[self.guest_usage.c.ip_address],
                set_={
                    "usage_count": record["usage_count"],
                    "last_updated": record["last_updated"],
                },
            )
        )
        await self.database.execute(query)

    async def health_check(self) -> bool:
        """Check if database is accessible.

        Returns:
            True if database is healthy, False otherwise.
        """
        try:
            await self.database.execute("SELECT 1")
            return True
        except Exception:  # noqa: BLE001
            logger.exception("Database health check failed")
            return False

    @staticmethod
    def _profile(row: Any) -> ProfileRecord:
        return ProfileRecord(**row._mapping)  # type: ignore[typeddict-item]

    @staticmethod
    def _generation(row: Any) -> GenerationRecord:
        values = dict(row._mapping)
        values["config"] = json.loads(values["config"]) if values["config"] else {}
        return GenerationRecord(**values)  # type: ignore[typeddict-item]


def _now() -> str:
    return datetime.now(UTC).isoformat()
