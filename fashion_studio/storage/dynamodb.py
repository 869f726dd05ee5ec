"""DynamoDB repository implementation.

Single-table layout:

    profile#<user_id>  / profile                       user profile
    user#<user_id>     / project#<created_at>#<id>     project
    user#<user_id>     / generation#<created_at>#<id>  archived generation
    guest#<ip>         / usage                         guest quota row
"""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, TypeVar
from urllib.parse import urlparse

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from ..exceptions import StorageError
from ..types import GenerationRecord, GuestUsageRecord, ProfileRecord, ProjectRecord

T = TypeVar("T")


def parse_dynamodb_url(database_url: str) -> tuple[str, str | None]:
    """Split dynamodb://table_name?region=us-east-1 into table and region."""
    parsed = urlparse(database_url)
    table_name = parsed.netloc or parsed.path.lstrip("/")
    region = None
    if parsed.query:
        for param in parsed.query.split("&"):
            if param.startswith("region="):
                region = param.split("=")[1]
    return table_name, region


class DynamoDBRepository:
    """DynamoDB repository implementation."""

    def __init__(self, database_url: str):
        """Initialize DynamoDB repository.

        Args:
            database_url: DynamoDB URL in format: dynamodb://table_name?region=us-east-1
        """
        self.table_name, self.region = parse_dynamodb_url(database_url)
        self.table: Any = None

    async def startup(self) -> None:
        """Initialize DynamoDB connection."""
        resource = boto3.resource("dynamodb", region_name=self.region)
        self.table = resource.Table(self.table_name)
        logger.info(f"Connected to DynamoDB table: {self.table_name} in {self.region}")

    async def shutdown(self) -> None:
        """No cleanup needed for DynamoDB."""

    async def _run(self, func: Callable[[], T]) -> T:
        """Run a blocking boto3 call in the default executor."""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, func)
        except (BotoCoreError, ClientError) as e:
            if _is_conditional_failure(e):
                raise
            logger.error(f"DynamoDB operation failed: {e}")
            raise StorageError(f"DynamoDB operation failed: {e}") from e

    # Profiles

    async def get_profile(self, user_id: str) -> ProfileRecord | None:
        response = await self._run(
            lambda: self.table.get_item(Key={"pk": f"profile#{user_id}", "sk": "profile"})
        )
        item = response.get("Item")
        return _profile(item) if item else None

    async def find_profile_by_email(self, email: str) -> ProfileRecord | None:
        clean = email.strip().lower()

        def _scan() -> list[dict[str, Any]]:
            kwargs: dict[str, Any] = {
                "FilterExpression": Attr("sk").eq("profile") & Attr("email_lower").eq(clean)
            }
            while True:
                response = self.table.scan(**kwargs)
                if response.get("Items"):
                    return response["Items"]
                if "LastEvaluatedKey" not in response:
                    return []
                kwargs["ExclusiveStartKey"] = response["LastEvaluatedKey"]

        items = await self._run(_scan)
        return _profile(items[0]) if items else None

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
        item = {
            "pk": f"profile#{user_id}",
            "sk": "profile",
            **record,
            "email_lower": (email or "").strip().lower(),
        }
        await self._run(lambda: self.table.put_item(Item=item))
        return record

    async def update_profile(
        self, user_id: str, *, tier: str | None = None, credits: int | None = None
    ) -> bool:
        changes: dict[str, Any] = {}
        if tier is not None:
            changes["tier"] = tier
        if credits is not None:
            changes["credits"] = credits
        assignments = [f"#{name} = :{name}" for name in changes]
        if not assignments:
            return await self.get_profile(user_id) is not None

        try:
            await self._run(
                lambda: self.table.update_item(
                    Key={"pk": f"profile#{user_id}", "sk": "profile"},
                    UpdateExpression="SET " + ", ".join(assignments),
                    ConditionExpression="attribute_exists(pk)",
                    ExpressionAttributeNames={f"#{name}": name for name in changes},
                    ExpressionAttributeValues={f":{name}": v for name, v in changes.items()},
                )
            )
        except ClientError as e:
            if _is_conditional_failure(e):
                return False
            raise
        return True

    async def adjust_credits(self, user_id: str, delta: int) -> int | None:
        if delta < 0:
            condition = "attribute_exists(pk) AND #credits >= :need"
            values = {":delta": delta, ":zero": 0, ":need": -delta}
        else:
            condition = "attribute_exists(pk)"
            values = {":delta": delta, ":zero": 0}

        try:
            response = await self._run(
                lambda: self.table.update_item(
                    Key={"pk": f"profile#{user_id}", "sk": "profile"},
                    UpdateExpression="SET #credits = if_not_exists(#credits, :zero) + :delta",
                    ExpressionAttributeNames={"#credits": "credits"},
                    ConditionExpression=condition,
                    ExpressionAttributeValues=values,
                    ReturnValues="UPDATED_NEW",
                )
            )
        except ClientError as e:
            if _is_conditional_failure(e):
                return None
            raise
        return int(response["Attributes"]["credits"])

    # Archive

    async def _query_user(self, user_id: str, prefix: str, **extra: Any) -> list[dict[str, Any]]:
        def _query() -> list[dict[str, Any]]:
            kwargs: dict[str, Any] = {
                "KeyConditionExpression": Key("pk").eq(f"user#{user_id}")
                & Key("sk").begins_with(prefix),
                "ScanIndexForward": False,
                **extra,
            }
            items: list[dict[str, Any]] = []
            while True:
                response = self.table.query(**kwargs)
                items.extend(response.get("Items", []))
                if "LastEvaluatedKey" not in response:
                    return items
                kwargs["ExclusiveStartKey"] = response["LastEvaluatedKey"]

        return await self._run(_query)

    async def count_generations(self, user_id: str) -> int:
        def _count() -> int:
            response = self.table.query(
                KeyConditionExpression=Key("pk").eq(f"user#{user_id}")
                & Key("sk").begins_with("generation#"),
                Select="COUNT",
            )
            return int(response.get("Count", 0))

        return await self._run(_count)

    async def save_generation(self, record: GenerationRecord) -> None:
        item = {
            "pk": f"user#{record['user_id']}",
            "sk": f"generation#{record['created_at']}#{record['id']}",
            **record,
        }
        await self._run(lambda: self.table.put_item(Item=_to_dynamo(item)))

    async def list_generations(
        self, user_id: str, project_id: str | None = None
    ) -> list[GenerationRecord]:
        extra = {}
        if project_id is not None:
            extra["FilterExpression"] = Attr("project_id").eq(project_id)
        items = await self._query_user(user_id, "generation#", **extra)
        return [_generation(item) for item in items]

    async def delete_generation(
        self, user_id: str, generation_id: str
    ) -> GenerationRecord | None:
        items = await self._query_user(
            user_id, "generation#", FilterExpression=Attr("id").eq(generation_id)
        )
        if not items:
            return None
        item = items[0]
        await self._run(lambda: self.table.delete_item(Key={"pk": item["pk"], "sk": item["sk"]}))
        return _generation(item)

    async def create_project(self, record: ProjectRecord) -> None:
        item = {
            "pk": f"user#{record['user_id']}",
            "sk": f"project#{record['created_at']}#{record['id']}",
            **record,
        }
        await self._run(lambda: self.table.put_item(Item=item))

    async def get_project(self, user_id: str, project_id: str) -> ProjectRecord | None:
        items = await self._query_user(
            user_id, "project#", FilterExpression=Attr("id").eq(project_id)
        )
        return _project(items[0]) if items else None

    async def list_projects(self, user_id: str) -> list[ProjectRecord]:
        return [_project(item) for item in await self._query_user(user_id, "project#")]

    # Guest quota

    async def get_guest_usage(self, ip_address: str) -> GuestUsageRecord | None:
        response = await self._run(
            lambda: self.table.get_item(Key={"pk": f"guest#{ip_address}", "sk": "usage"})
        )
        item = response.get("Item")
        if not item:
            return None
        return {
            "ip_address": item["ip_address"],
            "usage_count": int(item["usage_count"]),
            "last_updated": item["last_updated"],
        }

    async def save_guest_usage(self, record: GuestUsageRecord) -> None:
        item = {"pk": f"guest#{record['ip_address']}", "sk": "usage", **record}
        await self._run(lambda: self.table.put_item(Item=item))

    async def health_check(self) -> bool:
        """Check if DynamoDB is accessible.

        Returns:
            True if DynamoDB is healthy, False otherwise.
        """
        try:
            await self._run(lambda: self.table.table_status)
            return True
        except (AttributeError, StorageError) as e:
            logger.warning(f"DynamoDB health check failed: {e}")
            return False


def _is_conditional_failure(error: Exception) -> bool:
    return (
        isinstance(error, ClientError)
        and error.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"
    )


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _to_dynamo(value: Any) -> Any:
    """Convert floats to Decimal, which boto3 requires for numbers."""
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: _to_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_to_dynamo(v) for v in value]
    return value


def _from_dynamo(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: _from_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_from_dynamo(v) for v in value]
    return value


def _profile(item: dict[str, Any]) -> ProfileRecord:
    credits = item.get("credits")
    return {
        "id": item["id"],
        "email": item.get("email"),
        "tier": item["tier"],
        "credits": int(credits) if credits is not None else None,
        "created_at": item.get("created_at", ""),
    }


def _project(item: dict[str, Any]) -> ProjectRecord:
    return {
        "id": item["id"],
        "user_id": item["user_id"],
        "name": item["name"],
        "created_at": item["created_at"],
    }


def _generation(item: dict[str, Any]) -> GenerationRecord:
    return {
        "id": item["id"],
        "user_id": item["user_id"],
        "project_id": item.get("project_id"),
        "image_url": item["image_url"],
        "image_key": item.get("image_key"),
        "config": _from_dynamo(item.get("config") or {}),
        "created_at": item["created_at"],
    }
