"""Per-IP guest generation quota."""

from collections.abc import Mapping
from datetime import UTC, datetime, timedelta

from loguru import logger

from .exceptions import GuestQuotaExceededError, StorageError
from .storage import Repository
from .types import GuestUsageRecord

LOCALHOST_ADDRESSES = frozenset({"127.0.0.1", "::1"})


def extract_client_ip(headers: Mapping[str, str], peer: str | None) -> str:
    """Resolve the caller IP from X-Forwarded-For, falling back to the socket peer."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return peer or "unknown"


class GuestQuota:
    """Anonymous allowance of N generations per rolling window, one row per IP.

    The availability check and the usage record are separate store calls, so
    requests already in flight when the last slot is taken can each complete.
    Later requests from the IP are refused once the count reaches the limit.
    """

    def __init__(
        self,
        repository: Repository,
        limit: int = 3,
        window: timedelta = timedelta(hours=24),
        localhost_bypass: bool = True,
    ) -> None:
        self.repository = repository
        self.limit = limit
        self.window = window
        self.localhost_bypass = localhost_bypass

    def is_exempt(self, ip_address: str) -> bool:
        return self.localhost_bypass and ip_address in LOCALHOST_ADDRESSES

    def _expired(self, record: GuestUsageRecord, now: datetime) -> bool:
        last_updated = datetime.fromisoformat(record["last_updated"])
        if last_updated.tzinfo is None:
            last_updated = last_updated.replace(tzinfo=UTC)
        return now - last_updated > self.window

    async def remaining(self, ip_address: str, now: datetime | None = None) -> int:
        """Generations left in the current window. Never writes."""
        if self.is_exempt(ip_address):
            return self.limit
        now = now or datetime.now(UTC)
        record = await self.repository.get_guest_usage(ip_address)
        if record is None or self._expired(record, now):
            return self.limit
        return max(0, self.limit - record["usage_count"])

    async def status(self, ip_address: str) -> int:
        """Remaining allowance for display, reporting zero when the store fails."""
        try:
            return await self.remaining(ip_address)
        except Exception as e:  # noqa: BLE001
            logger.error(f"Guest status lookup failed for {ip_address}: {e}")
            return 0

    async def ensure_available(self, ip_address: str) -> int:
        """Raise GuestQuotaExceededError when the IP has nothing left."""
        try:
            left = await self.remaining(ip_address)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Guest quota lookup failed: {e}") from e
        if left <= 0:
            logger.info(f"Guest quota exhausted for {ip_address}")
            raise GuestQuotaExceededError(self.limit, int(self.window.total_seconds() // 3600))
        return left

    async def record_usage(self, ip_address: str, now: datetime | None = None) -> int:
        """Count one successful generation and return what is left."""
        if self.is_exempt(ip_address):
            return self.limit
        now = now or datetime.now(UTC)
        try:
            record = await self.repository.get_guest_usage(ip_address)
            if record is None or self._expired(record, now):
                count = 1
            else:
                count = record["usage_count"] + 1
            await self.repository.save_guest_usage(
                {"ip_address": ip_address, "usage_count": count, "last_updated": now.isoformat()}
            )
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Guest quota update failed: {e}") from e
        return max(0, self.limit - count)
