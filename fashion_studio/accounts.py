"""User profiles, starter credits and subscription changes."""

from dataclasses import dataclass

from loguru import logger

from .config import settings
from .models import Profile, SubscriptionTier
from .storage import Repository
from .types import ProfileRecord

PLACEHOLDER_EMAIL = "unknown@user.com"


@dataclass(frozen=True)
class Principal:
    """Authenticated caller resolved from a bearer token."""

    user_id: str
    email: str | None = None


def display_name(email: str | None) -> str:
    if email and "@" in email:
        return email.split("@")[0]
    return "Studio User"


def parse_tier(value: str | None) -> SubscriptionTier:
    """Stored tier name, falling back to Free for values this build does not know."""
    try:
        return SubscriptionTier(value)
    except ValueError:
        logger.warning(f"Unknown subscription tier {value!r}, treating as Free")
        return SubscriptionTier.FREE


def to_profile(record: ProfileRecord) -> Profile:
    return Profile(
        id=record["id"],
        email=record["email"],
        tier=parse_tier(record["tier"]),
        credits=record["credits"] or 0,
        username=display_name(record["email"]),
    )


class AccountService:
    """Profile lifecycle on top of the repository."""

    def __init__(self, repository: Repository, starter_credits: int | None = None) -> None:
        self.repository = repository
        self.starter_credits = (
            settings.starter_credits if starter_credits is None else starter_credits
        )

    async def get_or_create_profile(self, principal: Principal) -> ProfileRecord:
        record = await self.repository.get_profile(principal.user_id)
        if record is None:
            logger.info(f"Creating profile for {principal.user_id[:8]}...")
            record = await self.repository.create_profile(
                principal.user_id,
                principal.email,
                SubscriptionTier.FREE.value,
                self.starter_credits,
            )
        return record

    async def get_profile(self, principal: Principal) -> Profile:
        return to_profile(await self.get_or_create_profile(principal))

    async def ensure_starter_credits(self, principal: Principal) -> tuple[Profile, bool]:
        """Grant the starter allowance to new or never-used free accounts.

        Returns the profile and whether anything was changed.
        """
        record = await self.repository.get_profile(principal.user_id)
        if record is None:
            record = await self.repository.create_profile(
                principal.user_id,
                principal.email,
                SubscriptionTier.FREE.value,
                self.starter_credits,
            )
            logger.info(f"Starter profile created for {principal.user_id[:8]}...")
            return to_profile(record), True

        credits = record["credits"]
        if (
            record["tier"] == SubscriptionTier.FREE.value
            and (credits is None or credits < self.starter_credits)
            and await self.repository.count_generations(principal.user_id) == 0
        ):
            await self.repository.update_profile(principal.user_id, credits=self.starter_credits)
            record = {**record, "credits": self.starter_credits}
            logger.info(f"Starter credits topped up for {principal.user_id[:8]}...")
            return to_profile(record), True

        return to_profile(record), False

    async def apply_subscription(
        self,
        user_id: str,
        tier: SubscriptionTier,
        credits: int | None,
        email: str | None = None,
    ) -> None:
        """Set tier (and credits when given), inserting the profile if it is missing."""
        if await self.repository.update_profile(user_id, tier=tier.value, credits=credits):
            return
        logger.info(f"Profile {user_id[:8]}... missing, inserting")
        await self.repository.create_profile(
            user_id, email or PLACEHOLDER_EMAIL, tier.value, credits or 0
        )
