"""Credit-gated photoshoot generation pipeline."""

import random
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TypeVar

from loguru import logger

from .accounts import AccountService, Principal, parse_tier
from .exceptions import (
    ConfigurationError,
    InsufficientCreditsError,
    NoImageReturnedError,
    ServiceUnavailableError,
    StorageError,
    ValidationError,
)
from .models import PhotoshootOptions, QuoteResponse, SubscriptionTier
from .pricing import check_entitlements, get_generation_cost, locked_features
from .prompts import build_image_request, prepare_options
from .providers import ImageProvider
from .quota import GuestQuota
from .types import GenerationResult

T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Stop calling a failing provider for a while.

    States: CLOSED (normal), OPEN (rejecting), HALF_OPEN (one trial call).
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.clock = clock
        self.failure_count = 0
        self.opened_at: float | None = None
        self.state = CircuitState.CLOSED

    async def call(self, func: Callable[[], Awaitable[T]]) -> T:
        if self.state == CircuitState.OPEN:
            if self.opened_at is not None and self.clock() - self.opened_at >= self.recovery_timeout:
                self.state = CircuitState.HALF_OPEN
                logger.info("Circuit breaker entering HALF_OPEN state")
            else:
                raise ServiceUnavailableError(
                    "Image generation is temporarily unavailable. Please try again shortly."
                )

        try:
            result = await func()
        except (ValidationError, NoImageReturnedError, ConfigurationError):
            raise
        except Exception:
            self.failure_count += 1
            if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
                self.state = CircuitState.OPEN
                self.opened_at = self.clock()
                logger.warning(f"Circuit breaker OPEN after {self.failure_count} failures")
            raise

        if self.state == CircuitState.HALF_OPEN:
            logger.info("Circuit breaker recovered to CLOSED state")
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        return result


class GenerationService:
    """Authorize, charge and run one photoshoot generation."""

    def __init__(
        self,
        accounts: AccountService,
        quota: GuestQuota,
        provider: ImageProvider,
        breaker: CircuitBreaker | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.accounts = accounts
        self.quota = quota
        self.provider = provider
        self.breaker = breaker or CircuitBreaker()
        self.rng = rng or random.Random()

    async def resolve_tier(self, principal: Principal | None) -> tuple[SubscriptionTier, int]:
        """Tier and credit balance for the caller. Guests are Free with no balance."""
        if principal is None:
            return SubscriptionTier.FREE, 0
        profile = await self.accounts.get_or_create_profile(principal)
        return parse_tier(profile["tier"]), profile["credits"] or 0

    async def quote(
        self,
        options: PhotoshootOptions,
        principal: Principal | None,
        client_ip: str,
    ) -> QuoteResponse:
        tier, balance = await self.resolve_tier(principal)
        if principal is None:
            balance = await self.quota.status(client_ip)
        cost = get_generation_cost(options)
        locked = locked_features(options, tier)
        affordable = balance > 0 if principal is None else balance >= cost
        return QuoteResponse(
            cost=cost,
            tier=tier,
            locked_features=[f.name for f in locked],
            balance=balance,
            affordable=affordable and not locked,
        )

    async def generate(
        self,
        options: PhotoshootOptions,
        principal: Principal | None,
        client_ip: str,
    ) -> GenerationResult:
        """Run the pipeline.

        Guests are checked against their IP allowance before the provider call
        and charged only after an image comes back. Signed-in users have the
        cost reserved up front and refunded if generation fails.
        """
        if not options.outfit.has_content():
            raise ValidationError("Add at least one garment image, type or description")

        tier, _ = await self.resolve_tier(principal)
        check_entitlements(options, tier)
        cost = get_generation_cost(options)

        if principal is None:
            await self.quota.ensure_available(client_ip)
        else:
            await self._reserve(principal, cost)

        prepared = prepare_options(options, self.rng)
        request = build_image_request(prepared)
        caller = principal.user_id[:8] + "..." if principal else f"guest {client_ip}"
        logger.info(f"Generating with {request.model} for {caller} (cost {cost})")

        try:
            generated = await self.breaker.call(lambda: self.provider.generate(request))
        except Exception:
            if principal is not None:
                await self._refund(principal, cost)
            raise

        result: GenerationResult = {
            "image": generated.image,
            "cost": cost,
            "model": generated.model,
            "seed": prepared.seed,  # type: ignore[typeddict-item]
            "pose": prepared.pose or "",
            "model_features": prepared.model_features or "",
        }
        if principal is None:
            try:
                result["guest_remaining"] = await self.quota.record_usage(client_ip)
            except StorageError as e:
                logger.error(f"Could not record guest usage for {client_ip}: {e}")
                result["guest_remaining"] = 0
        else:
            profile = await self.accounts.repository.get_profile(principal.user_id)
            result["credits_remaining"] = (profile["credits"] or 0) if profile else 0
        return result

    async def _reserve(self, principal: Principal, cost: int) -> None:
        balance = await self.accounts.repository.adjust_credits(principal.user_id, -cost)
        if balance is None:
            profile = await self.accounts.repository.get_profile(principal.user_id)
            available = (profile["credits"] or 0) if profile else 0
            raise InsufficientCreditsError(required=cost, available=available)

    async def _refund(self, principal: Principal, cost: int) -> None:
        try:
            await self.accounts.repository.adjust_credits(principal.user_id, cost)
            logger.info(f"Refunded {cost} credits to {principal.user_id[:8]}...")
        except Exception as e:  # noqa: BLE001
            logger.error(f"Refund of {cost} credits failed for {principal.user_id}: {e}")

    async def health_check(self) -> dict[str, bool]:
        try:
            storage = await self.accounts.repository.health_check()
        except Exception:  # noqa: BLE001
            storage = False
        try:
            provider = await self.provider.health_check()
        except Exception:  # noqa: BLE001
            provider = False
        return {"storage": storage, "provider": provider}
