"""Tests for the generation pipeline and circuit breaker."""

import random

import pytest
from mock_provider import PNG_DATA_URL, MockImageProvider

from fashion_studio.accounts import AccountService, Principal
from fashion_studio.exceptions import (
    ConfigurationError,
    GuestQuotaExceededError,
    ImageProviderError,
    InsufficientCreditsError,
    NoImageReturnedError,
    ServiceUnavailableError,
    TierRestrictionError,
    ValidationError,
)
from fashion_studio.generation import CircuitBreaker, CircuitState, GenerationService
from fashion_studio.models import LayoutMode, ModelVersion, PhotoshootOptions, SubscriptionTier
from fashion_studio.quota import GuestQuota

GUEST = "198.51.100.20"
USER = Principal(user_id="7d3e1f0a-9b8c-4d7e-a6f5-e4d3c2b1a098", email="lin@example.com")


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


async def _fail():
    raise ImageProviderError("boom")


async def _ok():
    return "ok"


class TestCircuitBreaker:
    @pytest.mark.asyncio
    async def test_opens_after_threshold(self):
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=30, clock=FakeClock())

        for _ in range(2):
            with pytest.raises(ImageProviderError):
                await breaker.call(_fail)

        assert breaker.state == CircuitState.OPEN
        with pytest.raises(ServiceUnavailableError):
            await breaker.call(_ok)

    @pytest.mark.asyncio
    async def test_half_open_recovers(self):
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=30, clock=clock)
        with pytest.raises(ImageProviderError):
            await breaker.call(_fail)

        clock.now = 31
        assert await breaker.call(_ok) == "ok"
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self):
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=30, clock=clock)
        with pytest.raises(ImageProviderError):
            await breaker.call(_fail)

        clock.now = 45
        with pytest.raises(ImageProviderError):
            await breaker.call(_fail)
        assert breaker.state == CircuitState.OPEN
        assert breaker.opened_at == 45

    @pytest.mark.asyncio
    async def test_content_errors_do_not_count(self):
        breaker = CircuitBreaker(failure_threshold=1)

        async def empty():
            raise NoImageReturnedError()

        with pytest.raises(NoImageReturnedError):
            await breaker.call(empty)
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0


@pytest.fixture
def provider() -> MockImageProvider:
    return MockImageProvider()


@pytest.fixture
def service(repository, provider) -> GenerationService:
    return GenerationService(
        AccountService(repository, starter_credits=50),
        GuestQuota(repository),
        provider,
        rng=random.Random(3),
    )


class TestGuestGeneration:
    @pytest.mark.asyncio
    async def test_success_records_usage(self, service, provider, options, repository):
        result = await service.generate(options, None, GUEST)

        assert result["image"] == PNG_DATA_URL
        assert result["cost"] == 1
        assert result["guest_remaining"] == 2
        assert "credits_remaining" not in result
        assert result["pose"]
        assert 0 <= result["seed"] < 1_000_000_000
        assert provider.call_count == 1
        assert (await repository.get_guest_usage(GUEST))["usage_count"] == 1

    @pytest.mark.asyncio
    async def test_exhausted_quota_blocks_provider(self, service, provider, options):
        for _ in range(3):
            await service.generate(options, None, GUEST)

        with pytest.raises(GuestQuotaExceededError):
            await service.generate(options, None, GUEST)
        assert provider.call_count == 3

    @pytest.mark.asyncio
    async def test_failure_does_not_consume_quota(self, service, provider, options, repository):
        provider.set_failure(True)

        with pytest.raises(ImageProviderError):
            await service.generate(options, None, GUEST)

        assert await repository.get_guest_usage(GUEST) is None

    @pytest.mark.asyncio
    async def test_guest_cannot_use_pro(self, service, provider, options):
        pro = options.model_copy(update={"model_version": ModelVersion.PRO})
        with pytest.raises(TierRestrictionError) as exc_info:
            await service.generate(pro, None, GUEST)
        assert exc_info.value.feature == "Pro model"
        assert provider.call_count == 0

    @pytest.mark.asyncio
    async def test_empty_outfit_rejected(self, service, provider):
        with pytest.raises(ValidationError):
            await service.generate(PhotoshootOptions(), None, GUEST)
        assert provider.call_count == 0


class TestUserGeneration:
    @pytest.mark.asyncio
    async def test_credits_deducted(self, service, options, repository):
        result = await service.generate(options, USER, GUEST)

        assert result["credits_remaining"] == 49
        assert "guest_remaining" not in result
        assert (await repository.get_profile(USER.user_id))["credits"] == 49
        assert await repository.get_guest_usage(GUEST) is None

    @pytest.mark.asyncio
    async def test_pro_request_for_creator(self, service, provider, options, repository):
        await repository.create_profile(USER.user_id, USER.email, "Creator", 100)
        pro = options.model_copy(update={"model_version": ModelVersion.PRO})

        result = await service.generate(pro, USER, GUEST)

        assert result["cost"] == 10
        assert result["credits_remaining"] == 90
        assert provider.requests[0].image_size == "2K"

    @pytest.mark.asyncio
    async def test_insufficient_credits(self, service, provider, options, repository):
        await repository.create_profile(USER.user_id, USER.email, "Creator", 4)
        pro = options.model_copy(update={"model_version": ModelVersion.PRO})

        with pytest.raises(InsufficientCreditsError) as exc_info:
            await service.generate(pro, USER, GUEST)

        assert exc_info.value.details() == {"required": 10, "available": 4}
        assert provider.call_count == 0
        assert (await repository.get_profile(USER.user_id))["credits"] == 4

    @pytest.mark.asyncio
    async def test_refund_on_failure(self, service, provider, options, repository):
        await repository.create_profile(USER.user_id, USER.email, "Free", 5)
        provider.set_failure(True, NoImageReturnedError())

        with pytest.raises(NoImageReturnedError):
            await service.generate(options, USER, GUEST)

        assert (await repository.get_profile(USER.user_id))["credits"] == 5

    @pytest.mark.asyncio
    async def test_configuration_error_propagates(self, service, provider, options, repository):
        await repository.create_profile(USER.user_id, USER.email, "Free", 5)
        provider.set_failure(True, ConfigurationError("Server configuration error: Missing API Key."))

        with pytest.raises(ConfigurationError):
            await service.generate(options, USER, GUEST)
        assert (await repository.get_profile(USER.user_id))["credits"] == 5


class TestQuote:
    @pytest.mark.asyncio
    async def test_guest_quote(self, service, options):
        quote = await service.quote(options, None, GUEST)
        assert quote.cost == 1
        assert quote.tier == SubscriptionTier.FREE
        assert quote.balance == 3
        assert quote.affordable is True
        assert quote.locked_features == []

    @pytest.mark.asyncio
    async def test_locked_features_listed(self, service, options, repository):
        await repository.create_profile(USER.user_id, USER.email, "Starter", 100)
        request = options.model_copy(update={"model_version": ModelVersion.PRO, "enable_4k": True})

        quote = await service.quote(request, USER, GUEST)

        assert quote.cost == 15
        assert quote.locked_features == ["Pro model", "4K output"]
        assert quote.affordable is False

    @pytest.mark.asyncio
    async def test_unaffordable(self, service, options, repository):
        await repository.create_profile(USER.user_id, USER.email, "Studio", 3)
        request = options.model_copy(update={"layout": LayoutMode.DIPTYCH})

        quote = await service.quote(request, USER, GUEST)

        assert quote.cost == 6
        assert quote.balance == 3
        assert quote.affordable is False

    @pytest.mark.asyncio
    async def test_unknown_stored_tier_treated_as_free(self, service, options, repository):
        await repository.create_profile(USER.user_id, USER.email, "Legacy", 40)

        quote = await service.quote(options, USER, GUEST)

        assert quote.tier == SubscriptionTier.FREE
        assert quote.balance == 40


@pytest.mark.asyncio
async def test_health_check(service, provider):
    assert await service.health_check() == {"storage": True, "provider": True}
    provider.set_failure(True)
    assert (await service.health_check())["provider"] is False
