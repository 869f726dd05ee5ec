"""Domain-specific exceptions for the Fashion Studio API."""

from typing import Any


class StudioAPIError(Exception):
    """Base exception for all Fashion Studio API errors."""

    def details(self) -> dict[str, Any]:
        """Extra fields included in the error response body."""
        return {}


class ImageProviderError(StudioAPIError):
    """Error related to image generation providers."""


class NoImageReturnedError(ImageProviderError):
    """Provider answered but the response carried no image."""

    def __init__(self) -> None:
        super().__init__("Generation completed but no image was returned. Check safety filters.")


class ServiceUnavailableError(ImageProviderError):
    """Generation is temporarily disabled after repeated provider failures."""


class StorageError(StudioAPIError):
    """Error related to storage operations."""


class ValidationError(StudioAPIError):
    """Error related to input validation (not Pydantic)."""


class ConfigurationError(StudioAPIError):
    """Error related to configuration issues."""


class AuthenticationError(StudioAPIError):
    """Missing or invalid credentials."""


class AuthorizationError(StudioAPIError):
    """Caller is authenticated but may not act on the resource."""


class NotFoundError(StudioAPIError):
    """Requested record does not exist for the caller."""


class PaymentProviderError(StudioAPIError):
    """Error raised by the checkout provider."""


class InsufficientCreditsError(StudioAPIError):
    """Signed-in user cannot afford the requested generation."""

    def __init__(self, required: int, available: int) -> None:
        super().__init__(f"Insufficient credits: {required} required, {available} available")
        self.required = required
        self.available = available

    def details(self) -> dict[str, Any]:
        return {"required": self.required, "available": self.available}


class GuestQuotaExceededError(StudioAPIError):
    """Guest IP has used its generation allowance for the current window."""

    def __init__(self, limit: int, window_hours: int) -> None:
        super().__init__(
            f"Guest limit reached ({limit} generations per {window_hours} hours). "
            "Sign up to keep creating."
        )
        self.limit = limit
        self.window_hours = window_hours

    def details(self) -> dict[str, Any]:
        return {"remaining": 0, "limit": self.limit}


class TierRestrictionError(StudioAPIError):
    """Requested feature is not included in the caller's subscription tier."""

    def __init__(self, feature: str, required_tier: str, current_tier: str) -> None:
        super().__init__(f"{feature} requires the {required_tier} plan or higher")
        self.feature = feature
        self.required_tier = required_tier
        self.current_tier = current_tier

    def details(self) -> dict[str, Any]:
        return {
            "feature": self.feature,
            "required_tier": self.required_tier,
            "current_tier": self.current_tier,
        }
