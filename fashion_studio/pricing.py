"""Generation cost and subscription tier entitlements."""

from dataclasses import dataclass

from .exceptions import TierRestrictionError
from .models import (
    STANDARD_STYLES,
    BodyType,
    LayoutMode,
    ModelVersion,
    PhotoshootOptions,
    SubscriptionTier,
)

TIER_RANK = {
    SubscriptionTier.FREE: 0,
    SubscriptionTier.STARTER: 1,
    SubscriptionTier.CREATOR: 2,
    SubscriptionTier.STUDIO: 3,
}


@dataclass(frozen=True)
class LockedFeature:
    name: str
    required_tier: SubscriptionTier


def get_generation_cost(options: PhotoshootOptions) -> int:
    """Credits charged for one generation with these options."""
    cost = 1
    if options.model_version == ModelVersion.PRO:
        cost = 10
    if options.enable_4k:
        cost += 5
    if options.layout == LayoutMode.DIPTYCH:
        cost += 5
    return cost


def has_access(tier: SubscriptionTier, required: SubscriptionTier) -> bool:
    return TIER_RANK[tier] >= TIER_RANK[required]


def requested_features(options: PhotoshootOptions) -> list[LockedFeature]:
    """Gated features used by a configuration, in the order they are checked."""
    features = []
    if not options.auto_pose and options.pose:
        features.append(LockedFeature("Manual pose control", SubscriptionTier.STARTER))
    if options.height or options.body_type != BodyType.STANDARD:
        features.append(LockedFeature("Size control", SubscriptionTier.STARTER))
    if options.model_version == ModelVersion.PRO:
        features.append(LockedFeature("Pro model", SubscriptionTier.CREATOR))
    if options.style not in STANDARD_STYLES:
        features.append(LockedFeature(f"{options.style} style", SubscriptionTier.CREATOR))
    if options.enable_4k:
        features.append(LockedFeature("4K output", SubscriptionTier.STUDIO))
    if options.layout == LayoutMode.DIPTYCH:
        features.append(LockedFeature("Diptych layout", SubscriptionTier.STUDIO))
    return features


def locked_features(options: PhotoshootOptions, tier: SubscriptionTier) -> list[LockedFeature]:
    return [f for f in requested_features(options) if not has_access(tier, f.required_tier)]


def check_entitlements(options: PhotoshootOptions, tier: SubscriptionTier) -> None:
    """Raise TierRestrictionError for the first feature the tier does not include."""
    locked = locked_features(options, tier)
    if locked:
        feature = locked[0]
        raise TierRestrictionError(feature.name, feature.required_tier.value, tier.value)
