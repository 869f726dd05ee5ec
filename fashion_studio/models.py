"""Data models using Pydantic."""

import base64
import binascii
import re
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from pydantic_core import PydanticCustomError

DATA_URL_PATTERN = re.compile(r"^data:image/[\w.+-]+;base64,")
MAX_IMAGES_PER_SLOT = 6


class ModelSex(StrEnum):
    FEMALE = "Female"
    MALE = "Male"
    NON_BINARY = "Non-Binary"


class ModelEthnicity(StrEnum):
    ASIAN = "Asian"
    BLACK = "Black"
    CAUCASIAN = "Caucasian"
    HISPANIC = "Hispanic"
    SOUTH_ASIAN = "South Asian"
    MIDDLE_EASTERN = "Middle Eastern"
    MIXED = "Mixed"


class ModelAge(StrEnum):
    TEEN = "Teen (18-19)"
    YOUNG_ADULT = "Young Adult (20-29)"
    ADULT = "Adult (30-45)"
    MATURE = "Mature (46-60)"
    SENIOR = "Senior (60+)"


class FacialExpression(StrEnum):
    NEUTRAL = "Neutral"
    CONFIDENT = "Confident"
    FIERCE = "Fierce"
    CANDID = "Candid"
    ETHEREAL = "Ethereal"


class PhotoStyle(StrEnum):
    # Standard
    STUDIO = "Studio"
    URBAN = "Urban"
    NATURE = "Nature"
    COASTAL = "Coastal"
    # Editorial
    LUXURY = "Luxury"
    CHROMATIC = "Chromatic"
    MINIMALIST = "Minimalist"
    FILM = "Analog Film"
    # Photographer references
    NEWTON = "Newton"
    LINDBERGH = "Lindbergh"
    LEIBOVITZ = "Leibovitz"
    AVEDON = "Avedon"
    LACHAPELLE = "LaChapelle"
    TESTINO = "Testino"


STANDARD_STYLES = frozenset(
    {PhotoStyle.STUDIO, PhotoStyle.URBAN, PhotoStyle.NATURE, PhotoStyle.COASTAL}
)


class ModelVersion(StrEnum):
    FLASH = "Standard (Gemini 2.5 Flash)"
    PRO = "Pro (Gemini 3 Pro)"


class BodyType(StrEnum):
    STANDARD = "Standard"
    CURVY = "Curvy"
    PETITE = "Petite"
    ATHLETIC = "Athletic"
    SLIM = "Slim"


class MeasurementUnit(StrEnum):
    CM = "cm"
    INCH = "in"


class AspectRatio(StrEnum):
    SQUARE = "1:1"
    PORTRAIT = "3:4"
    LANDSCAPE = "4:3"
    TALL = "9:16"
    WIDE = "16:9"


class LayoutMode(StrEnum):
    SINGLE = "Single"
    DIPTYCH = "Diptych"


class SubscriptionTier(StrEnum):
    FREE = "Free"
    STARTER = "Starter"
    CREATOR = "Creator"
    STUDIO = "Studio"


class CamelModel(BaseModel):
    """Base model accepting and emitting the camelCase wire format."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        protected_namespaces=(),
    )


def _validate_image(value: str) -> str:
    value = value.strip()
    if not value:
        raise PydanticCustomError("empty_image", "Image data cannot be empty")
    if value.startswith("data:") and not DATA_URL_PATTERN.match(value):
        raise PydanticCustomError(
            "invalid_data_url",
            "Images must be base64 encoded image data URLs",
            {"prefix": value[:30]},
        )
    payload = value.split(",", 1)[1] if value.startswith("data:") else value
    try:
        decoded = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        decoded = b""
    if not decoded:
        raise PydanticCustomError("invalid_base64", "Images must contain valid base64 data")
    return value


class OutfitItem(CamelModel):
    """One wardrobe slot."""

    garment_type: str = Field("", max_length=200)
    description: str = Field("", max_length=2000)
    images: list[str] = Field(default_factory=list, max_length=MAX_IMAGES_PER_SLOT)
    size_chart: str | None = None
    size_chart_details: str = Field("", max_length=2000)

    @field_validator("images")
    @classmethod
    def validate_images(cls, value: list[str]) -> list[str]:
        return [_validate_image(image) for image in value]

    @field_validator("size_chart")
    @classmethod
    def validate_size_chart(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return _validate_image(value)

    def has_content(self) -> bool:
        """Check whether the slot contributes anything to the shoot."""
        return bool(self.images or self.description.strip() or self.garment_type.strip())


class OutfitDetails(CamelModel):
    top: OutfitItem = Field(default_factory=OutfitItem)
    bottom: OutfitItem = Field(default_factory=OutfitItem)
    shoes: OutfitItem = Field(default_factory=OutfitItem)
    accessories: OutfitItem = Field(default_factory=OutfitItem)

    def slots(self) -> list[tuple[str, OutfitItem]]:
        """Slots in prompt order with their wardrobe role names."""
        return [
            ("Top", self.top),
            ("Bottoms", self.bottom),
            ("Shoes", self.shoes),
            ("Accessories", self.accessories),
        ]

    def has_content(self) -> bool:
        return any(item.has_content() for _, item in self.slots())


class PhotoshootOptions(CamelModel):
    """Full photoshoot configuration as submitted by the studio UI."""

    sex: ModelSex = ModelSex.FEMALE
    ethnicity: ModelEthnicity = ModelEthnicity.MIXED
    age: ModelAge = ModelAge.YOUNG_ADULT
    facial_expression: FacialExpression = FacialExpression.NEUTRAL
    hair_color: str = Field("Jet Black", max_length=100)
    hair_style: str = Field("Straight Sleek", max_length=100)

    style: PhotoStyle = PhotoStyle.STUDIO
    scene_details: str = Field("", max_length=1000)
    model_version: ModelVersion = ModelVersion.FLASH
    aspect_ratio: AspectRatio = AspectRatio.PORTRAIT
    enable_4k: bool = Field(False, alias="enable4K")
    layout: LayoutMode = LayoutMode.SINGLE

    height: str = Field("", max_length=20)
    measurement_unit: MeasurementUnit = MeasurementUnit.CM
    body_type: BodyType = BodyType.STANDARD

    outfit: OutfitDetails = Field(default_factory=OutfitDetails)

    is_model_locked: bool = False
    auto_pose: bool = True
    seed: int | None = Field(None, ge=0, lt=1_000_000_000)
    pose: str | None = Field(None, max_length=300)
    model_features: str | None = Field(None, max_length=500)
    reference_model_image: str | None = None

    @field_validator("height", "scene_details", mode="before")
    @classmethod
    def strip_text(cls, value: object) -> object:
        if value is None:
            return ""
        return value.strip() if isinstance(value, str) else value

    @field_validator("reference_model_image")
    @classmethod
    def validate_reference(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return _validate_image(value)


class GenerateResponse(CamelModel):
    """Result of a generation request."""

    image: str
    cost: int
    model: str
    seed: int
    pose: str
    model_features: str
    credits_remaining: int | None = None
    guest_remaining: int | None = None


class QuoteResponse(CamelModel):
    cost: int
    tier: SubscriptionTier
    locked_features: list[str]
    balance: int
    affordable: bool


class Profile(BaseModel):
    id: str
    email: str | None = None
    tier: SubscriptionTier = SubscriptionTier.FREE
    credits: int = 0
    username: str = "Studio User"


class StarterCreditsRequest(CamelModel):
    user_id: str | None = None
    email: str | None = None


class StarterCreditsResponse(BaseModel):
    profile: Profile
    updated: bool


class CheckoutRequest(CamelModel):
    price_id: str = Field(..., min_length=1, max_length=200)
    user_id: str | None = None
    email: str | None = None


class CheckoutResponse(CamelModel):
    session_id: str


class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)

    @field_validator("name", mode="before")
    @classmethod
    def validate_name(cls, value: str) -> str:
        if not value or not str(value).strip():
            raise PydanticCustomError("empty_name", "Project name cannot be empty", {"input": value})
        return str(value).strip()


class GenerationCreate(CamelModel):
    """Request to archive a generated image."""

    image: str = Field(..., min_length=1)
    project_id: str | None = None
    config: dict = Field(default_factory=dict)
