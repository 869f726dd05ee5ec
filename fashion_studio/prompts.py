"""Prompt construction for photoshoot generation requests."""

import random
import re

from .config import settings
from .models import LayoutMode, ModelVersion, PhotoshootOptions
from .providers import ImageRequest, InlineImage

STYLE_PROMPTS = {
    "Studio": "High Key Studio Lighting, Clean White Cyclorama, Commercial Look",
    "Urban": "Urban Editorial, Concrete Textures, Natural City Light, Streetwear Context",
    "Nature": "Outdoor Natural Environment, Soft Sunlight, Organic Background",
    "Coastal": "Coastal Golden Hour, Sand and Sky tones, Soft Breeze",
    "Luxury": "Modern Luxury Interior, Architectural Depth, Expensive Materials",
    "Chromatic": "Studio Color Gel Lighting, Neon Accent, High Contrast, Chromatic Aberration",
    "Minimalist": "Minimalist Brutalist Architecture, Sharp Shadows, Clean Lines",
    "Analog Film": "Analog Film Grain, Kodak Portra 400 aesthetic, Soft focus, Emotional",
    "Newton": "Helmut Newton Style, High Contrast Black and White, Powerful Stance, Voyeuristic",
    "Lindbergh": "Peter Lindbergh Style, Raw Realism, Cinematic Black and White, Emotional",
    "Leibovitz": "Annie Leibovitz Style, Dramatic Painterly Lighting, Environmental Portrait",
    "Avedon": "Richard Avedon Style, Minimalist White Background, Dynamic Motion",
    "LaChapelle": "David LaChapelle Style, Hyper-Realistic Pop Surrealism, Vibrant Saturation",
    "Testino": "Mario Testino Style, Glamorous, Vibrant, High Energy",
}

EXPRESSION_PROMPTS = {
    "Neutral": "Neutral Expression, High Fashion Pout, Detached",
    "Confident": "Confident Gaze, Strong Eye Contact, Powerful",
    "Fierce": "Fierce Intensity, Editorial Edge, Sharp",
    "Candid": "Laughing, Candid Moment, Genuine Smile, Relaxed",
    "Ethereal": "Ethereal, Soft Gaze, Dreamy, Serene",
}

POSES = [
    "Standing naturally, arms relaxed",
    "Walking towards camera, confident stride",
    "Leaning slightly against a wall",
    "Side profile, looking over shoulder",
    "Hands in pockets, relaxed stance",
    "Sitting on a stool",
    "Dynamic motion, fabric flowing",
    "Three-quarter view, hand on hip",
    "Arms crossed, powerful stance",
    "Walking away, turning head back",
    "Seated on floor, legs crossed",
    "Leaning forward",
    "Back to camera",
]
EYE_COLORS = ["Amber", "Deep Brown", "Steel Blue", "Emerald Green", "Hazel", "Dark Grey"]
FACE_SHAPES = [
    "Oval face",
    "Square jawline",
    "Heart-shaped face",
    "High cheekbones",
    "Soft features",
    "Defined jawline",
]
SKIN_DETAILS = ["Freckles", "Clear complexion", "Sun-kissed skin", "Dewy skin", "Mole on cheek"]

MAX_SEED = 1_000_000_000
DEFAULT_POSE = "Standing naturally"
DIPTYCH_INSTRUCTION = (
    "CRITICAL LAYOUT: Produce a professional diptych editorial split. "
    "Left: full-body action. Right: material fabric close-up."
)
IDENTITY_INSTRUCTION = "IDENTITY: Match the facial structure from reference EXACTLY."

_MIME_PATTERN = re.compile(r"^data:(.*);base64,")


def extract_base64(data_url: str) -> str:
    """Return the payload of a data URL, or the input when it has no header."""
    _, sep, payload = data_url.partition(",")
    return payload if sep and payload else data_url


def get_mime_type(data_url: str) -> str:
    match = _MIME_PATTERN.match(data_url)
    return match.group(1) if match else "image/jpeg"


def inline_image(data_url: str) -> InlineImage:
    return InlineImage(mime_type=get_mime_type(data_url), data=extract_base64(data_url))


def random_features(rng: random.Random | None = None) -> str:
    rng = rng or random.Random()
    return f"{rng.choice(EYE_COLORS)} eyes, {rng.choice(FACE_SHAPES)}, {rng.choice(SKIN_DETAILS)}"


def prepare_options(
    options: PhotoshootOptions,
    rng: random.Random | None = None,
) -> PhotoshootOptions:
    """Fill in seed, pose and model features for a fresh generation.

    A seed supplied by the caller is kept so a shot can be reproduced. Model
    features survive only while a reference model image locks the identity;
    otherwise every generation draws a new face.
    """
    rng = rng or random.Random()
    seed = options.seed if options.seed is not None else rng.randrange(MAX_SEED)
    pose = rng.choice(POSES) if options.auto_pose or not options.pose else options.pose
    if options.reference_model_image:
        features = options.model_features or random_features(rng)
    else:
        features = random_features(rng)
    return options.model_copy(update={"seed": seed, "pose": pose, "model_features": features})


def _wardrobe(options: PhotoshootOptions) -> tuple[list[str], list[InlineImage]]:
    lines: list[str] = []
    images: list[InlineImage] = []
    for role, item in options.outfit.slots():
        if not item.has_content():
            continue
        line = f"- {role.upper()}: {item.garment_type.strip() or role}"
        if item.description.strip():
            line += f". Details: {item.description.strip()}"
        if item.size_chart_details.strip():
            line += f". Size chart: {item.size_chart_details.strip()}"
        lines.append(line)
        images.extend(inline_image(image) for image in item.images)
        if item.size_chart:
            images.append(inline_image(item.size_chart))
    return lines, images


def build_prompt(options: PhotoshootOptions) -> tuple[str, list[InlineImage]]:
    """Render the text prompt and collect the inline reference images."""
    wardrobe, images = _wardrobe(options)
    if options.reference_model_image:
        images.append(inline_image(options.reference_model_image))

    style = STYLE_PROMPTS.get(options.style.value, options.style.value)
    expression = EXPRESSION_PROMPTS.get(
        options.facial_expression.value, options.facial_expression.value
    )
    if options.height:
        height = f"Model Height: {options.height} {options.measurement_unit.value}"
    else:
        height = "Height: Standard Model Height"
    scenery = f" SCENERY & ENVIRONMENT: {options.scene_details}" if options.scene_details else ""

    lines = ["Professional high-fashion lookbook photograph."]
    if options.is_model_locked:
        lines.append(IDENTITY_INSTRUCTION)
    if options.layout == LayoutMode.DIPTYCH:
        lines.append(DIPTYCH_INSTRUCTION)
    lines.extend(
        [
            f"ART DIRECTION: {style}.{scenery}",
            f"MODEL IDENTITY: {options.sex.value}, {options.age.value}, {options.ethnicity.value}. "
            f"Hair: {options.hair_color}, {options.hair_style}. Expression: {expression}. "
            f"Stats: {height}, Body Type: {options.body_type.value}.",
            f"Additional Features: {options.model_features or 'Standard'}",
            "WARDROBE:",
            *wardrobe,
            f"POSE & STAGING: {options.pose or DEFAULT_POSE}",
        ]
    )
    return "\n".join(lines), images


def build_image_request(options: PhotoshootOptions) -> ImageRequest:
    """Assemble the provider request, choosing the model and its output settings."""
    prompt, images = build_prompt(options)
    if options.model_version == ModelVersion.PRO:
        return ImageRequest(
            prompt=prompt,
            images=images,
            model=settings.pro_model,
            aspect_ratio=options.aspect_ratio.value,
            seed=options.seed,
            image_size="4K" if options.enable_4k else "2K",
            use_search=True,
        )
    return ImageRequest(
        prompt=prompt,
        images=images,
        model=settings.flash_model,
        aspect_ratio=options.aspect_ratio.value,
        seed=options.seed,
    )
