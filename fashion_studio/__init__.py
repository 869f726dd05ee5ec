"""Fashion Studio API - credit-gated AI fashion photoshoot generation."""

from .api import app, create_app
from .generation import GenerationService
from .models import PhotoshootOptions
from .providers import create_image_provider

__version__ = "1.0.0"

__all__ = [
    "GenerationService",
    "PhotoshootOptions",
    "app",
    "create_app",
    "create_image_provider",
]
