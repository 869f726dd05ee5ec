"""Image generation providers using Strategy Pattern."""

import base64
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx
import openai
from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types
from loguru import logger

from .exceptions import ConfigurationError, ImageProviderError, NoImageReturnedError
from .retry import with_provider_retry

MISSING_KEY_MESSAGE = "Server configuration error: Missing API Key."


@dataclass
class InlineImage:
    """Base64 image attached to a generation request."""

    mime_type: str
    data: str

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"


@dataclass
class ImageRequest:
    """Provider-neutral generation request."""

    prompt: str
    model: str
    aspect_ratio: str
    images: list[InlineImage] = field(default_factory=list)
    seed: int | None = None
    image_size: str | None = None
    use_search: bool = False


@dataclass
class GeneratedImage:
    """Standard response from image providers."""

    image: str
    model: str
    provider: str


class ImageProvider(Protocol):
    """Protocol for image providers."""

    async def generate(self, request: ImageRequest) -> GeneratedImage: ...
    async def health_check(self) -> bool: ...


class GeminiImageProvider:
    """Google Gemini image models through the google-genai SDK."""

    provider_name = "Gemini"

    def __init__(self, api_key: str | None, timeout: int = 120) -> None:
        self.api_key = api_key
        self.timeout = timeout
        self._client: genai.Client | None = None

    @property
    def client(self) -> genai.Client:
        if not self.api_key:
            raise ConfigurationError(MISSING_KEY_MESSAGE)
        if self._client is None:
            self._client = genai.Client(
                api_key=self.api_key,
                http_options=genai_types.HttpOptions(timeout=self.timeout * 1000),
            )
        return self._client

    def build_config(self, request: ImageRequest) -> genai_types.GenerateContentConfig:
        image_config = genai_types.ImageConfig(aspect_ratio=request.aspect_ratio)
        if request.image_size:
            image_config.image_size = request.image_size
        config = genai_types.GenerateContentConfig(image_config=image_config, seed=request.seed)
        if request.use_search:
            config.tools = [genai_types.Tool(google_search=genai_types.GoogleSearch())]
        return config

    def build_contents(self, request: ImageRequest) -> list[genai_types.Part]:
        parts = [genai_types.Part.from_text(text=request.prompt)]
        for image in request.images:
            parts.append(
                genai_types.Part.from_bytes(
                    data=base64.b64decode(image.data),
                    mime_type=image.mime_type,
                )
            )
        return parts

    async def generate(self, request: ImageRequest) -> GeneratedImage:
        """Generate an image, retrying transient failures."""
        client = self.client
        return await self._generate_with_retry(client, request)

    @with_provider_retry("Gemini", max_retries=3)
    async def _generate_with_retry(
        self, client: genai.Client, request: ImageRequest
    ) -> GeneratedImage:
        try:
            response = await client.aio.models.generate_content(
                model=request.model,
                contents=self.build_contents(request),
                config=self.build_config(request),
            )
        except genai_errors.ServerError as e:
            raise ConnectionError(f"Gemini server error: {e}") from e
        except httpx.TimeoutException as e:
            raise TimeoutError(f"Gemini request timed out: {e}") from e
        except genai_errors.ClientError as e:
            raise ImageProviderError(f"Gemini rejected the request: {e}") from e

        for candidate in response.candidates or []:
            if candidate.content is None:
                continue
            for part in candidate.content.parts or []:
                if part.inline_data is not None and part.inline_data.data:
                    encoded = base64.b64encode(part.inline_data.data).decode("ascii")
                    return GeneratedImage(
                        image=f"data:image/png;base64,{encoded}",
                        model=request.model,
                        provider=self.provider_name,
                    )
        raise NoImageReturnedError()

    async def health_check(self) -> bool:
        """Check if provider is configured."""
        return bool(self.api_key)


class OpenRouterImageProvider:
    """OpenRouter image-capable chat models through the OpenAI SDK."""

    provider_name = "OpenRouter"

    def __init__(self, api_key: str | None, model: str, base_url: str, timeout: int = 120) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self._client: openai.AsyncOpenAI | None = None

    @property
    def client(self) -> openai.AsyncOpenAI:
        if not self.api_key:
            raise ConfigurationError(MISSING_KEY_MESSAGE)
        if self._client is None:
            self._client = openai.AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    def build_messages(self, request: ImageRequest) -> list[dict[str, Any]]:
        content: list[dict[str, Any]] = [{"type": "text", "text": request.prompt}]
        content.extend(
            {"type": "image_url", "image_url": {"url": image.to_data_url()}}
            for image in request.images
        )
        return [{"role": "user", "content": content}]

    async def generate(self, request: ImageRequest) -> GeneratedImage:
        client = self.client
        return await self._generate_with_retry(client, request)

    @with_provider_retry("OpenRouter", max_retries=3)
    async def _generate_with_retry(
        self, client: openai.AsyncOpenAI, request: ImageRequest
    ) -> GeneratedImage:
        image_config: dict[str, Any] = {"aspect_ratio": request.aspect_ratio}
        if request.image_size:
            image_config["image_size"] = request.image_size
        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=self.build_messages(request),  # type: ignore[arg-type]
                seed=request.seed,
                extra_body={"modalities": ["image", "text"], "image_config": image_config},
            )
        except openai.APITimeoutError as e:
            raise TimeoutError(f"OpenRouter request timed out: {e}") from e
        except openai.APIConnectionError as e:
            raise ConnectionError(f"OpenRouter connection failed: {e}") from e
        except openai.InternalServerError as e:
            raise ConnectionError(f"OpenRouter server error: {e}") from e
        except openai.APIStatusError as e:
            raise ImageProviderError(f"OpenRouter rejected the request: {e}") from e

        if response.choices:
            message = response.choices[0].message
            for image in (message.model_extra or {}).get("images") or []:
                url = (image.get("image_url") or {}).get("url")
                if url:
                    return GeneratedImage(image=url, model=self.model, provider=self.provider_name)
        raise NoImageReturnedError()

    async def health_check(self) -> bool:
        return bool(self.api_key)


class FallbackImageProvider:
    """Try providers in order until one returns an image."""

    def __init__(self, providers: list[ImageProvider]) -> None:
        if not providers:
            raise ConfigurationError("At least one image provider is required")
        self.providers = providers

    async def generate(self, request: ImageRequest) -> GeneratedImage:
        last_error: Exception | None = None
        for provider in self.providers:
            name = getattr(provider, "provider_name", provider.__class__.__name__)
            try:
                result = await provider.generate(request)
            except NoImageReturnedError:
                raise
            except ConfigurationError as e:
                logger.warning(f"{name} skipped: {e}")
                last_error = e
            except (ImageProviderError, TimeoutError, ConnectionError) as e:
                logger.warning(f"{name} failed, trying next provider: {e}")
                last_error = e
            else:
                logger.info(f"Image generated by {name} using {result.model}")
                return result

        if isinstance(last_error, ConfigurationError):
            raise last_error
        raise ImageProviderError(f"All image providers failed: {last_error}") from last_error

    async def health_check(self) -> bool:
        for provider in self.providers:
            if await provider.health_check():
                return True
        return False


def create_image_provider() -> ImageProvider:
    """Factory function to create the configured provider chain."""
    from .config import settings

    gemini = GeminiImageProvider(settings.gemini_api_key, timeout=settings.provider_timeout)
    openrouter = OpenRouterImageProvider(
        settings.openrouter_api_key,
        model=settings.openrouter_model,
        base_url=settings.openrouter_base_url,
        timeout=settings.provider_timeout,
    )

    if settings.image_provider == "openrouter":
        providers: list[ImageProvider] = [openrouter]
        if settings.enable_fallback and settings.gemini_api_key:
            providers.append(gemini)
    else:
        providers = [gemini]
        if settings.enable_fallback and settings.openrouter_api_key:
            providers.append(openrouter)

    logger.info(
        "Using image providers: {}",
        ", ".join(p.provider_name for p in providers),  # type: ignore[attr-defined]
    )
    return FallbackImageProvider(providers)
