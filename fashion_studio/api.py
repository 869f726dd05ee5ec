"""FastAPI application and route handlers."""

import json
import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Annotated, Any

from fastapi import Depends, FastAPI, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from loguru import logger
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .accounts import AccountService, Principal
from .billing import WEBHOOK_VERSION, CheckoutService, SubscriptionWebhook, verify_signature
from .config import settings
from .exceptions import (
    AuthenticationError,
    AuthorizationError,
    GuestQuotaExceededError,
    ImageProviderError,
    InsufficientCreditsError,
    NoImageReturnedError,
    NotFoundError,
    PaymentProviderError,
    StorageError,
    StudioAPIError,
    TierRestrictionError,
    ValidationError,
)
from .generation import CircuitBreaker, GenerationService
from .library import LibraryService
from .middleware import add_request_id, get_client_ip, get_current_user, get_optional_user
from .models import (
    CheckoutRequest,
    CheckoutResponse,
    GenerateResponse,
    GenerationCreate,
    PhotoshootOptions,
    Profile,
    ProjectCreate,
    QuoteResponse,
    StarterCreditsRequest,
    StarterCreditsResponse,
)
from .providers import ImageProvider, create_image_provider
from .quota import GuestQuota
from .storage import ImageStore, Repository, create_image_store, create_repository
from .types import GenerationRecord, HealthStatus, ProjectRecord

VERSION = "1.0.0"


@dataclass
class Services:
    """Service graph shared by the route handlers."""

    repository: Repository
    images: ImageStore
    accounts: AccountService
    generation: GenerationService
    library: LibraryService
    checkout: CheckoutService
    webhook: SubscriptionWebhook


_services: Services | None = None


def configure_logging() -> None:
    """Configure logging - should be called at startup, not import time."""
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        level=settings.log_level,
        serialize=False,
    )
    if settings.log_file:
        logger.add(
            settings.log_file,
            rotation="10 MB",
            retention="7 days",
            compression="zip",
            level=settings.log_level,
        )


def get_limiter() -> Limiter:
    """Get or create rate limiter."""
    return Limiter(
        key_func=get_client_ip,
        storage_uri=settings.redis_url or "memory://",
    )


def build_services(
    repository: Repository,
    images: ImageStore,
    provider: ImageProvider,
) -> Services:
    """Wire services around already-started storage components."""
    accounts = AccountService(repository)
    quota = GuestQuota(
        repository,
        limit=settings.guest_limit,
        window=timedelta(hours=settings.guest_window_hours),
        localhost_bypass=settings.guest_localhost_bypass,
    )
    breaker = CircuitBreaker(
        failure_threshold=settings.breaker_failure_threshold,
        recovery_timeout=settings.breaker_recovery_seconds,
    )
    return Services(
        repository=repository,
        images=images,
        accounts=accounts,
        generation=GenerationService(accounts, quota, provider, breaker),
        library=LibraryService(repository, images),
        checkout=CheckoutService(),
        webhook=SubscriptionWebhook(accounts),
    )


async def start_services() -> Services:
    """Start storage and wire the service graph once per process."""
    global _services
    repository = create_repository()
    images = create_image_store()
    provider = create_image_provider()

    try:
        await repository.startup()
        await images.startup()
    except Exception as e:
        logger.error(f"Startup failed: {e}")
        raise

    _services = build_services(repository, images, provider)
    return _services


async def stop_services() -> None:
    global _services
    if _services is None:
        return
    await _services.repository.shutdown()
    await _services.images.shutdown()
    _services = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    configure_logging()
    await start_services()
    logger.info("Application started successfully")

    yield

    await stop_services()
    logger.info("Application shutdown complete")


app = FastAPI(
    title="Fashion Studio API",
    version=VERSION,
    description="Credit-gated AI fashion photoshoot generation",
    lifespan=lifespan,
)

app.middleware("http")(add_request_id)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

limiter = get_limiter()
app.state.limiter = limiter  # Required by slowapi
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)  # type: ignore[arg-type]

if settings.media_base_url.startswith("/") and not settings.s3_bucket:
    app.mount(
        settings.media_base_url,
        StaticFiles(directory=settings.media_dir, check_dir=False),
        name="media",
    )


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Handle validation errors with clean messages."""
    error_messages = []

    for error in exc.errors():  # type: ignore[attr-defined]
        field = error["loc"][-1] if error["loc"] else "field"
        message = error.get("msg", f"Invalid {field}")

        match error["type"]:
            case "missing":
                message = f"Required field '{field}' is missing"
            case "json_invalid":
                message = "Invalid JSON format"

        error_messages.append(message)

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "Validation failed",
            "message": "; ".join(error_messages),
            "details": error_messages,
        },
    )


app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]


def status_for(exc: StudioAPIError) -> int:
    match exc:
        case ValidationError():
            return status.HTTP_400_BAD_REQUEST
        case AuthenticationError():
            return status.HTTP_401_UNAUTHORIZED
        case InsufficientCreditsError():
            return status.HTTP_402_PAYMENT_REQUIRED
        case AuthorizationError() | TierRestrictionError():
            return status.HTTP_403_FORBIDDEN
        case NotFoundError():
            return status.HTTP_404_NOT_FOUND
        case GuestQuotaExceededError():
            return status.HTTP_429_TOO_MANY_REQUESTS
        case NoImageReturnedError() | PaymentProviderError():
            return status.HTTP_502_BAD_GATEWAY
        case ImageProviderError() | StorageError():
            return status.HTTP_503_SERVICE_UNAVAILABLE
        case _:
            return status.HTTP_500_INTERNAL_SERVER_ERROR


@app.exception_handler(StudioAPIError)
async def studio_api_exception_handler(request: Request, exc: StudioAPIError) -> JSONResponse:
    """Handle domain-specific errors."""
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(f"Studio API error: {exc}")
    else:
        logger.warning(f"Request rejected ({status_code}): {exc}")

    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "type": exc.__class__.__name__, **exc.details()},
    )


async def get_services() -> Services:
    """Get service graph singleton.

    Lambda runs without a lifespan, so the graph is built on the first request
    and reused by every later invocation in the same container.
    """
    if _services is None:
        if not settings.is_lambda_environment:
            raise RuntimeError("Service not initialized")
        logger.info("Initializing services for Lambda container")
        return await start_services()
    return _services


async def get_generation_service() -> GenerationService:
    return (await get_services()).generation


async def get_account_service() -> AccountService:
    return (await get_services()).accounts


async def get_library_service() -> LibraryService:
    return (await get_services()).library


OptionalUser = Annotated[Principal | None, Depends(get_optional_user)]
CurrentUser = Annotated[Principal, Depends(get_current_user)]
ClientIP = Annotated[str, Depends(get_client_ip)]


@app.post("/api/generate", tags=["generation"])
@limiter.limit(settings.rate_limit)
async def generate_endpoint(
    request: Request,
    options: PhotoshootOptions,
    service: Annotated[GenerationService, Depends(get_generation_service)],
    principal: OptionalUser,
    client_ip: ClientIP,
) -> GenerateResponse:
    """Generate a photoshoot image for a guest or signed-in user."""
    result = await service.generate(options, principal, client_ip)
    return GenerateResponse(**result)


@app.post("/api/quote", tags=["generation"])
@limiter.limit(settings.rate_limit)
async def quote_endpoint(
    request: Request,
    options: PhotoshootOptions,
    service: Annotated[GenerationService, Depends(get_generation_service)],
    principal: OptionalUser,
    client_ip: ClientIP,
) -> QuoteResponse:
    """Preview cost and locked features without generating."""
    return await service.quote(options, principal, client_ip)


@app.get("/api/guest-status", tags=["generation"])
async def guest_status_endpoint(
    service: Annotated[GenerationService, Depends(get_generation_service)],
    client_ip: ClientIP,
) -> dict[str, int]:
    """Remaining guest generations for the calling IP."""
    return {"remaining": await service.quota.status(client_ip)}


@app.get("/api/profile", tags=["account"])
async def profile_endpoint(
    principal: CurrentUser,
    service: Annotated[AccountService, Depends(get_account_service)],
) -> Profile:
    return await service.get_profile(principal)


@app.post("/api/ensure-starter-credits", tags=["account"])
async def ensure_starter_credits_endpoint(
    principal: CurrentUser,
    service: Annotated[AccountService, Depends(get_account_service)],
    body: StarterCreditsRequest | None = None,
) -> StarterCreditsResponse:
    """Grant starter credits to new or unused free accounts."""
    if body and body.user_id and body.user_id != principal.user_id:
        raise AuthorizationError("Cannot grant credits to another user")
    if body and body.email and not principal.email:
        principal = Principal(principal.user_id, body.email)
    profile, updated = await service.ensure_starter_credits(principal)
    return StarterCreditsResponse(profile=profile, updated=updated)


@app.post("/api/create-checkout", tags=["billing"])
async def create_checkout_endpoint(
    request: Request,
    body: CheckoutRequest,
    principal: CurrentUser,
    services: Annotated[Services, Depends(get_services)],
) -> CheckoutResponse:
    """Start a checkout session for the signed-in user."""
    if body.user_id and body.user_id != principal.user_id:
        raise AuthorizationError("Cannot start checkout for another user")
    origin = request.headers.get("origin") or str(request.base_url)
    session_id = await services.checkout.create_checkout(
        body.price_id,
        principal.user_id,
        body.email or principal.email,
        origin,
    )
    return CheckoutResponse(session_id=session_id)


@app.get("/api/webhook", tags=["billing"])
async def webhook_status_endpoint() -> dict[str, str]:
    return {"status": "Active", "version": WEBHOOK_VERSION}


@app.post("/api/webhook", tags=["billing"])
async def webhook_endpoint(
    request: Request,
    services: Annotated[Services, Depends(get_services)],
) -> JSONResponse:
    """Apply subscription events. Always acknowledged with 200 once authenticated."""
    body = await request.body()
    if settings.webhook_secret:
        verify_signature(body, request.headers.get("X-FS-Signature"), settings.webhook_secret)

    try:
        payload: Any = json.loads(body) if body else None
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Webhook body is not valid JSON")
        payload = None

    result = await services.webhook.process(payload)
    return JSONResponse(status_code=status.HTTP_200_OK, content=result)


@app.get("/api/projects", tags=["library"])
async def list_projects_endpoint(
    principal: CurrentUser,
    service: Annotated[LibraryService, Depends(get_library_service)],
) -> list[ProjectRecord]:
    return await service.list_projects(principal)


@app.post("/api/projects", tags=["library"], status_code=status.HTTP_201_CREATED)
async def create_project_endpoint(
    body: ProjectCreate,
    principal: CurrentUser,
    service: Annotated[LibraryService, Depends(get_library_service)],
) -> ProjectRecord:
    return await service.create_project(principal, body.name)


@app.get("/api/generations", tags=["library"])
async def list_generations_endpoint(
    principal: CurrentUser,
    service: Annotated[LibraryService, Depends(get_library_service)],
    project_id: str | None = Query(None, alias="projectId"),
) -> list[GenerationRecord]:
    """Archived generations, newest first, optionally for one project."""
    return await service.list_generations(principal, project_id)


@app.post("/api/generations", tags=["library"], status_code=status.HTTP_201_CREATED)
async def save_generation_endpoint(
    body: GenerationCreate,
    principal: CurrentUser,
    service: Annotated[LibraryService, Depends(get_library_service)],
) -> GenerationRecord:
    return await service.save_generation(principal, body.image, body.config, body.project_id)


@app.delete(
    "/api/generations/{generation_id}",
    tags=["library"],
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_generation_endpoint(
    generation_id: str,
    principal: CurrentUser,
    service: Annotated[LibraryService, Depends(get_library_service)],
) -> Response:
    await service.delete_generation(principal, generation_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/health", tags=["health"])
async def health_endpoint(
    response: Response,
    services: Annotated[Services, Depends(get_services)],
    detailed: bool = Query(False, description="Include detailed environment information"),
) -> dict[str, Any]:
    """Check health status of all components.

    Args:
        detailed: If True, includes version and environment information.

    """
    components = await services.generation.health_check()
    checks: HealthStatus = {
        "storage": components["storage"],
        "images": await services.library.health_check(),
        "provider": components["provider"],
    }
    all_healthy = all(checks.values())

    if not all_healthy:
        response.status_code = 503

    result: dict[str, Any] = {
        "status": "healthy" if all_healthy else "unhealthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "services": checks,
    }

    if detailed:
        result["version"] = VERSION
        result["environment"] = {
            "environment": settings.environment,
            "image_provider": settings.image_provider,
            "rate_limit": settings.rate_limit,
            "guest_limit": settings.guest_limit,
        }

    return result


@app.get("/", tags=["health"])
async def root_endpoint() -> dict[str, str]:
    """API information endpoint."""
    return {
        "name": "Fashion Studio API",
        "version": VERSION,
        "status": "running",
        "docs": "/docs",
    }


app.openapi_tags = [
    {"name": "generation", "description": "Photoshoot generation and guest quota"},
    {"name": "account", "description": "Profiles and starter credits"},
    {"name": "billing", "description": "Checkout and subscription webhook"},
    {"name": "library", "description": "Saved projects and generations"},
    {"name": "health", "description": "Health checks"},
]


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    return app
