"""Shared test fixtures."""

import os
import tempfile
from collections.abc import AsyncGenerator
from pathlib import Path

# Set test environment before the settings object is created
_TMP = Path(tempfile.mkdtemp(prefix="studio-tests-"))
os.environ["STUDIO_DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP / 'studio.db'}"
os.environ["STUDIO_MEDIA_DIR"] = str(_TMP / "media")
os.environ["STUDIO_GEMINI_API_KEY"] = "test-key"
os.environ["STUDIO_RATE_LIMIT"] = "1000/minute"
os.environ["STUDIO_LOG_LEVEL"] = "ERROR"  # Reduce log noise
os.environ["STUDIO_SECRET_KEY"] = "test-secret"
os.environ.pop("AWS_LAMBDA_FUNCTION_NAME", None)

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from mock_provider import MockImageProvider  # noqa: E402

from fashion_studio import api  # noqa: E402
from fashion_studio.accounts import Principal  # noqa: E402
from fashion_studio.config import settings  # noqa: E402
from fashion_studio.middleware import create_token  # noqa: E402
from fashion_studio.models import PhotoshootOptions  # noqa: E402
from fashion_studio.storage import LocalImageStore, SQLiteRepository  # noqa: E402

GUEST_IP = "203.0.113.10"


@pytest_asyncio.fixture
async def repository(tmp_path: Path) -> AsyncGenerator[SQLiteRepository, None]:
    """SQLite repository backed by a temporary file."""
    repo = SQLiteRepository(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await repo.startup()
    yield repo
    await repo.shutdown()


@pytest_asyncio.fixture
async def image_store() -> LocalImageStore:
    store = LocalImageStore(settings.media_dir, settings.media_base_url)
    await store.startup()
    return store


@pytest.fixture
def mock_provider() -> MockImageProvider:
    return MockImageProvider()


@pytest.fixture
def services(repository, image_store, mock_provider) -> api.Services:
    return api.build_services(repository, image_store, mock_provider)


@pytest_asyncio.fixture
async def client(services, monkeypatch) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app with real services over temporary storage."""
    monkeypatch.setattr(api, "_services", services)
    transport = ASGITransport(app=api.app, client=(GUEST_IP, 50000))
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def user() -> Principal:
    return Principal(user_id="0b5e2f4a-1c3d-4e5f-8a9b-0c1d2e3f4a5b", email="ada@example.com")


@pytest.fixture
def auth_headers(user: Principal) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_token(user.user_id, user.email)}"}


@pytest.fixture
def options_payload() -> dict:
    """Minimal valid photoshoot request in wire format."""
    return {
        "outfit": {
            "top": {"garmentType": "Oversized Blazer", "description": "Charcoal wool"},
        },
    }


@pytest.fixture
def options(options_payload: dict) -> PhotoshootOptions:
    return PhotoshootOptions.model_validate(options_payload)
