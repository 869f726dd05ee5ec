"""End-to-end tests of the HTTP API over real services and temporary storage."""

import base64
import hashlib
import hmac
import json
from types import SimpleNamespace
from unittest.mock import patch

import pytest
from httpx import AsyncClient
from mock_provider import PNG_DATA_URL

from fashion_studio.config import settings
from fashion_studio.exceptions import NoImageReturnedError
from fashion_studio.generation import CircuitState
from fashion_studio.middleware import create_token


@pytest.mark.asyncio
async def test_root_endpoint(client: AsyncClient) -> None:
    response = await client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert data["name"] == "Fashion Studio API"
    assert data["status"] == "running"


@pytest.mark.asyncio
async def test_request_id_echoed(client: AsyncClient) -> None:
    response = await client.get("/", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


class TestHealth:
    @pytest.mark.asyncio
    async def test_healthy(self, client: AsyncClient) -> None:
        response = await client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["services"] == {"storage": True, "images": True, "provider": True}
        assert "version" not in data

    @pytest.mark.asyncio
    async def test_detailed(self, client: AsyncClient) -> None:
        data = (await client.get("/health?detailed=true")).json()
        assert data["version"] == "1.0.0"
        assert data["environment"]["image_provider"] == settings.image_provider

    @pytest.mark.asyncio
    async def test_unhealthy_provider(self, client: AsyncClient, mock_provider) -> None:
        mock_provider.set_failure(True)
        response = await client.get("/health")
        assert response.status_code == 503
        assert response.json()["services"]["provider"] is False


class TestGuestGeneration:
    @pytest.mark.asyncio
    async def test_guest_status_starts_full(self, client: AsyncClient) -> None:
        response = await client.get("/api/guest-status")
        assert response.status_code == 200
        assert response.json() == {"remaining": 3}

    @pytest.mark.asyncio
    async def test_generate_as_guest(self, client: AsyncClient, options_payload, mock_provider) -> None:
        response = await client.post("/api/generate", json=options_payload)

        assert response.status_code == 200
        data = response.json()
        assert data["image"] == PNG_DATA_URL
        assert data["cost"] == 1
        assert data["guestRemaining"] == 2
        assert data["creditsRemaining"] is None
        assert data["pose"]
        assert mock_provider.requests[0].model == settings.flash_model
        assert "Oversized Blazer" in mock_provider.requests[0].prompt

        assert (await client.get("/api/guest-status")).json() == {"remaining": 2}

    @pytest.mark.asyncio
    async def test_quota_exhausted(self, client: AsyncClient, options_payload, mock_provider) -> None:
        for _ in range(3):
            assert (await client.post("/api/generate", json=options_payload)).status_code == 200

        response = await client.post("/api/generate", json=options_payload)

        assert response.status_code == 429
        data = response.json()
        assert data["type"] == "GuestQuotaExceededError"
        assert data["remaining"] == 0
        assert data["limit"] == 3
        assert mock_provider.call_count == 3

    @pytest.mark.asyncio
    async def test_forwarded_ip_has_own_quota(self, client: AsyncClient, options_payload) -> None:
        for _ in range(3):
            await client.post("/api/generate", json=options_payload)

        response = await client.post(
            "/api/generate", json=options_payload, headers={"X-Forwarded-For": "198.51.100.99"}
        )
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_pro_model_locked_for_guests(self, client: AsyncClient, options_payload, mock_provider) -> None:
        payload = {**options_payload, "modelVersion": "Pro (Gemini 3 Pro)"}

        response = await client.post("/api/generate", json=payload)

        assert response.status_code == 403
        data = response.json()
        assert data["type"] == "TierRestrictionError"
        assert data["feature"] == "Pro model"
        assert data["required_tier"] == "Creator"
        assert mock_provider.call_count == 0

    @pytest.mark.asyncio
    async def test_provider_returns_no_image(self, client: AsyncClient, options_payload, mock_provider) -> None:
        mock_provider.set_failure(True, NoImageReturnedError())

        response = await client.post("/api/generate", json=options_payload)

        assert response.status_code == 502
        assert "Check safety filters" in response.json()["detail"]
        assert (await client.get("/api/guest-status")).json() == {"remaining": 3}

    @pytest.mark.asyncio
    async def test_provider_failure(self, client: AsyncClient, options_payload, mock_provider) -> None:
        mock_provider.set_failure(True)
        response = await client.post("/api/generate", json=options_payload)
        assert response.status_code == 503
        assert response.json()["type"] == "ImageProviderError"


class TestGenerateValidation:
    @pytest.mark.asyncio
    async def test_empty_outfit(self, client: AsyncClient) -> None:
        response = await client.post("/api/generate", json={"outfit": {}})
        assert response.status_code == 400
        assert response.json()["type"] == "ValidationError"

    @pytest.mark.asyncio
    async def test_invalid_seed(self, client: AsyncClient, options_payload) -> None:
        response = await client.post("/api/generate", json={**options_payload, "seed": -1})
        assert response.status_code == 400
        assert response.json()["error"] == "Validation failed"

    @pytest.mark.asyncio
    async def test_invalid_image_data(self, client: AsyncClient) -> None:
        payload = {"outfit": {"top": {"images": ["data:text/plain;base64,aGVsbG8="]}}}
        response = await client.post("/api/generate", json=payload)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_undecodable_image_does_not_trip_breaker(
        self, client: AsyncClient, services, mock_provider
    ) -> None:
        payload = {"outfit": {"top": {"images": ["hello"]}}}

        for _ in range(settings.breaker_failure_threshold + 1):
            response = await client.post("/api/generate", json=payload)
            assert response.status_code == 400
            assert "valid base64" in response.json()["message"]

        assert services.generation.breaker.state == CircuitState.CLOSED
        assert mock_provider.call_count == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["height", "sceneDetails"])
    async def test_non_string_text_field(self, client: AsyncClient, options_payload, field) -> None:
        for path in ("/api/generate", "/api/quote"):
            response = await client.post(path, json={**options_payload, field: 175})
            assert response.status_code == 400
            assert response.json()["error"] == "Validation failed"

    @pytest.mark.asyncio
    async def test_malformed_json(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/generate", content=b"{not json", headers={"content-type": "application/json"}
        )
        assert response.status_code == 400
        assert "Invalid JSON format" in response.json()["message"]

    @pytest.mark.asyncio
    async def test_bad_token_rejected(self, client: AsyncClient, options_payload) -> None:
        response = await client.post(
            "/api/generate", json=options_payload, headers={"Authorization": "Bearer nope"}
        )
        assert response.status_code == 401


class TestUserGeneration:
    @pytest.mark.asyncio
    async def test_generate_deducts_credits(self, client: AsyncClient, options_payload, auth_headers) -> None:
        response = await client.post("/api/generate", json=options_payload, headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["creditsRemaining"] == settings.starter_credits - 1
        assert data["guestRemaining"] is None

        profile = (await client.get("/api/profile", headers=auth_headers)).json()
        assert profile["credits"] == settings.starter_credits - 1

    @pytest.mark.asyncio
    async def test_insufficient_credits(
        self, client: AsyncClient, options_payload, auth_headers, repository, user, mock_provider
    ) -> None:
        await repository.create_profile(user.user_id, user.email, "Creator", 3)
        payload = {**options_payload, "modelVersion": "Pro (Gemini 3 Pro)"}

        response = await client.post("/api/generate", json=payload, headers=auth_headers)

        assert response.status_code == 402
        data = response.json()
        assert data["required"] == 10
        assert data["available"] == 3
        assert mock_provider.call_count == 0

    @pytest.mark.asyncio
    async def test_studio_4k_diptych(
        self, client: AsyncClient, options_payload, auth_headers, repository, user, mock_provider
    ) -> None:
        await repository.create_profile(user.user_id, user.email, "Studio", 100)
        payload = {
            **options_payload,
            "modelVersion": "Pro (Gemini 3 Pro)",
            "enable4K": True,
            "layout": "Diptych",
            "style": "Analog Film",
        }

        response = await client.post("/api/generate", json=payload, headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["cost"] == 20
        assert response.json()["creditsRemaining"] == 80
        request = mock_provider.requests[0]
        assert request.model == settings.pro_model
        assert request.image_size == "4K"
        assert request.use_search is True

    @pytest.mark.asyncio
    async def test_refund_on_failure(
        self, client: AsyncClient, options_payload, auth_headers, repository, user, mock_provider
    ) -> None:
        await repository.create_profile(user.user_id, user.email, "Free", 7)
        mock_provider.set_failure(True)

        response = await client.post("/api/generate", json=options_payload, headers=auth_headers)

        assert response.status_code == 503
        assert (await repository.get_profile(user.user_id))["credits"] == 7


class TestQuote:
    @pytest.mark.asyncio
    async def test_guest_quote(self, client: AsyncClient, options_payload) -> None:
        response = await client.post("/api/quote", json=options_payload)
        assert response.status_code == 200
        assert response.json() == {
            "cost": 1,
            "tier": "Free",
            "lockedFeatures": [],
            "balance": 3,
            "affordable": True,
        }

    @pytest.mark.asyncio
    async def test_locked_features(self, client: AsyncClient, options_payload, auth_headers) -> None:
        payload = {**options_payload, "bodyType": "Curvy", "layout": "Diptych"}
        data = (await client.post("/api/quote", json=payload, headers=auth_headers)).json()
        assert data["lockedFeatures"] == ["Size control", "Diptych layout"]
        assert data["affordable"] is False


class TestAccount:
    @pytest.mark.asyncio
    async def test_profile_requires_auth(self, client: AsyncClient) -> None:
        response = await client.get("/api/profile")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_profile_created(self, client: AsyncClient, auth_headers, user) -> None:
        response = await client.get("/api/profile", headers=auth_headers)
        assert response.status_code == 200
        assert response.json() == {
            "id": user.user_id,
            "email": user.email,
            "tier": "Free",
            "credits": settings.starter_credits,
            "username": "ada",
        }

    @pytest.mark.asyncio
    async def test_unknown_stored_tier(
        self, client: AsyncClient, auth_headers, options_payload, repository, user
    ) -> None:
        await repository.create_profile(user.user_id, user.email, "Legacy", 8)

        profile = await client.get("/api/profile", headers=auth_headers)
        generated = await client.post("/api/generate", json=options_payload, headers=auth_headers)

        assert profile.status_code == 200
        assert profile.json()["tier"] == "Free"
        assert generated.status_code == 200
        assert generated.json()["creditsRemaining"] == 7

    @pytest.mark.asyncio
    async def test_ensure_starter_credits(self, client: AsyncClient, auth_headers, repository, user) -> None:
        await repository.create_profile(user.user_id, user.email, "Free", 0)

        response = await client.post(
            "/api/ensure-starter-credits", json={"userId": user.user_id}, headers=auth_headers
        )

        assert response.status_code == 200
        data = response.json()
        assert data["updated"] is True
        assert data["profile"]["credits"] == settings.starter_credits

    @pytest.mark.asyncio
    async def test_ensure_starter_credits_without_body(self, client: AsyncClient, auth_headers) -> None:
        response = await client.post("/api/ensure-starter-credits", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["updated"] is True

    @pytest.mark.asyncio
    async def test_ensure_starter_credits_for_other_user(self, client: AsyncClient, auth_headers) -> None:
        response = await client.post(
            "/api/ensure-starter-credits",
            json={"userId": "someone-else"},
            headers=auth_headers,
        )
        assert response.status_code == 403


class TestCheckout:
    @pytest.mark.asyncio
    async def test_create_checkout(self, client: AsyncClient, auth_headers, services, user) -> None:
        services.checkout.api_key = "sk_test"
        session = SimpleNamespace(id="cs_test_abc")

        with patch("stripe.checkout.Session.create", return_value=session) as create:
            response = await client.post(
                "/api/create-checkout",
                json={"priceId": "price_creator"},
                headers={**auth_headers, "Origin": "https://studio.example.com"},
            )

        assert response.status_code == 200
        assert response.json() == {"sessionId": "cs_test_abc"}
        kwargs = create.call_args.kwargs
        assert kwargs["metadata"] == {"userId": user.user_id}
        assert kwargs["customer_email"] == user.email
        assert kwargs["success_url"] == "https://studio.example.com/?success=true"

    @pytest.mark.asyncio
    async def test_checkout_not_configured(self, client: AsyncClient, auth_headers, services) -> None:
        services.checkout.api_key = None
        response = await client.post(
            "/api/create-checkout", json={"priceId": "price_creator"}, headers=auth_headers
        )
        assert response.status_code == 500
        assert response.json()["type"] == "ConfigurationError"

    @pytest.mark.asyncio
    async def test_checkout_requires_price(self, client: AsyncClient, auth_headers) -> None:
        response = await client.post("/api/create-checkout", json={}, headers=auth_headers)
        assert response.status_code == 400


class TestWebhook:
    @pytest.mark.asyncio
    async def test_status(self, client: AsyncClient) -> None:
        response = await client.get("/api/webhook")
        assert response.json() == {"status": "Active", "version": "v16-Deactivation"}

    @pytest.mark.asyncio
    async def test_payment_event(self, client: AsyncClient, repository, user, auth_headers) -> None:
        await client.get("/api/profile", headers=auth_headers)
        payload = {
            "events": [
                {
                    "id": "evt_1",
                    "type": "subscription.activated",
                    "data": {"tags": {"userId": user.user_id}, "product": "Studio Monthly"},
                }
            ]
        }

        response = await client.post("/api/webhook", json=payload)

        assert response.status_code == 200
        assert response.json()["processed"] == 1
        profile = (await client.get("/api/profile", headers=auth_headers)).json()
        assert profile["tier"] == "Studio"
        assert profile["credits"] == settings.starter_credits + 2000

    @pytest.mark.asyncio
    async def test_invalid_json_acknowledged(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/webhook", content=b"not-json", headers={"content-type": "application/json"}
        )
        assert response.status_code == 200
        assert response.json()["message"] == "Invalid payload"

    @pytest.mark.asyncio
    async def test_signature_required_when_configured(self, client: AsyncClient, monkeypatch) -> None:
        monkeypatch.setattr(settings, "webhook_secret", "whsec")
        body = json.dumps({"events": []}).encode()

        rejected = await client.post("/api/webhook", content=body)
        assert rejected.status_code == 401

        signature = base64.b64encode(hmac.new(b"whsec", body, hashlib.sha256).digest()).decode()
        accepted = await client.post("/api/webhook", content=body, headers={"X-FS-Signature": signature})
        assert accepted.status_code == 200


class TestLibrary:
    @pytest.mark.asyncio
    async def test_projects(self, client: AsyncClient, auth_headers) -> None:
        created = await client.post("/api/projects", json={"name": "  Resort 27 "}, headers=auth_headers)
        assert created.status_code == 201
        assert created.json()["name"] == "Resort 27"

        listed = (await client.get("/api/projects", headers=auth_headers)).json()
        assert [p["id"] for p in listed] == [created.json()["id"]]

    @pytest.mark.asyncio
    async def test_blank_project_name(self, client: AsyncClient, auth_headers) -> None:
        response = await client.post("/api/projects", json={"name": "   "}, headers=auth_headers)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_generation_lifecycle(self, client: AsyncClient, auth_headers, options_payload) -> None:
        project = (
            await client.post("/api/projects", json={"name": "Lookbook"}, headers=auth_headers)
        ).json()
        config = {**options_payload, "referenceModelImage": PNG_DATA_URL}

        saved = await client.post(
            "/api/generations",
            json={"image": PNG_DATA_URL, "projectId": project["id"], "config": config},
            headers=auth_headers,
        )
        assert saved.status_code == 201
        record = saved.json()
        assert record["image_url"].startswith("/media/")
        assert "referenceModelImage" not in record["config"]

        media = await client.get(record["image_url"])
        assert media.status_code == 200
        assert media.content.startswith(b"\x89PNG")

        listed = await client.get(
            "/api/generations", params={"projectId": project["id"]}, headers=auth_headers
        )
        assert [g["id"] for g in listed.json()] == [record["id"]]

        deleted = await client.delete(f"/api/generations/{record['id']}", headers=auth_headers)
        assert deleted.status_code == 204
        assert (await client.get("/api/generations", headers=auth_headers)).json() == []

    @pytest.mark.asyncio
    async def test_delete_unknown_generation(self, client: AsyncClient, auth_headers) -> None:
        response = await client.delete("/api/generations/missing", headers=auth_headers)
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_other_users_archive_hidden(self, client: AsyncClient, auth_headers) -> None:
        await client.post(
            "/api/generations",
            json={"image": "https://cdn.example.com/look.png"},
            headers=auth_headers,
        )
        other = {"Authorization": f"Bearer {create_token('another-user')}"}
        assert (await client.get("/api/generations", headers=other)).json() == []
