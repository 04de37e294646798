"""Tests for app-level wiring: health check, security headers, error envelope."""

import pytest
from httpx import AsyncClient


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, unauthenticated_client: AsyncClient):
        response = await unauthenticated_client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestSecurityHeaders:
    @pytest.mark.asyncio
    async def test_api_responses_are_not_cached(self, client: AsyncClient, test_account):
        response = await client.get("/api/v1/users/me")

        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["Cache-Control"] == "no-store, max-age=0"
        assert "Strict-Transport-Security" not in response.headers

    @pytest.mark.asyncio
    async def test_health_is_cacheable(self, unauthenticated_client: AsyncClient):
        response = await unauthenticated_client.get("/health")
        assert "Cache-Control" not in response.headers


class TestErrorEnvelope:
    @pytest.mark.asyncio
    async def test_request_validation_is_400(self, client: AsyncClient, test_account):
        response = await client.post(
            "/api/v1/subscriptions/sync-session", json={"sessionId": ""}
        )

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["message"] == "Request validation failed"
        assert error["details"][0]["loc"] == ["body", "sessionId"]
