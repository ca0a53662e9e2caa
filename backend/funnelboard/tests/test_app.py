"""Tests for app wiring: settings validation, health, CORS."""

import pytest

from funnelboard.deps import Settings


class TestSettings:

    def test_missing_credentials_are_all_listed(self):
        """WHAT: ensure_required names every missing variable at once.
        WHY: Operators should fix the environment in one pass, before any I/O.
        """
        settings = Settings(
            FACEBOOK_ACCESS_TOKEN="",
            FACEBOOK_AD_ACCOUNT_ID="act_1",
            GHL_API_KEY="",
            GHL_LOCATION_ID="loc-1",
            DEEPGRAM_API_KEY="dg",
        )

        with pytest.raises(RuntimeError) as exc_info:
            settings.ensure_required()

        message = str(exc_info.value)
        assert "FACEBOOK_ACCESS_TOKEN" in message
        assert "GHL_API_KEY" in message
        assert "DEEPGRAM_API_KEY" not in message

    def test_complete_settings_pass(self):
        settings = Settings(
            FACEBOOK_ACCESS_TOKEN="t",
            FACEBOOK_AD_ACCOUNT_ID="act_1",
            GHL_API_KEY="k",
            GHL_LOCATION_ID="loc-1",
            DEEPGRAM_API_KEY="dg",
        )

        settings.ensure_required()
        assert settings.missing_required() == []

    def test_cors_origins_are_split_and_trimmed(self):
        settings = Settings(BACKEND_CORS_ORIGINS="http://a.test, http://b.test,")

        assert settings.cors_origin_list == ["http://a.test", "http://b.test"]


class TestApp:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_allowed_origin_gets_cors_headers(self, client):
        response = client.get("/health", headers={"Origin": "http://localhost:3000"})

        assert response.headers["access-control-allow-origin"] == "http://localhost:3000"

    def test_webhook_preflight_allows_any_origin(self, client):
        response = client.options("/webhooks/gohighlevel", headers={"Origin": "https://crm.example.com"})

        assert response.status_code == 204
        assert response.headers["access-control-allow-origin"] == "*"
