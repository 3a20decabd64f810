"""Tests for environment settings and the error middleware."""

from unittest.mock import patch

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient

from paywall.config import PaywallSettings, clamp_teaser_words
from paywall.db import normalize_database_url
from paywall.platform.errors import (
    ContentNotFoundError,
    ErrorHandlerMiddleware,
    SubscriptionLimitError,
    TransientStoreError,
)


class TestSettings:
    def test_defaults(self):
        with patch.dict("os.environ", {}, clear=True):
            settings = PaywallSettings.from_env()

        assert settings.sweep_interval_seconds == 86400
        assert settings.reminder_lead_days == 3
        assert settings.max_active_subscriptions == 2
        assert settings.teaser_word_count == 150
        assert settings.redis_url is None
        assert settings.payment_webhook_secret is None
        assert settings.scheduler_enabled is True

    def test_reads_environment(self):
        env = {
            "DATABASE_URL": "postgres://db/paywall",
            "REDIS_URL": "redis://cache:6379/0",
            "JWT_SECRET": "jwt",
            "PAYMENT_WEBHOOK_SECRET": "hook",
            "EXPIRY_SWEEP_INTERVAL_SECONDS": "600",
            "EXPIRY_REMINDER_LEAD_DAYS": "5",
            "MAX_ACTIVE_SUBSCRIPTIONS": "3",
            "TEASER_WORD_COUNT": "999",
            "EXPIRY_SCHEDULER_ENABLED": "false",
        }
        with patch.dict("os.environ", env, clear=True):
            settings = PaywallSettings.from_env()

        assert settings.redis_url == "redis://cache:6379/0"
        assert settings.sweep_interval_seconds == 600
        assert settings.reminder_lead_days == 5
        assert settings.max_active_subscriptions == 3
        assert settings.teaser_word_count == 200
        assert settings.scheduler_enabled is False
        assert normalize_database_url(settings.database_url) == "postgresql://db/paywall"

    @pytest.mark.parametrize("requested,expected", [(None, 150), (0, 150), (1, 1), (50, 50), (201, 200), (-4, 1)])
    def test_clamp_teaser_words(self, requested, expected):
        assert clamp_teaser_words(requested) == expected


class TestErrors:
    def test_error_shape(self):
        error = ContentNotFoundError("article", "missing")

        assert error.status_code == 404
        assert error.to_dict()["error"]["code"] == error.code

    def test_transient_store_error_is_503(self):
        assert TransientStoreError("view meter increment").status_code == 503

    def test_subscription_limit_details(self):
        error = SubscriptionLimitError(2, 2)
        assert error.status_code == 409
        assert error.details["limit"] == 2


class TestErrorHandlerMiddleware:
    @pytest.fixture
    def client(self):
        app = FastAPI()
        app.add_middleware(ErrorHandlerMiddleware)

        @app.get("/store-down")
        def store_down():
            raise TransientStoreError("entitlement lookup")

        @app.get("/http")
        def http_error():
            raise HTTPException(status_code=418, detail="teapot")

        @app.get("/boom")
        def boom():
            raise RuntimeError("secret internals")

        return TestClient(app, raise_server_exceptions=False)

    def test_app_error_mapped(self, client):
        response = client.get("/store-down", headers={"X-Correlation-ID": "corr-1"})

        assert response.status_code == 503
        assert response.headers["X-Correlation-ID"] == "corr-1"
        assert response.json()["error"]["code"] == "TRANSIENT_STORE_ERROR"

    def test_http_exception_passes_through(self, client):
        response = client.get("/http")
        assert response.status_code == 418

    def test_unhandled_exception_hides_details(self, client):
        response = client.get("/boom")

        assert response.status_code == 500
        assert "secret internals" not in response.text
        assert "X-Correlation-ID" in response.headers
