"""Shared fixtures for the relay tests."""

import pytest

from config.settings import Settings, get_settings
from relay.core.memory import SessionStore
from relay.errors import DeliveryError, GenerationError
from relay.handler import WebhookHandler

from helpers import ENV, StubDelivery, StubGenerator


@pytest.fixture
def env(monkeypatch):
    for key in (
        "GOOGLE_API_KEY", "PORT", "LOG_LEVEL", "MAX_SESSIONS", "MAX_TURNS_PER_SESSION",
        "DEDUPE_MESSAGE_IDS", "WHATSAPP_API_URL", "WHATSAPP_API_VERSION",
    ):
        monkeypatch.delenv(key, raising=False)
    for key, value in ENV.items():
        monkeypatch.setenv(key, value)
    get_settings.cache_clear()
    yield monkeypatch
    get_settings.cache_clear()


@pytest.fixture
def settings(env) -> Settings:
    return Settings()


@pytest.fixture
def store() -> SessionStore:
    return SessionStore()


@pytest.fixture
def generator() -> StubGenerator:
    return StubGenerator()


@pytest.fixture
def delivery() -> StubDelivery:
    return StubDelivery()


@pytest.fixture
def handler(store, generator, delivery) -> WebhookHandler:
    return WebhookHandler(store, generator, delivery)


@pytest.fixture
def failing_generator() -> StubGenerator:
    return StubGenerator(error=GenerationError("quota exceeded", category="quota", status_code=429))


@pytest.fixture
def failing_delivery() -> StubDelivery:
    return StubDelivery(error=DeliveryError("invalid recipient", status_code=400))


