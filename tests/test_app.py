import pytest
from fastapi.testclient import TestClient

import app.main as main_module
from app.main import build_handler, create_app, main
from config.settings import ConfigError, Settings
from relay.core.prompt import FALLBACK_REPLY
from relay.handler import WebhookHandler

from helpers import StubGenerator, text_message, webhook_payload


@pytest.fixture
def client(settings, handler):
    app = create_app(settings=settings, handler=handler)
    with TestClient(app) as test_client:
        yield test_client


def _verify(client, **params):
    query = {f"hub.{key}": value for key, value in params.items()}
    return client.get("/webhook", params=query)


def test_verification_echoes_challenge(client):
    response = _verify(client, mode="subscribe", verify_token="s3cret", challenge="1158201444")

    assert response.status_code == 200
    assert response.text == "1158201444"


@pytest.mark.parametrize(
    "mode, token",
    [
        ("subscribe", "wrong"),
        ("unsubscribe", "s3cret"),
        ("SUBSCRIBE", "s3cret"),
    ],
)
def test_verification_rejects_bad_mode_or_token(client, mode, token):
    response = _verify(client, mode=mode, verify_token=token, challenge="leak-me")

    assert response.status_code == 403
    assert "leak-me" not in response.text


@pytest.mark.parametrize(
    "params",
    [
        {"verify_token": "s3cret", "challenge": "leak-me"},
        {"mode": "subscribe", "challenge": "leak-me"},
        {"challenge": "leak-me"},
    ],
)
def test_verification_missing_params_is_bad_request(client, params):
    response = _verify(client, **params)

    assert response.status_code == 400
    assert "leak-me" not in response.text


def test_text_message_is_answered_and_acknowledged(client, store, delivery):
    response = client.post(
        "/webhook", json=webhook_payload(text_message("15551234567", "I'm stressed about exams"))
    )

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert delivery.sent == [("15551234567", "echo: I'm stressed about exams")]
    assert len(store.history("15551234567")) == 2


def test_backend_failure_still_acknowledged(settings, store, failing_generator, delivery):
    app = create_app(settings=settings, handler=WebhookHandler(store, failing_generator, delivery))
    with TestClient(app) as client:
        response = client.post("/webhook", json=webhook_payload(text_message("a", "hi")))

    assert response.status_code == 200
    assert delivery.sent == [("a", FALLBACK_REPLY)]


def test_delivery_failure_still_acknowledged(settings, store, generator, failing_delivery):
    app = create_app(settings=settings, handler=WebhookHandler(store, generator, failing_delivery))
    with TestClient(app) as client:
        response = client.post("/webhook", json=webhook_payload(text_message("a", "hi")))

    assert response.status_code == 200


def test_non_text_event_acknowledged_without_work(client, store, generator, delivery):
    response = client.post(
        "/webhook", json=webhook_payload(text_message("a", None, type_="sticker"))
    )

    assert response.status_code == 200
    assert len(store) == 0
    assert generator.calls == []
    assert delivery.sent == []


def test_invalid_json_is_server_error(client, generator):
    response = client.post(
        "/webhook", content=b"{not json", headers={"Content-Type": "application/json"}
    )

    assert response.status_code == 500
    assert generator.calls == []


def test_unexpected_payload_shape_is_server_error(client, generator):
    response = client.post("/webhook", json={"entry": {"changes": "nope"}})

    assert response.status_code == 500
    assert generator.calls == []


def test_health_reports_sessions(client):
    client.post("/webhook", json=webhook_payload(text_message("a", "hi")))

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "sessions": 1}


def test_startup_refuses_missing_configuration(env, handler):
    env.delenv("VERIFY_TOKEN")
    app = create_app(handler=handler)

    with pytest.raises(ConfigError):
        with TestClient(app):
            pass


def test_main_exits_when_configuration_is_missing(env):
    env.delenv("VERIFY_TOKEN")

    with pytest.raises(SystemExit) as excinfo:
        main()

    assert excinfo.value.code == 1


def test_build_handler_follows_settings(env):
    env.setenv("MAX_SESSIONS", "5")
    env.setenv("MAX_TURNS_PER_SESSION", "6")
    env.setenv("DEDUPE_MESSAGE_IDS", "true")
    env.setattr(main_module, "build_generation_client", lambda settings: StubGenerator())

    handler = build_handler(Settings().validate())

    assert handler.store.max_sessions == 5
    assert handler.store.max_turns == 6
    assert handler.dedupe_message_ids is True
    assert handler.delivery.endpoint == "https://graph.facebook.com/v17.0/1234567890/messages"


def test_verification_works_without_lifespan(env, handler):
    client = TestClient(create_app(handler=handler))

    assert _verify(client, mode="subscribe", verify_token="s3cret", challenge="42").text == "42"
    assert _verify(client, mode="subscribe", verify_token="nope", challenge="42").status_code == 403
