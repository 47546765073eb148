from __future__ import annotations

import hmac
import json
import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from config.settings import ConfigError, Settings, get_settings
from relay.agent import build_generation_client
from relay.core.memory import SessionStore
from relay.errors import ParseError
from relay.handler import WebhookHandler
from relay.tools.whatsapp import build_whatsapp_client


logging.basicConfig(level=logging.INFO, format="[%(asctime)s] %(levelname)s - %(message)s")
logger = logging.getLogger("uwellness")


def build_handler(settings: Settings) -> WebhookHandler:
    store = SessionStore(
        max_sessions=settings.max_sessions,
        max_turns=settings.max_turns_per_session,
    )
    return WebhookHandler(
        store,
        build_generation_client(settings),
        build_whatsapp_client(settings),
        dedupe_message_ids=settings.dedupe_message_ids,
    )


def create_app(
    settings: Optional[Settings] = None,
    handler: Optional[WebhookHandler] = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        current = app.state.settings or get_settings()
        current.validate()
        app.state.settings = current
        logging.getLogger().setLevel(current.log_level)

        owns_handler = app.state.handler is None
        if owns_handler:
            app.state.handler = build_handler(current)
        logger.info(
            "Config: env=%s model=%s port=%s max_sessions=%s max_turns=%s",
            current.app_env,
            current.gemini_model,
            current.port,
            current.max_sessions,
            current.max_turns_per_session,
        )
        try:
            yield
        finally:
            if owns_handler:
                await app.state.handler.delivery.aclose()

    app = FastAPI(title="Uwellness WhatsApp Relay", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.handler = handler

    @app.get("/webhook")
    def verify_webhook(request: Request) -> Response:
        params = request.query_params
        mode = params.get("hub.mode")
        token = params.get("hub.verify_token")
        challenge = params.get("hub.challenge", "")

        if not mode or not token:
            logger.warning("Webhook verification failed: missing mode or token")
            return Response(status_code=400)

        current = app.state.settings or get_settings()
        expected = current.verify_token or ""
        if mode == "subscribe" and expected and hmac.compare_digest(
            token.encode("utf-8"), expected.encode("utf-8")
        ):
            logger.info("Webhook verified")
            return PlainTextResponse(challenge, status_code=200)

        logger.warning("Webhook verification failed: mode=%s", mode)
        return Response(status_code=403)

    @app.post("/webhook")
    async def receive_webhook(request: Request) -> JSONResponse:
        raw = await request.body()
        try:
            payload: Any = json.loads(raw or b"null")
        except (ValueError, UnicodeDecodeError) as exc:
            logger.error("Webhook body is not valid JSON: %s", exc)
            return JSONResponse({"status": "error", "detail": "invalid JSON"}, status_code=500)

        logger.debug("Incoming webhook payload: %s", json.dumps(payload, indent=2)[:4000])

        try:
            processed = await app.state.handler.handle_event(payload)
        except ParseError as exc:
            logger.error("Error parsing webhook payload: %s", exc)
            return JSONResponse({"status": "error", "detail": "unexpected payload"}, status_code=500)

        logger.info("Webhook handled: text_messages=%s", processed)
        return JSONResponse({"status": "ok"})

    @app.get("/health")
    def health() -> Dict[str, Any]:
        handler_ = app.state.handler
        return {
            "status": "ok",
            "sessions": len(handler_.store) if handler_ is not None else 0,
        }

    return app


app = create_app()


def main() -> None:
    try:
        settings = get_settings().validate()
    except ConfigError as exc:
        logger.error("Refusing to start: %s", exc)
        sys.exit(1)
    logger.info("Uwellness bot is starting on port %s", settings.port)
    uvicorn.run(app, host="0.0.0.0", port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
