from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from typing import Any, List, Optional

from pydantic import ValidationError

from relay.agent import GenerationClient
from relay.core.memory import SessionStore, Turn
from relay.core.prompt import FALLBACK_REPLY, SYSTEM_PROMPT
from relay.errors import DeliveryError, GenerationError, ParseError
from relay.schemas import InboundMessage, WebhookPayload
from relay.tools.whatsapp import WhatsAppClient


logger = logging.getLogger(__name__)

SEEN_MESSAGE_IDS_LIMIT = 1000


def _preview(text: str, limit: int = 80) -> str:
    text = " ".join(text.split())
    return text if len(text) <= limit else text[: limit - 3] + "..."


def parse_messages(payload: Any) -> List[InboundMessage]:
    """Extract text messages from a WhatsApp webhook payload.

    Non-text messages, empty bodies and notifications without messages (e.g.
    delivery status updates) are skipped. A payload whose shape does not match
    the webhook format raises ParseError.
    """
    if not isinstance(payload, dict):
        raise ParseError(f"Webhook payload must be a JSON object, got {type(payload).__name__}")
    try:
        parsed = WebhookPayload.model_validate(payload)
    except ValidationError as exc:
        raise ParseError(f"Unexpected webhook payload shape: {exc}") from exc

    messages: List[InboundMessage] = []
    for entry in parsed.entry:
        for change in entry.changes:
            if change.field != "messages" or change.value is None:
                continue
            for message in change.value.messages:
                if message.type != "text":
                    logger.info("Skipping non-text message: type=%s from=%s", message.type, message.from_)
                    continue
                body = message.text.body if message.text else None
                if not body:
                    logger.info("Skipping text message without body from=%s", message.from_)
                    continue
                messages.append(
                    InboundMessage(sender=message.from_, text=body, message_id=message.id)
                )
    return messages


class WebhookHandler:
    """Drives one inbound webhook event through memory, generation and delivery.

    Every message is contained: a failing backend turns into the fallback
    reply, a failing delivery is logged and dropped, and neither affects other
    messages in the same batch. Messages from the same sender are processed
    one at a time; different senders run concurrently.
    """

    def __init__(
        self,
        store: SessionStore,
        generator: GenerationClient,
        delivery: WhatsAppClient,
        *,
        persona: str = SYSTEM_PROMPT,
        fallback_text: str = FALLBACK_REPLY,
        dedupe_message_ids: bool = False,
    ) -> None:
        self.store = store
        self.generator = generator
        self.delivery = delivery
        self.persona = persona
        self.fallback_text = fallback_text
        self.dedupe_message_ids = dedupe_message_ids
        self._seen_ids: "OrderedDict[str, None]" = OrderedDict()

    async def handle_event(self, payload: Any) -> int:
        messages = parse_messages(payload)
        if not messages:
            logger.info("No text message found in webhook event")
            return 0

        fresh = [m for m in messages if not self._is_duplicate(m)]
        results = await asyncio.gather(
            *(self.process_message(m) for m in fresh), return_exceptions=True
        )
        for message, result in zip(fresh, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Message processing failed: from=%s error=%r", message.sender, result
                )
            if result is None or isinstance(result, BaseException):
                # let the platform redelivery retry a message that never completed
                self._forget(message)
        return len(fresh)

    async def process_message(self, message: InboundMessage) -> Optional[str]:
        sender = message.sender
        try:
            async with self.store.lock_for(sender):
                return await self._process_locked(message)
        except Exception:
            logger.exception("Unexpected error handling message from %s", sender)
            return None

    async def _process_locked(self, message: InboundMessage) -> str:
        sender, text = message.sender, message.text
        logger.info("Message from %s: %s", sender, _preview(text))

        self.store.append(sender, Turn.user(text))
        history = self.store.history(sender)

        try:
            reply = await self.generator.generate_reply(history, text, self.persona)
        except GenerationError as exc:
            logger.warning("Generation failed for %s: %s", sender, exc)
            reply = self.fallback_text
        else:
            logger.info("Gemini reply for %s: %s", sender, _preview(reply))
            self.store.append(sender, Turn.assistant(reply))

        try:
            await self.delivery.send(sender, reply)
        except DeliveryError as exc:
            logger.warning(
                "Failed to send WhatsApp message to %s: %s", sender, exc.detail or exc
            )
        return reply

    def _is_duplicate(self, message: InboundMessage) -> bool:
        if not self.dedupe_message_ids or not message.message_id:
            return False
        if message.message_id in self._seen_ids:
            logger.info("Dropping redelivered message id=%s", message.message_id)
            return True
        self._seen_ids[message.message_id] = None
        while len(self._seen_ids) > SEEN_MESSAGE_IDS_LIMIT:
            self._seen_ids.popitem(last=False)
        return False

    def _forget(self, message: InboundMessage) -> None:
        if message.message_id:
            self._seen_ids.pop(message.message_id, None)
