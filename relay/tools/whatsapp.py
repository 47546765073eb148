from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from config.settings import ConfigError, Settings, get_settings
from relay.errors import DeliveryError


logger = logging.getLogger(__name__)

MAX_WHATSAPP_TEXT_LEN = 4096


def _truncate(text: str) -> str:
    if len(text) <= MAX_WHATSAPP_TEXT_LEN:
        return text
    return text[: MAX_WHATSAPP_TEXT_LEN - 3] + "..."


def _error_detail(response: httpx.Response) -> Any:
    try:
        data = response.json()
    except ValueError:
        return response.text[:500]
    if isinstance(data, dict) and isinstance(data.get("error"), dict):
        return data["error"]
    return data


def build_text_payload(recipient: str, text: str) -> Dict[str, Any]:
    return {
        "messaging_product": "whatsapp",
        "to": recipient,
        "type": "text",
        "text": {"body": _truncate(text)},
    }


class WhatsAppClient:
    """Sends plain-text replies through the WhatsApp Cloud API."""

    def __init__(
        self,
        token: str,
        phone_number_id: str,
        *,
        api_url: str = "https://graph.facebook.com",
        api_version: str = "v17.0",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._token = token
        self.endpoint = f"{api_url.rstrip('/')}/{api_version}/{phone_number_id}/messages"
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def send(self, recipient: str, text: str) -> Dict[str, Any]:
        payload = build_text_payload(recipient, text)
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json",
        }

        try:
            response = await self._client.post(self.endpoint, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise DeliveryError(f"WhatsApp send request failed: {exc}") from exc

        if response.is_error:
            detail = _error_detail(response)
            raise DeliveryError(
                f"WhatsApp API HTTP {response.status_code}: {detail}",
                status_code=response.status_code,
                detail=detail,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise DeliveryError(
                "WhatsApp API returned a non-JSON acknowledgement",
                status_code=response.status_code,
                detail=response.text[:500],
            ) from exc

        logger.info("WhatsApp message sent: to=%s ack=%s", recipient, data)
        return data

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def build_whatsapp_client(settings: Optional[Settings] = None) -> WhatsAppClient:
    settings = settings or get_settings()
    if not settings.whatsapp_token or not settings.phone_number_id:
        raise ConfigError("WHATSAPP_TOKEN and PHONE_NUMBER_ID must be configured")
    return WhatsAppClient(
        settings.whatsapp_token,
        settings.phone_number_id,
        api_url=settings.whatsapp_api_url,
        api_version=settings.whatsapp_api_version,
        timeout=settings.delivery_timeout,
    )
