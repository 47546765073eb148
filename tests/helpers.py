"""In-memory stand-ins for Gemini and WhatsApp plus webhook payload builders."""

from typing import Any, Dict, List, Optional


ENV = {
    "WHATSAPP_TOKEN": "wa-token",
    "GEMINI_API_KEY": "gemini-key",
    "PHONE_NUMBER_ID": "1234567890",
    "VERIFY_TOKEN": "s3cret",
}

class StubGenerator:
    """Records every call; replies with ``reply_for(text)`` or raises ``error``."""

    def __init__(self, error: Optional[Exception] = None) -> None:
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    def reply_for(self, text: str) -> str:
        return f"echo: {text}"

    async def generate_reply(self, history, new_message, persona):
        self.calls.append(
            {"history": list(history), "new_message": new_message, "persona": persona}
        )
        if self.error is not None:
            raise self.error
        return self.reply_for(new_message)

class StubDelivery:
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.error = error
        self.sent: List[tuple] = []
        self.closed = False

    async def send(self, recipient: str, text: str) -> Dict[str, Any]:
        self.sent.append((recipient, text))
        if self.error is not None:
            raise self.error
        return {"messages": [{"id": f"wamid.{len(self.sent)}"}]}

    async def aclose(self) -> None:
        self.closed = True

def text_message(sender: str, body: Optional[str], message_id: str = "wamid.in", type_: str = "text") -> Dict[str, Any]:
    message: Dict[str, Any] = {"from": sender, "id": message_id, "type": type_}
    if body is not None:
        message["text"] = {"body": body}
    return message

def webhook_payload(*messages: Dict[str, Any], field: str = "messages") -> Dict[str, Any]:
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "WABA_ID",
                "changes": [
                    {
                        "field": field,
                        "value": {"messaging_product": "whatsapp", "messages": list(messages)},
                    }
                ],
            }
        ],
    }

