from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class TextBody(BaseModel):
    body: Optional[str] = None


class WhatsAppMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    from_: str = Field(..., alias="from", description="Sender phone number")
    type: str = ""
    timestamp: Optional[str] = None
    text: Optional[TextBody] = None


class ChangeValue(BaseModel):
    messaging_product: Optional[str] = None
    messages: List[WhatsAppMessage] = Field(default_factory=list)


class Change(BaseModel):
    field: str = ""
    value: Optional[ChangeValue] = None


class Entry(BaseModel):
    id: Optional[str] = None
    changes: List[Change] = Field(default_factory=list)


class WebhookPayload(BaseModel):
    object: Optional[str] = None
    entry: List[Entry] = Field(default_factory=list)


class InboundMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    sender: str
    text: str
    message_id: Optional[str] = None
