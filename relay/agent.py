from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_google_genai import ChatGoogleGenerativeAI

from config.settings import ConfigError, Settings, get_settings
from relay.core.memory import Role, Turn
from relay.errors import GenerationError


logger = logging.getLogger(__name__)


def build_llm(settings: Optional[Settings] = None) -> ChatGoogleGenerativeAI:
    settings = settings or get_settings()
    if not settings.google_api_key:
        raise ConfigError(
            "GEMINI_API_KEY not set. Please configure it in environment or .env"
        )

    return ChatGoogleGenerativeAI(
        model=settings.gemini_model,
        google_api_key=settings.google_api_key,
        temperature=settings.temperature,
        top_p=settings.top_p,
        timeout=settings.generation_timeout,
        max_retries=0,
    )


def _message_for(role: Role, content: str) -> BaseMessage:
    if role is Role.ASSISTANT:
        return AIMessage(content=content)
    return HumanMessage(content=content)


def to_lc_messages(history: Sequence[Turn], persona: Optional[str] = None) -> List[BaseMessage]:
    """Turn stored history into chat messages for a fresh multi-turn request.

    The persona goes first as a system message and is never part of the
    stored transcript. Leading assistant turns are dropped and consecutive
    turns from the same role are merged so the request alternates user/model.
    """
    messages: List[BaseMessage] = []
    if persona:
        messages.append(SystemMessage(content=persona))

    last_role: Optional[Role] = None
    for turn in history or []:
        content = (turn.content or "").strip()
        if not content:
            continue
        if last_role is None and turn.role is Role.ASSISTANT:
            # a capped history can open mid-exchange; requests start with the user
            continue
        if turn.role is last_role:
            previous = messages[-1]
            messages[-1] = _message_for(turn.role, f"{previous.content}\n\n{content}")
            continue
        messages.append(_message_for(turn.role, content))
        last_role = turn.role
    return messages


def _status_code(exc: BaseException) -> Optional[int]:
    # google.api_core errors carry the HTTP status as ``code``
    for attr in ("status_code", "code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    if isinstance(status, int):
        return status
    # langchain_google_genai wraps the google.api_core error
    if exc.__cause__ is not None and exc.__cause__ is not exc:
        return _status_code(exc.__cause__)
    return None


def _categorize(exc: BaseException, status: Optional[int]) -> str:
    if status in (401, 403):
        return "auth"
    if status == 429:
        return "quota"
    if status in (404, 500, 502, 503, 504):
        return "unavailable"
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return "network"
    text = f"{type(exc).__name__} {exc}".lower()
    if "api key" in text or "permission" in text or "unauthenticated" in text:
        return "auth"
    if "quota" in text or "resource_exhausted" in text or "rate limit" in text:
        return "quota"
    if "timeout" in text or "timed out" in text or "connect" in text:
        return "network"
    return "backend"


def _reply_text(result: Any) -> str:
    content = getattr(result, "content", result)
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type", "text") == "text":
                parts.append(str(part.get("text") or ""))
        content = "".join(parts)
    if not isinstance(content, str):
        raise GenerationError(
            f"Unexpected response type from backend: {type(content).__name__}",
            category="bad_response",
        )
    return content.strip()


class GenerationClient:
    """One stateless chat exchange with the generation backend per call."""

    def __init__(self, llm: BaseChatModel) -> None:
        self._llm = llm

    async def generate_reply(
        self,
        history: Sequence[Turn],
        new_message: str,
        persona: str,
    ) -> str:
        prior = list(history or [])
        # The handler records the user turn before generating; don't send it twice.
        if prior and prior[-1].role is Role.USER and prior[-1].content == new_message:
            prior = prior[:-1]

        messages = to_lc_messages(prior + [Turn.user(new_message)], persona=persona)
        logger.debug("Generating reply: history_turns=%s message_len=%s", len(prior), len(new_message))

        try:
            result = await self._llm.ainvoke(messages)
        except GenerationError:
            raise
        except Exception as exc:
            status = _status_code(exc)
            raise GenerationError(
                f"Generation backend call failed: {exc}",
                category=_categorize(exc, status),
                status_code=status,
            ) from exc

        text = _reply_text(result)
        if not text:
            raise GenerationError("Generation backend returned an empty reply", category="bad_response")
        return text


def build_generation_client(settings: Optional[Settings] = None) -> GenerationClient:
    return GenerationClient(build_llm(settings))
