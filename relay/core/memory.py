from __future__ import annotations

"""In-process conversation memory, one session per WhatsApp sender.

History is replayed verbatim to the generation backend on every call, so
append order is the only ordering the store guarantees. Nothing is persisted;
a restart starts every sender from an empty history.
"""

import asyncio
import time
from collections import OrderedDict
from enum import Enum
from typing import Iterator, List, Optional

from pydantic import BaseModel, ConfigDict


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class Turn(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Role
    content: str

    @classmethod
    def user(cls, content: str) -> "Turn":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "Turn":
        return cls(role=Role.ASSISTANT, content=content)


class Session:
    __slots__ = ("sender", "history", "lock", "last_active")

    def __init__(self, sender: str) -> None:
        self.sender = sender
        self.history: List[Turn] = []
        self.lock = asyncio.Lock()
        self.last_active = time.monotonic()

    def touch(self) -> None:
        self.last_active = time.monotonic()

    def __repr__(self) -> str:
        return f"Session(sender={self.sender!r}, turns={len(self.history)})"


class SessionStore:
    """Sender -> Session mapping with optional LRU and per-session turn caps.

    ``max_sessions`` evicts the least recently used sender once exceeded and
    ``max_turns`` drops the oldest turns of a session. ``0`` disables either
    bound. Sessions whose lock is held are skipped by eviction.
    """

    def __init__(self, max_sessions: int = 0, max_turns: int = 0) -> None:
        if max_sessions < 0 or max_turns < 0:
            raise ValueError("max_sessions and max_turns must be >= 0")
        self.max_sessions = max_sessions
        self.max_turns = max_turns
        self._sessions: "OrderedDict[str, Session]" = OrderedDict()

    def get_or_create(self, sender: str) -> Session:
        session = self._sessions.get(sender)
        if session is None:
            session = Session(sender)
            self._sessions[sender] = session
            self._evict(keep=sender)
        else:
            self._sessions.move_to_end(sender)
            session.touch()
        return session

    def append(self, sender: str, turn: Turn) -> None:
        session = self.get_or_create(sender)
        session.history.append(turn)
        if self.max_turns and len(session.history) > self.max_turns:
            del session.history[: len(session.history) - self.max_turns]

    def history(self, sender: str) -> List[Turn]:
        session = self._sessions.get(sender)
        if session is None:
            return []
        return list(session.history)

    def lock_for(self, sender: str) -> asyncio.Lock:
        return self.get_or_create(sender).lock

    def get(self, sender: str) -> Optional[Session]:
        return self._sessions.get(sender)

    def clear(self) -> None:
        self._sessions.clear()

    def _evict(self, keep: str) -> None:
        if not self.max_sessions:
            return
        overflow = len(self._sessions) - self.max_sessions
        if overflow <= 0:
            return
        victims = []
        for sender, session in self._sessions.items():
            if len(victims) >= overflow:
                break
            if sender == keep or session.lock.locked():
                continue
            victims.append(sender)
        for sender in victims:
            del self._sessions[sender]

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, sender: object) -> bool:
        return sender in self._sessions

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._sessions))
