from __future__ import annotations

from typing import Optional


class RelayError(RuntimeError):
    """Base class for per-message relay failures."""


class ParseError(RelayError):
    """Webhook payload is not valid JSON or does not have the expected shape."""


class GenerationError(RelayError):
    """The generation backend could not produce a reply."""

    def __init__(
        self,
        message: str,
        *,
        category: str = "backend",
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.category = category
        self.status_code = status_code

    def __str__(self) -> str:
        base = super().__str__()
        if self.status_code is not None:
            return f"[{self.category} {self.status_code}] {base}"
        return f"[{self.category}] {base}"


class DeliveryError(RelayError):
    """The messaging platform rejected or never received an outbound reply."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: object = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail
