"""Abstract base for reasoning-service (LLM) providers."""

from __future__ import annotations

from abc import ABC, abstractmethod

from pydantic import BaseModel


class LLMMessage(BaseModel):
    role: str  # "user", "assistant"
    content: str


class LLMResponse(BaseModel):
    content: str | None = None
    stop_reason: str = ""
    input_tokens: int = 0
    output_tokens: int = 0


class BaseLLMProvider(ABC):
    @abstractmethod
    async def complete(
        self,
        messages: list[LLMMessage],
        system: str | None = None,
        max_tokens: int = 2048,
    ) -> LLMResponse: ...
