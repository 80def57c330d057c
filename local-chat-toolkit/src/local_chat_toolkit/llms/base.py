"""
Model backend abstraction and shared role constants.

Every concrete backend ('OllamaBackend') implements 'ModelBackend'. A backend
receives a fully assembled prompt and streams the completion back as an ordered
async iterator of text chunks: normal exhaustion is the done signal, an exception
is the error signal. The pipeline never sees a backend-specific response object.

The cancellation token is passed down so a backend can abort its HTTP request as
soon as the user cancels; the streaming consumer also stops pulling chunks on its
own, so a backend that ignores the token is still safe to use.
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class Roles(StrEnum):
    """Conversation roles stored in the chat store and rendered into prompts."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class CancellationToken:
    """Cooperative cancellation signal shared by every stage of one request."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


class GenerationOptions(BaseModel):
    """Sampling parameters sent with every completion request."""

    temperature: float = 0.7
    max_response_tokens: int = 2048
    extra: dict[str, Any] = Field(default_factory=dict)


class ModelRequest(BaseModel):
    """A single completion request as seen by a backend."""

    prompt: str
    model: str
    endpoint: str
    options: GenerationOptions = Field(default_factory=GenerationOptions)


class ModelBackend(ABC):
    """
    Abstract base class for streaming text-completion backends.

    Implementations translate transport failures into exceptions that
    'classify_error' understands (HTTP status attributes, httpx error classes or
    the pipeline's own 'TransientError') so the orchestrator can decide whether a
    retry makes sense.
    """

    @abstractmethod
    def generate_stream(
        self, request: ModelRequest, cancellation: CancellationToken | None = None
    ) -> AsyncIterator[str]:
        """Yield completion text chunks in the order the model produces them."""
        pass
