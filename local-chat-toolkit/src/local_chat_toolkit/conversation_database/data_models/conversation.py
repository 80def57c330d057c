"""
Conversation transcript model and chat store interface.

The 'ChatStore' ABC is the pluggable storage backend for conversation transcripts.
Implementations ('InMemoryChatStore', or a client for the desktop app's local
database) are interchangeable at construction time, keeping the pipeline free of
storage-specific code.

The store speaks plain dicts: 'get_conversation' returns the raw transcript payload
and 'append_message' returns '{"success", "saved_message", "error"}'. The history
loader parses the payload into a 'Conversation' at the edge, so a store that returns
something unexpected produces a 'Malformed' result rather than an exception deep in
the pipeline.
"""

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from local_chat_toolkit.conversation_database.data_models.message import ConversationMessage, ModelInfo


class Conversation(BaseModel):
    """
    A stored conversation transcript.

    The optional generation fields override the pipeline defaults for this
    conversation only; 'None' means "use the default".
    """

    id: str
    title: str = ""
    messages: list[ConversationMessage] = Field(default_factory=list)
    system_prompt: str | None = None
    temperature: float | None = None
    max_response_tokens: int | None = None
    max_context_messages: int | None = None


class ChatStore(ABC):
    """Abstract repository for conversation transcripts."""

    @abstractmethod
    async def get_conversation(self, conversation_id: str) -> dict[str, Any] | None:
        """Return the raw transcript payload, or 'None' if the conversation does not exist."""
        pass

    @abstractmethod
    async def append_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        model_info: ModelInfo | None = None,
    ) -> dict[str, Any]:
        pass
