"""
Message data model.

A 'ConversationMessage' is one turn of a conversation. Messages are frozen: once
created they are never changed, and a correction is modelled as a new message.
The orchestrator creates the user message for the incoming turn, the streaming
stage produces the text of the assistant message, and history persistence writes
both to the chat store.

'timestamp' is kept as the ISO-8601 string the store wrote, so it survives a JSON
round trip unchanged. Offsets vary between writers, so ordering goes through
'ordering_time' rather than string comparison.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from local_chat_toolkit.llms.base import Roles
from local_chat_toolkit.utils.database import generate_uid
from local_chat_toolkit.utils.time import get_current_timestamp, parse_timestamp


class ModelInfo(BaseModel):
    """Which model produced an assistant message."""

    model_config = ConfigDict(frozen=True)

    name: str
    provider: str
    version: str | None = None


class ConversationMessage(BaseModel):
    """
    A single message within a conversation.

    'model_info' is only set on assistant messages. 'metadata' holds free-form
    annotations, e.g. the number of turns a synthetic summary message replaces.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=generate_uid)
    role: Roles
    content: str
    timestamp: str = Field(default_factory=get_current_timestamp)
    model_info: ModelInfo | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def _check_timestamp(cls, value: str) -> str:
        parse_timestamp(value)
        return value

    @property
    def ordering_time(self) -> datetime:
        """'timestamp' as an aware UTC datetime."""
        return parse_timestamp(self.timestamp)

    @classmethod
    def user(cls, content: str, **kwargs: Any) -> "ConversationMessage":
        return cls(role=Roles.USER, content=content, **kwargs)

    @classmethod
    def assistant(cls, content: str, model_info: ModelInfo | None = None, **kwargs: Any) -> "ConversationMessage":
        return cls(role=Roles.ASSISTANT, content=content, model_info=model_info, **kwargs)

    @classmethod
    def system(cls, content: str, **kwargs: Any) -> "ConversationMessage":
        return cls(role=Roles.SYSTEM, content=content, **kwargs)
