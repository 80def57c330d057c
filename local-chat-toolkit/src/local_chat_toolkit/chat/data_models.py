"""
Data models of the chat generation pipeline.

Requests arrive loosely typed ('GenerationRequest' accepts whatever the UI sends)
so that 'validate_request' decides structural correctness and reports a readable
reason instead of a pydantic traceback. Everything produced downstream of the
validator is strongly typed and, where a stage hands data to the next one,
frozen: 'ConversationContext' is never edited in place, budget enforcement
returns a new instance.
"""

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from local_chat_toolkit.conversation_database.data_models.message import ConversationMessage
from local_chat_toolkit.llms.base import CancellationToken
from local_chat_toolkit.utils.results import Failure
from local_chat_toolkit.vectorstores.base import DocumentSource

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant. Answer the user's questions using the context of previous messages."
)
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_RESPONSE_TOKENS = 2048
DEFAULT_MAX_CONTEXT_MESSAGES = 50


class GenerationSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    temperature: float = DEFAULT_TEMPERATURE
    max_response_tokens: int = DEFAULT_MAX_RESPONSE_TOKENS
    extra: dict[str, Any] = Field(default_factory=dict)


class ConversationContext(BaseModel):
    """
    The bounded view of a conversation that is sent to the model.

    Messages are ordered oldest first. After budget enforcement the first message
    may be a synthetic 'system' summary of older turns.
    """

    model_config = ConfigDict(frozen=True)

    messages: tuple[ConversationMessage, ...] = ()
    max_context_messages: int = DEFAULT_MAX_CONTEXT_MESSAGES
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    generation_settings: GenerationSettings = Field(default_factory=GenerationSettings)


class DocumentContextResult(BaseModel):
    """Retrieved document context, sources in descending relevance."""

    model_config = ConfigDict(frozen=True)

    sources: tuple[DocumentSource, ...] = ()
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    text: str = ""

    @classmethod
    def empty(cls) -> "DocumentContextResult":
        return cls()

    @property
    def is_empty(self) -> bool:
        return not self.sources and not self.text


class BackendConfig(BaseModel):
    id: Any = None
    endpoint: Any = None


class DocumentQueryConfig(BaseModel):
    top_k: Any = 5
    similarity_threshold: Any = 0.0


class GenerationRequest(BaseModel):
    """
    One user turn as submitted by the UI.

    Attributes:
        conversation_id: Target conversation.
        user_text: The new message, either as a string or as a list of fragments
            (joined with single spaces).
        backend_config: Model backend id (e.g. 'ollama') and endpoint URL.
        document_query_config: Retrieval parameters for attached documents.
        persist_history: Whether the exchange is written back to the chat store.
        cancellation_token: Shared with the UI's stop button.
        model: Model name; 'None' uses the configured default model.
        user_message_persisted: The UI already saved the user turn, only the
            assistant reply is written.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    conversation_id: Any = None
    user_text: Any = None
    backend_config: Any = None
    document_query_config: Any = Field(default_factory=DocumentQueryConfig)
    persist_history: bool = True
    cancellation_token: CancellationToken = Field(default_factory=CancellationToken)
    model: str | None = None
    user_message_persisted: bool = False

    @field_validator("backend_config", mode="before")
    @classmethod
    def _coerce_backend_config(cls, value: Any) -> Any:
        return BackendConfig.model_validate(value) if isinstance(value, dict) else value

    @field_validator("document_query_config", mode="before")
    @classmethod
    def _coerce_document_query_config(cls, value: Any) -> Any:
        return DocumentQueryConfig.model_validate(value) if isinstance(value, dict) else value

    @property
    def user_message_text(self) -> str:
        if isinstance(self.user_text, str):
            return self.user_text.strip()
        if isinstance(self.user_text, (list, tuple)):
            return " ".join(part.strip() for part in self.user_text if isinstance(part, str) and part.strip())
        return ""


@dataclass(frozen=True)
class ValidationOutcome:
    valid: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.valid


class AssembledPrompt(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    warnings: tuple[str, ...] = ()


class BudgetReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    context: ConversationContext
    summarized_count: int = 0
    dropped_count: int = 0
    estimated_tokens: int = 0

    @property
    def modified(self) -> bool:
        return self.summarized_count > 0 or self.dropped_count > 0


class PersistenceOutcome(BaseModel):
    user_message_saved: bool = False
    assistant_message_saved: bool = False
    errors: list[str] = Field(default_factory=list)

    @property
    def complete(self) -> bool:
        return self.user_message_saved and self.assistant_message_saved


@dataclass
class OrchestratedResult:
    """
    Outcome of one chat turn.

    'text' may be non-empty even when 'failure' is set: a stream that broke after
    producing output keeps what was received.
    """

    text: str = ""
    failure: Failure | None = None
    warnings: list[str] = field(default_factory=list)
    persistence: PersistenceOutcome | None = None
    cancelled: bool = False
    user_message: ConversationMessage | None = None
    assistant_message: ConversationMessage | None = None

    @property
    def succeeded(self) -> bool:
        return self.failure is None
