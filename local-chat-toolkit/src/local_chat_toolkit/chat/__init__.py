"""
Chat generation pipeline.

One chat turn is handled by the orchestrator:

    from local_chat_toolkit.chat import ChatOrchestrator, GenerationRequest, BackendConfig

    orchestrator = ChatOrchestrator(store=store, index=index, backend=OllamaBackend())
    result = await orchestrator.run(
        GenerationRequest(
            conversation_id=conversation_id,
            user_text="What does the contract say about termination?",
            backend_config=BackendConfig(id="ollama", endpoint="http://localhost:11434"),
        ),
        on_partial=lambda chunk: print(chunk, end="", flush=True),
    )

The individual stages (loaders, budget manager, prompt builder, streaming handler,
persistence) are importable on their own for callers that need only one of them.
"""

from local_chat_toolkit.chat.budget import ContextBudgetManager, enforce_budget
from local_chat_toolkit.chat.data_models import (
    AssembledPrompt,
    BackendConfig,
    BudgetReport,
    ConversationContext,
    DocumentContextResult,
    DocumentQueryConfig,
    GenerationRequest,
    GenerationSettings,
    OrchestratedResult,
    PersistenceOutcome,
    ValidationOutcome,
)
from local_chat_toolkit.chat.document_loader import load_document_context
from local_chat_toolkit.chat.history_loader import load_history_context
from local_chat_toolkit.chat.orchestrator import ChatOrchestrator, GenerationListener
from local_chat_toolkit.chat.persistence import HistoryPersistence
from local_chat_toolkit.chat.prompt_builder import build_prompt, serialize_history
from local_chat_toolkit.chat.prompts import PromptManager, PromptTemplate
from local_chat_toolkit.chat.streaming import StreamingResponseHandler, StreamState, consume_stream, create_handler
from local_chat_toolkit.chat.tokens import estimate_context_tokens, estimate_tokens
from local_chat_toolkit.chat.validator import validate_request

__all__ = [
    "AssembledPrompt",
    "BackendConfig",
    "BudgetReport",
    "ChatOrchestrator",
    "ContextBudgetManager",
    "ConversationContext",
    "DocumentContextResult",
    "DocumentQueryConfig",
    "GenerationListener",
    "GenerationRequest",
    "GenerationSettings",
    "HistoryPersistence",
    "OrchestratedResult",
    "PersistenceOutcome",
    "PromptManager",
    "PromptTemplate",
    "StreamState",
    "StreamingResponseHandler",
    "ValidationOutcome",
    "build_prompt",
    "consume_stream",
    "create_handler",
    "enforce_budget",
    "estimate_context_tokens",
    "estimate_tokens",
    "load_document_context",
    "load_history_context",
    "serialize_history",
    "validate_request",
]
