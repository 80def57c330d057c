"""
Chat generation orchestrator (Facade).

'ChatOrchestrator' is the single entry point for one chat turn. It wires the
pipeline stages together and applies the failure policy:

    validation        fatal, returned before any external call
    history           fatal
    documents         non-fatal, the turn continues without document context
    budget            fatal on inconsistent token limits
    prompt assembly   fatal
    model stream      fatal, except that cancellation keeps the partial text
    persistence       non-fatal, reported in the result

Model calls are retried only while nothing has been streamed yet: once the user has
seen partial text, a retry would show the answer twice.

The two public entry points are:

    'run'      - returns the 'OrchestratedResult', with an optional partial-text callback.
    'generate' - the same turn reported to a 'GenerationListener'.
"""

import asyncio
from collections.abc import Awaitable, Callable

from loguru import logger

from local_chat_toolkit.chat.budget import ContextBudgetManager
from local_chat_toolkit.chat.data_models import DocumentContextResult, GenerationRequest, OrchestratedResult
from local_chat_toolkit.chat.document_loader import load_document_context
from local_chat_toolkit.chat.history_loader import load_history_context
from local_chat_toolkit.chat.persistence import HistoryPersistence
from local_chat_toolkit.chat.prompt_builder import build_prompt
from local_chat_toolkit.chat.prompts import PromptManager
from local_chat_toolkit.chat.streaming import ChunkListener, consume_stream, create_handler
from local_chat_toolkit.chat.validator import validate_request
from local_chat_toolkit.config import Settings, get_provider_token_limits
from local_chat_toolkit.conversation_database.data_models.conversation import ChatStore
from local_chat_toolkit.conversation_database.data_models.message import ConversationMessage, ModelInfo
from local_chat_toolkit.llms.base import GenerationOptions, ModelBackend, ModelRequest
from local_chat_toolkit.utils.errors import ConfigurationError, ModelBackendError, ValidationError, as_pipeline_error
from local_chat_toolkit.utils.results import Failure, Ok
from local_chat_toolkit.utils.retry import with_retry, with_timeout
from local_chat_toolkit.vectorstores.base import DocumentIndex


class GenerationListener:
    """Callbacks of a UI surface. Override the ones you need."""

    def on_partial(self, text: str) -> None:
        pass

    def on_complete(self, result: OrchestratedResult) -> None:
        pass

    def on_error(self, failure: Failure) -> None:
        pass


class ChatOrchestrator:
    def __init__(
        self,
        store: ChatStore,
        index: DocumentIndex,
        backend: ModelBackend,
        prompt_manager: PromptManager | None = None,
        budget_manager: ContextBudgetManager | None = None,
        settings: Settings | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.index = index
        self.backend = backend
        self.settings = settings or Settings()
        self.prompt_manager = prompt_manager or PromptManager()
        self.budget_manager = budget_manager or ContextBudgetManager(self.settings.preserve_recent_messages)
        self.persistence = HistoryPersistence(store, timeout=self.settings.persistence_timeout)
        self._sleep = sleep

    async def generate(self, request: GenerationRequest, listener: GenerationListener) -> OrchestratedResult:
        result = await self.run(request, on_partial=listener.on_partial)
        if result.failure is not None:
            listener.on_error(result.failure)
        else:
            listener.on_complete(result)
        return result

    async def run(self, request: GenerationRequest, on_partial: ChunkListener | None = None) -> OrchestratedResult:
        validation = validate_request(request)
        if not validation:
            logger.error(f"Rejected chat request: {validation.reason}")
            return OrchestratedResult(failure=Failure(ValidationError(validation.reason), "validation"))

        conversation_id: str = request.conversation_id
        user_text = request.user_message_text
        token = request.cancellation_token
        warnings: list[str] = []
        logger.info(f"Chat turn started for conversation {conversation_id}")

        match await load_history_context(
            self.store, conversation_id, retry=self.settings.retry, timeout=self.settings.history_timeout
        ):
            case Failure() as failure:
                logger.error(f"History unavailable for conversation {conversation_id}: {failure.reason}")
                return OrchestratedResult(failure=failure)
            case Ok(context):
                pass

        match await load_document_context(
            self.index,
            conversation_id,
            user_text,
            request.document_query_config,
            retry=self.settings.retry,
            timeout=self.settings.document_timeout,
        ):
            case Failure() as failure:
                logger.warning(f"Continuing without document context: {failure.reason}")
                warnings.append(f"document context unavailable: {failure.reason}")
                document_context = DocumentContextResult.empty()
            case Ok(document_context):
                pass

        provider = request.backend_config.id
        limits = get_provider_token_limits(provider)
        try:
            report = self.budget_manager.enforce(context, limits)
        except ConfigurationError as exc:
            logger.error(f"Invalid token limits for provider {provider!r}: {exc}")
            return OrchestratedResult(failure=Failure(exc, "budget"), warnings=warnings)
        if report.modified:
            warnings.append(
                f"history summarized: {report.summarized_count} message(s) summarized, "
                f"{report.dropped_count} dropped"
            )
        context = report.context

        match build_prompt(context, document_context, user_text, self.prompt_manager, provider=provider):
            case Failure() as failure:
                return OrchestratedResult(failure=failure, warnings=warnings)
            case Ok(prompt):
                warnings.extend(prompt.warnings)

        model = request.model or self.settings.default_model
        model_request = ModelRequest(
            prompt=prompt.text,
            model=model,
            endpoint=request.backend_config.endpoint,
            options=GenerationOptions(
                temperature=context.generation_settings.temperature,
                max_response_tokens=min(context.generation_settings.max_response_tokens, limits.max_response_tokens),
                extra=context.generation_settings.extra,
            ),
        )
        handler = create_handler(on_partial)

        async def attempt() -> bool:
            nonlocal handler
            handler = create_handler(on_partial)
            stream = self.backend.generate_stream(model_request, token)
            return await with_timeout(
                consume_stream(stream, handler, token), self.settings.model_timeout, operation_name="model stream"
            )

        def nothing_streamed(exc: BaseException) -> bool:
            return handler.chunk_count == 0 and not token.is_cancelled

        try:
            cancelled = await with_retry(
                attempt,
                self.settings.retry,
                operation_name="model generation",
                retry_if=nothing_streamed,
                sleep=self._sleep,
            )
        except Exception as exc:
            error = as_pipeline_error(exc, "Model generation failed")
            handler.on_error(str(error))
            logger.error(f"Model generation failed after {handler.chunk_count} chunk(s): {error}")
            return OrchestratedResult(
                text=handler.full_response, failure=Failure(error, "generation"), warnings=warnings
            )

        text = handler.full_response
        if cancelled:
            warnings.append("generation cancelled")
        if not handler.has_content:
            if cancelled:
                return OrchestratedResult(cancelled=True, warnings=warnings)
            return OrchestratedResult(
                failure=Failure(ModelBackendError("Model returned an empty response"), "generation"),
                warnings=warnings,
            )

        user_message = ConversationMessage.user(user_text)
        assistant_message = ConversationMessage.assistant(text, model_info=ModelInfo(name=model, provider=provider))
        result = OrchestratedResult(
            text=text,
            warnings=warnings,
            cancelled=cancelled,
            user_message=user_message,
            assistant_message=assistant_message,
        )

        if request.persist_history:
            result.persistence = await self.persistence.save(
                conversation_id,
                None if request.user_message_persisted else user_message,
                assistant_message,
            )
            warnings.extend(f"persistence failed: {error}" for error in result.persistence.errors)

        logger.info(f"Chat turn finished for conversation {conversation_id} ({len(text)} chars)")
        return result
