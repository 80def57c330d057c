"""
History context loading.

Fetches the stored transcript of a conversation and turns it into a
'ConversationContext': messages ordered by timestamp (stored order kept for equal
timestamps), pipeline defaults filled in wherever the conversation does not
override them, and at most 'max_context_messages' of the newest messages.

Without history the model cannot continue the conversation, so every failure here
is fatal for the turn.
"""

from loguru import logger

from local_chat_toolkit.chat.data_models import (
    DEFAULT_MAX_CONTEXT_MESSAGES,
    DEFAULT_MAX_RESPONSE_TOKENS,
    DEFAULT_SYSTEM_PROMPT,
    DEFAULT_TEMPERATURE,
    ConversationContext,
    GenerationSettings,
)
from local_chat_toolkit.conversation_database.data_models.conversation import ChatStore, Conversation
from local_chat_toolkit.utils.errors import MalformedResponseError, NotFoundError, as_pipeline_error
from local_chat_toolkit.utils.results import Failure, Malformed, Ok, Parsed, Result, parse_payload
from local_chat_toolkit.utils.retry import RetryConfig, with_retry, with_timeout

STAGE = "history_context"


def build_context(conversation: Conversation, max_context_messages: int | None = None) -> ConversationContext:
    limit = max_context_messages or conversation.max_context_messages or DEFAULT_MAX_CONTEXT_MESSAGES
    # sorted() is stable, equal timestamps keep their stored order
    messages = sorted(conversation.messages, key=lambda message: message.ordering_time)
    if len(messages) > limit:
        logger.warning(
            f"Conversation {conversation.id} has {len(messages)} messages, keeping the newest {limit}"
        )
        messages = messages[-limit:]

    return ConversationContext(
        messages=tuple(messages),
        max_context_messages=limit,
        system_prompt=conversation.system_prompt or DEFAULT_SYSTEM_PROMPT,
        generation_settings=GenerationSettings(
            temperature=conversation.temperature if conversation.temperature is not None else DEFAULT_TEMPERATURE,
            max_response_tokens=conversation.max_response_tokens or DEFAULT_MAX_RESPONSE_TOKENS,
        ),
    )


async def load_history_context(
    store: ChatStore,
    conversation_id: str,
    retry: RetryConfig | None = None,
    timeout: float | None = None,
    max_context_messages: int | None = None,
) -> Result[ConversationContext]:
    try:
        payload = await with_retry(
            lambda: with_timeout(store.get_conversation(conversation_id), timeout, operation_name="load conversation"),
            retry,
            operation_name="load conversation",
        )
    except Exception as exc:
        return Failure(as_pipeline_error(exc, "Conversation history unavailable"), STAGE)

    if payload is None:
        return Failure(NotFoundError(f"Conversation '{conversation_id}' not found"), STAGE)

    match parse_payload(Conversation, payload):
        case Malformed(reason):
            return Failure(MalformedResponseError(f"Conversation transcript: {reason}"), STAGE)
        case Parsed(conversation):
            context = build_context(conversation, max_context_messages)

    logger.info(f"Loaded {len(context.messages)} message(s) for conversation {conversation_id}")
    return Ok(context)
