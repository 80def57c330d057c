"""
History persistence.

Writes the exchange of one turn back to the chat store: the user message first,
then the assistant message. Each write is attempted exactly once and independently
of the other, so a failed user write does not prevent the assistant write. Failures
never propagate; they are collected in the 'PersistenceOutcome' and logged, because
the user has already seen the answer at this point.
"""

from loguru import logger

from local_chat_toolkit.chat.data_models import PersistenceOutcome
from local_chat_toolkit.conversation_database.data_models.conversation import ChatStore
from local_chat_toolkit.conversation_database.data_models.message import ConversationMessage
from local_chat_toolkit.utils.errors import PersistenceError
from local_chat_toolkit.utils.retry import NO_RETRY, with_retry, with_timeout


class HistoryPersistence:
    def __init__(self, store: ChatStore, timeout: float | None = None) -> None:
        self.store = store
        self.timeout = timeout

    async def _write(self, conversation_id: str, message: ConversationMessage) -> None:
        operation_name = f"save {message.role.value} message"
        response = await with_retry(
            lambda: with_timeout(
                self.store.append_message(conversation_id, message.role.value, message.content, message.model_info),
                self.timeout,
                operation_name=operation_name,
            ),
            NO_RETRY,
            operation_name=operation_name,
        )
        if not isinstance(response, dict) or not response.get("success"):
            error = response.get("error") if isinstance(response, dict) else None
            raise PersistenceError(error or f"Chat store rejected the {message.role.value} message")

    async def save(
        self,
        conversation_id: str,
        user_message: ConversationMessage | None,
        assistant_message: ConversationMessage,
    ) -> PersistenceOutcome:
        """Persist the turn.

        Args:
            conversation_id: Target conversation.
            user_message: The new user turn, or 'None' if it was already saved.
            assistant_message: The generated answer.
        """
        outcome = PersistenceOutcome()

        if user_message is None:
            outcome.user_message_saved = True
        else:
            try:
                await self._write(conversation_id, user_message)
                outcome.user_message_saved = True
            except Exception as exc:
                logger.warning(f"Failed to save user message in conversation {conversation_id}: {exc}")
                outcome.errors.append(f"user message: {exc}")

        try:
            await self._write(conversation_id, assistant_message)
            outcome.assistant_message_saved = True
        except Exception as exc:
            logger.warning(f"Failed to save assistant message in conversation {conversation_id}: {exc}")
            outcome.errors.append(f"assistant message: {exc}")

        if outcome.complete:
            logger.info(f"Saved turn in conversation {conversation_id}")
        return outcome
