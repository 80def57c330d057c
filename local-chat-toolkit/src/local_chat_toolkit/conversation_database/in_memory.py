"""
In-memory 'ChatStore'.

Keeps transcripts in a dict keyed by conversation id. Used by the chat session
script and the integration tests; the desktop app plugs in its own store.
"""

from typing import Any

from loguru import logger

from local_chat_toolkit.conversation_database.data_models.conversation import ChatStore, Conversation
from local_chat_toolkit.conversation_database.data_models.message import ConversationMessage, ModelInfo
from local_chat_toolkit.llms.base import Roles
from local_chat_toolkit.utils.database import generate_uid


class InMemoryChatStore(ChatStore):
    def __init__(self) -> None:
        self.conversations: dict[str, Conversation] = {}

    def create_conversation(
        self,
        conversation_id: str | None = None,
        title: str = "",
        messages: list[ConversationMessage] | None = None,
        system_prompt: str | None = None,
    ) -> Conversation:
        conversation = Conversation(
            id=conversation_id or generate_uid(),
            title=title,
            messages=list(messages or []),
            system_prompt=system_prompt,
        )
        self.conversations[conversation.id] = conversation
        return conversation

    async def get_conversation(self, conversation_id: str) -> dict[str, Any] | None:
        conversation = self.conversations.get(conversation_id)
        if conversation is None:
            return None
        return conversation.model_dump(mode="json")

    async def append_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        model_info: ModelInfo | None = None,
    ) -> dict[str, Any]:
        conversation = self.conversations.get(conversation_id)
        if conversation is None:
            return {"success": False, "saved_message": None, "error": f"Conversation '{conversation_id}' not found"}

        message = ConversationMessage(role=Roles(role), content=content, model_info=model_info)
        conversation.messages.append(message)
        logger.debug(f"Stored {role} message {message.id} in conversation {conversation_id}")
        return {"success": True, "saved_message": message.model_dump(mode="json"), "error": None}
