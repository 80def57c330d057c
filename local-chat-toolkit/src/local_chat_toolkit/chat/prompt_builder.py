"""
Prompt assembly.

Builds the single prompt string sent to the model, section by section, always in
the same order:

    system prompt, dialogue rules, [DOCUMENTS], [HISTORY MESSAGES], [USER MESSAGE]

Sections are separated by a blank line. The documents section is left out when no
document context was retrieved and the history section when the conversation has
no earlier messages. The new user turn is never part of the history section.
"""

import json
from collections.abc import Sequence

from loguru import logger

from local_chat_toolkit.chat.data_models import AssembledPrompt, ConversationContext, DocumentContextResult
from local_chat_toolkit.chat.prompts import PromptManager
from local_chat_toolkit.conversation_database.data_models.message import ConversationMessage
from local_chat_toolkit.llms.base import Roles
from local_chat_toolkit.utils.errors import PromptTemplateError
from local_chat_toolkit.utils.results import Failure, Ok, Result

STAGE = "prompt_assembly"
SECTION_SEPARATOR = "\n\n"

ROLE_LABELS: dict[str, dict[Roles, str]] = {
    "ollama": {Roles.USER: "User", Roles.ASSISTANT: "Assistant", Roles.SYSTEM: "System"},
    "anthropic": {Roles.USER: "Human", Roles.ASSISTANT: "Assistant", Roles.SYSTEM: "System"},
}


def serialize_history(messages: Sequence[ConversationMessage], provider: str = "ollama") -> str:
    """Render messages in the conversational style the provider was trained on."""
    provider = provider.lower()
    if provider == "openai":
        return json.dumps(
            [{"role": message.role.value, "content": message.content} for message in messages],
            ensure_ascii=False,
        )
    labels = ROLE_LABELS.get(provider, ROLE_LABELS["ollama"])
    return "\n".join(f"{labels[message.role]}: {message.content}" for message in messages)


def build_prompt(
    context: ConversationContext,
    document_context: DocumentContextResult,
    new_user_text: str,
    prompt_manager: PromptManager,
    provider: str = "ollama",
) -> Result[AssembledPrompt]:
    sections: list[str] = []
    warnings: list[str] = []

    def add(name: str, values: dict[str, str] | None = None) -> None:
        text, template_warnings = prompt_manager.render(name, values)
        warnings.extend(template_warnings)
        if text.strip():
            sections.append(text.strip())

    try:
        add("chat_system", {"system_prompt": context.system_prompt})
        add("chat_rules")
        if not document_context.is_empty:
            add("chat_documents", {"document_context": document_context.text})
        if context.messages:
            add("chat_history", {"history": serialize_history(context.messages, provider)})
        add("chat_user", {"user_message": new_user_text})
    except PromptTemplateError as exc:
        logger.error(f"Prompt assembly failed: {exc}")
        return Failure(exc, STAGE)

    prompt = SECTION_SEPARATOR.join(sections)
    logger.debug(f"Assembled prompt ({len(prompt)} chars, {len(sections)} sections):\n{prompt}")
    return Ok(AssembledPrompt(text=prompt, warnings=tuple(warnings)))
