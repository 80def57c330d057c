"""
Prompt templates for chat generation.

A 'PromptTemplate' is a piece of text with '{name}' placeholders plus the list of
placeholders it requires. 'PromptManager' owns a set of templates and renders them.
It is an ordinary object passed to the prompt builder, so tests and callers can
swap the whole template set without touching global state.

Rendering is a single substitution pass: values that themselves contain braces
(user text, code snippets) are inserted verbatim and never expanded again.
"""

import re
from collections.abc import Mapping

from loguru import logger
from pydantic import BaseModel, Field

from local_chat_toolkit.utils.errors import PromptTemplateError

PLACEHOLDER_PATTERN = re.compile(r"\{(\w+)\}")


class PromptTemplate(BaseModel):
    name: str
    content: str
    required_placeholders: tuple[str, ...] = ()
    optional_placeholders: tuple[str, ...] = ()
    description: str = ""
    version: str = "1.0.0"

    @property
    def placeholders(self) -> list[str]:
        """Placeholder names in order of first appearance."""
        return list(dict.fromkeys(PLACEHOLDER_PATTERN.findall(self.content)))


CHAT_SYSTEM = PromptTemplate(
    name="chat_system",
    content="{system_prompt}",
    required_placeholders=("system_prompt",),
    description="System prompt for chat mode",
)

CHAT_RULES = PromptTemplate(
    name="chat_rules",
    content=(
        "[RULES]\n"
        "- Continue the dialogue by responding to the user's latest message.\n"
        "- STRICTLY: respond in the same language as the user's latest message."
    ),
    description="Dialogue rules for chat mode",
)

CHAT_DOCUMENTS = PromptTemplate(
    name="chat_documents",
    content=(
        "[DOCUMENTS]\n"
        "Use the following excerpts from the user's documents when they are relevant to the question:\n"
        "{document_context}"
    ),
    required_placeholders=("document_context",),
    description="Retrieved document context",
)

CHAT_HISTORY = PromptTemplate(
    name="chat_history",
    content="[HISTORY MESSAGES]\n{history}",
    required_placeholders=("history",),
    description="Serialized conversation history",
)

CHAT_USER = PromptTemplate(
    name="chat_user",
    content="[USER MESSAGE]\n{user_message}",
    required_placeholders=("user_message",),
    description="The new user turn",
)

DEFAULT_CHAT_TEMPLATES: tuple[PromptTemplate, ...] = (CHAT_SYSTEM, CHAT_RULES, CHAT_DOCUMENTS, CHAT_HISTORY, CHAT_USER)


class PromptManager:
    """
    Registry and renderer of prompt templates.

    Attributes:
        templates: Templates by name. Defaults to the chat template set.
    """

    def __init__(self, templates: list[PromptTemplate] | tuple[PromptTemplate, ...] | None = None) -> None:
        self.templates: dict[str, PromptTemplate] = {}
        for template in DEFAULT_CHAT_TEMPLATES if templates is None else templates:
            self.register(template)

    @staticmethod
    def validate_template(template: PromptTemplate) -> None:
        """Raise 'PromptTemplateError' if a required placeholder does not occur in the content."""
        present = set(template.placeholders)
        missing = [name for name in template.required_placeholders if name not in present]
        if missing:
            raise PromptTemplateError(
                f"Template '{template.name}' is missing required placeholders: {', '.join(missing)}",
                missing_placeholders=missing,
            )

    def register(self, template: PromptTemplate) -> None:
        self.validate_template(template)
        self.templates[template.name] = template

    def get_template(self, name: str) -> PromptTemplate:
        if name not in self.templates:
            raise PromptTemplateError(f"Template '{name}' not found")
        return self.templates[name]

    def render(self, name: str, values: Mapping[str, str] | None = None) -> tuple[str, list[str]]:
        """Substitute 'values' into the template 'name'.

        Optional placeholders without a value render as an empty string. Placeholders
        the template does not declare are left untouched unless a value is given,
        and are reported as warnings.

        Returns:
            The rendered text and the list of warnings.

        Raises:
            PromptTemplateError: If the template is unknown or a required placeholder
                has no value.
        """
        template = self.get_template(name)
        values = dict(values or {})

        missing = [placeholder for placeholder in template.required_placeholders if placeholder not in values]
        if missing:
            raise PromptTemplateError(
                f"Missing values for template '{name}': {', '.join(missing)}",
                missing_placeholders=missing,
            )

        declared = set(template.required_placeholders) | set(template.optional_placeholders)
        warnings = [
            f"Template '{name}' uses undeclared placeholder '{{{placeholder}}}'"
            for placeholder in template.placeholders
            if placeholder not in declared
        ]
        for warning in warnings:
            logger.warning(warning)

        def substitute(match: re.Match[str]) -> str:
            placeholder = match.group(1)
            if placeholder in values:
                return str(values[placeholder])
            if placeholder in declared:
                return ""
            return match.group(0)

        return PLACEHOLDER_PATTERN.sub(substitute, template.content), warnings
