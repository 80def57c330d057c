"""
Token estimation.

Real tokenisers differ per model, so the pipeline uses a cheap, deterministic
approximation of four characters per token. It is monotonic in text length, which
is all the budget manager relies on.
"""

import math

from local_chat_toolkit.chat.data_models import ConversationContext

CHARS_PER_TOKEN = 4
MESSAGE_OVERHEAD_TOKENS = 4


def estimate_tokens(text: str | None) -> int:
    if not isinstance(text, str):
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_context_tokens(context: ConversationContext) -> int:
    """System prompt plus every message, each message carrying a fixed formatting overhead."""
    total = estimate_tokens(context.system_prompt)
    for message in context.messages:
        total += estimate_tokens(message.content) + MESSAGE_OVERHEAD_TOKENS
    return total
