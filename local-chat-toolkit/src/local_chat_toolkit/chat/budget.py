"""
Context budget enforcement.

Fits a 'ConversationContext' into the token budget of the selected provider:

    0. If the provider sets 'max_messages', only the newest that many messages are
       kept, regardless of their token cost. They count as dropped.
    1. A context that already fits is returned unchanged (the very same object).
    2. Otherwise the newest 'preserve_recent_messages' messages are kept verbatim and
       everything older is replaced by a single synthetic 'system' message holding an
       extractive summary (questions first, then other key sentences), capped at a
       quarter of the budget.
    3. If that is still too large, the oldest preserved messages are dropped one by
       one. The summary and the newest message are never dropped; if those two alone
       exceed the budget the context is passed on as is and the model backend has
       the final word.

'ContextBudgetManager' adds a small TTL cache in front of the summarisation, since
the same long conversation is usually processed again on the next turn.
"""

import hashlib
import re
import time
from collections.abc import Callable, Sequence

from loguru import logger

from local_chat_toolkit.chat.data_models import BudgetReport, ConversationContext
from local_chat_toolkit.chat.tokens import estimate_context_tokens, estimate_tokens
from local_chat_toolkit.config import ProviderTokenLimits
from local_chat_toolkit.conversation_database.data_models.message import ConversationMessage
from local_chat_toolkit.utils.cache import TTLCache

DEFAULT_PRESERVE_RECENT_MESSAGES = 5
MAX_KEY_POINTS = 10
MIN_SENTENCE_LENGTH = 10

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")


def extract_key_points(messages: Sequence[ConversationMessage], max_points: int = MAX_KEY_POINTS) -> list[str]:
    """Pick the sentences worth keeping, questions before statements, each group in conversation order."""
    questions: list[str] = []
    statements: list[str] = []
    for message in messages:
        for sentence in _SENTENCE_SPLIT.split(message.content.strip()):
            sentence = " ".join(sentence.split())
            if len(sentence) <= MIN_SENTENCE_LENGTH:
                continue
            point = f"{message.role.value.capitalize()}: {sentence}"
            (questions if sentence.endswith("?") else statements).append(point)
    return (questions + statements)[:max_points]


def summarize_messages(messages: Sequence[ConversationMessage], max_tokens: int) -> ConversationMessage:
    """Build the synthetic system message that stands in for 'messages'."""
    text = f"Summary of {len(messages)} earlier messages:"
    for point in extract_key_points(messages):
        candidate = f"{text}\n- {point}"
        if estimate_tokens(candidate) > max_tokens:
            break
        text = candidate
    if estimate_tokens(text) > max_tokens:
        text = text[: max_tokens * 4].strip()

    return ConversationMessage.system(
        text,
        timestamp=messages[-1].timestamp,
        metadata={"summary": True, "summarized_count": len(messages)},
    )


def _over_message_cap(context: ConversationContext, limits: ProviderTokenLimits) -> bool:
    return limits.max_messages is not None and len(context.messages) > limits.max_messages


def _cap_messages(context: ConversationContext, limits: ProviderTokenLimits) -> tuple[ConversationContext, int]:
    """Keep the newest 'limits.max_messages' messages, whatever they cost in tokens."""
    if not _over_message_cap(context, limits):
        return context, 0
    excess = len(context.messages) - limits.max_messages
    logger.info(f"Dropping {excess} oldest message(s) to respect the cap of {limits.max_messages} messages")
    return context.model_copy(update={"messages": context.messages[excess:]}), excess


def _enforce(context: ConversationContext, limits: ProviderTokenLimits, preserve_recent_messages: int) -> BudgetReport:
    limits.validate_consistency()

    context, capped = _cap_messages(context, limits)
    estimated = estimate_context_tokens(context)
    if estimated <= limits.max_context_tokens:
        return BudgetReport(context=context, dropped_count=capped, estimated_tokens=estimated)

    keep = max(preserve_recent_messages, 1)
    summarizable = list(context.messages[:-keep])
    preserved = list(context.messages[-keep:])

    summary: list[ConversationMessage] = []
    if summarizable:
        summary = [summarize_messages(summarizable, max(limits.max_context_tokens // 4, 1))]

    candidate = context.model_copy(update={"messages": tuple(summary + preserved)})
    dropped = capped
    while estimate_context_tokens(candidate) > limits.max_context_tokens and len(preserved) > 1:
        preserved.pop(0)
        dropped += 1
        candidate = context.model_copy(update={"messages": tuple(summary + preserved)})

    final_tokens = estimate_context_tokens(candidate)
    logger.info(
        f"Context reduced from {estimated} to {final_tokens} tokens "
        f"({len(summarizable)} summarized, {dropped} dropped, budget {limits.max_context_tokens})"
    )
    if final_tokens > limits.max_context_tokens:
        logger.warning(f"Context still exceeds the budget ({final_tokens} > {limits.max_context_tokens})")

    return BudgetReport(
        context=candidate,
        summarized_count=len(summarizable),
        dropped_count=dropped,
        estimated_tokens=final_tokens,
    )


def enforce_budget(
    context: ConversationContext,
    limits: ProviderTokenLimits,
    preserve_recent_messages: int = DEFAULT_PRESERVE_RECENT_MESSAGES,
) -> ConversationContext:
    """Return a context that fits 'limits.max_context_tokens'.

    Raises:
        ConfigurationError: If 'limits' are inconsistent.
    """
    return _enforce(context, limits, preserve_recent_messages).context


class ContextBudgetManager:
    """
    Budget enforcement with a cache of processed contexts.

    Only reduced contexts are cached; a context that already fits is always returned
    as the caller's own object. Cached contexts are frozen and may be shared between
    requests.
    """

    def __init__(
        self,
        preserve_recent_messages: int = DEFAULT_PRESERVE_RECENT_MESSAGES,
        cache_ttl: float = 300.0,
        cache_max_entries: int = 128,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.preserve_recent_messages = preserve_recent_messages
        self.cache: TTLCache[BudgetReport] = TTLCache(ttl=cache_ttl, max_entries=cache_max_entries, clock=clock)

    def _cache_key(self, context: ConversationContext, limits: ProviderTokenLimits) -> str:
        digest = hashlib.sha256()
        digest.update(context.model_dump_json().encode("utf-8"))
        digest.update(limits.model_dump_json().encode("utf-8"))
        digest.update(str(self.preserve_recent_messages).encode("utf-8"))
        return digest.hexdigest()

    def enforce(self, context: ConversationContext, limits: ProviderTokenLimits) -> BudgetReport:
        limits.validate_consistency()
        estimated = estimate_context_tokens(context)
        if estimated <= limits.max_context_tokens and not _over_message_cap(context, limits):
            return BudgetReport(context=context, estimated_tokens=estimated)

        key = self._cache_key(context, limits)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("Reusing cached reduced context")
            return cached

        report = _enforce(context, limits, self.preserve_recent_messages)
        self.cache.set(key, report)
        return report
