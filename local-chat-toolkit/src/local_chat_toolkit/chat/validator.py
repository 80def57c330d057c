"""
Request validation.

'validate_request' is total: it never raises, whatever the UI sent. Checks run in a
fixed order and stop at the first problem so the user sees one clear reason.
"""

import math
from typing import Any

from local_chat_toolkit.chat.data_models import ValidationOutcome

_MISSING = object()


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(name, _MISSING)
    return getattr(obj, name, _MISSING)


def _is_non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check(request: Any) -> str | None:
    if request is None:
        return "Request is missing"

    if not _is_non_empty_str(_field(request, "conversation_id")):
        return "Conversation ID is required"

    user_text = _field(request, "user_text")
    if isinstance(user_text, str):
        if not user_text.strip():
            return "User message is empty"
    elif isinstance(user_text, (list, tuple)):
        if not any(_is_non_empty_str(part) for part in user_text):
            return "User message is empty"
    else:
        return "User message is required"

    backend = _field(request, "backend_config")
    if backend is _MISSING or backend is None:
        return "Backend configuration is required"
    if not _is_non_empty_str(_field(backend, "id")):
        return "Backend ID is required"
    if not _is_non_empty_str(_field(backend, "endpoint")):
        return "Backend endpoint is required"

    query_config = _field(request, "document_query_config")
    if query_config is _MISSING or query_config is None:
        return "Document query configuration is required"
    top_k = _field(query_config, "top_k")
    if not isinstance(top_k, int) or isinstance(top_k, bool) or top_k < 0:
        return "Document query top_k must be a non-negative integer"
    threshold = _field(query_config, "similarity_threshold")
    if not _is_number(threshold) or math.isnan(threshold) or not 0.0 <= threshold <= 1.0:
        return "Similarity threshold must be between 0 and 1"

    return None


def validate_request(request: Any) -> ValidationOutcome:
    try:
        reason = _check(request)
    except Exception as exc:
        # Properties on foreign request objects may raise.
        reason = f"Request could not be read: {exc}"
    if reason is not None:
        return ValidationOutcome(valid=False, reason=reason)
    return ValidationOutcome(valid=True)
