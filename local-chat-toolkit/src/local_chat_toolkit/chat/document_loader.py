"""
Document context loading.

Retrieves the chunks of the user's attached documents that are relevant to the new
message. A conversation without documents is the common case and yields an empty
result, never a failure. Failures of the index itself (unreachable, timed out,
malformed payload) are returned as 'Failure' values; the orchestrator treats them as
non-fatal and answers without document context.
"""

from loguru import logger

from local_chat_toolkit.chat.data_models import DocumentContextResult, DocumentQueryConfig
from local_chat_toolkit.utils.errors import ErrorKind, MalformedResponseError, as_pipeline_error, classify_error
from local_chat_toolkit.utils.results import Failure, Malformed, Ok, Parsed, Result, parse_payload
from local_chat_toolkit.utils.retry import RetryConfig, with_retry, with_timeout
from local_chat_toolkit.vectorstores.base import CollectionStats, DocumentIndex, DocumentQueryResult, DocumentSource

STAGE = "document_context"


def format_sources(sources: list[DocumentSource] | tuple[DocumentSource, ...]) -> str:
    """Numbered list of chunk contents separated by blank lines."""
    return "\n\n".join(f"{n}. {source.content}" for n, source in enumerate(sources, start=1))


async def load_document_context(
    index: DocumentIndex,
    conversation_id: str,
    query_text: str,
    config: DocumentQueryConfig,
    retry: RetryConfig | None = None,
    timeout: float | None = None,
) -> Result[DocumentContextResult]:
    """Query the conversation's document collection for 'query_text'.

    Args:
        index: Document index holding one collection per conversation.
        conversation_id: Collection to query.
        query_text: The new user message.
        config: 'top_k' and 'similarity_threshold'; 'top_k == 0' disables retrieval.
        retry: Backoff for transient index failures.
        timeout: Bound for each individual index call, in seconds.

    Returns:
        'Ok(DocumentContextResult)', possibly empty, or 'Failure' if the index could
        not be used.
    """
    if config.top_k == 0:
        logger.debug("Document retrieval disabled (top_k=0)")
        return Ok(DocumentContextResult.empty())

    try:
        raw_stats = await with_retry(
            lambda: with_timeout(index.get_collection_stats(conversation_id), timeout, operation_name="collection stats"),
            retry,
            operation_name="collection stats",
        )
        match parse_payload(CollectionStats, raw_stats):
            case Malformed(reason):
                return Failure(MalformedResponseError(f"Collection stats: {reason}"), STAGE)
            case Parsed(stats):
                pass

        if stats.size_bytes == 0 or stats.point_count == 0:
            logger.debug(f"No documents attached to conversation {conversation_id}")
            return Ok(DocumentContextResult.empty())

        raw_result = await with_retry(
            lambda: with_timeout(
                index.query(conversation_id, query_text, config.top_k, config.similarity_threshold),
                timeout,
                operation_name="document query",
            ),
            retry,
            operation_name="document query",
        )
    except Exception as exc:
        if classify_error(exc) == ErrorKind.NOT_FOUND:
            logger.debug(f"No document collection for conversation {conversation_id}")
            return Ok(DocumentContextResult.empty())
        return Failure(as_pipeline_error(exc, "Document index unavailable"), STAGE)

    match parse_payload(DocumentQueryResult, raw_result):
        case Malformed(reason):
            return Failure(MalformedResponseError(f"Document query: {reason}"), STAGE)
        case Parsed(result):
            pass

    sources = sorted(result.sources, key=lambda source: source.relevance_score, reverse=True)
    if not sources:
        logger.info(f"No document chunks above threshold {config.similarity_threshold}")
        return Ok(DocumentContextResult.empty())

    logger.info(f"Retrieved {len(sources)} document chunk(s), confidence {result.confidence:.2f}")
    return Ok(
        DocumentContextResult(
            sources=tuple(sources),
            confidence=result.confidence,
            text=format_sources(sources),
        )
    )
