"""
Tests for document context loading.

A conversation without documents is the normal case and must come back as an
empty result; only failures of the index itself are reported as 'Failure'.
"""

import pytest

from fakes import ConnectError, FakeDocumentIndex, HTTPStatusError
from local_chat_toolkit.chat.data_models import DocumentQueryConfig
from local_chat_toolkit.chat.document_loader import format_sources, load_document_context
from local_chat_toolkit.utils.errors import ErrorKind, MalformedResponseError
from local_chat_toolkit.utils.results import Failure, Ok
from local_chat_toolkit.utils.retry import RetryConfig
from local_chat_toolkit.vectorstores.base import DocumentSource

FAST_RETRY = RetryConfig(max_attempts=3, base_delay=0.0, max_delay=0.0)


class TestEmptyCollections:
    @pytest.mark.asyncio
    async def test_empty_collection_returns_empty_result_without_query(self):
        index = FakeDocumentIndex(stats={"size_bytes": 0, "point_count": 0})

        result = await load_document_context(index, "conv-1", "question", DocumentQueryConfig())

        assert isinstance(result, Ok)
        assert result.value.is_empty
        assert index.query_calls == []

    @pytest.mark.asyncio
    async def test_zero_points_with_nonzero_size_is_empty(self):
        index = FakeDocumentIndex(stats={"size_bytes": 512, "point_count": 0})
        result = await load_document_context(index, "conv-1", "question", DocumentQueryConfig())
        assert result.value.is_empty

    @pytest.mark.asyncio
    async def test_top_k_zero_skips_retrieval(self, index):
        result = await load_document_context(index, "conv-1", "question", DocumentQueryConfig(top_k=0))

        assert result.value.is_empty
        assert index.stats_calls == 0

    @pytest.mark.asyncio
    async def test_missing_collection_is_empty_not_failure(self):
        index = FakeDocumentIndex()
        index.stats_errors = [HTTPStatusError(404)]

        result = await load_document_context(index, "conv-1", "question", DocumentQueryConfig(), retry=FAST_RETRY)

        assert isinstance(result, Ok)
        assert result.value.is_empty
        assert index.stats_calls == 1

    @pytest.mark.asyncio
    async def test_nothing_above_threshold_is_empty(self):
        index = FakeDocumentIndex(stats={"size_bytes": 10, "point_count": 1})
        result = await load_document_context(index, "conv-1", "question", DocumentQueryConfig(similarity_threshold=0.99))
        assert result.value.is_empty


class TestRetrieval:
    @pytest.mark.asyncio
    async def test_sources_sorted_and_formatted(self, index):
        result = await load_document_context(index, "conv-1", "When can I leave?", DocumentQueryConfig(top_k=3))

        assert isinstance(result, Ok)
        context = result.value
        assert [s.relevance_score for s in context.sources] == [0.9, 0.6]
        assert context.text == "1. Notice must be given three months ahead.\n\n2. The lease ends on 31 March."
        assert context.confidence == 0.8
        assert index.query_calls == [("conv-1", "When can I leave?", 3, 0.0)]

    def test_format_sources_numbers_from_one(self):
        sources = [DocumentSource(content="alpha", relevance_score=1.0), DocumentSource(content="beta", relevance_score=0.5)]
        assert format_sources(sources) == "1. alpha\n\n2. beta"

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self, index):
        index.query_errors = [ConnectError("refused"), ConnectError("refused")]

        result = await load_document_context(index, "conv-1", "q", DocumentQueryConfig(), retry=FAST_RETRY)

        assert isinstance(result, Ok)
        assert len(result.value.sources) == 2
        assert len(index.query_calls) == 3


class TestFailures:
    @pytest.mark.asyncio
    async def test_unreachable_index_is_failure_after_retries(self, index):
        index.stats_errors = [ConnectError("refused")] * 3

        result = await load_document_context(index, "conv-1", "q", DocumentQueryConfig(), retry=FAST_RETRY)

        assert isinstance(result, Failure)
        assert result.kind == ErrorKind.NETWORK
        assert result.error.cause is not None
        assert result.stage == "document_context"
        assert index.stats_calls == 3

    @pytest.mark.asyncio
    async def test_malformed_stats_payload(self):
        index = FakeDocumentIndex(stats={"size_bytes": "lots"})

        result = await load_document_context(index, "conv-1", "q", DocumentQueryConfig())

        assert isinstance(result, Failure)
        assert isinstance(result.error, MalformedResponseError)

    @pytest.mark.asyncio
    async def test_malformed_query_payload(self, index):
        index.query_payload_override = {"sources": [{"content": "x", "relevance_score": 7}], "confidence": 0.5}

        result = await load_document_context(index, "conv-1", "q", DocumentQueryConfig())

        assert isinstance(result, Failure)
        assert result.kind == ErrorKind.MALFORMED

    @pytest.mark.asyncio
    async def test_server_error_is_not_retried(self, index):
        index.query_errors = [HTTPStatusError(500)]

        result = await load_document_context(index, "conv-1", "q", DocumentQueryConfig(), retry=FAST_RETRY)

        assert isinstance(result, Failure)
        assert result.kind == ErrorKind.INTERNAL
        assert len(index.query_calls) == 1
