"""
Document index abstraction and retrieval payload models.

A 'DocumentIndex' holds the chunks of the documents a user attached to one
conversation (one collection per conversation). The pipeline only needs two
operations: collection statistics, to skip retrieval when nothing was uploaded,
and a thresholded top-k query.

Like the chat store, the index returns plain dicts. 'CollectionStats' and
'DocumentQueryResult' describe the expected shape and are used by the document
loader to parse the payloads at the edge.

Concrete implementation: 'InMemoryDocumentIndex' (BM25 over raw text).
"""

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field


class DocumentSource(BaseModel):
    """A retrieved chunk together with its relevance score in [0, 1]."""

    content: str
    relevance_score: float = Field(ge=0.0, le=1.0)


class CollectionStats(BaseModel):
    size_bytes: int = Field(ge=0)
    point_count: int = Field(ge=0)


class DocumentQueryResult(BaseModel):
    sources: list[DocumentSource] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class DocumentIndex(ABC):
    """
    Abstract base class for per-conversation document collections.

    A collection that does not exist may either report empty statistics or raise
    an error that classifies as NOT_FOUND; the document loader treats both as
    "no documents".
    """

    @abstractmethod
    async def get_collection_stats(self, conversation_id: str) -> dict[str, Any]:
        """Return '{"size_bytes": int, "point_count": int}' for the conversation's collection."""
        pass

    @abstractmethod
    async def query(
        self, conversation_id: str, text: str, top_k: int, similarity_threshold: float
    ) -> dict[str, Any]:
        """Return '{"sources": [{"content", "relevance_score"}], "confidence": float}'."""
        pass
