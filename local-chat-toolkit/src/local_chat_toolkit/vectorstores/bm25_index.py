"""
In-memory BM25 document index backed by 'rank-bm25'.

Each conversation gets its own corpus of text chunks. Raw BM25 scores are
unbounded, so they are normalised by the best score of the query into [0, 1]
before the similarity threshold is applied. Confidence is the mean relevance of
the returned sources.

The BM25 model is rebuilt lazily on the first query after documents were added;
queries themselves are pure in-memory work.
"""

import re
from typing import Any

from loguru import logger
from rank_bm25 import BM25Okapi  # type: ignore[import-untyped]

from local_chat_toolkit.vectorstores.base import DocumentIndex


class InMemoryDocumentIndex(DocumentIndex):
    """
    'DocumentIndex' holding one BM25 corpus per conversation.

    Attributes:
        corpora: Raw chunk texts per conversation id, in insertion order.
    """

    def __init__(self) -> None:
        self.corpora: dict[str, list[str]] = {}
        self._models: dict[str, BM25Okapi] = {}

    @staticmethod
    def _tokenize(text: str) -> list[str]:
        """Lowercase word-boundary tokenisation."""
        return re.findall(r"\b\w+\b", text.lower())

    def add_documents(self, conversation_id: str, texts: list[str]) -> None:
        chunks = [text for text in texts if text.strip()]
        if not chunks:
            return
        self.corpora.setdefault(conversation_id, []).extend(chunks)
        self._models.pop(conversation_id, None)
        logger.info(f"Indexed {len(chunks)} chunk(s) for conversation {conversation_id}")

    async def get_collection_stats(self, conversation_id: str) -> dict[str, Any]:
        corpus = self.corpora.get(conversation_id, [])
        return {
            "size_bytes": sum(len(chunk.encode("utf-8")) for chunk in corpus),
            "point_count": len(corpus),
        }

    async def query(
        self, conversation_id: str, text: str, top_k: int, similarity_threshold: float
    ) -> dict[str, Any]:
        corpus = self.corpora.get(conversation_id, [])
        if not corpus or top_k <= 0:
            return {"sources": [], "confidence": 0.0}

        if conversation_id not in self._models:
            self._models[conversation_id] = BM25Okapi([self._tokenize(chunk) for chunk in corpus])
        scores: list[float] = self._models[conversation_id].get_scores(self._tokenize(text)).tolist()

        best = max(scores)
        normalised = [min(max(score / best, 0.0), 1.0) if best > 0 else 0.0 for score in scores]
        ranked = sorted(range(len(corpus)), key=lambda i: normalised[i], reverse=True)
        selected = [i for i in ranked if normalised[i] >= similarity_threshold][:top_k]

        sources = [{"content": corpus[i], "relevance_score": normalised[i]} for i in selected]
        confidence = sum(normalised[i] for i in selected) / len(selected) if selected else 0.0
        logger.debug(f"BM25 query on {conversation_id}: {len(sources)}/{len(corpus)} chunk(s) above {similarity_threshold}")
        return {"sources": sources, "confidence": confidence}
