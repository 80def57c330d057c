"""
End-to-end chat session against a local Ollama server.

Each step is an independent function so you can run and inspect individual
stages without executing the whole session. loguru logs the intermediate state
at every stage, the answer itself is streamed to stdout as it arrives.

Steps at a glance:
    1  load_document_chunks()  - Read .txt / .md files and split them into paragraphs
    2  build_index()           - Index the chunks for one conversation (BM25)
    3  inspect_retrieval()     - Show which chunks the pipeline would use
    4  build_orchestrator()    - Wire store, index, backend and settings together
    5  chat()                  - Run one turn and print the streamed answer

Data:
    Documents are read from <project-root>/data/ (only .txt and .md). Without
    documents the session still works, answers then rely on history alone.

Configuration:
    Settings come from LOCAL_CHAT_* environment variables (see local_chat_toolkit.config),
    e.g. LOCAL_CHAT_DEFAULT_MODEL or LOCAL_CHAT_OLLAMA_HOST.

Usage:
    python -m desktop_assistant.chat_session

    Override the questions or the backend id at runtime:
        QUERY="What is the notice period?" python -m desktop_assistant.chat_session
        BACKEND=embedded-ollama python -m desktop_assistant.chat_session
"""

import asyncio
import os
from pathlib import Path

from loguru import logger

from local_chat_toolkit.chat import BackendConfig, ChatOrchestrator, DocumentQueryConfig, GenerationRequest
from local_chat_toolkit.config import Settings
from local_chat_toolkit.conversation_database.in_memory import InMemoryChatStore
from local_chat_toolkit.llms.base import CancellationToken
from local_chat_toolkit.llms.ollama import OllamaBackend
from local_chat_toolkit.vectorstores.bm25_index import InMemoryDocumentIndex

# Paths and defaults
_ROOT = Path(__file__).parents[3]  # <project-root>/
DATA_DIR = _ROOT / "data"

RETRIEVER_TOP_K = 5
SIMILARITY_THRESHOLD = 0.2
MIN_CHUNK_LENGTH = 40

DEFAULT_QUERIES = [
    "Give me a short overview of the documents I attached.",
    "Which points in there should I double-check?",
]

_SUPPORTED_EXTENSIONS = {".txt", ".md"}


def load_document_chunks(data_dir: Path = DATA_DIR) -> list[str]:
    """Split every supported file in 'data_dir' into paragraph chunks.

    Paragraphs shorter than 'MIN_CHUNK_LENGTH' are merged into the next one so
    headings stay attached to their text.
    """
    if not data_dir.exists():
        logger.warning(f"No data directory at {data_dir}, continuing without documents")
        return []

    chunks: list[str] = []
    for file_path in sorted(f for f in data_dir.iterdir() if f.is_file()):
        if file_path.suffix.lower() not in _SUPPORTED_EXTENSIONS:
            logger.warning(f"Skipping unsupported file type {file_path.suffix!r}: {file_path.name}")
            continue
        pending = ""
        file_chunks: list[str] = []
        for paragraph in file_path.read_text(encoding="utf-8").split("\n\n"):
            pending = f"{pending}\n{paragraph}".strip() if pending else paragraph.strip()
            if len(pending) >= MIN_CHUNK_LENGTH:
                file_chunks.append(pending)
                pending = ""
        if pending:
            file_chunks.append(pending)
        logger.debug(f"  {file_path.name}: {len(file_chunks)} chunks")
        chunks.extend(file_chunks)

    logger.info(f"Done, {len(chunks)} chunks total")
    return chunks


def build_index(conversation_id: str, chunks: list[str]) -> InMemoryDocumentIndex:
    index = InMemoryDocumentIndex()
    index.add_documents(conversation_id, chunks)
    return index


async def inspect_retrieval(index: InMemoryDocumentIndex, conversation_id: str, query: str) -> None:
    """Print the chunks retrieved for 'query' before the model sees anything."""
    result = await index.query(conversation_id, query, RETRIEVER_TOP_K, SIMILARITY_THRESHOLD)
    logger.info(f"Retrieval for query: {query!r} (confidence={result['confidence']:.2f})")
    for i, source in enumerate(result["sources"], 1):
        print(f"  [{i}] score={source['relevance_score']:.4f}")
        print(f"       {source['content'][:300].strip()!r}")


def build_orchestrator(
    store: InMemoryChatStore, index: InMemoryDocumentIndex, settings: Settings
) -> ChatOrchestrator:
    orchestrator = ChatOrchestrator(store=store, index=index, backend=OllamaBackend(), settings=settings)
    logger.info(f"Chat orchestrator ready (model={settings.default_model}  host={settings.ollama_host})")
    return orchestrator


async def chat(
    orchestrator: ChatOrchestrator,
    conversation_id: str,
    query: str,
    backend: str,
    endpoint: str,
    cancellation: CancellationToken | None = None,
) -> str:
    """Run one chat turn, stream the answer to stdout and log warnings."""
    logger.info(f"Query: {query!r}")
    print("\nAssistant: ", end="", flush=True)
    result = await orchestrator.run(
        GenerationRequest(
            conversation_id=conversation_id,
            user_text=query,
            backend_config=BackendConfig(id=backend, endpoint=endpoint),
            document_query_config=DocumentQueryConfig(top_k=RETRIEVER_TOP_K, similarity_threshold=SIMILARITY_THRESHOLD),
            cancellation_token=cancellation or CancellationToken(),
        ),
        on_partial=lambda chunk: print(chunk, end="", flush=True),
    )
    print()

    for warning in result.warnings:
        logger.warning(warning)
    if result.failure is not None:
        logger.error(f"Turn failed at {result.failure.stage!r}: {result.failure.reason}")
    elif result.persistence is not None and not result.persistence.complete:
        logger.warning(f"Turn not fully saved: {result.persistence.errors}")
    return result.text


async def main() -> None:
    settings = Settings()
    backend = os.getenv("BACKEND", "ollama")
    queries = [os.environ["QUERY"]] if os.getenv("QUERY") else DEFAULT_QUERIES

    store = InMemoryChatStore()
    conversation = store.create_conversation(title="Chat session")
    index = build_index(conversation.id, load_document_chunks())

    await inspect_retrieval(index, conversation.id, queries[0])
    orchestrator = build_orchestrator(store, index, settings)

    for query in queries:
        await chat(orchestrator, conversation.id, query, backend, settings.ollama_host)

    logger.info(f"Conversation {conversation.id} now holds {len(store.conversations[conversation.id].messages)} messages")


if __name__ == "__main__":
    asyncio.run(main())
