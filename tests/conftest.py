"""
Core pytest configuration and fixtures for the chat pipeline tests.

Fakes of the external services live in 'fakes.py'; this module wires them into
fixtures with a small default conversation and document collection.
"""

import pytest

from fakes import FakeChatStore, FakeDocumentIndex, ScriptedBackend, make_messages
from local_chat_toolkit.config import Settings

# ===== FIXTURES =====


@pytest.fixture
def settings() -> Settings:
    """Settings without retry delays and with short timeouts."""
    return Settings(
        _env_file=None,
        default_model="test-model",
        retry_max_attempts=3,
        retry_base_delay=0.0,
        retry_max_delay=0.0,
        document_timeout=1.0,
        history_timeout=1.0,
        model_timeout=2.0,
        persistence_timeout=1.0,
    )


@pytest.fixture
def store() -> FakeChatStore:
    """Store holding 'conv-1' with four alternating user/assistant messages."""
    store = FakeChatStore()
    store.add_conversation("conv-1", make_messages(4))
    return store


@pytest.fixture
def index() -> FakeDocumentIndex:
    return FakeDocumentIndex(
        sources=[
            {"content": "The lease ends on 31 March.", "relevance_score": 0.6},
            {"content": "Notice must be given three months ahead.", "relevance_score": 0.9},
        ]
    )


@pytest.fixture
def backend() -> ScriptedBackend:
    return ScriptedBackend()


# ===== CONFIGURATION =====


def pytest_configure(config):
    """Pytest configuration."""
    config.addinivalue_line("markers", "integration: marks tests as integration tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on location."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
