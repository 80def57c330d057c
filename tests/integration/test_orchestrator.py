"""
Integration tests for the chat generation orchestrator.

Every stage runs for real; only the external services (chat store, document index,
model backend) are scripted fakes. The tests follow the failure policy: which
failures end the turn, which only add a warning, and what happens to partial
output.
"""

import asyncio

import pytest

from fakes import (
    ConnectError,
    FakeChatStore,
    FakeDocumentIndex,
    HTTPStatusError,
    ScriptedBackend,
    make_messages,
    make_request,
    no_sleep,
)
from local_chat_toolkit.chat.data_models import DEFAULT_SYSTEM_PROMPT, OrchestratedResult
from local_chat_toolkit.chat.orchestrator import ChatOrchestrator, GenerationListener
from local_chat_toolkit.config import PROVIDER_TOKEN_LIMITS, ProviderTokenLimits
from local_chat_toolkit.llms.base import CancellationToken, Roles
from local_chat_toolkit.utils.errors import (
    ConfigurationError,
    ErrorKind,
    ModelBackendError,
    NotFoundError,
    ValidationError,
)
from local_chat_toolkit.utils.results import Failure


def orchestrator_for(store, index, backend, settings) -> ChatOrchestrator:
    return ChatOrchestrator(store=store, index=index, backend=backend, settings=settings, sleep=no_sleep)


class RecordingListener(GenerationListener):
    def __init__(self) -> None:
        self.partials: list[str] = []
        self.completed: list[OrchestratedResult] = []
        self.errors: list[Failure] = []

    def on_partial(self, text: str) -> None:
        self.partials.append(text)

    def on_complete(self, result: OrchestratedResult) -> None:
        self.completed.append(result)

    def on_error(self, failure: Failure) -> None:
        self.errors.append(failure)


class TestSuccessfulTurns:
    @pytest.mark.asyncio
    async def test_new_conversation_without_documents(self, settings):
        store = FakeChatStore()
        store.add_conversation("c1")
        index = FakeDocumentIndex()
        backend = ScriptedBackend()

        result = await orchestrator_for(store, index, backend, settings).run(
            make_request(conversation_id="c1", user_text="Hello")
        )

        assert result.succeeded
        assert result.text == "Hello, world!"
        prompt = backend.requests[0].prompt
        assert prompt.startswith(DEFAULT_SYSTEM_PROMPT)
        assert prompt.endswith("[USER MESSAGE]\nHello")
        assert "[DOCUMENTS]" not in prompt
        assert "[HISTORY MESSAGES]\n" not in prompt
        assert index.query_calls == []
        assert result.warnings == []

    @pytest.mark.asyncio
    async def test_documents_and_history_reach_the_prompt(self, store, index, backend, settings):
        result = await orchestrator_for(store, index, backend, settings).run(make_request())

        prompt = backend.requests[0].prompt
        assert result.succeeded
        assert "[DOCUMENTS]" in prompt
        assert "1. Notice must be given three months ahead." in prompt
        assert "[HISTORY MESSAGES]\nUser: A message of some length." in prompt

    @pytest.mark.asyncio
    async def test_model_request_uses_settings_and_request(self, store, index, backend, settings):
        await orchestrator_for(store, index, backend, settings).run(make_request())

        request = backend.requests[0]
        assert request.model == "test-model"
        assert request.endpoint == "http://localhost:11434"
        assert request.options.temperature == 0.7
        assert request.options.max_response_tokens == 2048

    @pytest.mark.asyncio
    async def test_request_model_overrides_default(self, store, index, backend, settings):
        result = await orchestrator_for(store, index, backend, settings).run(make_request(model="mistral:7b"))

        assert backend.requests[0].model == "mistral:7b"
        assert result.assistant_message.model_info.name == "mistral:7b"
        assert result.assistant_message.model_info.provider == "ollama"

    @pytest.mark.asyncio
    async def test_both_messages_are_persisted_in_order(self, store, index, backend, settings):
        result = await orchestrator_for(store, index, backend, settings).run(make_request())

        assert result.persistence.user_message_saved
        assert result.persistence.assistant_message_saved
        assert [(call[1], call[2]) for call in store.append_calls] == [
            ("user", "What is in my documents?"),
            ("assistant", "Hello, world!"),
        ]
        assert result.user_message.role == Roles.USER
        assert result.assistant_message.content == "Hello, world!"

    @pytest.mark.asyncio
    async def test_fragments_are_joined(self, store, index, backend, settings):
        await orchestrator_for(store, index, backend, settings).run(make_request(user_text=["Hello", " there "]))

        assert backend.requests[0].prompt.endswith("[USER MESSAGE]\nHello there")
        assert store.append_calls[0][2] == "Hello there"

    @pytest.mark.asyncio
    async def test_persist_history_false_writes_nothing(self, store, index, backend, settings):
        result = await orchestrator_for(store, index, backend, settings).run(make_request(persist_history=False))

        assert result.succeeded
        assert result.persistence is None
        assert store.append_calls == []

    @pytest.mark.asyncio
    async def test_already_persisted_user_message_is_not_written_again(self, store, index, backend, settings):
        result = await orchestrator_for(store, index, backend, settings).run(make_request(user_message_persisted=True))

        assert result.persistence.complete
        assert [call[1] for call in store.append_calls] == ["assistant"]

    @pytest.mark.asyncio
    async def test_long_history_is_summarized_with_warning(self, index, backend, settings):
        store = FakeChatStore()
        store.add_conversation("conv-1", make_messages(50, content="Long message. " * 30))

        result = await orchestrator_for(store, index, backend, settings).run(make_request())

        assert result.succeeded
        assert any(warning.startswith("history summarized") for warning in result.warnings)
        assert "System: Summary of 45 earlier messages:" in backend.requests[0].prompt

    @pytest.mark.asyncio
    async def test_provider_message_cap_trims_history(self, store, index, backend, settings, monkeypatch):
        monkeypatch.setitem(
            PROVIDER_TOKEN_LIMITS,
            "ollama",
            ProviderTokenLimits(max_context_tokens=4096, max_response_tokens=2048, reserved_tokens=200, max_messages=2),
        )

        result = await orchestrator_for(store, index, backend, settings).run(make_request())

        assert result.succeeded
        assert "history summarized: 0 message(s) summarized, 2 dropped" in result.warnings
        history = backend.requests[0].prompt.split("[HISTORY MESSAGES]\n")[1].split("\n\n")[0]
        assert history.splitlines() == ["User: A message of some length.", "Assistant: A message of some length."]

    @pytest.mark.asyncio
    async def test_concurrent_turns_on_different_conversations(self, index, settings):
        store = FakeChatStore()
        store.add_conversation("a")
        store.add_conversation("b")
        orchestrator = orchestrator_for(store, index, ScriptedBackend(), settings)

        first, second = await asyncio.gather(
            orchestrator.run(make_request(conversation_id="a", user_text="first")),
            orchestrator.run(make_request(conversation_id="b", user_text="second")),
        )

        assert first.succeeded and second.succeeded
        assert [m.content for m in store.inner.conversations["a"].messages] == ["first", "Hello, world!"]
        assert [m.content for m in store.inner.conversations["b"].messages] == ["second", "Hello, world!"]


class TestFatalFailures:
    @pytest.mark.asyncio
    async def test_invalid_request_makes_no_external_calls(self, store, index, backend, settings):
        result = await orchestrator_for(store, index, backend, settings).run(make_request(user_text="   "))

        assert not result.succeeded
        assert isinstance(result.failure.error, ValidationError)
        assert result.failure.stage == "validation"
        assert store.get_calls == 0
        assert index.stats_calls == 0
        assert backend.requests == []

    @pytest.mark.asyncio
    async def test_missing_conversation_is_fatal(self, store, index, backend, settings):
        result = await orchestrator_for(store, index, backend, settings).run(make_request(conversation_id="ghost"))

        assert isinstance(result.failure.error, NotFoundError)
        assert index.stats_calls == 0
        assert backend.requests == []

    @pytest.mark.asyncio
    async def test_unreachable_history_store_is_fatal(self, store, index, backend, settings):
        store.get_errors = [ConnectError("refused")] * 3

        result = await orchestrator_for(store, index, backend, settings).run(make_request())

        assert result.failure.kind == ErrorKind.NETWORK
        assert store.get_calls == 3
        assert backend.requests == []

    @pytest.mark.asyncio
    async def test_inconsistent_token_limits_are_fatal(self, store, index, backend, settings, monkeypatch):
        monkeypatch.setitem(
            PROVIDER_TOKEN_LIMITS,
            "ollama",
            ProviderTokenLimits(max_context_tokens=100, max_response_tokens=90, reserved_tokens=20),
        )

        result = await orchestrator_for(store, index, backend, settings).run(make_request())

        assert isinstance(result.failure.error, ConfigurationError)
        assert result.failure.stage == "budget"
        assert backend.requests == []


class TestDegradedTurns:
    @pytest.mark.asyncio
    async def test_document_index_down_still_answers(self, store, index, backend, settings):
        index.stats_errors = [ConnectError("index offline")] * 3

        result = await orchestrator_for(store, index, backend, settings).run(make_request())

        assert result.succeeded
        assert result.text == "Hello, world!"
        assert any(warning.startswith("document context unavailable") for warning in result.warnings)
        assert "[DOCUMENTS]" not in backend.requests[0].prompt

    @pytest.mark.asyncio
    async def test_assistant_persistence_failure_keeps_the_answer(self, store, index, backend, settings):
        store.append_results["assistant"] = ConnectError("store offline")

        result = await orchestrator_for(store, index, backend, settings).run(make_request())

        assert result.succeeded
        assert result.text == "Hello, world!"
        assert result.persistence.user_message_saved
        assert result.persistence.assistant_message_saved is False
        assert any(warning.startswith("persistence failed") for warning in result.warnings)


class TestModelFailures:
    @pytest.mark.asyncio
    async def test_transient_failures_before_first_chunk_are_retried(self, store, index, settings):
        backend = ScriptedBackend(errors=[ConnectError("refused"), HTTPStatusError(503)])

        result = await orchestrator_for(store, index, backend, settings).run(make_request())

        assert result.succeeded
        assert result.text == "Hello, world!"
        assert len(backend.requests) == 3

    @pytest.mark.asyncio
    async def test_bad_request_is_not_retried(self, store, index, settings):
        backend = ScriptedBackend(errors=[HTTPStatusError(400)])

        result = await orchestrator_for(store, index, backend, settings).run(make_request())

        assert result.failure.kind == ErrorKind.BAD_REQUEST
        assert result.failure.stage == "generation"
        assert len(backend.requests) == 1

    @pytest.mark.asyncio
    async def test_failure_after_partial_output_is_not_retried(self, store, index, settings):
        backend = ScriptedBackend(fail_after=2)
        partials: list[str] = []

        result = await orchestrator_for(store, index, backend, settings).run(make_request(), on_partial=partials.append)

        assert not result.succeeded
        assert result.text == "Hello, "
        assert partials == ["Hello", ", "]
        assert len(backend.requests) == 1
        assert store.append_calls == []

    @pytest.mark.asyncio
    async def test_empty_response_is_a_failure(self, store, index, settings):
        backend = ScriptedBackend(chunks=[])

        result = await orchestrator_for(store, index, backend, settings).run(make_request())

        assert isinstance(result.failure.error, ModelBackendError)
        assert store.append_calls == []

    @pytest.mark.asyncio
    async def test_whitespace_only_response_is_a_failure(self, store, index, settings):
        backend = ScriptedBackend(chunks=["  ", "\n"])

        result = await orchestrator_for(store, index, backend, settings).run(make_request())

        assert isinstance(result.failure.error, ModelBackendError)
        assert store.append_calls == []

    @pytest.mark.asyncio
    async def test_stalled_model_times_out(self, store, index, settings):
        class StalledBackend(ScriptedBackend):
            async def generate_stream(self, request, cancellation=None):
                self.requests.append(request)
                await asyncio.sleep(10)
                yield "never"

        backend = StalledBackend()
        fast = settings.model_copy(update={"model_timeout": 0.05})

        result = await orchestrator_for(store, index, backend, fast).run(make_request())

        assert result.failure.kind == ErrorKind.TIMEOUT
        assert len(backend.requests) == 3


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_after_two_of_five_chunks(self, store, index, settings):
        backend = ScriptedBackend(chunks=["one ", "two ", "three ", "four ", "five"])
        token = CancellationToken()
        partials: list[str] = []

        def on_partial(text: str) -> None:
            partials.append(text)
            if len(partials) == 2:
                token.cancel()

        result = await orchestrator_for(store, index, backend, settings).run(
            make_request(cancellation_token=token), on_partial=on_partial
        )

        assert result.succeeded
        assert result.cancelled
        assert result.text == "one two "
        assert partials == ["one ", "two "]
        assert backend.yielded == 2
        assert "generation cancelled" in result.warnings
        assert store.append_calls[-1][2] == "one two "

    @pytest.mark.asyncio
    async def test_cancel_before_streaming_returns_empty_cancelled_result(self, store, index, backend, settings):
        token = CancellationToken()
        token.cancel()

        result = await orchestrator_for(store, index, backend, settings).run(make_request(cancellation_token=token))

        assert result.cancelled
        assert result.succeeded
        assert result.text == ""
        assert store.append_calls == []


class TestGenerationListener:
    @pytest.mark.asyncio
    async def test_listener_receives_partials_then_completion(self, store, index, backend, settings):
        listener = RecordingListener()

        result = await orchestrator_for(store, index, backend, settings).generate(make_request(), listener)

        assert listener.partials == ["Hello", ", ", "world", "!"]
        assert listener.completed == [result]
        assert listener.errors == []

    @pytest.mark.asyncio
    async def test_listener_receives_error(self, store, index, backend, settings):
        listener = RecordingListener()

        result = await orchestrator_for(store, index, backend, settings).generate(
            make_request(conversation_id=""), listener
        )

        assert listener.errors == [result.failure]
        assert listener.completed == []
