"""
Ollama streaming backend.

Uses the official 'ollama' Python client ('AsyncClient.generate' with
'stream=True'), which talks to the '/api/generate' endpoint of a local Ollama
server. One client is created per endpoint and reused across requests. Sampling
parameters map onto Ollama's option names: 'temperature' and 'num_predict'.
"""

from collections.abc import AsyncIterator

from loguru import logger
from ollama import AsyncClient

from local_chat_toolkit.llms.base import CancellationToken, ModelBackend, ModelRequest
from local_chat_toolkit.utils.errors import ModelBackendError


class OllamaBackend(ModelBackend):
    """
    'ModelBackend' for a locally running Ollama server.

    Attributes:
        keep_alive: Passed through to Ollama to control how long the model stays
            loaded after the request.
    """

    def __init__(self, keep_alive: str | None = None) -> None:
        self.keep_alive = keep_alive
        self._clients: dict[str, AsyncClient] = {}

    def _client(self, endpoint: str) -> AsyncClient:
        if endpoint not in self._clients:
            self._clients[endpoint] = AsyncClient(host=endpoint)
        return self._clients[endpoint]

    async def generate_stream(
        self, request: ModelRequest, cancellation: CancellationToken | None = None
    ) -> AsyncIterator[str]:
        options = {
            "temperature": request.options.temperature,
            "num_predict": request.options.max_response_tokens,
            **request.options.extra,
        }
        logger.debug(f"Ollama generate: model={request.model!r} endpoint={request.endpoint!r} options={options}")
        stream = await self._client(request.endpoint).generate(
            model=request.model,
            prompt=request.prompt,
            stream=True,
            options=options,
            keep_alive=self.keep_alive,
        )
        async for part in stream:
            if cancellation is not None and cancellation.is_cancelled:
                logger.info("Ollama stream cancelled by caller")
                return
            if part.response:
                yield part.response
            if part.done:
                if part.done_reason not in (None, "stop", "length"):
                    raise ModelBackendError(f"Ollama finished with unexpected reason {part.done_reason!r}")
                return
