"""Ollama client: chat completion (one-shot and streaming) and embeddings."""
import json
from typing import AsyncIterator, Dict, List, Optional

import httpx
import structlog

from sourcebook import config
from sourcebook.errors import ModelFailure, ModelTransientFailure, SourcebookError

logger = structlog.get_logger()


def translate_http_error(exc: httpx.HTTPError) -> SourcebookError:
    """Map an httpx failure onto the model error taxonomy.

    Transport-level failures (connect, read, write, timeouts, dropped
    connections) are transient. Anything else, notably error status codes,
    is not.
    """
    if isinstance(exc, httpx.TransportError):
        return ModelTransientFailure(f"Model service unreachable: {exc}")
    return ModelFailure(f"Model service error: {exc}")


class OllamaClient:
    """Async client for interacting with Ollama API."""

    def __init__(
        self,
        base_url: str = None,
        timeout: float = None,
        model: str = None,
        embedding_model: str = None,
        temperature: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Ollama client.

        Args:
            base_url: Ollama API base URL (defaults to config.OLLAMA_BASE_URL)
            timeout: Connect/read/write timeout in seconds (defaults to config.MODEL_TIMEOUT)
            model: Chat model (defaults to config.CHAT_MODEL)
            embedding_model: Embedding model (defaults to config.EMBEDDING_MODEL)
            temperature: Sampling temperature (defaults to config.CHAT_TEMPERATURE)
            transport: Optional httpx transport, used by tests
        """
        self.base_url = base_url or config.OLLAMA_BASE_URL
        self.timeout = timeout or config.MODEL_TIMEOUT
        self.model = model or config.CHAT_MODEL
        self.embedding_model = embedding_model or config.EMBEDDING_MODEL
        self.temperature = (
            config.CHAT_TEMPERATURE if temperature is None else temperature
        )
        self.transport = transport

    def _client(self, timeout: float = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout or self.timeout,
            transport=self.transport,
        )

    def _chat_payload(self, messages: List[Dict[str, str]], stream: bool) -> Dict:
        return {
            "model": self.model,
            "messages": messages,
            "stream": stream,
            "options": {"temperature": self.temperature},
        }

    async def chat(self, messages: List[Dict[str, str]]) -> Dict:
        """Send a non-streaming chat completion request.

        Args:
            messages: List of message dicts with 'role' and 'content'

        Returns:
            Response dict with 'message' containing 'content'

        Raises:
            ModelTransientFailure: On network-class failures
            ModelFailure: On error status or malformed response
        """
        try:
            async with self._client() as client:
                logger.info(
                    "ollama_chat_request",
                    model=self.model,
                    message_count=len(messages),
                    stream=False,
                )

                response = await client.post(
                    f"{self.base_url}/api/chat",
                    json=self._chat_payload(messages, stream=False),
                )
                response.raise_for_status()
                data = response.json()

        except httpx.HTTPError as e:
            logger.error(
                "ollama_chat_error",
                error=str(e),
                error_type=type(e).__name__,
                base_url=self.base_url,
            )
            raise translate_http_error(e) from e
        except json.JSONDecodeError as e:
            logger.error("ollama_malformed_response", error=str(e))
            raise ModelFailure("Model service returned malformed JSON") from e

        if "error" in data:
            raise ModelFailure(f"Model service error: {data['error']}")

        logger.info(
            "ollama_chat_response",
            model=self.model,
            response_length=len(data.get("message", {}).get("content", "")),
        )

        return data

    async def chat_stream(self, messages: List[Dict[str, str]]) -> AsyncIterator[str]:
        """Stream a chat completion as text deltas.

        Ollama sends one JSON object per line and marks the last one with
        ``"done": true``. A stream that ends without that marker was cut off.
        Closing the generator closes the HTTP response.

        Yields:
            Non-empty content deltas in arrival order

        Raises:
            ModelTransientFailure: On network-class failures or truncated streams
            ModelFailure: On error status or malformed lines
        """
        try:
            async with self._client() as client:
                logger.info(
                    "ollama_chat_request",
                    model=self.model,
                    message_count=len(messages),
                    stream=True,
                )

                async with client.stream(
                    "POST",
                    f"{self.base_url}/api/chat",
                    json=self._chat_payload(messages, stream=True),
                ) as response:
                    if response.is_error:
                        await response.aread()
                        raise ModelFailure(
                            f"Model service returned HTTP {response.status_code}"
                        )

                    async for line in response.aiter_lines():
                        if not line.strip():
                            continue

                        try:
                            data = json.loads(line)
                        except json.JSONDecodeError as e:
                            raise ModelFailure("Malformed streaming chunk from model service") from e

                        if "error" in data:
                            raise ModelFailure(f"Model service error: {data['error']}")

                        delta = data.get("message", {}).get("content", "")
                        if delta:
                            yield delta

                        if data.get("done"):
                            logger.info("ollama_stream_completed", model=self.model)
                            return

            raise ModelTransientFailure("Model stream ended before completion")

        except httpx.HTTPError as e:
            logger.error(
                "ollama_stream_error",
                error=str(e),
                error_type=type(e).__name__,
                base_url=self.base_url,
            )
            raise translate_http_error(e) from e

    async def complete(self, prompt: str) -> str:
        """Complete a rendered prompt in one shot."""
        data = await self.chat([{"role": "user", "content": prompt}])
        message = data.get("message")
        if not isinstance(message, dict) or not isinstance(message.get("content"), str):
            raise ModelFailure("Model response is missing message content")
        return message["content"]

    def stream(self, prompt: str) -> AsyncIterator[str]:
        """Stream the completion of a rendered prompt."""
        return self.chat_stream([{"role": "user", "content": prompt}])

    async def embeddings(self, prompt: str, model: str = None) -> List[float]:
        """Generate an embedding for a text prompt.

        Args:
            prompt: Text to embed
            model: Model to use (defaults to the client's embedding model)

        Returns:
            Embedding vector

        Raises:
            ModelTransientFailure: On network-class failures
            ModelFailure: On error status or an empty embedding
        """
        model = model or self.embedding_model

        try:
            async with self._client() as client:
                logger.debug(
                    "ollama_embedding_request",
                    model=model,
                    prompt_length=len(prompt),
                )

                response = await client.post(
                    f"{self.base_url}/api/embeddings",
                    json={"model": model, "prompt": prompt},
                )
                response.raise_for_status()
                data = response.json()

        except httpx.HTTPError as e:
            logger.error("ollama_embedding_error", error=str(e))
            raise translate_http_error(e) from e
        except json.JSONDecodeError as e:
            raise ModelFailure("Embedding service returned malformed JSON") from e

        embedding = data.get("embedding") or []
        if not embedding:
            raise ModelFailure(f"Empty embedding returned by {model}")

        logger.debug("ollama_embedding_response", model=model, dimension=len(embedding))

        return embedding

    async def list_models(self) -> List[str]:
        """List all available Ollama models.

        Raises:
            ModelTransientFailure: On network-class failures
            ModelFailure: On error status
        """
        try:
            async with self._client(timeout=5.0) as client:
                response = await client.get(f"{self.base_url}/api/tags")
                response.raise_for_status()
                data = response.json()
                return [m["name"] for m in data.get("models", [])]
        except httpx.HTTPError as e:
            logger.error("ollama_list_models_error", error=str(e))
            raise translate_http_error(e) from e
