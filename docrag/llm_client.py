"""Ollama client wrapper with error handling."""
import json
import httpx
from typing import Any, AsyncIterator, Dict, List, Optional
import structlog

from docrag import config

logger = structlog.get_logger()


class OllamaClient:
    """Async client for interacting with the Ollama API."""

    def __init__(
        self,
        base_url: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Ollama client.

        Args:
            base_url: Ollama API base URL (defaults to config.OLLAMA_BASE_URL)
            timeout: Request timeout in seconds (defaults to config.OLLAMA_TIMEOUT)
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url or config.OLLAMA_BASE_URL
        self.timeout = timeout or config.OLLAMA_TIMEOUT
        self._transport = transport

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or self.timeout,
            transport=self._transport,
        )

    def _chat_payload(
        self,
        messages: List[Dict[str, Any]],
        model: Optional[str],
        tools: Optional[List[Dict[str, Any]]],
        temperature: Optional[float],
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": model or config.CHAT_MODEL,
            "messages": messages,
            "stream": True,
        }
        if tools:
            payload["tools"] = tools
        if temperature is not None:
            payload["options"] = {"temperature": temperature}
        return payload

    async def chat_stream(
        self,
        messages: List[Dict[str, Any]],
        model: str = None,
        tools: Optional[List[Dict[str, Any]]] = None,
        temperature: Optional[float] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        """Stream a chat completion from Ollama.

        Yields each NDJSON chunk as a dict. Content arrives in
        chunk['message']['content']; tool calls in chunk['message']['tool_calls'];
        the final chunk has 'done' set and carries the token counts.

        Raises:
            httpx.HTTPError: On API errors
        """
        payload = self._chat_payload(messages, model, tools, temperature)

        logger.info(
            "ollama_chat_stream_request",
            model=payload["model"],
            message_count=len(messages),
            tool_count=len(tools or []),
        )

        try:
            async with self._client() as client:
                async with client.stream("POST", "/api/chat", json=payload) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        if not line.strip():
                            continue
                        chunk = json.loads(line)
                        if "error" in chunk:
                            raise httpx.HTTPError(f"Ollama stream error: {chunk['error']}")
                        yield chunk

        except httpx.ConnectError as e:
            logger.error("ollama_connection_error", error=str(e), base_url=self.base_url)
            raise
        except httpx.HTTPError as e:
            logger.error("ollama_chat_stream_error", error=str(e))
            raise

    async def embed(self, texts: List[str], model: str = None) -> Dict:
        """Generate embeddings for a batch of texts in one request.

        Args:
            texts: Texts to embed
            model: Model to use (defaults to config.EMBEDDING_MODEL)

        Returns:
            Response dict with 'embeddings' (one list of floats per text)

        Raises:
            httpx.HTTPError: On API errors
        """
        model = model or config.EMBEDDING_MODEL

        payload = {
            "model": model,
            "input": texts,
        }

        try:
            async with self._client() as client:
                logger.debug(
                    "ollama_embedding_request",
                    model=model,
                    batch_size=len(texts),
                )

                response = await client.post("/api/embed", json=payload)
                response.raise_for_status()

                data = response.json()

                logger.debug(
                    "ollama_embedding_response",
                    model=model,
                    status_code=response.status_code,
                )

                return data

        except httpx.HTTPError as e:
            logger.error("ollama_embedding_error", error=str(e))
            raise

    async def list_models(self) -> List[str]:
        """List all available Ollama models.

        Returns:
            List of model names

        Raises:
            httpx.HTTPError: On API errors
        """
        try:
            async with self._client(timeout=5.0) as client:
                response = await client.get("/api/tags")
                response.raise_for_status()
                data = response.json()
                return [m["name"] for m in data.get("models", [])]
        except httpx.HTTPError as e:
            logger.error("ollama_list_models_error", error=str(e))
            raise


# Global client instance
ollama_client = OllamaClient()
