"""Chat session with document search tool calling.

Each session owns its conversation and its token usage counters, so several
sessions can run side by side without sharing state.
"""
import json
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional
import structlog

from docrag import config
from docrag.llm_client import OllamaClient, ollama_client
from docrag.rag.retriever import SemanticSearch
from docrag.tools.registry import ToolRegistry, ToolResult
from docrag.tools.search_documents import build_search_tool

logger = structlog.get_logger()

SYSTEM_PROMPT = (
    "You are a helpful AI assistant that can search through documents to answer user questions. "
    "When users ask questions about the documents, use the search_documents tool to find relevant information. "
    "Always base your answers on the search results from the tool calls. "
    "Cite the specific documents and page numbers when providing information. "
    "If no relevant information is found, let the user know politely."
)


@dataclass
class SessionUsage:
    """Token usage accumulated by one chat session."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    embedding_tokens: int = 0
    chat_requests: int = 0

    def add_chat(self, prompt_tokens: int, completion_tokens: int) -> None:
        self.prompt_tokens += prompt_tokens or 0
        self.completion_tokens += completion_tokens or 0
        self.chat_requests += 1

    def add_embedding(self, text: str) -> None:
        """Add the estimated token count of an embedded query."""
        self.embedding_tokens += len(text) // config.CHARS_PER_TOKEN

    @property
    def chat_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    @property
    def total_tokens(self) -> int:
        return self.chat_tokens + self.embedding_tokens

    def estimated_cost(self) -> float:
        """Estimated cost in USD at the configured per-token prices."""
        return (
            self.prompt_tokens * config.INPUT_TOKEN_PRICE
            + self.completion_tokens * config.OUTPUT_TOKEN_PRICE
            + self.embedding_tokens * config.EMBEDDING_TOKEN_PRICE
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["total_tokens"] = self.total_tokens
        data["estimated_cost"] = round(self.estimated_cost(), 6)
        return data


def _tool_message_content(result: ToolResult) -> str:
    if not result.success:
        return f"Error: {result.error}"
    data = result.data or {}
    if "results" in data:
        return data["results"]
    return json.dumps(data)


class ChatSession:
    """A conversation with the chat model that can search the documents."""

    def __init__(
        self,
        search: SemanticSearch,
        client: Optional[OllamaClient] = None,
        model: str = None,
        system_prompt: str = SYSTEM_PROMPT,
        max_tool_rounds: int = None,
    ):
        """Initialize the session.

        Args:
            search: Semantic search engine backing the search_documents tool
            client: Ollama client (defaults to the global client)
            model: Chat model (default from config)
            system_prompt: System message opening the conversation
            max_tool_rounds: Tool-calling rounds allowed per user message (default from config)
        """
        self.client = client or ollama_client
        self.model = model or config.CHAT_MODEL
        self.max_tool_rounds = (
            config.MAX_TOOL_ROUNDS if max_tool_rounds is None else max_tool_rounds
        )

        self.usage = SessionUsage()
        self.registry = ToolRegistry()
        self.registry.register(build_search_tool(search, self.usage))

        self.messages: List[Dict[str, Any]] = [{"role": "system", "content": system_prompt}]

    async def send(
        self,
        text: str,
        on_token: Optional[Callable[[str], None]] = None,
    ) -> str:
        """Send a user message and stream the assistant's reply.

        Tool calls requested by the model are executed between streamed
        responses. On the last allowed round no tools are offered, so the
        model has to answer in text.

        Args:
            text: User message
            on_token: Called with each piece of reply text as it arrives

        Returns:
            The complete reply text

        Raises:
            httpx.HTTPError: If the chat request fails
        """
        self.messages.append({"role": "user", "content": text})
        started = time.perf_counter()
        reply = ""

        for round_number in range(self.max_tool_rounds + 1):
            tools = self.registry.ollama_tools() if round_number < self.max_tool_rounds else None
            reply, tool_calls = await self._stream_reply(tools, on_token)

            if not tool_calls or tools is None:
                break

            self.messages.append({"role": "assistant", "content": reply, "tool_calls": tool_calls})
            await self._run_tool_calls(tool_calls)

        self.messages.append({"role": "assistant", "content": reply})

        logger.info(
            "chat_reply_completed",
            reply_length=len(reply),
            duration_seconds=round(time.perf_counter() - started, 2),
            **self.usage.to_dict(),
        )

        return reply

    async def _stream_reply(self, tools, on_token):
        parts: List[str] = []
        tool_calls: List[Dict[str, Any]] = []

        async for chunk in self.client.chat_stream(self.messages, model=self.model, tools=tools):
            message = chunk.get("message") or {}

            token = message.get("content")
            if token:
                parts.append(token)
                if on_token:
                    on_token(token)

            tool_calls.extend(message.get("tool_calls") or [])

            if chunk.get("done"):
                self.usage.add_chat(chunk.get("prompt_eval_count", 0), chunk.get("eval_count", 0))

        return "".join(parts), tool_calls

    async def _run_tool_calls(self, tool_calls: List[Dict[str, Any]]) -> None:
        for call in tool_calls:
            function = call.get("function") or {}
            name = function.get("name", "")
            arguments = function.get("arguments") or {}

            if isinstance(arguments, str):
                try:
                    arguments = json.loads(arguments)
                except json.JSONDecodeError:
                    logger.warning("tool_arguments_unparseable", tool_name=name)
                    arguments = {}

            result = await self.registry.execute_tool(name, arguments)
            self.messages.append(
                {"role": "tool", "tool_name": name, "content": _tool_message_content(result)}
            )
