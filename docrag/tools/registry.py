"""Tool registry for chat-model function calling.

Tools are dataclasses with pydantic input/output models and an async
handler. The registry describes them in Ollama's function-tool format and
executes calls with validation and a timeout.
"""
import asyncio
from dataclasses import dataclass
from typing import Callable, Awaitable, Dict, Any, List, Optional
from pydantic import BaseModel, ValidationError
import structlog

from docrag import config

logger = structlog.get_logger()


@dataclass
class Tool:
    """Tool definition with input/output schemas and handler."""
    name: str
    description: str
    input_model: type[BaseModel]
    output_model: type[BaseModel]
    handler: Callable[[BaseModel], Awaitable[BaseModel]]

    def to_ollama_schema(self) -> Dict[str, Any]:
        """Describe the tool in the function-tool JSON format Ollama accepts."""
        parameters = self.input_model.model_json_schema()
        parameters.pop("title", None)
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
            },
        }


@dataclass
class ToolResult:
    """Result of a tool execution."""
    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class ToolRegistry:
    """Registry for available tools."""

    def __init__(self, timeout: float = None):
        self.tools: Dict[str, Tool] = {}
        self._timeout = timeout or config.TOOL_TIMEOUT_SECONDS

    def register(self, tool: Tool) -> None:
        """Register a tool."""
        self.tools[tool.name] = tool
        logger.info("tool_registered", tool_name=tool.name)

    def get_tool(self, name: str) -> Optional[Tool]:
        """Get a tool by name."""
        return self.tools.get(name)

    def list_tools(self) -> List[Tool]:
        """List all registered tools."""
        return list(self.tools.values())

    def ollama_tools(self) -> List[Dict[str, Any]]:
        """Tool definitions to pass with a chat request."""
        return [tool.to_ollama_schema() for tool in self.tools.values()]

    async def execute_tool(self, tool_name: str, args: Dict[str, Any]) -> ToolResult:
        """Execute a tool with the given arguments.

        Args:
            tool_name: Name of the tool to execute
            args: Arguments to pass to the tool

        Returns:
            ToolResult with success status and data or error
        """
        tool = self.get_tool(tool_name)

        if not tool:
            logger.error("tool_not_found", tool_name=tool_name)
            return ToolResult(success=False, error=f"Tool '{tool_name}' not found")

        try:
            validated_input = tool.input_model(**(args or {}))
        except ValidationError as e:
            logger.warning("tool_input_invalid", tool_name=tool_name, error=str(e))
            return ToolResult(success=False, error=f"Invalid arguments: {e}")

        try:
            async with asyncio.timeout(self._timeout):
                result = await tool.handler(validated_input)

            result_dict = result.model_dump()

            logger.info(
                "tool_executed",
                tool_name=tool_name,
                success=True,
                result_preview=str(result_dict)[:100]
            )

            return ToolResult(success=True, data=result_dict)

        except TimeoutError:
            logger.error("tool_timeout", tool_name=tool_name, timeout=self._timeout)
            return ToolResult(
                success=False,
                error=f"Tool execution timeout after {self._timeout}s"
            )

        except Exception as e:
            logger.exception("tool_execution_failed", tool_name=tool_name, error=str(e))
            return ToolResult(success=False, error=f"Tool execution failed: {str(e)}")
