"""Tools the chat model can call."""
from docrag.tools.registry import Tool, ToolResult, ToolRegistry
from docrag.tools.search_documents import build_search_tool

__all__ = ["Tool", "ToolResult", "ToolRegistry", "build_search_tool"]
