"""Document search tool exposed to the chat model."""
from typing import Optional
from pydantic import BaseModel, Field
import structlog

from docrag.rag.retriever import SemanticSearch, format_results
from docrag.tools.registry import Tool

logger = structlog.get_logger()

TOOL_NAME = "search_documents"
TOOL_DESCRIPTION = (
    "Search through the ingested documents for relevant information "
    "based on the user's query"
)


class SearchDocumentsInput(BaseModel):
    """Input for the document search tool."""
    query: str = Field(..., min_length=1, description="What to look for in the documents")
    max_results: int = Field(5, ge=1, le=50, description="Maximum number of passages to return")


class SearchDocumentsOutput(BaseModel):
    """Output from the document search tool."""
    result_count: int
    results: str


def build_search_tool(search: SemanticSearch, usage=None) -> Tool:
    """Create the search_documents tool bound to a search engine.

    Args:
        search: Semantic search engine to query
        usage: Optional SessionUsage; estimated query embedding tokens are added to it

    Returns:
        Tool ready to register
    """

    async def handler(input_data: SearchDocumentsInput) -> SearchDocumentsOutput:
        logger.info("search_tool_called", query_preview=input_data.query[:100])

        chunks = await search.search(input_data.query, None, input_data.max_results)

        if usage is not None:
            usage.add_embedding(input_data.query)

        return SearchDocumentsOutput(
            result_count=len(chunks),
            results=format_results(chunks),
        )

    return Tool(
        name=TOOL_NAME,
        description=TOOL_DESCRIPTION,
        input_model=SearchDocumentsInput,
        output_model=SearchDocumentsOutput,
        handler=handler,
    )
