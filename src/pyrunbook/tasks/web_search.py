"""Web search through the LLM provider's search tool."""

from typing import Any

from pyrunbook.core.context import Context
from pyrunbook.errors import TaskError
from pyrunbook.tasks.llm import GatewayTask
from pyrunbook.tasks.template import interpolate


def resolve_query(value: Any) -> str | None:
    """Accept a string, a ``{"query"|"search": ...}`` mapping, or anything str()-able."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return value.get("query") or value.get("search")
    return str(value)


class WebSearchTask(GatewayTask):
    """
    Run a web search and return the answer with its citations.

    Config:
        query: template for the query, or
        query_key: context key holding the query (default "query")
        search_context_size: "low" | "medium" | "high"
        as: output key (default "search_results")

    Output: ``{as: {"query", "results", "citations"}}``
    """

    type_id = "web_search"
    error_label = "Web search"

    def query_for(self, context: Context) -> str | None:
        if self.config.get("query"):
            return interpolate(self.config["query"], context)
        return resolve_query(context.get(self.config.get("query_key", "query")))

    async def perform(self, context: Context) -> Any:
        query = self.query_for(context)
        if not query:
            raise TaskError(f"Web search task {self.name!r}: query is required")

        response = await self.gateway.web_search(
            query,
            model=self.model,
            search_context_size=self.config.get("search_context_size", "medium"),
        )
        return {
            self.config.get("as", "search_results"): {
                "query": query,
                "results": response.get("content", ""),
                "citations": response.get("citations", []),
            }
        }
