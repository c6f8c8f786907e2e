"""Clinical evidence capability backed by PubMed."""

from __future__ import annotations

from langchain_core.tools import BaseTool, tool

from coverage_assistant.errors import CoverageAssistantError
from coverage_assistant.services.knowledge_client import MAX_PUBMED_RESULTS, KnowledgeClient
from coverage_assistant.tools.registry import ToolResult, unavailable

SERVICE_NAME = "PubMed"


def make_evidence_tools(client: KnowledgeClient) -> list[BaseTool]:

    @tool
    def search_pubmed(
        query: str,
        condition: str | None = None,
        intervention: str | None = None,
        limit: int = 5,
    ) -> ToolResult:
        """Find published clinical evidence supporting medical necessity.

        Useful for appeals and for procedures where coverage depends on
        evidence of effectiveness.

        Args:
            query: Search terms (e.g. "lumbar MRI radiculopathy").
            condition: Optional condition to narrow the search.
            intervention: Optional treatment or procedure to narrow the search.
            limit: Maximum number of articles (1-10, default 5).
        """
        limit = max(1, min(limit, MAX_PUBMED_RESULTS))
        try:
            articles = client.search_pubmed(
                query, condition=condition, intervention=intervention, limit=limit,
            )
        except CoverageAssistantError as exc:
            return unavailable(SERVICE_NAME, exc)
        if not articles:
            return ToolResult.fail(f'No articles found for "{query}"')
        return ToolResult.ok({"articles": articles, "count": len(articles)})

    return [search_pubmed]
