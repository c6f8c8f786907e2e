"""Provider capabilities: NPI registry search and specialty validation."""

from __future__ import annotations

from langchain_core.tools import BaseTool, tool

from coverage_assistant.errors import CoverageAssistantError
from coverage_assistant.knowledge.specialty import validate_specialty
from coverage_assistant.services.knowledge_client import KnowledgeClient
from coverage_assistant.tools.registry import ToolResult, unavailable

SERVICE_NAME = "The NPI provider registry"


@tool
def check_specialty_match(procedure: str, provider_specialty: str) -> ToolResult:
    """Check whether a provider's specialty usually orders a procedure.

    Args:
        procedure: Plain-English procedure (e.g. "lumbar MRI").
        provider_specialty: The provider's specialty from the NPI registry.
    """
    match = validate_specialty(procedure, provider_specialty)
    data = {
        "is_match": match.is_match,
        "procedure": match.procedure,
        "provider_specialty": match.provider_specialty,
        "acceptable_specialties": list(match.acceptable_specialties),
    }
    if match.warning:
        data["warning"] = match.warning
    if match.recommendation:
        data["recommendation"] = match.recommendation
    return ToolResult.ok(data)


def make_provider_tools(client: KnowledgeClient) -> list[BaseTool]:
    """Build the provider capabilities bound to *client*."""

    @tool
    def search_npi(
        name: str | None = None,
        state: str | None = None,
        city: str | None = None,
        specialty: str | None = None,
        npi: str | None = None,
        limit: int = 10,
    ) -> ToolResult:
        """Look up a doctor in the national NPI registry.

        Use the doctor's name and, when known, the user's state.  Try at most
        three searches per conversation; after that ask the user to confirm
        the spelling or continue without the lookup.

        Args:
            name: Doctor's name (e.g. "Sarah Smith").
            state: Two-letter state code.
            city: City name.
            specialty: Specialty / taxonomy description (e.g. "orthopedic surgery").
            npi: 10-digit NPI number, when the user has it.
            limit: Maximum number of providers (default 10, at most 20).
        """
        if not any((name, npi, specialty)):
            return ToolResult.fail("Provide a name, specialty or NPI number to search.")
        try:
            providers = client.search_providers(
                name=name, state=state, city=city, specialty=specialty, npi=npi, limit=limit,
            )
        except CoverageAssistantError as exc:
            return unavailable(SERVICE_NAME, exc)
        if not providers:
            who = name or npi or specialty
            return ToolResult.fail(f"No providers found matching {who}")
        return ToolResult.ok({"providers": providers, "count": len(providers)})

    return [search_npi, check_specialty_match]
