"""Coverage policy capabilities (NCD / LCD) backed by the CMS coverage server."""

from __future__ import annotations

import logging
from typing import Any

from langchain_core.tools import BaseTool, tool

from coverage_assistant.errors import CoverageAssistantError
from coverage_assistant.knowledge import codes
from coverage_assistant.services.knowledge_client import KnowledgeClient
from coverage_assistant.tools.registry import ToolResult, unavailable

logger = logging.getLogger(__name__)

MAX_POLICY_RESULTS = 10
SERVICE_NAME = "The Medicare coverage database"


def _policy(raw: dict[str, Any], kind: str) -> dict[str, Any]:
    policy = {
        "id": raw.get(f"{kind}_id") or raw.get("id"),
        "type": kind.upper(),
        "title": raw.get("title", ""),
        "effective_date": raw.get("effective_date"),
        "coverage_summary": raw.get("coverage_summary", ""),
        "indications": list(raw.get("indications") or []),
        "limitations": list(raw.get("limitations") or []),
        "documentation_requirements": list(raw.get("documentation_requirements") or []),
        "url": raw.get("url"),
    }
    if kind == "lcd":
        policy["contractor"] = raw.get("contractor")
        policy["covered_codes"] = list(raw.get("covered_codes") or [])
    return policy


def _unique(items: list[str]) -> list[str]:
    seen: dict[str, None] = {}
    for item in items:
        if item and item not in seen:
            seen[item] = None
    return list(seen)


def make_coverage_tools(client: KnowledgeClient) -> list[BaseTool]:
    """Build the coverage policy capabilities bound to *client*."""

    @tool
    def search_ncd(query: str, cpt_code: str | None = None, limit: int = 5) -> ToolResult:
        """Search National Coverage Determinations (nationwide Medicare policy).

        Args:
            query: Procedure or condition (e.g. "lumbar MRI").
            cpt_code: Optional CPT code to narrow the search.
            limit: Maximum number of policies (default 5).
        """
        limit = max(1, min(limit, MAX_POLICY_RESULTS))
        try:
            found = client.search_ncds(query, cpt_code=cpt_code, limit=limit)
        except CoverageAssistantError as exc:
            return unavailable(SERVICE_NAME, exc)
        if not found:
            return ToolResult.fail(f'No national coverage policies found for "{query}"')
        policies = [_policy(p, "ncd") for p in found]
        return ToolResult.ok({"policies": policies, "count": len(policies)})

    @tool
    def search_lcd(
        query: str,
        cpt_code: str | None = None,
        state: str | None = None,
        limit: int = 5,
    ) -> ToolResult:
        """Search Local Coverage Determinations (regional Medicare contractor policy).

        Args:
            query: Procedure or condition (e.g. "knee replacement").
            cpt_code: Optional CPT code to narrow the search.
            state: Optional two-letter state code for the user's region.
            limit: Maximum number of policies (default 5).
        """
        limit = max(1, min(limit, MAX_POLICY_RESULTS))
        try:
            found = client.search_lcds(query, cpt_code=cpt_code, state=state, limit=limit)
        except CoverageAssistantError as exc:
            return unavailable(SERVICE_NAME, exc)
        if not found:
            return ToolResult.fail(f'No local coverage policies found for "{query}"')
        policies = [_policy(p, "lcd") for p in found]
        return ToolResult.ok({"policies": policies, "count": len(policies)})

    @tool
    def get_coverage_requirements(
        procedure: str,
        diagnosis: str | None = None,
        cpt_code: str | None = None,
        state: str | None = None,
    ) -> ToolResult:
        """Get what Medicare requires before it will cover a procedure.

        Combines national and local policy with the documentation checklist
        the doctor's office should prepare.

        Args:
            procedure: Plain-English procedure (e.g. "MRI of the lower back").
            diagnosis: Optional diagnosis or condition the procedure is for.
            cpt_code: Optional CPT code for the procedure.
            state: Optional two-letter state code for local policies.
        """
        query = f"{procedure} {diagnosis}" if diagnosis else procedure
        policies: list[dict[str, Any]] = []
        try:
            policies += [_policy(p, "ncd") for p in client.search_ncds(query, cpt_code=cpt_code, limit=3)]
            policies += [
                _policy(p, "lcd")
                for p in client.search_lcds(query, cpt_code=cpt_code, state=state, limit=3)
            ]
        except CoverageAssistantError as exc:
            logger.warning("Policy lookup failed, using general requirements: %s", exc)

        pattern_key = codes.coverage_pattern_for(procedure)
        pattern = codes.COVERAGE_REQUIREMENTS[pattern_key]
        documentation = _unique(
            [d for p in policies for d in p["documentation_requirements"]]
        ) or list(pattern["documentation"])
        requirements = _unique([i for p in policies for i in p["indications"]]) or list(
            pattern["requirements"]
        )
        limitations = _unique([lim for p in policies for lim in p["limitations"]])

        code = (cpt_code or "").strip().upper()
        if not code:
            matches = codes.cpts_for_condition(procedure, 1)
            code = matches[0].code if matches else ""

        return ToolResult.ok({
            "procedure": procedure,
            "cpt_code": code or None,
            "source": "policy" if policies else "general",
            "policies": [
                {"id": p["id"], "type": p["type"], "title": p["title"], "url": p["url"]}
                for p in policies if p["id"]
            ],
            "requirements": requirements,
            "documentation": documentation,
            "limitations": limitations,
            "prior_auth_commonly_required": bool(code) and codes.requires_prior_auth(code),
        })

    return [search_ncd, search_lcd, get_coverage_requirements]
