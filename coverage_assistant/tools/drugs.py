"""Part B vs Part D drug coverage capability."""

from __future__ import annotations

from langchain_core.tools import tool

from coverage_assistant.knowledge.drugs import coverage_by_route, find_drug
from coverage_assistant.tools.registry import ToolResult


@tool
def check_sad_list(drug_name: str, route: str | None = None) -> ToolResult:
    """Check whether a medication is covered under Medicare Part B or Part D.

    Uses the Self-Administered Drug (SAD) exclusion list and a table of
    physician-administered drugs, falling back to the route of
    administration when the drug is not listed.

    Args:
        drug_name: Generic or brand name (e.g. "Humira", "rituximab").
        route: Optional route of administration (e.g. "IV infusion", "oral").
    """
    if not drug_name.strip():
        return ToolResult.fail("No drug name was provided.")

    drug = find_drug(drug_name)
    if drug is not None:
        if drug.part_b:
            part = "Part B"
        elif drug.part_d:
            part = "Part D"
        else:
            part = "Not covered"
        data = {
            "drug": drug.generic_name,
            "brand_names": list(drug.brand_names),
            "route": drug.route,
            "on_sad_list": not drug.part_b,
            "covered_under": part,
            "reason": drug.reason,
            "source": "table",
        }
        if drug.hcpcs_code:
            data["hcpcs_code"] = drug.hcpcs_code
        if drug.exception:
            data["exception"] = drug.exception
        return ToolResult.ok(data)

    if not route:
        return ToolResult.ok({
            "drug": drug_name,
            "covered_under": "Unknown",
            "source": "none",
            "explanation": (
                "This drug is not in the lookup table. Ask how it is given "
                "(pill, self-injection, infusion at a clinic) to tell Part B from Part D."
            ),
        })

    guess = coverage_by_route(route)
    if guess["likely_part_b"]:
        part = "Part B"
    elif guess["likely_part_d"]:
        part = "Part D"
    else:
        part = "Unknown"
    return ToolResult.ok({
        "drug": drug_name,
        "route": route,
        "covered_under": part,
        "explanation": guess["explanation"],
        "source": "route",
    })
