"""Code lookup capabilities (CPT / ICD-10), all local and pure.

Codes are for the model's internal use: they feed coverage-policy lookups
and are never shown to the user.
"""

from __future__ import annotations

from langchain_core.tools import tool

from coverage_assistant.knowledge import codes
from coverage_assistant.tools.registry import ToolResult

MAX_CODE_RESULTS = 25


def _cpt_dict(c: codes.CPTCode) -> dict:
    data = {"code": c.code, "description": c.description, "category": c.category}
    if c.medicare_notes:
        data["medicare_notes"] = c.medicare_notes
    return data


def _icd10_dict(c: codes.ICD10Code) -> dict:
    return {"code": c.code, "description": c.description, "category": c.category}


@tool
def search_icd10(query: str, limit: int = 10) -> ToolResult:
    """Find ICD-10 diagnosis codes for a condition or symptom description.

    Args:
        query: Plain-English condition or symptom (e.g. "lower back pain with sciatica").
        limit: Maximum number of codes to return (default 10).
    """
    limit = max(1, min(limit, MAX_CODE_RESULTS))
    found = codes.icd10s_for_condition(query, limit)
    if not found:
        return ToolResult.fail(f'No ICD-10 codes found for "{query}"')
    return ToolResult.ok({"codes": [_icd10_dict(c) for c in found], "count": len(found)})


@tool
def search_cpt(query: str, limit: int = 10) -> ToolResult:
    """Find CPT/HCPCS procedure codes for a procedure description.

    Args:
        query: Plain-English procedure (e.g. "MRI of the lower back").
        limit: Maximum number of codes to return (default 10).
    """
    limit = max(1, min(limit, MAX_CODE_RESULTS))
    found = codes.cpts_for_condition(query, limit)
    if not found:
        return ToolResult.fail(f'No procedure codes found for "{query}"')
    return ToolResult.ok({"codes": [_cpt_dict(c) for c in found], "count": len(found)})


@tool
def get_related_diagnoses(cpt_code: str) -> ToolResult:
    """List diagnosis codes that commonly support a procedure code.

    Args:
        cpt_code: CPT/HCPCS code (e.g. "72148").
    """
    cpt = codes.get_cpt(cpt_code)
    if cpt is None:
        return ToolResult.fail(f"Unknown procedure code: {cpt_code}")
    related = codes.related_diagnoses(cpt.code)
    return ToolResult.ok({
        "cpt_code": cpt.code,
        "description": cpt.description,
        "diagnoses": [_icd10_dict(c) for c in related],
    })


@tool
def get_related_procedures(icd10_code: str) -> ToolResult:
    """List procedure codes commonly performed for a diagnosis code.

    Args:
        icd10_code: ICD-10 code (e.g. "M54.5").
    """
    icd = codes.get_icd10(icd10_code)
    if icd is None:
        return ToolResult.fail(f"Unknown diagnosis code: {icd10_code}")
    related = codes.related_procedures(icd.code)
    return ToolResult.ok({
        "icd10_code": icd.code,
        "description": icd.description,
        "procedures": [_cpt_dict(c) for c in related],
    })


@tool
def check_prior_auth(cpt_code: str) -> ToolResult:
    """Check whether a procedure commonly requires prior authorization.

    Args:
        cpt_code: CPT/HCPCS code (e.g. "27447").
    """
    cpt = codes.get_cpt(cpt_code)
    required = codes.requires_prior_auth(cpt_code)
    if required:
        recommendation = (
            "Ask the doctor's office to request prior authorization before the "
            "service is scheduled."
        )
    else:
        recommendation = (
            "Prior authorization is not commonly required under Original Medicare, "
            "but Medicare Advantage plans may still require it."
        )
    return ToolResult.ok({
        "cpt_code": cpt_code.strip().upper(),
        "known": cpt is not None,
        "description": cpt.description if cpt else None,
        "commonly_requires_prior_auth": required,
        "recommendation": recommendation,
    })


@tool
def check_preventive(cpt_code: str) -> ToolResult:
    """Check whether a service is a Medicare preventive service (no cost sharing).

    Args:
        cpt_code: CPT/HCPCS code (e.g. "G0439").
    """
    preventive = codes.is_preventive(cpt_code)
    cpt = codes.get_cpt(cpt_code)
    return ToolResult.ok({
        "cpt_code": cpt_code.strip().upper(),
        "description": cpt.description if cpt else None,
        "is_preventive": preventive,
        "cost_sharing": (
            "No copay or deductible when the provider accepts assignment"
            if preventive
            else "Standard Part B deductible and 20% coinsurance apply"
        ),
    })


CODING_TOOLS = [
    search_icd10,
    search_cpt,
    get_related_diagnoses,
    get_related_procedures,
    check_prior_auth,
    check_preventive,
]
