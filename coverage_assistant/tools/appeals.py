"""Denial lookup and appeal letter capabilities."""

from __future__ import annotations

import logging
from datetime import date

from langchain_core.tools import tool

from coverage_assistant.knowledge import codes
from coverage_assistant.knowledge.denials import (
    APPEAL_DEADLINE_DAYS,
    appeal_deadline,
    find_denial_patterns,
    get_denial_reason,
    normalize_denial_code,
)
from coverage_assistant.tools.registry import ToolResult

logger = logging.getLogger(__name__)


def _today() -> date:
    return date.today()


def _long_date(d: date) -> str:
    return f"{d:%B} {d.day}, {d.year}"


def _pattern_dict(pattern) -> dict:
    return {
        "reason": pattern.reason,
        "category": pattern.category,
        "appeal_strategy": pattern.appeal_strategy,
        "documentation_checklist": list(pattern.documentation_checklist),
        "estimated_success_rate": pattern.estimated_success_rate,
        "appeal_deadline_days": pattern.appeal_deadline_days,
    }


@tool
def lookup_denial_code(code: str = "", description: str = "") -> ToolResult:
    """Explain a Medicare denial and how to appeal it.

    Pass the code from the denial notice / EOB when the user has it,
    otherwise a short description of what the notice said.

    Args:
        code: Claim adjustment reason code (e.g. "CO-50", "PR 96").
        description: Free-text denial reason (e.g. "not medically necessary").
    """
    normalized = normalize_denial_code(code) if code else None
    reason = get_denial_reason(code) if code else None
    patterns = find_denial_patterns(normalized or "") if normalized else []
    if description and not patterns:
        patterns = find_denial_patterns(description)

    if reason is None and not patterns:
        what = code or description or "(nothing provided)"
        return ToolResult.fail(
            f"No denial information found for {what}. Ask the user what the denial notice says."
        )

    data = {
        "code": normalized,
        "description": reason.description if reason else None,
        "category": reason.category if reason else patterns[0].category,
        "appeal_deadline_days": APPEAL_DEADLINE_DAYS,
        "strategies": [_pattern_dict(p) for p in patterns],
    }
    if normalized is None:
        data.pop("code")
    return ToolResult.ok(data)


def _bullets(items: list[str]) -> str:
    return "\n".join(f"• {item}" for item in items)


@tool
def generate_appeal_letter(
    denial_reason: str,
    procedure_description: str,
    diagnosis_description: str,
    patient_history: str = "",
    prior_treatments: list[str] | None = None,
    provider_name: str | None = None,
    denial_date: str | None = None,
) -> ToolResult:
    """Draft a Level 1 Medicare redetermination (appeal) letter.

    Args:
        denial_reason: The reason given on the denial notice.
        procedure_description: Plain-English description of the denied service.
        diagnosis_description: Plain-English description of the diagnosis.
        patient_history: Relevant history and symptoms.
        prior_treatments: Conservative treatments already tried.
        provider_name: Name of the ordering physician.
        denial_date: Date on the denial notice (YYYY-MM-DD).  Defaults to today.
    """
    today = _today()
    if denial_date:
        try:
            denied_on = date.fromisoformat(denial_date)
        except ValueError:
            return ToolResult.fail(f"Denial date must be YYYY-MM-DD, got {denial_date!r}")
    else:
        denied_on = today

    deadline = appeal_deadline(denied_on)
    days_left = (deadline - today).days
    treatments = prior_treatments or []
    diagnosis_codes = codes.icd10s_for_condition(diagnosis_description, 3)
    procedure_codes = codes.cpts_for_condition(procedure_description, 3)
    pattern = codes.COVERAGE_REQUIREMENTS[codes.coverage_pattern_for(procedure_description)]
    requirements: list[str] = list(pattern["requirements"])

    sections = [
        "MEDICARE APPEAL REQUEST",
        "Level 1 Redetermination",
        "",
        f"Date: {_long_date(today)}",
        "",
        "To: Medicare Administrative Contractor",
        "Re: Appeal of Denied Claim",
        "",
        "Beneficiary Name: [PATIENT NAME]",
        "Medicare Number: [MEDICARE NUMBER]",
        "Date of Service: [DATE OF SERVICE]",
        "Claim Number: [CLAIM NUMBER]",
        "",
        "Dear Medicare Appeals Department,",
        "",
        f"I am writing to formally appeal the denial of coverage for {procedure_description} "
        f"that was denied on {_long_date(denied_on)}.",
        "",
        "REASON FOR APPEAL:",
        "",
        f'The denial stated: "{denial_reason}"',
        "",
        "I respectfully disagree with this determination for the following reasons:",
        "",
        "1. MEDICAL NECESSITY",
        "",
        f"The patient has been diagnosed with {diagnosis_description}."
        + (f" The patient's history includes: {patient_history}." if patient_history else ""),
    ]
    if treatments:
        sections += [
            "",
            "Prior conservative treatments attempted include:",
            _bullets(treatments),
            "",
            "Despite these treatments, the patient's condition has not adequately improved, "
            f"necessitating {procedure_description}.",
        ]
    sections += [
        "",
        "2. CLINICAL EVIDENCE",
        "",
        f"The requested {procedure_description} is supported by:",
        _bullets(requirements),
        "",
        "3. MEDICARE COVERAGE CRITERIA",
        "",
        "According to Medicare guidelines, this service is covered when medically necessary "
        "and properly documented. The documentation in the medical record supports coverage.",
    ]
    if diagnosis_codes:
        sections += ["", "Relevant diagnosis codes:",
                     _bullets([f"{c.code} - {c.description}" for c in diagnosis_codes])]
    if procedure_codes:
        sections += ["", "Procedure codes:",
                     _bullets([f"{c.code} - {c.description}" for c in procedure_codes])]
    sections += [
        "",
        "REQUESTED ACTION:",
        "",
        f"I respectfully request that you reverse the denial and approve coverage for "
        f"{procedure_description} as medically necessary for this patient's condition.",
        "",
        "Enclosed please find:",
        "□ Copy of the denial notice",
        "□ Relevant medical records",
        "□ Physician's order/referral",
        "□ Supporting documentation",
        "",
        "If you require additional information, please contact the ordering physician:",
        provider_name or "[Provider Name]",
        "",
        "Sincerely,",
        "",
        "[SIGNATURE]",
        "[PATIENT NAME OR AUTHORIZED REPRESENTATIVE]",
        "[PHONE NUMBER]",
        "[ADDRESS]",
        "",
        "---",
        f"IMPORTANT: This appeal must be submitted by {_long_date(deadline)} "
        f"({APPEAL_DEADLINE_DAYS} days from denial date).",
    ]

    if days_left < 0:
        logger.info("Appeal deadline already passed by %d days", -days_left)

    return ToolResult.ok({
        "letter": "\n".join(sections),
        "denial_date": denied_on.isoformat(),
        "denial_date_provided": bool(denial_date),
        "appeal_deadline": deadline.isoformat(),
        "days_remaining": days_left,
        "deadline_passed": days_left < 0,
        "diagnosis_codes": [{"code": c.code, "description": c.description} for c in diagnosis_codes],
        "procedure_codes": [{"code": c.code, "description": c.description} for c in procedure_codes],
        "requirements": requirements,
        "instructions": [
            "Fill in the bracketed fields with patient information",
            "Attach a copy of the denial notice",
            "Include relevant medical records",
            "Have the patient or authorized representative sign",
            f"Mail to the address on the denial notice by {_long_date(deadline)}",
        ],
    })


APPEAL_TOOLS = [lookup_denial_code, generate_appeal_letter]
