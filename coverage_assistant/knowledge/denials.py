"""Medicare denial reason codes, denial patterns and the appeal process."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, timedelta

APPEAL_DEADLINE_DAYS = 120


@dataclass(frozen=True)
class DenialReason:
    code: str
    description: str
    category: str


@dataclass(frozen=True)
class DenialPattern:
    reason: str
    category: str
    reason_codes: tuple[str, ...]
    common_cpts: tuple[str, ...]
    appeal_strategy: str
    documentation_checklist: tuple[str, ...]
    estimated_success_rate: str = "unknown"
    appeal_deadline_days: int = APPEAL_DEADLINE_DAYS


@dataclass(frozen=True)
class AppealLevel:
    level: int
    name: str
    description: str
    time_limit_days: int
    decision_timeframe: str
    success_rate: str = field(default="")


DENIAL_REASON_CODES: dict[str, DenialReason] = {
    r.code: r
    for r in (
        DenialReason("CO-4", "The procedure code is inconsistent with the modifier used "
                             "or a required modifier is missing", "Coding"),
        DenialReason("CO-8", "The procedure code is not payable at this location", "Coverage"),
        DenialReason("CO-15", "The authorization number is missing, invalid, or does not apply",
                     "Documentation"),
        DenialReason("CO-16", "Claim/service lacks information needed for adjudication",
                     "Documentation"),
        DenialReason("CO-50", "These are non-covered services because this is not deemed "
                              "a medical necessity", "Medical Necessity"),
        DenialReason("CO-96", "Non-covered charge(s)", "Coverage"),
        DenialReason("CO-97", "The benefit for this service is included in the "
                              "payment/allowance for another service", "Coding"),
        DenialReason("CO-119", "Benefit maximum for this time period or occurrence has been reached",
                     "Coverage"),
        DenialReason("CO-167", "This (these) diagnosis(es) is (are) not covered, missing, or invalid",
                     "Coding"),
        DenialReason("PR-50", "Non-covered services - not medically necessary "
                              "(patient responsibility)", "Medical Necessity"),
        DenialReason("PR-96", "Non-covered charge(s) (patient responsibility)", "Coverage"),
        DenialReason("PR-119", "Benefit maximum reached (patient responsibility)", "Coverage"),
    )
}

DENIAL_PATTERNS: tuple[DenialPattern, ...] = (
    DenialPattern(
        reason="Not medically necessary",
        category="Medical Necessity",
        reason_codes=("PR-50", "CO-50", "M62"),
        common_cpts=("27447", "27130", "72148", "72149", "73721", "73722", "66984", "95810", "95811"),
        appeal_strategy=(
            "Document functional limitations, failed conservative treatment over an adequate "
            "time period, and impact on activities of daily living. Include specific "
            "measurable outcomes."
        ),
        documentation_checklist=(
            "Duration of symptoms (minimum 6 weeks for most procedures)",
            "List of conservative treatments tried and failed",
            "Specific functional limitations (walking distance, stairs, sleep quality)",
            "Impact on daily activities (dressing, bathing, cooking)",
            "Physical examination findings",
            "Relevant imaging or test results",
            "Statement of medical necessity from treating physician",
        ),
        estimated_success_rate="high",
    ),
    DenialPattern(
        reason="Experimental or investigational",
        category="Medical Necessity",
        reason_codes=("PR-96", "CO-96"),
        common_cpts=("0274T", "0275T", "96413", "96415"),
        appeal_strategy=(
            "Provide peer-reviewed literature supporting efficacy. Cite FDA approvals and "
            "clinical guidelines from specialty societies."
        ),
        documentation_checklist=(
            "FDA approval documentation if applicable",
            "Peer-reviewed clinical studies",
            "Professional society guidelines recommending the treatment",
            "Evidence that treatment is standard of care",
        ),
        estimated_success_rate="medium",
    ),
    DenialPattern(
        reason="Insufficient documentation",
        category="Documentation",
        reason_codes=("CO-16", "M79", "M86"),
        common_cpts=("99213", "99214", "99215", "97110", "97140", "97530", "G0438", "G0439"),
        appeal_strategy=(
            "Submit complete medical records with the relevant sections highlighted. "
            "Include a physician attestation and any missing documentation."
        ),
        documentation_checklist=(
            "Complete history and physical examination",
            "Chief complaint and history of present illness",
            "Medical decision-making documentation",
            "Plan of care with specific goals",
            "Physician signature and date",
        ),
        estimated_success_rate="high",
    ),
    DenialPattern(
        reason="Missing prior authorization",
        category="Documentation",
        reason_codes=("CO-15", "N20"),
        common_cpts=("27447", "27130", "72148", "72149", "95810", "E0601"),
        appeal_strategy=(
            "If authorization was obtained, submit proof. If it was not obtained because of "
            "urgency, document the emergency circumstances and request retroactive authorization."
        ),
        documentation_checklist=(
            "Prior authorization number if obtained",
            "Documentation of authorization request date",
            "Emergency circumstances if applicable",
            "Medical necessity documentation",
        ),
        estimated_success_rate="medium",
        appeal_deadline_days=60,
    ),
    DenialPattern(
        reason="Service not covered by Medicare",
        category="Coverage",
        reason_codes=("PR-96", "CO-96", "N130"),
        common_cpts=("99211", "D0120"),
        appeal_strategy=(
            "Review the LCD/NCD to confirm non-coverage. If the service should be covered, "
            "cite the specific policy language."
        ),
        documentation_checklist=(
            "Review of applicable LCD/NCD",
            "Documentation showing service meets coverage criteria",
            "Alternative diagnosis codes if appropriate",
        ),
        estimated_success_rate="low",
    ),
    DenialPattern(
        reason="Frequency limits exceeded",
        category="Coverage",
        reason_codes=("PR-119", "CO-119"),
        common_cpts=("77067", "G0439", "90732", "G0105"),
        appeal_strategy=(
            "Document the clinical circumstances that make the extra service necessary. "
            "Cite guidelines supporting more frequent testing for high-risk patients."
        ),
        documentation_checklist=(
            "Date of previous service",
            "Clinical indication for repeat service",
            "Risk factors justifying increased frequency",
            "Change in clinical status since last service",
        ),
        estimated_success_rate="medium",
    ),
    DenialPattern(
        reason="Diagnosis does not support procedure",
        category="Coding",
        reason_codes=("CO-167", "M51"),
        common_cpts=("72148", "95810", "93000"),
        appeal_strategy=(
            "Review the diagnosis codes used. If the correct diagnosis was present but not "
            "coded, submit a corrected claim."
        ),
        documentation_checklist=(
            "Primary diagnosis supporting medical necessity",
            "Documentation of symptoms matching diagnosis",
            "LCD coverage criteria met",
        ),
        estimated_success_rate="high",
    ),
    DenialPattern(
        reason="Bundled service - included in another code",
        category="Coding",
        reason_codes=("CO-97", "M15"),
        common_cpts=("36415", "99000", "96360"),
        appeal_strategy=(
            "Review NCCI edits. If a modifier allows separate payment, resubmit with it and "
            "document that the services were distinct."
        ),
        documentation_checklist=(
            "Documentation that services were separate and distinct",
            "Appropriate modifier use (59, XE, XS, XP, XU)",
        ),
        estimated_success_rate="medium",
    ),
    DenialPattern(
        reason="DME not medically necessary",
        category="DME",
        reason_codes=("CO-50", "M62"),
        common_cpts=("E0601", "E1390", "K0001", "K0010", "E0260"),
        appeal_strategy=(
            "Document functional limitations and how the equipment addresses them. Include "
            "the face-to-face evaluation, detailed written order and proof of delivery."
        ),
        documentation_checklist=(
            "Face-to-face evaluation within required timeframe",
            "Detailed written order (DWO) with all required elements",
            "Proof of delivery",
            "For CPAP: sleep study results meeting criteria (AHI >= 5)",
        ),
        estimated_success_rate="medium",
    ),
    DenialPattern(
        reason="Therapy services not skilled",
        category="Therapy",
        reason_codes=("PR-50", "N362"),
        common_cpts=("97110", "97112", "97116", "97140", "97530", "97161", "97162", "97163"),
        appeal_strategy=(
            "Document the complexity requiring skilled intervention and measurable "
            "functional improvement."
        ),
        documentation_checklist=(
            "Skilled intervention required (not maintenance)",
            "Measurable functional goals",
            "Progress toward goals",
            "Objective measurements (ROM, strength, function)",
        ),
        estimated_success_rate="medium",
    ),
)

APPEAL_LEVELS: tuple[AppealLevel, ...] = (
    AppealLevel(1, "Redetermination",
                "Reviewed by the Medicare Administrative Contractor that processed the claim",
                120, "60 days", "~40% of denials overturned"),
    AppealLevel(2, "Reconsideration",
                "Reviewed by a Qualified Independent Contractor, separate from the MAC",
                180, "60 days", "~50% of Level 1 upheld denials overturned"),
    AppealLevel(3, "Administrative Law Judge (ALJ) Hearing",
                "Heard by an Administrative Law Judge if the amount in controversy meets the threshold",
                60, "90 days", "~70% of cases decided in beneficiary's favor"),
    AppealLevel(4, "Medicare Appeals Council Review",
                "Review by the Medicare Appeals Council within HHS", 60, "90 days"),
    AppealLevel(5, "Federal District Court",
                "Judicial review in federal court if the amount in controversy meets the threshold",
                60, "Varies"),
)

_CODE_RE = re.compile(r"\b(CO|PR|OA|PI)\s*-?\s*(\d{1,3})\b", re.IGNORECASE)


def normalize_denial_code(code: str) -> str | None:
    """``"co 50"`` / ``"CO50"`` / ``"co-50"`` → ``"CO-50"``; None when not a code."""
    match = _CODE_RE.search(code or "")
    if match is None:
        return None
    return f"{match.group(1).upper()}-{int(match.group(2))}"


def get_denial_reason(code: str) -> DenialReason | None:
    normalized = normalize_denial_code(code)
    return DENIAL_REASON_CODES.get(normalized) if normalized else None


def find_denial_patterns(text: str) -> list[DenialPattern]:
    """Patterns whose reason or reason codes match *text*."""
    lower = text.lower().strip()
    if not lower:
        return []
    code = normalize_denial_code(text)
    results = []
    for pattern in DENIAL_PATTERNS:
        if lower in pattern.reason.lower() or pattern.reason.lower() in lower:
            results.append(pattern)
        elif code and code in pattern.reason_codes:
            results.append(pattern)
    return results


def patterns_for_cpt(cpt_code: str) -> list[DenialPattern]:
    return [p for p in DENIAL_PATTERNS if cpt_code in p.common_cpts]


def appeal_deadline(denial_date: date, level: int = 1) -> date:
    """Last day to file an appeal at *level*, counted from *denial_date*."""
    days = next((lvl.time_limit_days for lvl in APPEAL_LEVELS if lvl.level == level),
                APPEAL_DEADLINE_DAYS)
    return denial_date + timedelta(days=days)


def next_appeal_level(previous_levels: list[int] | None = None) -> AppealLevel | None:
    highest = max(previous_levels or [0])
    return next((lvl for lvl in APPEAL_LEVELS if lvl.level == highest + 1), None)
