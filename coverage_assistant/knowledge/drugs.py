"""Part B vs Part D drug coverage.

Medicare excludes most self-administered drugs (the "SAD list") from Part B;
those fall under Part D.  Drugs given by a clinician in an office or
infusion center are generally Part B.  When a drug is not in either table
the route of administration decides.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field


@dataclass(frozen=True)
class DrugCoverage:
    generic_name: str
    route: str
    part_b: bool
    part_d: bool
    reason: str
    brand_names: tuple[str, ...] = field(default=())
    hcpcs_code: str = ""
    exception: str = ""


SAD_EXCLUSIONS: tuple[DrugCoverage, ...] = (
    DrugCoverage("methotrexate", "oral", False, True, "Oral formulation - self-administered"),
    DrugCoverage("capecitabine", "oral", False, True, "Oral chemotherapy - self-administered"),
    DrugCoverage("lenalidomide", "oral", False, True, "Oral medication - self-administered"),
    DrugCoverage("insulin", "subcutaneous", False, True, "Self-administered injection",
                 exception="Part B covers insulin used in an insulin pump"),
    DrugCoverage("epinephrine", "subcutaneous", False, True,
                 "Self-administered emergency injection", ("EpiPen",)),
    DrugCoverage("sumatriptan", "subcutaneous", False, True,
                 "Self-administered injection for migraines", ("Imitrex",)),
    DrugCoverage("enoxaparin", "subcutaneous", False, True,
                 "Self-administered anticoagulant injection", ("Lovenox",)),
    DrugCoverage("adalimumab", "subcutaneous", False, True,
                 "Self-administered biologic injection", ("Humira",)),
    DrugCoverage("follitropin", "subcutaneous", False, False,
                 "Fertility treatment - not covered by Medicare"),
)

PART_B_DRUGS: tuple[DrugCoverage, ...] = (
    DrugCoverage("rituximab", "intravenous", True, False, "IV infusion - physician administered",
                 ("Rituxan",), "J9312"),
    DrugCoverage("pembrolizumab", "intravenous", True, False, "IV infusion - physician administered",
                 ("Keytruda",), "J9271"),
    DrugCoverage("nivolumab", "intravenous", True, False, "IV infusion - physician administered",
                 ("Opdivo",), "J9299"),
    DrugCoverage("infliximab", "intravenous", True, False, "IV infusion - physician administered",
                 ("Remicade",), "J1745"),
    DrugCoverage("denosumab", "subcutaneous", True, False,
                 "Physician-administered injection for osteoporosis", ("Prolia", "Xgeva"), "J0897"),
    DrugCoverage("zoledronic acid", "intravenous", True, False, "IV infusion - physician administered",
                 ("Reclast", "Zometa"), "J3489"),
    DrugCoverage("influenza vaccine", "intramuscular", True, False, "Preventive vaccine - Part B covered",
                 ("Fluzone", "Fluad"), "90686"),
    DrugCoverage("pneumococcal vaccine", "intramuscular", True, False,
                 "Preventive vaccine - Part B covered", ("Prevnar", "Pneumovax"), "90670"),
    DrugCoverage("immune globulin", "intravenous", True, False, "IV infusion - physician administered",
                 ("Gammagard", "Privigen"), "J1459"),
    DrugCoverage("aflibercept", "intravitreal", True, False, "Eye injection - physician administered",
                 ("Eylea",), "J0178"),
    DrugCoverage("ranibizumab", "intravitreal", True, False, "Eye injection - physician administered",
                 ("Lucentis",), "J2778"),
)

# Ordered: first matching route wins.
_ROUTE_RULES: tuple[tuple[str, bool, bool, str], ...] = (
    (r"\b(intravenous|iv|infusion)\b", True, False,
     "IV/infusion medications are typically covered under Part B when "
     "administered by a healthcare provider."),
    (r"\b(intramuscular|im|intravitreal)\b", True, False,
     "Injections administered by a healthcare provider are typically covered under Part B."),
    (r"\b(oral|tablet|capsule|liquid|pill)s?\b", False, True,
     "Oral medications are covered under Part D (prescription drug coverage)."),
    (r"\b(subcutaneous|subq|sc|self-injected)\b", False, True,
     "Self-administered subcutaneous injections are typically Part D. "
     "Physician-administered may be Part B."),
    (r"\b(topical|cream|ointment|patch)\b", False, True,
     "Topical medications are self-administered and covered under Part D."),
    (r"\b(inhaled|nebulized|inhalation|inhaler)\b", False, True,
     "Inhaled medications are typically self-administered and covered under Part D."),
)


def find_drug(drug_name: str) -> DrugCoverage | None:
    """Look a drug up by generic or brand name, SAD list first."""
    name = drug_name.lower().strip()
    if not name:
        return None
    for drug in SAD_EXCLUSIONS + PART_B_DRUGS:
        if drug.generic_name in name or name in drug.generic_name:
            return drug
        if any(brand.lower() in name for brand in drug.brand_names):
            return drug
    return None


def coverage_by_route(route: str) -> dict[str, object]:
    """Best-effort Part B / Part D guess from the route of administration."""
    normalized = route.lower().strip()
    for pattern, part_b, part_d, explanation in _ROUTE_RULES:
        if re.search(pattern, normalized):
            return {
                "likely_part_b": part_b,
                "likely_part_d": part_d,
                "explanation": explanation,
            }
    return {
        "likely_part_b": False,
        "likely_part_d": False,
        "explanation": (
            "Coverage depends on whether the medication is self-administered "
            "(Part D) or physician-administered (Part B)."
        ),
    }
