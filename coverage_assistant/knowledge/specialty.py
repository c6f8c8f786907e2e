"""Ordering-provider specialty checks.

A claim is more likely to be denied when the ordering provider's specialty
does not usually order the procedure.  Procedures missing from the table
are treated as a match: there is nothing to warn about.
"""

from __future__ import annotations

from dataclasses import dataclass, field

_ORTHO = ("orthopedic", "orthopedics", "orthopaedic")
_NEURO = ("neurology", "neurologist", "neurosurgery", "neurosurgeon")
_PRIMARY = ("family medicine", "family practice", "internal medicine", "primary care")
_PMR = ("physical medicine", "physiatry", "physiatrist", "pm&r")
_RADIOLOGY = ("radiology", "radiologist")
_RHEUM = ("rheumatology", "rheumatologist")
_CARDIO = ("cardiology", "cardiologist")

_SPINE_IMAGING = _ORTHO + _NEURO + ("pain",) + _PMR + _PRIMARY + _RADIOLOGY
_JOINT_IMAGING = _ORTHO + ("sports medicine",) + _PRIMARY + _RADIOLOGY + _RHEUM

# Insertion order matters: more specific keys come first.
PROCEDURE_SPECIALTIES: dict[str, tuple[str, ...]] = {
    "mri lumbar": _SPINE_IMAGING,
    "mri cervical": _SPINE_IMAGING,
    "mri thoracic": _SPINE_IMAGING,
    "mri spine": _SPINE_IMAGING,
    "ct spine": _SPINE_IMAGING,
    "mri knee": _JOINT_IMAGING,
    "mri shoulder": _JOINT_IMAGING,
    "mri hip": _JOINT_IMAGING,
    "mri brain": _NEURO + _PRIMARY + _RADIOLOGY + ("oncology", "oncologist"),
    "ct head": _NEURO + _PRIMARY + ("emergency medicine",) + _RADIOLOGY,
    "cardiac mri": _CARDIO + ("internal medicine",) + _RADIOLOGY,
    "echocardiogram": _CARDIO + ("internal medicine", "family medicine", "family practice"),
    "stress test": _CARDIO + ("internal medicine", "family medicine", "family practice"),
    "knee replacement": _ORTHO,
    "hip replacement": _ORTHO,
    "shoulder surgery": _ORTHO + ("sports medicine",),
    "spine surgery": _ORTHO + ("neurosurgery", "neurosurgeon"),
    "back surgery": _ORTHO + ("neurosurgery", "neurosurgeon"),
    "cataract surgery": ("ophthalmology", "ophthalmologist", "eye"),
    "colonoscopy": ("gastroenterology", "gastroenterologist", "colorectal",
                    "internal medicine", "family medicine", "family practice"),
    "physical therapy": _ORTHO + ("neurology", "neurologist") + _PMR + _PRIMARY
                        + ("pain", "sports medicine") + _RHEUM,
    "cpap": ("pulmonology", "pulmonologist", "pulmonary", "sleep medicine", "sleep") + _PRIMARY,
    "wheelchair": _PMR + _ORTHO + ("neurology", "neurologist") + _PRIMARY,
    "walker": _PMR + _ORTHO + _PRIMARY + ("geriatrics", "geriatrician"),
}

SPECIALTY_DISPLAY_NAMES: dict[str, str] = {
    "orthopedic": "Orthopedic Surgeon",
    "neurology": "Neurologist",
    "neurosurgery": "Neurosurgeon",
    "pain": "Pain Management Specialist",
    "physical medicine": "Physical Medicine & Rehabilitation",
    "family medicine": "Family Medicine",
    "internal medicine": "Internal Medicine",
    "primary care": "Primary Care",
    "radiology": "Radiologist",
    "cardiology": "Cardiologist",
    "gastroenterology": "Gastroenterologist",
    "pulmonology": "Pulmonologist",
    "rheumatology": "Rheumatologist",
    "ophthalmology": "Ophthalmologist",
    "sports medicine": "Sports Medicine",
    "sleep medicine": "Sleep Medicine",
    "geriatrics": "Geriatrician",
    "oncology": "Oncologist",
    "emergency medicine": "Emergency Medicine",
}


@dataclass(frozen=True)
class SpecialtyMatch:
    is_match: bool
    procedure: str
    provider_specialty: str
    acceptable_specialties: tuple[str, ...] = field(default=())
    warning: str | None = None
    recommendation: str | None = None


def _procedure_key(procedure: str) -> str | None:
    p = procedure.lower().strip()
    if not p:
        return None
    for key in PROCEDURE_SPECIALTIES:
        if key in p or p in key:
            return key
    return None


def recommended_specialties(procedure: str) -> list[str]:
    """Display names of the specialties that usually order *procedure*."""
    key = _procedure_key(procedure)
    if key is None:
        return []
    names: list[str] = []
    for specialty in PROCEDURE_SPECIALTIES[key]:
        display = SPECIALTY_DISPLAY_NAMES.get(specialty)
        if display and display not in names:
            names.append(display)
    return names


def validate_specialty(procedure: str, provider_specialty: str) -> SpecialtyMatch:
    key = _procedure_key(procedure)
    if key is None:
        return SpecialtyMatch(True, procedure, provider_specialty)

    acceptable = PROCEDURE_SPECIALTIES[key]
    specialty = provider_specialty.lower().strip()
    if specialty and any(a in specialty or specialty in a for a in acceptable):
        return SpecialtyMatch(True, procedure, provider_specialty, acceptable)

    recommended = recommended_specialties(procedure)
    return SpecialtyMatch(
        is_match=False,
        procedure=procedure,
        provider_specialty=provider_specialty,
        acceptable_specialties=acceptable,
        warning=(
            f"A {provider_specialty or 'provider with no listed specialty'} does not "
            f"usually order {key}. Medicare may question medical necessity."
        ),
        recommendation=(
            "Consider a referral to: " + ", ".join(recommended[:3]) if recommended else None
        ),
    )
