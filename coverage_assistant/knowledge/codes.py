"""CPT / ICD-10 lookup tables for common Medicare (65+) conditions.

The tables are a curated subset kept in memory; every function here is a
pure lookup with "not found" as the only failure mode.  Codes are never
shown to users; the model uses them to look up coverage policies.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field


@dataclass(frozen=True)
class CPTCode:
    code: str
    description: str
    category: str
    subcategory: str = ""
    common_diagnoses: tuple[str, ...] = field(default=())
    medicare_notes: str = ""


@dataclass(frozen=True)
class ICD10Code:
    code: str
    description: str
    category: str
    subcategory: str = ""
    common_procedures: tuple[str, ...] = field(default=())


# ── Procedure codes ──────────────────────────────────────────────────

CPT_CODES: tuple[CPTCode, ...] = (
    # Office visits
    CPTCode("99213", "Office visit, established patient, low complexity", "E/M", "Office Visit"),
    CPTCode("99214", "Office visit, established patient, moderate complexity", "E/M", "Office Visit"),
    CPTCode("99204", "Office visit, new patient, moderate complexity", "E/M", "Office Visit"),
    # Orthopedics: imaging
    CPTCode("72148", "MRI lumbar spine without contrast", "Orthopedics", "Imaging",
            ("M54.5", "M54.41", "M54.42")),
    CPTCode("72149", "MRI lumbar spine with contrast", "Orthopedics", "Imaging"),
    CPTCode("72141", "MRI cervical spine without contrast", "Orthopedics", "Imaging",
            ("M54.2", "M50.20")),
    CPTCode("72146", "MRI thoracic spine without contrast", "Orthopedics", "Imaging"),
    CPTCode("73721", "MRI lower extremity joint without contrast", "Orthopedics", "Imaging",
            ("M17.11", "M25.561", "S83.511A")),
    CPTCode("73221", "MRI upper extremity joint without contrast", "Orthopedics", "Imaging"),
    CPTCode("72100", "X-ray lumbar spine, 2-3 views", "Orthopedics", "Imaging", ("M54.5",)),
    CPTCode("73562", "X-ray knee, 3 views", "Orthopedics", "Imaging", ("M17.11", "M25.561")),
    # Orthopedics: surgery and injections
    CPTCode("27447", "Total knee arthroplasty", "Orthopedics", "Joint Replacement",
            ("M17.11", "M17.12", "M17.0")),
    CPTCode("27130", "Total hip arthroplasty", "Orthopedics", "Joint Replacement",
            ("M16.11", "M16.12", "M16.0")),
    CPTCode("23472", "Total shoulder arthroplasty", "Orthopedics", "Joint Replacement"),
    CPTCode("20610", "Arthrocentesis/injection, major joint", "Orthopedics", "Injection",
            ("M17.11", "M25.561", "M25.562")),
    CPTCode("64483", "Epidural steroid injection, lumbar, transforaminal", "Orthopedics", "Injection",
            ("M54.41", "M54.42")),
    CPTCode("63047", "Lumbar laminectomy, single segment", "Orthopedics", "Spine Surgery",
            ("M48.061",)),
    # Orthopedics: therapy and bone density
    CPTCode("97110", "Therapeutic exercises, 15 minutes", "Orthopedics", "Physical Therapy",
            ("M54.5", "M17.11", "S72.001A")),
    CPTCode("97140", "Manual therapy techniques, 15 minutes", "Orthopedics", "Physical Therapy"),
    CPTCode("97161", "Physical therapy evaluation, low complexity", "Orthopedics", "Physical Therapy"),
    CPTCode("77080", "DEXA bone density, axial skeleton", "Orthopedics", "Bone Density",
            ("M81.0",), "Covered every 24 months for qualifying beneficiaries"),
    # Cardiology
    CPTCode("93000", "Electrocardiogram (ECG) complete", "Cardiology", "ECG",
            ("I10", "I25.10", "I48.91", "R00.0")),
    CPTCode("93306", "Transthoracic echo with Doppler, complete", "Cardiology", "Echo",
            ("I50.9", "I25.10")),
    CPTCode("93350", "Stress echocardiography", "Cardiology", "Echo", ("I25.10", "R07.9")),
    CPTCode("93015", "Cardiovascular stress test, complete", "Cardiology", "Stress Test",
            ("I25.10", "R07.9", "R00.0")),
    CPTCode("93224", "Holter monitor, recording, scanning, report", "Cardiology", "Holter",
            ("R00.0", "I48.91")),
    CPTCode("33208", "Insertion of pacemaker, dual chamber", "Cardiology", "Pacemaker Surgery"),
    # Pulmonary and sleep
    CPTCode("94010", "Spirometry, including graphic record", "Pulmonary", "PFT", ("J44.9", "J45.909")),
    CPTCode("71046", "Chest X-ray, 2 views", "Pulmonary", "Imaging", ("J18.9", "J44.9", "R05.9")),
    CPTCode("71250", "CT chest without contrast", "Pulmonary", "Imaging", ("R91.1", "J44.9")),
    CPTCode("95810", "Polysomnography (sleep study), attended", "Pulmonary", "Sleep",
            ("G47.33",)),
    CPTCode("E0601", "CPAP device", "DME", "Respiratory", ("G47.33",),
            "Requires qualifying sleep study and 90-day compliance check"),
    # Neurology imaging
    CPTCode("70551", "MRI brain without contrast", "Neurology", "Imaging", ("G43.909", "R51.9")),
    CPTCode("70450", "CT head without contrast", "Neurology", "Imaging", ("R51.9", "S06.0X0A")),
    # GI and eye
    CPTCode("45378", "Diagnostic colonoscopy", "GI", "Endoscopy", ("K57.30", "R19.5")),
    CPTCode("66984", "Cataract surgery with intraocular lens", "Ophthalmology", "Surgery",
            ("H25.9",)),
    # DME
    CPTCode("K0001", "Standard manual wheelchair", "DME", "Mobility", ("M62.81",)),
    CPTCode("E0143", "Folding walker with wheels", "DME", "Mobility", ("M62.81",)),
    # Preventive services
    CPTCode("G0438", "Annual wellness visit, initial", "Preventive", "Wellness"),
    CPTCode("G0439", "Annual wellness visit, subsequent", "Preventive", "Wellness",
            medicare_notes="Covered once every 12 months"),
    CPTCode("G0105", "Colorectal cancer screening, colonoscopy, high risk", "Preventive", "Screening"),
    CPTCode("G0121", "Colorectal cancer screening, colonoscopy, not high risk", "Preventive", "Screening"),
    CPTCode("77067", "Screening mammography, bilateral", "Preventive", "Screening"),
    CPTCode("90686", "Influenza vaccine, quadrivalent", "Preventive", "Vaccine"),
    CPTCode("90732", "Pneumococcal polysaccharide vaccine", "Preventive", "Vaccine"),
)

# ── Diagnosis codes ──────────────────────────────────────────────────

ICD10_CODES: tuple[ICD10Code, ...] = (
    # Spine
    ICD10Code("M54.5", "Low back pain", "Orthopedics", "Spine", ("72148", "97110", "72100")),
    ICD10Code("M54.50", "Low back pain, unspecified", "Orthopedics", "Spine"),
    ICD10Code("M54.41", "Lumbago with sciatica, right side", "Orthopedics", "Spine",
              ("72148", "64483")),
    ICD10Code("M54.42", "Lumbago with sciatica, left side", "Orthopedics", "Spine",
              ("72148", "64483")),
    ICD10Code("M54.2", "Cervicalgia (neck pain)", "Orthopedics", "Spine", ("72141", "97110")),
    ICD10Code("M48.061", "Spinal stenosis, lumbar region without neurogenic claudication",
              "Orthopedics", "Spine", ("72148", "63047")),
    ICD10Code("M50.20", "Cervical disc displacement, unspecified level", "Orthopedics", "Spine"),
    # Knee and hip
    ICD10Code("M17.0", "Bilateral primary osteoarthritis of knee", "Orthopedics", "Knee",
              ("27447", "20610", "73721")),
    ICD10Code("M17.11", "Unilateral primary osteoarthritis, right knee", "Orthopedics", "Knee",
              ("27447", "20610", "73721")),
    ICD10Code("M17.12", "Unilateral primary osteoarthritis, left knee", "Orthopedics", "Knee",
              ("27447", "20610", "73721")),
    ICD10Code("M25.561", "Pain in right knee", "Orthopedics", "Knee Pain", ("73721", "20610")),
    ICD10Code("M25.562", "Pain in left knee", "Orthopedics", "Knee Pain", ("73721", "20610")),
    ICD10Code("S83.511A", "Sprain of anterior cruciate ligament of right knee, initial",
              "Orthopedics", "Knee"),
    ICD10Code("M16.0", "Bilateral primary osteoarthritis of hip", "Orthopedics", "Hip",
              ("27130", "20610")),
    ICD10Code("M16.11", "Unilateral primary osteoarthritis, right hip", "Orthopedics", "Hip",
              ("27130",)),
    ICD10Code("M16.12", "Unilateral primary osteoarthritis, left hip", "Orthopedics", "Hip",
              ("27130",)),
    ICD10Code("S72.001A", "Fracture of neck of right femur, initial", "Orthopedics", "Fracture",
              ("27130",)),
    ICD10Code("M81.0", "Age-related osteoporosis without current pathological fracture",
              "Orthopedics", "Osteoporosis", ("77080",)),
    ICD10Code("M62.81", "Muscle weakness (generalized)", "Orthopedics", "Other",
              ("97110", "K0001", "E0143")),
    # Cardiology
    ICD10Code("I10", "Essential (primary) hypertension", "Cardiology", "Hypertension",
              ("93000", "99213", "99214")),
    ICD10Code("I25.10", "Coronary artery disease without angina", "Cardiology", "CAD",
              ("93000", "93015", "93350")),
    ICD10Code("I48.91", "Atrial fibrillation, unspecified", "Cardiology", "Arrhythmia",
              ("93000", "93224")),
    ICD10Code("I50.9", "Heart failure, unspecified", "Cardiology", "Heart Failure", ("93306",)),
    ICD10Code("R00.0", "Tachycardia, unspecified", "Cardiology", "Symptoms", ("93000", "93224")),
    ICD10Code("R07.9", "Chest pain, unspecified", "Cardiology", "Symptoms", ("93000", "93015")),
    # Pulmonary and sleep
    ICD10Code("J44.9", "Chronic obstructive pulmonary disease, unspecified", "Pulmonary", "COPD",
              ("94010", "71046")),
    ICD10Code("J45.909", "Asthma, unspecified, uncomplicated", "Pulmonary", "Asthma", ("94010",)),
    ICD10Code("J18.9", "Pneumonia, unspecified organism", "Pulmonary", "Infection", ("71046",)),
    ICD10Code("R05.9", "Cough, unspecified", "Pulmonary", "Symptoms", ("71046",)),
    ICD10Code("R91.1", "Solitary pulmonary nodule", "Pulmonary", "Imaging Findings", ("71250",)),
    ICD10Code("G47.33", "Obstructive sleep apnea", "Pulmonary", "Sleep", ("95810", "E0601")),
    # Neurology
    ICD10Code("G43.909", "Migraine, unspecified", "Neurology", "Headache", ("70551",)),
    ICD10Code("R51.9", "Headache, unspecified", "Neurology", "Headache", ("70551", "70450")),
    ICD10Code("G20", "Parkinson's disease", "Neurology", "Movement"),
    ICD10Code("G30.9", "Alzheimer's disease, unspecified", "Neurology", "Dementia"),
    # GI, eye, diabetes
    ICD10Code("K57.30", "Diverticulosis of large intestine", "GI", "Colon", ("45378",)),
    ICD10Code("R19.5", "Other fecal abnormalities", "GI", "Symptoms", ("45378",)),
    ICD10Code("H25.9", "Age-related cataract, unspecified", "Ophthalmology", "Cataract", ("66984",)),
    ICD10Code("E11.9", "Type 2 diabetes mellitus without complications", "Diabetes", "Type 2",
              ("99213",)),
)

# ── Keyword → category routing for free-text queries ─────────────────

CONDITION_KEYWORDS: dict[str, tuple[str, tuple[str, ...]]] = {
    "back pain": ("Orthopedics", ("back pain", "lower back", "lumbar", "sciatica", "spine")),
    "neck pain": ("Orthopedics", ("neck pain", "cervical", "stiff neck")),
    "knee": ("Orthopedics", ("knee", "acl", "meniscus")),
    "hip": ("Orthopedics", ("hip", "femur")),
    "osteoporosis": ("Orthopedics", ("osteoporosis", "bone density", "dexa")),
    "heart": ("Cardiology", ("heart", "chest pain", "palpitation", "afib", "hypertension",
                             "blood pressure")),
    "copd": ("Pulmonary", ("copd", "emphysema", "chronic bronchitis", "shortness of breath")),
    "sleep apnea": ("Pulmonary", ("sleep apnea", "osa", "cpap", "snoring")),
    "headache": ("Neurology", ("migraine", "headache", "head pain")),
    "dementia": ("Neurology", ("dementia", "alzheimer", "memory loss")),
    "colon": ("GI", ("colonoscopy", "colon", "diverticul")),
    "cataract": ("Ophthalmology", ("cataract", "cloudy vision")),
    "diabetes": ("Diabetes", ("diabetes", "blood sugar", "a1c")),
    "mri": ("Orthopedics", ("mri", "magnetic resonance")),
    "x-ray": ("Orthopedics", ("xray", "x-ray", "radiograph")),
}

# ── Code sets ────────────────────────────────────────────────────────

PREVENTIVE_CODES: frozenset[str] = frozenset({
    "G0438", "G0439", "G0442", "G0443", "G0444", "G0446", "G0447",
    "G0101", "G0121", "G0105", "77067",
    "90732", "90670", "90715", "90714", "90662", "90686", "90688", "90750",
})

PRIOR_AUTH_CODES: frozenset[str] = frozenset({
    # CMS prior authorization model categories
    "15820", "15821", "15822", "15823",
    "64615",
    "22551", "22552", "22554",
    "64490", "64491", "64492", "64493", "64494", "64495",
    "27130", "27132", "27447",
    "63650", "63685", "63688",
    "22612", "22630", "22633", "22634",
    "27279",
    "36473", "36474", "36475", "36476", "36478", "36479",
    # Commonly requiring prior auth elsewhere
    "63030", "63042", "63047",
    "70551", "70552", "70553",
    "72141", "72142", "72148", "72149",
    "73721", "73722",
    "71250", "71260", "74176", "74177",
    "95810", "95811",
    "E0601", "E1390", "K0001", "K0010",
    "66984", "67028",
    "96413", "96415",
    "43775", "43644", "43645",
    "93452", "93453",
})

# ── Coverage requirement patterns ────────────────────────────────────

COVERAGE_REQUIREMENTS: dict[str, dict[str, object]] = {
    "mri": {
        "requirements": [
            "Symptom duration typically 6+ weeks",
            "Failed conservative treatment (PT, medication)",
            "Neurological symptoms if present (numbness, weakness)",
            "Physical exam findings documented",
        ],
        "documentation": [
            "Duration of symptoms",
            "Prior treatments attempted and results",
            "Physical examination findings",
            "Medical necessity statement",
        ],
        "duration": "6+ weeks",
        "prior_treatment": ["Physical therapy", "Anti-inflammatory medication", "Activity modification"],
    },
    "ct": {
        "requirements": [
            "Clinical indication documented",
            "Prior imaging reviewed if applicable",
            "Medical necessity established",
        ],
        "documentation": ["Reason for study", "Relevant symptoms", "Prior imaging results if any"],
    },
    "joint_replacement": {
        "requirements": [
            "Documented arthritis or joint damage",
            "Failed conservative treatment (3-6 months)",
            "Functional limitation documentation",
            "X-ray evidence of joint damage",
        ],
        "documentation": [
            "Imaging showing joint damage",
            "Duration and severity of symptoms",
            "Conservative treatments tried",
            "Functional assessment",
        ],
        "duration": "3-6 months conservative treatment",
        "prior_treatment": [
            "Physical therapy",
            "Weight management",
            "Anti-inflammatory medication",
            "Cortisone injections",
        ],
    },
    "physical_therapy": {
        "requirements": [
            "Physician order/referral",
            "Therapy plan of care",
            "Functional goals documented",
            "Regular progress notes",
        ],
        "documentation": [
            "Diagnosis requiring therapy",
            "Treatment goals",
            "Expected duration",
            "Progress measurements",
        ],
    },
    "dme": {
        "requirements": [
            "Medical necessity documentation",
            "Face-to-face examination",
            "Written order from physician",
        ],
        "documentation": [
            "Diagnosis requiring equipment",
            "How equipment will be used",
            "Expected duration of need",
        ],
    },
    "default": {
        "requirements": [
            "Medical necessity documented",
            "Diagnosis supports the service",
            "Service is appropriate for condition",
        ],
        "documentation": ["Diagnosis", "Clinical indication", "Expected benefit"],
    },
}

_CPT_BY_CODE: dict[str, CPTCode] = {c.code: c for c in CPT_CODES}
_ICD10_BY_CODE: dict[str, ICD10Code] = {c.code: c for c in ICD10_CODES}


# ── Lookups ──────────────────────────────────────────────────────────


def get_cpt(code: str) -> CPTCode | None:
    return _CPT_BY_CODE.get(code.strip().upper())


def get_icd10(code: str) -> ICD10Code | None:
    return _ICD10_BY_CODE.get(code.strip().upper())


def search_cpt(query: str, limit: int = 10) -> list[CPTCode]:
    """Substring search over code, description and category."""
    q = query.lower().strip()
    if not q:
        return []
    return [
        c for c in CPT_CODES
        if q in c.code.lower()
        or q in c.description.lower()
        or q in c.category.lower()
        or q in c.subcategory.lower()
    ][:limit]


def search_icd10(query: str, limit: int = 10) -> list[ICD10Code]:
    q = query.lower().strip()
    if not q:
        return []
    return [
        c for c in ICD10_CODES
        if q in c.code.lower()
        or q in c.description.lower()
        or q in c.category.lower()
        or q in c.subcategory.lower()
    ][:limit]


def _category_for(text: str) -> str | None:
    lower = text.lower()
    for category, keywords in CONDITION_KEYWORDS.values():
        if any(kw in lower for kw in keywords):
            return category
    return None


def _query_words(text: str) -> list[str]:
    return [w for w in text.lower().split() if len(w) > 2]


def cpts_for_condition(condition: str, limit: int = 10) -> list[CPTCode]:
    """Procedure codes for a free-text condition or procedure description.

    A keyword hit selects a category, narrowed to codes whose description
    shares a word with the query when any do.  Otherwise falls back to a
    plain text search.
    """
    category = _category_for(condition)
    if category is None:
        return search_cpt(condition, limit)
    in_category = [c for c in CPT_CODES if c.category == category]
    words = _query_words(condition)
    narrowed = [c for c in in_category if any(w in c.description.lower() for w in words)]
    return (narrowed or in_category)[:limit]


def icd10s_for_condition(condition: str, limit: int = 10) -> list[ICD10Code]:
    category = _category_for(condition)
    if category is None:
        return search_icd10(condition, limit)
    in_category = [c for c in ICD10_CODES if c.category == category]
    words = _query_words(condition)
    narrowed = [c for c in in_category if any(w in c.description.lower() for w in words)]
    return (narrowed or in_category)[:limit]


def related_diagnoses(cpt_code: str) -> list[ICD10Code]:
    cpt = get_cpt(cpt_code)
    if cpt is None:
        return []
    return [_ICD10_BY_CODE[c] for c in cpt.common_diagnoses if c in _ICD10_BY_CODE]


def related_procedures(icd10_code: str) -> list[CPTCode]:
    icd = get_icd10(icd10_code)
    if icd is None:
        return []
    return [_CPT_BY_CODE[c] for c in icd.common_procedures if c in _CPT_BY_CODE]


def is_preventive(code: str) -> bool:
    return code.strip().upper() in PREVENTIVE_CODES


def requires_prior_auth(code: str) -> bool:
    return code.strip().upper() in PRIOR_AUTH_CODES


def coverage_pattern_for(procedure: str) -> str:
    """Pick the requirement pattern key for a procedure description."""
    p = procedure.lower()
    if "mri" in p or "magnetic resonance" in p:
        return "mri"
    if re.search(r"\bct\b", p) or "computed tomography" in p or "cat scan" in p:
        return "ct"
    if "replacement" in p or "arthroplasty" in p or "joint" in p:
        return "joint_replacement"
    if "therapy" in p or p.strip() == "pt":
        return "physical_therapy"
    if any(k in p for k in ("dme", "equipment", "cpap", "wheelchair", "walker")):
        return "dme"
    return "default"
