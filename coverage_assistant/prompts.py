"""System prompt composition for the Medicare coverage assistant.

The prompt is assembled from a table of fragments rather than built by
string surgery:

    base → restraint (while intake is incomplete) → topic fragments
         (red flags first) → suggestion format → session summary

``plan()`` returns the ordered fragment ids for a trigger vector, and
``compose()`` renders them.  Both are pure: the same triggers and session
state always produce a byte-identical prompt.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from langchain_core.messages import BaseMessage

from coverage_assistant.extraction import message_text, user_texts
from coverage_assistant.session import PROVIDER_SEARCH_LIMIT, SessionState

FRAGMENT_SEPARATOR = "\n\n---\n\n"


class FragmentId(str, Enum):
    BASE = "base"
    RESTRAINT = "restraint"
    RED_FLAG_CHECK = "red_flag_check"
    SYMPTOM_INTAKE = "symptom_intake"
    PROCEDURE_IDENTIFICATION = "procedure_identification"
    PROVIDER_LOOKUP = "provider_lookup"
    COVERAGE_LOOKUP = "coverage_lookup"
    GUIDANCE_GENERATION = "guidance_generation"
    APPEAL_ASSISTANCE = "appeal_assistance"
    SUGGESTION_FORMAT = "suggestion_format"


FRAGMENTS: dict[FragmentId, str] = {
    FragmentId.BASE: """You are a friendly Medicare coverage assistant.

## Your Role
You help Medicare patients and their caregivers:
1. **Understand** what Medicare needs before it approves a test, procedure or piece of equipment
2. **Prepare** a checklist of what to ask the doctor to document
3. **Appeal** a denial, with the policy citations that support it

## Conversation Guidelines
- Warm, plain English, 8th-grade reading level.  Users are often stressed.
- Ask **one question at a time**, one line, with a short reason on the next line in italics.
- Use the person's name once you know it.
- During intake keep replies to 1-2 sentences.  Save detail for the final guidance.

## Safety Rules
- **NEVER** give medical advice, diagnoses or treatment recommendations.  Only coverage guidance.
- **NEVER** show medical codes to the user; translate them into plain English.
- **NEVER** ask the user for codes; look them up from their description.
- **NEVER** make up coverage requirements.  Only share what the tools return.
- When quoting an LCD/NCD requirement, include the policy number and keep the exact medical wording.""",

    FragmentId.RESTRAINT: """## Do Not Call Tools Yet
You are still gathering the basics.  Do not call any tools until you know the
symptoms, how long they have lasted and which procedure the doctor ordered.
Just have the conversation, one question at a time.""",

    FragmentId.RED_FLAG_CHECK: """## Red Flags and Emergencies
### Immediate safety
If the user describes an emergency happening now (chest pain with shortness of
breath, a sudden severe headache, sudden numbness or weakness on one side),
stop the intake and say first:
"If this is happening right now, please call 911 or go to the nearest ER.
Once you're safe, I can help with the coverage questions."

### Red flags that speed up approval
These are not emergencies but they let the doctor skip conservative treatment:
- History of cancer: "history of malignancy"
- Bladder or bowel problems: "cauda equina symptoms" (urgent referral)
- Progressive weakness: "progressive neurological deficit"
- Fever with pain: "suspected infection"
- Recent fall or accident: "post-traumatic evaluation"
- Unexplained weight loss: "rule out malignancy"

When one is present, tell the user it can help get faster approval and that
the doctor should document it prominently.""",

    FragmentId.SYMPTOM_INTAKE: """## Symptom Intake
- Find out what is going on (pain, numbness, weakness) and where.
- Ask how long it has been going on; most imaging needs 6+ weeks of symptoms.
- Ask which treatments were tried (physical therapy, medication, injections) and for how long.
- Listen for red flags (bladder or bowel problems, progressive weakness, fever,
  history of cancer, recent trauma); they can justify skipping conservative treatment.""",

    FragmentId.PROCEDURE_IDENTIFICATION: """## Procedure Identification
- Pin down exactly what was ordered (e.g. "MRI of the lower back", not just "a scan").
- If it is ambiguous, ask one clarifying question with two concrete options.
- Use `search_cpt` and `search_icd10` internally to map the description to codes.
- Use `check_prior_auth` to see whether the service commonly needs prior authorization.""",

    FragmentId.PROVIDER_LOOKUP: """## Provider Lookup
- Use `search_npi` with the doctor's name and the user's state or ZIP area.
- Show matches as a short numbered list and ask which one is theirs.
- Use `check_specialty_match` once the provider and procedure are known, and
  explain any mismatch gently.
- Stop after 3 searches and move on without a confirmed provider.""",

    FragmentId.COVERAGE_LOOKUP: """## Coverage Lookup
- Use `get_coverage_requirements` for the procedure and diagnosis.  Use
  `search_ncd` / `search_lcd` for the governing policies.
- After reading the policies, emit the specific requirements as a block, one per line:
  [REQUIREMENTS]
  requirement
  [/REQUIREMENTS]
- Then verify them with the user one question at a time before giving guidance.
- For medications use `check_sad_list` to explain Part B vs Part D.""",

    FragmentId.GUIDANCE_GENERATION: """## Guidance
- Lead with the high-level answer: is it likely covered, and what is missing?
- Then give a **checklist** of what the doctor needs to document, citing the policy number.
- Use `search_pubmed` only when clinical evidence would strengthen the case.
- Do not repeat guidance that was already delivered; offer next steps instead.""",

    FragmentId.APPEAL_ASSISTANCE: """## Appeal Assistance
1. Ask for the denial code on the notice (e.g. CO-50) and look it up with `lookup_denial_code`.
2. Ask when the denial was received.  A Level 1 appeal must be filed within 120 days.
3. Explain the denial in plain English and the strategy for appealing it.
4. Draft the letter with `generate_appeal_letter` once you have the procedure,
   diagnosis and denial reason.""",

    FragmentId.SUGGESTION_FORMAT: """## Suggestions (every response)
End every response with the answers the user is most likely to click:
[SUGGESTIONS]
Answer option 1
Answer option 2
[/SUGGESTIONS]
- At most 3 options, each under 25 characters.
- Options answer YOUR question; never suggest actions you take yourself.""",
}

# Fixed priority order for topic fragments.
TOPIC_ORDER: tuple[FragmentId, ...] = (
    FragmentId.RED_FLAG_CHECK,
    FragmentId.SYMPTOM_INTAKE,
    FragmentId.PROCEDURE_IDENTIFICATION,
    FragmentId.PROVIDER_LOOKUP,
    FragmentId.COVERAGE_LOOKUP,
    FragmentId.GUIDANCE_GENERATION,
    FragmentId.APPEAL_ASSISTANCE,
)


@dataclass(frozen=True)
class Triggers:
    """Boolean features of the conversation used to select fragments."""

    has_symptoms: bool = False
    has_procedure: bool = False
    has_provider: bool = False
    has_diagnosis: bool = False
    has_coverage_intent: bool = False
    has_guidance_already: bool = False
    is_appeal_intent: bool = False
    needs_clarification: bool = False
    has_red_flags: bool = False
    has_emergency_symptoms: bool = False

    def topics(self) -> list[FragmentId]:
        wanted = {
            FragmentId.RED_FLAG_CHECK: self.has_red_flags or self.has_emergency_symptoms,
            FragmentId.SYMPTOM_INTAKE: self.has_symptoms,
            FragmentId.PROCEDURE_IDENTIFICATION: self.has_procedure or self.needs_clarification,
            FragmentId.PROVIDER_LOOKUP: self.has_provider,
            FragmentId.COVERAGE_LOOKUP: self.has_coverage_intent,
            FragmentId.GUIDANCE_GENERATION: self.has_diagnosis or self.has_guidance_already,
            FragmentId.APPEAL_ASSISTANCE: self.is_appeal_intent,
        }
        return [fid for fid in TOPIC_ORDER if wanted[fid]]


# ── Trigger detection ────────────────────────────────────────────────

_SYMPTOM_RE = re.compile(r"\b(pain|hurts?|ache|aching|numb|tingl\w*|dizzy|tired|weak|swollen)\b")
_PROCEDURE_RE = re.compile(
    r"\b(mri|ct|scan|surgery|replacement|x-?ray|ultrasound|procedure|colonoscopy|cpap)\b"
)
_PROVIDER_RE = re.compile(r"\b(dr\.?|doctor|physician|specialist|surgeon|provider)\b")
_COVERAGE_RE = re.compile(r"\b(cover(?:ed|age|s)?|medicare|approv\w*|pay for|prior auth\w*)\b")
_APPEAL_RE = re.compile(r"\b(denied|denial|appeal\w*|reject\w*|refused)\b")
_CLARIFY_RE = re.compile(r"\b(which|what kind|what type|clarify|not sure)\b")
_EMERGENCY_RE = re.compile(
    r"chest pain.*(?:breath|short)|sudden\w*.*(?:headache|numb|weak)|can't (?:move|feel)|"
    r"worst headache|one side.*(?:numb|weak)"
)


def detect_triggers(messages: Sequence[BaseMessage], state: SessionState) -> Triggers:
    """Compute the trigger vector from session fields and conversation text.

    Appeal intent and emergency symptoms only look at user text.
    Clarification only looks at the latest user message.
    """
    all_text = " ".join(message_text(m) for m in messages).lower()
    users = user_texts(messages)
    user_text = " ".join(users).lower()
    last_user = users[-1].lower() if users else ""

    return Triggers(
        has_symptoms=bool(state.symptoms) or bool(_SYMPTOM_RE.search(all_text)),
        has_procedure=state.procedure is not None or bool(_PROCEDURE_RE.search(all_text)),
        has_provider=(
            state.provider is not None
            or state.provider_name is not None
            or bool(_PROVIDER_RE.search(all_text))
        ),
        has_diagnosis=bool(state.diagnosis_codes),
        has_coverage_intent=(
            bool(state.requirements)
            or bool(state.policy_references)
            or bool(_COVERAGE_RE.search(all_text))
        ),
        has_guidance_already=state.guidance_generated,
        is_appeal_intent=state.is_appeal or bool(_APPEAL_RE.search(user_text)),
        needs_clarification=bool(_CLARIFY_RE.search(last_user)),
        has_red_flags=bool(state.red_flags),
        has_emergency_symptoms=bool(_EMERGENCY_RE.search(user_text)),
    )


# ── Session summary ──────────────────────────────────────────────────


def render_session_summary(state: SessionState) -> str:
    """Markdown summary of the non-empty session fields, in a fixed order."""
    lines = ["## Current Session State"]

    if state.user_name:
        lines.append(f"**User's name:** {state.user_name}")
    if state.region_code:
        lines.append(f"**ZIP:** {state.region_code}")
    if state.symptoms:
        lines.append(f"**Symptoms:** {', '.join(state.symptoms)}")
    if state.duration:
        lines.append(f"**Duration:** {state.duration}")
    if state.severity:
        lines.append(f"**Severity:** {state.severity}")
    if state.prior_treatments:
        lines.append(f"**Prior treatments:** {', '.join(state.prior_treatments)}")
    if state.red_flags:
        lines.append(f"**Red flags:** {', '.join(state.red_flags)}")
    if state.procedure:
        lines.append(f"**Procedure:** {state.procedure}")
    if state.provider_name:
        lines.append(f"**Doctor mentioned:** {state.provider_name}")
    if state.provider:
        name = (state.provider.get("name") or {}).get("full", "Unknown")
        specialty = (state.provider.get("specialty") or {}).get("primary") or "Unknown"
        lines.append(f"**Provider confirmed:** {name} (NPI: {state.provider.get('npi')})")
        lines.append(f"  Specialty: {specialty}")

    searches = state.attempts_for("search_npi")
    if searches:
        lines.append(f"**Provider searches:** {searches}/{PROVIDER_SEARCH_LIMIT}")
    if state.provider_search_exhausted and state.provider is None:
        lines.append("**Provider search limit reached:** stop searching and continue without it.")

    if state.diagnosis_codes:
        lines.append(f"**[Internal] ICD-10:** {', '.join(state.diagnosis_codes)}")
    if state.procedure_codes:
        lines.append(f"**[Internal] CPT:** {', '.join(state.procedure_codes)}")
    if state.prior_auth_required is not None:
        lines.append(f"**Prior authorization commonly required:** {'yes' if state.prior_auth_required else 'no'}")
    if state.policy_references:
        lines.append(f"**Policies:** {', '.join(state.policy_references)}")
    if state.requirements:
        lines.append("**Requirements to verify:**")
        lines.extend(f"- {r}" for r in state.requirements)
    if state.verification_complete:
        status = "all met" if state.meets_requirements else "some missing"
        lines.append(f"**Requirements verified:** {status}")

    if state.is_appeal:
        lines.append("**Mode:** appeal assistance")
    if state.denial_codes:
        lines.append(f"**Denial codes:** {', '.join(state.denial_codes)}")
    if state.denial_date:
        lines.append(f"**Denial date:** {state.denial_date}")
    if state.guidance_generated:
        lines.append("**Guidance:** already delivered")

    if len(lines) == 1:
        lines.append("Nothing gathered yet.")
    return "\n".join(lines)


# ── Composition ──────────────────────────────────────────────────────


def plan(triggers: Triggers, state: SessionState) -> list[FragmentId]:
    """Ordered fragment ids for this turn."""
    fragments = [FragmentId.BASE]
    if state.missing_intake():
        fragments.append(FragmentId.RESTRAINT)
    fragments.extend(triggers.topics())
    fragments.append(FragmentId.SUGGESTION_FORMAT)
    return fragments


def compose(triggers: Triggers, state: SessionState) -> str:
    sections = [FRAGMENTS[fid] for fid in plan(triggers, state)]
    sections.append(render_session_summary(state))
    return FRAGMENT_SEPARATOR.join(sections)
