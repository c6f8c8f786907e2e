"""Session-state extraction from free text and capability results.

Two paths feed :class:`~coverage_assistant.session.SessionState`:

* **Text rules** run over completed turns.  User text and assistant text
  have separate rule sets (``USER_TEXT_RULES`` / ``ASSISTANT_TEXT_RULES``).
  Appeal intent is only ever read from user text: assistant guidance talks
  about denials all the time while explaining how to avoid one.
* **Result folders** (``RESULT_FOLDERS``) pull structured fields out of a
  successful capability result, keyed by capability name.

Every rule goes through the monotonic mutators on ``SessionState``, so
applying the same text or result twice changes nothing the second time.
Rules are plain ``ExtractionRule`` records and can be swapped or extended
without touching the orchestration loop.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage

from coverage_assistant.knowledge.codes import get_cpt
from coverage_assistant.session import SessionState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExtractionRule:
    """A named heuristic: ``apply(text, state)`` returns True if it changed state."""

    name: str
    apply: Callable[[str, SessionState], bool]


# ── Message helpers ──────────────────────────────────────────────────


def message_text(message: BaseMessage) -> str:
    """Plain text of a message whose content may be a list of blocks."""
    content = message.content
    if isinstance(content, str):
        return content
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "\n".join(p for p in parts if p)


def user_texts(messages: Iterable[BaseMessage]) -> list[str]:
    return [message_text(m) for m in messages if isinstance(m, HumanMessage)]


def assistant_texts(messages: Iterable[BaseMessage]) -> list[str]:
    return [message_text(m) for m in messages if isinstance(m, AIMessage)]


# ── User text rules ──────────────────────────────────────────────────

_NAME_PHRASE_RE = re.compile(
    r"(?i:\bmy name is|\bi'm|\bi am|\bcall me|\bthis is)\s+([A-Z][a-zA-Z'-]{1,20})\b"
)
_SINGLE_WORD_RE = re.compile(r"^\s*([A-Za-z][a-zA-Z'-]{1,19})\s*[.!]?\s*$")

NAME_STOP_WORDS = frozenset({
    "hi", "hello", "hey", "yes", "yeah", "yep", "no", "nope", "ok", "okay",
    "thanks", "thank", "sure", "maybe", "help", "mri", "ct", "xray", "surgery",
    "pain", "back", "knee", "hip", "neck", "shoulder", "medicare", "denied",
    "appeal", "both", "none", "continue", "done", "new", "quit", "start",
    "having", "looking", "trying", "not", "fine", "good", "great", "here",
    "sorry", "worried", "calling", "asking", "wondering", "still", "unsure",
})

_ZIP_RE = re.compile(r"\b(\d{5})(?:-\d{4})?\b")

_DURATION_RE = re.compile(
    r"\b(\d+|a few|several|a couple of|a couple)\s*(day|week|month|year)s?\b",
    re.IGNORECASE,
)

_DURATION_UNIT_RE = re.compile(r"^(day|week|month|year)s?$", re.IGNORECASE)

_SEVERITY_SCORE_RE = re.compile(r"\b(10|[0-9])\s*(?:/|out of)\s*10\b")
_SEVERITY_WORD_RE = re.compile(
    r"\b(mild|moderate|severe|excruciating|unbearable)\b", re.IGNORECASE
)

_BODY_PARTS = (
    r"lower back|upper back|back|neck|knee|hip|shoulder|elbow|wrist|hand|"
    r"ankle|foot|leg|arm|joint|chest|stomach|abdominal|head"
)
_SYMPTOM_PHRASE_RE = re.compile(
    rf"\b((?:{_BODY_PARTS})\s+(?:pain|ache|stiffness|swelling|injury))\b",
    re.IGNORECASE,
)
_PAIN_IN_RE = re.compile(
    rf"\bpain in (?:my |the |her |his )?({_BODY_PARTS})\b", re.IGNORECASE
)
_SYMPTOM_WORD_RE = re.compile(
    r"\b(headaches?|migraines?|sciatica|numbness|tingling|dizziness|fatigue|"
    r"shortness of breath|snoring|insomnia|swelling|back pain|arthritis)\b",
    re.IGNORECASE,
)

_TREATMENTS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\b(physical therapy|physio(?:therapy)?|\bPT\b)", re.IGNORECASE), "physical therapy"),
    (re.compile(r"\bchiropract(?:or|ic)\b", re.IGNORECASE), "chiropractic care"),
    (re.compile(r"\b(cortisone|steroid|epidural)\s+(?:shot|injection)s?\b|\binjections?\b",
                re.IGNORECASE), "injections"),
    (re.compile(r"\b(ibuprofen|advil|motrin|naproxen|aleve|nsaids?|anti-inflammator(?:y|ies))\b",
                re.IGNORECASE), "anti-inflammatory medication"),
    (re.compile(r"\b(pain (?:meds|medication|pills)|muscle relaxants?|gabapentin)\b",
                re.IGNORECASE), "pain medication"),
    (re.compile(r"\b(home )?exercises?\b", re.IGNORECASE), "exercises"),
    (re.compile(r"\bmassage\b", re.IGNORECASE), "massage"),
    (re.compile(r"\bacupuncture\b", re.IGNORECASE), "acupuncture"),
    (re.compile(r"\bbrace\b", re.IGNORECASE), "bracing"),
)

_RED_FLAGS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\b(loss of|can't control|cannot control)\s+(?:my\s+)?(bladder|bowel)",
                re.IGNORECASE), "bladder or bowel dysfunction"),
    (re.compile(r"\b(numb|numbness|tingling)\b.*\b(leg|legs|foot|feet|arm|arms)\b",
                re.IGNORECASE), "radiating numbness"),
    (re.compile(r"\b(weakness|weak)\b.*\b(leg|legs|foot|feet|arm|arms)\b",
                re.IGNORECASE), "limb weakness"),
    (re.compile(r"\b(fever|night sweats)\b", re.IGNORECASE), "fever"),
    (re.compile(r"\b(unexplained )?weight loss\b", re.IGNORECASE), "unexplained weight loss"),
    (re.compile(r"\bhistory of cancer|\bcancer history|\bhad cancer\b", re.IGNORECASE),
     "history of cancer"),
    (re.compile(r"\b(fell|a fall|car accident|trauma)\b", re.IGNORECASE), "recent trauma"),
)

# Ordered: the first matching procedure wins.
_PROCEDURES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\bknee replacement\b", re.IGNORECASE), "knee replacement"),
    (re.compile(r"\bhip replacement\b", re.IGNORECASE), "hip replacement"),
    (re.compile(r"\b(spine|spinal|back) surgery\b", re.IGNORECASE), "spine surgery"),
    (re.compile(r"\bcataract surgery\b", re.IGNORECASE), "cataract surgery"),
    (re.compile(r"\bsleep study\b", re.IGNORECASE), "sleep study"),
    (re.compile(r"\b(mri|magnetic resonance)\b", re.IGNORECASE), "MRI"),
    (re.compile(r"\b(ct scan|cat scan|ct)\b", re.IGNORECASE), "CT scan"),
    (re.compile(r"\bx-?rays?\b", re.IGNORECASE), "X-ray"),
    (re.compile(r"\bultrasound\b", re.IGNORECASE), "ultrasound"),
    (re.compile(r"\bcolonoscopy\b", re.IGNORECASE), "colonoscopy"),
    (re.compile(r"\bmammogram\b", re.IGNORECASE), "mammogram"),
    (re.compile(r"\b(echocardiogram|echo)\b", re.IGNORECASE), "echocardiogram"),
    (re.compile(r"\bstress test\b", re.IGNORECASE), "stress test"),
    (re.compile(r"\b(cpap|bipap)\b", re.IGNORECASE), "CPAP"),
    (re.compile(r"\bwheelchair\b", re.IGNORECASE), "wheelchair"),
)

_PROVIDER_RE = re.compile(r"(?i:\bdr\.?|\bdoctor)\s+([A-Z][a-zA-Z'-]+(?:\s+[A-Z][a-zA-Z'-]+)?)")
_DENIAL_CODE_RE = re.compile(r"\b(CO|PR|OA|PI)\s?-?\s?(\d{1,3})\b")
_ISO_DATE_RE = re.compile(r"\b(\d{4}-\d{2}-\d{2})\b")
_US_DATE_RE = re.compile(r"\b(\d{1,2}/\d{1,2}/(?:\d{4}|\d{2}))\b")
_APPEAL_RE = re.compile(r"\b(denied|denial|appeal(?:ing)?|rejected|reject)\b", re.IGNORECASE)


def _extract_name(text: str, state: SessionState) -> bool:
    if state.user_name is not None:
        return False
    match = _NAME_PHRASE_RE.search(text)
    if match and match.group(1).lower() not in NAME_STOP_WORDS:
        return state.fill("user_name", match.group(1))
    return False


def _is_clinical_word(word: str) -> bool:
    patterns = (
        _SEVERITY_WORD_RE, _SYMPTOM_WORD_RE, _DURATION_UNIT_RE,
        *(p for p, _ in _TREATMENTS), *(p for p, _ in _PROCEDURES),
    )
    return any(p.search(word) for p in patterns)


def _extract_name_reply(text: str, state: SessionState) -> bool:
    """A bare word answering "what should I call you?"."""
    if state.user_name is not None:
        return False
    match = _SINGLE_WORD_RE.match(text)
    if match is None:
        return False
    word = match.group(1)
    if word.lower() in NAME_STOP_WORDS or _is_clinical_word(word):
        return False
    return state.fill("user_name", word.capitalize())


def _extract_region(text: str, state: SessionState) -> bool:
    for match in _ZIP_RE.finditer(text):
        digits = match.group(1)
        before = text[max(0, match.start() - 12):match.start()].lower()
        if get_cpt(digits) is not None or "cpt" in before or "code" in before:
            continue
        return state.fill("region_code", digits)
    return False


def _extract_duration(text: str, state: SessionState) -> bool:
    match = _DURATION_RE.search(text)
    if match is None:
        return False
    amount = match.group(1).lower()
    unit = match.group(2).lower()
    if amount == "a couple":
        amount = "a couple of"
    plural = "" if amount == "1" else "s"
    return state.fill("duration", f"{amount} {unit}{plural}")


def _extract_severity(text: str, state: SessionState) -> bool:
    match = _SEVERITY_SCORE_RE.search(text)
    if match:
        return state.fill("severity", f"{match.group(1)}/10")
    match = _SEVERITY_WORD_RE.search(text)
    if match:
        return state.fill("severity", match.group(1).lower())
    return False


def _extract_symptoms(text: str, state: SessionState) -> bool:
    found: list[str] = []
    for match in _SYMPTOM_PHRASE_RE.finditer(text):
        found.append(match.group(1).lower())
    for match in _PAIN_IN_RE.finditer(text):
        found.append(f"{match.group(1).lower()} pain")
    for match in _SYMPTOM_WORD_RE.finditer(text):
        word = match.group(1).lower()
        # "back pain" is already covered by a more specific phrase
        if not any(word in f for f in found):
            found.append(word)
    return state.extend("symptoms", found) > 0


def _extract_treatments(text: str, state: SessionState) -> bool:
    found = [label for pattern, label in _TREATMENTS if pattern.search(text)]
    return state.extend("prior_treatments", found) > 0


def _extract_red_flags(text: str, state: SessionState) -> bool:
    found = [label for pattern, label in _RED_FLAGS if pattern.search(text)]
    return state.extend("red_flags", found) > 0


def _extract_procedure(text: str, state: SessionState) -> bool:
    for pattern, label in _PROCEDURES:
        if pattern.search(text):
            return state.fill("procedure", label)
    return False


def _extract_provider_name(text: str, state: SessionState) -> bool:
    match = _PROVIDER_RE.search(text)
    if match is None:
        return False
    return state.fill("provider_name", match.group(1))


def _extract_denial_codes(text: str, state: SessionState) -> bool:
    codes = [f"{m.group(1)}-{int(m.group(2))}" for m in _DENIAL_CODE_RE.finditer(text)]
    return state.extend("denial_codes", codes) > 0


def _extract_denial_date(text: str, state: SessionState) -> bool:
    if not _APPEAL_RE.search(text):
        return False
    match = _ISO_DATE_RE.search(text)
    if match:
        return state.fill("denial_date", match.group(1))
    match = _US_DATE_RE.search(text)
    if match:
        for fmt in ("%m/%d/%Y", "%m/%d/%y"):
            try:
                parsed = datetime.strptime(match.group(1), fmt)
            except ValueError:
                continue
            return state.fill("denial_date", parsed.date().isoformat())
    return False


def _extract_appeal_intent(text: str, state: SessionState) -> bool:
    if _APPEAL_RE.search(text):
        return state.mark("is_appeal")
    return False


USER_TEXT_RULES: tuple[ExtractionRule, ...] = (
    ExtractionRule("name", _extract_name),
    ExtractionRule("region_code", _extract_region),
    ExtractionRule("duration", _extract_duration),
    ExtractionRule("severity", _extract_severity),
    ExtractionRule("symptoms", _extract_symptoms),
    ExtractionRule("prior_treatments", _extract_treatments),
    ExtractionRule("red_flags", _extract_red_flags),
    ExtractionRule("procedure", _extract_procedure),
    ExtractionRule("provider_name", _extract_provider_name),
    ExtractionRule("denial_codes", _extract_denial_codes),
    ExtractionRule("denial_date", _extract_denial_date),
    ExtractionRule("appeal_intent", _extract_appeal_intent),
)

_NAME_PROMPT_RE = re.compile(
    r"\b(your name|call you|who (?:am I|I'm) (?:speaking|talking) (?:with|to))\b", re.IGNORECASE
)

# Applied to a user message only when the assistant message before it
# matches the pattern.
PROMPTED_RULES: tuple[tuple[re.Pattern[str], ExtractionRule], ...] = (
    (_NAME_PROMPT_RE, ExtractionRule("name_reply", _extract_name_reply)),
)


# ── Assistant text rules ─────────────────────────────────────────────

_GREETING_NAME_RE = re.compile(r"(?i:nice|great|good|lovely) to meet you,?\s+([A-Z][a-z]+)")
_POLICY_ID_RE = re.compile(r"\b([A-Z]\d{5})\b")
_NCD_RE = re.compile(r"\bNCD\s*#?\s*(\d+(?:\.\d+)*)")
REQUIREMENTS_BLOCK_RE = re.compile(
    r"\[REQUIREMENTS\](.*?)\[/REQUIREMENTS\]", re.DOTALL | re.IGNORECASE
)
_CHECKLIST_MARKERS = ("checklist", "what the doctor needs", "what your doctor needs")
_MEETS_RE = re.compile(
    r"\b(meets? all (?:the |of the )?requirements|all requirements (?:are )?met|"
    r"you(?:'re| are) likely to qualify|you qualify)\b",
    re.IGNORECASE,
)
_FAILS_RE = re.compile(
    r"\b(does(?:n't| not) (?:yet )?meet|do(?:n't| not) (?:yet )?meet|"
    r"missing (?:one|some|a) requirements?|requirements? (?:is|are) (?:not|missing))\b",
    re.IGNORECASE,
)


def _extract_greeting_name(text: str, state: SessionState) -> bool:
    match = _GREETING_NAME_RE.search(text)
    if match is None or match.group(1).lower() in NAME_STOP_WORDS:
        return False
    return state.fill("user_name", match.group(1))


def _extract_policy_refs(text: str, state: SessionState) -> bool:
    refs = [m.group(1) for m in _POLICY_ID_RE.finditer(text)]
    refs += [f"NCD {m.group(1)}" for m in _NCD_RE.finditer(text)]
    return state.extend("policy_references", refs) > 0


def _extract_guidance(text: str, state: SessionState) -> bool:
    lower = text.lower()
    if any(marker in lower for marker in _CHECKLIST_MARKERS):
        return state.mark("guidance_generated")
    return False


def _bullet_lines(block: str) -> list[str]:
    lines = []
    for line in block.splitlines():
        cleaned = re.sub(r"^\s*(?:[-*\u2022]|\d+[.)])\s*", "", line).strip()
        if cleaned:
            lines.append(cleaned)
    return lines


def _extract_requirements(text: str, state: SessionState) -> bool:
    found: list[str] = []
    for match in REQUIREMENTS_BLOCK_RE.finditer(text):
        found.extend(_bullet_lines(match.group(1)))
    return state.extend("requirements", found) > 0


def _extract_qualification(text: str, state: SessionState) -> bool:
    if _MEETS_RE.search(text):
        changed = state.mark("verification_complete")
        return state.mark("meets_requirements") or changed
    if _FAILS_RE.search(text):
        return state.mark("verification_complete")
    return False


ASSISTANT_TEXT_RULES: tuple[ExtractionRule, ...] = (
    ExtractionRule("greeting_name", _extract_greeting_name),
    ExtractionRule("policy_references", _extract_policy_refs),
    ExtractionRule("guidance", _extract_guidance),
    ExtractionRule("requirements", _extract_requirements),
    ExtractionRule("qualification", _extract_qualification),
)


def apply_rules(
    text: str,
    state: SessionState,
    rules: Sequence[ExtractionRule],
) -> list[str]:
    """Run *rules* over *text*; return the names of rules that changed state."""
    if not text:
        return []
    return [rule.name for rule in rules if rule.apply(text, state)]


def update_from_user_messages(
    messages: Iterable[BaseMessage],
    state: SessionState,
    rules: Sequence[ExtractionRule] = USER_TEXT_RULES,
    prompted_rules: Sequence[tuple[re.Pattern[str], ExtractionRule]] = PROMPTED_RULES,
) -> list[str]:
    """Apply the user rules to every user message, oldest first.

    A prompted rule also runs on a user message when the assistant text
    directly before it matches the rule's pattern.
    """
    changed: list[str] = []
    prompt = ""
    for message in messages:
        if isinstance(message, AIMessage):
            prompt = message_text(message) or prompt
            continue
        if not isinstance(message, HumanMessage):
            continue
        text = message_text(message)
        active = [rule for pattern, rule in prompted_rules if prompt and pattern.search(prompt)]
        prompt = ""
        for name in apply_rules(text, state, [*rules, *active]):
            if name not in changed:
                changed.append(name)
    if changed:
        logger.debug("User text updated session fields: %s", changed)
    return changed


def update_from_assistant_text(
    text: str,
    state: SessionState,
    rules: Sequence[ExtractionRule] = ASSISTANT_TEXT_RULES,
) -> list[str]:
    changed = apply_rules(text, state, rules)
    if changed:
        logger.debug("Assistant text updated session fields: %s", changed)
    return changed


def strip_requirements_block(text: str) -> str:
    return REQUIREMENTS_BLOCK_RE.sub("", text).strip()


# ── Capability result folders ────────────────────────────────────────


def _codes(data: dict[str, Any], key: str = "codes") -> list[str]:
    return [c["code"] for c in data.get(key, []) if isinstance(c, dict) and c.get("code")]


def _policy_ids(data: dict[str, Any]) -> list[str]:
    ids = []
    for policy in data.get("policies", []):
        if isinstance(policy, dict) and policy.get("id"):
            ids.append(str(policy["id"]))
    return ids


def _fold_icd10(data: dict[str, Any], state: SessionState) -> None:
    state.extend("diagnosis_codes", _codes(data))


def _fold_cpt(data: dict[str, Any], state: SessionState) -> None:
    state.extend("procedure_codes", _codes(data))


def _fold_prior_auth(data: dict[str, Any], state: SessionState) -> None:
    required = data.get("commonly_requires_prior_auth")
    if isinstance(required, bool):
        state.fill("prior_auth_required", required)
    if data.get("known") and data.get("cpt_code"):
        state.extend("procedure_codes", [data["cpt_code"]])


def _fold_coverage(data: dict[str, Any], state: SessionState) -> None:
    state.extend("requirements", [r for r in data.get("requirements", []) if isinstance(r, str)])
    state.extend("policy_references", _policy_ids(data))
    if data.get("procedure"):
        state.fill("procedure", data["procedure"])


def _fold_policies(data: dict[str, Any], state: SessionState) -> None:
    state.extend("policy_references", _policy_ids(data))


def _fold_npi(data: dict[str, Any], state: SessionState) -> None:
    providers = data.get("providers", [])
    if len(providers) == 1:
        state.fill("provider", providers[0])


def _fold_denial_code(data: dict[str, Any], state: SessionState) -> None:
    if data.get("code"):
        state.extend("denial_codes", [data["code"]])


def _fold_appeal_letter(data: dict[str, Any], state: SessionState) -> None:
    if data.get("denial_date_provided"):
        state.fill("denial_date", data.get("denial_date"))


RESULT_FOLDERS: dict[str, Callable[[dict[str, Any], SessionState], None]] = {
    "search_icd10": _fold_icd10,
    "search_cpt": _fold_cpt,
    "check_prior_auth": _fold_prior_auth,
    "get_coverage_requirements": _fold_coverage,
    "search_ncd": _fold_policies,
    "search_lcd": _fold_policies,
    "search_npi": _fold_npi,
    "lookup_denial_code": _fold_denial_code,
    "generate_appeal_letter": _fold_appeal_letter,
}


def fold_capability_result(
    name: str,
    success: bool,
    data: Any,
    state: SessionState,
) -> bool:
    """Fold a successful capability result into *state*.

    Returns True when a folder ran.  Failed results and capabilities
    without a folder leave the state alone.
    """
    folder = RESULT_FOLDERS.get(name)
    if folder is None or not success or not isinstance(data, dict):
        return False
    folder(data, state)
    return True
