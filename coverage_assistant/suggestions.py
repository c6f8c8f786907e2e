"""Quick-reply suggestion extraction.

The model is asked to end each reply with::

    [SUGGESTIONS]
    Yes, I do
    Not yet
    [/SUGGESTIONS]

``extract_suggestions`` pulls those lines out and returns the reply without
the block.  When the block is missing or broken, the cleaned reply is
matched against ``FALLBACK_RULES`` (first match wins) and a fixed pair of
suggestions is returned instead.  This never raises.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field

MAX_SUGGESTIONS = 3
MAX_SUGGESTION_LENGTH = 50

DEFAULT_SUGGESTIONS = ("Tell me more", "Start over")

_BLOCK_RE = re.compile(r"\[SUGGESTIONS\]\s*(.*?)\s*\[/SUGGESTIONS\]", re.DOTALL | re.IGNORECASE)
_OPEN_RE = re.compile(r"\[SUGGESTIONS\]", re.IGNORECASE)
_STRAY_CLOSE_RE = re.compile(r"\[/SUGGESTIONS\]", re.IGNORECASE)
_TRAILING_RULE_RE = re.compile(r"\n?\s*---\s*$")
_BLANK_LINES_RE = re.compile(r"\n{3,}")
_BULLET_RE = re.compile(r"^(?:[-*•]|\d+[.)])\s*")


@dataclass(frozen=True)
class SuggestionResult:
    clean_text: str
    suggestions: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class FallbackRule:
    name: str
    matches: Callable[[str], bool]
    suggestions: tuple[str, str]


def _contains(*phrases: str) -> Callable[[str], bool]:
    return lambda lower: any(p in lower for p in phrases)


FALLBACK_RULES: tuple[FallbackRule, ...] = (
    FallbackRule(
        "location",
        _contains("zip code", "zip?", "where do you live", "what state", "which state"),
        ("I'll share my ZIP", "Why do you need it?"),
    ),
    FallbackRule(
        "duration",
        _contains("how long", "when did", "since when"),
        ("A few weeks", "Several months"),
    ),
    FallbackRule(
        "body_part",
        _contains("which body", "what part", "what body", "where is the pain"),
        ("It's my back", "It's my knee"),
    ),
    FallbackRule(
        "treatment",
        _contains("tried any", "treatments", "physical therapy", "medication"),
        ("Yes, physical therapy", "No treatments yet"),
    ),
    FallbackRule(
        "denial",
        _contains("denied", "denial"),
        ("Help me appeal", "Explain the denial"),
    ),
    FallbackRule(
        "name",
        _contains("your name", "address you", "call you"),
        ("I'd rather not say", "Let's just start"),
    ),
    FallbackRule(
        "doctor",
        _contains("doctor's name", "your doctor", "physician's name"),
        ("I have the name", "I don't know yet"),
    ),
    FallbackRule(
        "checklist",
        _contains("checklist", "document"),
        ("Print this checklist", "What if it's denied?"),
    ),
    FallbackRule(
        "imaging",
        _contains("mri", "scan"),
        ("Check Medicare coverage", "What body part?"),
    ),
)


def _clean(text: str) -> str:
    text = _TRAILING_RULE_RE.sub("", text.rstrip())
    return _BLANK_LINES_RE.sub("\n\n", text).strip()


def _parse_lines(block: str) -> list[str]:
    suggestions: list[str] = []
    for line in block.splitlines():
        item = _BULLET_RE.sub("", line.strip()).strip()
        if item and len(item) < MAX_SUGGESTION_LENGTH and item not in suggestions:
            suggestions.append(item)
    return suggestions[:MAX_SUGGESTIONS]


def fallback_suggestions(text: str) -> list[str]:
    """The pair for the first matching fallback rule, or the default pair."""
    lower = text.lower()
    for rule in FALLBACK_RULES:
        if rule.matches(lower):
            return list(rule.suggestions)
    return list(DEFAULT_SUGGESTIONS)


def extract_suggestions(raw_text: str | None) -> SuggestionResult:
    text = raw_text or ""

    match = _BLOCK_RE.search(text)
    if match:
        suggestions = _parse_lines(match.group(1))
        clean = _clean(_STRAY_CLOSE_RE.sub("", text[: match.start()] + text[match.end():]))
        if suggestions:
            return SuggestionResult(clean, suggestions)
        return SuggestionResult(clean, fallback_suggestions(clean))

    # Unterminated block: drop everything from the opening marker on.
    opening = _OPEN_RE.search(text)
    if opening:
        text = text[: opening.start()]
    clean = _clean(_STRAY_CLOSE_RE.sub("", text))
    return SuggestionResult(clean, fallback_suggestions(clean))
