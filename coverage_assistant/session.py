"""Per-conversation session state.

``SessionState`` is the single record of facts gathered during one
conversation.  It only ever grows: scalar fields go from unset to set and
list fields get longer.  The only way back is :meth:`SessionState.reset`
(or starting a new conversation with a fresh instance).

The caller owns persistence.  After every turn the state is returned as a
plain dict (``to_dict``) and handed back on the next turn (``from_dict``).
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

PROVIDER_SEARCH_LIMIT = 3

LIST_FIELDS = (
    "symptoms",
    "prior_treatments",
    "diagnosis_codes",
    "procedure_codes",
    "policy_references",
    "denial_codes",
    "red_flags",
    "requirements",
)

SCALAR_FIELDS = (
    "user_name",
    "region_code",
    "duration",
    "severity",
    "procedure",
    "provider_name",
    "denial_date",
    "prior_auth_required",
    "provider",
)

FLAG_FIELDS = (
    "guidance_generated",
    "verification_complete",
    "meets_requirements",
    "is_appeal",
)


class SessionState(BaseModel):
    """Accumulated facts for one conversation."""

    # Identity / context
    user_name: str | None = None
    region_code: str | None = None

    # Accumulating lists (append-only, de-duplicated)
    symptoms: list[str] = Field(default_factory=list)
    prior_treatments: list[str] = Field(default_factory=list)
    diagnosis_codes: list[str] = Field(default_factory=list)
    procedure_codes: list[str] = Field(default_factory=list)
    policy_references: list[str] = Field(default_factory=list)
    denial_codes: list[str] = Field(default_factory=list)
    red_flags: list[str] = Field(default_factory=list)
    requirements: list[str] = Field(default_factory=list)

    # Singleton facts (set once)
    duration: str | None = None
    severity: str | None = None
    procedure: str | None = None
    provider_name: str | None = None
    denial_date: str | None = None
    prior_auth_required: bool | None = None
    provider: dict[str, Any] | None = None

    # Derived flags (never cleared once true)
    guidance_generated: bool = False
    verification_complete: bool = False
    meets_requirements: bool = False
    is_appeal: bool = False

    # Semantic attempt counters, keyed by capability name
    attempts: dict[str, int] = Field(default_factory=dict)

    # ── Mutators ─────────────────────────────────────────────────────

    def fill(self, field: str, value: Any) -> bool:
        """Set a scalar field only if it is currently unset.

        Returns True when the field changed.
        """
        if field not in SCALAR_FIELDS:
            raise ValueError(f"Not a scalar session field: {field}")
        if value is None or value == "":
            return False
        if getattr(self, field) is not None:
            return False
        setattr(self, field, value)
        return True

    def extend(self, field: str, values: Any) -> int:
        """Append new values to a list field, skipping exact duplicates.

        Returns the number of values added.
        """
        if field not in LIST_FIELDS:
            raise ValueError(f"Not a list session field: {field}")
        if isinstance(values, str):
            values = [values]
        current: list[str] = getattr(self, field)
        added = 0
        for value in values:
            if not value or value in current:
                continue
            current.append(value)
            added += 1
        return added

    def mark(self, flag: str) -> bool:
        """Turn a derived flag on.  Returns True when it was off."""
        if flag not in FLAG_FIELDS:
            raise ValueError(f"Not a session flag: {flag}")
        if getattr(self, flag):
            return False
        setattr(self, flag, True)
        return True

    def record_attempt(self, capability: str) -> int:
        self.attempts[capability] = self.attempts.get(capability, 0) + 1
        return self.attempts[capability]

    def attempts_for(self, capability: str) -> int:
        return self.attempts.get(capability, 0)

    @property
    def provider_search_exhausted(self) -> bool:
        return self.attempts_for("search_npi") >= PROVIDER_SEARCH_LIMIT

    def reset(self) -> None:
        """Clear everything (explicit new conversation)."""
        fresh = SessionState()
        for name in type(self).model_fields:
            setattr(self, name, getattr(fresh, name))

    # ── Serialisation ────────────────────────────────────────────────

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> SessionState:
        if not data:
            return cls()
        return cls.model_validate(data)

    def copy_state(self) -> SessionState:
        return self.model_copy(deep=True)

    # ── Introspection ────────────────────────────────────────────────

    def is_empty(self) -> bool:
        return self == SessionState()

    def missing_intake(self) -> list[str]:
        """Core intake fields that are still empty."""
        missing = []
        if not self.symptoms:
            missing.append("symptoms")
        if self.duration is None:
            missing.append("duration")
        if self.procedure is None:
            missing.append("procedure")
        return missing

    def redacted_snapshot(self) -> dict[str, Any]:
        """Counts and booleans only: safe to log.

        Never includes the user name, region code, provider record or
        free-text symptoms.
        """
        return {
            "has_name": self.user_name is not None,
            "has_region": self.region_code is not None,
            "symptoms": len(self.symptoms),
            "prior_treatments": len(self.prior_treatments),
            "diagnosis_codes": len(self.diagnosis_codes),
            "procedure_codes": len(self.procedure_codes),
            "policy_references": len(self.policy_references),
            "denial_codes": len(self.denial_codes),
            "red_flags": len(self.red_flags),
            "has_duration": self.duration is not None,
            "has_procedure": self.procedure is not None,
            "has_provider": self.provider is not None,
            "prior_auth_required": self.prior_auth_required,
            "guidance_generated": self.guidance_generated,
            "is_appeal": self.is_appeal,
            "missing_intake": self.missing_intake(),
        }
