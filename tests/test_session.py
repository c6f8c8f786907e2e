"""Tests for SessionState mutators, serialization and redaction."""

from __future__ import annotations

import pytest

from coverage_assistant.session import LIST_FIELDS, PROVIDER_SEARCH_LIMIT, SCALAR_FIELDS, SessionState


class TestFill:
    def test_sets_unset_field(self):
        state = SessionState()
        assert state.fill("duration", "8 weeks") is True
        assert state.duration == "8 weeks"

    def test_never_overwrites(self):
        state = SessionState()
        state.fill("user_name", "Maria")
        assert state.fill("user_name", "Bob") is False
        assert state.user_name == "Maria"

    @pytest.mark.parametrize("value", [None, ""])
    def test_ignores_empty_values(self, value):
        state = SessionState()
        assert state.fill("procedure", value) is False
        assert state.procedure is None

    def test_false_is_a_value(self):
        state = SessionState()
        assert state.fill("prior_auth_required", False) is True
        assert state.fill("prior_auth_required", True) is False
        assert state.prior_auth_required is False

    def test_rejects_list_field(self):
        with pytest.raises(ValueError):
            SessionState().fill("symptoms", "pain")


class TestExtend:
    def test_appends_and_dedupes(self):
        state = SessionState()
        assert state.extend("diagnosis_codes", ["M54.5", "M54.16"]) == 2
        assert state.extend("diagnosis_codes", ["M54.5", "M51.26"]) == 1
        assert state.diagnosis_codes == ["M54.5", "M54.16", "M51.26"]

    def test_accepts_single_string(self):
        state = SessionState()
        state.extend("symptoms", "knee pain")
        assert state.symptoms == ["knee pain"]

    def test_skips_empty_values(self):
        state = SessionState()
        assert state.extend("symptoms", ["", None]) == 0

    def test_rejects_scalar_field(self):
        with pytest.raises(ValueError):
            SessionState().extend("duration", ["x"])


class TestMonotonicity:
    def test_sequence_of_updates_never_shrinks(self):
        state = SessionState()
        updates = [
            ("fill", "duration", "8 weeks"),
            ("extend", "symptoms", ["back pain"]),
            ("fill", "duration", "2 years"),
            ("extend", "symptoms", ["back pain", "sciatica"]),
            ("fill", "procedure", "MRI"),
            ("extend", "symptoms", []),
        ]
        previous = state.copy_state()
        for op, name, value in updates:
            getattr(state, op)(name, value)
            for field in SCALAR_FIELDS:
                if getattr(previous, field) is not None:
                    assert getattr(state, field) == getattr(previous, field)
            for field in LIST_FIELDS:
                assert len(getattr(state, field)) >= len(getattr(previous, field))
            previous = state.copy_state()

    def test_flags_stay_on(self):
        state = SessionState()
        assert state.mark("is_appeal") is True
        assert state.mark("is_appeal") is False
        assert state.is_appeal is True

    def test_unknown_flag(self):
        with pytest.raises(ValueError):
            SessionState().mark("whatever")

    def test_reset_clears_everything(self):
        state = SessionState()
        state.fill("duration", "8 weeks")
        state.extend("symptoms", ["pain"])
        state.mark("guidance_generated")
        state.record_attempt("search_npi")
        state.reset()
        assert state.is_empty()


class TestAttempts:
    def test_counts_per_capability(self):
        state = SessionState()
        state.record_attempt("search_npi")
        state.record_attempt("search_npi")
        state.record_attempt("search_icd10")
        assert state.attempts_for("search_npi") == 2
        assert state.attempts_for("search_cpt") == 0

    def test_provider_search_exhausted(self):
        state = SessionState()
        for _ in range(PROVIDER_SEARCH_LIMIT - 1):
            state.record_attempt("search_npi")
        assert state.provider_search_exhausted is False
        state.record_attempt("search_npi")
        assert state.provider_search_exhausted is True


class TestSerialization:
    def test_round_trip_preserves_state(self):
        state = SessionState()
        state.fill("region_code", "94110")
        state.fill("provider", {"npi": "1234567890", "name": {"full": "Jane Doe"}})
        state.extend("policy_references", ["L35936"])
        state.record_attempt("search_npi")
        restored = SessionState.from_dict(state.to_dict())
        assert restored == state

    @pytest.mark.parametrize("data", [None, {}])
    def test_from_empty_is_fresh(self, data):
        assert SessionState.from_dict(data).is_empty()

    def test_copy_is_independent(self):
        state = SessionState()
        copy = state.copy_state()
        copy.extend("symptoms", ["pain"])
        assert state.symptoms == []


class TestIntakeAndRedaction:
    def test_missing_intake(self):
        state = SessionState()
        assert state.missing_intake() == ["symptoms", "duration", "procedure"]
        state.extend("symptoms", ["pain"])
        state.fill("procedure", "MRI")
        assert state.missing_intake() == ["duration"]

    def test_snapshot_has_no_personal_values(self):
        state = SessionState()
        state.fill("user_name", "Maria")
        state.fill("region_code", "94110")
        state.extend("symptoms", ["lower back pain"])
        state.fill("provider", {"npi": "1234567890", "name": {"full": "Jane Doe"}})
        snapshot = state.redacted_snapshot()
        text = repr(snapshot)
        for secret in ("Maria", "94110", "lower back pain", "Jane Doe", "1234567890"):
            assert secret not in text
        assert snapshot["has_name"] is True
        assert snapshot["symptoms"] == 1
