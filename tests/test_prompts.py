"""Tests for trigger detection and deterministic prompt composition."""

from __future__ import annotations

from langchain_core.messages import AIMessage, HumanMessage

from coverage_assistant.prompts import (
    FRAGMENT_SEPARATOR,
    FRAGMENTS,
    TOPIC_ORDER,
    FragmentId,
    Triggers,
    compose,
    detect_triggers,
    plan,
    render_session_summary,
)
from coverage_assistant.session import SessionState


def _full_intake() -> SessionState:
    state = SessionState()
    state.extend("symptoms", ["lower back pain"])
    state.fill("duration", "8 weeks")
    state.fill("procedure", "MRI")
    return state


# ── Triggers ─────────────────────────────────────────────────────────


class TestDetectTriggers:
    def test_empty_conversation(self):
        assert detect_triggers([], SessionState()) == Triggers()

    def test_from_text(self):
        messages = [HumanMessage(content="My doctor wants an MRI for my back pain. Is it covered?")]
        triggers = detect_triggers(messages, SessionState())
        assert triggers.has_symptoms
        assert triggers.has_procedure
        assert triggers.has_provider
        assert triggers.has_coverage_intent

    def test_from_session_fields(self):
        state = _full_intake()
        state.extend("diagnosis_codes", ["M54.5"])
        triggers = detect_triggers([HumanMessage(content="ok")], state)
        assert triggers.has_procedure
        assert triggers.has_diagnosis

    def test_appeal_intent_ignores_assistant_text(self):
        messages = [
            HumanMessage(content="What do I need for an MRI?"),
            AIMessage(content="Good documentation helps avoid a denial."),
        ]
        assert detect_triggers(messages, SessionState()).is_appeal_intent is False

    def test_appeal_intent_from_user_text(self):
        messages = [HumanMessage(content="My MRI was denied last week")]
        assert detect_triggers(messages, SessionState()).is_appeal_intent is True

    def test_clarification_only_from_last_user_message(self):
        messages = [
            HumanMessage(content="Which scan do I need?"),
            AIMessage(content="Let's find out."),
            HumanMessage(content="Thanks"),
        ]
        assert detect_triggers(messages, SessionState()).needs_clarification is False
        messages.append(HumanMessage(content="I'm not sure what kind"))
        assert detect_triggers(messages, SessionState()).needs_clarification is True

    def test_emergency_symptoms_from_user_text(self):
        messages = [HumanMessage(content="I have chest pain and I'm short of breath")]
        triggers = detect_triggers(messages, SessionState())
        assert triggers.has_emergency_symptoms is True
        assert triggers.has_red_flags is False

    def test_emergency_ignores_assistant_text(self):
        messages = [
            HumanMessage(content="My knee hurts"),
            AIMessage(content="Call 911 for sudden numbness on one side."),
        ]
        assert detect_triggers(messages, SessionState()).has_emergency_symptoms is False

    def test_red_flags_from_session(self):
        state = SessionState()
        state.extend("red_flags", ["history of cancer"])
        assert detect_triggers([HumanMessage(content="ok")], state).has_red_flags is True

    def test_topics_follow_fixed_order(self):
        everything = Triggers(*([True] * 10))
        assert everything.topics() == list(TOPIC_ORDER)


# ── Plan and compose ─────────────────────────────────────────────────


class TestPlan:
    def test_empty_state_adds_restraint(self):
        assert plan(Triggers(), SessionState()) == [
            FragmentId.BASE,
            FragmentId.RESTRAINT,
            FragmentId.SUGGESTION_FORMAT,
        ]

    def test_complete_intake_drops_restraint(self):
        result = plan(Triggers(has_procedure=True), _full_intake())
        assert FragmentId.RESTRAINT not in result
        assert result == [FragmentId.BASE, FragmentId.PROCEDURE_IDENTIFICATION, FragmentId.SUGGESTION_FORMAT]

    def test_clarification_selects_procedure_fragment(self):
        assert FragmentId.PROCEDURE_IDENTIFICATION in plan(Triggers(needs_clarification=True), SessionState())

    def test_red_flag_check_comes_first_among_topics(self):
        triggers = Triggers(has_symptoms=True, is_appeal_intent=True, has_emergency_symptoms=True)
        assert plan(triggers, _full_intake()) == [
            FragmentId.BASE,
            FragmentId.RED_FLAG_CHECK,
            FragmentId.SYMPTOM_INTAKE,
            FragmentId.APPEAL_ASSISTANCE,
            FragmentId.SUGGESTION_FORMAT,
        ]

    def test_red_flag_check_absent_without_flags(self):
        assert FragmentId.RED_FLAG_CHECK not in plan(Triggers(has_symptoms=True), _full_intake())

    def test_every_fragment_has_text(self):
        assert set(FRAGMENTS) == set(FragmentId)


class TestCompose:
    def test_is_deterministic(self):
        state = _full_intake()
        triggers = Triggers(has_symptoms=True, is_appeal_intent=True)
        assert compose(triggers, state) == compose(triggers, state.copy_state())

    def test_fragments_in_plan_order_with_summary_last(self):
        state = SessionState()
        triggers = Triggers(has_symptoms=True)
        sections = compose(triggers, state).split(FRAGMENT_SEPARATOR)
        expected = [FRAGMENTS[fid] for fid in plan(triggers, state)]
        assert sections[:-1] == expected
        assert sections[-1] == "## Current Session State\nNothing gathered yet."


class TestSessionSummary:
    def test_field_order(self):
        state = _full_intake()
        state.fill("user_name", "Maria")
        state.fill("region_code", "94110")
        summary = render_session_summary(state)
        assert summary.index("Maria") < summary.index("94110") < summary.index("lower back pain")
        assert summary.index("8 weeks") < summary.index("MRI")
        assert "Nothing gathered yet." not in summary

    def test_provider_search_limit_shown(self):
        state = SessionState()
        for _ in range(3):
            state.record_attempt("search_npi")
        summary = render_session_summary(state)
        assert "**Provider searches:** 3/3" in summary
        assert "Provider search limit reached" in summary

    def test_requirements_listed(self):
        state = SessionState()
        state.extend("requirements", ["Neurological exam"])
        assert "- Neurological exam" in render_session_summary(state)
