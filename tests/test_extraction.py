"""Tests for text extraction rules and capability result folders."""

from __future__ import annotations

import pytest
from langchain_core.messages import AIMessage, HumanMessage

from coverage_assistant.extraction import (
    ASSISTANT_TEXT_RULES,
    USER_TEXT_RULES,
    ExtractionRule,
    apply_rules,
    fold_capability_result,
    message_text,
    strip_requirements_block,
    update_from_assistant_text,
    update_from_user_messages,
)
from coverage_assistant.session import SessionState

# ── Helpers ──────────────────────────────────────────────────────────


def _user(*texts: str) -> SessionState:
    state = SessionState()
    update_from_user_messages([HumanMessage(content=t) for t in texts], state)
    return state


# ── Message helpers ──────────────────────────────────────────────────


class TestMessageText:
    def test_string_content(self):
        assert message_text(HumanMessage(content="hello")) == "hello"

    def test_block_content_keeps_text_only(self):
        msg = AIMessage(content=[
            {"type": "text", "text": "First"},
            {"type": "tool_use", "id": "t1", "name": "search_cpt", "input": {}},
            {"type": "text", "text": "Second"},
        ])
        assert message_text(msg) == "First\nSecond"


# ── User rules ───────────────────────────────────────────────────────


class TestUserRules:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("My name is Maria", "Maria"),
            ("Hi, I'm Robert and my back hurts", "Robert"),
            ("call me Sam", "Sam"),
        ],
    )
    def test_name(self, text, expected):
        assert _user(text).user_name == expected

    @pytest.mark.parametrize("text", ["yes", "Hello!", "MRI", "I'm having knee pain"])
    def test_name_stop_words(self, text):
        assert _user(text).user_name is None

    def test_bare_word_without_name_question_is_not_a_name(self):
        assert _user("dorothy").user_name is None

    def test_zip_code(self):
        assert _user("I live in 94110").region_code == "94110"

    def test_cpt_code_is_not_a_zip(self):
        assert _user("The code is 72148").region_code is None
        assert _user("My doctor ordered 72148").region_code is None

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("About 8 weeks", "8 weeks"),
            ("for 1 week now", "1 week"),
            ("a few months", "a few months"),
            ("a couple years", "a couple of years"),
        ],
    )
    def test_duration(self, text, expected):
        assert _user(text).duration == expected

    def test_duration_set_once(self):
        state = _user("About 8 weeks", "it got worse 2 days ago")
        assert state.duration == "8 weeks"

    def test_severity(self):
        assert _user("it's about 7/10").severity == "7/10"
        assert _user("the pain is severe").severity == "severe"

    def test_symptoms_prefer_specific_phrase(self):
        assert _user("I have lower back pain").symptoms == ["lower back pain"]

    def test_pain_in_phrase(self):
        assert "knee pain" in _user("I have pain in my knee").symptoms

    def test_prior_treatments(self):
        state = _user("I tried physical therapy and ibuprofen")
        assert state.prior_treatments == ["physical therapy", "anti-inflammatory medication"]

    def test_red_flags(self):
        state = _user("I have numbness down my leg and a fever")
        assert "radiating numbness" in state.red_flags
        assert "fever" in state.red_flags

    def test_fall_asleep_is_not_trauma(self):
        assert _user("I can't fall asleep").red_flags == []

    def test_procedure_first_match_wins(self):
        assert _user("My doctor wants me to get an MRI").procedure == "MRI"
        assert _user("knee replacement after the x-ray").procedure == "knee replacement"

    def test_provider_name(self):
        assert _user("I see Dr. Sarah Chen").provider_name == "Sarah Chen"
        assert _user("my doctor wants an MRI").provider_name is None

    def test_denial_codes_and_date(self):
        state = _user("My claim was denied on 03/15/2025 with code CO 50")
        assert state.denial_codes == ["CO-50"]
        assert state.denial_date == "2025-03-15"
        assert state.is_appeal is True

    def test_date_without_appeal_words_ignored(self):
        assert _user("my appointment is 2025-03-15").denial_date is None


# ── Assistant rules ──────────────────────────────────────────────────


class TestAssistantRules:
    def test_policy_references(self):
        state = SessionState()
        update_from_assistant_text("Per L35936 and NCD 220.2, coverage applies.", state)
        assert state.policy_references == ["L35936", "NCD 220.2"]

    def test_greeting_name(self):
        state = SessionState()
        update_from_assistant_text("Nice to meet you, Maria! How long has it hurt?", state)
        assert state.user_name == "Maria"

    def test_checklist_marks_guidance(self):
        state = SessionState()
        update_from_assistant_text("Here is your checklist for the appointment.", state)
        assert state.guidance_generated is True

    def test_requirements_block(self):
        state = SessionState()
        text = "Summary.\n[REQUIREMENTS]\n- 6 weeks of conservative care\n- Neurological exam\n[/REQUIREMENTS]"
        update_from_assistant_text(text, state)
        assert state.requirements == ["6 weeks of conservative care", "Neurological exam"]
        assert strip_requirements_block(text) == "Summary."

    def test_qualification(self):
        state = SessionState()
        update_from_assistant_text("Good news: you meet all the requirements.", state)
        assert state.verification_complete and state.meets_requirements

    def test_not_meeting_requirements(self):
        state = SessionState()
        update_from_assistant_text("You don't yet meet the conservative care requirement.", state)
        assert state.verification_complete is True
        assert state.meets_requirements is False

    def test_denial_language_does_not_set_appeal(self):
        state = SessionState()
        update_from_assistant_text("This documentation helps avoid a denial or appeal later.", state)
        assert state.is_appeal is False


# ── Name replies ─────────────────────────────────────────────────────


class TestNameReplies:
    def test_bare_word_after_name_question(self):
        state = SessionState()
        update_from_user_messages(
            [AIMessage(content="Hi! What should I call you?"), HumanMessage(content="dorothy")], state,
        )
        assert state.user_name == "Dorothy"

    def test_answer_to_other_question_is_not_a_name(self):
        state = SessionState()
        update_from_user_messages([
            HumanMessage(content="I have back pain"),
            AIMessage(content="How bad is the pain: mild, moderate or severe?"),
            HumanMessage(content="Severe"),
        ], state)
        assert state.user_name is None
        assert state.severity == "severe"

    @pytest.mark.parametrize("word", ["Severe", "Sciatica", "Arthritis", "Months", "Colonoscopy"])
    def test_clinical_words_are_not_names(self, word):
        state = SessionState()
        update_from_user_messages(
            [AIMessage(content="And what's your name?"), HumanMessage(content=word)], state,
        )
        assert state.user_name is None

    def test_later_phrase_still_fills_name(self):
        state = SessionState()
        update_from_user_messages([
            AIMessage(content="How long has this been going on?"),
            HumanMessage(content="Months"),
            HumanMessage(content="My name is Ann"),
        ], state)
        assert state.user_name == "Ann"

    def test_only_the_directly_preceding_question_counts(self):
        state = SessionState()
        update_from_user_messages([
            AIMessage(content="What's your name?"),
            HumanMessage(content="I'd rather not say"),
            HumanMessage(content="dorothy"),
        ], state)
        assert state.user_name is None


# ── Idempotence and pluggability ─────────────────────────────────────


class TestIdempotence:
    def test_same_text_twice_changes_nothing(self):
        state = SessionState()
        messages = [HumanMessage(content="I'm Ana, 94110, lower back pain for 8 weeks, tried PT")]
        update_from_user_messages(messages, state)
        first = state.to_dict()
        assert update_from_user_messages(messages, state) == []
        assert state.to_dict() == first

    def test_same_assistant_text_twice(self):
        state = SessionState()
        text = "See L35936. Here is your checklist."
        update_from_assistant_text(text, state)
        assert update_from_assistant_text(text, state) == []
        assert state.policy_references == ["L35936"]

    def test_custom_rule_set(self):
        def shout(text: str, state: SessionState) -> bool:
            return state.fill("severity", "loud") if text.isupper() else False

        rules = (ExtractionRule("shout", shout),)
        state = SessionState()
        assert apply_rules("HELP", state, rules) == ["shout"]
        assert state.severity == "loud"

    def test_rule_sets_are_named(self):
        assert "appeal_intent" in {r.name for r in USER_TEXT_RULES}
        assert "appeal_intent" not in {r.name for r in ASSISTANT_TEXT_RULES}


# ── Result folders ───────────────────────────────────────────────────


class TestResultFolders:
    def test_code_search_folds_codes(self):
        state = SessionState()
        data = {"codes": [{"code": "M54.5"}, {"code": "M54.16"}], "count": 2}
        assert fold_capability_result("search_icd10", True, data, state) is True
        fold_capability_result("search_icd10", True, data, state)
        assert state.diagnosis_codes == ["M54.5", "M54.16"]

    def test_prior_auth_set_only_once(self):
        state = SessionState()
        fold_capability_result(
            "check_prior_auth", True,
            {"cpt_code": "72148", "known": True, "commonly_requires_prior_auth": False}, state,
        )
        fold_capability_result(
            "check_prior_auth", True,
            {"cpt_code": "27447", "known": True, "commonly_requires_prior_auth": True}, state,
        )
        assert state.prior_auth_required is False
        assert state.procedure_codes == ["72148", "27447"]

    def test_coverage_requirements(self):
        state = SessionState()
        data = {
            "procedure": "MRI",
            "requirements": ["Neurological deficit"],
            "policies": [{"id": "L35936"}, {"id": None}],
        }
        fold_capability_result("get_coverage_requirements", True, data, state)
        assert state.requirements == ["Neurological deficit"]
        assert state.policy_references == ["L35936"]
        assert state.procedure == "MRI"

    def test_single_provider_is_stored(self):
        state = SessionState()
        provider = {"npi": "1234567890", "name": {"full": "Jane Doe"}}
        fold_capability_result("search_npi", True, {"providers": [provider]}, state)
        assert state.provider == provider

    def test_ambiguous_provider_not_stored(self):
        state = SessionState()
        fold_capability_result("search_npi", True, {"providers": [{"npi": "1"}, {"npi": "2"}]}, state)
        assert state.provider is None

    def test_appeal_letter_default_date_not_stored(self):
        state = SessionState()
        fold_capability_result(
            "generate_appeal_letter", True,
            {"denial_date": "2026-01-01", "denial_date_provided": False}, state,
        )
        assert state.denial_date is None

    def test_failed_or_unknown_results_ignored(self):
        state = SessionState()
        assert fold_capability_result("search_icd10", False, {"codes": [{"code": "X"}]}, state) is False
        assert fold_capability_result("check_sad_list", True, {"drug": "x"}, state) is False
        assert fold_capability_result("search_icd10", True, None, state) is False
        assert state.is_empty()
