"""Tests for the individual capabilities (local and network-backed)."""

from __future__ import annotations

from datetime import date
from unittest.mock import MagicMock, patch

from coverage_assistant.errors import CircuitOpenError, NonRetryableTransportError
from coverage_assistant.tools.appeals import generate_appeal_letter, lookup_denial_code
from coverage_assistant.tools.coding import (
    check_preventive,
    check_prior_auth,
    get_related_diagnoses,
    get_related_procedures,
    search_cpt,
    search_icd10,
)
from coverage_assistant.tools.coverage import make_coverage_tools
from coverage_assistant.tools.drugs import check_sad_list
from coverage_assistant.tools.evidence import make_evidence_tools
from coverage_assistant.tools.providers import check_specialty_match, make_provider_tools

# ── Helpers ──────────────────────────────────────────────────────────


def _by_name(tools) -> dict:
    return {t.name: t for t in tools}


def _provider(npi: str = "1234567890") -> dict:
    return {
        "npi": npi,
        "name": {"first": "Sarah", "last": "Chen", "credential": "MD", "full": "Sarah Chen, MD"},
        "specialty": {"primary": "Orthopaedic Surgery", "code": "207X00000X"},
        "address": {"line1": "1 Main St", "city": "Boston", "state": "MA", "postal_code": "02110"},
        "phone": "617-555-0100",
    }


# ── Coding ───────────────────────────────────────────────────────────


class TestCodingTools:
    def test_search_icd10_for_back_pain(self):
        result = search_icd10.invoke({"query": "lower back pain"})
        assert result.success
        assert "M54.5" in [c["code"] for c in result.data["codes"]]

    def test_search_cpt_no_match(self):
        result = search_cpt.invoke({"query": "zzzz-nothing"})
        assert result.success is False

    def test_related_diagnoses(self):
        result = get_related_diagnoses.invoke({"cpt_code": "72148"})
        assert result.success
        assert result.data["diagnoses"][0]["code"] == "M54.5"

    def test_related_diagnoses_unknown_code(self):
        assert get_related_diagnoses.invoke({"cpt_code": "00000"}).success is False

    def test_related_procedures(self):
        result = get_related_procedures.invoke({"icd10_code": "m54.5"})
        assert "72148" in [p["code"] for p in result.data["procedures"]]

    def test_prior_auth(self):
        result = check_prior_auth.invoke({"cpt_code": " 27447 "})
        assert result.data["cpt_code"] == "27447"
        assert result.data["known"] is True
        assert result.data["commonly_requires_prior_auth"] is True

    def test_preventive(self):
        assert check_preventive.invoke({"cpt_code": "G0439"}).data["is_preventive"] is True
        assert check_preventive.invoke({"cpt_code": "72148"}).data["is_preventive"] is False


# ── Drugs ────────────────────────────────────────────────────────────


class TestCheckSadList:
    def test_brand_name_on_sad_list(self):
        result = check_sad_list.invoke({"drug_name": "Humira"})
        assert result.data["drug"] == "adalimumab"
        assert result.data["covered_under"] == "Part D"
        assert result.data["on_sad_list"] is True

    def test_physician_administered(self):
        result = check_sad_list.invoke({"drug_name": "Keytruda"})
        assert result.data["covered_under"] == "Part B"
        assert result.data["hcpcs_code"] == "J9271"

    def test_unknown_drug_uses_route(self):
        result = check_sad_list.invoke({"drug_name": "madeupumab", "route": "IV infusion"})
        assert result.data["covered_under"] == "Part B"
        assert result.data["source"] == "route"

    def test_unknown_drug_without_route(self):
        assert check_sad_list.invoke({"drug_name": "madeupumab"}).data["covered_under"] == "Unknown"

    def test_blank_name(self):
        assert check_sad_list.invoke({"drug_name": "  "}).success is False


# ── Appeals ──────────────────────────────────────────────────────────


class TestAppealTools:
    def test_lookup_by_code(self):
        result = lookup_denial_code.invoke({"code": "co 50"})
        assert result.data["code"] == "CO-50"
        assert result.data["category"] == "Medical Necessity"
        assert result.data["strategies"][0]["reason"] == "Not medically necessary"

    def test_lookup_by_description(self):
        result = lookup_denial_code.invoke({"description": "Insufficient documentation"})
        assert "code" not in result.data
        assert result.data["category"] == "Documentation"

    def test_lookup_nothing(self):
        assert lookup_denial_code.invoke({}).success is False

    @patch("coverage_assistant.tools.appeals._today", return_value=date(2025, 4, 1))
    def test_letter_with_denial_date(self, _today):
        result = generate_appeal_letter.invoke({
            "denial_reason": "Not medically necessary",
            "procedure_description": "MRI of the lumbar spine",
            "diagnosis_description": "lower back pain",
            "prior_treatments": ["Physical therapy"],
            "denial_date": "2025-03-15",
        })
        data = result.data
        assert data["appeal_deadline"] == "2025-07-13"
        assert data["days_remaining"] == 103
        assert data["deadline_passed"] is False
        assert data["denial_date_provided"] is True
        assert "March 15, 2025" in data["letter"]
        assert "• Physical therapy" in data["letter"]
        assert "[Provider Name]" in data["letter"]

    @patch("coverage_assistant.tools.appeals._today", return_value=date(2025, 4, 1))
    def test_letter_defaults_to_today(self, _today):
        result = generate_appeal_letter.invoke({
            "denial_reason": "x", "procedure_description": "knee replacement",
            "diagnosis_description": "knee arthritis", "provider_name": "Dr. Chen",
        })
        assert result.data["denial_date"] == "2025-04-01"
        assert result.data["denial_date_provided"] is False
        assert "Dr. Chen" in result.data["letter"]

    def test_letter_bad_date(self):
        result = generate_appeal_letter.invoke({
            "denial_reason": "x", "procedure_description": "MRI",
            "diagnosis_description": "pain", "denial_date": "15/03/2025",
        })
        assert result.success is False


# ── Providers ────────────────────────────────────────────────────────


class TestProviderTools:
    def test_specialty_match(self):
        result = check_specialty_match.invoke(
            {"procedure": "MRI lumbar spine", "provider_specialty": "Orthopedic Surgery"}
        )
        assert result.data["is_match"] is True
        assert "warning" not in result.data

    def test_specialty_mismatch_warns(self):
        result = check_specialty_match.invoke(
            {"procedure": "knee replacement", "provider_specialty": "Dermatology"}
        )
        assert result.data["is_match"] is False
        assert "Medicare may question" in result.data["warning"]
        assert result.data["recommendation"].startswith("Consider a referral to")

    def test_search_npi_needs_criteria(self):
        client = MagicMock()
        search_npi = _by_name(make_provider_tools(client))["search_npi"]
        assert search_npi.invoke({"state": "MA"}).success is False
        client.search_providers.assert_not_called()

    def test_search_npi_returns_providers(self):
        client = MagicMock()
        client.search_providers.return_value = [_provider()]
        search_npi = _by_name(make_provider_tools(client))["search_npi"]
        result = search_npi.invoke({"name": "Sarah Chen", "state": "ma"})
        assert result.data["count"] == 1
        client.search_providers.assert_called_once_with(
            name="Sarah Chen", state="ma", city=None, specialty=None, npi=None, limit=10,
        )

    def test_search_npi_empty(self):
        client = MagicMock()
        client.search_providers.return_value = []
        search_npi = _by_name(make_provider_tools(client))["search_npi"]
        result = search_npi.invoke({"name": "Nobody"})
        assert result.error == "No providers found matching Nobody"

    def test_search_npi_circuit_open(self):
        client = MagicMock()
        client.search_providers.side_effect = CircuitOpenError("npi", 30.0)
        search_npi = _by_name(make_provider_tools(client))["search_npi"]
        result = search_npi.invoke({"name": "Sarah Chen"})
        assert result.success is False
        assert "temporarily unavailable" in result.error


# ── Coverage policies ────────────────────────────────────────────────


class TestCoverageTools:
    def test_search_ncd_normalizes(self):
        client = MagicMock()
        client.search_ncds.return_value = [{"ncd_id": "220.2", "title": "MRI", "indications": ["a"]}]
        result = _by_name(make_coverage_tools(client))["search_ncd"].invoke({"query": "MRI", "limit": 50})
        policy = result.data["policies"][0]
        assert policy["id"] == "220.2"
        assert policy["type"] == "NCD"
        assert policy["indications"] == ["a"]
        assert client.search_ncds.call_args.kwargs["limit"] == 10

    def test_search_lcd_adds_contractor(self):
        client = MagicMock()
        client.search_lcds.return_value = [{"lcd_id": "L35936", "contractor": "Noridian"}]
        result = _by_name(make_coverage_tools(client))["search_lcd"].invoke({"query": "MRI", "state": "CA"})
        assert result.data["policies"][0]["contractor"] == "Noridian"
        assert result.data["policies"][0]["covered_codes"] == []

    def test_search_lcd_none_found(self):
        client = MagicMock()
        client.search_lcds.return_value = []
        result = _by_name(make_coverage_tools(client))["search_lcd"].invoke({"query": "MRI"})
        assert result.success is False

    def test_requirements_from_policies(self):
        client = MagicMock()
        client.search_ncds.return_value = []
        client.search_lcds.return_value = [{
            "lcd_id": "L35936",
            "title": "Lumbar MRI",
            "indications": ["Radiculopathy", "Radiculopathy"],
            "documentation_requirements": ["Neurological exam"],
            "limitations": ["Not for acute pain under 6 weeks"],
        }]
        tool = _by_name(make_coverage_tools(client))["get_coverage_requirements"]
        result = tool.invoke({"procedure": "MRI", "diagnosis": "sciatica", "cpt_code": "72148"})
        data = result.data
        assert data["source"] == "policy"
        assert data["requirements"] == ["Radiculopathy"]
        assert data["documentation"] == ["Neurological exam"]
        assert data["policies"] == [{"id": "L35936", "type": "LCD", "title": "Lumbar MRI", "url": None}]
        assert data["prior_auth_commonly_required"] is True
        assert client.search_ncds.call_args.args[0] == "MRI sciatica"

    def test_requirements_fall_back_when_unreachable(self):
        client = MagicMock()
        client.search_ncds.side_effect = NonRetryableTransportError("404", dependency="cms_mcp", status_code=404)
        tool = _by_name(make_coverage_tools(client))["get_coverage_requirements"]
        result = tool.invoke({"procedure": "MRI", "cpt_code": "72148"})
        assert result.success
        assert result.data["source"] == "general"
        assert "Symptom duration typically 6+ weeks" in result.data["requirements"]
        assert result.data["policies"] == []


# ── Evidence ─────────────────────────────────────────────────────────


class TestEvidenceTools:
    def test_search_pubmed(self):
        client = MagicMock()
        client.search_pubmed.return_value = [{"pmid": "1", "title": "T"}]
        search = _by_name(make_evidence_tools(client))["search_pubmed"]
        result = search.invoke({"query": "lumbar MRI", "limit": 99})
        assert result.data["count"] == 1
        assert client.search_pubmed.call_args.kwargs["limit"] == 10

    def test_search_pubmed_empty(self):
        client = MagicMock()
        client.search_pubmed.return_value = []
        search = _by_name(make_evidence_tools(client))["search_pubmed"]
        assert search.invoke({"query": "nothing"}).success is False
