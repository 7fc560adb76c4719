#!/usr/bin/env python3
# CUI // SP-PROPIN
"""Compliance Audit Engine -- policy, detectors, scorers, orchestrator.

Usage:
    pytest tests/test_compliance.py -v --tb=short
"""

import sys
from datetime import date
from pathlib import Path

import pytest

BASE_DIR = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(BASE_DIR))

from tools.compliance.models import ValidationIssue  # noqa: E402


def _issue(code, severity, section):
    return ValidationIssue(code=code, severity=severity, section=section,
                           message=code.lower())


# =========================================================================
# POLICY CONFIGURATION TESTS
# =========================================================================
class TestPolicyConfig:
    """Policy tables load, resolve and validate."""

    def test_policy_loads(self, policy):
        assert policy.version == "2026.1"
        assert policy.last_updated == date(2026, 1, 15)
        assert "Standard NIH" in policy.institutes
        assert set(policy.phases) == {
            "Phase I", "Phase II", "Fast Track", "Direct to Phase II", "Phase IIB",
        }
        assert "specific_aims" in policy.sections

    def test_policy_is_cached(self, policy):
        from tools.compliance.policy_config import get_policy
        assert get_policy() is policy

    def test_tables_are_read_only(self, policy):
        with pytest.raises(TypeError):
            policy.institutes["NEW"] = policy.institutes["NCI"]

    def test_every_required_element_has_patterns(self, policy):
        for phase in policy.phases.values():
            for element in phase.required_elements:
                assert policy.element_patterns.get(element), element
        for rule in policy.sections.values():
            for element in rule.required_elements:
                assert policy.element_patterns.get(element), element

    def test_unmapped_section_element_is_config_error(self, raw_policy):
        from tools.compliance.policy_config import PolicyConfigError, build_policy
        raw_policy["sections"]["specific_aims"]["required_elements"].append("novelty_statement")
        with pytest.raises(PolicyConfigError, match="novelty_statement"):
            build_policy(raw_policy)

    def test_unmapped_phase_element_is_config_error(self, raw_policy):
        from tools.compliance.policy_config import PolicyConfigError, build_policy
        raw_policy["phases"]["Phase I"]["required_elements"].append("budget_narrative")
        with pytest.raises(PolicyConfigError, match="budget_narrative"):
            build_policy(raw_policy)

    def test_missing_default_institute_is_config_error(self, raw_policy):
        from tools.compliance.policy_config import PolicyConfigError, build_policy
        del raw_policy["institutes"]["Standard NIH"]
        with pytest.raises(PolicyConfigError):
            build_policy(raw_policy)

    def test_invalid_pattern_is_config_error(self, raw_policy):
        from tools.compliance.policy_config import PolicyConfigError, build_policy
        raw_policy["element_patterns"]["mycoplasma_testing"] = ["(unclosed"]
        with pytest.raises(PolicyConfigError):
            build_policy(raw_policy)

    def test_missing_policy_file(self, tmp_path):
        from tools.compliance.policy_config import PolicyConfigError, load_policy
        with pytest.raises(PolicyConfigError):
            load_policy(tmp_path / "missing.yaml")

    def test_unknown_institute_falls_back(self, policy):
        from tools.compliance.policy_config import get_institute_profile
        assert get_institute_profile("NOPE", policy).code == "Standard NIH"

    def test_budget_caps(self, policy):
        from tools.compliance.policy_config import get_budget_cap_for_phase
        assert get_budget_cap_for_phase("NCI", "Phase I", policy) == 400000
        assert get_budget_cap_for_phase("NCI", "Phase IIB", policy) == 4500000
        # No Phase IIB cap -> Phase II cap
        assert get_budget_cap_for_phase("NHLBI", "Phase IIB", policy) == 1750000
        # Unknown mechanism -> Phase I cap
        assert get_budget_cap_for_phase("NCI", "Phase IV", policy) == 400000
        assert get_budget_cap_for_phase("UNKNOWN", "Phase II", policy) == 1750000

    def test_policy_not_expired_within_window(self, policy):
        from tools.compliance.policy_config import get_policy_warning, is_policy_expired
        assert is_policy_expired(date(2026, 12, 31), policy) is False
        assert get_policy_warning(date(2026, 12, 31), policy) is None

    def test_policy_expired_after_window(self, policy):
        from tools.compliance.policy_config import get_policy_warning, is_policy_expired
        assert is_policy_expired(date(2027, 1, 1), policy) is True
        warning = get_policy_warning(date(2027, 1, 1), policy)
        assert "2026-01-15" in warning

    def test_policy_summary(self, policy):
        from tools.compliance.policy_config import policy_summary
        summary = policy_summary(policy, now=date(2027, 6, 1))
        assert summary["version"] == "2026.1"
        assert summary["expired"] is True
        assert "NIGMS" in summary["institutes"]


# =========================================================================
# DETECTOR TESTS
# =========================================================================
class TestDetectors:
    """Text signal detectors."""

    @pytest.mark.parametrize("text", ["", "   \n\t", None])
    def test_blank_text_yields_no_issues(self, text):
        from tools.compliance import detectors
        assert detectors.detect_promotional_language(text) == []
        assert detectors.detect_placeholders(text) == []
        assert detectors.detect_missing_statistics(text) == []
        assert detectors.check_go_no_go_criteria(text, "Phase I") == []
        assert detectors.validate_section("specific_aims", text) == []
        assert detectors.validate_phase_elements(text, "Phase II") == []

    def test_promotional_terms_counted_per_term(self):
        from tools.compliance.detectors import detect_promotional_language
        issues = detect_promotional_language("This breakthrough, revolutionary cure...")
        assert len(issues) == 3
        assert {i.element for i in issues} == {"breakthrough", "revolutionary", "cure"}
        assert all(i.code == "CLAIM_PROMOTIONAL" for i in issues)
        assert all(i.severity == "error" for i in issues)
        assert all(i.section == "content" for i in issues)

    def test_promotional_repeated_term_reported_once(self):
        from tools.compliance.detectors import detect_promotional_language
        issues = detect_promotional_language("A cure. Another CURE. Yet another cure.")
        assert [i.element for i in issues] == ["cure"]

    def test_promotional_word_boundaries(self):
        from tools.compliance.detectors import detect_promotional_language
        assert detect_promotional_language("The assay is uniquely secure.") == []
        issues = detect_promotional_language("A cutting-edge, best-in-class assay.")
        assert {i.element for i in issues} == {"cutting-edge", "best-in-class"}

    def test_placeholder_tbd(self):
        from tools.compliance.detectors import detect_placeholders
        issues = detect_placeholders("Results: [TBD]")
        assert len(issues) == 1
        assert issues[0].code == "PLACEHOLDER_DETECTED"
        assert issues[0].severity == "critical"

    def test_placeholder_every_match_reported(self):
        from tools.compliance.detectors import detect_placeholders
        text = "Budget TBD. Timeline TBD. See [insert figure 2] and [FILL IN]."
        issues = detect_placeholders(text)
        assert len(issues) == 4
        assert {i.element for i in issues} == {"TBD", "[insert figure 2]", "[FILL IN]"}

    def test_placeholder_xxx_is_case_sensitive(self):
        from tools.compliance.detectors import detect_placeholders
        assert detect_placeholders("xxx marks the spot") == []
        assert len(detect_placeholders("Enrollment: XXX participants")) == 1

    def test_stats_missing_power_and_n(self):
        from tools.compliance.detectors import detect_missing_statistics
        codes = {i.code for i in detect_missing_statistics("We will perform experiments.")}
        assert codes == {"STATS_MISSING_POWER", "STATS_MISSING_N"}

    def test_stats_missing_test(self):
        from tools.compliance.detectors import detect_missing_statistics
        issues = detect_missing_statistics("The analysis will compare groups.")
        by_code = {i.code: i for i in issues}
        assert set(by_code) == {"STATS_MISSING_TEST", "STATS_MISSING_N"}
        assert by_code["STATS_MISSING_TEST"].severity == "warning"
        assert by_code["STATS_MISSING_N"].section == "statistical"

    def test_stats_all_three_can_fire(self):
        from tools.compliance.detectors import detect_missing_statistics
        issues = detect_missing_statistics("This study will compare two cohorts.")
        assert {i.code for i in issues} == {
            "STATS_MISSING_POWER", "STATS_MISSING_TEST", "STATS_MISSING_N",
        }

    def test_stats_satisfied(self, clean_text):
        from tools.compliance.detectors import detect_missing_statistics
        assert detect_missing_statistics(clean_text) == []

    def test_go_no_go_missing_phase1(self):
        from tools.compliance.detectors import check_go_no_go_criteria
        issues = check_go_no_go_criteria("We will measure binding affinity.", "Phase I")
        assert len(issues) == 1
        assert issues[0].code == "MISSING_GO_NO_GO"
        assert issues[0].severity == "critical"
        assert issues[0].section == "structure"

    def test_go_no_go_not_required_phase2(self):
        from tools.compliance.detectors import check_go_no_go_criteria
        assert check_go_no_go_criteria("We will measure binding affinity.", "Phase II") == []

    def test_go_no_go_fast_track(self):
        from tools.compliance.detectors import check_go_no_go_criteria
        assert len(check_go_no_go_criteria("We will measure binding.", "Fast Track")) == 1

    @pytest.mark.parametrize("text", [
        "Go/No-Go: binding below 10 nM.",
        "Decision criteria are listed in Table 2.",
        "We proceed to Aim 2 if binding is below 10 nM.",
    ])
    def test_go_no_go_satisfied(self, text):
        from tools.compliance.detectors import check_go_no_go_criteria
        assert check_go_no_go_criteria(text, "Phase I") == []

    def test_section_unknown_type(self):
        from tools.compliance.detectors import validate_section
        assert validate_section("budget_justification", "anything at all") == []

    def test_section_missing_element(self):
        from tools.compliance.detectors import validate_section
        issues = validate_section(
            "human_subjects",
            "Participants face minimal risk; all data are de-identified.",
        )
        assert [i.code for i in issues] == ["MISSING_IRB_STATUS"]
        assert issues[0].severity == "error"
        assert issues[0].section == "regulatory"
        assert issues[0].element == "irb_status"

    def test_section_specific_aims_complete(self, go_no_go_text):
        from tools.compliance.detectors import validate_section
        assert validate_section("specific_aims", go_no_go_text, "Phase I") == []

    def test_section_mycoplasma_only_rigor(self):
        from tools.compliance.detectors import validate_section
        issues = validate_section("rigor_reproducibility", "All lines were tested.")
        codes = {i.code for i in issues}
        assert "MISSING_MYCOPLASMA_TESTING" in codes
        assert all(i.section == "statistical" for i in issues)

    def test_section_rigor_requires_named_test(self):
        from tools.compliance.detectors import validate_section
        text = (
            "Three biological replicates per condition; power analysis at "
            "alpha = 0.05. Cell line authentication by STR profiling and "
            "mycoplasma screening. Animals are randomized and scorers blinded."
        )
        issues = validate_section("rigor_reproducibility", text)
        assert [i.code for i in issues] == ["MISSING_STATISTICAL_TEST_SPECIFIED"]
        assert issues[0].section == "statistical"
        named = text + " Groups are compared by two-way ANOVA."
        assert validate_section("rigor_reproducibility", named) == []

    def test_phase_elements_unknown_mechanism(self):
        from tools.compliance.detectors import validate_phase_elements
        assert validate_phase_elements("Some text.", "Phase IV") == []

    def test_phase_elements_commercial_bucket(self, clean_text):
        from tools.compliance.detectors import validate_phase_elements
        issues = validate_phase_elements(clean_text, "Phase II")
        by_code = {i.code: i for i in issues}
        assert "PHASE_MISSING_COMMERCIALIZATION_PLAN" in by_code
        assert by_code["PHASE_MISSING_COMMERCIALIZATION_PLAN"].section == "commercial"
        assert all(i.severity == "warning" for i in issues)


# =========================================================================
# COMPLIANCE SCORER TESTS
# =========================================================================
class TestComplianceScore:
    """Five-pool compliance scoring."""

    def test_no_issues_full_marks(self):
        from tools.compliance.scoring import calculate_compliance_score
        score = calculate_compliance_score("", "Phase II", [])
        assert score.total == 100
        assert score.breakdown == {}

    def test_severity_deductions(self):
        from tools.compliance.scoring import calculate_compliance_score
        score = calculate_compliance_score("", "Phase II", [
            _issue("A", "critical", "structure"),
            _issue("B", "error", "statistical"),
            _issue("C", "warning", "regulatory"),
        ])
        assert score.structure == 20
        assert score.statistical == 15
        assert score.regulatory == 18
        assert score.total == 20 + 15 + 18 + 20 + 10

    def test_content_charges_tone(self):
        from tools.compliance.scoring import calculate_compliance_score
        score = calculate_compliance_score("", "Phase II", [_issue("P", "error", "content")])
        assert score.tone == 5
        assert score.structure == 30

    def test_pool_clamps_without_bleed(self):
        from tools.compliance.scoring import calculate_compliance_score
        issues = [_issue("MISSING_GO_NO_GO", "critical", "structure")] * 4
        score = calculate_compliance_score("", "Phase II", issues)
        assert score.structure == 0
        assert score.statistical == 20
        assert score.regulatory == 20
        assert score.commercial == 20
        assert score.tone == 10
        assert score.breakdown["MISSING_GO_NO_GO"] == 40

    def test_breakdown_sums_per_code(self):
        from tools.compliance.scoring import calculate_compliance_score
        score = calculate_compliance_score("", "Phase II", [
            _issue("CLAIM_PROMOTIONAL", "error", "content"),
            _issue("CLAIM_PROMOTIONAL", "error", "content"),
            _issue("STATS_MISSING_N", "warning", "statistical"),
        ])
        assert score.breakdown == {"CLAIM_PROMOTIONAL": 10, "STATS_MISSING_N": 2}

    def test_breakdowns_are_read_only(self, phase2_project):
        from tools.compliance.scoring import (
            calculate_agency_alignment_score,
            calculate_compliance_score,
        )
        compliance = calculate_compliance_score("", "Phase II", [_issue("X", "error", "content")])
        alignment = calculate_agency_alignment_score(dict(phase2_project, foa_number=None))
        with pytest.raises(TypeError):
            compliance.breakdown["X"] = 0
        with pytest.raises(TypeError):
            alignment.breakdown["foa_not_specified"] = 0
        assert compliance.to_dict()["breakdown"] == {"X": 5}
        assert alignment.to_dict()["breakdown"] == {"foa_not_specified": 10}

    def test_unknown_bucket_only_in_breakdown(self):
        from tools.compliance.scoring import calculate_compliance_score
        score = calculate_compliance_score("", "Phase II", [_issue("X", "error", "budget")])
        assert score.total == 100
        assert score.breakdown == {"X": 5}

    def test_phase1_commercial_reset(self):
        from tools.compliance.scoring import calculate_compliance_score
        issues = [_issue("MISSING_EXIT_STRATEGY", "critical", "commercial")] * 3
        assert calculate_compliance_score("", "Phase I", issues).commercial == 20
        assert calculate_compliance_score("", "Phase II", issues).commercial == 0

    @pytest.mark.parametrize("severities", [
        [],
        ["critical"] * 12,
        ["error", "warning", "critical"] * 5,
        ["warning"] * 30,
    ])
    def test_pools_sum_to_total(self, severities):
        from tools.compliance.scoring import POOL_CEILINGS, calculate_compliance_score
        buckets = ["structure", "statistical", "regulatory", "commercial", "content"]
        issues = [_issue(f"C{i}", sev, buckets[i % len(buckets)])
                  for i, sev in enumerate(severities)]
        for mechanism in ("Phase I", "Phase II"):
            s = calculate_compliance_score("", mechanism, issues)
            assert s.structure + s.statistical + s.regulatory + s.commercial + s.tone == s.total
            for pool, ceiling in POOL_CEILINGS.items():
                assert 0 <= getattr(s, pool) <= ceiling


# =========================================================================
# AGENCY ALIGNMENT TESTS
# =========================================================================
class TestAgencyAlignment:
    """Budget, allocation, FOA and clinical-trial scoring."""

    def _score(self, project, **changes):
        from tools.compliance.scoring import calculate_agency_alignment_score
        data = dict(project)
        data.update(changes)
        return calculate_agency_alignment_score(data)

    def test_fully_aligned(self, phase2_project):
        score = self._score(phase2_project)
        assert score.total == 100
        assert score.breakdown == {}

    def test_budget_cliff(self, phase1_project):
        # NCI Phase I cap = 400,000
        assert self._score(phase1_project, institute="NCI", direct_costs=400000).budget_compliance == 25
        near = self._score(phase1_project, institute="NCI", direct_costs=400000 * 0.96)
        assert near.budget_compliance == 20
        assert near.breakdown["budget_near_cap"] == 5
        over = self._score(phase1_project, institute="NCI", direct_costs=400001)
        assert over.budget_compliance == 0
        assert over.breakdown["budget_exceeded"] == 25

    def test_budget_at_cap_is_not_near_cap(self, phase2_project):
        # NCI Phase II cap = 2,000,000
        at_cap = self._score(phase2_project, direct_costs=2000000)
        assert at_cap.budget_compliance == 25
        assert "budget_near_cap" not in at_cap.breakdown
        assert self._score(phase2_project, direct_costs=1900000).budget_compliance == 25
        assert self._score(phase2_project, direct_costs=1999999).budget_compliance == 20

    def test_foa_budget_cap_override(self, phase2_project):
        score = self._score(phase2_project, foa_overrides={"budget_cap": 1000000})
        assert score.budget_compliance == 0

    def test_sbir_allocation_phase_minimums(self, phase1_project, phase2_project):
        assert self._score(phase1_project, small_business_percent=60).allocation_compliance == 0
        # Phase II minimum is 50%
        assert self._score(phase2_project, small_business_percent=55).allocation_compliance == 25
        failed = self._score(phase2_project, small_business_percent=45)
        assert failed.allocation_compliance == 0
        assert failed.breakdown["sbir_allocation_failed"] == 25

    def test_sbir_override_minimum(self, phase2_project):
        score = self._score(phase2_project, small_business_percent=55,
                            foa_overrides={"small_business_min": 60})
        assert score.allocation_compliance == 0
        zero_min = self._score(phase2_project, small_business_percent=10,
                               foa_overrides={"small_business_min": 0})
        assert zero_min.allocation_compliance == 25

    def test_sttr_individual_shortfalls(self, sttr_project):
        assert self._score(sttr_project).allocation_compliance == 25
        assert self._score(sttr_project, small_business_percent=30).allocation_compliance == 10
        assert self._score(sttr_project, research_institution_percent=20).allocation_compliance == 15

    def test_sttr_stacking_floors_at_zero(self, sttr_project):
        score = self._score(sttr_project, small_business_percent=30,
                            research_institution_percent=20)
        assert score.allocation_compliance == 0
        assert score.breakdown["sttr_sb_allocation_failed"] == 15
        assert score.breakdown["sttr_ri_allocation_failed"] == 10

    def test_foa_missing(self, phase2_project, phase1_project):
        missing = self._score(phase2_project, foa_number=None)
        assert missing.foa_compliance == 15
        assert missing.breakdown["foa_not_specified"] == 10
        assert self._score(phase1_project, foa_number=None).foa_compliance == 25

    def test_clinical_trial_policy(self, phase2_project):
        blocked = self._score(phase2_project, institute="NIGMS", clinical_trial_included=True)
        assert blocked.clinical_trial_compliance == 0
        allowed = self._score(phase2_project, institute="NIGMS", clinical_trial_included=True,
                              foa_overrides={"clinical_trial_allowed": True})
        assert allowed.clinical_trial_compliance == 25
        foa_blocked = self._score(phase2_project, clinical_trial_included=True,
                                  foa_overrides={"clinical_trial_allowed": False})
        assert foa_blocked.clinical_trial_compliance == 0

    def test_unknown_institute_uses_defaults(self, phase2_project):
        score = self._score(phase2_project, institute="ACME")
        # Standard NIH Phase II cap is 1,750,000
        assert score.budget_compliance == 25
        assert self._score(phase2_project, institute="ACME",
                           direct_costs=1800000).budget_compliance == 0

    def test_camel_case_payload(self):
        from tools.compliance.scoring import calculate_agency_alignment_score
        score = calculate_agency_alignment_score({
            "institute": "NCI", "grantType": "Phase II", "programType": "sttr",
            "directCosts": 1950000, "smallBusinessPercent": 40,
            "researchInstitutionPercent": 30, "clinicalTrialIncluded": False,
            "foaNumber": "RFA-CA-25-001",
        })
        assert score.budget_compliance == 20
        assert score.total == 95

    def test_pools_sum_to_total(self, sttr_project, phase2_project):
        variants = [
            dict(sttr_project, small_business_percent=10, research_institution_percent=5,
                 direct_costs=5000000, foa_number=None),
            dict(phase2_project, institute="NIGMS", clinical_trial_included=True),
            dict(phase2_project, direct_costs=0),
        ]
        from tools.compliance.scoring import calculate_agency_alignment_score
        for project in variants:
            s = calculate_agency_alignment_score(project)
            assert (s.budget_compliance + s.allocation_compliance
                    + s.foa_compliance + s.clinical_trial_compliance) == s.total
            for pool in (s.budget_compliance, s.allocation_compliance,
                         s.foa_compliance, s.clinical_trial_compliance):
                assert 0 <= pool <= 25


# =========================================================================
# PROJECT METADATA TESTS
# =========================================================================
class TestProjectMetadata:
    """Boundary validation of caller-supplied metadata."""

    @pytest.mark.parametrize("changes", [
        {"direct_costs": -1},
        {"small_business_percent": 120},
        {"research_institution_percent": -5},
        {"program_type": "SBX"},
        {"direct_costs": "lots"},
        {"foa_overrides": {"budget_cap": -100}},
        {"direct_costs": float("nan")},
        {"direct_costs": float("inf")},
        {"small_business_percent": float("nan")},
        {"research_institution_percent": float("nan")},
        {"foa_overrides": {"budget_cap": float("nan")}},
        {"foa_overrides": {"small_business_min": float("inf")}},
        {"institute": ["NCI"]},
        {"grant_type": {"phase": 2}},
        {"program_type": ["SBIR"]},
        {"foa_number": ["PA-25-123"]},
        {"clinical_trial_included": "false"},
        {"clinical_trial_included": 1},
        {"foa_overrides": {"clinical_trial_allowed": "yes"}},
        {"foa_overrides": ["budget_cap"]},
    ])
    def test_invalid_metadata_rejected(self, phase2_project, changes):
        from tools.compliance.models import InvalidProjectMetadata, ProjectMetadata
        data = dict(phase2_project)
        data.update(changes)
        with pytest.raises(InvalidProjectMetadata):
            ProjectMetadata.from_dict(data)

    def test_missing_required_field(self):
        from tools.compliance.models import InvalidProjectMetadata, ProjectMetadata
        with pytest.raises(InvalidProjectMetadata, match="direct_costs"):
            ProjectMetadata.from_dict({"institute": "NCI", "grant_type": "Phase I",
                                       "program_type": "SBIR"})

    def test_optional_fields_default(self):
        from tools.compliance.models import ProjectMetadata
        project = ProjectMetadata.from_dict({
            "institute": "NCI", "grant_type": "Phase I",
            "program_type": "sbir", "direct_costs": 100,
        })
        assert project.program_type == "SBIR"
        assert project.foa_number is None
        assert project.foa_overrides is None
        assert project.clinical_trial_included is False

    def test_null_clinical_trial_flag_defaults_false(self, phase2_project):
        from tools.compliance.models import ProjectMetadata
        project = ProjectMetadata.from_dict(dict(phase2_project, clinical_trial_included=None))
        assert project.clinical_trial_included is False

    def test_non_object_project_rejected(self):
        from tools.compliance.models import InvalidProjectMetadata, ProjectMetadata
        with pytest.raises(InvalidProjectMetadata):
            ProjectMetadata.from_dict(["NCI", "Phase II"])

    def test_nan_percent_does_not_score(self, phase2_project):
        from tools.compliance.models import InvalidProjectMetadata
        from tools.compliance.scoring import calculate_agency_alignment_score
        with pytest.raises(InvalidProjectMetadata, match="finite"):
            calculate_agency_alignment_score(
                dict(phase2_project, small_business_percent=float("nan")))


# =========================================================================
# AUDIT ORCHESTRATOR TESTS
# =========================================================================
class TestAuditOrchestrator:
    """run_compliance_audit verdict and contract."""

    def test_passing_audit(self, clean_text, phase2_project, fixed_now):
        from tools.compliance.audit_engine import AUDITOR_VERSION, run_compliance_audit
        result = run_compliance_audit(clean_text, phase2_project, now=fixed_now)
        assert result.compliance_score.total == 100
        assert result.agency_alignment_score.total == 100
        assert result.blocking_issues == ()
        assert result.export_allowed is True
        assert result.passed is True
        assert result.timestamp == fixed_now.isoformat()
        assert result.auditor_version == AUDITOR_VERSION
        assert result.policy_version == "2026.1"

    def test_phase1_with_sections_passes(self, go_no_go_text, phase1_project):
        from tools.compliance.audit_engine import run_compliance_audit
        result = run_compliance_audit(go_no_go_text, phase1_project,
                                      ["specific_aims", "not_a_section"])
        assert result.issues == ()
        assert result.export_allowed is True

    def test_fails_on_low_compliance_only(self, phase2_project):
        from tools.compliance.audit_engine import run_compliance_audit
        result = run_compliance_audit(
            "This revolutionary and groundbreaking study will compare cohorts.",
            phase2_project,
        )
        assert result.compliance_score.total == 81
        assert result.agency_alignment_score.total == 100
        assert result.blocking_issues == ()
        assert result.export_allowed is False

    def test_fails_on_alignment_only(self, clean_text, phase2_project):
        from tools.compliance.audit_engine import run_compliance_audit
        result = run_compliance_audit(clean_text, dict(phase2_project, foa_number=None))
        assert result.compliance_score.total == 100
        assert result.agency_alignment_score.total == 90
        assert result.blocking_issues == ()
        assert result.export_allowed is False

    def test_fails_on_blocking_issue_only(self, clean_text, phase2_project):
        from tools.compliance.audit_engine import run_compliance_audit
        result = run_compliance_audit(clean_text + " Budget justification: TBD.",
                                      phase2_project)
        assert result.compliance_score.total == 90
        assert result.agency_alignment_score.total == 100
        assert [i.code for i in result.blocking_issues] == ["PLACEHOLDER_DETECTED"]
        assert result.export_allowed is False
        assert result.passed is False

    def test_placeholder_not_suppressed(self, phase1_project):
        from tools.compliance.audit_engine import run_compliance_audit
        result = run_compliance_audit("Results: [TBD]", phase1_project, ["specific_aims"])
        placeholder = [i for i in result.issues if i.code == "PLACEHOLDER_DETECTED"]
        assert len(placeholder) == 1
        assert placeholder[0].severity == "critical"

    def test_phase1_missing_go_no_go_blocks(self, clean_text, phase1_project):
        from tools.compliance.audit_engine import run_compliance_audit
        result = run_compliance_audit(clean_text, phase1_project)
        assert [i.code for i in result.blocking_issues] == ["MISSING_GO_NO_GO"]
        assert result.export_allowed is False

    def test_phase_elements_opt_in(self, clean_text, phase2_project):
        from tools.compliance.audit_engine import run_compliance_audit
        default = run_compliance_audit(clean_text, phase2_project)
        assert not any(c.startswith("PHASE_MISSING_") for c in default.issue_codes())
        opted = run_compliance_audit(clean_text, phase2_project, include_phase_elements=True)
        assert "PHASE_MISSING_COMMERCIALIZATION_PLAN" in opted.issue_codes()

    def test_idempotent(self, phase1_project, fixed_now):
        from tools.compliance.audit_engine import run_compliance_audit
        text = "This unique study will compare cohorts. Data: [insert table]."
        first = run_compliance_audit(text, phase1_project, ["specific_aims"], now=fixed_now)
        second = run_compliance_audit(text, phase1_project, ["specific_aims"], now=fixed_now)
        assert first.to_dict() == second.to_dict()
        third = run_compliance_audit(text, phase1_project, ["specific_aims"])
        assert third.issue_codes() == first.issue_codes()
        assert third.compliance_score == first.compliance_score

    def test_invalid_metadata_raises(self, clean_text, phase2_project):
        from tools.compliance.audit_engine import run_compliance_audit
        from tools.compliance.models import InvalidProjectMetadata
        with pytest.raises(InvalidProjectMetadata):
            run_compliance_audit(clean_text, dict(phase2_project, direct_costs=-10))

    def test_empty_content(self, phase2_project):
        from tools.compliance.audit_engine import run_compliance_audit
        result = run_compliance_audit("", phase2_project, ["specific_aims"])
        assert result.issues == ()
        assert result.compliance_score.total == 100

    def test_result_serializes(self, phase1_project, fixed_now):
        import json
        from tools.compliance.audit_engine import run_compliance_audit
        result = run_compliance_audit("Results: [TBD]", phase1_project, now=fixed_now)
        data = json.loads(json.dumps(result.to_dict()))
        assert data["export_allowed"] is False
        assert data["blocking_issues"][0]["code"] == "PLACEHOLDER_DETECTED"
        assert data["compliance_score"]["total"] == result.compliance_score.total
