#!/usr/bin/env python3
# CUI // SP-PROPIN
# Controlled by: NIH Grant Compliance Portal
# CUI Category: PROPIN (Proprietary Business Information)
# Distribution: D
# POC: Grant Compliance System Administrator
"""Compliance and agency-alignment scoring.

Compliance score (100 pts, from issues):
    structure 30 | statistical 20 | regulatory 20 | commercial 20 | tone 10
    critical -10, error -5, warning -2, charged to the issue's bucket
    ("content" charges tone).  Pools clamp at 0 independently.  Phase I
    commercial is reset to 20 after deductions.

Agency alignment score (100 pts, from project metadata only):
    budget 25 | allocation 25 | FOA 25 | clinical trial 25
"""

import logging

from tools.compliance.models import (
    AgencyAlignmentScore,
    ComplianceScore,
    ProjectMetadata,
)
from tools.compliance.policy_config import (
    get_budget_cap_for_phase,
    get_institute_profile,
    get_policy,
)

logger = logging.getLogger("grantaudit.compliance.scoring")

PHASE_I = "Phase I"

POOL_CEILINGS = {
    "structure": 30,
    "statistical": 20,
    "regulatory": 20,
    "commercial": 20,
    "tone": 10,
}

SEVERITY_DEDUCTION = {
    "critical": 10,
    "error": 5,
    "warning": 2,
}

# issue bucket -> score pool
BUCKET_POOL = {
    "structure": "structure",
    "statistical": "statistical",
    "regulatory": "regulatory",
    "commercial": "commercial",
    "content": "tone",
}

ALIGNMENT_POOL = 25
NEAR_CAP_RATIO = 0.95
NEAR_CAP_SCORE = 20
MISSING_FOA_SCORE = 15
STTR_SB_SHORTFALL = 15
STTR_RI_SHORTFALL = 10


def calculate_compliance_score(content, grant_type, issues):
    """Aggregate issues into the five-pool compliance score.

    Args:
        content: The audited text (unused; scoring reads *issues* only).
        grant_type: Mechanism name, e.g. "Phase I".
        issues: Iterable of ValidationIssue.

    Returns:
        ComplianceScore.  Every deduction is recorded in breakdown under
        its issue code, including deductions a pool could not absorb.
    """
    pools = dict(POOL_CEILINGS)
    breakdown = {}

    for issue in issues:
        deduction = SEVERITY_DEDUCTION.get(issue.severity, SEVERITY_DEDUCTION["warning"])
        pool = BUCKET_POOL.get(issue.section)
        if pool is not None:
            pools[pool] = max(0, pools[pool] - deduction)
        else:
            logger.debug("Issue %s has unscored bucket %r", issue.code, issue.section)
        breakdown[issue.code] = breakdown.get(issue.code, 0) + deduction

    # Phase I does not require a commercialization plan.
    if grant_type == PHASE_I:
        pools["commercial"] = POOL_CEILINGS["commercial"]

    return ComplianceScore(
        total=sum(pools.values()),
        structure=pools["structure"],
        statistical=pools["statistical"],
        regulatory=pools["regulatory"],
        commercial=pools["commercial"],
        tone=pools["tone"],
        breakdown=breakdown,
    )


def _override(overrides, name):
    if overrides is None:
        return None
    return getattr(overrides, name)


def calculate_agency_alignment_score(project, policy=None):
    """Score declared budget, allocation, FOA and clinical-trial metadata.

    Args:
        project: ProjectMetadata or a plain dict accepted by
            ProjectMetadata.from_dict().
        policy: Optional PolicyConfig (defaults to the loaded policy).

    Returns:
        AgencyAlignmentScore.
    """
    policy = policy or get_policy()
    project = ProjectMetadata.from_dict(project)
    institute = get_institute_profile(project.institute, policy)
    overrides = project.foa_overrides
    breakdown = {}

    cap_override = _override(overrides, "budget_cap")
    budget_cap = (cap_override if cap_override is not None
                  else get_budget_cap_for_phase(project.institute, project.grant_type, policy))

    # Budget: over cap is a cliff; strictly between 95% and the cap is a
    # warning zone. Exactly at the cap earns full marks.
    budget = ALIGNMENT_POOL
    if project.direct_costs > budget_cap:
        budget = 0
        breakdown["budget_exceeded"] = ALIGNMENT_POOL
    elif budget_cap * NEAR_CAP_RATIO < project.direct_costs < budget_cap:
        budget = NEAR_CAP_SCORE
        breakdown["budget_near_cap"] = ALIGNMENT_POOL - NEAR_CAP_SCORE

    # Allocation
    allocation = ALIGNMENT_POOL
    sb_override = _override(overrides, "small_business_min")
    if project.program_type == "SBIR":
        default_min = (institute.sbir_phase1_small_business_min
                       if project.grant_type == PHASE_I
                       else institute.sbir_phase2_small_business_min)
        sb_min = sb_override if sb_override is not None else default_min
        if project.small_business_percent < sb_min:
            allocation = 0
            breakdown["sbir_allocation_failed"] = ALIGNMENT_POOL
    else:
        ri_override = _override(overrides, "research_institution_min")
        sb_min = sb_override if sb_override is not None else institute.sttr_small_business_min
        ri_min = (ri_override if ri_override is not None
                  else institute.sttr_research_institution_min)
        if project.small_business_percent < sb_min:
            allocation = max(0, allocation - STTR_SB_SHORTFALL)
            breakdown["sttr_sb_allocation_failed"] = STTR_SB_SHORTFALL
        if project.research_institution_percent < ri_min:
            allocation = max(0, allocation - STTR_RI_SHORTFALL)
            breakdown["sttr_ri_allocation_failed"] = STTR_RI_SHORTFALL

    # FOA: Phase I may omit it; otherwise a soft penalty.
    foa = ALIGNMENT_POOL
    if not project.foa_number and project.grant_type != PHASE_I:
        foa = MISSING_FOA_SCORE
        breakdown["foa_not_specified"] = ALIGNMENT_POOL - MISSING_FOA_SCORE

    # Clinical trial
    clinical = ALIGNMENT_POOL
    ct_override = _override(overrides, "clinical_trial_allowed")
    ct_allowed = ct_override if ct_override is not None else institute.clinical_trial_allowed
    if project.clinical_trial_included and not ct_allowed:
        clinical = 0
        breakdown["clinical_trial_not_allowed"] = ALIGNMENT_POOL

    return AgencyAlignmentScore(
        total=budget + allocation + foa + clinical,
        budget_compliance=budget,
        allocation_compliance=allocation,
        foa_compliance=foa,
        clinical_trial_compliance=clinical,
        breakdown=breakdown,
    )
