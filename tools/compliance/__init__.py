# CUI // SP-PROPIN
"""NIH SBIR/STTR Compliance Audit Engine.

Modules:
    policy_config  -- immutable policy tables loaded from args/nih_policy.yaml
    models         -- ValidationIssue, scores, audit result, project metadata
    detectors      -- pure text signal detectors (regex + keyword heuristics)
    scoring        -- compliance (100 pt) and agency-alignment (100 pt) scorers
    audit_engine   -- run_compliance_audit() orchestrator and CLI
"""

from tools.compliance.audit_engine import (
    AUDITOR_VERSION,
    collect_issues,
    run_compliance_audit,
)
from tools.compliance.detectors import (
    check_go_no_go_criteria,
    detect_missing_statistics,
    detect_placeholders,
    detect_promotional_language,
    validate_phase_elements,
    validate_section,
)
from tools.compliance.models import (
    AgencyAlignmentScore,
    ComplianceAuditResult,
    ComplianceScore,
    FoaOverrides,
    InvalidProjectMetadata,
    ProjectMetadata,
    ValidationIssue,
)
from tools.compliance.policy_config import (
    PolicyConfigError,
    get_budget_cap_for_phase,
    get_institute_profile,
    get_phase_profile,
    get_policy,
    get_policy_warning,
    is_policy_expired,
    reload_policy,
)
from tools.compliance.scoring import (
    calculate_agency_alignment_score,
    calculate_compliance_score,
)

__all__ = [
    "AUDITOR_VERSION",
    "AgencyAlignmentScore",
    "ComplianceAuditResult",
    "ComplianceScore",
    "FoaOverrides",
    "InvalidProjectMetadata",
    "PolicyConfigError",
    "ProjectMetadata",
    "ValidationIssue",
    "calculate_agency_alignment_score",
    "calculate_compliance_score",
    "check_go_no_go_criteria",
    "collect_issues",
    "detect_missing_statistics",
    "detect_placeholders",
    "detect_promotional_language",
    "get_budget_cap_for_phase",
    "get_institute_profile",
    "get_phase_profile",
    "get_policy",
    "get_policy_warning",
    "is_policy_expired",
    "reload_policy",
    "run_compliance_audit",
    "validate_phase_elements",
    "validate_section",
]
