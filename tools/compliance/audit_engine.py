#!/usr/bin/env python3
# CUI // SP-PROPIN
# Controlled by: NIH Grant Compliance Portal
# CUI Category: PROPIN (Proprietary Business Information)
# Distribution: D
# POC: Grant Compliance System Administrator
"""Compliance Audit Engine -- run every detector, score, and render a verdict.

run_compliance_audit() concatenates the output of all text detectors
(promotional language, placeholders, statistics, Go/No-Go, and one
section-rule pass per requested section type), feeds the issue list to
the compliance scorer and the project metadata to the agency-alignment
scorer, and returns an immutable ComplianceAuditResult.

Export gate (all three must hold):
    compliance total >= 90
    agency alignment total >= 100
    no critical (blocking) issues

The engine performs no I/O.  The CLI below optionally records results to
the audit trail with --log.

Usage:
    python tools/compliance/audit_engine.py --audit --content-file aims.txt \\
        --project project.json --sections specific_aims,rigor_reproducibility [--log] --json
    python tools/compliance/audit_engine.py --audit --text "..." --institute NCI \\
        --mechanism "Phase II" --program-type SBIR --direct-costs 1500000 \\
        --sb-percent 70 --foa-number PA-25-123 --json
    python tools/compliance/audit_engine.py --agency --project project.json --json
    python tools/compliance/audit_engine.py --section --section-type human_subjects \\
        --content-file hs.txt --json
"""

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent.parent
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from tools.compliance.detectors import (  # noqa: E402
    check_go_no_go_criteria,
    detect_missing_statistics,
    detect_placeholders,
    detect_promotional_language,
    validate_phase_elements,
    validate_section,
)
from tools.compliance.models import ComplianceAuditResult, ProjectMetadata  # noqa: E402
from tools.compliance.policy_config import get_policy  # noqa: E402
from tools.compliance.scoring import (  # noqa: E402
    calculate_agency_alignment_score,
    calculate_compliance_score,
)

logger = logging.getLogger("grantaudit.compliance.audit_engine")

AUDITOR_VERSION = "1.0.0"

EXPORT_MIN_COMPLIANCE = 90
EXPORT_MIN_ALIGNMENT = 100


def _timestamp(now=None):
    """ISO-8601 UTC timestamp for *now* (default: current time)."""
    return (now or datetime.now(timezone.utc)).isoformat()


def collect_issues(content, grant_type, section_types=(), include_phase_elements=False,
                   policy=None):
    """Run every detector over *content* and return one flat issue list."""
    policy = policy or get_policy()
    issues = []
    issues.extend(detect_promotional_language(content, policy=policy))
    issues.extend(detect_placeholders(content, policy=policy))
    issues.extend(detect_missing_statistics(content, policy=policy))
    issues.extend(check_go_no_go_criteria(content, grant_type, policy=policy))
    for section_type in section_types or ():
        issues.extend(validate_section(section_type, content, grant_type, policy=policy))
    if include_phase_elements:
        issues.extend(validate_phase_elements(content, grant_type, policy=policy))
    return issues


def run_compliance_audit(content, project, section_types=(), now=None,
                         include_phase_elements=False, policy=None):
    """Audit one document for one project.

    Args:
        content: Plain text to audit.
        project: ProjectMetadata or dict accepted by ProjectMetadata.from_dict().
        section_types: Section rule keys to enforce (unknown keys are skipped).
        now: Optional datetime used for the result timestamp.
        include_phase_elements: Also run the phase-level element detector.
        policy: Optional PolicyConfig override.

    Returns:
        ComplianceAuditResult.  Identical inputs give identical scores and
        issues; only the timestamp varies when *now* is omitted.

    Raises:
        InvalidProjectMetadata: project metadata breaks the input contract.
    """
    policy = policy or get_policy()
    project = ProjectMetadata.from_dict(project)

    issues = collect_issues(
        content, project.grant_type, section_types,
        include_phase_elements=include_phase_elements, policy=policy,
    )
    compliance = calculate_compliance_score(content, project.grant_type, issues)
    alignment = calculate_agency_alignment_score(project, policy=policy)
    blocking = [i for i in issues if i.severity == "critical"]

    export_allowed = (
        compliance.total >= EXPORT_MIN_COMPLIANCE
        and alignment.total >= EXPORT_MIN_ALIGNMENT
        and not blocking
    )

    logger.info(
        "Audit %s: compliance=%d alignment=%d issues=%d blocking=%d",
        "PASSED" if export_allowed else "FAILED",
        compliance.total, alignment.total, len(issues), len(blocking),
    )

    return ComplianceAuditResult(
        passed=export_allowed,
        compliance_score=compliance,
        agency_alignment_score=alignment,
        issues=tuple(issues),
        blocking_issues=tuple(blocking),
        export_allowed=export_allowed,
        timestamp=_timestamp(now),
        auditor_version=AUDITOR_VERSION,
        policy_version=policy.version,
    )


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def _read_content(args):
    if args.text is not None:
        return args.text
    if args.content_file:
        return Path(args.content_file).read_text(encoding="utf-8", errors="replace")
    return ""


def _project_from_args(args):
    """Load project metadata from --project JSON or the inline flags."""
    if args.project:
        with open(args.project, "r", encoding="utf-8") as f:
            return ProjectMetadata.from_dict(json.load(f))
    overrides = {}
    if args.foa_budget_cap is not None:
        overrides["budget_cap"] = args.foa_budget_cap
    return ProjectMetadata.from_dict({
        "institute": args.institute,
        "grant_type": args.mechanism,
        "program_type": args.program_type,
        "direct_costs": args.direct_costs,
        "small_business_percent": args.sb_percent,
        "research_institution_percent": args.ri_percent,
        "clinical_trial_included": args.clinical_trial,
        "foa_number": args.foa_number,
        "foa_overrides": overrides or None,
    })


def main():
    """CLI entry point for the compliance audit engine."""
    parser = argparse.ArgumentParser(
        description="NIH SBIR/STTR compliance audit engine"
    )
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--audit", action="store_true",
                       help="Run the full audit (detectors + both scores + verdict)")
    group.add_argument("--agency", action="store_true",
                       help="Score project metadata against institute policy only")
    group.add_argument("--section", action="store_true",
                       help="Validate one section type's required elements")

    parser.add_argument("--text", help="Content to audit (inline)")
    parser.add_argument("--content-file", help="Path to a plain-text file to audit")
    parser.add_argument("--project", help="Path to project metadata JSON")
    parser.add_argument("--sections", help="Comma-separated section types (for --audit)")
    parser.add_argument("--section-type", help="Section type (for --section)")
    parser.add_argument("--phase-elements", action="store_true",
                        help="Also check phase-level required elements")
    parser.add_argument("--institute", default="Standard NIH")
    parser.add_argument("--mechanism", default="Phase I")
    parser.add_argument("--program-type", default="SBIR")
    parser.add_argument("--direct-costs", type=float, default=0.0)
    parser.add_argument("--sb-percent", type=float, default=67.0)
    parser.add_argument("--ri-percent", type=float, default=0.0)
    parser.add_argument("--clinical-trial", action="store_true")
    parser.add_argument("--foa-number")
    parser.add_argument("--foa-budget-cap", type=float)
    parser.add_argument("--project-id", default="", help="Project ID for --log")
    parser.add_argument("--log", action="store_true",
                        help="Record the audit result in the audit trail")
    parser.add_argument("--db-path", help="Override database path (for --log)")
    parser.add_argument("--json", action="store_true", help="JSON output")

    args = parser.parse_args()

    try:
        if args.audit:
            project = _project_from_args(args)
            sections = [s.strip() for s in (args.sections or "").split(",") if s.strip()]
            result = run_compliance_audit(
                _read_content(args), project, sections,
                include_phase_elements=args.phase_elements,
            )
            output = result.to_dict()
            output["status"] = "audited"
            if args.log:
                from tools.audit.audit_logger import record_audit
                stored = record_audit(result, project=project,
                                      project_id=args.project_id,
                                      section_types=sections,
                                      db_path=args.db_path)
                output["audit_id"] = stored["audit_id"]

        elif args.agency:
            score = calculate_agency_alignment_score(_project_from_args(args))
            output = score.to_dict()
            output["status"] = "scored"

        else:
            if not args.section_type:
                parser.error("--section requires --section-type")
            issues = validate_section(args.section_type, _read_content(args), args.mechanism)
            output = {
                "status": "validated",
                "section_type": args.section_type,
                "issue_count": len(issues),
                "issues": [i.to_dict() for i in issues],
            }

        if args.json:
            print(json.dumps(output, indent=2, default=str))
        else:
            _print_human(output)

    except Exception as exc:
        error_out = {"status": "error", "error": str(exc)}
        if args.json:
            print(json.dumps(error_out, indent=2))
        else:
            print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(1)


def _print_issues(issues):
    for issue in issues:
        sev = issue.get("severity", "?").upper()
        print(f"  [{sev}] {issue.get('code')}: {issue.get('message')}")
        if issue.get("suggestion"):
            print(f"      -> {issue['suggestion']}")


def _print_human(output):
    """Print human-readable output."""
    status = output.get("status", "unknown")
    print(f"Compliance Audit Engine -- {status.upper()}")
    print("-" * 50)

    if status == "audited":
        cs = output["compliance_score"]
        ag = output["agency_alignment_score"]
        verdict = "PASS" if output.get("export_allowed") else "FAIL"
        print(f"  Verdict:            {verdict}")
        print(f"  Compliance score:   {cs['total']}/100 "
              f"(structure {cs['structure']}/30, statistical {cs['statistical']}/20, "
              f"regulatory {cs['regulatory']}/20, commercial {cs['commercial']}/20, "
              f"tone {cs['tone']}/10)")
        print(f"  Agency alignment:   {ag['total']}/100")
        print(f"  Issues:             {len(output['issues'])} "
              f"({len(output['blocking_issues'])} blocking)")
        if output.get("audit_id"):
            print(f"  Audit ID:           {output['audit_id']}")
        if output["issues"]:
            print()
            _print_issues(output["issues"])

    elif status == "scored":
        print(f"  Budget:         {output['budget_compliance']}/25")
        print(f"  Allocation:     {output['allocation_compliance']}/25")
        print(f"  FOA:            {output['foa_compliance']}/25")
        print(f"  Clinical trial: {output['clinical_trial_compliance']}/25")
        print(f"  Total:          {output['total']}/100")
        for cause, pts in output.get("breakdown", {}).items():
            print(f"    -{pts} {cause}")

    elif status == "validated":
        print(f"  Section: {output['section_type']}")
        print(f"  Missing elements: {output['issue_count']}")
        _print_issues(output["issues"])

    else:
        for key, val in output.items():
            if key != "status":
                print(f"  {key}: {val}")


if __name__ == "__main__":
    main()
