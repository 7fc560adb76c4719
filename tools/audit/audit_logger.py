#!/usr/bin/env python3
# CUI // SP-PROPIN
# Controlled by: NIH Grant Compliance Portal
# CUI Category: PROPIN (Proprietary Business Information)
# Distribution: D
# POC: Grant Compliance System Administrator
"""Audit Logger -- store compliance audit results and trail events.

Persists ComplianceAuditResult records to compliance_audits (+ one row per
finding in audit_issues) and writes append-only audit_trail entries.
No UPDATE/DELETE operations.

Usage:
    python tools/audit/audit_logger.py --list [--project-id PROJ-1] [--limit 20] --json
    python tools/audit/audit_logger.py --get --audit-id AUD-abc123 --json
    python tools/audit/audit_logger.py --event --event-type "audit.export" \\
        --actor "portal" --action "Exported audit report" --json
"""

import argparse
import json
import logging
import os
import secrets
import sqlite3
import sys
from datetime import datetime, timezone
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent.parent
DB_PATH = Path(os.environ.get(
    "GRANTAUDIT_DB_PATH", str(BASE_DIR / "data" / "grantaudit.db")
))

if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from tools.compliance.models import ProjectMetadata  # noqa: E402

logger = logging.getLogger("grantaudit.audit.logger")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _now():
    """UTC ISO-8601 timestamp."""
    return datetime.now(timezone.utc).isoformat()


def _audit_id():
    """Generate an audit-scoped identifier."""
    return "AUD-" + secrets.token_hex(6)


def _get_db(db_path=None):
    """Return an SQLite connection with WAL + FK enabled."""
    path = str(db_path or DB_PATH)
    conn = sqlite3.connect(path)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.row_factory = sqlite3.Row
    return conn


def _audit(conn, event_type, actor, action, entity_type=None, entity_id=None,
           details=None):
    """Append-only audit trail entry."""
    conn.execute(
        "INSERT INTO audit_trail (event_type, actor, action, entity_type, "
        "entity_id, details, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
        (event_type, actor, action, entity_type, entity_id,
         json.dumps(details) if details else None, _now()),
    )


# ---------------------------------------------------------------------------
# Core functions
# ---------------------------------------------------------------------------

def log_event(event_type, actor, action, entity_type=None, entity_id=None,
              details=None, db_path=None):
    """Append a single event to the audit trail. Returns the entry."""
    conn = _get_db(db_path)
    try:
        _audit(conn, event_type, actor, action, entity_type, entity_id, details)
        conn.commit()
    finally:
        conn.close()
    return {
        "event_type": event_type,
        "actor": actor,
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "details": details,
    }


def record_audit(result, project, project_id="", section_types=(),
                 actor="audit_engine", db_path=None):
    """Store a ComplianceAuditResult and its findings.

    Args:
        result: ComplianceAuditResult returned by run_compliance_audit().
        project: ProjectMetadata (or dict) the audit ran against.
        project_id: Caller's project identifier, if any.
        section_types: Section types that were enforced.
        actor: Audit trail actor name.
        db_path: Optional database path override.

    Returns:
        dict with audit_id, export_allowed and both totals.
    """
    project = ProjectMetadata.from_dict(project)
    audit_id = _audit_id()
    payload = result.to_dict()
    payload["project"] = project.to_dict()

    conn = _get_db(db_path)
    try:
        conn.execute(
            "INSERT INTO compliance_audits "
            "(id, project_id, institute, grant_type, program_type, section_types, "
            "compliance_total, alignment_total, issue_count, blocking_count, "
            "export_allowed, auditor_version, policy_version, result_json, audited_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                audit_id, project_id or None, project.institute,
                project.grant_type, project.program_type,
                json.dumps(list(section_types)),
                result.compliance_score.total,
                result.agency_alignment_score.total,
                len(result.issues), len(result.blocking_issues),
                1 if result.export_allowed else 0,
                result.auditor_version, result.policy_version,
                json.dumps(payload), result.timestamp,
            ),
        )
        conn.executemany(
            "INSERT INTO audit_issues "
            "(audit_id, code, severity, section, message, element, suggestion) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            [
                (audit_id, i.code, i.severity, i.section, i.message,
                 i.element, i.suggestion)
                for i in result.issues
            ],
        )
        _audit(
            conn, "compliance.audit", actor,
            f"Compliance audit {'passed' if result.export_allowed else 'failed'} "
            f"({result.compliance_score.total}/{result.agency_alignment_score.total})",
            entity_type="compliance_audits", entity_id=audit_id,
            details={
                "project_id": project_id,
                "blocking_issues": [i.code for i in result.blocking_issues],
            },
        )
        conn.commit()
    finally:
        conn.close()

    logger.info("Recorded compliance audit %s for project %r", audit_id, project_id)
    return {
        "audit_id": audit_id,
        "export_allowed": result.export_allowed,
        "compliance_total": result.compliance_score.total,
        "alignment_total": result.agency_alignment_score.total,
    }


def get_audit(audit_id, db_path=None):
    """Return a stored audit (full result payload), or None."""
    conn = _get_db(db_path)
    try:
        row = conn.execute(
            "SELECT * FROM compliance_audits WHERE id = ?", (audit_id,)
        ).fetchone()
    finally:
        conn.close()
    if row is None:
        return None
    audit = dict(row)
    audit["result"] = json.loads(audit.pop("result_json"))
    audit["section_types"] = json.loads(audit["section_types"] or "[]")
    audit["export_allowed"] = bool(audit["export_allowed"])
    return audit


def list_audits(project_id=None, limit=50, db_path=None):
    """List stored audit summaries, newest first."""
    query = (
        "SELECT id, project_id, institute, grant_type, program_type, "
        "compliance_total, alignment_total, issue_count, blocking_count, "
        "export_allowed, policy_version, audited_at "
        "FROM compliance_audits"
    )
    params = []
    if project_id:
        query += " WHERE project_id = ?"
        params.append(project_id)
    query += " ORDER BY audited_at DESC, created_at DESC LIMIT ?"
    params.append(int(limit))

    conn = _get_db(db_path)
    try:
        rows = conn.execute(query, params).fetchall()
    finally:
        conn.close()

    audits = []
    for row in rows:
        item = dict(row)
        item["export_allowed"] = bool(item["export_allowed"])
        audits.append(item)
    return audits


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def main():
    parser = argparse.ArgumentParser(description="Compliance audit logger")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--list", action="store_true", help="List stored audits")
    group.add_argument("--get", action="store_true", help="Get one stored audit")
    group.add_argument("--event", action="store_true", help="Append a trail event")
    parser.add_argument("--audit-id")
    parser.add_argument("--project-id")
    parser.add_argument("--limit", type=int, default=50)
    parser.add_argument("--event-type")
    parser.add_argument("--actor", default="cli")
    parser.add_argument("--action")
    parser.add_argument("--db-path", help="Override database path")
    parser.add_argument("--json", action="store_true")
    args = parser.parse_args()

    try:
        if args.list:
            audits = list_audits(args.project_id, args.limit, db_path=args.db_path)
            output = {"status": "listed", "count": len(audits), "audits": audits}
        elif args.get:
            if not args.audit_id:
                parser.error("--get requires --audit-id")
            audit = get_audit(args.audit_id, db_path=args.db_path)
            if audit is None:
                raise LookupError(f"Audit not found: {args.audit_id}")
            output = {"status": "found", "audit": audit}
        else:
            if not args.event_type or not args.action:
                parser.error("--event requires --event-type and --action")
            output = log_event(args.event_type, args.actor, args.action,
                               db_path=args.db_path)
            output["status"] = "logged"

        if args.json:
            print(json.dumps(output, indent=2, default=str))
        elif args.list:
            for a in output["audits"]:
                verdict = "PASS" if a["export_allowed"] else "FAIL"
                print(f"  [{verdict}] {a['id']} {a['grant_type']} "
                      f"{a['compliance_total']}/{a['alignment_total']} {a['audited_at']}")
        else:
            print(json.dumps(output, indent=2, default=str))
    except Exception as exc:
        if args.json:
            print(json.dumps({"status": "error", "error": str(exc)}, indent=2))
        else:
            print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
