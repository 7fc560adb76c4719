#!/usr/bin/env python3
# CUI // SP-PROPIN
# Controlled by: NIH Grant Compliance Portal
# CUI Category: PROPIN (Proprietary Business Information)
# Distribution: D
# POC: Grant Compliance System Administrator
"""Initialize the grant compliance database.

Creates tables for:
  - Compliance audits (stored ComplianceAuditResult records)
  - Audit issues (one row per finding, for reporting queries)
  - System (append-only audit trail)

The audit engine itself never touches this database; the CLI --log flag
and the HTTP API persist results here on the caller's behalf.

Usage:
    python tools/db/init_db.py [--json] [--db-path PATH]
"""

import json
import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent.parent
DB_PATH = Path(os.environ.get(
    "GRANTAUDIT_DB_PATH", str(BASE_DIR / "data" / "grantaudit.db")
))


SCHEMA_SQL = """
-- ============================================================
-- COMPLIANCE AUDITS
-- ============================================================

-- One row per run_compliance_audit() result the caller chose to keep
CREATE TABLE IF NOT EXISTS compliance_audits (
    id TEXT PRIMARY KEY,
    project_id TEXT,
    institute TEXT NOT NULL,
    grant_type TEXT NOT NULL,
    program_type TEXT NOT NULL
        CHECK(program_type IN ('SBIR', 'STTR')),
    section_types TEXT,
    compliance_total INTEGER NOT NULL
        CHECK(compliance_total BETWEEN 0 AND 100),
    alignment_total INTEGER NOT NULL
        CHECK(alignment_total BETWEEN 0 AND 100),
    issue_count INTEGER NOT NULL DEFAULT 0,
    blocking_count INTEGER NOT NULL DEFAULT 0,
    export_allowed INTEGER NOT NULL DEFAULT 0
        CHECK(export_allowed IN (0, 1)),
    auditor_version TEXT NOT NULL,
    policy_version TEXT,
    result_json TEXT NOT NULL,
    audited_at TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_audits_project ON compliance_audits(project_id);
CREATE INDEX IF NOT EXISTS idx_audits_export ON compliance_audits(export_allowed);
CREATE INDEX IF NOT EXISTS idx_audits_time ON compliance_audits(audited_at);

-- Flattened findings for reporting
CREATE TABLE IF NOT EXISTS audit_issues (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    audit_id TEXT NOT NULL REFERENCES compliance_audits(id),
    code TEXT NOT NULL,
    severity TEXT NOT NULL
        CHECK(severity IN ('critical', 'error', 'warning')),
    section TEXT NOT NULL,
    message TEXT NOT NULL,
    element TEXT,
    suggestion TEXT
);

CREATE INDEX IF NOT EXISTS idx_issues_audit ON audit_issues(audit_id);
CREATE INDEX IF NOT EXISTS idx_issues_code ON audit_issues(code);
CREATE INDEX IF NOT EXISTS idx_issues_severity ON audit_issues(severity);

-- ============================================================
-- SYSTEM
-- ============================================================

-- Append-only audit trail (no UPDATE/DELETE)
CREATE TABLE IF NOT EXISTS audit_trail (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_type TEXT NOT NULL,
    actor TEXT,
    action TEXT NOT NULL,
    entity_type TEXT,
    entity_id TEXT,
    details TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_audit_event ON audit_trail(event_type);
CREATE INDEX IF NOT EXISTS idx_audit_entity ON audit_trail(entity_type, entity_id);
CREATE INDEX IF NOT EXISTS idx_audit_time ON audit_trail(created_at);
"""


def init_db(db_path=None):
    """Initialize the grant compliance database (idempotent)."""
    path = db_path or str(DB_PATH)
    db_dir = Path(path).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(path))
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")

    conn.executescript(SCHEMA_SQL)
    conn.commit()

    table_count = conn.execute(
        "SELECT COUNT(*) FROM sqlite_master WHERE type='table' "
        "AND name NOT LIKE 'sqlite_%'"
    ).fetchone()[0]
    index_count = conn.execute(
        "SELECT COUNT(*) FROM sqlite_master WHERE type='index' "
        "AND name NOT LIKE 'sqlite_%'"
    ).fetchone()[0]

    conn.close()

    return {
        "status": "initialized",
        "db_path": str(path),
        "tables": table_count,
        "indexes": index_count,
        "initialized_at": datetime.now(timezone.utc).isoformat(),
    }


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Initialize grant compliance database")
    parser.add_argument("--json", action="store_true", help="JSON output")
    parser.add_argument("--db-path", help="Override database path")
    args = parser.parse_args()

    result = init_db(db_path=args.db_path)

    if args.json:
        print(json.dumps(result, indent=2))
    else:
        print("Grant compliance database initialized:")
        print(f"  Path:    {result['db_path']}")
        print(f"  Tables:  {result['tables']}")
        print(f"  Indexes: {result['indexes']}")
        print(f"  Time:    {result['initialized_at']}")
