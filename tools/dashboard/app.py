#!/usr/bin/env python3
# CUI // SP-PROPIN
# Controlled by: NIH Grant Compliance Portal
# CUI Category: PROPIN
# Distribution: D
# POC: Grant Compliance System Administrator
"""Grant Compliance API -- Flask JSON service around the audit engine.

Endpoints:
    /api/health              -- Health check
    /api/policy              -- Loaded policy version, tables and staleness
    /api/audit               -- Full compliance audit (POST JSON)
    /api/audit/agency        -- Agency alignment score only (POST JSON)
    /api/audit/section       -- One section's required elements (POST JSON)
    /api/audits              -- Stored audit history (GET)
    /api/audits/<audit_id>   -- One stored audit (GET)

One stateless audit per request; results are stored only when the caller
asks for it ("store": true).

Usage:
    python tools/dashboard/app.py [--port 5001] [--debug]
"""

import logging
import os
import sys
import threading
import time
from collections import defaultdict, deque
from datetime import datetime, timezone
from pathlib import Path

from dotenv import load_dotenv
from flask import Flask, jsonify, request

BASE_DIR = Path(__file__).resolve().parent.parent.parent
sys.path.insert(0, str(BASE_DIR))

# Real environment variables win over .env values.
_env_path = BASE_DIR / ".env"
if _env_path.exists():
    load_dotenv(_env_path, override=False)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
)
logger = logging.getLogger("grantaudit")

from tools.audit import audit_logger  # noqa: E402
from tools.compliance.audit_engine import run_compliance_audit  # noqa: E402
from tools.compliance.detectors import validate_section  # noqa: E402
from tools.compliance.models import InvalidProjectMetadata  # noqa: E402
from tools.compliance.policy_config import get_policy, policy_summary  # noqa: E402
from tools.compliance.scoring import calculate_agency_alignment_score  # noqa: E402


# =========================================================================
# RATE LIMITER (in-memory, per-IP sliding window)
# =========================================================================
_rl_lock = threading.Lock()
_rl_windows: dict = defaultdict(deque)  # ip -> deque of timestamps


def _check_rate_limit(key: str, max_calls: int, window_secs: int) -> bool:
    """Return True if the call is allowed, False if rate-limited."""
    now = time.monotonic()
    with _rl_lock:
        dq = _rl_windows[key]
        cutoff = now - window_secs
        while dq and dq[0] < cutoff:
            dq.popleft()
        if len(dq) >= max_calls:
            return False
        dq.append(now)
        return True


# =========================================================================
# APP SETUP
# =========================================================================
app = Flask(__name__)
app.secret_key = os.environ.get("GRANTAUDIT_SECRET", "dev-secret-change-in-prod")

_API_KEY = os.environ.get("GRANTAUDIT_API_KEY", "").strip()
# Audit endpoints: max 60 calls per minute per IP
_AUDIT_RATE_LIMIT = (
    int(os.environ.get("GRANTAUDIT_AUDIT_RATE_LIMIT", "60")),
    60,
)


def _now():
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _bad_request(message):
    return jsonify({"error": message}), 400


@app.errorhandler(404)
def not_found(e):
    return jsonify({"error": "Not found"}), 404


@app.errorhandler(500)
def internal_server_error(e):
    logger.error("500 Internal Server Error: %s", e)
    return jsonify({"error": "Internal server error"}), 500


@app.before_request
def _before_request():
    path = request.path

    # Optional API key auth for /api/* routes
    if _API_KEY and path.startswith("/api/") and path != "/api/health":
        provided = request.headers.get("X-Api-Key", "")
        if provided != _API_KEY:
            return jsonify({"error": "Unauthorized. Provide X-Api-Key header."}), 401

    if path.startswith("/api/audit") and request.method == "POST":
        ip = request.remote_addr or "unknown"
        max_calls, window = _AUDIT_RATE_LIMIT
        if not _check_rate_limit(f"audit:{ip}", max_calls, window):
            return jsonify({
                "error": f"Rate limit exceeded. Max {max_calls} audit requests per {window}s."
            }), 429


# =========================================================================
# ROUTES
# =========================================================================
@app.route("/api/health")
def health():
    """Health check endpoint."""
    return jsonify({
        "status": "healthy",
        "service": "grantaudit-api",
        "db_path": str(audit_logger.DB_PATH),
        "policy_version": get_policy().version,
        "timestamp": _now(),
    })


@app.route("/api/policy", methods=["GET"])
def api_policy():
    """Policy summary; ?now=YYYY-MM-DD sets the staleness reference date."""
    now_arg = request.args.get("now")
    if now_arg:
        try:
            now = datetime.strptime(now_arg, "%Y-%m-%d").date()
        except ValueError:
            return _bad_request("now must be YYYY-MM-DD")
    else:
        now = datetime.now(timezone.utc).date()
    return jsonify(policy_summary(get_policy(), now=now))


@app.route("/api/audit", methods=["POST"])
def api_audit():
    """Run a full compliance audit.

    POST body (JSON):
        content        -- text to audit
        project        -- project metadata (snake_case or camelCase keys)
        section_types  -- optional list of section rule keys
        include_phase_elements -- optional bool
        store          -- optional bool, record the result in the audit trail
        project_id     -- optional caller project ID (stored with the result)
    """
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return _bad_request("Request body must be a JSON object")
    if not isinstance(body.get("project"), dict):
        return _bad_request("project is required")
    content = body.get("content") or ""
    if not isinstance(content, str):
        return _bad_request("content must be a string")
    section_types = body.get("section_types") or []
    if not isinstance(section_types, list) or not all(isinstance(s, str) for s in section_types):
        return _bad_request("section_types must be a list of strings")

    try:
        result = run_compliance_audit(
            content, body["project"], section_types,
            include_phase_elements=bool(body.get("include_phase_elements")),
        )
    except InvalidProjectMetadata as exc:
        return _bad_request(str(exc))

    output = result.to_dict()
    if body.get("store"):
        stored = audit_logger.record_audit(
            result, body["project"],
            project_id=body.get("project_id") or "",
            section_types=section_types,
            actor="grantaudit-api",
        )
        output["audit_id"] = stored["audit_id"]
    return jsonify(output)


@app.route("/api/audit/agency", methods=["POST"])
def api_audit_agency():
    """Agency alignment score for project metadata only."""
    body = request.get_json(silent=True) or {}
    if not isinstance(body, dict):
        return _bad_request("Request body must be a JSON object")
    project = body.get("project", body)
    if not isinstance(project, dict):
        return _bad_request("project is required")
    try:
        score = calculate_agency_alignment_score(project)
    except InvalidProjectMetadata as exc:
        return _bad_request(str(exc))
    return jsonify(score.to_dict())


@app.route("/api/audit/section", methods=["POST"])
def api_audit_section():
    """Validate one section type's required elements."""
    body = request.get_json(silent=True) or {}
    if not isinstance(body, dict):
        return _bad_request("Request body must be a JSON object")
    section_type = body.get("section_type")
    if not section_type or not isinstance(section_type, str):
        return _bad_request("section_type is required and must be a string")
    content = body.get("content") or ""
    grant_type = body.get("grant_type")
    if not isinstance(content, str):
        return _bad_request("content must be a string")
    if grant_type is not None and not isinstance(grant_type, str):
        return _bad_request("grant_type must be a string")
    issues = validate_section(section_type, content, grant_type)
    return jsonify({
        "section_type": section_type,
        "known_section": section_type in get_policy().sections,
        "issue_count": len(issues),
        "issues": [i.to_dict() for i in issues],
    })


@app.route("/api/audits", methods=["GET"])
def api_audits():
    """Stored audit summaries, newest first."""
    try:
        limit = int(request.args.get("limit", 50))
    except ValueError:
        return _bad_request("limit must be an integer")
    audits = audit_logger.list_audits(
        project_id=request.args.get("project_id"), limit=limit,
    )
    return jsonify(audits)


@app.route("/api/audits/<audit_id>", methods=["GET"])
def api_audit_detail(audit_id):
    audit = audit_logger.get_audit(audit_id)
    if audit is None:
        return jsonify({"error": f"Audit not found: {audit_id}"}), 404
    return jsonify(audit)


if __name__ == "__main__":
    import argparse

    from tools.db.init_db import init_db

    parser = argparse.ArgumentParser(description="Grant Compliance API")
    parser.add_argument("--port", type=int, default=5001)
    parser.add_argument("--debug", action="store_true")
    parser.add_argument("--host", default="127.0.0.1")
    args = parser.parse_args()

    init_db(str(audit_logger.DB_PATH))
    print(f"Grant Compliance API starting on http://{args.host}:{args.port}")
    print(f"Database: {audit_logger.DB_PATH}")
    print(f"Policy:   {get_policy().version}")
    app.run(host=args.host, port=args.port, debug=args.debug)
