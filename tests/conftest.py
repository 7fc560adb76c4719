#!/usr/bin/env python3
# CUI // SP-PROPIN
"""Shared test fixtures for the grant compliance test suite."""

import os
import sqlite3
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Add project root to path
BASE_DIR = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(BASE_DIR))


def _patch_db_path(db_path):
    """Patch DB_PATH in all tool modules that cache it at import time."""
    p = Path(db_path)
    modules_to_patch = [
        "tools.audit.audit_logger",
        "tools.db.init_db",
    ]
    for mod_name in modules_to_patch:
        if mod_name in sys.modules:
            mod = sys.modules[mod_name]
            if hasattr(mod, "DB_PATH"):
                mod.DB_PATH = p


@pytest.fixture
def tmp_db(tmp_path):
    """Create a temporary grant compliance database with full schema."""
    db_path = tmp_path / "test_grantaudit.db"

    from tools.db.init_db import init_db
    import tools.audit.audit_logger  # noqa: F401  (ensure module is patched)
    init_db(str(db_path))

    os.environ["GRANTAUDIT_DB_PATH"] = str(db_path)
    _patch_db_path(db_path)
    yield db_path
    if "GRANTAUDIT_DB_PATH" in os.environ:
        del os.environ["GRANTAUDIT_DB_PATH"]


@pytest.fixture
def db_conn(tmp_db):
    """Get a connection to the test database."""
    conn = sqlite3.connect(str(tmp_db))
    conn.row_factory = sqlite3.Row
    yield conn
    conn.close()


@pytest.fixture
def policy():
    """The shipped NIH policy tables."""
    from tools.compliance.policy_config import get_policy
    return get_policy()


@pytest.fixture
def raw_policy():
    """The shipped policy file as a mutable dict (for building variants)."""
    import yaml
    from tools.compliance.policy_config import DEFAULT_POLICY_PATH
    with open(DEFAULT_POLICY_PATH, "r", encoding="utf-8") as f:
        return yaml.safe_load(f)


@pytest.fixture
def fixed_now():
    return datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Content samples
# ---------------------------------------------------------------------------

CLEAN_TEXT = (
    "Aim 1 will test the hypothesis that compound A reduces tumor growth in a "
    "xenograft model. A power analysis (80% power, alpha = 0.05) indicates that "
    "n = 12 mice per group is sufficient. Tumor volume is the primary endpoint "
    "and groups will be compared using a two-way ANOVA."
)

GO_NO_GO_TEXT = CLEAN_TEXT + (
    " Go/No-Go criteria: we will proceed to Aim 2 only if tumor volume is "
    "reduced by > 40% relative to vehicle."
)


@pytest.fixture
def clean_text():
    """Text that trips none of the default detectors."""
    return CLEAN_TEXT


@pytest.fixture
def go_no_go_text():
    """Clean text that also states Go/No-Go criteria (Phase I ready)."""
    return GO_NO_GO_TEXT


# ---------------------------------------------------------------------------
# Project samples
# ---------------------------------------------------------------------------

@pytest.fixture
def phase2_project():
    """NCI Phase II SBIR project that satisfies every alignment check."""
    return {
        "institute": "NCI",
        "grant_type": "Phase II",
        "program_type": "SBIR",
        "direct_costs": 1500000,
        "small_business_percent": 70,
        "research_institution_percent": 0,
        "clinical_trial_included": False,
        "foa_number": "PA-25-123",
    }


@pytest.fixture
def phase1_project():
    """Standard NIH Phase I SBIR project (no FOA needed)."""
    return {
        "institute": "Standard NIH",
        "grant_type": "Phase I",
        "program_type": "SBIR",
        "direct_costs": 250000,
        "small_business_percent": 67,
        "research_institution_percent": 0,
        "clinical_trial_included": False,
    }


@pytest.fixture
def sttr_project():
    """NIAID Phase II STTR project meeting both allocation minimums."""
    return {
        "institute": "NIAID",
        "grant_type": "Phase II",
        "program_type": "STTR",
        "direct_costs": 1000000,
        "small_business_percent": 45,
        "research_institution_percent": 35,
        "clinical_trial_included": False,
        "foa_number": "PAR-25-200",
    }
