#!/usr/bin/env python3
# CUI // SP-PROPIN
# Controlled by: NIH Grant Compliance Portal
# CUI Category: PROPIN (Proprietary Business Information)
# Distribution: D
# POC: Grant Compliance System Administrator
"""Compliance audit data types.

Defines the immutable records exchanged between detectors, scorers and
the audit orchestrator, plus the caller-owned project metadata.  Every
record serializes to a plain dict via ``to_dict()`` for the CLI, the
HTTP API and the audit trail.
"""

import math
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

SEVERITIES = ("critical", "error", "warning")

# Compliance issue buckets. "content" is charged to the tone pool.
BUCKETS = ("structure", "statistical", "regulatory", "commercial", "content")

PROGRAM_TYPES = ("SBIR", "STTR")


class InvalidProjectMetadata(ValueError):
    """Raised when caller-supplied project metadata breaks the input contract."""


def _read_only(mapping):
    return MappingProxyType(dict(mapping))


@dataclass(frozen=True)
class ValidationIssue:
    """A single finding produced by a detector."""
    code: str
    severity: str
    section: str
    message: str
    element: Optional[str] = None
    suggestion: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "code": self.code,
            "severity": self.severity,
            "section": self.section,
            "message": self.message,
        }
        if self.element is not None:
            out["element"] = self.element
        if self.suggestion is not None:
            out["suggestion"] = self.suggestion
        return out


@dataclass(frozen=True)
class ComplianceScore:
    """Five-pool, 100-point content compliance score."""
    total: int
    structure: int
    statistical: int
    regulatory: int
    commercial: int
    tone: int
    breakdown: Mapping[str, int] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "breakdown", _read_only(self.breakdown))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "structure": self.structure,
            "statistical": self.statistical,
            "regulatory": self.regulatory,
            "commercial": self.commercial,
            "tone": self.tone,
            "breakdown": dict(self.breakdown),
        }


@dataclass(frozen=True)
class AgencyAlignmentScore:
    """Four-pool, 100-point alignment of project metadata with institute policy."""
    total: int
    budget_compliance: int
    allocation_compliance: int
    foa_compliance: int
    clinical_trial_compliance: int
    breakdown: Mapping[str, int] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "breakdown", _read_only(self.breakdown))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "budget_compliance": self.budget_compliance,
            "allocation_compliance": self.allocation_compliance,
            "foa_compliance": self.foa_compliance,
            "clinical_trial_compliance": self.clinical_trial_compliance,
            "breakdown": dict(self.breakdown),
        }


@dataclass(frozen=True)
class ComplianceAuditResult:
    """Terminal aggregate returned by run_compliance_audit()."""
    passed: bool
    compliance_score: ComplianceScore
    agency_alignment_score: AgencyAlignmentScore
    issues: Tuple[ValidationIssue, ...]
    blocking_issues: Tuple[ValidationIssue, ...]
    export_allowed: bool
    timestamp: str
    auditor_version: str
    policy_version: str = ""

    def issue_codes(self) -> List[str]:
        return [i.code for i in self.issues]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "export_allowed": self.export_allowed,
            "compliance_score": self.compliance_score.to_dict(),
            "agency_alignment_score": self.agency_alignment_score.to_dict(),
            "issues": [i.to_dict() for i in self.issues],
            "blocking_issues": [i.to_dict() for i in self.blocking_issues],
            "timestamp": self.timestamp,
            "auditor_version": self.auditor_version,
            "policy_version": self.policy_version,
        }


# ---------------------------------------------------------------------------
# Project metadata (caller owned)
# ---------------------------------------------------------------------------

# camelCase keys accepted from JSON payloads produced by the web client
_KEY_ALIASES = {
    "grantType": "grant_type",
    "mechanism": "grant_type",
    "programType": "program_type",
    "directCosts": "direct_costs",
    "smallBusinessPercent": "small_business_percent",
    "researchInstitutionPercent": "research_institution_percent",
    "clinicalTrialIncluded": "clinical_trial_included",
    "foaNumber": "foa_number",
    "foaOverrides": "foa_overrides",
    "budgetCap": "budget_cap",
    "smallBusinessMin": "small_business_min",
    "researchInstitutionMin": "research_institution_min",
    "clinicalTrialAllowed": "clinical_trial_allowed",
}


def _normalize_keys(data, name="project"):
    if data is not None and not isinstance(data, dict):
        raise InvalidProjectMetadata(f"{name} must be an object, got {data!r}")
    return {_KEY_ALIASES.get(k, k): v for k, v in (data or {}).items()}


def _check_non_negative(name, value):
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidProjectMetadata(f"{name} must be a number, got {value!r}")
    if not math.isfinite(value):
        raise InvalidProjectMetadata(f"{name} must be a finite number, got {value}")
    if value < 0:
        raise InvalidProjectMetadata(f"{name} must be non-negative, got {value}")


def _check_string(name, value, optional=False):
    if value is None and optional:
        return
    if not isinstance(value, str):
        raise InvalidProjectMetadata(f"{name} must be a string, got {value!r}")


def _check_bool(name, value, optional=False):
    if value is None and optional:
        return
    if not isinstance(value, bool):
        raise InvalidProjectMetadata(f"{name} must be true or false, got {value!r}")


def _check_percent(name, value):
    _check_non_negative(name, value)
    if value is not None and value > 100:
        raise InvalidProjectMetadata(f"{name} must be within 0-100, got {value}")


@dataclass(frozen=True)
class FoaOverrides:
    """FOA-derived values that take precedence over institute defaults."""
    budget_cap: Optional[float] = None
    small_business_min: Optional[float] = None
    research_institution_min: Optional[float] = None
    clinical_trial_allowed: Optional[bool] = None

    def __post_init__(self):
        _check_non_negative("foa_overrides.budget_cap", self.budget_cap)
        _check_percent("foa_overrides.small_business_min", self.small_business_min)
        _check_percent("foa_overrides.research_institution_min",
                       self.research_institution_min)
        _check_bool("foa_overrides.clinical_trial_allowed",
                    self.clinical_trial_allowed, optional=True)

    @classmethod
    def from_dict(cls, data):
        if data is None:
            return None
        if isinstance(data, cls):
            return data
        data = _normalize_keys(data, "foa_overrides")
        return cls(
            budget_cap=data.get("budget_cap"),
            small_business_min=data.get("small_business_min"),
            research_institution_min=data.get("research_institution_min"),
            clinical_trial_allowed=data.get("clinical_trial_allowed"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "budget_cap": self.budget_cap,
            "small_business_min": self.small_business_min,
            "research_institution_min": self.research_institution_min,
            "clinical_trial_allowed": self.clinical_trial_allowed,
        }


@dataclass(frozen=True)
class ProjectMetadata:
    """Project record fields the audit engine reads.

    Validated at construction: costs and overrides finite and
    non-negative, percentages within 0-100, program type SBIR or STTR,
    text fields strings and flags real booleans.
    """
    institute: str
    grant_type: str
    program_type: str
    direct_costs: float
    small_business_percent: float
    research_institution_percent: float
    clinical_trial_included: bool = False
    foa_number: Optional[str] = None
    foa_overrides: Optional[FoaOverrides] = None

    def __post_init__(self):
        _check_string("institute", self.institute)
        _check_string("grant_type", self.grant_type)
        _check_string("foa_number", self.foa_number, optional=True)
        _check_bool("clinical_trial_included", self.clinical_trial_included)
        if self.program_type not in PROGRAM_TYPES:
            raise InvalidProjectMetadata(
                f"program_type must be one of {PROGRAM_TYPES}, got {self.program_type!r}"
            )
        _check_non_negative("direct_costs", self.direct_costs)
        _check_percent("small_business_percent", self.small_business_percent)
        _check_percent("research_institution_percent",
                       self.research_institution_percent)

    @classmethod
    def from_dict(cls, data):
        """Build from a plain dict (snake_case or camelCase keys)."""
        if isinstance(data, cls):
            return data
        data = _normalize_keys(data)
        missing = [k for k in ("institute", "grant_type", "program_type",
                               "direct_costs") if data.get(k) is None]
        if missing:
            raise InvalidProjectMetadata(
                f"Missing required project fields: {', '.join(missing)}"
            )
        _check_string("program_type", data["program_type"])
        program_type = data["program_type"].upper()
        clinical_trial = data.get("clinical_trial_included")
        return cls(
            institute=data["institute"],
            grant_type=data["grant_type"],
            program_type=program_type,
            direct_costs=data["direct_costs"],
            small_business_percent=data.get("small_business_percent") or 0,
            research_institution_percent=data.get("research_institution_percent") or 0,
            clinical_trial_included=False if clinical_trial is None else clinical_trial,
            foa_number=data.get("foa_number") or None,
            foa_overrides=FoaOverrides.from_dict(data.get("foa_overrides")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "institute": self.institute,
            "grant_type": self.grant_type,
            "program_type": self.program_type,
            "direct_costs": self.direct_costs,
            "small_business_percent": self.small_business_percent,
            "research_institution_percent": self.research_institution_percent,
            "clinical_trial_included": self.clinical_trial_included,
            "foa_number": self.foa_number,
            "foa_overrides": self.foa_overrides.to_dict() if self.foa_overrides else None,
        }
