#!/usr/bin/env python3
# CUI // SP-PROPIN
# Controlled by: NIH Grant Compliance Portal
# CUI Category: PROPIN (Proprietary Business Information)
# Distribution: D
# POC: Grant Compliance System Administrator
"""NIH policy tables -- institute caps, phase constraints, lexicons, patterns.

Loads args/nih_policy.yaml once per process into immutable, typed lookup
tables.  The policy file is the single source of truth; nothing here is
mutated after load.

Load-time validation (PolicyConfigError):
    - the default institute profile must exist
    - every phase and section required element must have detection
      patterns registered under element_patterns
    - every pattern must compile
    - section buckets must be known compliance buckets

Usage:
    python tools/compliance/policy_config.py --summary [--json]
    python tools/compliance/policy_config.py --staleness [--now 2027-02-01] [--json]
    python tools/compliance/policy_config.py --cap --institute NCI --mechanism "Phase IIB" [--json]
"""

import argparse
import json
import logging
import os
import re
import sys
from dataclasses import dataclass
from datetime import date, datetime, timezone
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional, Pattern, Tuple

import yaml

BASE_DIR = Path(__file__).resolve().parent.parent.parent
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from tools.compliance.models import BUCKETS  # noqa: E402

logger = logging.getLogger("grantaudit.compliance.policy")

DEFAULT_POLICY_PATH = BASE_DIR / "args" / "nih_policy.yaml"

VALID_CAP_KEYS = ("phase1_cap", "phase2_cap", "phase2b_cap")


class PolicyConfigError(RuntimeError):
    """The policy file is missing, malformed, or internally inconsistent."""


# ---------------------------------------------------------------------------
# Typed tables
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class InstituteProfile:
    code: str
    name: str
    phase1_cap: float
    phase2_cap: float
    phase2b_cap: Optional[float]
    sbir_phase1_small_business_min: float
    sbir_phase2_small_business_min: float
    sttr_small_business_min: float
    sttr_research_institution_min: float
    clinical_trial_allowed: bool
    special_notes: str = ""

    def cap_for(self, cap_key):
        return getattr(self, cap_key)


@dataclass(frozen=True)
class PhaseProfile:
    name: str
    budget_cap_key: str
    focus: str
    required_elements: Tuple[str, ...]
    commercialization_plan_required: bool
    go_no_go_required: bool
    commercialization_plan_pages: Optional[int] = None


@dataclass(frozen=True)
class SectionRule:
    section_type: str
    required_elements: Tuple[str, ...]
    description: str
    bucket: str


@dataclass(frozen=True)
class StatisticsCues:
    experiment_cues: Tuple[str, ...]
    power_cues: Tuple[str, ...]
    comparison_cues: Tuple[str, ...]
    recognized_tests: Tuple[str, ...]
    grouping_cues: Tuple[str, ...]
    sample_size_patterns: Tuple[Pattern, ...]


@dataclass(frozen=True)
class PolicyConfig:
    version: str
    last_updated: date
    expiry_months: int
    default_institute: str
    institutes: Mapping[str, InstituteProfile]
    phases: Mapping[str, PhaseProfile]
    promotional_terms: Tuple[str, ...]
    placeholder_patterns: Tuple[Pattern, ...]
    sections: Mapping[str, SectionRule]
    element_patterns: Mapping[str, Tuple[Pattern, ...]]
    statistics: StatisticsCues
    go_no_go_phrases: Tuple[str, ...]
    go_no_go_co_occurrence: Tuple[str, ...]
    commercial_phase_elements: frozenset
    source_path: str = ""


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def _compile(pattern, flags=re.IGNORECASE, where=""):
    try:
        return re.compile(pattern, flags)
    except re.error as exc:
        raise PolicyConfigError(f"Invalid pattern {pattern!r} in {where}: {exc}") from exc


def _parse_date(value):
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value), "%Y-%m-%d").date()
    except ValueError as exc:
        raise PolicyConfigError(f"policy.last_updated must be YYYY-MM-DD, got {value!r}") from exc


def _build_institutes(raw):
    institutes = {}
    for code, cfg in (raw or {}).items():
        try:
            sbir = cfg.get("sbir", {})
            sttr = cfg.get("sttr", {})
            institutes[code] = InstituteProfile(
                code=code,
                name=cfg.get("name", code),
                phase1_cap=cfg["phase1_cap"],
                phase2_cap=cfg["phase2_cap"],
                phase2b_cap=cfg.get("phase2b_cap"),
                sbir_phase1_small_business_min=sbir["phase1_small_business_min"],
                sbir_phase2_small_business_min=sbir["phase2_small_business_min"],
                sttr_small_business_min=sttr["small_business_min"],
                sttr_research_institution_min=sttr["research_institution_min"],
                clinical_trial_allowed=bool(cfg.get("clinical_trial_allowed", True)),
                special_notes=cfg.get("special_notes", ""),
            )
        except (KeyError, AttributeError, TypeError) as exc:
            raise PolicyConfigError(f"Institute {code!r} is missing field {exc}") from exc
    return institutes


def _build_phases(raw):
    phases = {}
    for name, cfg in (raw or {}).items():
        cap_key = cfg.get("budget_cap_key")
        if cap_key not in VALID_CAP_KEYS:
            raise PolicyConfigError(
                f"Phase {name!r} has invalid budget_cap_key {cap_key!r}; "
                f"must be one of {VALID_CAP_KEYS}"
            )
        phases[name] = PhaseProfile(
            name=name,
            budget_cap_key=cap_key,
            focus=cfg.get("focus", ""),
            required_elements=tuple(cfg.get("required_elements") or ()),
            commercialization_plan_required=bool(cfg.get("commercialization_plan_required", False)),
            go_no_go_required=bool(cfg.get("go_no_go_required", False)),
            commercialization_plan_pages=cfg.get("commercialization_plan_pages"),
        )
    return phases


def _build_sections(raw):
    sections = {}
    for section_type, cfg in (raw or {}).items():
        bucket = cfg.get("bucket", "structure")
        if bucket not in BUCKETS:
            raise PolicyConfigError(
                f"Section {section_type!r} has unknown bucket {bucket!r}; "
                f"must be one of {BUCKETS}"
            )
        sections[section_type] = SectionRule(
            section_type=section_type,
            required_elements=tuple(cfg.get("required_elements") or ()),
            description=cfg.get("description", ""),
            bucket=bucket,
        )
    return sections


def build_policy(data, source_path=""):
    """Build and validate a PolicyConfig from a parsed YAML mapping."""
    if not isinstance(data, dict):
        raise PolicyConfigError("Policy file must contain a mapping at top level")

    meta = data.get("policy", {})
    stats = data.get("statistics", {})
    go_no_go = data.get("go_no_go", {})

    placeholder = [
        _compile(p, re.IGNORECASE, "placeholder_patterns")
        for p in data.get("placeholder_patterns", [])
    ]
    placeholder.extend(
        _compile(p, 0, "placeholder_patterns_case_sensitive")
        for p in data.get("placeholder_patterns_case_sensitive", [])
    )

    element_patterns = {
        element: tuple(_compile(p, re.IGNORECASE, f"element_patterns.{element}")
                       for p in (patterns or []))
        for element, patterns in (data.get("element_patterns") or {}).items()
    }

    policy = PolicyConfig(
        version=str(meta.get("version", "unversioned")),
        last_updated=_parse_date(meta.get("last_updated", "1970-01-01")),
        expiry_months=int(meta.get("expiry_months", 12)),
        default_institute=meta.get("default_institute", "Standard NIH"),
        institutes=MappingProxyType(_build_institutes(data.get("institutes"))),
        phases=MappingProxyType(_build_phases(data.get("phases"))),
        promotional_terms=tuple(str(t) for t in data.get("promotional_terms", [])),
        placeholder_patterns=tuple(placeholder),
        sections=MappingProxyType(_build_sections(data.get("sections"))),
        element_patterns=MappingProxyType(element_patterns),
        statistics=StatisticsCues(
            experiment_cues=tuple(stats.get("experiment_cues", [])),
            power_cues=tuple(stats.get("power_cues", [])),
            comparison_cues=tuple(stats.get("comparison_cues", [])),
            recognized_tests=tuple(stats.get("recognized_tests", [])),
            grouping_cues=tuple(stats.get("grouping_cues", [])),
            sample_size_patterns=tuple(
                _compile(p, re.IGNORECASE, "statistics.sample_size_patterns")
                for p in stats.get("sample_size_patterns", [])
            ),
        ),
        go_no_go_phrases=tuple(go_no_go.get("phrases", [])),
        go_no_go_co_occurrence=tuple(go_no_go.get("co_occurrence", [])),
        commercial_phase_elements=frozenset(data.get("commercial_phase_elements", [])),
        source_path=str(source_path),
    )
    validate_policy(policy)
    return policy


def validate_policy(policy):
    """Raise PolicyConfigError for any unenforceable or unresolvable entry."""
    if policy.default_institute not in policy.institutes:
        raise PolicyConfigError(
            f"Default institute {policy.default_institute!r} is not defined"
        )

    unmapped = []
    for phase in policy.phases.values():
        for element in phase.required_elements:
            if not policy.element_patterns.get(element):
                unmapped.append(f"phases.{phase.name}.{element}")
    for rule in policy.sections.values():
        for element in rule.required_elements:
            if not policy.element_patterns.get(element):
                unmapped.append(f"sections.{rule.section_type}.{element}")
    if unmapped:
        raise PolicyConfigError(
            "Required elements without detection patterns: " + ", ".join(unmapped)
        )


def load_policy(path=None):
    """Read and validate a policy file (uncached)."""
    policy_path = Path(path or os.environ.get("GRANTAUDIT_POLICY_PATH", DEFAULT_POLICY_PATH))
    if not policy_path.exists():
        raise PolicyConfigError(f"Policy file not found: {policy_path}")
    try:
        with open(policy_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise PolicyConfigError(f"Policy file {policy_path} is not valid YAML: {exc}") from exc

    policy = build_policy(data, source_path=policy_path)
    logger.info(
        "Loaded NIH policy %s (%d institutes, %d phases, %d section rules) from %s",
        policy.version, len(policy.institutes), len(policy.phases),
        len(policy.sections), policy_path,
    )
    return policy


@lru_cache(maxsize=None)
def _cached_policy(path_str):
    return load_policy(path_str)


def get_policy(path=None):
    """Return the process-wide policy for *path* (default file), loading once."""
    path_str = str(path or os.environ.get("GRANTAUDIT_POLICY_PATH", DEFAULT_POLICY_PATH))
    return _cached_policy(path_str)


def reload_policy():
    """Drop cached policies so the next get_policy() re-reads the file."""
    _cached_policy.cache_clear()


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

def get_institute_profile(institute_code, policy=None):
    """Resolve an institute, falling back to the default profile."""
    policy = policy or get_policy()
    profile = policy.institutes.get(institute_code)
    if profile is None:
        logger.debug("Unknown institute %r -- using %r defaults",
                     institute_code, policy.default_institute)
        profile = policy.institutes[policy.default_institute]
    return profile


def get_phase_profile(mechanism, policy=None):
    """Return the PhaseProfile for a mechanism, or None if unknown."""
    policy = policy or get_policy()
    return policy.phases.get(mechanism)


def get_budget_cap_for_phase(institute_code, mechanism, policy=None):
    """Institute direct-cost cap for a mechanism.

    Unknown mechanisms use the Phase I cap.  Institutes without a Phase IIB
    cap fall back to their Phase II cap.
    """
    policy = policy or get_policy()
    profile = get_institute_profile(institute_code, policy)
    phase = policy.phases.get(mechanism)
    if phase is None:
        return profile.phase1_cap
    cap = profile.cap_for(phase.budget_cap_key)
    if cap is None:
        return profile.phase2_cap
    return cap


# ---------------------------------------------------------------------------
# Staleness
# ---------------------------------------------------------------------------

def _months_between(start, end):
    return (end.year - start.year) * 12 + (end.month - start.month)


def is_policy_expired(now, policy=None):
    """True when whole calendar months since last_updated >= expiry_months.

    Args:
        now: date or datetime supplied by the caller.
    """
    policy = policy or get_policy()
    return _months_between(policy.last_updated, now) >= policy.expiry_months


def get_policy_warning(now, policy=None):
    """Return a staleness warning string, or None while the policy is current."""
    policy = policy or get_policy()
    if is_policy_expired(now, policy):
        return (
            f"Policy tables last updated {policy.last_updated.isoformat()}. "
            "Budget caps and allocation requirements may have changed. "
            "Please verify current NIH guidelines."
        )
    return None


def policy_summary(policy=None, now=None):
    """Plain-dict description of the loaded policy for API/CLI callers."""
    policy = policy or get_policy()
    summary = {
        "version": policy.version,
        "last_updated": policy.last_updated.isoformat(),
        "expiry_months": policy.expiry_months,
        "default_institute": policy.default_institute,
        "institutes": sorted(policy.institutes),
        "mechanisms": list(policy.phases),
        "section_types": list(policy.sections),
        "promotional_terms": len(policy.promotional_terms),
        "source_path": policy.source_path,
    }
    if now is not None:
        summary["expired"] = is_policy_expired(now, policy)
        summary["warning"] = get_policy_warning(now, policy)
    return summary


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def main():
    parser = argparse.ArgumentParser(description="NIH policy tables")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--summary", action="store_true", help="Summarize the loaded policy")
    group.add_argument("--staleness", action="store_true", help="Check policy expiry")
    group.add_argument("--cap", action="store_true", help="Resolve a budget cap")
    parser.add_argument("--institute", default="Standard NIH")
    parser.add_argument("--mechanism", default="Phase I")
    parser.add_argument("--now", help="Reference date YYYY-MM-DD (default: today, UTC)")
    parser.add_argument("--policy-path", help="Override policy file path")
    parser.add_argument("--json", action="store_true", help="JSON output")
    args = parser.parse_args()

    try:
        policy = load_policy(args.policy_path) if args.policy_path else get_policy()
        now = (datetime.strptime(args.now, "%Y-%m-%d").date() if args.now
               else datetime.now(timezone.utc).date())

        if args.summary:
            output = policy_summary(policy)
        elif args.staleness:
            output = {
                "version": policy.version,
                "last_updated": policy.last_updated.isoformat(),
                "checked_at": now.isoformat(),
                "expired": is_policy_expired(now, policy),
                "warning": get_policy_warning(now, policy),
            }
        else:
            output = {
                "institute": get_institute_profile(args.institute, policy).code,
                "mechanism": args.mechanism,
                "budget_cap": get_budget_cap_for_phase(args.institute, args.mechanism, policy),
            }
        output["status"] = "ok"

        if args.json:
            print(json.dumps(output, indent=2, default=str))
        else:
            for key, val in output.items():
                if key != "status":
                    print(f"  {key}: {val}")
    except Exception as exc:
        if args.json:
            print(json.dumps({"status": "error", "error": str(exc)}, indent=2))
        else:
            print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
