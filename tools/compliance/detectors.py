#!/usr/bin/env python3
# CUI // SP-PROPIN
# Controlled by: NIH Grant Compliance Portal
# CUI Category: PROPIN (Proprietary Business Information)
# Distribution: D
# POC: Grant Compliance System Administrator
"""Text signal detectors -- regex + keyword heuristics over section text.

Each detector is a pure function: text (plus context) in, list of
ValidationIssue out.  Detectors never depend on each other and never
raise on empty or malformed text; they return an empty list instead.

Detectors:
    detect_promotional_language  -- CLAIM_PROMOTIONAL (error, one per term)
    detect_placeholders          -- PLACEHOLDER_DETECTED (critical, one per match)
    detect_missing_statistics    -- STATS_MISSING_POWER / _TEST / _N
    check_go_no_go_criteria      -- MISSING_GO_NO_GO (critical)
    validate_section             -- MISSING_<ELEMENT> (error)
    validate_phase_elements      -- PHASE_MISSING_<ELEMENT> (warning)

Signal families and severities change only together with the policy
version.
"""

import logging
import re

from tools.compliance.models import ValidationIssue
from tools.compliance.policy_config import PolicyConfigError, get_policy

logger = logging.getLogger("grantaudit.compliance.detectors")


def _is_blank(text):
    return not isinstance(text, str) or not text.strip()


def _humanize(element):
    return element.replace("_", " ")


# ---------------------------------------------------------------------------
# Claim control
# ---------------------------------------------------------------------------

def detect_promotional_language(text, policy=None):
    """Flag marketing terms. One issue per distinct lexicon term found."""
    if _is_blank(text):
        return []
    policy = policy or get_policy()

    issues = []
    for term in policy.promotional_terms:
        regex = re.compile(r"\b" + re.escape(term) + r"\b", re.IGNORECASE)
        if regex.search(text):
            issues.append(ValidationIssue(
                code="CLAIM_PROMOTIONAL",
                severity="error",
                section="content",
                message=f'Promotional language detected: "{term}"',
                element=term,
                suggestion=f'Remove or replace "{term}" with neutral scientific language',
            ))
    return issues


def detect_placeholders(text, policy=None):
    """Flag every placeholder occurrence (TBD, [insert ...], XXX, ...)."""
    if _is_blank(text):
        return []
    policy = policy or get_policy()

    issues = []
    for pattern in policy.placeholder_patterns:
        for match in pattern.finditer(text):
            issues.append(ValidationIssue(
                code="PLACEHOLDER_DETECTED",
                severity="critical",
                section="content",
                message=f'Placeholder text found: "{match.group(0)}"',
                element=match.group(0),
                suggestion="Replace placeholder with actual content",
            ))
    return issues


# ---------------------------------------------------------------------------
# Statistical rigor
# ---------------------------------------------------------------------------

def detect_missing_statistics(text, policy=None):
    """Keyword-gated checks for power analysis, named tests and sample sizes.

    The three checks are independent and may all fire on the same text.
    """
    if _is_blank(text):
        return []
    cues = (policy or get_policy()).statistics
    lower = text.lower()

    def mentions(words):
        return any(w in lower for w in words)

    issues = []

    if mentions(cues.experiment_cues) and not mentions(cues.power_cues):
        issues.append(ValidationIssue(
            code="STATS_MISSING_POWER",
            severity="error",
            section="statistical",
            message="Missing power calculation or sample size justification",
            suggestion="Include power analysis with >= 80% power and effect size assumptions",
        ))

    if not mentions(cues.recognized_tests) and mentions(cues.comparison_cues):
        issues.append(ValidationIssue(
            code="STATS_MISSING_TEST",
            severity="warning",
            section="statistical",
            message="Statistical test not specified",
            suggestion="Specify the statistical test to be used (e.g., t-test, ANOVA)",
        ))

    has_n = any(p.search(text) for p in cues.sample_size_patterns)
    if not has_n and mentions(cues.grouping_cues):
        issues.append(ValidationIssue(
            code="STATS_MISSING_N",
            severity="warning",
            section="statistical",
            message="Sample size (n=) not specified",
            suggestion="Include sample size for experiments (e.g., n=6 per group)",
        ))

    return issues


# ---------------------------------------------------------------------------
# Structure
# ---------------------------------------------------------------------------

def check_go_no_go_criteria(text, grant_type, policy=None):
    """Require Go/No-Go language for mechanisms that demand it (Phase I, Fast Track)."""
    if _is_blank(text):
        return []
    policy = policy or get_policy()
    phase = policy.phases.get(grant_type)
    if phase is None or not phase.go_no_go_required:
        return []

    lower = text.lower()
    has_go_no_go = (
        any(p in lower for p in policy.go_no_go_phrases)
        or (bool(policy.go_no_go_co_occurrence)
            and all(w in lower for w in policy.go_no_go_co_occurrence))
    )
    if has_go_no_go:
        return []

    return [ValidationIssue(
        code="MISSING_GO_NO_GO",
        severity="critical",
        section="structure",
        message=f"Missing Go/No-Go criteria (required for {grant_type})",
        suggestion="Add explicit Go/No-Go decision criteria with quantitative thresholds",
    )]


def _element_present(element, content, policy, where):
    patterns = policy.element_patterns.get(element)
    if not patterns:
        raise PolicyConfigError(f"No detection patterns registered for {where} element {element!r}")
    return any(p.search(content) for p in patterns)


def validate_section(section_type, content, grant_type=None, policy=None):
    """Check a section's required elements against their detection patterns.

    Unknown section types produce no issues.  Missing elements are charged
    to the section rule's compliance bucket.
    """
    policy = policy or get_policy()
    rule = policy.sections.get(section_type)
    if rule is None:
        logger.debug("No section rule for %r -- skipping", section_type)
        return []
    if _is_blank(content):
        return []

    issues = []
    for element in rule.required_elements:
        if _element_present(element, content, policy, f"section {section_type!r}"):
            continue
        issues.append(ValidationIssue(
            code=f"MISSING_{element.upper()}",
            severity="error",
            section=rule.bucket,
            message=f"Missing required element in {section_type}: {_humanize(element)}",
            element=element,
            suggestion=f"Add {_humanize(element)} to meet NIH requirements",
        ))
    return issues


def validate_phase_elements(content, grant_type, policy=None):
    """Check the mechanism's phase-level required elements (advisory warnings)."""
    policy = policy or get_policy()
    phase = policy.phases.get(grant_type)
    if phase is None:
        logger.debug("No phase profile for %r -- skipping phase elements", grant_type)
        return []
    if _is_blank(content):
        return []

    issues = []
    for element in phase.required_elements:
        if _element_present(element, content, policy, f"phase {grant_type!r}"):
            continue
        bucket = "commercial" if element in policy.commercial_phase_elements else "structure"
        issues.append(ValidationIssue(
            code=f"PHASE_MISSING_{element.upper()}",
            severity="warning",
            section=bucket,
            message=f"{grant_type} application does not address: {_humanize(element)}",
            element=element,
            suggestion=f"{phase.focus}. Address {_humanize(element)} explicitly.",
        ))
    return issues
