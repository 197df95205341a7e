"""
Heuristic risk scoring.

Each scorer sums independent factors, applies each factor at most once and
clamps the result to [0, 100]. Scorers are pure: the same inputs always give
the same score, and nothing here reads the clock or the store.
"""
from enum import Enum
from typing import Any, Dict, Optional, Union

from riskwatch.models.audit import AuditAction
from riskwatch.models.enums import DataVerb, Severity, SecurityEventType
from riskwatch.models.metadata import AuthMetadata, DataAccessMetadata, parse_metadata

MIN_SCORE = 0
MAX_SCORE = 100

AUTH_BASE_SCORES = {
    AuditAction.LOGIN_FAILED: 30,
    AuditAction.LOGIN: 10,
    AuditAction.MFA_SETUP: 5,
}

DATA_VERB_SCORES = {
    DataVerb.DELETE: 40,
    DataVerb.EXPORT: 30,
    DataVerb.UPDATE: 20,
    DataVerb.CREATE: 10,
    DataVerb.READ: 5,
}

SENSITIVE_RESOURCES = frozenset({"User", "Organization", "SecurityRole", "EncryptedField"})

SEVERITY_SCORES = {
    Severity.CRITICAL: 90,
    Severity.HIGH: 70,
    Severity.MEDIUM: 40,
    Severity.LOW: 20,
}

HIGH_RISK_EVENT_TYPES = frozenset({
    SecurityEventType.BRUTE_FORCE.value,
    SecurityEventType.DATA_BREACH.value,
    SecurityEventType.PRIVILEGE_ESCALATION.value,
})


def clamp(score: float) -> int:
    return int(max(MIN_SCORE, min(score, MAX_SCORE)))


def enum_value(value: Any) -> str:
    """Plain string for an enum member or a raw string."""
    return value.value if isinstance(value, Enum) else str(value)


def auth_risk_score(
    action: str,
    metadata: Optional[Dict[str, Any]] = None,
    known_malicious_ip: bool = False
) -> int:
    """Score an authentication event."""
    meta = parse_metadata(AuthMetadata, metadata)
    score = AUTH_BASE_SCORES.get(action, 0)

    if meta.failed_attempts is not None and meta.failed_attempts > 3:
        score += 20
    if meta.new_device:
        score += 15
    if meta.new_location:
        score += 10
    if known_malicious_ip:
        score += 50

    return clamp(score)


def data_access_risk_score(
    verb: Union[str, DataVerb],
    resource: str,
    metadata: Optional[Dict[str, Any]] = None
) -> int:
    """Score a data-access event by verb, resource sensitivity and bulk size."""
    meta = parse_metadata(DataAccessMetadata, metadata)
    try:
        score = DATA_VERB_SCORES[DataVerb(enum_value(verb).lower())]
    except ValueError:
        score = 0

    if resource in SENSITIVE_RESOURCES:
        score += 20

    # Bulk flag and large record count are one factor: the flag wins
    if meta.bulk_operation:
        score += 15
    elif meta.record_count is not None and meta.record_count > 100:
        score += 10

    return clamp(score)


def security_event_risk_score(event_type: str, severity: Union[str, Severity]) -> int:
    """Score a security event by severity, with a bonus for high-risk types."""
    try:
        score = SEVERITY_SCORES[Severity(enum_value(severity).lower())]
    except ValueError:
        score = 0

    if enum_value(event_type).upper() in HIGH_RISK_EVENT_TYPES:
        score += 10

    return clamp(score)
