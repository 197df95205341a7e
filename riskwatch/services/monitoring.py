"""Dashboard-facing rollup of the last 24 hours of security activity."""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence

from riskwatch.database import utcnow
from riskwatch.models.audit import AuditAction, AuditEvent
from riskwatch.models.enums import SecurityEventStatus, Severity
from riskwatch.models.security import SecurityEvent
from riskwatch.services.recorder import AuditRecorder
from riskwatch.services.store import AuditCriteria, SecurityEventCriteria

logger = logging.getLogger(__name__)

MONITORING_WINDOW = timedelta(hours=24)
MAX_SECURITY_EVENTS = 100
MAX_AUDIT_EVENTS = 1000

SEVERITY_WEIGHTS = {
    Severity.CRITICAL.value: 25,
    Severity.HIGH.value: 15,
    Severity.MEDIUM.value: 8,
    Severity.LOW.value: 3,
}
HIGH_RISK_SCORE = 70

FAILED_LOGIN_ALERT_THRESHOLD = 10
EXPORT_ALERT_THRESHOLD = 5
FAILURE_RATE_THRESHOLD = 0.1
DATA_ACCESS_SHARE_THRESHOLD = 0.3


@dataclass(frozen=True)
class SecurityAlert:
    type: str
    title: str
    description: Optional[str]
    severity: Severity
    timestamp: datetime
    action: str
    id: Optional[str] = None


@dataclass(frozen=True)
class SecurityOverview:
    active_threats: int = 0
    risk_score: int = 0
    alerts: List[SecurityAlert] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    degraded: bool = False


def _unresolved(event: SecurityEvent) -> bool:
    return event.status != SecurityEventStatus.RESOLVED


def _failed_logins(audit_events: Sequence[AuditEvent]) -> List[AuditEvent]:
    return [
        event for event in audit_events
        if event.action in (AuditAction.LOGIN, AuditAction.LOGIN_FAILED) and not event.success
    ]


def overall_risk_score(
    security_events: Sequence[SecurityEvent],
    audit_events: Sequence[AuditEvent]
) -> int:
    """Severity-weighted incident count plus capped failure and high-risk bonuses."""
    score = sum(SEVERITY_WEIGHTS.get(event.severity, 0) for event in security_events)
    failed = sum(1 for event in audit_events if not event.success)
    high_risk = sum(1 for event in audit_events if (event.risk_score or 0) > HIGH_RISK_SCORE)
    score += min(failed * 2, 20)
    score += min(high_risk * 3, 30)
    return min(score, 100)


def security_alerts(
    security_events: Sequence[SecurityEvent],
    audit_events: Sequence[AuditEvent],
    now: datetime
) -> List[SecurityAlert]:
    alerts = [
        SecurityAlert(
            id=event.id,
            type="critical_security_event",
            title=event.title,
            description=event.description,
            severity=Severity.CRITICAL,
            timestamp=event.created_at,
            action="immediate_attention_required"
        )
        for event in security_events
        if event.severity == Severity.CRITICAL.value and _unresolved(event)
    ]

    failed_logins = len(_failed_logins(audit_events))
    if failed_logins > FAILED_LOGIN_ALERT_THRESHOLD:
        alerts.append(SecurityAlert(
            type="multiple_failed_logins",
            title="Multiple Failed Login Attempts",
            description=f"{failed_logins} failed login attempts detected in the last 24 hours",
            severity=Severity.HIGH,
            timestamp=now,
            action="review_and_investigate"
        ))

    exports = sum(1 for event in audit_events if event.action == AuditAction.DATA_EXPORT)
    if exports > EXPORT_ALERT_THRESHOLD:
        alerts.append(SecurityAlert(
            type="unusual_data_access",
            title="Unusual Data Export Activity",
            description=f"{exports} data exports detected in the last 24 hours",
            severity=Severity.MEDIUM,
            timestamp=now,
            action="monitor_closely"
        ))

    return alerts


def security_recommendations(
    security_events: Sequence[SecurityEvent],
    audit_events: Sequence[AuditEvent]
) -> List[str]:
    recommendations = []

    if any(event.severity == Severity.CRITICAL.value and _unresolved(event) for event in security_events):
        recommendations.append("Immediately address all critical security events")

    total = len(audit_events)
    failed = sum(1 for event in audit_events if not event.success)
    if total and failed / total > FAILURE_RATE_THRESHOLD:
        recommendations.append(
            "Investigate high operation failure rate - may indicate system issues or attacks"
        )

    logins = sum(1 for event in audit_events if event.action == AuditAction.LOGIN and event.success)
    mfa = sum(1 for event in audit_events if event.action == AuditAction.MFA_VERIFIED)
    if logins > mfa * 2:
        recommendations.append("Enable multi-factor authentication for all users")

    data_access = sum(1 for event in audit_events if event.action.startswith(AuditAction.DATA_PREFIX))
    if data_access < total * DATA_ACCESS_SHARE_THRESHOLD:
        recommendations.append("Improve audit logging coverage for data access operations")

    return recommendations


class SecurityMonitor:
    """Combines recent security events and audit events into one overview."""

    def __init__(self, recorder: AuditRecorder, clock: Callable[[], datetime] = utcnow):
        self.recorder = recorder
        self.clock = clock

    def monitor_security_events(self, organization_id: Optional[str] = None) -> SecurityOverview:
        now = self.clock()
        since = now - MONITORING_WINDOW

        incidents = self.recorder.security_events_result(
            SecurityEventCriteria(organization_id=organization_id, start=since),
            limit=MAX_SECURITY_EVENTS
        )
        audit = self.recorder.query_result(
            AuditCriteria(organization_id=organization_id, start=since),
            limit=MAX_AUDIT_EVENTS
        )
        degraded = not (incidents.ok and audit.ok)
        if degraded:
            logger.warning("Security overview degraded: store unavailable")

        security_events = incidents.value or []
        audit_events = audit.value or []

        active_threats = sum(
            1 for event in security_events
            if _unresolved(event) and event.severity in (Severity.HIGH.value, Severity.CRITICAL.value)
        )
        return SecurityOverview(
            active_threats=active_threats,
            risk_score=overall_risk_score(security_events, audit_events),
            alerts=security_alerts(security_events, audit_events, now),
            recommendations=security_recommendations(security_events, audit_events),
            degraded=degraded
        )
