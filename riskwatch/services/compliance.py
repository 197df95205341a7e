"""
Compliance reporting over a period of audit events.

Analysis, scoring, findings and recommendations are plain functions of the
event set so a report regenerated for the same events is identical. Only
ComplianceReporter touches the store.
"""
import logging
import uuid
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from riskwatch.database import utcnow
from riskwatch.models.audit import AuditAction, AuditEvent
from riskwatch.models.enums import ReportStatus, ReportType, SecurityEventType
from riskwatch.models.metadata import SecurityEventMetadata, TransmissionMetadata, parse_metadata
from riskwatch.models.security import ComplianceReport
from riskwatch.services.cancellation import CancellationToken, checkpoint
from riskwatch.services.recorder import MAX_PAGE_SIZE, AuditRecorder
from riskwatch.services.risk import enum_value
from riskwatch.services.store import AuditCriteria, StoreFailure

logger = logging.getLogger(__name__)

DEFAULT_PERIOD = timedelta(days=30)
HIGH_RISK_SCORE = 70
AUDITABLE_ACTION_COUNT = 50  # Estimated distinct actions in the system
TOP_N = 10

LOGIN_FAILURE_RATE_LIMIT = 0.1
HIGH_RISK_EVENT_LIMIT = 10
PERSONAL_DATA_ACCESS_LIMIT = 1000

FINDING_LOGIN_FAILURE = "High login failure rate detected"
FINDING_HIGH_RISK = "Excessive high-risk events detected"
FINDING_BREACH = "Data breaches detected during reporting period"
FINDING_PERSONAL_DATA = "High volume of personal data access"

# Lowercase finding fragment -> recommendations, applied in order
RECOMMENDATION_TABLE = (
    ("login failure", (
        "Implement account lockout policies",
        "Enable multi-factor authentication",
    )),
    ("high-risk events", (
        "Investigate high-risk events and tune alerting thresholds",
    )),
    ("data breach", (
        "Review data encryption policies",
        "Implement data loss prevention controls",
    )),
    ("personal data access", (
        "Restrict access to personal data following data minimization principles",
    )),
)


def _rate(part: int, whole: int) -> float:
    return part / whole if whole else 0.0


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _risk(event: AuditEvent) -> int:
    return event.risk_score or 0


def _is_data_access(event: AuditEvent) -> bool:
    return event.action.startswith(AuditAction.DATA_PREFIX)


def access_controls(events: Sequence[AuditEvent]) -> Dict[str, Any]:
    logins = [event for event in events if AuditAction.LOGIN in event.action]
    failed = [event for event in logins if not event.success]
    return {
        "total_logins": len(logins),
        "failed_logins": len(failed),
        "failure_rate": _rate(len(failed), len(logins)),
        "unique_users": len({event.user_id for event in logins if event.user_id}),
    }


def system_operations(events: Sequence[AuditEvent]) -> Dict[str, Any]:
    succeeded = sum(1 for event in events if event.success)
    return {
        "total_operations": len(events),
        "successful_operations": succeeded,
        "failed_operations": len(events) - succeeded,
    }


def logical_access(events: Sequence[AuditEvent]) -> Dict[str, Any]:
    data_events = [event for event in events if _is_data_access(event)]
    return {
        "total_data_access": len(data_events),
        "data_reads": sum(1 for event in data_events if event.action == AuditAction.DATA_READ),
        "data_writes": sum(
            1 for event in data_events
            if "CREATE" in event.action or "UPDATE" in event.action
        ),
        "data_deletes": sum(1 for event in data_events if event.action == AuditAction.DATA_DELETE),
    }


def system_monitoring(events: Sequence[AuditEvent]) -> Dict[str, Any]:
    return {
        "total_events": len(events),
        "high_risk_events": sum(1 for event in events if _risk(event) > HIGH_RISK_SCORE),
        "average_risk_score": _mean([_risk(event) for event in events]),
    }


def data_processing(events: Sequence[AuditEvent]) -> Dict[str, Any]:
    data_events = [event for event in events if _is_data_access(event)]
    return {
        "total_data_processing": len(data_events),
        "personal_data_access": sum(1 for event in data_events if event.resource == "User"),
    }


def data_subject_rights(events: Sequence[AuditEvent]) -> Dict[str, Any]:
    return {
        "data_exports": sum(1 for event in events if event.action == AuditAction.DATA_EXPORT),
        "data_deletes": sum(1 for event in events if event.action == AuditAction.DATA_DELETE),
    }


def data_breaches(events: Sequence[AuditEvent]) -> Dict[str, Any]:
    breaches = []
    for event in events:
        if event.action != AuditAction.SECURITY_EVENT:
            continue
        meta = parse_metadata(SecurityEventMetadata, event.event_metadata)
        if meta.type and meta.type.upper() == SecurityEventType.DATA_BREACH.value:
            breaches.append({"timestamp": event.timestamp.isoformat(), "severity": meta.severity})
    return {"total_breaches": len(breaches), "breach_details": breaches}


def consent_management(events: Sequence[AuditEvent]) -> Dict[str, Any]:
    return {
        "consent_given": sum(1 for event in events if event.action == AuditAction.CONSENT_GIVEN),
        "consent_withdrawn": sum(1 for event in events if event.action == AuditAction.CONSENT_WITHDRAWN),
    }


def audit_controls(events: Sequence[AuditEvent]) -> Dict[str, Any]:
    distinct_actions = {event.action for event in events}
    return {
        "audit_log_count": len(events),
        "audit_coverage": len(distinct_actions) / AUDITABLE_ACTION_COUNT * 100,
    }


def integrity_controls(events: Sequence[AuditEvent]) -> Dict[str, Any]:
    return {
        "data_modifications": sum(
            1 for event in events
            if "UPDATE" in event.action or "DELETE" in event.action
        ),
        "integrity_checks": sum(1 for event in events if event.action == AuditAction.INTEGRITY_CHECK),
    }


def transmission_security(events: Sequence[AuditEvent]) -> Dict[str, Any]:
    return {
        "encrypted_transmissions": sum(
            1 for event in events
            if parse_metadata(TransmissionMetadata, event.event_metadata).encrypted
        ),
        "total_transmissions": sum(1 for event in events if "TRANSMISSION" in event.action),
    }


def _top(counts: Counter, key: str) -> List[Dict[str, Any]]:
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [{key: name, "count": count} for name, count in ranked[:TOP_N]]


def summary(events: Sequence[AuditEvent]) -> Dict[str, Any]:
    timestamps = sorted(event.timestamp for event in events)
    return {
        "total_events": len(events),
        "time_range": {
            "start": timestamps[0].isoformat() if timestamps else None,
            "end": timestamps[-1].isoformat() if timestamps else None,
        },
        "top_actions": _top(Counter(event.action for event in events), "action"),
        "top_users": _top(Counter(event.user_id for event in events if event.user_id), "user_id"),
    }


def risk_analysis(events: Sequence[AuditEvent]) -> Dict[str, Any]:
    scores = [_risk(event) for event in events]
    return {
        "average_risk_score": _mean(scores),
        "high_risk_events": sum(1 for score in scores if score > HIGH_RISK_SCORE),
        "risk_distribution": {
            "low": sum(1 for score in scores if score < 30),
            "medium": sum(1 for score in scores if 30 <= score < HIGH_RISK_SCORE),
            "high": sum(1 for score in scores if score >= HIGH_RISK_SCORE),
        },
    }


def analyze(report_type: Union[str, ReportType], events: Sequence[AuditEvent]) -> Dict[str, Any]:
    """Type-specific analysis of an event set; unknown types get the custom shape."""
    kind = _report_kind(report_type)
    if kind == ReportType.SOC2:
        return {
            "access_controls": access_controls(events),
            "system_operations": system_operations(events),
            "logical_access": logical_access(events),
            "system_monitoring": system_monitoring(events),
        }
    if kind == ReportType.GDPR:
        return {
            "data_processing": data_processing(events),
            "data_subject_rights": data_subject_rights(events),
            "data_breaches": data_breaches(events),
            "consent_management": consent_management(events),
        }
    if kind == ReportType.HIPAA:
        return {
            "access_controls": access_controls(events),
            "audit_controls": audit_controls(events),
            "integrity_controls": integrity_controls(events),
            "transmission_security": transmission_security(events),
        }
    return {
        "summary": summary(events),
        "risk_analysis": risk_analysis(events),
    }


def _section_value(data: Dict[str, Any], section: str, key: str) -> float:
    return (data.get(section) or {}).get(key) or 0


def compliance_score(report_type: Union[str, ReportType], data: Dict[str, Any]) -> int:
    """Start at 100 and deduct for each threshold breached; never below 0."""
    kind = _report_kind(report_type)
    score = 100
    if kind == ReportType.SOC2:
        if _section_value(data, "access_controls", "failure_rate") > LOGIN_FAILURE_RATE_LIMIT:
            score -= 20
        if _section_value(data, "system_monitoring", "high_risk_events") > HIGH_RISK_EVENT_LIMIT:
            score -= 15
    elif kind == ReportType.GDPR:
        if _section_value(data, "data_breaches", "total_breaches") > 0:
            score -= 30
        if _section_value(data, "data_processing", "personal_data_access") > PERSONAL_DATA_ACCESS_LIMIT:
            score -= 10
    return max(score, 0)


def extract_findings(report_type: Union[str, ReportType], data: Dict[str, Any]) -> List[str]:
    """One finding per score deduction, in deduction order."""
    kind = _report_kind(report_type)
    findings = []
    if kind == ReportType.SOC2:
        if _section_value(data, "access_controls", "failure_rate") > LOGIN_FAILURE_RATE_LIMIT:
            findings.append(FINDING_LOGIN_FAILURE)
        if _section_value(data, "system_monitoring", "high_risk_events") > HIGH_RISK_EVENT_LIMIT:
            findings.append(FINDING_HIGH_RISK)
    elif kind == ReportType.GDPR:
        if _section_value(data, "data_breaches", "total_breaches") > 0:
            findings.append(FINDING_BREACH)
        if _section_value(data, "data_processing", "personal_data_access") > PERSONAL_DATA_ACCESS_LIMIT:
            findings.append(FINDING_PERSONAL_DATA)
    return findings


def recommendations_for(findings: Sequence[str]) -> List[str]:
    recommendations = []
    for finding in findings:
        lowered = finding.lower()
        for fragment, advice in RECOMMENDATION_TABLE:
            if fragment in lowered:
                recommendations.extend(advice)
    return list(dict.fromkeys(recommendations))


def _report_kind(report_type: Union[str, ReportType]) -> ReportType:
    try:
        return ReportType(enum_value(report_type))
    except ValueError:
        return ReportType.CUSTOM


class ComplianceReporter:
    """Generates and persists compliance reports from the audit ledger."""

    def __init__(self, recorder: AuditRecorder, clock: Callable[[], datetime] = utcnow):
        self.recorder = recorder
        self.clock = clock

    def generate(
        self,
        report_type: Union[str, ReportType],
        organization_id: Optional[str] = None,
        period_start: Optional[datetime] = None,
        period_end: Optional[datetime] = None,
        cancel: Optional[CancellationToken] = None
    ) -> Optional[str]:
        """
        Build and store one report. Returns its id, or None if it could not
        be stored.

        A failed event pull is logged and the report is built from an empty
        event set. Cancellation raises OperationCancelled before anything is
        written.
        """
        report_type = enum_value(report_type)
        period_end = period_end or self.clock()
        period_start = period_start or period_end - DEFAULT_PERIOD

        checkpoint(cancel, "collect_events")
        result = self.recorder.query_result(
            AuditCriteria(organization_id=organization_id, start=period_start, end=period_end),
            limit=MAX_PAGE_SIZE
        )
        if not result.ok:
            logger.warning("Compliance report %s built without events: audit store unavailable", report_type)
        events = result.value or []

        checkpoint(cancel, "analyze")
        data = analyze(report_type, events)
        findings = extract_findings(report_type, data)

        checkpoint(cancel, "persist")
        report = ComplianceReport(
            id=str(uuid.uuid4()),
            type=report_type,
            title=f"{report_type} Compliance Report",
            description=(
                f"Compliance report for {report_type} generated for period "
                f"{period_start.isoformat()} to {period_end.isoformat()}"
            ),
            organization_id=organization_id,
            period_start=period_start,
            period_end=period_end,
            data=data,
            status=ReportStatus.COMPLETED,
            compliance_score=compliance_score(report_type, data),
            findings=findings,
            recommendations=recommendations_for(findings),
            generated_at=self.clock()
        )
        try:
            report_id = self.recorder.store.append_compliance_report(report)
        except StoreFailure as exc:
            logger.error("Error generating compliance report %s", report_type, exc_info=exc)
            return None

        logger.info(
            "Compliance report %s (%s) generated from %d events, score %d",
            report_id, report_type, len(events), report.compliance_score
        )
        return report_id

    def get(self, report_id: str) -> Optional[ComplianceReport]:
        try:
            return self.recorder.store.get_compliance_report(report_id)
        except StoreFailure as exc:
            logger.error("Error loading compliance report %s", report_id, exc_info=exc)
            return None

    def find(
        self,
        organization_id: Optional[str] = None,
        report_type: Optional[str] = None,
        limit: int = 100
    ) -> List[ComplianceReport]:
        try:
            return self.recorder.store.find_compliance_reports(organization_id, report_type, limit)
        except StoreFailure as exc:
            logger.error("Error listing compliance reports", exc_info=exc)
            return []
