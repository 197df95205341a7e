"""
Audit recorder: the single write path into the audit ledger.

Audit logging must never break the operation it observes, so store failures
are logged and handed back as values rather than raised.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from riskwatch.database import utcnow
from riskwatch.models.audit import AuditAction, AuditEvent, ComplianceFlag
from riskwatch.models.enums import DataVerb, SecurityEventCategory, SecurityEventStatus, SecurityEventType, Severity
from riskwatch.models.security import SecurityEvent
from riskwatch.services.oracles import MaliciousIpOracle, StaticThreatIntel
from riskwatch.services.retention import retention_until
from riskwatch.services.risk import (
    auth_risk_score,
    data_access_risk_score,
    enum_value,
    security_event_risk_score,
)
from riskwatch.services.store import (
    AuditCriteria,
    AuditStore,
    SecurityEventCriteria,
    StoreFailure,
    StoreResult,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 10000

AUTH_COMPLIANCE_FLAGS = (ComplianceFlag.SOC2, ComplianceFlag.GDPR)
DATA_ACCESS_COMPLIANCE_FLAGS = (ComplianceFlag.GDPR, ComplianceFlag.HIPAA, ComplianceFlag.SOC2)

SECURITY_EVENT_CATEGORIES = {
    SecurityEventType.SUSPICIOUS_LOGIN: SecurityEventCategory.AUTHENTICATION,
    SecurityEventType.BRUTE_FORCE: SecurityEventCategory.AUTHENTICATION,
    SecurityEventType.MFA_BYPASS: SecurityEventCategory.AUTHENTICATION,
    SecurityEventType.PRIVILEGE_ESCALATION: SecurityEventCategory.AUTHORIZATION,
    SecurityEventType.UNAUTHORIZED_ACCESS: SecurityEventCategory.AUTHORIZATION,
    SecurityEventType.DATA_BREACH: SecurityEventCategory.DATA_ACCESS,
    SecurityEventType.DATA_EXFILTRATION: SecurityEventCategory.DATA_ACCESS,
    SecurityEventType.MALWARE_DETECTED: SecurityEventCategory.SYSTEM,
    SecurityEventType.SYSTEM_COMPROMISE: SecurityEventCategory.SYSTEM,
}


def categorize_security_event(event_type: Union[str, SecurityEventType]) -> SecurityEventCategory:
    """
    Category for a security event type.

    Lookup is case-insensitive; unknown types fall into the system category.
    """
    try:
        known = SecurityEventType(enum_value(event_type).upper())
    except ValueError:
        return SecurityEventCategory.SYSTEM
    return SECURITY_EVENT_CATEGORIES[known]


@dataclass(frozen=True)
class RequestContext:
    """Caller transport details, supplied as plain fields."""
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    session_id: Optional[str] = None
    endpoint: Optional[str] = None
    method: Optional[str] = None


class AuditRecorder:
    """Appends audit and security events and answers filtered queries."""

    def __init__(
        self,
        store: AuditStore,
        threat_intel: Optional[MaliciousIpOracle] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.store = store
        self.threat_intel = threat_intel or StaticThreatIntel()
        self.clock = clock

    def record(
        self,
        action: str,
        resource: str,
        resource_id: Optional[str] = None,
        user_id: Optional[str] = None,
        organization_id: Optional[str] = None,
        session_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        endpoint: Optional[str] = None,
        method: Optional[str] = None,
        success: bool = True,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        risk_score: int = 0,
        anomaly_flags: Iterable[str] = (),
        compliance_flags: Iterable[str] = ()
    ) -> StoreResult[str]:
        """
        Append one audit event.

        Retention is derived from the action here, once, from the same
        timestamp the event is stamped with.
        """
        now = self.clock()
        event = AuditEvent(
            id=str(uuid.uuid4()),
            action=action,
            resource=resource,
            resource_id=resource_id,
            user_id=user_id,
            organization_id=organization_id,
            session_id=session_id,
            ip_address=ip_address,
            user_agent=user_agent,
            endpoint=endpoint,
            method=method,
            success=success,
            error_code=error_code,
            error_message=error_message,
            event_metadata=dict(metadata) if metadata else None,
            risk_score=risk_score,
            anomaly_flags=sorted(set(anomaly_flags)),
            compliance_flags=sorted(set(compliance_flags)),
            retention_until=retention_until(action, now),
            timestamp=now
        )
        try:
            return StoreResult(value=self.store.append_audit_event(event))
        except StoreFailure as exc:
            logger.error("Error logging audit event %s", action, exc_info=exc)
            return StoreResult(error=exc)

    def log(self, action: str, resource: str, **fields: Any) -> Optional[str]:
        """Append one audit event; None if the store failed."""
        return self.record(action, resource, **fields).value

    def query_result(
        self,
        criteria: Optional[AuditCriteria] = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0
    ) -> StoreResult[List[AuditEvent]]:
        """Audit events matching criteria, newest first, page size capped."""
        limit = max(0, min(limit, MAX_PAGE_SIZE))
        try:
            events = self.store.find_audit_events(criteria or AuditCriteria(), limit, max(offset, 0))
            return StoreResult(value=events)
        except StoreFailure as exc:
            logger.error("Error querying audit events", exc_info=exc)
            return StoreResult(error=exc)

    def query(
        self,
        criteria: Optional[AuditCriteria] = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0
    ) -> List[AuditEvent]:
        """Audit events matching criteria; empty if the store failed."""
        return self.query_result(criteria, limit, offset).value or []

    def log_auth(
        self,
        action: str,
        user_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        request: Optional[RequestContext] = None,
        organization_id: Optional[str] = None
    ) -> Optional[str]:
        """Record an authentication event (LOGIN, LOGIN_FAILED, MFA_SETUP, ...)."""
        request = request or RequestContext()
        return self.log(
            action,
            "Authentication",
            user_id=user_id,
            organization_id=organization_id,
            session_id=request.session_id,
            ip_address=request.ip,
            user_agent=request.user_agent,
            endpoint=request.endpoint,
            method=request.method,
            success=action != AuditAction.LOGIN_FAILED,
            metadata=metadata,
            risk_score=auth_risk_score(
                action,
                metadata,
                known_malicious_ip=self._is_known_malicious_ip(request.ip)
            ),
            compliance_flags=AUTH_COMPLIANCE_FLAGS
        )

    def log_data_access(
        self,
        verb: Union[str, DataVerb],
        resource: str,
        resource_id: str,
        user_id: str,
        organization_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Optional[str]:
        """Record a data-access event as DATA_<VERB>."""
        return self.log(
            f"{AuditAction.DATA_PREFIX}{enum_value(verb).upper()}",
            resource,
            resource_id=resource_id,
            user_id=user_id,
            organization_id=organization_id,
            metadata=metadata,
            risk_score=data_access_risk_score(verb, resource, metadata),
            compliance_flags=DATA_ACCESS_COMPLIANCE_FLAGS
        )

    def log_security_event(
        self,
        event_type: Union[str, SecurityEventType],
        severity: Union[str, Severity],
        title: str,
        description: Optional[str] = None,
        user_id: Optional[str] = None,
        organization_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Optional[str]:
        """
        Record a detected incident and its correlated SECURITY_EVENT audit record.

        The two appends are not transactional: a reader running between them
        can see the incident before its audit record. Returns the incident id,
        or None if the incident itself could not be stored.
        """
        event_type = enum_value(event_type)
        severity = enum_value(severity)
        risk_score = security_event_risk_score(event_type, severity)

        incident = SecurityEvent(
            id=str(uuid.uuid4()),
            type=event_type,
            severity=severity,
            category=categorize_security_event(event_type).value,
            title=title,
            description=description,
            user_id=user_id,
            organization_id=organization_id,
            detected_by="system",
            risk_score=risk_score,
            status=SecurityEventStatus.OPEN,
            event_metadata=dict(metadata) if metadata else None,
            created_at=self.clock()
        )
        try:
            incident_id = self.store.append_security_event(incident)
        except StoreFailure as exc:
            logger.error("Error logging security event %s", event_type, exc_info=exc)
            return None

        self.log(
            AuditAction.SECURITY_EVENT,
            "SecurityEvent",
            resource_id=incident_id,
            user_id=user_id,
            organization_id=organization_id,
            metadata={"type": event_type, "severity": severity, "title": title},
            risk_score=risk_score
        )
        return incident_id

    def security_events_result(
        self,
        criteria: Optional[SecurityEventCriteria] = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0
    ) -> StoreResult[List[SecurityEvent]]:
        limit = max(0, min(limit, MAX_PAGE_SIZE))
        try:
            events = self.store.find_security_events(
                criteria or SecurityEventCriteria(), limit, max(offset, 0)
            )
            return StoreResult(value=events)
        except StoreFailure as exc:
            logger.error("Error querying security events", exc_info=exc)
            return StoreResult(error=exc)

    def find_security_events(
        self,
        criteria: Optional[SecurityEventCriteria] = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0
    ) -> List[SecurityEvent]:
        return self.security_events_result(criteria, limit, offset).value or []

    def purge_expired(self) -> StoreResult[int]:
        """Retention sweep: delete audit events whose retention has lapsed."""
        try:
            deleted = self.store.delete_expired_audit_events(self.clock())
        except StoreFailure as exc:
            logger.error("Error purging expired audit events", exc_info=exc)
            return StoreResult(error=exc)
        logger.info("Purged %d expired audit events", deleted)
        return StoreResult(value=deleted)

    def _is_known_malicious_ip(self, ip: Optional[str]) -> bool:
        if not ip:
            return False
        try:
            return self.threat_intel.is_known_malicious_ip(ip)
        except Exception:  # noqa: BLE001 - oracle is an arbitrary collaborator
            logger.warning("Threat intel lookup failed for %s; scoring as not malicious", ip, exc_info=True)
            return False
