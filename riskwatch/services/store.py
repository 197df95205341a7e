"""
Store port and its SQLAlchemy implementation.

The engine only ever appends audit events and queries them back; the store
interface is kept that narrow so a different backend can be dropped in.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Generic, List, Optional, Protocol, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session

from riskwatch.models.audit import AuditEvent
from riskwatch.models.enums import SecurityEventStatus
from riskwatch.models.security import ComplianceReport, SecurityEvent, SecurityScanResult

T = TypeVar("T")


class StoreFailure(Exception):
    """The durable append or query failed."""

    def __init__(self, operation: str, message: Optional[str] = None):
        self.operation = operation
        self.message = message or f"Store operation failed: {operation}"
        super().__init__(self.message)


@dataclass(frozen=True)
class StoreResult(Generic[T]):
    """Value of a store call, or the failure that prevented it."""
    value: Optional[T] = None
    error: Optional[StoreFailure] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class AuditCriteria:
    """Filter over audit events. Unset fields do not filter."""
    user_id: Optional[str] = None
    organization_id: Optional[str] = None
    action: Optional[str] = None  # Substring match
    resource: Optional[str] = None  # Exact match
    success: Optional[bool] = None
    ip_address: Optional[str] = None
    start: Optional[datetime] = None  # Inclusive
    end: Optional[datetime] = None  # Inclusive
    risk_score_min: Optional[int] = None
    risk_score_max: Optional[int] = None


@dataclass(frozen=True)
class SecurityEventCriteria:
    """Filter over security events. Unset fields do not filter."""
    type: Optional[str] = None
    severity: Optional[str] = None
    status: Optional[str] = None
    user_id: Optional[str] = None
    organization_id: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None


class AuditStore(Protocol):
    """Durable append/query store consumed by the engine."""

    def append_audit_event(self, event: AuditEvent) -> str:
        """Persist an audit event and return its id.

        Raises:
            StoreFailure: If the event could not be made durable.
        """
        ...

    def find_audit_events(
        self,
        criteria: AuditCriteria,
        limit: int,
        offset: int = 0
    ) -> List[AuditEvent]:
        """Audit events matching criteria, newest first."""
        ...

    def count_audit_events(self, criteria: AuditCriteria) -> int:
        ...

    def delete_expired_audit_events(self, now: datetime) -> int:
        """Delete events whose retention has lapsed. Returns the number deleted."""
        ...

    def append_security_event(self, event: SecurityEvent) -> str:
        ...

    def find_security_events(
        self,
        criteria: SecurityEventCriteria,
        limit: int,
        offset: int = 0
    ) -> List[SecurityEvent]:
        """Security events matching criteria, newest first."""
        ...

    def append_compliance_report(self, report: ComplianceReport) -> str:
        ...

    def get_compliance_report(self, report_id: str) -> Optional[ComplianceReport]:
        ...

    def find_compliance_reports(
        self,
        organization_id: Optional[str] = None,
        report_type: Optional[str] = None,
        limit: int = 100
    ) -> List[ComplianceReport]:
        ...

    def append_scan_result(self, scan: SecurityScanResult) -> str:
        ...


class SqlAlchemyAuditStore:
    """AuditStore backed by a SQLAlchemy session."""

    def __init__(self, db: Session):
        self.db = db

    def append_audit_event(self, event: AuditEvent) -> str:
        return self._append(event, "append_audit_event")

    def find_audit_events(
        self,
        criteria: AuditCriteria,
        limit: int,
        offset: int = 0
    ) -> List[AuditEvent]:
        try:
            return self._audit_query(criteria).order_by(
                AuditEvent.timestamp.desc(),
                AuditEvent.id.desc()
            ).offset(offset).limit(limit).all()
        except SQLAlchemyError as exc:
            raise StoreFailure("find_audit_events") from exc

    def count_audit_events(self, criteria: AuditCriteria) -> int:
        try:
            return self._audit_query(criteria).count()
        except SQLAlchemyError as exc:
            raise StoreFailure("count_audit_events") from exc

    def delete_expired_audit_events(self, now: datetime) -> int:
        try:
            deleted = self.db.query(AuditEvent).filter(
                AuditEvent.retention_until < now
            ).delete(synchronize_session=False)
            self.db.commit()
            return deleted
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreFailure("delete_expired_audit_events") from exc

    def append_security_event(self, event: SecurityEvent) -> str:
        return self._append(event, "append_security_event")

    def find_security_events(
        self,
        criteria: SecurityEventCriteria,
        limit: int,
        offset: int = 0
    ) -> List[SecurityEvent]:
        try:
            query = self.db.query(SecurityEvent)
            if criteria.type:
                query = query.filter(SecurityEvent.type == criteria.type)
            if criteria.severity:
                query = query.filter(SecurityEvent.severity == criteria.severity)
            if criteria.status:
                try:
                    wanted = SecurityEventStatus(criteria.status)
                except ValueError:
                    # No incident can carry an unknown status
                    return []
                query = query.filter(SecurityEvent.status == wanted)
            if criteria.user_id:
                query = query.filter(SecurityEvent.user_id == criteria.user_id)
            if criteria.organization_id:
                query = query.filter(SecurityEvent.organization_id == criteria.organization_id)
            if criteria.start:
                query = query.filter(SecurityEvent.created_at >= criteria.start)
            if criteria.end:
                query = query.filter(SecurityEvent.created_at <= criteria.end)
            return query.order_by(
                SecurityEvent.created_at.desc(),
                SecurityEvent.id.desc()
            ).offset(offset).limit(limit).all()
        except SQLAlchemyError as exc:
            raise StoreFailure("find_security_events") from exc

    def append_compliance_report(self, report: ComplianceReport) -> str:
        return self._append(report, "append_compliance_report")

    def get_compliance_report(self, report_id: str) -> Optional[ComplianceReport]:
        try:
            return self.db.query(ComplianceReport).filter(ComplianceReport.id == report_id).first()
        except SQLAlchemyError as exc:
            raise StoreFailure("get_compliance_report") from exc

    def find_compliance_reports(
        self,
        organization_id: Optional[str] = None,
        report_type: Optional[str] = None,
        limit: int = 100
    ) -> List[ComplianceReport]:
        try:
            query = self.db.query(ComplianceReport)
            if organization_id:
                query = query.filter(ComplianceReport.organization_id == organization_id)
            if report_type:
                query = query.filter(ComplianceReport.type == report_type)
            return query.order_by(ComplianceReport.generated_at.desc()).limit(limit).all()
        except SQLAlchemyError as exc:
            raise StoreFailure("find_compliance_reports") from exc

    def append_scan_result(self, scan: SecurityScanResult) -> str:
        return self._append(scan, "append_scan_result")

    def _append(self, record, operation: str) -> str:
        try:
            self.db.add(record)
            self.db.commit()
            return record.id
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreFailure(operation) from exc

    def _audit_query(self, criteria: AuditCriteria) -> Query:
        query = self.db.query(AuditEvent)

        if criteria.user_id:
            query = query.filter(AuditEvent.user_id == criteria.user_id)
        if criteria.organization_id:
            query = query.filter(AuditEvent.organization_id == criteria.organization_id)
        if criteria.action:
            query = query.filter(AuditEvent.action.contains(criteria.action, autoescape=True))
        if criteria.resource:
            query = query.filter(AuditEvent.resource == criteria.resource)
        if criteria.success is not None:
            query = query.filter(AuditEvent.success == criteria.success)
        if criteria.ip_address:
            query = query.filter(AuditEvent.ip_address == criteria.ip_address)
        if criteria.start:
            query = query.filter(AuditEvent.timestamp >= criteria.start)
        if criteria.end:
            query = query.filter(AuditEvent.timestamp <= criteria.end)
        if criteria.risk_score_min is not None:
            query = query.filter(AuditEvent.risk_score >= criteria.risk_score_min)
        if criteria.risk_score_max is not None:
            query = query.filter(AuditEvent.risk_score <= criteria.risk_score_max)

        return query
