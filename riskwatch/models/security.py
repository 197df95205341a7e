"""Models for detected incidents and the reports derived from the audit ledger."""
from sqlalchemy import Column, String, Integer, Float, DateTime, JSON, Enum as SQLEnum

from riskwatch.database import Base, utcnow
from riskwatch.models.enums import SecurityEventStatus, ReportStatus


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class SecurityEvent(Base):
    """
    A detected incident, distinct from a raw audit event.

    Invariants:
    - category is derived from type through a fixed lookup
    - Always accompanied by an AuditEvent with action SECURITY_EVENT whose
      resource_id is this event's id
    - status is owned by case management; the engine only filters on it
    """
    __tablename__ = "security_events"

    id = Column(String, primary_key=True)
    type = Column(String, nullable=False, index=True)  # e.g. "BRUTE_FORCE", "brute_force"
    severity = Column(String, nullable=False, index=True)
    category = Column(String, nullable=False)
    title = Column(String, nullable=False)
    description = Column(String, nullable=True)
    user_id = Column(String, nullable=True, index=True)
    organization_id = Column(String, nullable=True, index=True)
    detected_by = Column(String, nullable=False, default="system")
    risk_score = Column(Integer, nullable=False, default=0)
    status = Column(SQLEnum(SecurityEventStatus, values_callable=_enum_values), nullable=False, default=SecurityEventStatus.OPEN)
    event_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)


class ComplianceReport(Base):
    """
    Point-in-time compliance analysis.

    Invariants:
    - compliance_score, findings and recommendations are pure functions of data
    - Written once with status completed; there is no partial report state
    """
    __tablename__ = "compliance_reports"

    id = Column(String, primary_key=True)
    type = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(String, nullable=True)
    organization_id = Column(String, nullable=True, index=True)
    period_start = Column(DateTime, nullable=False)
    period_end = Column(DateTime, nullable=False)
    data = Column(JSON, nullable=False)
    status = Column(SQLEnum(ReportStatus, values_callable=_enum_values), nullable=False, default=ReportStatus.COMPLETED)
    compliance_score = Column(Integer, nullable=False)
    findings = Column(JSON, nullable=False, default=list)
    recommendations = Column(JSON, nullable=False, default=list)
    generated_at = Column(DateTime, nullable=False, default=utcnow)


class SecurityScanResult(Base):
    """Traceability shell for one vulnerability assessment run."""
    __tablename__ = "security_scan_results"

    id = Column(String, primary_key=True)
    scan_type = Column(String, nullable=False)
    target = Column(String, nullable=False)  # organization id or "system"
    title = Column(String, nullable=False)
    description = Column(String, nullable=True)
    finding_count = Column(Integer, nullable=False, default=0)
    risk_score = Column(Float, nullable=False, default=0)
    status = Column(String, nullable=False, default="open")
    created_at = Column(DateTime, nullable=False, default=utcnow)
