"""
Security audit ledger model.

Audit events are the raw, append-only record of everything the engine
observes. Every other component reads from this table; only the recorder
writes to it.
"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, JSON, Index, event

from riskwatch.database import Base


class AuditEvent(Base):
    """
    Immutable record of one observed action.

    Invariants:
    - Once written, never edited (guarded by the before_update hook below)
    - retention_until is derived from action at creation and never recomputed
    - Deleted only by the retention sweep once now > retention_until
    """
    __tablename__ = "security_audit_events"

    id = Column(String, primary_key=True)
    action = Column(String, nullable=False, index=True)  # e.g. "DATA_EXPORT"
    resource = Column(String, nullable=False)
    resource_id = Column(String, nullable=True)
    user_id = Column(String, nullable=True, index=True)  # Nullable for system events
    organization_id = Column(String, nullable=True, index=True)
    session_id = Column(String, nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    endpoint = Column(String, nullable=True)
    method = Column(String, nullable=True)
    success = Column(Boolean, nullable=False, default=True)
    error_code = Column(String, nullable=True)
    error_message = Column(String, nullable=True)
    event_metadata = Column("metadata", JSON, nullable=True)  # Opaque, stored as given
    risk_score = Column(Integer, nullable=False, default=0)
    anomaly_flags = Column(JSON, nullable=False, default=list)
    compliance_flags = Column(JSON, nullable=False, default=list)
    retention_until = Column(DateTime, nullable=False, index=True)
    timestamp = Column(DateTime, nullable=False, index=True)

    __table_args__ = (
        Index("ix_security_audit_events_user_time", "user_id", "timestamp"),
    )


@event.listens_for(AuditEvent, "before_update")
def _refuse_audit_update(mapper, connection, target):
    raise ValueError(
        f"IMMUTABILITY VIOLATION: audit event {target.id} is append-only and cannot be updated"
    )


class AuditAction:
    """Action names the engine itself emits or interprets."""
    # Authentication
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    LOGIN_FAILED = "LOGIN_FAILED"
    MFA_SETUP = "MFA_SETUP"
    MFA_VERIFIED = "MFA_VERIFIED"
    PASSWORD_RESET = "PASSWORD_RESET"

    # Data access (DATA_ prefix + upper-cased verb)
    DATA_PREFIX = "DATA_"
    DATA_READ = "DATA_READ"
    DATA_CREATE = "DATA_CREATE"
    DATA_UPDATE = "DATA_UPDATE"
    DATA_DELETE = "DATA_DELETE"
    DATA_EXPORT = "DATA_EXPORT"

    # Privacy
    CONSENT_GIVEN = "CONSENT_GIVEN"
    CONSENT_WITHDRAWN = "CONSENT_WITHDRAWN"
    INTEGRITY_CHECK = "INTEGRITY_CHECK"

    # Correlation record for every SecurityEvent
    SECURITY_EVENT = "SECURITY_EVENT"

    # Privilege changes watched by threat detection
    ROLE_ASSIGN = "ROLE_ASSIGN"
    PERMISSION_GRANT = "PERMISSION_GRANT"
    USER_PROMOTE = "USER_PROMOTE"


class ComplianceFlag:
    """Frameworks an audit event is relevant to."""
    SOC2 = "SOC2"
    GDPR = "GDPR"
    HIPAA = "HIPAA"
