"""Retention policy: how long each class of audit event is kept."""
from datetime import datetime, timedelta

from riskwatch.models.audit import AuditAction

YEAR = timedelta(days=365)

RETENTION_BY_ACTION = {
    AuditAction.LOGIN: YEAR,
    AuditAction.LOGOUT: YEAR,
    AuditAction.DATA_DELETE: 7 * YEAR,
    AuditAction.DATA_EXPORT: 7 * YEAR,
    AuditAction.SECURITY_EVENT: 3 * YEAR,
}

DEFAULT_RETENTION = 2 * YEAR


def retention_for(action: str) -> timedelta:
    """Retention horizon for an action. Total: unknown actions get the default."""
    return RETENTION_BY_ACTION.get(action, DEFAULT_RETENTION)


def retention_until(action: str, created_at: datetime) -> datetime:
    return created_at + retention_for(action)
