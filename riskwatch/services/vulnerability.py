"""
Periodic vulnerability assessment.

Five independent checks read the identity store; each returns a finding or
None. A check whose source fails is skipped and logged so the rest of the
assessment still completes.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Protocol

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from riskwatch.database import utcnow
from riskwatch.models.enums import Severity
from riskwatch.models.identity import EncryptedField, MfaDevice, User, UserSecurityRole, UserSession
from riskwatch.models.security import SecurityScanResult
from riskwatch.services.cancellation import CancellationToken, checkpoint
from riskwatch.services.store import AuditStore, StoreFailure

logger = logging.getLogger(__name__)

MFA_COVERAGE_TARGET = 80.0  # Percent
MAX_ROLES_PER_USER = 3
STALE_SESSION_AGE = timedelta(days=30)
STALE_SESSION_THRESHOLD = 5
WEAK_PASSWORD_STRENGTH = 3  # Scores below this are weak

STANDING_RECOMMENDATIONS = (
    "Conduct regular security assessments",
    "Implement security awareness training for all users",
    "Keep all systems and dependencies up to date",
)


class IdentityDirectory(Protocol):
    """Read-only view of the identity store."""

    def count_users(self, organization_id: Optional[str]) -> int:
        ...

    def count_users_with_verified_mfa(self, organization_id: Optional[str]) -> int:
        ...

    def count_users_with_roles_over(self, threshold: int, organization_id: Optional[str]) -> int:
        ...

    def count_sessions_idle_since(self, cutoff: datetime, organization_id: Optional[str]) -> int:
        ...

    def count_encrypted_fields(self, organization_id: Optional[str]) -> int:
        ...


class CredentialStrengthSource(Protocol):
    """Organization-specific source of weak-credential counts."""

    def count_weak_credentials(self, organization_id: Optional[str]) -> int:
        ...


class SqlAlchemyIdentityDirectory:
    """IdentityDirectory and CredentialStrengthSource over the identity tables."""

    def __init__(self, db: Session):
        self.db = db

    def count_users(self, organization_id: Optional[str]) -> int:
        return self._count("count_users", self._users(organization_id))

    def count_users_with_verified_mfa(self, organization_id: Optional[str]) -> int:
        query = self._scoped(
            self.db.query(func.count(func.distinct(MfaDevice.user_id)))
            .select_from(MfaDevice)
            .join(User, User.id == MfaDevice.user_id)
            .filter(MfaDevice.verified.is_(True)),
            organization_id
        )
        return self._scalar("count_users_with_verified_mfa", query)

    def count_users_with_roles_over(self, threshold: int, organization_id: Optional[str]) -> int:
        over = self._scoped(
            self.db.query(UserSecurityRole.user_id)
            .join(User, User.id == UserSecurityRole.user_id)
            .group_by(UserSecurityRole.user_id)
            .having(func.count(UserSecurityRole.role_id) > threshold),
            organization_id
        )
        return self._count("count_users_with_roles_over", over)

    def count_sessions_idle_since(self, cutoff: datetime, organization_id: Optional[str]) -> int:
        query = self._scoped(
            self.db.query(UserSession)
            .join(User, User.id == UserSession.user_id)
            .filter(UserSession.last_active_at < cutoff),
            organization_id
        )
        return self._count("count_sessions_idle_since", query)

    def count_encrypted_fields(self, organization_id: Optional[str]) -> int:
        query = self.db.query(EncryptedField)
        if organization_id:
            query = query.filter(EncryptedField.organization_id == organization_id)
        return self._count("count_encrypted_fields", query)

    def count_weak_credentials(self, organization_id: Optional[str]) -> int:
        query = self._users(organization_id).filter(User.password_strength < WEAK_PASSWORD_STRENGTH)
        return self._count("count_weak_credentials", query)

    def _users(self, organization_id: Optional[str]):
        return self._scoped(self.db.query(User), organization_id)

    @staticmethod
    def _scoped(query, organization_id: Optional[str]):
        if organization_id:
            query = query.filter(User.organization_id == organization_id)
        return query

    def _count(self, operation: str, query) -> int:
        try:
            return query.count()
        except SQLAlchemyError as exc:
            raise StoreFailure(operation) from exc

    def _scalar(self, operation: str, query) -> int:
        try:
            return query.scalar() or 0
        except SQLAlchemyError as exc:
            raise StoreFailure(operation) from exc


@dataclass(frozen=True)
class VulnerabilityFinding:
    type: str
    severity: Severity
    title: str
    description: str
    risk_score: float
    recommendation: str
    evidence: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class VulnerabilityAssessment:
    scan_id: str
    vulnerabilities: List[VulnerabilityFinding]
    risk_score: float
    recommendations: List[str]
    skipped_checks: List[str] = field(default_factory=list)


def recommendations_for(findings: List[VulnerabilityFinding]) -> List[str]:
    """Each finding's recommendation once, in order, then the standing advice."""
    recommendations = [finding.recommendation for finding in findings]
    if findings:
        recommendations.extend(STANDING_RECOMMENDATIONS)
    return list(dict.fromkeys(recommendations))


class VulnerabilityScanner:
    """Runs the vulnerability checks and records a scan result shell."""

    def __init__(
        self,
        store: AuditStore,
        directory: IdentityDirectory,
        credentials: Optional[CredentialStrengthSource] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.store = store
        self.directory = directory
        self.credentials = credentials
        self.clock = clock
        self._checks = [
            ("weak_passwords", self.check_weak_passwords),
            ("mfa_coverage", self.check_mfa_coverage),
            ("excessive_permissions", self.check_excessive_permissions),
            ("stale_sessions", self.check_stale_sessions),
            ("field_encryption", self.check_field_encryption),
        ]

    def assess(
        self,
        organization_id: Optional[str] = None,
        cancel: Optional[CancellationToken] = None
    ) -> VulnerabilityAssessment:
        logger.info("Vulnerability assessment started for %s", organization_id or "system")
        findings: List[VulnerabilityFinding] = []
        skipped: List[str] = []

        for name, check in self._checks:
            checkpoint(cancel, name)
            try:
                finding = check(organization_id)
            except StoreFailure as exc:
                logger.warning("Vulnerability check %s skipped: %s", name, exc.message)
                skipped.append(name)
                continue
            if finding is not None:
                findings.append(finding)

        risk_score = min(sum(finding.risk_score for finding in findings), 100)
        scan_id = self._record_scan(organization_id, findings, risk_score)

        logger.info(
            "Vulnerability assessment %s finished: %d findings, risk %.1f",
            scan_id, len(findings), risk_score
        )
        return VulnerabilityAssessment(
            scan_id=scan_id,
            vulnerabilities=findings,
            risk_score=risk_score,
            recommendations=recommendations_for(findings),
            skipped_checks=skipped
        )

    def check_weak_passwords(self, organization_id: Optional[str]) -> Optional[VulnerabilityFinding]:
        if self.credentials is None:
            return None
        weak = self.credentials.count_weak_credentials(organization_id)
        if weak <= 0:
            return None
        return VulnerabilityFinding(
            type="weak_passwords",
            severity=Severity.MEDIUM,
            title="Weak Passwords Detected",
            description=f"{weak} users have weak passwords",
            risk_score=weak * 10,
            recommendation="Enforce stronger password policies and require password updates",
            evidence={"affected_users": weak}
        )

    def check_mfa_coverage(self, organization_id: Optional[str]) -> Optional[VulnerabilityFinding]:
        total = self.directory.count_users(organization_id)
        with_mfa = self.directory.count_users_with_verified_mfa(organization_id)
        coverage = (with_mfa / total) * 100 if total > 0 else 100.0

        if coverage >= MFA_COVERAGE_TARGET:
            return None
        return VulnerabilityFinding(
            type="insufficient_mfa",
            severity=Severity.HIGH,
            title="Insufficient MFA Coverage",
            description=f"Only {coverage:.1f}% of users have MFA enabled",
            risk_score=50 - coverage / 2,
            recommendation="Require MFA for all users, especially those with elevated privileges",
            evidence={"mfa_percentage": coverage, "total_users": total}
        )

    def check_excessive_permissions(self, organization_id: Optional[str]) -> Optional[VulnerabilityFinding]:
        over = self.directory.count_users_with_roles_over(MAX_ROLES_PER_USER, organization_id)
        if over <= 0:
            return None
        return VulnerabilityFinding(
            type="excessive_permissions",
            severity=Severity.MEDIUM,
            title="Users with Excessive Permissions",
            description=f"{over} users have more than {MAX_ROLES_PER_USER} security roles",
            risk_score=over * 5,
            recommendation="Review and reduce user permissions following principle of least privilege",
            evidence={"affected_users": over}
        )

    def check_stale_sessions(self, organization_id: Optional[str]) -> Optional[VulnerabilityFinding]:
        stale = self.directory.count_sessions_idle_since(self.clock() - STALE_SESSION_AGE, organization_id)
        if stale <= STALE_SESSION_THRESHOLD:
            return None
        return VulnerabilityFinding(
            type="outdated_sessions",
            severity=Severity.LOW,
            title="Outdated Sessions Detected",
            description=f"{stale} sessions haven't been used in over {STALE_SESSION_AGE.days} days",
            risk_score=stale * 2,
            recommendation="Implement automatic session cleanup and shorter session timeouts",
            evidence={"outdated_sessions": stale}
        )

    def check_field_encryption(self, organization_id: Optional[str]) -> Optional[VulnerabilityFinding]:
        if self.directory.count_encrypted_fields(organization_id) > 0:
            return None
        return VulnerabilityFinding(
            type="unencrypted_sensitive_data",
            severity=Severity.HIGH,
            title="No Field-Level Encryption Configured",
            description="Sensitive data fields are not encrypted at rest",
            risk_score=40,
            recommendation="Implement field-level encryption for sensitive data like PII and financial information"
        )

    def _record_scan(
        self,
        organization_id: Optional[str],
        findings: List[VulnerabilityFinding],
        risk_score: float
    ) -> str:
        scan_id = f"scan_{uuid.uuid4().hex}"
        scan = SecurityScanResult(
            id=scan_id,
            scan_type="vulnerability_assessment",
            target=organization_id or "system",
            title="Vulnerability Assessment",
            description=f"Found {len(findings)} vulnerabilities",
            finding_count=len(findings),
            risk_score=risk_score,
            status="open",
            created_at=self.clock()
        )
        try:
            self.store.append_scan_result(scan)
        except StoreFailure as exc:
            logger.error("Error recording scan result %s", scan_id, exc_info=exc)
        return scan_id
