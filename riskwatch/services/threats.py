"""
Request-time threat detection.

Sits on the request path, so every store read here is time-windowed and
row-capped. Oracle failures fail open: an infrastructure fault must not
block legitimate traffic.
"""
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Tuple

from riskwatch.database import utcnow
from riskwatch.models.audit import AuditAction
from riskwatch.models.enums import Severity, ThreatType
from riskwatch.models.metadata import DataAccessMetadata, parse_metadata
from riskwatch.services.oracles import MaliciousIpOracle, StaticThreatIntel, UserAgentOracle
from riskwatch.services.recorder import AuditRecorder
from riskwatch.services.store import AuditCriteria

logger = logging.getLogger(__name__)

BRUTE_FORCE_WINDOW = timedelta(minutes=15)
EXFILTRATION_WINDOW = timedelta(hours=1)

MAX_LOGIN_ROWS = 100
MAX_EXPORT_ROWS = 100
MAX_READ_ROWS = 1000

DETECTION_THRESHOLD = 50
BLOCK_THRESHOLD = 80
MAX_SIGNAL_SCORE = 80

PRIVILEGED_ACTIONS = frozenset({
    AuditAction.ROLE_ASSIGN,
    AuditAction.PERMISSION_GRANT,
    AuditAction.USER_PROMOTE,
})
SENSITIVE_RESOURCES = frozenset({"SecurityRole", "SecurityPermission", "Organization"})

LARGE_EXPORT_BYTES = 1_000_000


@dataclass(frozen=True)
class ThreatRequest:
    """What the caller knows about the request being authorized."""
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    user_id: Optional[str] = None
    organization_id: Optional[str] = None
    action: Optional[str] = None
    resource: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ThreatAssessment:
    threat_detected: bool
    risk_score: int
    should_block: bool
    threat_type: Optional[ThreatType] = None
    reason: Optional[str] = None
    security_event_id: Optional[str] = None


def severity_for(risk_score: int) -> Severity:
    if risk_score > 80:
        return Severity.CRITICAL
    if risk_score > 60:
        return Severity.HIGH
    return Severity.MEDIUM


class ThreatDetector:
    """Combines static signals and sliding-window checks into an allow/flag/block verdict."""

    def __init__(
        self,
        recorder: AuditRecorder,
        ip_oracle: Optional[MaliciousIpOracle] = None,
        user_agent_oracle: Optional[UserAgentOracle] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.recorder = recorder
        self.ip_oracle = ip_oracle or StaticThreatIntel()
        self.user_agent_oracle = user_agent_oracle or StaticThreatIntel()
        self.clock = clock

    def evaluate(self, request: ThreatRequest) -> ThreatAssessment:
        risk = 0
        threat_type: Optional[ThreatType] = None
        reason: Optional[str] = None

        if request.ip and self._is_malicious_ip(request.ip):
            risk += 80
            threat_type = ThreatType.MALICIOUS_IP
            reason = "Request from known malicious IP address"

        if request.user_agent and self._is_suspicious_user_agent(request.user_agent):
            risk += 30
            threat_type = threat_type or ThreatType.SUSPICIOUS_CLIENT
            reason = reason or "Suspicious user agent detected"

        if request.action == AuditAction.LOGIN and request.user_id:
            detected, score = self.check_brute_force(request.user_id, request.ip)
            risk += score
            if detected:
                threat_type = ThreatType.BRUTE_FORCE
                reason = "Brute force attack pattern detected"

        if self.is_privilege_escalation(request.action, request.resource):
            risk += 60
            threat_type = threat_type or ThreatType.PRIVILEGE_ESCALATION
            reason = reason or "Privilege escalation attempt detected"

        if request.action in (AuditAction.DATA_EXPORT, AuditAction.DATA_READ):
            detected, score = self.check_data_exfiltration(request.user_id, request.metadata)
            risk += score
            if detected:
                threat_type = ThreatType.DATA_EXFILTRATION
                reason = "Data exfiltration pattern detected"

        risk = min(risk, 100)
        threat_detected = risk > DETECTION_THRESHOLD
        if not threat_detected:
            return ThreatAssessment(threat_detected=False, risk_score=risk, should_block=False)

        logger.warning(
            "Threat detected: %s (risk %d) user=%s ip=%s",
            threat_type.value, risk, request.user_id, request.ip
        )
        security_event_id = self.recorder.log_security_event(
            threat_type,
            severity_for(risk),
            f"Threat detected: {threat_type.value}",
            reason,
            user_id=request.user_id,
            organization_id=request.organization_id,
            metadata={"request": asdict(request), "risk_score": risk}
        )
        return ThreatAssessment(
            threat_detected=True,
            risk_score=risk,
            should_block=risk > BLOCK_THRESHOLD,
            threat_type=threat_type,
            reason=reason,
            security_event_id=security_event_id
        )

    def check_brute_force(self, user_id: str, ip: Optional[str]) -> Tuple[bool, int]:
        """
        Failed logins for this user in the last 15 minutes.

        More than five failures scores min(n*10, 80); more than three from
        the requesting IP adds min(n*15, 80). The two checks are independent.
        """
        result = self.recorder.query_result(
            AuditCriteria(
                user_id=user_id,
                action=AuditAction.LOGIN,
                success=False,
                start=self.clock() - BRUTE_FORCE_WINDOW
            ),
            limit=MAX_LOGIN_ROWS
        )
        if not result.ok:
            logger.warning("Brute force check skipped for %s: audit store unavailable", user_id)
            return False, 0

        attempts = result.value
        detected = False
        score = 0
        if len(attempts) > 5:
            detected = True
            score += min(len(attempts) * 10, MAX_SIGNAL_SCORE)

        if ip:
            from_ip = [attempt for attempt in attempts if attempt.ip_address == ip]
            if len(from_ip) > 3:
                detected = True
                score += min(len(from_ip) * 15, MAX_SIGNAL_SCORE)

        return detected, score

    def check_data_exfiltration(
        self,
        user_id: Optional[str],
        metadata: Optional[Dict[str, Any]]
    ) -> Tuple[bool, int]:
        """Export and read volume for this user in the last hour, plus export size."""
        if not user_id:
            return False, 0

        since = self.clock() - EXFILTRATION_WINDOW
        exports = self.recorder.query_result(
            AuditCriteria(user_id=user_id, action=AuditAction.DATA_EXPORT, start=since),
            limit=MAX_EXPORT_ROWS
        )
        reads = self.recorder.query_result(
            AuditCriteria(user_id=user_id, action=AuditAction.DATA_READ, start=since),
            limit=MAX_READ_ROWS
        )
        if not (exports.ok and reads.ok):
            logger.warning("Exfiltration check degraded for %s: audit store unavailable", user_id)

        detected = False
        score = 0
        export_count = len(exports.value or [])
        read_count = len(reads.value or [])

        if export_count > 3:
            score += export_count * 15
            detected = True
        if read_count > 100:
            score += min(read_count // 10, 40)
            detected = True

        meta = parse_metadata(DataAccessMetadata, metadata)
        if meta.export_size is not None and meta.export_size > LARGE_EXPORT_BYTES:
            score += 30
            detected = True

        return detected, min(score, MAX_SIGNAL_SCORE)

    @staticmethod
    def is_privilege_escalation(action: Optional[str], resource: Optional[str]) -> bool:
        return action in PRIVILEGED_ACTIONS or resource in SENSITIVE_RESOURCES

    def _is_malicious_ip(self, ip: str) -> bool:
        try:
            return self.ip_oracle.is_known_malicious_ip(ip)
        except Exception:  # noqa: BLE001 - fail open on any oracle fault
            logger.warning("Malicious IP oracle failed; treating %s as not malicious", ip, exc_info=True)
            return False

    def _is_suspicious_user_agent(self, user_agent: str) -> bool:
        try:
            return self.user_agent_oracle.is_suspicious_user_agent(user_agent)
        except Exception:  # noqa: BLE001 - fail open on any oracle fault
            logger.warning("User agent oracle failed; treating client as benign", exc_info=True)
            return False
