"""Enums for riskwatch - the closed vocabularies of the audit and risk engine."""
from enum import Enum


class Severity(str, Enum):
    """Severity of a detected security event."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SecurityEventStatus(str, Enum):
    """Case status. Transitions are owned by case management, not this engine."""
    OPEN = "open"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"


class SecurityEventCategory(str, Enum):
    """Category derived from a security event type."""
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    DATA_ACCESS = "data_access"
    SYSTEM = "system"


class SecurityEventType(str, Enum):
    """Known security event taxonomy. Other strings are accepted and categorized as system."""
    SUSPICIOUS_LOGIN = "SUSPICIOUS_LOGIN"
    BRUTE_FORCE = "BRUTE_FORCE"
    MFA_BYPASS = "MFA_BYPASS"
    PRIVILEGE_ESCALATION = "PRIVILEGE_ESCALATION"
    UNAUTHORIZED_ACCESS = "UNAUTHORIZED_ACCESS"
    DATA_BREACH = "DATA_BREACH"
    DATA_EXFILTRATION = "DATA_EXFILTRATION"
    MALWARE_DETECTED = "MALWARE_DETECTED"
    SYSTEM_COMPROMISE = "SYSTEM_COMPROMISE"


class ThreatType(str, Enum):
    """Threat types produced by request-time threat detection."""
    MALICIOUS_IP = "malicious_ip"
    SUSPICIOUS_CLIENT = "suspicious_client"
    BRUTE_FORCE = "brute_force"
    PRIVILEGE_ESCALATION = "privilege_escalation"
    DATA_EXFILTRATION = "data_exfiltration"


class RiskLevel(str, Enum):
    """Aggregate risk level of an anomaly detection run."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ReportType(str, Enum):
    """Compliance report flavours."""
    SOC2 = "SOC2"
    GDPR = "GDPR"
    HIPAA = "HIPAA"
    CUSTOM = "custom"


class ReportStatus(str, Enum):
    """Reports are generated synchronously, so completed is the only state."""
    COMPLETED = "completed"


class DataVerb(str, Enum):
    """Verbs accepted by data-access logging."""
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    EXPORT = "export"
