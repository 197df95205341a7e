"""Pydantic schemas for request/response validation."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from riskwatch.models.enums import (
    ReportStatus,
    ReportType,
    RiskLevel,
    SecurityEventStatus,
    Severity,
    ThreatType,
)


# Audit event schemas
class AuditEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    action: str
    resource: str
    resource_id: Optional[str]
    user_id: Optional[str]
    organization_id: Optional[str]
    session_id: Optional[str]
    ip_address: Optional[str]
    user_agent: Optional[str]
    endpoint: Optional[str]
    method: Optional[str]
    success: bool
    error_code: Optional[str]
    error_message: Optional[str]
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="event_metadata")
    risk_score: int
    anomaly_flags: List[str] = []
    compliance_flags: List[str] = []
    retention_until: datetime
    timestamp: datetime


# Security event schemas
class SecurityEventCreate(BaseModel):
    """Manual escalation of an incident."""
    type: str = Field(..., min_length=1)
    severity: Severity
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    user_id: Optional[str] = None
    organization_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class SecurityEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    type: str
    severity: str
    category: str
    title: str
    description: Optional[str]
    user_id: Optional[str]
    organization_id: Optional[str]
    detected_by: str
    risk_score: int
    status: SecurityEventStatus
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="event_metadata")
    created_at: datetime


# Monitoring schemas
class SecurityAlertResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[str] = None
    type: str
    title: str
    description: Optional[str]
    severity: Severity
    timestamp: datetime
    action: str


class SecurityOverviewResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    active_threats: int
    risk_score: int
    alerts: List[SecurityAlertResponse]
    recommendations: List[str]
    degraded: bool


class AnomalyResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    type: str
    user_id: Optional[str]
    description: str
    risk_score: int
    evidence: Any = None


class AnomalyReportResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    anomalies: List[AnomalyResponse]
    risk_level: RiskLevel
    confidence: float
    events_examined: int
    degraded: bool


# Threat schemas
class ThreatEvaluationRequest(BaseModel):
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    user_id: Optional[str] = None
    organization_id: Optional[str] = None
    action: Optional[str] = None
    resource: Optional[str] = None
    metadata: Dict[str, Any] = {}


class ThreatAssessmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    threat_detected: bool
    risk_score: int
    should_block: bool
    threat_type: Optional[ThreatType]
    reason: Optional[str]
    security_event_id: Optional[str]


# Vulnerability schemas
class VulnerabilityFindingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    type: str
    severity: Severity
    title: str
    description: str
    risk_score: float
    recommendation: str
    evidence: Dict[str, Any] = {}


class VulnerabilityAssessmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    scan_id: str
    vulnerabilities: List[VulnerabilityFindingResponse]
    risk_score: float
    recommendations: List[str]
    skipped_checks: List[str]


# Compliance schemas
class ComplianceReportCreate(BaseModel):
    type: ReportType
    organization_id: Optional[str] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None


class ComplianceReportResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    type: str
    title: str
    description: Optional[str]
    organization_id: Optional[str]
    period_start: datetime
    period_end: datetime
    data: Dict[str, Any]
    status: ReportStatus
    compliance_score: int
    findings: List[str]
    recommendations: List[str]
    generated_at: datetime


# Error response
class CancelledResponse(BaseModel):
    """Response when a batch run was cancelled or timed out."""
    message: str
    stage: str
