"""API routes wrapping the audit and risk-monitoring engine."""
from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from riskwatch.database import get_db
from riskwatch.models.enums import SecurityEventStatus
from riskwatch.services.anomaly import DEFAULT_WINDOW, AnomalyDetector
from riskwatch.services.cancellation import CancellationToken, OperationCancelled
from riskwatch.services.compliance import ComplianceReporter
from riskwatch.services.monitoring import SecurityMonitor
from riskwatch.services.recorder import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, AuditRecorder
from riskwatch.services.store import AuditCriteria, SecurityEventCriteria, SqlAlchemyAuditStore
from riskwatch.services.threats import ThreatDetector, ThreatRequest
from riskwatch.services.vulnerability import SqlAlchemyIdentityDirectory, VulnerabilityScanner
from riskwatch.api.schemas import (
    AnomalyReportResponse,
    AuditEventResponse,
    CancelledResponse,
    ComplianceReportCreate,
    ComplianceReportResponse,
    SecurityEventCreate,
    SecurityEventResponse,
    SecurityOverviewResponse,
    ThreatAssessmentResponse,
    ThreatEvaluationRequest,
    VulnerabilityAssessmentResponse,
)

router = APIRouter()

# One year; larger windows overflow datetime arithmetic
MAX_WINDOW_HOURS = 24 * 365


def get_recorder(db: Session = Depends(get_db)) -> AuditRecorder:
    return AuditRecorder(SqlAlchemyAuditStore(db))


def _cancelled(exc: OperationCancelled) -> HTTPException:
    # Batch runs that hit their deadline surface as 503 with the stage reached
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"message": exc.message, "stage": exc.stage}
    )


def _token(timeout: Optional[float]) -> Optional[CancellationToken]:
    return CancellationToken(timeout=timeout) if timeout is not None else None


# Audit event endpoints
@router.get("/audit-events", response_model=List[AuditEventResponse])
def list_audit_events(
    user_id: Optional[str] = None,
    organization_id: Optional[str] = None,
    action: Optional[str] = None,
    resource: Optional[str] = None,
    success: Optional[bool] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    risk_score_min: Optional[int] = Query(None, ge=0, le=100),
    risk_score_max: Optional[int] = Query(None, ge=0, le=100),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    recorder: AuditRecorder = Depends(get_recorder)
):
    """Filtered audit events, newest first."""
    result = recorder.query_result(
        AuditCriteria(
            user_id=user_id,
            organization_id=organization_id,
            action=action,
            resource=resource,
            success=success,
            start=start,
            end=end,
            risk_score_min=risk_score_min,
            risk_score_max=risk_score_max
        ),
        limit=limit,
        offset=offset
    )
    if not result.ok:
        raise HTTPException(status_code=503, detail="Audit store unavailable")
    return result.value


@router.post("/audit-events/purge")
def purge_audit_events(recorder: AuditRecorder = Depends(get_recorder)):
    """Delete audit events whose retention has lapsed."""
    result = recorder.purge_expired()
    if not result.ok:
        raise HTTPException(status_code=503, detail="Audit store unavailable")
    return {"deleted": result.value}


# Security event endpoints
@router.get("/security-events", response_model=List[SecurityEventResponse])
def list_security_events(
    type: Optional[str] = None,
    severity: Optional[str] = None,
    event_status: Optional[SecurityEventStatus] = Query(None, alias="status"),
    user_id: Optional[str] = None,
    organization_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    recorder: AuditRecorder = Depends(get_recorder)
):
    """Filtered security events, newest first."""
    result = recorder.security_events_result(
        SecurityEventCriteria(
            type=type,
            severity=severity,
            status=event_status.value if event_status else None,
            user_id=user_id,
            organization_id=organization_id,
            start=start,
            end=end
        ),
        limit=limit,
        offset=offset
    )
    if not result.ok:
        raise HTTPException(status_code=503, detail="Audit store unavailable")
    return result.value


@router.post("/security-events", status_code=status.HTTP_201_CREATED)
def create_security_event(event_data: SecurityEventCreate, recorder: AuditRecorder = Depends(get_recorder)):
    """Manually escalate an incident."""
    event_id = recorder.log_security_event(
        event_data.type,
        event_data.severity,
        event_data.title,
        event_data.description,
        user_id=event_data.user_id,
        organization_id=event_data.organization_id,
        metadata=event_data.metadata
    )
    if event_id is None:
        raise HTTPException(status_code=503, detail="Security event could not be stored")
    return {"id": event_id}


# Monitoring endpoints
@router.get("/monitoring/overview", response_model=SecurityOverviewResponse)
def security_overview(
    organization_id: Optional[str] = None,
    recorder: AuditRecorder = Depends(get_recorder)
):
    """Last 24 hours of security activity."""
    return SecurityMonitor(recorder).monitor_security_events(organization_id)


@router.get(
    "/monitoring/anomalies",
    response_model=AnomalyReportResponse,
    responses={503: {"model": CancelledResponse}}
)
def detect_anomalies(
    user_id: Optional[str] = None,
    organization_id: Optional[str] = None,
    window_hours: float = Query(DEFAULT_WINDOW.total_seconds() / 3600, gt=0, le=MAX_WINDOW_HOURS),
    timeout: Optional[float] = Query(None, gt=0),
    recorder: AuditRecorder = Depends(get_recorder)
):
    """Behavioural anomalies over a sliding window."""
    try:
        return AnomalyDetector(recorder).detect(
            user_id=user_id,
            organization_id=organization_id,
            window=timedelta(hours=window_hours),
            cancel=_token(timeout)
        )
    except OperationCancelled as e:
        raise _cancelled(e)


@router.post("/threats/evaluate", response_model=ThreatAssessmentResponse)
def evaluate_threat(request_data: ThreatEvaluationRequest, recorder: AuditRecorder = Depends(get_recorder)):
    """Allow/flag/block verdict for a single request."""
    return ThreatDetector(recorder).evaluate(ThreatRequest(**request_data.model_dump()))


@router.post(
    "/vulnerability-assessments",
    response_model=VulnerabilityAssessmentResponse,
    responses={503: {"model": CancelledResponse}}
)
def assess_vulnerabilities(
    organization_id: Optional[str] = None,
    timeout: Optional[float] = Query(None, gt=0),
    db: Session = Depends(get_db)
):
    """Run the vulnerability checks for an organization (or the whole system)."""
    directory = SqlAlchemyIdentityDirectory(db)
    scanner = VulnerabilityScanner(SqlAlchemyAuditStore(db), directory, credentials=directory)
    try:
        return scanner.assess(organization_id, cancel=_token(timeout))
    except OperationCancelled as e:
        raise _cancelled(e)


# Compliance endpoints
@router.post(
    "/compliance-reports",
    response_model=ComplianceReportResponse,
    status_code=status.HTTP_201_CREATED,
    responses={503: {"model": CancelledResponse}}
)
def create_compliance_report(
    report_data: ComplianceReportCreate,
    timeout: Optional[float] = Query(None, gt=0),
    recorder: AuditRecorder = Depends(get_recorder)
):
    """Generate and store a compliance report."""
    reporter = ComplianceReporter(recorder)
    try:
        report_id = reporter.generate(
            report_data.type,
            organization_id=report_data.organization_id,
            period_start=report_data.period_start,
            period_end=report_data.period_end,
            cancel=_token(timeout)
        )
    except OperationCancelled as e:
        raise _cancelled(e)
    if report_id is None:
        raise HTTPException(status_code=503, detail="Compliance report could not be stored")
    return reporter.get(report_id)


@router.get("/compliance-reports", response_model=List[ComplianceReportResponse])
def list_compliance_reports(
    organization_id: Optional[str] = None,
    type: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    recorder: AuditRecorder = Depends(get_recorder)
):
    return ComplianceReporter(recorder).find(organization_id, type, limit)


@router.get("/compliance-reports/{report_id}", response_model=ComplianceReportResponse)
def get_compliance_report(report_id: str, recorder: AuditRecorder = Depends(get_recorder)):
    report = ComplianceReporter(recorder).get(report_id)
    if not report:
        raise HTTPException(status_code=404, detail="Compliance report not found")
    return report
