"""Tests for the 24-hour security overview."""
from riskwatch.models.audit import AuditAction
from riskwatch.models.enums import SecurityEventStatus, Severity
from riskwatch.models.security import SecurityEvent
from riskwatch.services.monitoring import SecurityMonitor
from riskwatch.services.recorder import AuditRecorder
from riskwatch.services.store import StoreFailure


def test_quiet_day(recorder, clock):
    overview = SecurityMonitor(recorder, clock=clock).monitor_security_events()

    assert overview.active_threats == 0
    assert overview.risk_score == 0
    assert overview.alerts == []
    assert overview.recommendations == []
    assert overview.degraded is False


def test_active_threats_exclude_resolved_and_minor(recorder, clock, db_session):
    recorder.log_security_event("BRUTE_FORCE", Severity.HIGH, "Open high")
    recorder.log_security_event("MALWARE_DETECTED", Severity.CRITICAL, "Open critical")
    recorder.log_security_event("SUSPICIOUS_LOGIN", Severity.LOW, "Open low")
    resolved_id = recorder.log_security_event("DATA_BREACH", Severity.CRITICAL, "Resolved critical")

    # Case management owns status transitions
    db_session.query(SecurityEvent).filter(SecurityEvent.id == resolved_id).update(
        {SecurityEvent.status: SecurityEventStatus.RESOLVED}
    )
    db_session.commit()

    overview = SecurityMonitor(recorder, clock=clock).monitor_security_events()

    assert overview.active_threats == 2
    assert [alert.title for alert in overview.alerts] == ["Open critical"]
    assert overview.alerts[0].action == "immediate_attention_required"
    assert "Immediately address all critical security events" in overview.recommendations


def test_risk_score_weights(recorder, clock):
    recorder.log_security_event("MALWARE_DETECTED", "critical", "A")
    recorder.log_security_event("MALWARE_DETECTED", "high", "B")
    recorder.log_security_event("MALWARE_DETECTED", "medium", "C")
    recorder.log_security_event("MALWARE_DETECTED", "low", "D")

    overview = SecurityMonitor(recorder, clock=clock).monitor_security_events()

    # 25 + 15 + 8 + 3 for the incidents, plus 3 per correlated record scored above 70
    assert overview.risk_score == 51 + 3


def test_risk_score_is_capped(recorder, clock):
    for _ in range(5):
        recorder.log_security_event("DATA_BREACH", "critical", "Leak")

    assert SecurityMonitor(recorder, clock=clock).monitor_security_events().risk_score == 100


def test_failed_login_and_export_alerts(recorder, clock):
    for _ in range(11):
        recorder.log_auth(AuditAction.LOGIN_FAILED, "u1")
    for _ in range(6):
        recorder.log_data_access("export", "Document", "d1", "u1")

    overview = SecurityMonitor(recorder, clock=clock).monitor_security_events()

    assert [alert.type for alert in overview.alerts] == ["multiple_failed_logins", "unusual_data_access"]
    assert overview.alerts[0].severity == Severity.HIGH
    assert "11 failed login attempts" in overview.alerts[0].description
    assert "Investigate high operation failure rate - may indicate system issues or attacks" in overview.recommendations


def test_mfa_and_coverage_recommendations(recorder, clock):
    for _ in range(3):
        recorder.log_auth(AuditAction.LOGIN, "u1")
    recorder.log_auth(AuditAction.MFA_VERIFIED, "u1")

    overview = SecurityMonitor(recorder, clock=clock).monitor_security_events()

    assert overview.recommendations == [
        "Enable multi-factor authentication for all users",
        "Improve audit logging coverage for data access operations",
    ]


def test_old_activity_is_ignored(recorder, clock):
    for _ in range(11):
        recorder.log_auth(AuditAction.LOGIN_FAILED, "u1")
    clock.advance(hours=25)

    overview = SecurityMonitor(recorder, clock=clock).monitor_security_events()
    assert overview.alerts == []
    assert overview.risk_score == 0


def test_store_failure_degrades(clock):
    class FailingStore:
        def __getattr__(self, name):
            def fail(*args, **kwargs):
                raise StoreFailure(name)
            return fail

    overview = SecurityMonitor(AuditRecorder(FailingStore(), clock=clock), clock=clock).monitor_security_events()

    assert overview.degraded is True
    assert overview.risk_score == 0
