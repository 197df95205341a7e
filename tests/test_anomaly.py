"""
Tests for behavioural anomaly detection.

These tests prove:
- Empty and quiet windows are scored low without dividing by zero
- Each analyzer flags only past its threshold
- Detection is read-only and cancellable between analyzers
"""
from datetime import datetime, timedelta

import pytest

from riskwatch.models.audit import AuditAction, AuditEvent
from riskwatch.models.enums import RiskLevel
from riskwatch.services.anomaly import Anomaly, AnomalyDetector, confidence_for, risk_level_for
from riskwatch.services.cancellation import CancellationToken, OperationCancelled
from riskwatch.services.recorder import AuditRecorder, RequestContext
from riskwatch.services.store import StoreFailure


def _login_at(recorder, clock, when, user_id="u1", ip="10.0.0.1"):
    clock.set(when)
    recorder.log_auth(AuditAction.LOGIN, user_id, request=RequestContext(ip=ip))


class TestAggregation:

    def test_risk_level_thresholds(self):
        def anomalies(*scores):
            return [Anomaly(type="t", description="d", risk_score=score) for score in scores]

        assert risk_level_for([]) == RiskLevel.LOW
        assert risk_level_for(anomalies(30)) == RiskLevel.LOW
        assert risk_level_for(anomalies(31)) == RiskLevel.MEDIUM
        assert risk_level_for(anomalies(30, 35)) == RiskLevel.HIGH
        assert risk_level_for(anomalies(40, 35, 30)) == RiskLevel.CRITICAL

    def test_confidence(self):
        with_evidence = Anomaly(type="t", description="d", risk_score=30, evidence={"x": 1})
        without_evidence = Anomaly(type="t", description="d", risk_score=30)

        assert confidence_for([], 0) == 0.3
        assert confidence_for([with_evidence], 9) == 0.3
        assert confidence_for([], 10) == 0.9
        assert confidence_for([with_evidence], 50) == pytest.approx(0.8)
        assert confidence_for([with_evidence, without_evidence], 50) == pytest.approx(0.6)


class TestDetector:

    def test_empty_window(self, recorder, clock):
        report = AnomalyDetector(recorder, clock=clock).detect()

        assert report.anomalies == []
        assert report.risk_level == RiskLevel.LOW
        assert report.confidence == 0.3
        assert report.events_examined == 0
        assert report.degraded is False

    def test_business_hour_logins_are_not_anomalous(self, recorder, clock):
        """20 logins from one IP during business hours, two per hour."""
        day = datetime(2024, 5, 15)
        for hour in range(8, 18):
            for minute in (0, 30):
                _login_at(recorder, clock, day + timedelta(hours=hour, minutes=minute))
        clock.set(day + timedelta(hours=18))

        report = AnomalyDetector(recorder, clock=clock).detect(user_id="u1")

        assert report.events_examined == 20
        assert report.anomalies == []
        assert report.confidence == 0.9

    def test_identical_logins_in_one_hour_read_as_a_spike(self, recorder, clock):
        """20 logins from one IP, all at noon.

        Every login lands in the same hour bucket, which is 24 times the
        hourly mean, so the spike rule fires even though each login is
        unremarkable on its own.
        """
        for _ in range(20):
            _login_at(recorder, clock, datetime(2024, 5, 15, 12, 0))

        report = AnomalyDetector(recorder, clock=clock).detect(user_id="u1")

        assert [(a.type, a.risk_score) for a in report.anomalies] == [("unusual_activity_spike", 25)]
        assert report.confidence == pytest.approx(0.8)

    def test_off_hours_logins(self, recorder, clock):
        day = datetime(2024, 5, 15)
        for hour in (1, 2, 3):
            _login_at(recorder, clock, day + timedelta(hours=hour))
        clock.set(day + timedelta(hours=4))

        anomalies = AnomalyDetector(recorder, clock=clock).detect_login_anomalies(recorder.query())

        assert len(anomalies) == 1
        assert anomalies[0].type == "unusual_login_time"
        assert anomalies[0].user_id == "u1"
        assert anomalies[0].risk_score == 30
        assert [item["hour"] for item in anomalies[0].evidence] == [3, 2, 1]

    def test_two_off_hours_logins_are_tolerated(self, recorder, clock):
        day = datetime(2024, 5, 15)
        for hour in (22, 5):
            _login_at(recorder, clock, day + timedelta(hours=hour))

        assert AnomalyDetector(recorder, clock=clock).detect_login_anomalies(recorder.query()) == []

    def test_utc_offset_shifts_business_hours(self, recorder, clock):
        """04:00-06:00 UTC is business hours at UTC+5."""
        day = datetime(2024, 5, 15)
        for hour in (4, 5, 6):
            _login_at(recorder, clock, day + timedelta(hours=hour))

        detector = AnomalyDetector(recorder, clock=clock, utc_offset=timedelta(hours=5))
        assert detector.detect_login_anomalies(recorder.query()) == []

    def test_high_volume_data_access(self, recorder, clock):
        clock.set(datetime(2024, 5, 15, 12))
        for _ in range(51):
            recorder.log_data_access("read", "Document", "d1", "u1")

        detector = AnomalyDetector(recorder, clock=clock)
        events = recorder.query(limit=1000)

        anomalies = detector.detect_data_access_anomalies(events, window_hours=1)
        assert len(anomalies) == 1
        assert anomalies[0].type == "high_volume_data_access"
        assert anomalies[0].risk_score == 40

        # Spread across the default day, the same volume is ordinary
        assert detector.detect_data_access_anomalies(events, window_hours=24) == []

    def test_activity_spike(self, recorder, clock):
        day = datetime(2024, 5, 15)
        for hour in range(24):
            clock.set(day + timedelta(hours=hour))
            recorder.log("HEARTBEAT", "System")
        clock.set(day + timedelta(hours=14))
        for _ in range(10):
            recorder.log("HEARTBEAT", "System")

        anomalies = AnomalyDetector(recorder, clock=clock).detect_time_anomalies(recorder.query(limit=1000))

        assert [anomaly.evidence["hour"] for anomaly in anomalies] == [14]
        assert anomalies[0].risk_score == 25

    def test_ip_diversity(self, recorder, clock):
        for index in range(6):
            recorder.log_auth(AuditAction.LOGOUT, "u1", request=RequestContext(ip=f"10.0.0.{index}"))
        for index in range(5):
            recorder.log_auth(AuditAction.LOGOUT, "u2", request=RequestContext(ip=f"10.0.1.{index}"))

        anomalies = AnomalyDetector(recorder, clock=clock).detect_location_anomalies(recorder.query())

        assert [anomaly.user_id for anomaly in anomalies] == ["u1"]
        assert anomalies[0].evidence["ip_count"] == 6
        assert anomalies[0].risk_score == 35

    def test_window_excludes_old_events(self, recorder, clock):
        day = datetime(2024, 5, 15)
        for hour in (1, 2, 3):
            _login_at(recorder, clock, day + timedelta(hours=hour))
        clock.set(day + timedelta(days=2))

        report = AnomalyDetector(recorder, clock=clock).detect()
        assert report.events_examined == 0

    def test_detection_is_read_only(self, recorder, clock, db_session):
        day = datetime(2024, 5, 15)
        for hour in (1, 2, 3):
            _login_at(recorder, clock, day + timedelta(hours=hour))
        before = db_session.query(AuditEvent).count()

        AnomalyDetector(recorder, clock=clock).detect()

        assert db_session.query(AuditEvent).count() == before

    def test_aggregation_is_deterministic(self, recorder, clock):
        day = datetime(2024, 5, 15)
        for hour in (1, 2, 3):
            _login_at(recorder, clock, day + timedelta(hours=hour))
        clock.set(day + timedelta(hours=4))

        detector = AnomalyDetector(recorder, clock=clock)
        assert detector.detect() == detector.detect()

    def test_store_failure_marks_report_degraded(self, clock):
        class FailingStore:
            def find_audit_events(self, criteria, limit, offset=0):
                raise StoreFailure("find_audit_events")

        report = AnomalyDetector(AuditRecorder(FailingStore(), clock=clock), clock=clock).detect()

        assert report.degraded is True
        assert report.anomalies == []

    def test_cancelled_before_first_analyzer(self, recorder, clock):
        token = CancellationToken()
        token.cancel()

        with pytest.raises(OperationCancelled) as exc_info:
            AnomalyDetector(recorder, clock=clock).detect(cancel=token)
        assert exc_info.value.stage == "login_time"

    def test_timeout_cancels(self, recorder, clock):
        ticks = iter([0.0, 10.0])
        token = CancellationToken(timeout=5, monotonic=lambda: next(ticks))

        with pytest.raises(OperationCancelled):
            AnomalyDetector(recorder, clock=clock).detect(cancel=token)
