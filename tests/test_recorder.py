"""
Tests for the audit recorder and its store.

These tests prove:
- Audit events are append-only (the ORM refuses updates)
- Convenience loggers stamp risk scores and compliance flags
- Store failures come back as values, never as exceptions
- A security event and its correlated audit record can be observed apart
"""
from datetime import timedelta

import pytest

from riskwatch.models.audit import AuditAction, AuditEvent, ComplianceFlag
from riskwatch.models.enums import DataVerb, SecurityEventCategory, SecurityEventStatus, Severity
from riskwatch.models.security import SecurityEvent
from riskwatch.services.recorder import (
    MAX_PAGE_SIZE,
    AuditRecorder,
    RequestContext,
    categorize_security_event,
)
from riskwatch.services.store import AuditCriteria, SecurityEventCriteria, StoreFailure


class FailingStore:
    """Store whose every call fails."""

    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise StoreFailure(name)
        return fail


class AuditAppendFailingStore:
    """Delegates to a real store but refuses audit-event appends."""

    def __init__(self, inner):
        self.inner = inner

    def append_audit_event(self, event):
        raise StoreFailure("append_audit_event")

    def __getattr__(self, name):
        return getattr(self.inner, name)


class TestImmutability:

    def test_audit_event_cannot_be_updated(self, recorder, db_session):
        event_id = recorder.log(AuditAction.LOGIN, "Authentication", user_id="u1")
        event = db_session.query(AuditEvent).filter(AuditEvent.id == event_id).one()

        event.success = False
        with pytest.raises(ValueError, match="IMMUTABILITY VIOLATION"):
            db_session.commit()
        db_session.rollback()

        reloaded = db_session.query(AuditEvent).filter(AuditEvent.id == event_id).one()
        assert reloaded.success is True


class TestLogging:

    def test_log_returns_id_and_persists(self, recorder, db_session, clock):
        event_id = recorder.log("DOCUMENT_SHARE", "Document", resource_id="d1", user_id="u1")

        event = db_session.query(AuditEvent).filter(AuditEvent.id == event_id).one()
        assert event.action == "DOCUMENT_SHARE"
        assert event.timestamp == clock()
        assert event.success is True
        assert event.risk_score == 0

    def test_log_auth_failed_login(self, recorder, db_session):
        request = RequestContext(ip="198.51.100.7", user_agent="Mozilla/5.0", session_id="s1")
        event_id = recorder.log_auth(AuditAction.LOGIN_FAILED, "u1", {"failedAttempts": 4}, request)

        event = db_session.query(AuditEvent).filter(AuditEvent.id == event_id).one()
        assert event.success is False
        assert event.resource == "Authentication"
        assert event.ip_address == "198.51.100.7"
        assert event.session_id == "s1"
        assert event.risk_score == 50
        assert sorted(event.compliance_flags) == sorted([ComplianceFlag.SOC2, ComplianceFlag.GDPR])
        assert event.event_metadata == {"failedAttempts": 4}

    def test_log_auth_from_malicious_ip(self, recorder, db_session, malicious_ip):
        event_id = recorder.log_auth(AuditAction.LOGIN, "u1", request=RequestContext(ip=malicious_ip))
        event = db_session.query(AuditEvent).filter(AuditEvent.id == event_id).one()
        assert event.risk_score == 60

    def test_log_auth_survives_oracle_failure(self, store, clock, db_session):
        class BrokenOracle:
            def is_known_malicious_ip(self, ip):
                raise RuntimeError("feed down")

        recorder = AuditRecorder(store, threat_intel=BrokenOracle(), clock=clock)
        event_id = recorder.log_auth(AuditAction.LOGIN, "u1", request=RequestContext(ip="198.51.100.7"))

        event = db_session.query(AuditEvent).filter(AuditEvent.id == event_id).one()
        assert event.risk_score == 10

    def test_log_data_access(self, recorder, db_session):
        event_id = recorder.log_data_access(DataVerb.EXPORT, "User", "u2", "u1", "org1", {"bulkOperation": True})

        event = db_session.query(AuditEvent).filter(AuditEvent.id == event_id).one()
        assert event.action == AuditAction.DATA_EXPORT
        assert event.risk_score == 30 + 20 + 15
        assert set(event.compliance_flags) == {ComplianceFlag.GDPR, ComplianceFlag.HIPAA, ComplianceFlag.SOC2}

    def test_unknown_metadata_keys_are_preserved(self, recorder, db_session):
        metadata = {"recordCount": 5, "ticket": "SEC-12", "nested": {"a": 1}}
        event_id = recorder.log_data_access("read", "Document", "d1", "u1", metadata=metadata)

        event = db_session.query(AuditEvent).filter(AuditEvent.id == event_id).one()
        assert event.event_metadata == metadata

    def test_store_failure_returns_none(self, clock):
        recorder = AuditRecorder(FailingStore(), clock=clock)

        assert recorder.log(AuditAction.LOGIN, "Authentication") is None
        result = recorder.record(AuditAction.LOGIN, "Authentication")
        assert not result.ok
        assert isinstance(result.error, StoreFailure)

    def test_query_failure_is_distinguishable_from_empty(self, clock, recorder):
        failing = AuditRecorder(FailingStore(), clock=clock)

        assert failing.query() == []
        assert not failing.query_result().ok

        empty = recorder.query_result()
        assert empty.ok
        assert empty.value == []


class TestQuery:

    @pytest.fixture
    def populated(self, recorder, clock):
        recorder.log_auth(AuditAction.LOGIN, "u1", request=RequestContext(ip="10.1.1.1"), organization_id="org1")
        clock.advance(minutes=1)
        recorder.log_auth(AuditAction.LOGIN_FAILED, "u1", organization_id="org1")
        clock.advance(minutes=1)
        recorder.log_data_access(DataVerb.DELETE, "User", "u9", "u2", "org2")
        clock.advance(minutes=1)
        recorder.log_data_access(DataVerb.READ, "Document", "d1", "u2", "org2")
        return recorder

    def test_newest_first(self, populated):
        actions = [event.action for event in populated.query()]
        assert actions == [
            AuditAction.DATA_READ,
            AuditAction.DATA_DELETE,
            AuditAction.LOGIN_FAILED,
            AuditAction.LOGIN,
        ]

    def test_action_is_substring_match(self, populated):
        events = populated.query(AuditCriteria(action="LOGIN"))
        assert {event.action for event in events} == {AuditAction.LOGIN, AuditAction.LOGIN_FAILED}

    def test_filters_combine(self, populated):
        events = populated.query(AuditCriteria(user_id="u1", success=False))
        assert [event.action for event in events] == [AuditAction.LOGIN_FAILED]

        events = populated.query(AuditCriteria(organization_id="org2", resource="User"))
        assert [event.action for event in events] == [AuditAction.DATA_DELETE]

    def test_risk_score_range(self, populated):
        events = populated.query(AuditCriteria(risk_score_min=30, risk_score_max=60))
        assert {event.action for event in events} == {AuditAction.LOGIN_FAILED, AuditAction.DATA_DELETE}

    def test_time_range_is_inclusive(self, populated, clock):
        start = clock() - timedelta(minutes=2)
        end = clock() - timedelta(minutes=1)
        events = populated.query(AuditCriteria(start=start, end=end))
        assert [event.action for event in events] == [AuditAction.DATA_DELETE, AuditAction.LOGIN_FAILED]

    def test_pagination(self, populated):
        page = populated.query(limit=2, offset=1)
        assert [event.action for event in page] == [AuditAction.DATA_DELETE, AuditAction.LOGIN_FAILED]

    def test_page_size_is_capped(self):
        class CapturingStore:
            seen_limit = None

            def find_audit_events(self, criteria, limit, offset=0):
                CapturingStore.seen_limit = limit
                return []

        AuditRecorder(CapturingStore()).query(limit=MAX_PAGE_SIZE * 10)
        assert CapturingStore.seen_limit == MAX_PAGE_SIZE

    def test_count(self, populated, store):
        assert store.count_audit_events(AuditCriteria(user_id="u2")) == 2


class TestSecurityEvents:

    @pytest.mark.parametrize("event_type,category", [
        ("BRUTE_FORCE", SecurityEventCategory.AUTHENTICATION),
        ("brute_force", SecurityEventCategory.AUTHENTICATION),
        ("PRIVILEGE_ESCALATION", SecurityEventCategory.AUTHORIZATION),
        ("DATA_EXFILTRATION", SecurityEventCategory.DATA_ACCESS),
        ("MALWARE_DETECTED", SecurityEventCategory.SYSTEM),
        ("malicious_ip", SecurityEventCategory.SYSTEM),
        ("SOMETHING_ELSE", SecurityEventCategory.SYSTEM),
    ])
    def test_categorization(self, event_type, category):
        assert categorize_security_event(event_type) == category

    def test_security_event_has_correlated_audit_record(self, recorder, db_session):
        event_id = recorder.log_security_event(
            "DATA_BREACH", Severity.CRITICAL, "Records leaked", "Dump found", user_id="u1", organization_id="org1"
        )

        incident = db_session.query(SecurityEvent).filter(SecurityEvent.id == event_id).one()
        assert incident.category == SecurityEventCategory.DATA_ACCESS.value
        assert incident.detected_by == "system"
        assert incident.status == SecurityEventStatus.OPEN
        assert incident.risk_score == 100

        audit = db_session.query(AuditEvent).filter(
            AuditEvent.action == AuditAction.SECURITY_EVENT,
            AuditEvent.resource_id == event_id
        ).one()
        assert audit.resource == "SecurityEvent"
        assert audit.event_metadata == {"type": "DATA_BREACH", "severity": "critical", "title": "Records leaked"}
        assert audit.retention_until - audit.timestamp == timedelta(days=3 * 365)

    def test_incident_visible_without_its_audit_record(self, store, clock, db_session):
        """Appends are not transactional: the audit record can be missing."""
        recorder = AuditRecorder(AuditAppendFailingStore(store), clock=clock)

        event_id = recorder.log_security_event("MALWARE_DETECTED", "high", "Trojan found")

        assert event_id is not None
        assert db_session.query(SecurityEvent).filter(SecurityEvent.id == event_id).count() == 1
        assert db_session.query(AuditEvent).filter(AuditEvent.resource_id == event_id).count() == 0

    def test_incident_failure_returns_none(self, clock):
        recorder = AuditRecorder(FailingStore(), clock=clock)
        assert recorder.log_security_event("BRUTE_FORCE", "high", "Attack") is None

    def test_find_security_events_filters(self, recorder, clock):
        recorder.log_security_event("BRUTE_FORCE", "high", "A", user_id="u1")
        clock.advance(minutes=1)
        recorder.log_security_event("MALWARE_DETECTED", "low", "B", user_id="u2")

        assert [e.title for e in recorder.find_security_events()] == ["B", "A"]
        assert [e.title for e in recorder.find_security_events(SecurityEventCriteria(severity="high"))] == ["A"]
        assert [e.title for e in recorder.find_security_events(SecurityEventCriteria(status="open"))] == ["B", "A"]
        assert recorder.find_security_events(SecurityEventCriteria(status="resolved")) == []
        assert [e.title for e in recorder.find_security_events(SecurityEventCriteria(user_id="u2"))] == ["B"]

    def test_unknown_status_matches_nothing(self, recorder):
        recorder.log_security_event("BRUTE_FORCE", "high", "A")

        result = recorder.security_events_result(SecurityEventCriteria(status="closed"))

        assert result.ok
        assert result.value == []
        assert recorder.find_security_events(SecurityEventCriteria(status="closed")) == []


class TestRetentionSweep:

    def test_purge_deletes_only_expired(self, recorder, clock, db_session):
        recorder.log(AuditAction.LOGIN, "Authentication")
        recorder.log(AuditAction.DATA_EXPORT, "User")

        clock.advance(days=366)
        result = recorder.purge_expired()

        assert result.ok
        assert result.value == 1
        remaining = [event.action for event in db_session.query(AuditEvent).all()]
        assert remaining == [AuditAction.DATA_EXPORT]

    def test_purge_failure_is_reported(self, clock):
        result = AuditRecorder(FailingStore(), clock=clock).purge_expired()
        assert not result.ok
