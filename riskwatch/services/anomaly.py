"""
Behavioural anomaly detection over a sliding window of audit events.

The detector is read-only: it never writes to the ledger it inspects.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence

from riskwatch.database import utcnow
from riskwatch.models.audit import AuditAction, AuditEvent
from riskwatch.models.enums import RiskLevel
from riskwatch.services.cancellation import CancellationToken, checkpoint
from riskwatch.services.recorder import AuditRecorder
from riskwatch.services.store import AuditCriteria

logger = logging.getLogger(__name__)

MAX_EVENTS = 5000
DEFAULT_WINDOW = timedelta(hours=24)

BUSINESS_HOURS_START = 6  # Inclusive
BUSINESS_HOURS_END = 22  # Exclusive
OFF_HOURS_LOGIN_THRESHOLD = 2
DATA_ACCESS_RATE_THRESHOLD = 50  # Operations per hour
SPIKE_MULTIPLIER = 3
DISTINCT_IP_THRESHOLD = 5

MIN_EVENTS_FOR_CONFIDENCE = 10
LOW_CONFIDENCE = 0.3
NO_ANOMALY_CONFIDENCE = 0.9
MAX_CONFIDENCE = 0.95


@dataclass(frozen=True)
class Anomaly:
    type: str
    description: str
    risk_score: int
    evidence: Any = None
    user_id: Optional[str] = None


@dataclass(frozen=True)
class AnomalyReport:
    anomalies: List[Anomaly] = field(default_factory=list)
    risk_level: RiskLevel = RiskLevel.LOW
    confidence: float = 0.0
    events_examined: int = 0
    degraded: bool = False  # True when the store could not be read


def risk_level_for(anomalies: Sequence[Anomaly]) -> RiskLevel:
    """Map the summed anomaly risk onto a level."""
    total = sum(anomaly.risk_score for anomaly in anomalies)
    if total > 80:
        return RiskLevel.CRITICAL
    if total > 60:
        return RiskLevel.HIGH
    if total > 30:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def confidence_for(anomalies: Sequence[Anomaly], events_examined: int) -> float:
    """
    Confidence in a verdict.

    Few events means low confidence regardless of outcome. Otherwise each
    anomaly earns full credit when it carries evidence and half credit when
    it does not.
    """
    if events_examined < MIN_EVENTS_FOR_CONFIDENCE:
        return LOW_CONFIDENCE
    if not anomalies:
        return NO_ANOMALY_CONFIDENCE

    strength = sum(1.0 if anomaly.evidence else 0.5 for anomaly in anomalies) / len(anomalies)
    return min(strength * 0.8, MAX_CONFIDENCE)


class AnomalyDetector:
    """Runs four independent pattern analyzers over recent audit events."""

    def __init__(
        self,
        recorder: AuditRecorder,
        clock: Callable[[], datetime] = utcnow,
        utc_offset: timedelta = timedelta(0)
    ):
        self.recorder = recorder
        self.clock = clock
        self.utc_offset = utc_offset

    def detect(
        self,
        user_id: Optional[str] = None,
        organization_id: Optional[str] = None,
        window: timedelta = DEFAULT_WINDOW,
        cancel: Optional[CancellationToken] = None
    ) -> AnomalyReport:
        result = self.recorder.query_result(
            AuditCriteria(
                user_id=user_id,
                organization_id=organization_id,
                start=self.clock() - window
            ),
            limit=MAX_EVENTS
        )
        if not result.ok:
            logger.warning("Anomaly detection skipped: audit events unavailable")
            return AnomalyReport(degraded=True)

        events = result.value
        window_hours = max(window.total_seconds() / 3600, 1.0)

        anomalies: List[Anomaly] = []
        checkpoint(cancel, "login_time")
        anomalies.extend(self.detect_login_anomalies(events))
        checkpoint(cancel, "data_access_volume")
        anomalies.extend(self.detect_data_access_anomalies(events, window_hours))
        checkpoint(cancel, "activity_spike")
        anomalies.extend(self.detect_time_anomalies(events))
        checkpoint(cancel, "ip_diversity")
        anomalies.extend(self.detect_location_anomalies(events))

        return AnomalyReport(
            anomalies=anomalies,
            risk_level=risk_level_for(anomalies),
            confidence=confidence_for(anomalies, len(events)),
            events_examined=len(events)
        )

    def detect_login_anomalies(self, events: Sequence[AuditEvent]) -> List[Anomaly]:
        """Users with more than two logins outside business hours."""
        logins_by_user: Dict[str, List[AuditEvent]] = defaultdict(list)
        for event in events:
            if event.action == AuditAction.LOGIN and event.user_id:
                logins_by_user[event.user_id].append(event)

        anomalies = []
        for user_id in sorted(logins_by_user):
            off_hours = [
                login for login in logins_by_user[user_id]
                if not BUSINESS_HOURS_START <= self._hour(login) < BUSINESS_HOURS_END
            ]
            if len(off_hours) > OFF_HOURS_LOGIN_THRESHOLD:
                anomalies.append(Anomaly(
                    type="unusual_login_time",
                    user_id=user_id,
                    description=f"{len(off_hours)} logins outside normal business hours",
                    risk_score=30,
                    evidence=[
                        {"timestamp": login.timestamp.isoformat(), "hour": self._hour(login)}
                        for login in off_hours
                    ]
                ))
        return anomalies

    def detect_data_access_anomalies(
        self,
        events: Sequence[AuditEvent],
        window_hours: float
    ) -> List[Anomaly]:
        """Users whose average data operations per hour exceed the threshold."""
        counts: Dict[str, int] = defaultdict(int)
        for event in events:
            if event.action.startswith(AuditAction.DATA_PREFIX) and event.user_id:
                counts[event.user_id] += 1

        anomalies = []
        for user_id in sorted(counts):
            per_hour = counts[user_id] / window_hours
            if per_hour > DATA_ACCESS_RATE_THRESHOLD:
                anomalies.append(Anomaly(
                    type="high_volume_data_access",
                    user_id=user_id,
                    description=f"Unusually high data access volume: {counts[user_id]} operations",
                    risk_score=40,
                    evidence={"total_access": counts[user_id], "average_per_hour": per_hour}
                ))
        return anomalies

    def detect_time_anomalies(self, events: Sequence[AuditEvent]) -> List[Anomaly]:
        """Hours of day whose event count exceeds three times the 24-bucket mean."""
        hourly: Dict[int, int] = defaultdict(int)
        for event in events:
            hourly[self._hour(event)] += 1

        average = sum(hourly.values()) / 24
        anomalies = []
        for hour in sorted(hourly):
            count = hourly[hour]
            if count > average * SPIKE_MULTIPLIER:
                anomalies.append(Anomaly(
                    type="unusual_activity_spike",
                    description=f"Unusual activity spike at hour {hour}: {count} events",
                    risk_score=25,
                    evidence={"hour": hour, "event_count": count, "average_activity": average}
                ))
        return anomalies

    def detect_location_anomalies(self, events: Sequence[AuditEvent]) -> List[Anomaly]:
        """Users seen from more than five distinct IP addresses."""
        ips_by_user: Dict[str, set] = defaultdict(set)
        for event in events:
            if event.user_id and event.ip_address:
                ips_by_user[event.user_id].add(event.ip_address)

        anomalies = []
        for user_id in sorted(ips_by_user):
            ips = ips_by_user[user_id]
            if len(ips) > DISTINCT_IP_THRESHOLD:
                anomalies.append(Anomaly(
                    type="multiple_ip_addresses",
                    user_id=user_id,
                    description=f"User accessed from {len(ips)} different IP addresses",
                    risk_score=35,
                    evidence={"ip_count": len(ips), "ips": sorted(ips)}
                ))
        return anomalies

    def _hour(self, event: AuditEvent) -> int:
        return (event.timestamp + self.utc_offset).hour
