"""
Security Event Log

Categorized, append-only store of SecurityEvents. Every event is bucketed by
its OWASP-style category, written as one JSON line to the dated security log,
checked against per-type alert thresholds and, unless disabled, handed to
the correlation engine.
"""

import logging
import threading
import time
import uuid
from collections import defaultdict
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from ..core.models import SecurityEvent, Severity, ThreatAnalysis, to_iso
from ..utils.storage import SecurityStore

logger = logging.getLogger(__name__)

# ============================================================================
# EVENT TAXONOMY
# ============================================================================

EVENT_CATEGORIES = {
    'AUTHENTICATION_FAILED': 'A07_AUTHENTICATION',
    'ACCESS_DENIED': 'A01_ACCESS_CONTROL',
    'INJECTION_ATTEMPT': 'A03_INJECTION',
    'XSS_ATTEMPT': 'A03_INJECTION',
    'CRYPTO_FAILURE': 'A02_CRYPTOGRAPHIC_FAILURES',
    'CONFIG_VIOLATION': 'A05_MISCONFIGURATION',
    'COMPONENT_VULNERABILITY': 'A06_VULNERABLE_COMPONENTS',
    'SESSION_ANOMALY': 'A07_AUTHENTICATION',
    'INTEGRITY_VIOLATION': 'A08_INTEGRITY_FAILURES',
    'LOGGING_FAILURE': 'A09_LOGGING_FAILURES',
    'SSRF_ATTEMPT': 'A10_SSRF',
    'BLOCKED_ACCESS_ATTEMPT': 'A01_ACCESS_CONTROL',
    'IP_BLOCKED': 'A01_ACCESS_CONTROL',
    'RATE_LIMIT_EXCEEDED': 'A04_INSECURE_DESIGN',
    'SUSPICIOUS_REQUEST': 'GENERAL',
    'THRESHOLD_EXCEEDED': 'A09_LOGGING_FAILURES',
    'INCIDENT_CREATED': 'GENERAL',
    'REQUEST_RECEIVED': 'GENERAL',
    'SECURITY_EVENT': 'GENERAL',
}

EVENT_SEVERITIES = {
    'AUTHENTICATION_FAILED': Severity.MEDIUM,
    'ACCESS_DENIED': Severity.HIGH,
    'INJECTION_ATTEMPT': Severity.HIGH,
    'XSS_ATTEMPT': Severity.HIGH,
    'CRYPTO_FAILURE': Severity.CRITICAL,
    'CONFIG_VIOLATION': Severity.MEDIUM,
    'COMPONENT_VULNERABILITY': Severity.HIGH,
    'SESSION_ANOMALY': Severity.MEDIUM,
    'INTEGRITY_VIOLATION': Severity.CRITICAL,
    'LOGGING_FAILURE': Severity.MEDIUM,
    'SSRF_ATTEMPT': Severity.HIGH,
    'BLOCKED_ACCESS_ATTEMPT': Severity.MEDIUM,
    'IP_BLOCKED': Severity.CRITICAL,
    'RATE_LIMIT_EXCEEDED': Severity.MEDIUM,
    'SUSPICIOUS_REQUEST': Severity.MEDIUM,
    'THRESHOLD_EXCEEDED': Severity.HIGH,
    'INCIDENT_CREATED': Severity.HIGH,
    'REQUEST_RECEIVED': Severity.INFO,
    'SECURITY_EVENT': Severity.MEDIUM,
}

OWASP_TOP_10 = {
    'ACCESS_DENIED': 'A01:2021 - Broken Access Control',
    'BLOCKED_ACCESS_ATTEMPT': 'A01:2021 - Broken Access Control',
    'IP_BLOCKED': 'A01:2021 - Broken Access Control',
    'CRYPTO_FAILURE': 'A02:2021 - Cryptographic Failures',
    'INJECTION_ATTEMPT': 'A03:2021 - Injection',
    'XSS_ATTEMPT': 'A03:2021 - Injection',
    'INSECURE_DESIGN': 'A04:2021 - Insecure Design',
    'RATE_LIMIT_EXCEEDED': 'A04:2021 - Insecure Design',
    'CONFIG_VIOLATION': 'A05:2021 - Security Misconfiguration',
    'COMPONENT_VULNERABILITY': 'A06:2021 - Vulnerable and Outdated Components',
    'AUTHENTICATION_FAILED': 'A07:2021 - Identification and Authentication Failures',
    'SESSION_ANOMALY': 'A07:2021 - Identification and Authentication Failures',
    'INTEGRITY_VIOLATION': 'A08:2021 - Software and Data Integrity Failures',
    'LOGGING_FAILURE': 'A09:2021 - Security Logging and Monitoring Failures',
    'SSRF_ATTEMPT': 'A10:2021 - Server-Side Request Forgery',
}

# Events of one type within the last hour that raise a THRESHOLD_EXCEEDED alert
ALERT_THRESHOLDS = {
    'authentication_failed': 10,
    'access_denied': 5,
    'injection_attempt': 3,
    'crypto_failure': 1,
    'integrity_violation': 1,
}

THRESHOLD_WINDOW_SECONDS = 60 * 60

# Event type logged for a suspicious request, by the first matching threat
THREAT_EVENT_TYPES = [
    ('sql_injection', 'INJECTION_ATTEMPT'),
    ('xss_attempt', 'XSS_ATTEMPT'),
    ('malicious_content', 'INJECTION_ATTEMPT'),
    ('path_traversal', 'ACCESS_DENIED'),
    ('rate_limit_exceeded', 'RATE_LIMIT_EXCEEDED'),
]
DEFAULT_SUSPICIOUS_EVENT = 'SUSPICIOUS_REQUEST'


def categorize(event_type: str) -> str:
    return EVENT_CATEGORIES.get(event_type, 'GENERAL')


def severity_for(event_type: str) -> Severity:
    return EVENT_SEVERITIES.get(event_type, Severity.MEDIUM)


def event_type_for(analysis: ThreatAnalysis) -> str:
    for threat, event_type in THREAT_EVENT_TYPES:
        if threat in analysis.threats:
            return event_type
    return DEFAULT_SUSPICIOUS_EVENT


class SecurityEventLog:
    """
    Thread-safe categorized event store

    Collaborators are wired after construction:
        on_threshold_exceeded(alert_data) - called when a type hits its threshold
        correlator(event) - called for each event logged with correlate=True
    """

    def __init__(self, log_dir: str, store: Optional[SecurityStore] = None,
                 clock: Callable[[], float] = time.time,
                 alert_thresholds: Optional[Dict[str, int]] = None):
        self.log_dir = Path(log_dir)
        self.store = store or SecurityStore()
        self.clock = clock
        self.alert_thresholds = dict(ALERT_THRESHOLDS if alert_thresholds is None else alert_thresholds)

        self.on_threshold_exceeded: Optional[Callable[[Dict[str, Any]], Any]] = None
        self.correlator: Optional[Callable[[SecurityEvent], Any]] = None

        self._buckets: Dict[str, List[SecurityEvent]] = defaultdict(list)
        self._sequence = 0
        self._lock = threading.RLock()

    def log_event(self, event_type: str, data: Optional[Dict[str, Any]] = None,
                  correlate: bool = True, severity: Optional[Severity] = None,
                  timestamp: Optional[float] = None) -> SecurityEvent:
        """
        Record a security event

        Args:
            event_type: Event type, e.g. INJECTION_ATTEMPT
            data: Event payload; ``ip`` (or ``source.ip``) identifies the source
            correlate: Feed the event to the correlation engine
            severity: Override the severity from the taxonomy
            timestamp: Event time (defaults to now)

        Returns:
            The stored SecurityEvent
        """
        with self._lock:
            self._sequence += 1
            event = SecurityEvent(
                id=str(uuid.uuid4()),
                type=event_type,
                category=categorize(event_type),
                severity=severity or severity_for(event_type),
                timestamp=self.clock() if timestamp is None else timestamp,
                data=dict(data or {}),
                owasp_mapping=OWASP_TOP_10.get(event_type),
                sequence=self._sequence,
                correlates=correlate,
            )
            self._buckets[event.category].append(event)

        self._write(event)
        self._check_threshold(event)

        if correlate and self.correlator is not None:
            self.correlator(event)

        logger.debug(f"Security event logged: {event_type} ({event.severity.value})")
        return event

    def _write(self, event: SecurityEvent):
        record = {
            'id': event.id,
            'timestamp': to_iso(event.timestamp),
            'ip': event.source,
            'type': event.type,
            'category': event.category,
            'severity': event.severity.value,
            'threats': event.data.get('threats', []),
            'riskScore': event.data.get('riskScore', 0),
        }
        path = self.store.dated_path(self.log_dir, 'security', event.timestamp, '.log')
        self.store.append_jsonl(path, record)

    def _check_threshold(self, event: SecurityEvent):
        threshold = self.alert_thresholds.get(event.type.lower())
        if not threshold:
            return

        count = self.count_recent(event.type, THRESHOLD_WINDOW_SECONDS, now=event.timestamp)
        if count >= threshold:
            logger.warning(f"Alert threshold exceeded for {event.type}: {count} >= {threshold}")
            if self.on_threshold_exceeded is not None:
                self.on_threshold_exceeded({
                    'type': 'THRESHOLD_EXCEEDED',
                    'eventType': event.type,
                    'count': count,
                    'threshold': threshold,
                    'severity': event.severity.value,
                    'ip': event.source,
                })

    # ========================================================================
    # QUERIES
    # ========================================================================

    def count_recent(self, event_type: str, window_seconds: float, now: Optional[float] = None) -> int:
        """Events of one type newer than ``now - window_seconds``"""
        cutoff = (self.clock() if now is None else now) - window_seconds
        with self._lock:
            return sum(
                1
                for bucket in self._buckets.values()
                for event in bucket
                if event.type == event_type and event.timestamp > cutoff
            )

    def events_in_window(self, start: float, end: float, max_events: Optional[int] = None,
                         before_sequence: Optional[int] = None,
                         correlating_only: bool = False) -> List[SecurityEvent]:
        """
        Events with ``start < timestamp <= end`` in chronological order

        The time filter is applied first; ``max_events`` then keeps only the
        most recent events. ``before_sequence`` restricts the result to events
        logged before the given sequence number. ``correlating_only`` drops
        events logged with ``correlate=False``.
        """
        with self._lock:
            events = [
                event
                for bucket in self._buckets.values()
                for event in bucket
                if start < event.timestamp <= end
                and (before_sequence is None or event.sequence < before_sequence)
                and (event.correlates or not correlating_only)
            ]
        events.sort(key=lambda e: (e.timestamp, e.sequence))
        if max_events is not None and len(events) > max_events:
            events = events[-max_events:]
        return events

    def recent_events(self, category: Optional[str] = None, limit: int = 50) -> List[SecurityEvent]:
        """Most recent events, optionally for one category"""
        with self._lock:
            if category is not None:
                events = list(self._buckets.get(category, []))
            else:
                events = [event for bucket in self._buckets.values() for event in bucket]
        events.sort(key=lambda e: (e.timestamp, e.sequence))
        return events[-limit:] if limit else events

    def categories(self) -> Dict[str, int]:
        """Event count per category"""
        with self._lock:
            return {category: len(bucket) for category, bucket in self._buckets.items() if bucket}

    def get_event(self, event_id: str) -> Optional[SecurityEvent]:
        with self._lock:
            for bucket in self._buckets.values():
                for event in bucket:
                    if event.id == event_id:
                        return event
        return None

    def __len__(self) -> int:
        with self._lock:
            return sum(len(bucket) for bucket in self._buckets.values())

    def cleanup(self, retention_days: int, now: Optional[float] = None) -> int:
        """
        Drop events older than the retention period

        Returns:
            Number of events removed
        """
        cutoff = (self.clock() if now is None else now) - retention_days * 86400
        removed = 0
        with self._lock:
            for category in list(self._buckets):
                bucket = self._buckets[category]
                kept = [event for event in bucket if event.timestamp >= cutoff]
                removed += len(bucket) - len(kept)
                if kept:
                    self._buckets[category] = kept
                else:
                    del self._buckets[category]
        if removed:
            logger.info(f"Removed {removed} security events past retention")
        return removed
