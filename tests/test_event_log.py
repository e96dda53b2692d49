# tests/test_event_log.py
"""
Tests for the categorized security event log
"""

from unittest.mock import Mock

import pytest

from sentinel.core.models import Severity
from sentinel.incident_response.event_log import SecurityEventLog, categorize, severity_for

from tests.test_utils import TEST_IP

pytestmark = pytest.mark.unit


class TestEventTaxonomy:
    """Tests for event categorization"""

    @pytest.mark.parametrize("event_type,category", [
        ('INJECTION_ATTEMPT', 'A03_INJECTION'),
        ('XSS_ATTEMPT', 'A03_INJECTION'),
        ('ACCESS_DENIED', 'A01_ACCESS_CONTROL'),
        ('AUTHENTICATION_FAILED', 'A07_AUTHENTICATION'),
        ('SOMETHING_NEW', 'GENERAL'),
    ])
    def test_categorize(self, event_type, category):
        assert categorize(event_type) == category

    def test_unknown_types_default_to_medium(self):
        assert severity_for('SOMETHING_NEW') == Severity.MEDIUM
        assert severity_for('IP_BLOCKED') == Severity.CRITICAL


class TestSecurityEventLog:
    """Tests for event recording and queries"""

    def test_log_event_writes_json_line(self, event_log, store, fake_clock, tmp_path):
        # Act
        event = event_log.log_event('INJECTION_ATTEMPT', {
            'ip': TEST_IP, 'threats': ['sql_injection'], 'riskScore': 90,
        })

        # Assert
        path = store.dated_path(tmp_path / 'security-logs', 'security', fake_clock.now, '.log')
        records = store.read_jsonl(path)
        assert len(records) == 1
        record = records[0]
        assert record['id'] == event.id
        assert record['ip'] == TEST_IP
        assert record['type'] == 'INJECTION_ATTEMPT'
        assert record['category'] == 'A03_INJECTION'
        assert record['severity'] == 'high'
        assert record['threats'] == ['sql_injection']
        assert record['riskScore'] == 90
        assert record['timestamp'].startswith('2023-11-14T22:13:20')

    def test_event_fields(self, event_log):
        # Act
        event = event_log.log_event('XSS_ATTEMPT', {'source': {'ip': TEST_IP}},
                                    severity=Severity.LOW)

        # Assert
        assert event.source == TEST_IP, "Source should fall back to source.ip"
        assert event.severity == Severity.LOW
        assert event.owasp_mapping == 'A03:2021 - Injection'
        assert event_log.get_event(event.id) is event
        assert event_log.get_event('missing') is None

    def test_correlator_is_called_unless_disabled(self, event_log):
        # Arrange
        correlator = Mock()
        event_log.correlator = correlator

        # Act
        first = event_log.log_event('SUSPICIOUS_REQUEST', {'ip': TEST_IP})
        event_log.log_event('INCIDENT_CREATED', {'ip': TEST_IP}, correlate=False)

        # Assert
        correlator.assert_called_once_with(first)

    def test_threshold_exceeded(self, event_log, fake_clock):
        # Arrange
        handler = Mock()
        event_log.on_threshold_exceeded = handler

        # Act
        for _ in range(2):
            event_log.log_event('INJECTION_ATTEMPT', {'ip': TEST_IP})
            fake_clock.advance(60)
        assert not handler.called, "Two injection attempts stay under the threshold"
        event_log.log_event('INJECTION_ATTEMPT', {'ip': TEST_IP})

        # Assert
        handler.assert_called_once()
        alert = handler.call_args[0][0]
        assert alert['type'] == 'THRESHOLD_EXCEEDED'
        assert alert['eventType'] == 'INJECTION_ATTEMPT'
        assert alert['count'] == 3
        assert alert['threshold'] == 3
        assert alert['ip'] == TEST_IP

    def test_threshold_window_is_one_hour(self, event_log, fake_clock):
        # Arrange
        handler = Mock()
        event_log.on_threshold_exceeded = handler

        # Act: attempts spaced more than half an hour apart
        for _ in range(3):
            event_log.log_event('INJECTION_ATTEMPT', {'ip': TEST_IP})
            fake_clock.advance(1900)

        # Assert
        assert not handler.called, "Only events within the last hour count"

    def test_events_in_window_filters_time_then_caps(self, event_log, fake_clock):
        # Arrange
        start = fake_clock.now
        old = event_log.log_event('SUSPICIOUS_REQUEST', {'ip': TEST_IP})
        events = []
        for _ in range(4):
            fake_clock.advance(10)
            events.append(event_log.log_event('SUSPICIOUS_REQUEST', {'ip': TEST_IP}))

        # Act
        in_window = event_log.events_in_window(start, fake_clock.now)
        capped = event_log.events_in_window(start, fake_clock.now, max_events=2)
        earlier = event_log.events_in_window(start - 1, fake_clock.now,
                                             before_sequence=events[0].sequence)

        # Assert
        assert old not in in_window, "Window start is exclusive"
        assert in_window == events
        assert capped == events[-2:], "The cap keeps the most recent events"
        assert earlier == [old]

    def test_events_in_window_correlating_only(self, event_log, fake_clock):
        # Arrange
        start = fake_clock.now - 1
        kept = event_log.log_event('INJECTION_ATTEMPT', {'ip': TEST_IP})
        skipped = event_log.log_event('IP_BLOCKED', {'ip': TEST_IP}, correlate=False)

        # Act
        everything = event_log.events_in_window(start, fake_clock.now)
        correlating = event_log.events_in_window(start, fake_clock.now, correlating_only=True)

        # Assert
        assert everything == [kept, skipped]
        assert correlating == [kept]
        assert skipped.correlates is False

    def test_recent_events_and_categories(self, event_log):
        # Arrange
        event_log.log_event('INJECTION_ATTEMPT', {'ip': TEST_IP})
        event_log.log_event('XSS_ATTEMPT', {'ip': TEST_IP})
        event_log.log_event('ACCESS_DENIED', {'ip': TEST_IP})

        # Assert
        assert len(event_log) == 3
        assert event_log.categories() == {'A03_INJECTION': 2, 'A01_ACCESS_CONTROL': 1}
        assert [e.type for e in event_log.recent_events('A03_INJECTION')] == \
            ['INJECTION_ATTEMPT', 'XSS_ATTEMPT']
        assert len(event_log.recent_events(limit=2)) == 2
        assert len(event_log.recent_events(limit=0)) == 3

    def test_cleanup_removes_expired_events(self, event_log, fake_clock):
        # Arrange
        event_log.log_event('INJECTION_ATTEMPT', {'ip': TEST_IP})
        fake_clock.advance(31 * 86400)
        recent = event_log.log_event('XSS_ATTEMPT', {'ip': TEST_IP})

        # Act
        removed = event_log.cleanup(retention_days=30)

        # Assert
        assert removed == 1
        assert event_log.recent_events(limit=0) == [recent]

    def test_custom_thresholds(self, tmp_path, store, fake_clock):
        # Arrange
        log = SecurityEventLog(str(tmp_path / 'logs'), store=store, clock=fake_clock,
                               alert_thresholds={'ssrf_attempt': 1})
        handler = Mock()
        log.on_threshold_exceeded = handler

        # Act
        log.log_event('SSRF_ATTEMPT', {'ip': TEST_IP})
        log.log_event('CRYPTO_FAILURE', {'ip': TEST_IP})

        # Assert
        handler.assert_called_once()
        assert handler.call_args[0][0]['eventType'] == 'SSRF_ATTEMPT'
