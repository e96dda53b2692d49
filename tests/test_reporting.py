# tests/test_reporting.py
"""
Tests for security report generation
"""

import json

import pytest

from sentinel.core.models import Alert, Severity
from sentinel.reporting.security_reporter import (
    SecurityReporter,
    analyze_attack_patterns,
    frequency_class,
    top_sources,
    top_threats,
)

from tests.test_utils import TEST_EPOCH, TEST_IP, make_descriptor

pytestmark = pytest.mark.unit


def make_alert(identity, threats, risk, timestamp=TEST_EPOCH):
    return Alert(id=f"alert-{identity}-{timestamp}", request_id='', timestamp=timestamp,
                 identity=identity, user_agent='', url='/', method='GET',
                 threats=threats, risk_score=risk)


class TestReportHelpers:
    """Tests for report aggregation helpers"""

    @pytest.mark.parametrize("interval,expected", [
        (60, 'very_high'),
        (10 * 60, 'high'),
        (60 * 60, 'medium'),
        (3 * 3600, 'low'),
    ])
    def test_frequency_class(self, interval, expected):
        timestamps = [TEST_EPOCH + i * interval for i in range(4)]
        assert frequency_class(timestamps) == expected

    def test_single_occurrence_is_low(self):
        assert frequency_class([TEST_EPOCH]) == 'low'

    def test_top_threats_order(self):
        ranked = top_threats({'xss_attempt': 2, 'sql_injection': 5, 'bot_activity': 2}, limit=2)
        assert ranked == [{'threat': 'sql_injection', 'count': 5}, {'threat': 'bot_activity', 'count': 2}]

    def test_attack_patterns_and_sources(self):
        # Arrange
        alerts = [
            make_alert(TEST_IP, ['sql_injection'], 90, TEST_EPOCH),
            make_alert(TEST_IP, ['sql_injection', 'malicious_content'], 90, TEST_EPOCH + 60),
            make_alert('203.0.113.7', ['sql_injection'], 50, TEST_EPOCH + 120),
        ]

        # Act
        patterns = analyze_attack_patterns(alerts)
        sources = top_sources(alerts)

        # Assert
        assert patterns[0] == {'threat': 'sql_injection', 'count': 3, 'uniqueIps': 2, 'frequency': 'very_high'}
        assert sources == [{'ip': TEST_IP, 'count': 2}, {'ip': '203.0.113.7', 'count': 1}]


class TestSecurityReporter:
    """Tests for full reports from a monitor"""

    def test_quiet_system_is_low_risk(self, monitor):
        # Act
        report = SecurityReporter(monitor).generate_security_report()

        # Assert
        assert set(report) == {'id', 'timestamp', 'overallRiskLevel', 'securityMonitoring',
                               'incidents', 'eventCategories', 'recommendations'}
        assert report['overallRiskLevel'] == 'LOW'
        assert [r['priority'] for r in report['recommendations']] == ['LOW']

    def test_high_incident_raises_risk(self, monitor):
        # Arrange
        monitor.process_request(make_descriptor(method='POST', body="' OR 1=1 --"))

        # Act
        report = SecurityReporter(monitor).generate_security_report()

        # Assert
        monitoring = report['securityMonitoring']
        assert report['overallRiskLevel'] == 'HIGH'
        assert monitoring['criticalAlerts'] == 1
        assert monitoring['blockedIpsCount'] == 1
        assert monitoring['topThreats'][0]['count'] == 1
        assert report['eventCategories']['A03_INJECTION'] == 1
        priorities = [r['priority'] for r in report['recommendations']]
        assert 'CRITICAL' in priorities, "Unacknowledged incidents should be called out"
        assert 'HIGH' in priorities, "All requests were suspicious"

    def test_critical_incident(self, monitor):
        monitor.incident_manager.create_incident('DATA_BREACH', {}, Severity.CRITICAL)
        report = SecurityReporter(monitor).generate_security_report()
        assert report['overallRiskLevel'] == 'CRITICAL'

    def test_save_report(self, monitor, tmp_path):
        # Arrange
        reporter = SecurityReporter(monitor, reports_dir=str(tmp_path / 'reports'))
        report = reporter.generate_security_report()

        # Act
        path = reporter.save_report(report)

        # Assert
        assert path.name == 'security-report-2023-11-14T22-13-20.json'
        assert json.loads(path.read_text())['id'] == report['id']
