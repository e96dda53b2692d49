# tests/test_notifier.py
"""
Tests for real-time alert delivery
"""

from unittest.mock import Mock

import pytest
import requests

from sentinel.incident_response.notifier import AlertNotifier

pytestmark = pytest.mark.unit

WEBHOOK = 'https://hooks.example.com/sentinel'


class TestAlertNotifier:
    """Tests for inline and webhook delivery"""

    def test_inline_delivery_logs_alert(self, sentinel_logs):
        # Arrange
        notifier = AlertNotifier()

        # Act
        notifier.notify('security_alert', {'ip': '203.0.113.7', 'threats': ['xss_attempt'], 'riskScore': 85})

        # Assert
        assert notifier.stats()['delivered'] == 1
        assert '[SECURITY-ALERT] xss_attempt from 203.0.113.7 (risk 85)' in sentinel_logs.text

    def test_console_output_can_be_disabled(self, sentinel_logs):
        notifier = AlertNotifier(log_to_console=False)
        notifier.notify('security_alert', {'ip': '203.0.113.7', 'threats': ['xss_attempt']})
        assert 'SECURITY-ALERT' not in sentinel_logs.text
        assert notifier.stats()['delivered'] == 1

    def test_webhook_post(self):
        # Arrange
        session = Mock()
        notifier = AlertNotifier(webhook_url=WEBHOOK, timeout=2.0, session=session)

        # Act
        notifier.notify('admin_alert', {'summary': 'incident'})

        # Assert
        session.post.assert_called_once_with(
            WEBHOOK, json={'kind': 'admin_alert', 'payload': {'summary': 'incident'}}, timeout=2.0
        )
        session.post.return_value.raise_for_status.assert_called_once()
        assert notifier.stats()['delivered'] == 1

    def test_webhook_failure_is_counted(self):
        # Arrange
        session = Mock()
        session.post.side_effect = requests.ConnectionError('refused')
        notifier = AlertNotifier(webhook_url=WEBHOOK, session=session)

        # Act
        notifier.notify('admin_alert', {'summary': 'incident'})

        # Assert
        stats = notifier.stats()
        assert stats['failed'] == 1
        assert stats['delivered'] == 0

    def test_http_error_is_counted(self):
        session = Mock()
        session.post.return_value.raise_for_status.side_effect = requests.HTTPError('503')
        notifier = AlertNotifier(webhook_url=WEBHOOK, session=session)
        notifier.notify('admin_alert', {'summary': 'incident'})
        assert notifier.stats()['failed'] == 1

    def test_history_is_capped(self):
        notifier = AlertNotifier(log_to_console=False)
        for i in range(150):
            notifier.notify('admin_alert', {'summary': str(i)})
        assert len(notifier.history) == 100
        assert notifier.history[-1]['payload']['summary'] == '149'

    def test_worker_delivers_queued_alerts(self):
        # Arrange
        session = Mock()
        notifier = AlertNotifier(webhook_url=WEBHOOK, session=session, log_to_console=False)

        # Act
        notifier.start()
        for i in range(5):
            notifier.notify('security_alert', {'n': i})
        notifier.stop()

        # Assert
        assert session.post.call_count == 5, "Stopping drains the queue"
        assert notifier.stats()['queued'] == 0
