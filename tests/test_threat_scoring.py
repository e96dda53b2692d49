# tests/test_threat_scoring.py
"""
Tests for the threat scoring engine
"""

import pytest

from sentinel.core.models import EventKind
from sentinel.web_security.analyzers import analyze_sql
from sentinel.web_security.request_context import build_context
from sentinel.web_security.threat_scoring import MAX_RISK_SCORE, ThreatScoringEngine

from tests.test_utils import (
    TEST_IP,
    TEST_SQLI_BODY,
    TEST_TRAVERSAL_URL,
    make_descriptor,
)

pytestmark = [
    pytest.mark.security,
    pytest.mark.unit
]


@pytest.fixture
def engine(tracker) -> ThreatScoringEngine:
    return ThreatScoringEngine(tracker)


class TestThreatScoringEngine:
    """Tests for aggregation of analyzer verdicts"""

    def test_clean_request(self, engine, fake_clock):
        # Arrange
        context = build_context(make_descriptor(), now=fake_clock())

        # Act
        analysis = engine.analyze_threat(context)

        # Assert
        assert not analysis.is_suspicious
        assert analysis.threats == []
        assert analysis.risk_score == 0
        assert set(analysis.analyses) == {'rate', 'content', 'user_agent', 'payload',
                                          'path', 'sql', 'xss', 'bot'}

    def test_sql_injection_body(self, engine, fake_clock):
        # Arrange
        context = build_context(
            make_descriptor(method='POST', url='/api/login', body=TEST_SQLI_BODY),
            now=fake_clock()
        )

        # Act
        analysis = engine.analyze_threat(context)

        # Assert
        assert analysis.is_suspicious
        assert analysis.threats == ['malicious_content', 'sql_injection']
        assert analysis.risk_score == 90, "Content (40) and SQL (50) signatures should add up"

    def test_risk_score_is_capped(self, engine, fake_clock):
        # Arrange: traversal in the URL and SQL in the body
        context = build_context(
            make_descriptor(method='POST', url=TEST_TRAVERSAL_URL, body=TEST_SQLI_BODY),
            now=fake_clock()
        )

        # Act
        analysis = engine.analyze_threat(context)

        # Assert
        assert analysis.risk_score == MAX_RISK_SCORE
        assert analysis.threats == ['malicious_content', 'path_traversal', 'sql_injection'], \
            "Threat tags should follow analyzer order"

    def test_informational_signals_are_not_suspicious(self, engine, fake_clock):
        # Arrange
        context = build_context(
            make_descriptor(method='POST', content_length=2 * 1024 * 1024),
            now=fake_clock()
        )

        # Act
        analysis = engine.analyze_threat(context)

        # Assert
        assert not analysis.is_suspicious
        assert analysis.threats == ['large_payload']
        assert analysis.risk_score == 15

    def test_bot_signature_is_tagged_but_not_suspicious(self, engine, fake_clock):
        context = build_context(make_descriptor(user_agent='Googlebot/2.1'), now=fake_clock())
        analysis = engine.analyze_threat(context)
        assert not analysis.is_suspicious
        assert analysis.threats == ['bot_activity']
        assert analysis.risk_score == 10

    def test_rate_limit_exceeded(self, engine, tracker, fake_clock):
        # Arrange
        for _ in range(101):
            tracker.record_event(TEST_IP, EventKind.REQUEST)
        context = build_context(make_descriptor(), now=fake_clock())

        # Act
        analysis = engine.analyze_threat(context)

        # Assert
        assert analysis.is_suspicious
        assert analysis.analyses['rate'].score == 30
        assert 'rate_limit_exceeded' in analysis.threats
        assert 'bot_activity' in analysis.threats, "101 requests per minute is also bot volume"
        assert analysis.risk_score == 50

    def test_analysis_does_not_touch_tracker(self, engine, tracker, fake_clock):
        # Arrange
        context = build_context(make_descriptor(user_agent='sqlmap/1.7'), now=fake_clock())

        # Act
        engine.analyze_threat(context)
        engine.analyze_threat(context)

        # Assert
        assert tracker.tracked_identities() == 0, "Scoring must be read-only on the tracker"
        assert tracker.recent_count(TEST_IP, EventKind.REQUEST, 60) == 0

    def test_custom_analyzer_set(self, tracker, fake_clock):
        # Arrange
        engine = ThreatScoringEngine(tracker, analyzers=[('sql', 'sql_injection', analyze_sql)])
        context = build_context(
            make_descriptor(method='POST', url=TEST_TRAVERSAL_URL, body=TEST_SQLI_BODY),
            now=fake_clock()
        )

        # Act
        analysis = engine.analyze_threat(context)

        # Assert
        assert analysis.threats == ['sql_injection']
        assert analysis.risk_score == 50

    def test_to_dict_uses_wire_names(self, engine, fake_clock):
        # Arrange
        context = build_context(make_descriptor(user_agent=None), now=fake_clock())

        # Act
        data = engine.analyze_threat(context).to_dict()

        # Assert
        assert data['isSuspicious'] is True
        assert data['riskScore'] == 20
        assert data['threats'] == ['suspicious_user_agent']
        assert data['analyses']['user_agent']['issues'] == ['suspicious_user_agent: missing']
