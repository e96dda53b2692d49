# tests/test_correlation.py
"""
Tests for the event correlation engine
"""

import pytest

from sentinel.core.config import CorrelationConfig
from sentinel.core.models import Severity
from sentinel.incident_response.correlation import CORRELATED_ATTACK, CorrelationEngine

from tests.test_utils import TEST_IP

pytestmark = [
    pytest.mark.security,
    pytest.mark.unit
]


@pytest.fixture
def engine(event_log, incident_manager, fake_clock) -> CorrelationEngine:
    """Engine wired into the event log, opening incidents in incident_manager"""
    engine = CorrelationEngine(event_log, incident_manager=incident_manager, clock=fake_clock)
    event_log.correlator = engine.correlate_event
    return engine


class TestCorrelationScoring:
    """Tests for pairwise correlation kinds"""

    def test_temporal_score_decays_per_minute(self, event_log, fake_clock):
        # Arrange: unrelated categories, no source
        engine = CorrelationEngine(event_log, clock=fake_clock)
        prior = event_log.log_event('CONFIG_VIOLATION')
        fake_clock.advance(60)
        event = event_log.log_event('SSRF_ATTEMPT')

        # Act
        result = engine.evaluate(event)

        # Assert
        assert len(result.correlations) == 1
        correlation = result.correlations[0]
        assert correlation.correlated_event == prior.id
        assert correlation.type == 'temporal'
        assert correlation.score == pytest.approx(9.0), "One minute apart should score 10 - 1"

    def test_attack_sequence_is_directed(self, event_log, fake_clock):
        # Arrange: injection followed by access control, outside the temporal threshold
        engine = CorrelationEngine(event_log, clock=fake_clock)
        event_log.log_event('INJECTION_ATTEMPT', {'ip': '203.0.113.1'})
        fake_clock.advance(600)
        forward = event_log.log_event('ACCESS_DENIED', {'ip': '203.0.113.2'})

        # Act
        result = engine.evaluate(forward)

        # Assert
        assert [c.kinds for c in result.correlations] == [['attack_sequence']]
        assert result.correlations[0].score == 15

    def test_reverse_sequence_does_not_correlate(self, event_log, fake_clock):
        # Arrange
        engine = CorrelationEngine(event_log, clock=fake_clock)
        event_log.log_event('ACCESS_DENIED', {'ip': '203.0.113.1'})
        fake_clock.advance(600)
        reverse = event_log.log_event('INJECTION_ATTEMPT', {'ip': '203.0.113.2'})

        # Act
        result = engine.evaluate(reverse)

        # Assert
        assert result.correlations == []

    def test_one_entry_per_prior_with_strongest_kind(self, event_log, fake_clock):
        # Arrange: same category, same source, 30 seconds apart
        engine = CorrelationEngine(event_log, clock=fake_clock)
        event_log.log_event('INJECTION_ATTEMPT', {'ip': TEST_IP})
        fake_clock.advance(30)
        event = event_log.log_event('XSS_ATTEMPT', {'ip': TEST_IP})

        # Act
        result = engine.evaluate(event)

        # Assert
        assert len(result.correlations) == 1
        correlation = result.correlations[0]
        assert set(correlation.kinds) == {'temporal', 'same_category', 'source'}
        assert correlation.type == 'temporal', "9.5 temporal outweighs 8 for source"
        assert correlation.score == pytest.approx(9.5 + 5 + 8)

    def test_evaluate_is_repeatable(self, event_log, fake_clock):
        # Arrange
        engine = CorrelationEngine(event_log, clock=fake_clock)
        for _ in range(3):
            event_log.log_event('INJECTION_ATTEMPT', {'ip': TEST_IP})
            fake_clock.advance(5)
        event = event_log.log_event('INJECTION_ATTEMPT', {'ip': TEST_IP})

        # Act
        first = engine.evaluate(event).to_dict()
        second = engine.evaluate(event).to_dict()

        # Assert
        assert first == second
        assert first['correlationScore'] == 3
        assert engine.get_result(event.id) is None, "evaluate must not store results"

    def test_later_events_are_not_priors(self, event_log, fake_clock):
        # Arrange
        engine = CorrelationEngine(event_log, clock=fake_clock)
        first = event_log.log_event('INJECTION_ATTEMPT', {'ip': TEST_IP})
        event_log.log_event('INJECTION_ATTEMPT', {'ip': TEST_IP})

        # Act
        result = engine.evaluate(first)

        # Assert
        assert result.correlations == []

    def test_window_excludes_old_events(self, event_log, fake_clock):
        # Arrange
        engine = CorrelationEngine(event_log, clock=fake_clock)
        event_log.log_event('INJECTION_ATTEMPT', {'ip': TEST_IP})
        fake_clock.advance(3600)
        event = event_log.log_event('INJECTION_ATTEMPT', {'ip': TEST_IP})

        # Act
        result = engine.evaluate(event)

        # Assert
        assert result.correlations == [], "An event exactly one window old is outside it"

    def test_max_events_keeps_most_recent(self, event_log, fake_clock):
        # Arrange
        engine = CorrelationEngine(event_log, config=CorrelationConfig(max_events=2), clock=fake_clock)
        priors = []
        for _ in range(5):
            priors.append(event_log.log_event('INJECTION_ATTEMPT', {'ip': TEST_IP}))
            fake_clock.advance(1)
        event = event_log.log_event('INJECTION_ATTEMPT', {'ip': TEST_IP})

        # Act
        result = engine.evaluate(event)

        # Assert
        assert [c.correlated_event for c in result.correlations] == [p.id for p in priors[-2:]]

    def test_bookkeeping_events_are_not_priors(self, event_log, fake_clock):
        # Arrange: the events a high-risk request leaves behind
        engine = CorrelationEngine(event_log, config=CorrelationConfig(max_events=1), clock=fake_clock)
        attack = event_log.log_event('INJECTION_ATTEMPT', {'ip': TEST_IP})
        event_log.log_event('INCIDENT_CREATED', {'ip': TEST_IP}, correlate=False)
        event_log.log_event('IP_BLOCKED', {'ip': TEST_IP}, correlate=False)
        event_log.log_event('REQUEST_RECEIVED', {'ip': TEST_IP}, correlate=False)
        fake_clock.advance(1)
        event = event_log.log_event('SUSPICIOUS_REQUEST', {'ip': TEST_IP})

        # Act
        result = engine.evaluate(event)

        # Assert
        assert [c.correlated_event for c in result.correlations] == [attack.id], \
            "Only correlating events count, and the cap applies after they are selected"
        assert result.correlation_score == 1


class TestCorrelatedAttacks:
    """Tests for escalation of dense correlation into incidents"""

    def log_burst(self, event_log, fake_clock, count):
        events = []
        for _ in range(count):
            events.append(event_log.log_event('SUSPICIOUS_REQUEST', {'ip': TEST_IP}))
            fake_clock.advance(10)
        return events

    def test_six_priors_open_one_incident(self, engine, event_log, incident_manager, fake_clock):
        # Arrange
        self.log_burst(event_log, fake_clock, 6)
        assert incident_manager.all_incidents() == [], "Attack score 50 is not above the threshold"

        # Act
        seventh = self.log_burst(event_log, fake_clock, 1)[0]

        # Assert
        incidents = incident_manager.all_incidents()
        assert len(incidents) == 1
        incident = incidents[0]
        assert incident.type == CORRELATED_ATTACK
        assert incident.severity == Severity.HIGH
        assert incident.source == TEST_IP
        assert incident.data['triggerEvent'] == seventh.id
        assert incident.data['attackScore'] == 60

    def test_further_correlation_updates_open_incident(self, engine, event_log, incident_manager, fake_clock):
        # Arrange
        self.log_burst(event_log, fake_clock, 7)

        # Act
        self.log_burst(event_log, fake_clock, 1)

        # Assert
        incidents = incident_manager.all_incidents()
        assert len(incidents) == 1, "An open correlated-attack incident should be reused"
        actions = [entry.action for entry in incidents[0].timeline]
        assert 'correlation_updated' in actions

    def test_closed_incident_allows_new_one(self, engine, event_log, incident_manager, fake_clock):
        # Arrange
        self.log_burst(event_log, fake_clock, 7)
        incident_manager.close_incident(incident_manager.all_incidents()[0].id)

        # Act
        self.log_burst(event_log, fake_clock, 1)

        # Assert
        assert len(incident_manager.all_incidents()) == 2
        assert len(incident_manager.active_incidents()) == 1

    def test_results_are_stored_and_cleaned(self, engine, event_log, fake_clock):
        # Arrange
        events = self.log_burst(event_log, fake_clock, 3)

        # Assert
        assert engine.get_result(events[0].id) is None, "The first event has nothing to correlate with"
        assert engine.get_result(events[2].id).correlation_score == 2
        assert engine.stats() == {'stored_results': 2}
        assert len(engine.recent_results()) == 2

        # Act
        removed = engine.cleanup(known_event_ids={events[2].id})

        # Assert
        assert removed == 1
        assert engine.get_result(events[1].id) is None

    def test_disabled_engine(self, event_log, incident_manager, fake_clock):
        # Arrange
        engine = CorrelationEngine(event_log, config=CorrelationConfig(enabled=False),
                                   incident_manager=incident_manager, clock=fake_clock)
        event_log.correlator = engine.correlate_event

        # Act
        events = self.log_burst(event_log, fake_clock, 8)

        # Assert
        assert engine.correlate_event(events[-1]) is None
        assert incident_manager.all_incidents() == []
