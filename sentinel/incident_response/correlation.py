"""
Correlation Engine

Relates each new security event to the events logged before it within the
correlation window, and escalates dense correlation into an incident.

Scoring against each prior event:
    temporal  - within the temporal threshold: max(0, 10 - minutes apart)
    pattern   - same category: +5; known attack sequence (prior -> new): +15
    source    - same source identity: +8

A prior event that scores on any kind yields one correlation entry.
"""

import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, Dict, List, Optional, Tuple

from ..core.config import CorrelationConfig
from ..core.models import Correlation, CorrelationResult, Incident, SecurityEvent, Severity
from .event_log import SecurityEventLog

logger = logging.getLogger(__name__)

SAME_CATEGORY_SCORE = 5
ATTACK_SEQUENCE_SCORE = 15
SAME_SOURCE_SCORE = 8
MAX_TEMPORAL_SCORE = 10
CORRELATED_ATTACK = 'CORRELATED_ATTACK_DETECTED'
MAX_STORED_RESULTS = 10000


class CorrelationEngine:
    """
    Correlates security events and opens correlated-attack incidents

    ``evaluate`` is pure: it only reads the event log, so evaluating the same
    event over an unchanged log always yields the same result.
    """

    def __init__(self, event_log: SecurityEventLog, config: Optional[CorrelationConfig] = None,
                 incident_manager=None, clock: Callable[[], float] = time.time):
        self.event_log = event_log
        self.config = config or CorrelationConfig()
        self.incident_manager = incident_manager
        self.clock = clock

        self._sequences = {tuple(pair) for pair in self.config.attack_sequences if len(pair) == 2}
        self._results: "OrderedDict[str, CorrelationResult]" = OrderedDict()
        self._lock = threading.RLock()

    # ========================================================================
    # SCORING
    # ========================================================================

    def _score_pair(self, event: SecurityEvent, prior: SecurityEvent) -> Tuple[float, List[Tuple[str, float]]]:
        kinds = []

        seconds_apart = abs(event.timestamp - prior.timestamp)
        if seconds_apart <= self.config.temporal_threshold_seconds:
            temporal = max(0.0, MAX_TEMPORAL_SCORE - seconds_apart / 60.0)
            if temporal > 0:
                kinds.append(('temporal', temporal))

        if event.category == prior.category:
            kinds.append(('same_category', SAME_CATEGORY_SCORE))
        if (prior.category, event.category) in self._sequences:
            kinds.append(('attack_sequence', ATTACK_SEQUENCE_SCORE))

        source = event.source
        if source and source == prior.source:
            kinds.append(('source', SAME_SOURCE_SCORE))

        return sum(score for _, score in kinds), kinds

    def evaluate(self, event: SecurityEvent) -> CorrelationResult:
        """
        Correlate an event against the events logged before it

        The window is ``(event time - window, event time]``; the time filter
        runs first, then only the most recent ``max_events`` are kept.
        """
        priors = self.event_log.events_in_window(
            start=event.timestamp - self.config.window_seconds,
            end=event.timestamp,
            max_events=self.config.max_events,
            before_sequence=event.sequence,
            correlating_only=True,
        )

        correlations = []
        for prior in priors:
            if prior.id == event.id:
                continue
            score, kinds = self._score_pair(event, prior)
            if not kinds:
                continue
            strongest = max(kinds, key=lambda item: item[1])[0]
            correlations.append(Correlation(
                type=strongest,
                correlated_event=prior.id,
                score=score,
                kinds=[name for name, _ in kinds],
            ))

        return CorrelationResult(event_id=event.id, correlations=correlations, timestamp=event.timestamp)

    # ========================================================================
    # STORAGE AND ESCALATION
    # ========================================================================

    def correlate_event(self, event: SecurityEvent) -> Optional[CorrelationResult]:
        """
        Evaluate, store and, if dense enough, escalate an event

        Returns:
            The correlation result, or None when correlation is disabled
        """
        if not self.config.enabled:
            return None

        result = self.evaluate(event)
        if result.correlations:
            with self._lock:
                self._results[event.id] = result
                while len(self._results) > MAX_STORED_RESULTS:
                    self._results.popitem(last=False)

        if result.correlation_score >= self.config.min_correlations:
            self.handle_correlated_attack(event, result)
        return result

    def handle_correlated_attack(self, event: SecurityEvent,
                                 result: CorrelationResult) -> Optional[Incident]:
        """
        Open (or update) a correlated-attack incident when the attack score is high

        attack_score = correlation count * 10; an incident is needed when it
        exceeds the configured threshold. An open correlated-attack incident
        for the same source is updated instead of opening another.
        """
        attack_score = result.correlation_score * 10
        if attack_score <= self.config.attack_score_threshold:
            logger.debug(f"Event {event.id} correlated with {result.correlation_score} events "
                         f"(attack score {attack_score})")
            return None
        if self.incident_manager is None:
            return None

        source = event.source
        existing = self.incident_manager.find_open_incident(CORRELATED_ATTACK, source)
        if existing is not None:
            return self.incident_manager.add_timeline_entry(
                existing.id, 'correlation_updated',
                f"Event {event.id} correlated with {result.correlation_score} events "
                f"(attack score {attack_score})"
            )

        logger.warning(f"Correlated attack detected from {source or 'unknown source'}: "
                       f"{result.correlation_score} correlations, attack score {attack_score}")
        return self.incident_manager.create_incident(
            CORRELATED_ATTACK,
            {
                'triggerEvent': event.id,
                'eventType': event.type,
                'category': event.category,
                'correlations': [c.to_dict() for c in result.correlations],
                'attackScore': attack_score,
                'ip': source,
            },
            Severity.HIGH,
            source=source,
        )

    def get_result(self, event_id: str) -> Optional[CorrelationResult]:
        with self._lock:
            return self._results.get(event_id)

    def recent_results(self, limit: int = 20) -> List[CorrelationResult]:
        with self._lock:
            results = list(self._results.values())
        return results[-limit:]

    def cleanup(self, known_event_ids: Optional[set] = None) -> int:
        """Forget results whose events have left the event log"""
        if known_event_ids is None:
            known_event_ids = {e.id for e in self.event_log.recent_events(limit=0)}
        with self._lock:
            stale = [event_id for event_id in self._results if event_id not in known_event_ids]
            for event_id in stale:
                del self._results[event_id]
        return len(stale)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {'stored_results': len(self._results)}
