"""
Metrics aggregator

Rolling daily counters for the monitoring dashboard. Counters reset on the
first update after a UTC day boundary. The same events are exported as
Prometheus counters and a processing-time histogram, which never reset.
"""

import collections
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, Optional, Set

import numpy as np
from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

from ..core.models import ThreatAnalysis

logger = logging.getLogger(__name__)

MAX_RESPONSE_SAMPLES = 100000


def utc_day(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime('%Y-%m-%d')


class MetricsAggregator:
    """
    Thread-safe daily request, threat and response-time counters

    Args:
        clock: Time source
        registry: Prometheus registry for the exported metrics (a private
            registry per aggregator when omitted)
        max_samples: Response times kept for the average and p95; older
            samples are discarded first
    """

    def __init__(self, clock: Callable[[], float] = time.time,
                 registry: Optional[CollectorRegistry] = None,
                 max_samples: int = MAX_RESPONSE_SAMPLES):
        self.clock = clock
        self.max_samples = max_samples
        self.registry = registry if registry is not None else CollectorRegistry()
        self._init_prometheus()

        self._lock = threading.RLock()
        self._day = utc_day(self.clock())
        self._reset_counters()

    def _init_prometheus(self):
        self.requests_counter = Counter(
            'sentinel_requests_total',
            'Total requests analyzed by the security monitor',
            registry=self.registry
        )
        self.suspicious_counter = Counter(
            'sentinel_suspicious_requests_total',
            'Requests flagged as suspicious',
            registry=self.registry
        )
        self.threats_counter = Counter(
            'sentinel_threats_total',
            'Threat tags detected',
            ['threat'],
            registry=self.registry
        )
        self.blocked_counter = Counter(
            'sentinel_blocked_requests_total',
            'Requests denied because the identity is blocked',
            registry=self.registry
        )
        self.error_counter = Counter(
            'sentinel_error_responses_total',
            'Responses with a 4xx or 5xx status',
            registry=self.registry
        )
        self.processing_time = Histogram(
            'sentinel_response_seconds',
            'Time spent serving monitored requests',
            buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0],
            registry=self.registry
        )

    def _reset_counters(self):
        self.total_requests = 0
        self.suspicious_requests = 0
        self.blocked_requests = 0
        self.unique_identities: Set[str] = set()
        self.threat_types: collections.Counter = collections.Counter()
        self.response_times: Deque[float] = collections.deque(maxlen=self.max_samples)
        self.error_responses = 0

    def _rollover(self, now: Optional[float] = None):
        """Reset counters when the UTC day has changed (caller holds the lock)"""
        day = utc_day(self.clock() if now is None else now)
        if day != self._day:
            logger.info(f"Metrics day rollover {self._day} -> {day}")
            self._day = day
            self._reset_counters()

    def record_request(self, identity: str, analysis: ThreatAnalysis):
        with self._lock:
            self._rollover()
            self.total_requests += 1
            self.unique_identities.add(identity)
            if analysis.is_suspicious:
                self.suspicious_requests += 1
                self.threat_types.update(analysis.threats)

        self.requests_counter.inc()
        if analysis.is_suspicious:
            self.suspicious_counter.inc()
            for threat in analysis.threats:
                self.threats_counter.labels(threat=threat).inc()

    def record_blocked(self, identity: str):
        with self._lock:
            self._rollover()
            self.blocked_requests += 1
            self.unique_identities.add(identity)
        self.blocked_counter.inc()

    def record_response(self, status_code: int, response_time_ms: float):
        with self._lock:
            self._rollover()
            self.response_times.append(float(response_time_ms))
            if status_code >= 400:
                self.error_responses += 1

        self.processing_time.observe(max(0.0, response_time_ms) / 1000.0)
        if status_code >= 400:
            self.error_counter.inc()

    def export_prometheus(self) -> bytes:
        """Prometheus text exposition of the exported metrics"""
        return generate_latest(self.registry)

    def reset(self):
        with self._lock:
            self._day = utc_day(self.clock())
            self._reset_counters()

    def snapshot(self) -> Dict[str, Any]:
        """
        Current counters with derived statistics

        Returns:
            Dictionary with totals, threat histogram, average and p95
            response time (ms) and error rate (percent of requests)
        """
        with self._lock:
            self._rollover()
            times = np.array(self.response_times, dtype=float)
            total = self.total_requests
            snapshot = {
                'day': self._day,
                'total_requests': total,
                'suspicious_requests': self.suspicious_requests,
                'blocked_requests': self.blocked_requests,
                'unique_identities': len(self.unique_identities),
                'threat_types': dict(self.threat_types),
                'error_responses': self.error_responses,
            }

        if times.size:
            snapshot['average_response_time'] = float(np.mean(times))
            snapshot['p95_response_time'] = float(np.percentile(times, 95))
        else:
            snapshot['average_response_time'] = 0.0
            snapshot['p95_response_time'] = 0.0
        snapshot['error_rate'] = (snapshot['error_responses'] / total * 100) if total else 0.0
        return snapshot
