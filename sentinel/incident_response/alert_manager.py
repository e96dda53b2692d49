"""
Alert Manager

Turns suspicious analyses into alerts: keeps a capped alert history, appends
each alert to the dated alert log, dispatches it in real time and applies the
automated response policy (auto-block, high-threat incident).
"""

import logging
import threading
import time
import uuid
from collections import deque
from pathlib import Path
from typing import Any, Callable, Deque, Dict, List, Optional

from ..core.config import ResponseConfig
from ..core.models import Alert, RequestContext, Severity, ThreatAnalysis
from ..utils.storage import SecurityStore
from .event_log import categorize, event_type_for, severity_for
from .notifier import AlertNotifier

logger = logging.getLogger(__name__)

HIGH_THREAT = 'HIGH_THREAT_DETECTED'


class AlertManager:
    """Thread-safe alert history and automated response policy"""

    def __init__(self, alert_dir: str, responses: Optional[ResponseConfig] = None,
                 history_size: int = 1000, store: Optional[SecurityStore] = None,
                 clock: Callable[[], float] = time.time,
                 notifier: Optional[AlertNotifier] = None,
                 block_list=None, incident_manager=None,
                 real_time_alerts: bool = True, log_to_file: bool = True):
        self.alert_dir = Path(alert_dir)
        self.responses = responses or ResponseConfig()
        self.store = store or SecurityStore()
        self.clock = clock
        self.notifier = notifier
        self.block_list = block_list
        self.incident_manager = incident_manager
        self.real_time_alerts = real_time_alerts
        self.log_to_file = log_to_file

        self._history: Deque[Alert] = deque(maxlen=history_size)
        self._total_alerts = 0
        self._lock = threading.RLock()

    def handle_suspicious(self, context: RequestContext, analysis: ThreatAnalysis) -> Alert:
        """
        Record an alert for a suspicious request and apply response policy

        Returns:
            The recorded alert
        """
        event_type = event_type_for(analysis)
        alert = Alert(
            id=str(uuid.uuid4()),
            request_id=context.request_id,
            timestamp=context.timestamp,
            identity=context.identity,
            user_agent=context.user_agent,
            url=context.url,
            method=context.method,
            threats=list(analysis.threats),
            risk_score=analysis.risk_score,
            details={name: verdict.to_dict() for name, verdict in analysis.analyses.items()
                     if verdict.suspicious or verdict.score},
            type=event_type,
            category=categorize(event_type),
            severity=severity_for(event_type),
        )
        self._record(alert)

        if self.responses.auto_block and analysis.risk_score > self.responses.auto_block_threshold:
            if self.block_list is not None:
                self.block_list.block_ip(
                    context.identity,
                    f"Automated block: risk score {analysis.risk_score} ({', '.join(analysis.threats)})"
                )

        if analysis.risk_score > self.responses.incident_threshold and self.incident_manager is not None:
            self.incident_manager.create_incident(
                HIGH_THREAT,
                {
                    'ip': context.identity,
                    'requestId': context.request_id,
                    'url': context.url,
                    'threats': list(analysis.threats),
                    'riskScore': analysis.risk_score,
                },
                Severity.HIGH,
                source=context.identity,
            )

        return alert

    def raise_threshold_alert(self, data: Dict[str, Any]) -> Alert:
        """Record an alert for an event type that crossed its alert threshold"""
        alert = Alert(
            id=str(uuid.uuid4()),
            request_id='',
            timestamp=self.clock(),
            identity=data.get('ip') or '',
            user_agent='',
            url='',
            method='',
            threats=[data.get('type', 'THRESHOLD_EXCEEDED')],
            risk_score=0,
            details=dict(data),
            type='THRESHOLD_EXCEEDED',
            category=categorize('THRESHOLD_EXCEEDED'),
            severity=severity_for('THRESHOLD_EXCEEDED'),
        )
        self._record(alert)
        return alert

    def _record(self, alert: Alert):
        with self._lock:
            self._history.append(alert)
            self._total_alerts += 1

        logger.warning(
            f"Security alert {alert.id}: {', '.join(alert.threats)} from {alert.identity or 'unknown'} "
            f"(risk {alert.risk_score})"
        )

        document = alert.to_dict()
        if self.log_to_file:
            path = self.store.dated_path(self.alert_dir, 'alerts', alert.timestamp, '.jsonl')
            self.store.append_jsonl(path, document)
        if self.real_time_alerts and self.notifier is not None:
            self.notifier.notify('security_alert', document)

    def recent_alerts(self, limit: int = 20) -> List[Alert]:
        with self._lock:
            alerts = list(self._history)
        return alerts[-limit:] if limit else alerts

    @property
    def total_alerts(self) -> int:
        with self._lock:
            return self._total_alerts

    def __len__(self) -> int:
        with self._lock:
            return len(self._history)
