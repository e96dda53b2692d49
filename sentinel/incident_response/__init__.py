"""
Incident Response
=================

Alerts, security events, correlation and incident lifecycle:
- AlertManager: alert history and automated response policy
- SecurityEventLog: categorized event store with alert thresholds
- CorrelationEngine: relates events and opens correlated-attack incidents
- IncidentManager: incident store, response playbook and escalation
- AlertNotifier: real-time delivery (log and webhook)
"""

from .alert_manager import AlertManager
from .event_log import SecurityEventLog
from .correlation import CorrelationEngine
from .incident_manager import IncidentManager
from .notifier import AlertNotifier

__all__ = [
    'AlertManager',
    'SecurityEventLog',
    'CorrelationEngine',
    'IncidentManager',
    'AlertNotifier',
]
