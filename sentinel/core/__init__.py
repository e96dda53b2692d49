"""
Core building blocks: configuration, data models and exceptions.
"""

from .config import SentinelConfig, load_config
from .exceptions import ConfigurationError, IncidentNotFoundError, PersistenceError, SentinelError
from .models import (
    Alert,
    AnalyzerVerdict,
    BlockEntry,
    Correlation,
    CorrelationResult,
    EventKind,
    Incident,
    IncidentStatus,
    RequestContext,
    SecurityEvent,
    Severity,
    ThreatAnalysis,
)

__all__ = [
    'SentinelConfig', 'load_config',
    'SentinelError', 'ConfigurationError', 'PersistenceError', 'IncidentNotFoundError',
    'Alert', 'AnalyzerVerdict', 'BlockEntry', 'Correlation', 'CorrelationResult',
    'EventKind', 'Incident', 'IncidentStatus', 'RequestContext', 'SecurityEvent',
    'Severity', 'ThreatAnalysis',
]
