"""
Data models for the Request Sentinel pipeline

Timestamps are kept as epoch seconds (float) in memory and rendered as
ISO-8601 UTC strings whenever a model is serialized.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Any, Optional, Mapping


def to_iso(timestamp: float) -> str:
    """Render epoch seconds as an ISO-8601 UTC string"""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def from_iso(value: Any) -> float:
    """Parse an ISO-8601 string (or pass through a number) into epoch seconds"""
    if isinstance(value, (int, float)):
        return float(value)
    parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


# ============================================================================
# ENUMERATIONS
# ============================================================================

class Severity(Enum):
    """Severity tiers shared by events and incidents"""
    INFO = "info"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)

    def raised(self) -> 'Severity':
        """Next tier up, saturating at CRITICAL"""
        return _SEVERITY_ORDER[min(self.rank + 1, len(_SEVERITY_ORDER) - 1)]


_SEVERITY_ORDER = [Severity.INFO, Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL]


class IncidentStatus(Enum):
    """Incident lifecycle: open until explicitly closed"""
    OPEN = "open"
    CLOSED = "closed"


class EventKind(Enum):
    """Kinds of timestamps kept by the sliding window tracker"""
    REQUEST = "request"
    SUSPICIOUS = "suspicious"


# ============================================================================
# REQUEST ANALYSIS
# ============================================================================

@dataclass(frozen=True)
class RequestContext:
    """
    Read-only view of one inbound request

    Headers are stored with lower-cased names so lookups are case-insensitive.
    """
    identity: str
    user_agent: str
    timestamp: float
    url: str
    method: str
    headers: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    body: Any = None
    query: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    content_length: int = 0
    referer: str = ""
    request_id: str = ""

    def header(self, name: str, default: str = "") -> str:
        """Case-insensitive header lookup"""
        return self.headers.get(name.lower(), default)


@dataclass
class AnalyzerVerdict:
    """Result of a single signal analyzer"""
    suspicious: bool = False
    score: int = 0
    issues: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ThreatAnalysis:
    """Aggregate verdict for one request"""
    is_suspicious: bool
    threats: List[str]
    risk_score: int
    analyses: Dict[str, AnalyzerVerdict] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'isSuspicious': self.is_suspicious,
            'threats': list(self.threats),
            'riskScore': self.risk_score,
            'analyses': {name: verdict.to_dict() for name, verdict in self.analyses.items()},
        }


# ============================================================================
# ALERTS AND BLOCKS
# ============================================================================

@dataclass
class Alert:
    """One suspicious request (or threshold breach) worth an operator's attention"""
    id: str
    request_id: str
    timestamp: float
    identity: str
    user_agent: str
    url: str
    method: str
    threats: List[str]
    risk_score: int
    details: Dict[str, Any] = field(default_factory=dict)
    type: str = 'SUSPICIOUS_REQUEST'
    category: str = 'GENERAL'
    severity: Severity = Severity.MEDIUM

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'requestId': self.request_id,
            'timestamp': to_iso(self.timestamp),
            'type': self.type,
            'category': self.category,
            'severity': self.severity.value,
            'ip': self.identity,
            'userAgent': self.user_agent,
            'url': self.url,
            'method': self.method,
            'threats': list(self.threats),
            'riskScore': self.risk_score,
            'details': self.details,
        }


@dataclass
class BlockEntry:
    """Metadata kept alongside a blocked identity"""
    identity: str
    reason: str
    timestamp: float
    id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'ip': self.identity,
            'reason': self.reason,
            'timestamp': to_iso(self.timestamp),
            'id': self.id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BlockEntry':
        return cls(
            identity=data['ip'],
            reason=data.get('reason', ''),
            timestamp=from_iso(data['timestamp']),
            id=data['id'],
        )


# ============================================================================
# SECURITY EVENTS AND CORRELATION
# ============================================================================

@dataclass
class SecurityEvent:
    """Categorized security event feeding the correlation engine"""
    id: str
    type: str
    category: str
    severity: Severity
    timestamp: float
    data: Dict[str, Any] = field(default_factory=dict)
    owasp_mapping: Optional[str] = None
    sequence: int = 0  # Insertion order inside the event log
    correlates: bool = True  # False for bookkeeping events kept out of correlation

    @property
    def source(self) -> Optional[str]:
        """Originating identity, if the event carries one"""
        source = self.data.get('ip')
        if not source and isinstance(self.data.get('source'), dict):
            source = self.data['source'].get('ip')
        return source

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'type': self.type,
            'category': self.category,
            'severity': self.severity.value,
            'timestamp': to_iso(self.timestamp),
            'data': self.data,
            'owaspMapping': self.owasp_mapping,
        }


@dataclass
class Correlation:
    """Relationship between a new event and one prior event"""
    type: str  # Strongest matching kind
    correlated_event: str
    score: float
    kinds: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type,
            'correlatedEvent': self.correlated_event,
            'score': round(self.score, 3),
            'kinds': list(self.kinds),
        }


@dataclass
class CorrelationResult:
    """All correlations found for one event"""
    event_id: str
    correlations: List[Correlation]
    timestamp: float

    @property
    def correlation_score(self) -> int:
        return len(self.correlations)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'eventId': self.event_id,
            'correlations': [c.to_dict() for c in self.correlations],
            'correlationScore': self.correlation_score,
            'timestamp': to_iso(self.timestamp),
        }


# ============================================================================
# INCIDENTS
# ============================================================================

@dataclass
class TimelineEntry:
    """Append-only record of an incident state change"""
    timestamp: float
    action: str
    details: str

    def to_dict(self) -> Dict[str, Any]:
        return {'timestamp': to_iso(self.timestamp), 'action': self.action, 'details': self.details}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TimelineEntry':
        return cls(timestamp=from_iso(data['timestamp']), action=data['action'],
                   details=data.get('details', ''))


@dataclass
class Incident:
    """Stateful response to a detected threat or correlated attack"""
    id: str
    type: str
    severity: Severity
    status: IncidentStatus
    created_at: float
    updated_at: float
    data: Dict[str, Any] = field(default_factory=dict)
    response_actions: List[Dict[str, Any]] = field(default_factory=list)
    escalation_level: int = 0
    timeline: List[TimelineEntry] = field(default_factory=list)
    source: Optional[str] = None
    acknowledged_at: Optional[float] = None

    @property
    def is_open(self) -> bool:
        return self.status == IncidentStatus.OPEN

    def add_timeline(self, timestamp: float, action: str, details: str):
        """Record a state change and bump updated_at"""
        self.timeline.append(TimelineEntry(timestamp=timestamp, action=action, details=details))
        self.updated_at = timestamp

    def last_escalation_time(self) -> float:
        """Creation time or the time of the most recent escalation"""
        for entry in reversed(self.timeline):
            if entry.action == 'incident_escalated':
                return entry.timestamp
        return self.created_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'type': self.type,
            'severity': self.severity.value,
            'status': self.status.value,
            'createdAt': to_iso(self.created_at),
            'updatedAt': to_iso(self.updated_at),
            'data': self.data,
            'responseActions': list(self.response_actions),
            'escalationLevel': self.escalation_level,
            'timeline': [entry.to_dict() for entry in self.timeline],
            'source': self.source,
            'acknowledgedAt': to_iso(self.acknowledged_at) if self.acknowledged_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Incident':
        acknowledged = data.get('acknowledgedAt')
        return cls(
            id=data['id'],
            type=data['type'],
            severity=Severity(data['severity']),
            status=IncidentStatus(data['status']),
            created_at=from_iso(data['createdAt']),
            updated_at=from_iso(data['updatedAt']),
            data=data.get('data') or {},
            response_actions=list(data.get('responseActions') or []),
            escalation_level=int(data.get('escalationLevel', 0)),
            timeline=[TimelineEntry.from_dict(t) for t in data.get('timeline') or []],
            source=data.get('source'),
            acknowledged_at=from_iso(acknowledged) if acknowledged else None,
        )
