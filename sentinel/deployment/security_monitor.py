"""
Security Monitor

Pipeline facade that owns every component and runs the per-request flow:

    Block List -> Threat Scoring (tracker + analyzers) -> Metrics
        -> (if suspicious) Alert Manager -> Security Event Log -> Correlation

The facade is framework independent; flask_middleware adapts it to Flask.
All shared state lives in the component stores, each guarding itself with a
lock, so one monitor can serve concurrent request threads.
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from ..core.config import SentinelConfig
from ..core.models import BlockEntry, EventKind, RequestContext, SecurityEvent, Severity, ThreatAnalysis, to_iso
from ..incident_response.alert_manager import AlertManager
from ..incident_response.correlation import CorrelationEngine
from ..incident_response.event_log import SecurityEventLog, event_type_for
from ..incident_response.incident_manager import AccountLocker, IncidentManager
from ..incident_response.notifier import AlertNotifier
from ..monitoring.block_list import BlockListManager
from ..monitoring.metrics import MetricsAggregator
from ..monitoring.sliding_window import SlidingWindowTracker
from ..utils.storage import SecurityStore
from ..web_security.request_context import build_context
from ..web_security.threat_scoring import ThreatScoringEngine
from .scheduler import BackgroundScheduler

logger = logging.getLogger(__name__)


@dataclass
class MonitorDecision:
    """Outcome of running one request through the pipeline"""
    allowed: bool
    request_id: str
    identity: str
    status_code: int = 200
    body: Optional[Dict[str, Any]] = None
    analysis: Optional[ThreatAnalysis] = None
    started_at: float = field(default_factory=time.time)


class SecurityMonitor:
    """
    Request-level security monitoring pipeline

    Args:
        config: Full configuration (defaults when omitted)
        clock: Time source shared by every component
        account_locker: Collaborator called to lock accounts on authentication incidents
        notifier: Alert dispatcher (built from the alerting config when omitted)
    """

    def __init__(self, config: Optional[SentinelConfig] = None,
                 clock: Callable[[], float] = time.time,
                 account_locker: Optional[AccountLocker] = None,
                 notifier: Optional[AlertNotifier] = None):
        self.config = config or SentinelConfig()
        self.clock = clock
        paths = self.config.paths

        self.store = SecurityStore()
        self.notifier = notifier or AlertNotifier(
            webhook_url=self.config.alerting.webhook_url,
            timeout=self.config.alerting.webhook_timeout,
            queue_size=self.config.alerting.queue_size,
            log_to_console=self.config.monitoring.log_to_console,
        )

        self.tracker = SlidingWindowTracker(clock=clock)
        self.engine = ThreatScoringEngine(self.tracker, self.config.thresholds)
        self.metrics = MetricsAggregator(clock=clock)

        self.event_log = SecurityEventLog(paths.security_logs, store=self.store, clock=clock)
        self.block_list = BlockListManager(paths.blocked_ips, store=self.store, clock=clock,
                                           on_block=self._on_block)

        self.incident_manager = IncidentManager(
            paths.incidents,
            responses=self.config.responses,
            incident_config=self.config.incidents,
            store=self.store,
            clock=clock,
            notifier=self.notifier,
            ip_blocker=self.block_list.block_ip,
            account_locker=account_locker,
            event_log=self.event_log,
        )
        self.alert_manager = AlertManager(
            paths.alert_logs,
            responses=self.config.responses,
            history_size=self.config.monitoring.alert_history_size,
            store=self.store,
            clock=clock,
            notifier=self.notifier,
            block_list=self.block_list,
            incident_manager=self.incident_manager,
            real_time_alerts=self.config.monitoring.real_time_alerts,
            log_to_file=self.config.monitoring.log_to_file,
        )
        self.correlation = CorrelationEngine(self.event_log, self.config.correlation,
                                             incident_manager=self.incident_manager, clock=clock)

        self.event_log.correlator = self.correlation.correlate_event
        self.event_log.on_threshold_exceeded = self.alert_manager.raise_threshold_alert

        self.scheduler = BackgroundScheduler(clock=clock)
        self._schedule_tasks()
        self._initialized = False

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    def _schedule_tasks(self):
        scheduler = self.config.scheduler
        self.scheduler.add_task('prune_tracking', scheduler.prune_interval, self.prune_tracking)
        self.scheduler.add_task('cleanup_logs', scheduler.log_cleanup_interval, self.cleanup_logs)
        self.scheduler.add_task('cleanup_events', scheduler.event_cleanup_interval, self.cleanup_events)
        self.scheduler.add_task('persist', scheduler.persistence_interval, self.persist)
        self.scheduler.add_task('check_escalations', scheduler.escalation_check_interval,
                                self.incident_manager.check_escalations)

    def initialize(self):
        """Create storage directories and load persisted state"""
        if self._initialized:
            return
        paths = self.config.paths
        self.store.ensure_dirs([paths.security_logs, paths.alert_logs, paths.incidents,
                                paths.reports, paths.data])
        self.block_list.load()
        self.incident_manager.load_incidents()
        self._initialized = True
        logger.info("Security monitor initialized")

    def start(self):
        """Initialize and start the notifier and background scheduler"""
        self.initialize()
        self.notifier.start()
        if self.config.scheduler.enabled:
            self.scheduler.start()
        logger.info("Security monitor started")

    def shutdown(self):
        """Stop background work and persist state"""
        self.scheduler.stop()
        self.notifier.stop()
        self.persist()
        logger.info("Security monitor stopped")

    # ========================================================================
    # REQUEST PIPELINE
    # ========================================================================

    def _deny(self, context: RequestContext, status_code: int, error: str, code: str,
              analysis: Optional[ThreatAnalysis] = None) -> MonitorDecision:
        return MonitorDecision(
            allowed=False,
            request_id=context.request_id,
            identity=context.identity,
            status_code=status_code,
            body={
                'success': False,
                'error': error,
                'code': code,
                'requestId': context.request_id,
                'timestamp': to_iso(context.timestamp),
            },
            analysis=analysis,
            started_at=context.timestamp,
        )

    def process_request(self, request: Union[Dict[str, Any], RequestContext]) -> MonitorDecision:
        """
        Run one request through the pipeline

        Args:
            request: Request descriptor dict or a prepared RequestContext

        Returns:
            MonitorDecision; ``allowed`` False carries the denial status and body
        """
        if isinstance(request, RequestContext):
            context = request
        else:
            context = build_context(request, now=self.clock())

        if not self.config.monitoring.enabled:
            return MonitorDecision(allowed=True, request_id=context.request_id,
                                   identity=context.identity, started_at=context.timestamp)

        # Blocked identities are denied before any analysis or tracking
        if self.block_list.is_blocked(context.identity):
            logger.warning(f"Blocked identity {context.identity} attempted access to {context.url}")
            self.metrics.record_blocked(context.identity)
            self.event_log.log_event('BLOCKED_ACCESS_ATTEMPT', {
                'ip': context.identity,
                'requestId': context.request_id,
                'url': context.url,
                'method': context.method,
            }, correlate=False, timestamp=context.timestamp)
            return self._deny(context, 403, 'Access denied', 'ACCESS_DENIED')

        self.tracker.record_event(context.identity, EventKind.REQUEST, context.timestamp)
        self.tracker.record_user_agent(context.identity, context.user_agent, context.timestamp)

        analysis = self.engine.analyze_threat(context)
        self.metrics.record_request(context.identity, analysis)

        if analysis.is_suspicious:
            self.tracker.record_event(context.identity, EventKind.SUSPICIOUS, context.timestamp)
            self.alert_manager.handle_suspicious(context, analysis)
            self.event_log.log_event(event_type_for(analysis), {
                'ip': context.identity,
                'requestId': context.request_id,
                'url': context.url,
                'method': context.method,
                'userAgent': context.user_agent,
                'threats': list(analysis.threats),
                'riskScore': analysis.risk_score,
            }, timestamp=context.timestamp)
        elif self.config.monitoring.log_all_requests:
            self.event_log.log_event('REQUEST_RECEIVED', {
                'ip': context.identity,
                'requestId': context.request_id,
                'url': context.url,
                'method': context.method,
                'threats': [],
                'riskScore': analysis.risk_score,
            }, correlate=False, timestamp=context.timestamp)

        # The automated response may have blocked this identity just now
        if analysis.is_suspicious and self.block_list.is_blocked(context.identity):
            return self._deny(context, 403, 'Access denied', 'ACCESS_DENIED', analysis)

        if (self.config.responses.rate_limit_aggressive
                and 'rate_limit_exceeded' in analysis.threats):
            return self._deny(context, 429, 'Too many requests, please try again later.',
                              'RATE_LIMITED', analysis)

        return MonitorDecision(allowed=True, request_id=context.request_id, identity=context.identity,
                               analysis=analysis, started_at=context.timestamp)

    def record_response(self, decision: MonitorDecision, status_code: int,
                        elapsed_ms: Optional[float] = None):
        """Record response status and latency for a processed request"""
        if elapsed_ms is None:
            elapsed_ms = max(0.0, (self.clock() - decision.started_at) * 1000)
        self.metrics.record_response(status_code, elapsed_ms)

    # ========================================================================
    # OPERATOR AND COLLABORATOR API
    # ========================================================================

    def _on_block(self, entry: BlockEntry):
        self.event_log.log_event('IP_BLOCKED', {
            'ip': entry.identity,
            'reason': entry.reason,
            'blockId': entry.id,
            'threats': [],
            'riskScore': 100,
        }, correlate=False, severity=Severity.CRITICAL, timestamp=entry.timestamp)

    def block_ip(self, identity: str, reason: str = "Manual block") -> Optional[BlockEntry]:
        return self.block_list.block_ip(identity, reason)

    def unblock_ip(self, identity: str) -> bool:
        return self.block_list.unblock_ip(identity)

    def log_security_event(self, event_type: str, data: Optional[Dict[str, Any]] = None,
                           severity: Optional[Union[str, Severity]] = None) -> SecurityEvent:
        """Record an event reported by a collaborator (e.g. AUTHENTICATION_FAILED)"""
        if isinstance(severity, str):
            severity = Severity(severity.lower())
        return self.event_log.log_event(event_type, data, severity=severity)

    def get_security_metrics(self) -> Dict[str, Any]:
        metrics = self.metrics.snapshot()
        metrics.update({
            'blocked_identities': len(self.block_list),
            'tracked_identities': self.tracker.tracked_identities(),
            'total_alerts': self.alert_manager.total_alerts,
            'recent_alerts': self.get_recent_alerts(10),
            'active_incidents': len(self.incident_manager.active_incidents()),
            'security_events': len(self.event_log),
        })
        return metrics

    def get_recent_alerts(self, limit: int = 20) -> List[Dict[str, Any]]:
        return [alert.to_dict() for alert in self.alert_manager.recent_alerts(limit)]

    def get_blocked_ips(self) -> List[str]:
        return self.block_list.get_blocked()

    # ========================================================================
    # SCHEDULED MAINTENANCE
    # ========================================================================

    def prune_tracking(self) -> int:
        return self.tracker.prune(self.config.scheduler.tracking_horizon)

    def cleanup_logs(self) -> int:
        paths = self.config.paths
        return self.store.cleanup_old_files(
            [paths.security_logs, paths.alert_logs, paths.data],
            self.config.monitoring.retention_days,
            now=self.clock(),
            exclude=[self.block_list.blocked_path, self.block_list.metadata_path],
        )

    def cleanup_events(self) -> int:
        removed = self.event_log.cleanup(self.config.scheduler.event_retention_days)
        if removed:
            self.correlation.cleanup()
        return removed

    def persist(self) -> bool:
        """Write block list, incidents and a metrics snapshot"""
        saved = self.block_list.save()
        self.incident_manager.save_incidents()
        snapshot = self.metrics.snapshot()
        metrics_path = Path(self.config.paths.data) / f"metrics-{snapshot['day']}.json"
        return self.store.write_json(metrics_path, snapshot) and saved
