"""
Incident Manager

Owns the incident store and drives automated response:
- Creates incidents and runs the response playbook for their severity
- Acknowledges and closes incidents on operator request
- Escalates open, unacknowledged incidents that exceed their response timeout
- Persists one JSON document per incident, rewritten on every state change

Incident lifecycle:
    open --(close_incident)--> closed

Every state change is appended to the incident timeline.
"""

import logging
import threading
import time
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from ..core.config import IncidentConfig, ResponseConfig
from ..core.exceptions import IncidentNotFoundError
from ..core.models import Incident, IncidentStatus, Severity, to_iso
from ..utils.storage import SecurityStore
from .notifier import AlertNotifier

logger = logging.getLogger(__name__)

# Signature of the account-lock collaborator: (user_id, incident) -> locked
AccountLocker = Callable[[str, Incident], bool]
# Signature of the block collaborator: (identity, reason) -> anything
IPBlocker = Callable[[str, str], Any]

RESPONSE_SEVERITIES = (Severity.HIGH, Severity.CRITICAL)


def _as_severity(severity: Union[str, Severity]) -> Severity:
    if isinstance(severity, Severity):
        return severity
    return Severity(str(severity).lower())


class IncidentManager:
    """
    Thread-safe incident store with automated response and escalation
    """

    def __init__(self, incidents_dir: str,
                 responses: Optional[ResponseConfig] = None,
                 incident_config: Optional[IncidentConfig] = None,
                 store: Optional[SecurityStore] = None,
                 clock: Callable[[], float] = time.time,
                 notifier: Optional[AlertNotifier] = None,
                 ip_blocker: Optional[IPBlocker] = None,
                 account_locker: Optional[AccountLocker] = None,
                 event_log=None):
        self.incidents_dir = Path(incidents_dir)
        self.responses = responses or ResponseConfig()
        self.incident_config = incident_config or IncidentConfig()
        self.store = store or SecurityStore()
        self.clock = clock
        self.notifier = notifier
        self.ip_blocker = ip_blocker
        self.account_locker = account_locker
        self.event_log = event_log

        self._incidents: Dict[str, Incident] = {}
        self._lock = threading.RLock()

    # ========================================================================
    # CREATION AND RESPONSE
    # ========================================================================

    def create_incident(self, incident_type: str, data: Optional[Dict[str, Any]] = None,
                        severity: Union[str, Severity] = Severity.MEDIUM,
                        source: Optional[str] = None) -> Incident:
        """
        Open a new incident and execute the automated response

        Args:
            incident_type: e.g. HIGH_THREAT_DETECTED
            data: Incident details
            severity: low, medium, high or critical
            source: Originating identity, if known

        Returns:
            The created incident
        """
        now = self.clock()
        data = dict(data or {})
        if source is None:
            source = data.get('ip') or (data.get('source') or {}).get('ip')

        incident = Incident(
            id=str(uuid.uuid4()),
            type=incident_type,
            severity=_as_severity(severity),
            status=IncidentStatus.OPEN,
            created_at=now,
            updated_at=now,
            data=data,
            source=source,
        )
        incident.add_timeline(now, 'incident_created', f"Incident created: {incident_type}")

        with self._lock:
            self._incidents[incident.id] = incident

        logger.warning(f"Incident {incident.id} created: {incident_type} ({incident.severity.value})")

        self.execute_incident_response(incident)
        self._save_incident(incident)

        if self.event_log is not None:
            self.event_log.log_event('INCIDENT_CREATED', {
                'incidentId': incident.id,
                'incidentType': incident_type,
                'ip': source,
            }, correlate=False, timestamp=now)

        return incident

    def execute_incident_response(self, incident: Incident) -> List[Dict[str, Any]]:
        """
        Run the response playbook for an incident

        High and critical incidents get IP blocking, administrator alerting
        and report generation (each switchable in ResponseConfig).
        Authentication incidents additionally lock the affected account.

        Returns:
            Actions executed in this run
        """
        actions = []

        if incident.severity in RESPONSE_SEVERITIES:
            if self.responses.block_ip and incident.source:
                actions.append(self._block_source(incident))
            if self.responses.alert_administrators:
                actions.append(self.alert_administrators(incident))
            if self.responses.generate_report:
                actions.append(self.generate_incident_report(incident))

        if 'AUTHENTICATION' in incident.type and self.responses.lock_account:
            actions.append(self._lock_account(incident))

        with self._lock:
            incident.response_actions.extend(actions)
            incident.add_timeline(
                self.clock(), 'automated_response_executed',
                f"Executed {len(actions)} automated response actions"
            )
        return actions

    def _action(self, action: str, success: bool, **fields) -> Dict[str, Any]:
        result = {'action': action}
        result.update(fields)
        result['timestamp'] = to_iso(self.clock())
        result['success'] = success
        return result

    def _block_source(self, incident: Incident) -> Dict[str, Any]:
        reason = f"Automated block: {incident.type}"
        if self.ip_blocker is None:
            return self._action('ip_blocked', False, target=incident.source, reason=reason,
                                error='No IP blocker configured')
        self.ip_blocker(incident.source, reason)
        return self._action('ip_blocked', True, target=incident.source, reason=reason)

    def alert_administrators(self, incident: Incident, reason: str = "incident") -> Dict[str, Any]:
        """Notify administrators about an incident"""
        summary = (f"Security incident {incident.id} - {incident.type} "
                   f"({incident.severity.value}, escalation {incident.escalation_level})")
        if self.notifier is not None:
            self.notifier.notify('admin_alert', {
                'summary': summary,
                'reason': reason,
                'incident': incident.to_dict(),
            })
        else:
            logger.warning(f"ADMIN ALERT: {summary}")
        return self._action('administrators_alerted', True, incidentId=incident.id)

    def generate_incident_report(self, incident: Incident) -> Dict[str, Any]:
        """Write ``incident-report-<id>.json`` next to the incident files"""
        report = {
            'incidentId': incident.id,
            'type': incident.type,
            'severity': incident.severity.value,
            'summary': f"Security incident {incident.type} detected with {incident.severity.value} severity",
            'details': incident.data,
            'responseActions': list(incident.response_actions),
            'timeline': [entry.to_dict() for entry in incident.timeline],
            'generatedAt': to_iso(self.clock()),
        }
        report_file = self.incidents_dir / f"incident-report-{incident.id}.json"
        success = self.store.write_json(report_file, report)
        return self._action('report_generated', success, incidentId=incident.id,
                            reportFile=str(report_file))

    def _lock_account(self, incident: Incident) -> Dict[str, Any]:
        source = incident.data.get('source') if isinstance(incident.data.get('source'), dict) else {}
        user_id = incident.data.get('userId') or source.get('userId')
        if not user_id:
            return self._action('account_locked', False, error='No user ID found in incident data')
        if self.account_locker is None:
            logger.warning(f"Account lock requested for {user_id} but no account locker is configured")
            return self._action('account_locked', False, userId=user_id,
                                error='No account locker configured')

        locked = bool(self.account_locker(user_id, incident))
        if locked:
            logger.warning(f"Account {user_id} locked due to incident {incident.id}")
        return self._action('account_locked', locked, userId=user_id, reason=incident.type)

    # ========================================================================
    # OPERATOR ACTIONS
    # ========================================================================

    def _require(self, incident_id: str) -> Incident:
        incident = self._incidents.get(incident_id)
        if incident is None:
            raise IncidentNotFoundError(f"Incident not found: {incident_id}")
        return incident

    def acknowledge_incident(self, incident_id: str, actor: str = "operator") -> Incident:
        """
        Mark an incident as acknowledged, stopping further escalation

        Raises:
            IncidentNotFoundError: If the incident does not exist
        """
        with self._lock:
            incident = self._require(incident_id)
            if incident.acknowledged_at is None:
                now = self.clock()
                incident.acknowledged_at = now
                incident.add_timeline(now, 'incident_acknowledged', f"Acknowledged by {actor}")

        logger.info(f"Incident {incident_id} acknowledged by {actor}")
        self._save_incident(incident)
        return incident

    def close_incident(self, incident_id: str, actor: str = "operator", resolution: str = "") -> bool:
        """
        Close an open incident

        Returns:
            True if the incident was closed, False if it already was

        Raises:
            IncidentNotFoundError: If the incident does not exist
        """
        with self._lock:
            incident = self._require(incident_id)
            if not incident.is_open:
                return False
            incident.status = IncidentStatus.CLOSED
            details = f"Closed by {actor}"
            if resolution:
                details += f": {resolution}"
            incident.add_timeline(self.clock(), 'incident_closed', details)

        logger.info(f"Incident {incident_id} closed by {actor}")
        self._save_incident(incident)
        return True

    def add_timeline_entry(self, incident_id: str, action: str, details: str) -> Incident:
        """Append an entry to an incident timeline and persist it"""
        with self._lock:
            incident = self._require(incident_id)
            incident.add_timeline(self.clock(), action, details)
        self._save_incident(incident)
        return incident

    # ========================================================================
    # ESCALATION
    # ========================================================================

    def _timeout_for(self, severity: Severity) -> float:
        timeouts = self.incident_config.response_timeouts
        return timeouts.get(severity.value, timeouts['low'])

    def check_escalations(self, now: Optional[float] = None) -> List[Incident]:
        """
        Escalate overdue incidents

        An open, unacknowledged incident whose time since creation (or since
        its last escalation) exceeds the timeout for its severity has its
        escalation level and severity raised and administrators re-alerted.

        Returns:
            Incidents escalated in this pass
        """
        now = self.clock() if now is None else now
        escalated = []

        with self._lock:
            for incident in self._incidents.values():
                if not incident.is_open or incident.acknowledged_at is not None:
                    continue
                if incident.escalation_level >= self.incident_config.max_escalation_level:
                    continue
                if now - incident.last_escalation_time() <= self._timeout_for(incident.severity):
                    continue

                previous = incident.severity
                incident.escalation_level += 1
                incident.severity = previous.raised()
                incident.add_timeline(
                    now, 'incident_escalated',
                    f"Escalated to level {incident.escalation_level} "
                    f"({previous.value} -> {incident.severity.value})"
                )
                escalated.append(incident)

        for incident in escalated:
            logger.warning(
                f"Incident {incident.id} escalated to level {incident.escalation_level} "
                f"({incident.severity.value})"
            )
            action = self.alert_administrators(incident, reason="escalation")
            with self._lock:
                incident.response_actions.append(action)
            self._save_incident(incident)

        return escalated

    # ========================================================================
    # QUERIES
    # ========================================================================

    def get_incident(self, incident_id: str) -> Optional[Incident]:
        with self._lock:
            return self._incidents.get(incident_id)

    def active_incidents(self) -> List[Incident]:
        with self._lock:
            incidents = [i for i in self._incidents.values() if i.is_open]
        return sorted(incidents, key=lambda i: i.created_at)

    def all_incidents(self) -> List[Incident]:
        with self._lock:
            incidents = list(self._incidents.values())
        return sorted(incidents, key=lambda i: i.created_at)

    def find_open_incident(self, incident_type: str, source: Optional[str]) -> Optional[Incident]:
        """Most recent open incident of a type for a source identity"""
        with self._lock:
            matches = [
                i for i in self._incidents.values()
                if i.is_open and i.type == incident_type and i.source == source
            ]
        return max(matches, key=lambda i: i.created_at) if matches else None

    def summary(self) -> Dict[str, Any]:
        """Counts by status and severity"""
        with self._lock:
            incidents = list(self._incidents.values())
        by_severity: Dict[str, int] = {}
        for incident in incidents:
            if incident.is_open:
                by_severity[incident.severity.value] = by_severity.get(incident.severity.value, 0) + 1
        return {
            'total': len(incidents),
            'open': sum(1 for i in incidents if i.is_open),
            'closed': sum(1 for i in incidents if not i.is_open),
            'acknowledged': sum(1 for i in incidents if i.is_open and i.acknowledged_at is not None),
            'open_by_severity': by_severity,
        }

    # ========================================================================
    # PERSISTENCE
    # ========================================================================

    def _incident_path(self, incident_id: str) -> Path:
        return self.incidents_dir / f"incident-{incident_id}.json"

    def _save_incident(self, incident: Incident) -> bool:
        with self._lock:
            document = incident.to_dict()
        return self.store.write_json(self._incident_path(incident.id), document)

    def save_incidents(self) -> int:
        """
        Rewrite every incident document

        Returns:
            Number of incidents written successfully
        """
        with self._lock:
            documents = [(i.id, i.to_dict()) for i in self._incidents.values()]
        saved = sum(1 for incident_id, document in documents
                    if self.store.write_json(self._incident_path(incident_id), document))
        logger.debug(f"Saved {saved}/{len(documents)} incidents")
        return saved

    def load_incidents(self) -> int:
        """
        Load incident documents from the incidents directory

        Returns:
            Number of incidents loaded
        """
        if not self.incidents_dir.is_dir():
            return 0

        loaded = {}
        for path in sorted(self.incidents_dir.glob('incident-*.json')):
            if path.name.startswith('incident-report-'):
                continue
            document = self.store.read_json(path)
            if not isinstance(document, dict):
                continue
            try:
                incident = Incident.from_dict(document)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed incident file {path.name}: {e}")
                continue
            loaded[incident.id] = incident

        with self._lock:
            self._incidents.update(loaded)

        logger.info(f"Loaded {len(loaded)} incidents")
        return len(loaded)
