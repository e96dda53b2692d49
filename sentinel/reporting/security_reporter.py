"""
Security Reporter

Builds point-in-time security reports from a running SecurityMonitor:
summary metrics, top threats, attack patterns, top sources, incident
summary, overall risk and recommendations. Reports are saved as JSON under
the configured reports directory.
"""

import logging
import uuid
from collections import Counter, defaultdict
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np

from ..core.models import Alert, Severity, to_iso

logger = logging.getLogger(__name__)

CRITICAL_ALERT_SCORE = 80
HIGH_ALERT_SCORE = 60
REPORT_ALERT_WINDOW = 100


def frequency_class(timestamps: List[float]) -> str:
    """
    Classify how often an attack pattern recurs from its mean interval

    Returns:
        very_high (< 5 min), high (< 30 min), medium (< 2 h) or low
    """
    if len(timestamps) < 2:
        return 'low'
    intervals = np.diff(np.sort(np.array(timestamps, dtype=float)))
    minutes = float(np.mean(intervals)) / 60.0
    if minutes < 5:
        return 'very_high'
    if minutes < 30:
        return 'high'
    if minutes < 120:
        return 'medium'
    return 'low'


def top_threats(threat_types: Dict[str, int], limit: int = 5) -> List[Dict[str, Any]]:
    ranked = sorted(threat_types.items(), key=lambda item: (-item[1], item[0]))
    return [{'threat': threat, 'count': count} for threat, count in ranked[:limit]]


def analyze_attack_patterns(alerts: List[Alert]) -> List[Dict[str, Any]]:
    """Per-threat alert count, distinct sources and frequency class"""
    counts: Counter = Counter()
    sources = defaultdict(set)
    times = defaultdict(list)
    for alert in alerts:
        for threat in alert.threats:
            counts[threat] += 1
            sources[threat].add(alert.identity)
            times[threat].append(alert.timestamp)

    return [
        {
            'threat': threat,
            'count': count,
            'uniqueIps': len(sources[threat]),
            'frequency': frequency_class(times[threat]),
        }
        for threat, count in counts.most_common()
    ]


def top_sources(alerts: List[Alert], limit: int = 10) -> List[Dict[str, Any]]:
    counts = Counter(alert.identity for alert in alerts if alert.identity)
    return [{'ip': ip, 'count': count} for ip, count in counts.most_common(limit)]


class SecurityReporter:
    """Report generator bound to one SecurityMonitor"""

    def __init__(self, monitor, reports_dir: Optional[str] = None):
        self.monitor = monitor
        self.reports_dir = Path(reports_dir or monitor.config.paths.reports)

    def collect_monitoring_data(self) -> Dict[str, Any]:
        metrics = self.monitor.metrics.snapshot()
        alerts = self.monitor.alert_manager.recent_alerts(REPORT_ALERT_WINDOW)
        blocked = self.monitor.get_blocked_ips()

        return {
            'totalRequests': metrics['total_requests'],
            'suspiciousRequests': metrics['suspicious_requests'],
            'blockedRequests': metrics['blocked_requests'],
            'uniqueIps': metrics['unique_identities'],
            'blockedIpsCount': len(blocked),
            'averageResponseTime': metrics['average_response_time'],
            'p95ResponseTime': metrics['p95_response_time'],
            'errorRate': metrics['error_rate'],
            'totalAlerts': len(alerts),
            'criticalAlerts': sum(1 for a in alerts if a.risk_score > CRITICAL_ALERT_SCORE),
            'highAlerts': sum(1 for a in alerts
                              if HIGH_ALERT_SCORE < a.risk_score <= CRITICAL_ALERT_SCORE),
            'threatTypes': metrics['threat_types'],
            'topThreats': top_threats(metrics['threat_types']),
            'blockedIpsList': blocked[:20],
            'attackPatterns': analyze_attack_patterns(alerts),
            'topSources': top_sources(alerts),
        }

    def calculate_overall_risk(self, monitoring: Dict[str, Any], incidents: Dict[str, Any]) -> str:
        open_by_severity = incidents.get('open_by_severity', {})
        if open_by_severity.get(Severity.CRITICAL.value, 0) > 0:
            return 'CRITICAL'
        if monitoring['criticalAlerts'] > 20 or open_by_severity.get(Severity.HIGH.value, 0) > 0:
            return 'HIGH'
        if monitoring['highAlerts'] > 10 or incidents.get('open', 0) > 0:
            return 'MEDIUM'
        return 'LOW'

    def generate_recommendations(self, monitoring: Dict[str, Any],
                                 incidents: Dict[str, Any]) -> List[Dict[str, Any]]:
        recommendations = []

        unacknowledged = incidents.get('open', 0) - incidents.get('acknowledged', 0)
        if unacknowledged > 0:
            recommendations.append({
                'priority': 'CRITICAL',
                'category': 'Incident Response',
                'title': 'Unacknowledged Incidents',
                'description': f"{unacknowledged} open incidents have not been acknowledged",
                'actions': [
                    'Acknowledge and triage open incidents',
                    'Confirm automated blocks are justified',
                ],
                'timeframe': '24 hours',
            })

        total = monitoring['totalRequests']
        if total and monitoring['suspiciousRequests'] > total * 0.1:
            recommendations.append({
                'priority': 'HIGH',
                'category': 'Security Monitoring',
                'title': 'High Suspicious Activity Rate',
                'description': 'Elevated levels of suspicious requests detected',
                'actions': [
                    'Review and tune detection rules',
                    'Investigate patterns in suspicious activity',
                    'Review blocked identity list for accuracy',
                ],
                'timeframe': '3 days',
            })

        if monitoring['averageResponseTime'] > 1000:
            recommendations.append({
                'priority': 'MEDIUM',
                'category': 'Performance',
                'title': 'Security Impact on Performance',
                'description': 'Average response time is above one second',
                'actions': [
                    'Profile the request pipeline',
                    'Check storage latency for security logs',
                ],
                'timeframe': '1 week',
            })

        recommendations.append({
            'priority': 'LOW',
            'category': 'Best Practices',
            'title': 'Ongoing Security Improvements',
            'description': 'Continuous security posture improvement',
            'actions': [
                'Review alert thresholds against observed traffic',
                'Rotate and archive security logs',
            ],
            'timeframe': 'Ongoing',
        })
        return recommendations

    def generate_security_report(self) -> Dict[str, Any]:
        """
        Build a full security report

        Returns:
            JSON-serializable report dictionary
        """
        monitoring = self.collect_monitoring_data()
        incidents = self.monitor.incident_manager.summary()
        overall_risk = self.calculate_overall_risk(monitoring, incidents)

        report = {
            'id': str(uuid.uuid4()),
            'timestamp': to_iso(self.monitor.clock()),
            'overallRiskLevel': overall_risk,
            'securityMonitoring': monitoring,
            'incidents': incidents,
            'eventCategories': self.monitor.event_log.categories(),
            'recommendations': self.generate_recommendations(monitoring, incidents),
        }
        logger.info(f"Security report {report['id']} generated (risk {overall_risk})")
        return report

    def save_report(self, report: Dict[str, Any]) -> Optional[Path]:
        """Save a report as JSON; returns the path, or None if the write failed"""
        stamp = report['timestamp'][:19].replace(':', '-')
        path = self.reports_dir / f"security-report-{stamp}.json"
        if self.monitor.store.write_json(path, report):
            logger.info(f"Security report saved: {path.name}")
            return path
        return None
