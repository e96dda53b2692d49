"""
Flask integration for Request Sentinel

Provides:
- SentinelMiddleware: before/after request hooks that run every request
  through the SecurityMonitor and return the fixed denial bodies
- admin_blueprint: operator endpoints under /security (metrics, alerts,
  incidents, block list, reports)

Usage:
    app = Flask(__name__)
    monitor = SecurityMonitor(load_config())
    SentinelMiddleware(app, monitor)
"""

import hmac
import logging
import time
from functools import wraps
from typing import Any, Callable, Dict, Optional

from flask import Blueprint, Flask, Response, current_app, g, jsonify, request
from prometheus_client import CONTENT_TYPE_LATEST

from ..core.exceptions import IncidentNotFoundError
from ..reporting.security_reporter import SecurityReporter
from ..web_security.request_context import descriptor_from_flask
from .security_monitor import SecurityMonitor

logger = logging.getLogger(__name__)

EXTENSION_KEY = 'sentinel'

admin_blueprint = Blueprint('sentinel_admin', __name__, url_prefix='/security')


def get_monitor() -> SecurityMonitor:
    """SecurityMonitor registered on the current app"""
    return current_app.extensions[EXTENSION_KEY]


class SentinelMiddleware:
    """
    Flask extension wiring the monitor into the request cycle

    Args:
        app: Flask application (or call init_app later)
        monitor: SecurityMonitor instance
        trust_proxy: Identify clients by X-Forwarded-For
        register_admin: Mount the /security admin blueprint
        start_background: Start the scheduler and notifier threads on init_app;
            call monitor.shutdown() to stop them
    """

    def __init__(self, app: Optional[Flask] = None, monitor: Optional[SecurityMonitor] = None,
                 trust_proxy: bool = False, register_admin: bool = True,
                 start_background: bool = True):
        self.monitor = monitor or SecurityMonitor()
        self.trust_proxy = trust_proxy
        self.register_admin = register_admin
        self.start_background = start_background
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask):
        app.extensions[EXTENSION_KEY] = self.monitor
        if self.start_background:
            self.monitor.start()
        else:
            self.monitor.initialize()

        app.before_request(self._before_request)
        app.after_request(self._after_request)
        app.register_error_handler(500, _internal_error)

        if self.register_admin:
            app.register_blueprint(admin_blueprint)

    def _before_request(self):
        g.sentinel_started = time.perf_counter()
        try:
            descriptor = descriptor_from_flask(request, trust_proxy=self.trust_proxy)
            decision = self.monitor.process_request(descriptor)
        except Exception as e:
            # Monitoring must not take the application down
            logger.error(f"Security monitoring failed for {request.path}: {e}", exc_info=True)
            g.sentinel_decision = None
            return None

        g.sentinel_decision = decision
        if not decision.allowed:
            response = jsonify(decision.body)
            response.status_code = decision.status_code
            return response
        return None

    def _after_request(self, response):
        decision = getattr(g, 'sentinel_decision', None)
        if decision is None:
            return response

        started = getattr(g, 'sentinel_started', None)
        elapsed_ms = (time.perf_counter() - started) * 1000 if started is not None else None
        try:
            self.monitor.record_response(decision, response.status_code, elapsed_ms)
        except Exception as e:
            logger.error(f"Failed to record response metrics: {e}")

        response.headers['X-Request-ID'] = decision.request_id
        return response


def _internal_error(error):
    return jsonify({
        'success': False,
        'error': 'Internal server error',
        'code': 'INTERNAL_ERROR',
    }), 500


# ============================================================================
# ADMIN BLUEPRINT
# ============================================================================

def require_admin_token(f: Callable) -> Callable:
    """
    Require the X-Admin-Token header when SENTINEL_ADMIN_TOKEN is configured

    Comparison is constant time.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        expected = current_app.config.get('SENTINEL_ADMIN_TOKEN')
        if expected:
            provided = request.headers.get('X-Admin-Token', '')
            if not hmac.compare_digest(provided.encode('utf-8'), str(expected).encode('utf-8')):
                return jsonify({
                    'success': False,
                    'error': 'Admin token required',
                    'code': 'UNAUTHORIZED'
                }), 401
        return f(*args, **kwargs)
    return decorated_function


def _json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _not_found(incident_id: str):
    return jsonify({
        'success': False,
        'error': f'Incident not found: {incident_id}',
        'code': 'NOT_FOUND'
    }), 404


@admin_blueprint.route('/metrics', methods=['GET'])
@require_admin_token
def security_metrics():
    return jsonify({'success': True, 'metrics': get_monitor().get_security_metrics()})


@admin_blueprint.route('/metrics/prometheus', methods=['GET'])
@require_admin_token
def prometheus_metrics():
    return Response(get_monitor().metrics.export_prometheus(), content_type=CONTENT_TYPE_LATEST)


@admin_blueprint.route('/alerts', methods=['GET'])
@require_admin_token
def recent_alerts():
    limit = request.args.get('limit', default=20, type=int)
    limit = max(1, min(limit, 1000))
    return jsonify({'success': True, 'alerts': get_monitor().get_recent_alerts(limit)})


@admin_blueprint.route('/incidents', methods=['GET'])
@require_admin_token
def list_incidents():
    manager = get_monitor().incident_manager
    status = request.args.get('status', 'open')
    incidents = manager.all_incidents() if status == 'all' else manager.active_incidents()
    return jsonify({
        'success': True,
        'incidents': [incident.to_dict() for incident in incidents],
        'summary': manager.summary(),
    })


@admin_blueprint.route('/incidents/<incident_id>/acknowledge', methods=['POST'])
@require_admin_token
def acknowledge_incident(incident_id: str):
    actor = _json_body().get('actor', 'operator')
    try:
        incident = get_monitor().incident_manager.acknowledge_incident(incident_id, actor)
    except IncidentNotFoundError:
        return _not_found(incident_id)
    return jsonify({'success': True, 'incident': incident.to_dict()})


@admin_blueprint.route('/incidents/<incident_id>/close', methods=['POST'])
@require_admin_token
def close_incident(incident_id: str):
    body = _json_body()
    manager = get_monitor().incident_manager
    try:
        closed = manager.close_incident(incident_id, body.get('actor', 'operator'),
                                        body.get('resolution', ''))
    except IncidentNotFoundError:
        return _not_found(incident_id)

    if not closed:
        return jsonify({
            'success': False,
            'error': 'Incident already closed',
            'code': 'ALREADY_CLOSED'
        }), 409
    return jsonify({'success': True, 'incident': manager.get_incident(incident_id).to_dict()})


@admin_blueprint.route('/blocked', methods=['GET'])
@require_admin_token
def blocked_identities():
    monitor = get_monitor()
    return jsonify({
        'success': True,
        'blocked': monitor.get_blocked_ips(),
        'entries': [entry.to_dict() for entry in monitor.block_list.get_entries()],
    })


@admin_blueprint.route('/blocked', methods=['POST'])
@require_admin_token
def block_identity():
    body = _json_body()
    identity = str(body.get('ip') or '').strip()
    if not identity:
        return jsonify({
            'success': False,
            'error': 'Field "ip" is required',
            'code': 'VALIDATION_ERROR'
        }), 400

    entry = get_monitor().block_ip(identity, body.get('reason') or 'Manual block')
    if entry is None:
        return jsonify({'success': True, 'blocked': identity, 'created': False})
    return jsonify({'success': True, 'blocked': identity, 'created': True, 'entry': entry.to_dict()}), 201


@admin_blueprint.route('/blocked/<identity>', methods=['DELETE'])
@require_admin_token
def unblock_identity(identity: str):
    if not get_monitor().unblock_ip(identity):
        return jsonify({
            'success': False,
            'error': f'{identity} is not blocked',
            'code': 'NOT_FOUND'
        }), 404
    return jsonify({'success': True, 'unblocked': identity})


@admin_blueprint.route('/reports', methods=['POST'])
@require_admin_token
def generate_report():
    monitor = get_monitor()
    reporter = SecurityReporter(monitor)
    report = reporter.generate_security_report()
    path = reporter.save_report(report)
    return jsonify({
        'success': True,
        'report': report,
        'saved': path is not None,
    }), 201
