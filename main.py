#!/usr/bin/env python3
"""
============================================================================
Request Sentinel - Request-Level Security Monitoring
============================================================================
MAIN ENTRY POINT: command-line interface for the monitoring pipeline

Operation modes:
1. serve: run a Flask application protected by the monitor, with the
   /security admin endpoints mounted
2. report: generate a security report from persisted state
3. block / unblock / blocked: manage the block list
4. incidents: list persisted incidents
============================================================================
"""

# ============================================================================
# IMPORTS AND DEPENDENCIES
# ============================================================================

import argparse
import json
import logging
import signal
import sys
from typing import Optional

from flask import Flask, jsonify

from sentinel import __version__
from sentinel.core.config import DEFAULT_CONFIG_PATH, SentinelConfig, load_config
from sentinel.core.exceptions import ConfigurationError, PersistenceError
from sentinel.deployment.flask_middleware import SentinelMiddleware
from sentinel.deployment.security_monitor import SecurityMonitor
from sentinel.reporting.security_reporter import SecurityReporter
from sentinel.utils.logging_utils import setup_logger

SYSTEM_NAME = "Request Sentinel"

logger = logging.getLogger("sentinel.main")


# ============================================================================
# APPLICATION FACTORY
# ============================================================================

def create_app(config: Optional[SentinelConfig] = None,
               monitor: Optional[SecurityMonitor] = None,
               admin_token: Optional[str] = None,
               start_background: bool = False) -> Flask:
    """
    Build a Flask application with the security monitor installed

    Args:
        config: Monitor configuration (ignored when monitor is given)
        monitor: Prepared SecurityMonitor
        admin_token: Token required by the /security endpoints
        start_background: Start the monitor's scheduler and notifier threads

    Returns:
        Configured Flask application
    """
    app = Flask(SYSTEM_NAME.lower().replace(' ', '_'))
    if admin_token:
        app.config['SENTINEL_ADMIN_TOKEN'] = admin_token

    monitor = monitor or SecurityMonitor(config)
    SentinelMiddleware(app, monitor, start_background=start_background)

    @app.route('/health', methods=['GET'])
    def health():
        return jsonify({'status': 'ok', 'version': __version__})

    return app


# ============================================================================
# COMMAND HANDLERS
# ============================================================================

def _print_json(data):
    print(json.dumps(data, indent=2, default=str))


def run_serve(monitor: SecurityMonitor, args) -> int:
    app = create_app(monitor=monitor, admin_token=args.admin_token, start_background=True)
    try:
        logger.info(f"Serving on {args.host}:{args.port}")
        app.run(host=args.host, port=args.port, threaded=True)
    finally:
        monitor.shutdown()
    return 0


def run_report(monitor: SecurityMonitor, args) -> int:
    monitor.initialize()
    reporter = SecurityReporter(monitor)
    report = reporter.generate_security_report()

    if args.output:
        monitor.store.write_json(args.output, report, raise_on_error=True)
        logger.info(f"Report saved to {args.output}")
    else:
        path = reporter.save_report(report)
        print("=" * 60)
        print("SECURITY REPORT SUMMARY")
        print("=" * 60)
        print(f"Overall risk:      {report['overallRiskLevel']}")
        print(f"Blocked sources:   {report['securityMonitoring']['blockedIpsCount']}")
        print(f"Open incidents:    {report['incidents']['open']}")
        if path:
            print(f"Saved to:          {path}")
    return 0


def run_block(monitor: SecurityMonitor, args) -> int:
    if not args.ip:
        logger.error("An identity is required. Use --ip <address>")
        return 1
    monitor.initialize()
    entry = monitor.block_ip(args.ip, args.reason)
    if entry is None:
        print(f"{args.ip} is already blocked")
    else:
        print(f"Blocked {args.ip}: {entry.reason}")
    return 0


def run_unblock(monitor: SecurityMonitor, args) -> int:
    if not args.ip:
        logger.error("An identity is required. Use --ip <address>")
        return 1
    monitor.initialize()
    if not monitor.unblock_ip(args.ip):
        print(f"{args.ip} is not blocked")
        return 1
    print(f"Unblocked {args.ip}")
    return 0


def run_blocked(monitor: SecurityMonitor, args) -> int:
    monitor.initialize()
    _print_json([entry.to_dict() for entry in monitor.block_list.get_entries()]
                or monitor.get_blocked_ips())
    return 0


def run_incidents(monitor: SecurityMonitor, args) -> int:
    monitor.initialize()
    incidents = monitor.incident_manager.all_incidents()
    _print_json([incident.to_dict() for incident in incidents])
    return 0


COMMANDS = {
    'serve': run_serve,
    'report': run_report,
    'block': run_block,
    'unblock': run_unblock,
    'blocked': run_blocked,
    'incidents': run_incidents,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description=f"{SYSTEM_NAME} v{__version__}",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --mode serve --port 8000
  %(prog)s --mode block --ip 203.0.113.7 --reason "Credential stuffing"
  %(prog)s --mode report --output report.json
        """
    )

    parser.add_argument('--mode', '-m', type=str, choices=sorted(COMMANDS), default='serve',
                        help='Operation mode (default: serve)')
    parser.add_argument('--config', '-c', type=str, default=None,
                        help=f'Configuration file path (default: {DEFAULT_CONFIG_PATH} if present)')
    parser.add_argument('--host', type=str, default='127.0.0.1',
                        help='Host address to bind (default: 127.0.0.1)')
    parser.add_argument('--port', '-p', type=int, default=8000,
                        help='Port for serve mode (default: 8000)')
    parser.add_argument('--admin-token', type=str, default=None,
                        help='Token required by the /security admin endpoints')
    parser.add_argument('--ip', type=str, help='Identity for block/unblock')
    parser.add_argument('--reason', type=str, default='Manual block', help='Block reason')
    parser.add_argument('--output', '-o', type=str, help='Output file for reports')
    parser.add_argument('--json-logs', action='store_true', help='Emit structured JSON logs')
    parser.add_argument('--log-file', type=str, default=None, help='Also log to this file')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose logging')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    return parser


# ============================================================================
# SIGNAL HANDLERS FOR GRACEFUL SHUTDOWN
# ============================================================================

def signal_handler(signum, frame):
    """Translate SIGTERM into a normal interpreter exit so shutdown hooks run"""
    logger.info(f"Received signal {signum}, initiating graceful shutdown...")
    sys.exit(0)


def main(argv=None) -> int:
    """
    Main entry point for the Request Sentinel command-line interface

    Returns:
        Process exit code
    """
    args = build_parser().parse_args(argv)

    setup_logger("sentinel", log_file=args.log_file,
                 log_level="DEBUG" if args.verbose else "INFO",
                 enable_json=args.json_logs)

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        logger.error(f"Failed to load configuration: {e}")
        return 1

    valid, errors = config.validate()
    if not valid:
        for error in errors:
            logger.warning(f"Configuration problem: {error}")

    monitor = SecurityMonitor(config)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        return COMMANDS[args.mode](monitor, args)
    except PersistenceError as e:
        logger.error(f"Operation failed: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user")
        return 0


# ============================================================================
# ENTRY POINT
# ============================================================================

if __name__ == "__main__":
    sys.exit(main())
