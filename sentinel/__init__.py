"""
Request Sentinel
================

Request-level security monitoring for Flask applications: threat scoring,
sliding-window behavior tracking, block list, alerting, incident response
and event correlation.

Quick start:
    from flask import Flask
    from sentinel import SecurityMonitor, SentinelMiddleware, load_config

    app = Flask(__name__)
    monitor = SecurityMonitor(load_config())
    SentinelMiddleware(app, monitor)  # starts the scheduler and notifier threads
    ...
    monitor.shutdown()
"""

__version__ = "1.0.0"

from .core.config import SentinelConfig, load_config
from .deployment.security_monitor import MonitorDecision, SecurityMonitor
from .deployment.flask_middleware import SentinelMiddleware

__all__ = [
    'SentinelConfig',
    'load_config',
    'SecurityMonitor',
    'MonitorDecision',
    'SentinelMiddleware',
    '__version__',
]
