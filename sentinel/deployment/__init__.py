"""
Deployment components: the pipeline facade, Flask integration and the
background scheduler.
"""

from .scheduler import BackgroundScheduler
from .security_monitor import MonitorDecision, SecurityMonitor
from .flask_middleware import SentinelMiddleware, admin_blueprint

__all__ = [
    'BackgroundScheduler',
    'MonitorDecision',
    'SecurityMonitor',
    'SentinelMiddleware',
    'admin_blueprint',
]
