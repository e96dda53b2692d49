"""
Pytest Configuration and Fixtures for Request Sentinel Tests

Fixtures defined here are available to every test module. Storage always
lives under pytest's tmp_path and time is driven by a FakeClock, so tests
never touch the working directory and never sleep.

Example:
    def test_blocked(monitor):
        monitor.block_ip('203.0.113.9')
        assert not monitor.process_request({'ip': '203.0.113.9'}).allowed
"""

import logging

import pytest
from flask import Flask

from sentinel.deployment.flask_middleware import SentinelMiddleware
from sentinel.deployment.security_monitor import SecurityMonitor
from sentinel.incident_response.event_log import SecurityEventLog
from sentinel.incident_response.incident_manager import IncidentManager
from sentinel.monitoring.sliding_window import SlidingWindowTracker
from sentinel.utils.storage import SecurityStore

from tests.test_utils import FakeClock, make_config


def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers",
        "unit: fast, isolated component test"
    )
    config.addinivalue_line(
        "markers",
        "integration: test spanning the whole pipeline or the Flask app"
    )
    config.addinivalue_line(
        "markers",
        "security: detection or response behaviour test"
    )


@pytest.fixture(autouse=True)
def sentinel_logs(caplog):
    """Capture sentinel logs at debug level for assertions"""
    caplog.set_level(logging.DEBUG, logger="sentinel")
    yield caplog


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> SecurityStore:
    return SecurityStore()


@pytest.fixture
def sentinel_config(tmp_path):
    """Default configuration with storage under tmp_path"""
    return make_config(tmp_path)


@pytest.fixture
def tracker(fake_clock) -> SlidingWindowTracker:
    return SlidingWindowTracker(clock=fake_clock)


@pytest.fixture
def event_log(tmp_path, store, fake_clock) -> SecurityEventLog:
    return SecurityEventLog(str(tmp_path / 'security-logs'), store=store, clock=fake_clock)


@pytest.fixture
def incident_manager(tmp_path, store, fake_clock) -> IncidentManager:
    return IncidentManager(str(tmp_path / 'incidents'), store=store, clock=fake_clock)


@pytest.fixture
def monitor(sentinel_config, fake_clock) -> SecurityMonitor:
    """Fully wired monitor without background threads"""
    monitor = SecurityMonitor(sentinel_config, clock=fake_clock)
    monitor.initialize()
    return monitor


@pytest.fixture
def app(monitor) -> Flask:
    """Flask app protected by the monitor, with a few demo routes"""
    app = Flask('sentinel_test')
    SentinelMiddleware(app, monitor, start_background=False)

    @app.route('/hello', methods=['GET'])
    def hello():
        return {'message': 'hello'}

    @app.route('/api/items', methods=['POST'])
    def create_item():
        return {'created': True}, 201

    @app.route('/boom', methods=['GET'])
    def boom():
        raise RuntimeError('/srv/app/secret.py exploded')

    return app


@pytest.fixture
def client(app):
    return app.test_client()
