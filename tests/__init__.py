# tests/__init__.py
"""
Request Sentinel - Test Suite

Test modules:
1. test_analyzers / test_threat_scoring: signal analyzers and scoring
2. test_monitoring: sliding window tracker, block list, metrics
3. test_incidents / test_correlation / test_event_log / test_notifier: response layer
4. test_security_monitor / test_flask_middleware / test_main: full pipeline and CLI
5. test_config / test_storage / test_logging_utils / test_scheduler / test_reporting: ambient stack

Tests use tmp_path storage and a FakeClock and never touch the network.
"""
