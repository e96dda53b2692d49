"""
Configuration for Request Sentinel

Every section is a dataclass with built-in defaults. A missing YAML file,
section or key never stops the monitor: the default is used and the fallback
is logged. Only a file that was explicitly requested and cannot be parsed
raises ConfigurationError.
"""

import logging
from dataclasses import dataclass, field, asdict, fields
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple

import yaml

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/sentinel.yaml"

# ============================================================================
# CONFIGURATION SECTIONS
# ============================================================================

@dataclass
class ThresholdConfig:
    """
    Attack detection thresholds used by the signal analyzers
    """
    requests_per_minute: int = 100  # Rate analyzer trigger
    suspicious_requests_per_minute: int = 10  # Severe rate analyzer trigger
    bot_requests_per_minute: int = 50  # Bot analyzer volume trigger
    large_payload_threshold: int = 1024 * 1024  # 1 MiB
    suspicious_user_agents: int = 5  # Distinct agents per identity
    rate_window_seconds: int = 60
    user_agent_window_seconds: int = 3600

    def validate(self) -> Tuple[bool, str]:
        """Validate threshold parameters"""
        for name in ('requests_per_minute', 'suspicious_requests_per_minute',
                     'bot_requests_per_minute', 'large_payload_threshold',
                     'suspicious_user_agents', 'rate_window_seconds',
                     'user_agent_window_seconds'):
            if getattr(self, name) <= 0:
                return False, f"{name} must be positive"
        return True, "Configuration valid"


@dataclass
class MonitoringConfig:
    """Monitoring and log output settings"""
    enabled: bool = True
    real_time_alerts: bool = True
    log_to_file: bool = True
    log_to_console: bool = True
    log_all_requests: bool = False
    retention_days: int = 30
    alert_history_size: int = 1000

    def validate(self) -> Tuple[bool, str]:
        if self.retention_days < 1:
            return False, "retention_days must be at least 1"
        if self.alert_history_size < 1:
            return False, "alert_history_size must be at least 1"
        return True, "Configuration valid"


@dataclass
class ResponseConfig:
    """
    Automated response settings

    auto_block is off by default: blocking on a single high-risk request is
    an operator decision.
    """
    auto_block: bool = False
    auto_block_threshold: int = 70  # Block when risk_score is strictly above
    incident_threshold: int = 75  # Open an incident when risk_score is strictly above
    rate_limit_aggressive: bool = True  # Deny rate-limited requests with 429
    block_ip: bool = True
    alert_administrators: bool = True
    generate_report: bool = True
    lock_account: bool = True

    def validate(self) -> Tuple[bool, str]:
        for name in ('auto_block_threshold', 'incident_threshold'):
            value = getattr(self, name)
            if not 0 <= value <= 100:
                return False, f"{name} must be between 0 and 100"
        return True, "Configuration valid"


def _default_response_timeouts() -> Dict[str, int]:
    return {
        'critical': 5 * 60,
        'high': 15 * 60,
        'medium': 30 * 60,
        'low': 60 * 60,
    }


@dataclass
class IncidentConfig:
    """Incident escalation settings (timeouts in seconds)"""
    response_timeouts: Dict[str, int] = field(default_factory=_default_response_timeouts)
    max_escalation_level: int = 3

    def __post_init__(self):
        """Fill in severities omitted from a partial timeout mapping"""
        merged = _default_response_timeouts()
        merged.update(self.response_timeouts or {})
        self.response_timeouts = merged

    def validate(self) -> Tuple[bool, str]:
        for severity in ('critical', 'high', 'medium', 'low'):
            if self.response_timeouts.get(severity, 0) <= 0:
                return False, f"response timeout for {severity} must be positive"
        if self.max_escalation_level < 0:
            return False, "max_escalation_level must not be negative"
        return True, "Configuration valid"


def _default_attack_sequences() -> List[List[str]]:
    return [
        ['A07_AUTHENTICATION', 'A01_ACCESS_CONTROL'],
        ['A03_INJECTION', 'A01_ACCESS_CONTROL'],
        ['A05_MISCONFIGURATION', 'A01_ACCESS_CONTROL'],
    ]


@dataclass
class CorrelationConfig:
    """Event correlation settings"""
    enabled: bool = True
    window_seconds: int = 60 * 60
    max_events: int = 1000
    temporal_threshold_seconds: int = 5 * 60
    min_correlations: int = 3
    attack_score_threshold: int = 50
    attack_sequences: List[List[str]] = field(default_factory=_default_attack_sequences)

    def validate(self) -> Tuple[bool, str]:
        if self.window_seconds <= 0:
            return False, "window_seconds must be positive"
        if self.max_events <= 0:
            return False, "max_events must be positive"
        if self.min_correlations < 1:
            return False, "min_correlations must be at least 1"
        return True, "Configuration valid"


@dataclass
class SchedulerConfig:
    """Background task intervals (seconds)"""
    enabled: bool = True
    prune_interval: int = 5 * 60
    tracking_horizon: int = 60 * 60
    log_cleanup_interval: int = 24 * 60 * 60
    event_cleanup_interval: int = 24 * 60 * 60
    persistence_interval: int = 30 * 60
    escalation_check_interval: int = 60
    event_retention_days: int = 30

    def validate(self) -> Tuple[bool, str]:
        for name in ('prune_interval', 'tracking_horizon', 'log_cleanup_interval',
                     'event_cleanup_interval', 'persistence_interval',
                     'escalation_check_interval', 'event_retention_days'):
            if getattr(self, name) <= 0:
                return False, f"{name} must be positive"
        return True, "Configuration valid"


@dataclass
class PathsConfig:
    """Durable storage locations"""
    security_logs: str = "./security-logs"
    alert_logs: str = "./security-logs/alerts"
    incidents: str = "./security-logs/incidents"
    reports: str = "./security-reports"
    data: str = "./security-data"
    blocked_ips: str = "./security-logs/blocked-ips.json"

    def validate(self) -> Tuple[bool, str]:
        for item in fields(self):
            if not getattr(self, item.name):
                return False, f"{item.name} path must not be empty"
        return True, "Configuration valid"


@dataclass
class AlertingConfig:
    """Real-time alert channels"""
    webhook_url: Optional[str] = None
    webhook_timeout: float = 5.0
    queue_size: int = 1000

    def validate(self) -> Tuple[bool, str]:
        if self.webhook_timeout <= 0:
            return False, "webhook_timeout must be positive"
        if self.webhook_url and not self.webhook_url.startswith(('http://', 'https://')):
            return False, "webhook_url must be an http(s) URL"
        return True, "Configuration valid"


# ============================================================================
# AGGREGATE CONFIGURATION
# ============================================================================

_SECTIONS = {
    'thresholds': ThresholdConfig,
    'monitoring': MonitoringConfig,
    'responses': ResponseConfig,
    'incidents': IncidentConfig,
    'correlation': CorrelationConfig,
    'scheduler': SchedulerConfig,
    'paths': PathsConfig,
    'alerting': AlertingConfig,
}


@dataclass
class SentinelConfig:
    """Complete Request Sentinel configuration"""
    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    responses: ResponseConfig = field(default_factory=ResponseConfig)
    incidents: IncidentConfig = field(default_factory=IncidentConfig)
    correlation: CorrelationConfig = field(default_factory=CorrelationConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    alerting: AlertingConfig = field(default_factory=AlertingConfig)

    def validate(self) -> Tuple[bool, List[str]]:
        """
        Validate every section

        Returns:
            Tuple of (is_valid, list of error messages)
        """
        errors = []
        for name in _SECTIONS:
            valid, message = getattr(self, name).validate()
            if not valid:
                errors.append(f"{name}: {message}")
        return not errors, errors

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, config_dict: Optional[Dict[str, Any]]) -> 'SentinelConfig':
        """
        Build configuration from a (possibly partial) dictionary

        Unknown keys are ignored and invalid sections fall back to defaults.
        """
        config_dict = config_dict or {}
        sections = {}

        for name, section_cls in _SECTIONS.items():
            raw = config_dict.get(name)
            if raw is None:
                logger.debug(f"Configuration section '{name}' missing, using defaults")
                sections[name] = section_cls()
                continue
            if not isinstance(raw, dict):
                logger.warning(f"Configuration section '{name}' is not a mapping, using defaults")
                sections[name] = section_cls()
                continue

            known = {item.name for item in fields(section_cls)}
            unknown = set(raw) - known
            if unknown:
                logger.warning(f"Ignoring unknown keys in '{name}': {sorted(unknown)}")

            section = section_cls(**{k: v for k, v in raw.items() if k in known})
            valid, message = section.validate()
            if not valid:
                logger.warning(f"Invalid '{name}' configuration ({message}), using defaults")
                section = section_cls()
            sections[name] = section

        return cls(**sections)


def load_config(config_path: Optional[str] = None) -> SentinelConfig:
    """
    Load configuration from a YAML file

    Args:
        config_path: Path to YAML file. When omitted the default path is tried
            and silently skipped if absent.

    Returns:
        SentinelConfig instance

    Raises:
        ConfigurationError: If an explicitly given file is missing or invalid
    """
    explicit = config_path is not None
    path = Path(config_path or DEFAULT_CONFIG_PATH)

    if not path.exists():
        if explicit:
            raise ConfigurationError(f"Configuration file not found: {path}")
        logger.info("No configuration file found, using built-in defaults")
        return SentinelConfig()

    try:
        with open(path, 'r', encoding='utf-8') as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        logger.error(f"Invalid YAML in configuration file: {e}")
        raise ConfigurationError(f"Invalid YAML in {path}") from e

    if not isinstance(raw, dict):
        raise ConfigurationError(f"Configuration root in {path} must be a mapping")

    logger.info(f"Loaded configuration from {path}")
    return SentinelConfig.from_dict(raw)
