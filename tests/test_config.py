# tests/test_config.py
"""
Tests for configuration loading and validation
"""

from pathlib import Path

import pytest
import yaml

from sentinel.core.config import (
    CorrelationConfig,
    ResponseConfig,
    SentinelConfig,
    ThresholdConfig,
    load_config,
)
from sentinel.core.exceptions import ConfigurationError

pytestmark = pytest.mark.unit


def write_yaml(path, data):
    path.write_text(yaml.safe_dump(data))
    return str(path)


class TestDefaults:
    """Tests for built-in defaults"""

    def test_defaults_are_valid(self):
        valid, errors = SentinelConfig().validate()
        assert valid, f"Default configuration should validate: {errors}"

    def test_default_values(self):
        config = SentinelConfig()
        assert config.thresholds.requests_per_minute == 100
        assert config.responses.auto_block is False
        assert config.responses.incident_threshold == 75
        assert config.correlation.min_correlations == 3
        assert config.incidents.response_timeouts['critical'] == 300

    def test_to_dict_round_trip(self):
        config = SentinelConfig(thresholds=ThresholdConfig(requests_per_minute=42))
        restored = SentinelConfig.from_dict(config.to_dict())
        assert restored == config


class TestLoadConfig:
    """Tests for load_config"""

    def test_missing_explicit_file_raises(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config(str(tmp_path / 'absent.yaml'))

    def test_missing_default_file_uses_defaults(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert load_config() == SentinelConfig()

    def test_invalid_yaml_raises(self, tmp_path):
        path = tmp_path / 'broken.yaml'
        path.write_text('thresholds: [unclosed')
        with pytest.raises(ConfigurationError):
            load_config(str(path))

    def test_non_mapping_root_raises(self, tmp_path):
        path = write_yaml(tmp_path / 'list.yaml', ['a', 'b'])
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_partial_file_merges_with_defaults(self, tmp_path):
        # Arrange
        path = write_yaml(tmp_path / 'partial.yaml', {
            'thresholds': {'requests_per_minute': 250},
            'responses': {'auto_block': True},
        })

        # Act
        config = load_config(path)

        # Assert
        assert config.thresholds.requests_per_minute == 250
        assert config.thresholds.bot_requests_per_minute == 50, "Omitted keys keep their defaults"
        assert config.responses.auto_block is True
        assert config.correlation == CorrelationConfig()

    def test_unknown_keys_are_ignored(self, tmp_path, sentinel_logs):
        # Arrange
        path = write_yaml(tmp_path / 'extra.yaml', {
            'thresholds': {'requests_per_minute': 10, 'made_up': 1},
            'not_a_section': {'x': 1},
        })

        # Act
        config = load_config(path)

        # Assert
        assert config.thresholds.requests_per_minute == 10
        assert 'made_up' in sentinel_logs.text

    def test_invalid_section_falls_back(self, tmp_path):
        # Arrange
        path = write_yaml(tmp_path / 'invalid.yaml', {
            'responses': {'incident_threshold': 250},
            'correlation': 'yes please',
        })

        # Act
        config = load_config(path)

        # Assert
        assert config.responses == ResponseConfig()
        assert config.correlation == CorrelationConfig()

    def test_partial_timeouts_merge(self, tmp_path):
        # Arrange
        path = write_yaml(tmp_path / 'timeouts.yaml', {
            'incidents': {'response_timeouts': {'critical': 60}},
        })

        # Act
        config = load_config(path)

        # Assert
        assert config.incidents.response_timeouts['critical'] == 60
        assert config.incidents.response_timeouts['low'] == 3600

    def test_shipped_config_loads(self):
        # The repository's own configuration file must stay in sync with the defaults
        config = load_config(str(Path(__file__).parent.parent / 'config' / 'sentinel.yaml'))
        valid, errors = config.validate()
        assert valid, errors
        assert config == SentinelConfig()


class TestValidation:
    """Tests for section validation"""

    @pytest.mark.parametrize("section,expected", [
        (ThresholdConfig(requests_per_minute=0), "requests_per_minute must be positive"),
        (ResponseConfig(auto_block_threshold=101), "auto_block_threshold must be between 0 and 100"),
        (CorrelationConfig(max_events=0), "max_events must be positive"),
    ])
    def test_invalid_values(self, section, expected):
        valid, message = section.validate()
        assert not valid
        assert message == expected

    def test_aggregate_reports_every_error(self):
        config = SentinelConfig(
            thresholds=ThresholdConfig(rate_window_seconds=0),
            correlation=CorrelationConfig(window_seconds=-1),
        )
        valid, errors = config.validate()
        assert not valid
        assert len(errors) == 2
