#!/usr/bin/env python3
"""Tests for config.py - driver settings."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from config import ConfigError, DriverConfig, PollSettings, load_driver_config


class TestDriverConfig:
    """Test settings parsing."""

    def test_defaults(self):
        config = DriverConfig.from_dict(None)
        assert config.max_workers == 4
        assert config.conflict_retries == 5
        assert config.load_balancer == PollSettings(10.0, 1.0)

    def test_partial_override_keeps_defaults(self):
        config = DriverConfig.from_dict({'max_workers': 8, 'load_balancer': {'timeout': 30}})
        assert config.max_workers == 8
        assert config.load_balancer == PollSettings(30.0, 1.0)
        assert config.crd_established == DriverConfig().crd_established

    def test_unknown_key_rejected(self):
        with pytest.raises(ConfigError) as exc_info:
            DriverConfig.from_dict({'max_worker': 2})
        assert 'max_worker' in str(exc_info.value)

    @pytest.mark.parametrize('data', [
        {'max_workers': 0},
        {'conflict_retries': -1},
        {'bucket_deletion': {'interval': 0}},
        {'crd_established': 'fast'},
        {'max_workers': 'two'},
        {'conflict_retries': None},
        {'load_balancer': {'timeout': 'soon'}},
    ])
    def test_invalid_values(self, data):
        with pytest.raises(ConfigError):
            DriverConfig.from_dict(data)

    def test_to_dict_round_trips(self):
        config = DriverConfig.from_dict({'max_workers': 2, 'crd_established': {'timeout': 5, 'interval': 1}})
        assert DriverConfig.from_dict(config.to_dict()) == config


class TestLoadDriverConfig:
    """Test loading settings files."""

    def test_no_path_gives_defaults(self):
        assert load_driver_config(None) == DriverConfig()

    def test_load_file(self, tmp_path):
        path = tmp_path / 'settings.yaml'
        path.write_text('max_workers: 2\nconflict_retries: 1\n')
        config = load_driver_config(path)
        assert config.max_workers == 2
        assert config.conflict_retries == 1

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_driver_config(tmp_path / 'missing.yaml')

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / 'settings.yaml'
        path.write_text('max_workers: [')
        with pytest.raises(ConfigError):
            load_driver_config(path)
