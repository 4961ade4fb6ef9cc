"""
Unit tests for configuration loading and logging setup.
"""

import json
import logging

import pytest

from nelko.config import DEFAULT_CONFIG, load_config, setup_logging
from nelko.printer.exceptions import InvalidConfigurationError


# Fixtures

@pytest.fixture
def write_config(tmp_path):
    def _write(data):
        path = tmp_path / "config.json"
        path.write_text(json.dumps(data) if not isinstance(data, str) else data)
        return str(path)
    return _write


class TestLoadConfig:

    def test_defaults(self):
        config = load_config()

        assert config == DEFAULT_CONFIG
        assert config is not DEFAULT_CONFIG

    def test_partial_file_is_merged(self, write_config):
        path = write_config({'label': {'size': '15x30mm'}, 'text_settings': {'font_size': 12}})

        config = load_config(path)

        assert config['label']['size'] == '15x30mm'
        assert config['label']['density'] == 10
        assert config['text_settings']['font_size'] == 12
        assert config['text_settings']['orientation'] == 'horizontal'

    def test_defaults_not_mutated(self, write_config):
        load_config(write_config({'printer': {'rfcomm_channel': 3}}))

        assert DEFAULT_CONFIG['printer']['rfcomm_channel'] == 1

    def test_missing_file(self, tmp_path):
        with pytest.raises(InvalidConfigurationError) as exc_info:
            load_config(str(tmp_path / "missing.json"))

        assert "missing.json" in str(exc_info.value)

    def test_bad_json(self, write_config):
        with pytest.raises(InvalidConfigurationError):
            load_config(write_config("{not json"))

    def test_not_an_object(self, write_config):
        with pytest.raises(InvalidConfigurationError):
            load_config(write_config([1, 2, 3]))

    @pytest.mark.parametrize("overrides", [
        {'label': {'size': '99x99mm'}},
        {'text_settings': {'orientation': 'diagonal'}},
        {'image_settings': {'threshold': 300}},
        {'image_settings': {'threshold': 'dark'}},
    ])
    def test_invalid_values(self, write_config, overrides):
        with pytest.raises(InvalidConfigurationError):
            load_config(write_config(overrides))


class TestSetupLogging:

    def test_level_by_name(self):
        setup_logging('debug')
        assert logging.getLogger().level == logging.DEBUG

    def test_unknown_level_falls_back(self):
        setup_logging('CHATTY')
        assert logging.getLogger().level == logging.INFO

    def test_level_constant(self):
        setup_logging(logging.WARNING)
        assert logging.getLogger().level == logging.WARNING
