"""
test_settings.py
~~~~~~~~~~~~~~~~

Unit tests for environment-driven settings.
"""

import pytest

from nnengine.exceptions import InvalidConfig
from nnengine.settings import load_settings


@pytest.mark.unit
class TestSettings:

    def test_defaults(self, monkeypatch):
        for name in ('LOG_LEVEL', 'FLASK_ENV', 'MODEL_DIR', 'PORT', 'CLEANUP_DAYS',
                     'DEFAULT_EPOCHS', 'DEFAULT_BATCH_SIZE', 'DEFAULT_LEARNING_RATE'):
            monkeypatch.delenv(name, raising=False)

        settings = load_settings()

        assert settings.log_level == 'INFO'
        assert settings.model_dir == 'models'
        assert settings.port == 8000
        assert settings.cleanup_days == 2
        assert settings.default_batch_size == 16
        assert settings.default_learning_rate == 0.01
        assert settings.is_production is False

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv('LOG_LEVEL', 'debug')
        monkeypatch.setenv('FLASK_ENV', 'production')
        monkeypatch.setenv('PORT', '9000')
        monkeypatch.setenv('DEFAULT_LEARNING_RATE', '0.5')

        settings = load_settings()

        assert settings.log_level == 'DEBUG'
        assert settings.is_production is True
        assert settings.port == 9000
        assert settings.default_learning_rate == 0.5

    def test_invalid_number(self, monkeypatch):
        monkeypatch.setenv('PORT', 'eighty')
        with pytest.raises(InvalidConfig) as exc_info:
            load_settings()
        assert 'PORT' in str(exc_info.value)
