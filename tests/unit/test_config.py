"""Unit tests for configuration (fitquest/config.py)"""
import pytest

from fitquest import config
from fitquest.exceptions import ConfigurationError


def test_defaults():
    assert config.XP_COMMIT_MAX_RETRIES >= 0
    assert config.AI_USAGE_XP > 0
    assert config.DB_POOL_MAX_SIZE >= config.DB_POOL_MIN_SIZE


def test_validate_config_passes_with_defaults():
    config.validate_config()


@pytest.mark.parametrize("name,value", [
    ("DATABASE_URL", ""),
    ("LOG_LEVEL", "VERBOSE"),
    ("DB_POOL_MIN_SIZE", 0),
    ("XP_COMMIT_MAX_RETRIES", -1),
    ("AI_USAGE_XP", 0),
])
def test_validate_config_rejects(monkeypatch, name, value):
    monkeypatch.setattr(config, name, value)
    with pytest.raises(ConfigurationError) as exc_info:
        config.validate_config()
    assert exc_info.value.config_key is not None
