"""Unit tests for logging setup (fitquest/logging_config.py)"""
import logging
from unittest.mock import patch

from fitquest.logging_config import LOG_FORMAT, setup_logging


def test_setup_logging_uses_configured_format():
    with patch("fitquest.logging_config.logging.basicConfig") as mock_basic:
        setup_logging("debug")

    mock_basic.assert_called_once_with(format=LOG_FORMAT, level=logging.DEBUG)


def test_setup_logging_defaults_to_env_level():
    with patch("fitquest.logging_config.logging.basicConfig") as mock_basic, \
            patch("fitquest.logging_config.LOG_LEVEL", "WARNING"):
        setup_logging()

    assert mock_basic.call_args.kwargs["level"] == logging.WARNING
