"""Tests for logging setup."""

import logging
from unittest.mock import patch

from http_runner.log import setup_logging


class TestSetupLogging:
    def test_explicit_level(self):
        with patch("http_runner.log.logging.basicConfig") as basic_config:
            setup_logging("debug")
        assert basic_config.call_args.kwargs["level"] == logging.DEBUG

    def test_default_level(self):
        with patch("http_runner.log.DEFAULT_LOG_LEVEL", "ERROR"), \
             patch("http_runner.log.logging.basicConfig") as basic_config:
            setup_logging()
        assert basic_config.call_args.kwargs["level"] == logging.ERROR

    def test_unknown_level_falls_back_to_warning(self):
        with patch("http_runner.log.logging.basicConfig") as basic_config:
            setup_logging("chatty")
        assert basic_config.call_args.kwargs["level"] == logging.WARNING
