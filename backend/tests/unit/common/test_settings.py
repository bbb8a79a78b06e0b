"""
Unit tests for configuration validation and logging setup.
"""

import logging

import pytest

from config.settings import AppConfig, RegistryConfig, RegistryNoiseFilter, setup_logging


class TestAppConfigValidate:

    def test_defaults_are_valid(self):
        assert AppConfig.validate() is True

    def test_invalid_log_level(self, monkeypatch):
        monkeypatch.setattr(AppConfig, "LOG_LEVEL", "VERBOSE")
        with pytest.raises(ValueError, match="Invalid log level"):
            AppConfig.validate()

    def test_recheck_interval_must_not_exceed_ttl(self, monkeypatch):
        monkeypatch.setattr(AppConfig, "UPDATE_RECHECK_INTERVAL", 7200)
        monkeypatch.setattr(AppConfig, "UPDATE_CACHE_TTL", 3600)
        with pytest.raises(ValueError, match="Re-check interval"):
            AppConfig.validate()

    def test_concurrency_must_be_positive(self, monkeypatch):
        monkeypatch.setattr(AppConfig, "BATCH_UPDATE_CONCURRENCY", 0)
        with pytest.raises(ValueError, match="concurrency"):
            AppConfig.validate()

    def test_timeouts_must_be_positive(self, monkeypatch):
        monkeypatch.setattr(AppConfig, "TOKEN_TIMEOUT", 0)
        with pytest.raises(ValueError, match="timeouts"):
            AppConfig.validate()


class TestRegistryConfig:

    def test_reads_environment_at_call_time(self, monkeypatch):
        assert RegistryConfig.ghcr_token() is None
        monkeypatch.setenv("GHCR_TOKEN", "ghp_x")
        assert RegistryConfig.ghcr_token() == "ghp_x"

    def test_empty_token_is_unset(self, monkeypatch):
        monkeypatch.setenv("GHCR_TOKEN", "")
        assert RegistryConfig.ghcr_token() is None


class TestLogging:

    def test_noise_filter(self):
        record = logging.LogRecord("urllib3", logging.DEBUG, "", 0, "Starting new HTTPS connection (1): x", None, None)
        assert RegistryNoiseFilter().filter(record) is False

        record = logging.LogRecord("urllib3", logging.WARNING, "", 0, "Retrying request", None, None)
        assert RegistryNoiseFilter().filter(record) is True

    def test_setup_logging_console_only(self, monkeypatch):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        monkeypatch.setattr(AppConfig, "LOG_LEVEL", "DEBUG")
        try:
            setup_logging(log_to_file=False)

            assert root.level == logging.DEBUG
            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0], logging.StreamHandler)
        finally:
            for handler in root.handlers[:]:
                root.removeHandler(handler)
            for handler in saved_handlers:
                root.addHandler(handler)
            root.setLevel(saved_level)
