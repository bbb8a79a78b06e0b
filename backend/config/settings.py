"""
Configuration Management for Compoza
Centralizes all environment-based configuration and settings
"""

import os
import logging
from logging.handlers import RotatingFileHandler
from typing import Optional, Tuple


class RegistryNoiseFilter(logging.Filter):
    """Drop per-request chatter from HTTP client libraries"""
    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        # Connection pool churn is logged for every registry request
        if 'Starting new HTTPS connection' in message:
            return False
        if 'Resetting dropped connection' in message:
            return False
        return True


def setup_logging(log_to_file: bool = True):
    """Configure application logging with rotation"""
    from .paths import LOG_DIR

    root_logger = logging.getLogger()

    # Close and clear any existing handlers so our configuration wins
    # and no file descriptors leak across reconfiguration
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)

    level = getattr(logging, AppConfig.LOG_LEVEL.upper(), logging.INFO)
    root_logger.setLevel(level)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    console_handler.setFormatter(console_formatter)
    root_logger.addHandler(console_handler)

    if log_to_file:
        os.makedirs(LOG_DIR, mode=0o700, exist_ok=True)
        # Max 10MB per file, keep 14 backups
        file_handler = RotatingFileHandler(
            os.path.join(LOG_DIR, 'compoza.log'),
            maxBytes=10*1024*1024,  # 10MB
            backupCount=14,
            encoding='utf-8'
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(console_formatter)
        root_logger.addHandler(file_handler)

    # Docker SDK talks to the engine through urllib3
    noise_filter = RegistryNoiseFilter()
    for name in ('urllib3.connectionpool', 'docker.utils.config', 'aiohttp.access'):
        noisy = logging.getLogger(name)
        noisy.addFilter(noise_filter)
        noisy.setLevel(logging.WARNING)


class RegistryConfig:
    """
    Registry credentials from environment variables.

    Values are read at call time rather than import time so tests can
    monkeypatch the environment.
    """

    @staticmethod
    def dockerhub_credentials() -> Optional[Tuple[str, str]]:
        """Return (username, token) for Docker Hub if both are configured"""
        username = os.getenv('DOCKERHUB_USERNAME')
        token = os.getenv('DOCKERHUB_TOKEN')
        if username and token:
            return username, token
        return None

    @staticmethod
    def ghcr_token() -> Optional[str]:
        """Return the GitHub Container Registry token if configured"""
        return os.getenv('GHCR_TOKEN') or None


class AppConfig:
    """Main application configuration"""

    # Image this application itself runs from (used for self-update)
    SELF_IMAGE = os.getenv('COMPOZA_IMAGE', 'compoza:latest')

    # Base URL of the Compoza API, used by background operations
    API_BASE_URL = os.getenv('COMPOZA_API_URL', 'http://localhost:3000')

    # Logging
    LOG_LEVEL = os.getenv('COMPOZA_LOG_LEVEL', 'INFO')

    # Registry request timeouts (seconds)
    REGISTRY_TIMEOUT = float(os.getenv('COMPOZA_REGISTRY_TIMEOUT', 10))
    TOKEN_TIMEOUT = float(os.getenv('COMPOZA_TOKEN_TIMEOUT', 5))

    # Update cache timings (seconds)
    UPDATE_CACHE_TTL = int(os.getenv('COMPOZA_UPDATE_CACHE_TTL', 60 * 60))
    UPDATE_RECHECK_INTERVAL = int(os.getenv('COMPOZA_UPDATE_RECHECK_INTERVAL', 5 * 60))
    RATE_LIMIT_TTL = int(os.getenv('COMPOZA_RATE_LIMIT_TTL', 30 * 60))

    # Batch update concurrency ceiling
    BATCH_UPDATE_CONCURRENCY = int(os.getenv('COMPOZA_BATCH_UPDATE_CONCURRENCY', 3))

    @classmethod
    def validate(cls):
        """Validate configuration"""
        if cls.LOG_LEVEL.upper() not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ValueError(f"Invalid log level: {cls.LOG_LEVEL}")

        if cls.REGISTRY_TIMEOUT <= 0 or cls.TOKEN_TIMEOUT <= 0:
            raise ValueError("Registry timeouts must be positive")

        if cls.UPDATE_RECHECK_INTERVAL > cls.UPDATE_CACHE_TTL:
            raise ValueError(
                f"Re-check interval ({cls.UPDATE_RECHECK_INTERVAL}s) must not exceed "
                f"cache TTL ({cls.UPDATE_CACHE_TTL}s)"
            )

        if cls.BATCH_UPDATE_CONCURRENCY < 1:
            raise ValueError(f"Batch update concurrency must be at least 1: {cls.BATCH_UPDATE_CONCURRENCY}")

        return True
