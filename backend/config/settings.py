"""
Configuration Management for the sync service
Centralizes all environment-based configuration and settings
"""

import os
import logging
from logging.handlers import RotatingFileHandler
from typing import Optional


class HealthCheckFilter(logging.Filter):
    """Filter out successful health check requests to reduce log noise"""
    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()

        # For uvicorn access logs, the message format is:
        # 'IP:PORT - "METHOD /path HTTP/1.1" STATUS'
        if '200' in message and '/health' in message:
            return False
        return True


def setup_logging():
    """Configure application logging with rotation"""
    from .paths import LOG_DIR

    os.makedirs(LOG_DIR, mode=0o700, exist_ok=True)

    root_logger = logging.getLogger()

    # Close and clear any existing handlers to prevent duplicate output and fd leaks
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)

    level = getattr(logging, AppConfig.LOG_LEVEL.upper(), logging.INFO)
    root_logger.setLevel(level)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # Console handler for stdout
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)

    # Max 10MB per file, keep 14 backups
    file_handler = RotatingFileHandler(
        os.path.join(LOG_DIR, 'gitsync.log'),
        maxBytes=10*1024*1024,  # 10MB
        backupCount=14,
        encoding='utf-8'
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)

    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    uvicorn_access = logging.getLogger("uvicorn.access")
    uvicorn_access.addFilter(HealthCheckFilter())


def get_cors_origins() -> Optional[str]:
    """
    Comma-separated CORS origins from GITSYNC_CORS_ORIGINS, or None to allow all.
    """
    custom_origins = os.getenv('GITSYNC_CORS_ORIGINS')
    if custom_origins:
        return custom_origins
    return None


def _optional_float(name: str) -> Optional[float]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return float(value)


class AppConfig:
    """Main application configuration"""

    # Server settings
    HOST = os.getenv('GITSYNC_HOST', '0.0.0.0')
    PORT = int(os.getenv('GITSYNC_PORT', 8080))

    CORS_ORIGINS = get_cors_origins()

    from .paths import DATABASE_PATH as DEFAULT_DATABASE_PATH

    # Database settings
    DATABASE_PATH = os.getenv('GITSYNC_DATABASE_PATH', DEFAULT_DATABASE_PATH)

    # Logging
    LOG_LEVEL = os.getenv('GITSYNC_LOG_LEVEL', 'INFO')

    # Hosting service
    GITHUB_API_URL = os.getenv('GITSYNC_GITHUB_API_URL', 'https://api.github.com')
    GITHUB_HOST = os.getenv('GITSYNC_GITHUB_HOST', 'github.com')

    # Sync behaviour
    TRACKED_BRANCH = os.getenv('GITSYNC_TRACKED_BRANCH', 'main')
    GIT_TIMEOUT = _optional_float('GITSYNC_GIT_TIMEOUT')  # None = no timeout

    # Live log streaming
    SUBSCRIBER_WRITE_TIMEOUT = float(os.getenv('GITSYNC_SUBSCRIBER_WRITE_TIMEOUT', 5))
    SSE_KEEPALIVE_SECONDS = float(os.getenv('GITSYNC_SSE_KEEPALIVE_SECONDS', 15))

    @classmethod
    def validate(cls):
        """Validate configuration"""
        if cls.PORT < 1 or cls.PORT > 65535:
            raise ValueError(f"Invalid port: {cls.PORT}")

        if cls.LOG_LEVEL.upper() not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ValueError(f"Invalid log level: {cls.LOG_LEVEL}")

        if not cls.TRACKED_BRANCH or cls.TRACKED_BRANCH.startswith('-'):
            raise ValueError(f"Invalid tracked branch: {cls.TRACKED_BRANCH!r}")

        if cls.GIT_TIMEOUT is not None and cls.GIT_TIMEOUT <= 0:
            raise ValueError(f"Git timeout must be positive: {cls.GIT_TIMEOUT}")

        if cls.SUBSCRIBER_WRITE_TIMEOUT <= 0:
            raise ValueError(f"Subscriber write timeout must be positive: {cls.SUBSCRIBER_WRITE_TIMEOUT}")

        if cls.SSE_KEEPALIVE_SECONDS <= 0:
            raise ValueError(f"SSE keepalive interval must be positive: {cls.SSE_KEEPALIVE_SECONDS}")

        return True
