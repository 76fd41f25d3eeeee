"""
Configuration Management for the GitOps orchestration layer
Centralizes all environment-based configuration and settings
"""

import os
import logging
from logging.handlers import RotatingFileHandler
from typing import Optional


def _optional_float(name: str) -> Optional[float]:
    """Read an optional float from the environment (empty or unset means None)"""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return float(raw)


def setup_logging(level: Optional[str] = None):
    """Configure application logging with rotation"""
    from .paths import LOG_DIR

    # Create logs directory with secure permissions
    os.makedirs(LOG_DIR, mode=0o700, exist_ok=True)

    root_logger = logging.getLogger()

    # Close and clear any existing handlers installed by the embedding application
    # so repeated calls don't leak file descriptors
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)

    log_level = getattr(logging, (level or AppConfig.LOG_LEVEL).upper(), logging.INFO)
    root_logger.setLevel(log_level)

    # Console handler for stdout
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    console_handler.setFormatter(console_formatter)

    # File handler with rotation, max 10MB per file, keep 14 backups
    file_handler = RotatingFileHandler(
        os.path.join(LOG_DIR, 'gitops.log'),
        maxBytes=10*1024*1024,  # 10MB
        backupCount=14,
        encoding='utf-8'
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(console_formatter)

    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    # httpx logs every request URL at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


class AppConfig:
    """Main application configuration"""

    # Provider REST calls (seconds)
    HTTP_TIMEOUT = float(os.getenv('GITOPS_HTTP_TIMEOUT', 10))

    # Git subprocess calls, unset means no timeout
    GIT_TIMEOUT = _optional_float('GITOPS_GIT_TIMEOUT')

    GIT_BINARY = os.getenv('GITOPS_GIT_BINARY', 'git')

    # Used when creating repositories and bootstrapping empty ones
    DEFAULT_BRANCH = os.getenv('GITOPS_DEFAULT_BRANCH', 'main')

    # Commit identity used when the environment doesn't provide one
    GIT_AUTHOR_NAME = os.getenv('GITOPS_GIT_AUTHOR_NAME', 'GitOps Orchestrator')
    GIT_AUTHOR_EMAIL = os.getenv('GITOPS_GIT_AUTHOR_EMAIL', 'gitops@localhost')

    # Bitbucket Server requires a project key for repository creation
    BITBUCKET_DEFAULT_PROJECT = os.getenv('GITOPS_BITBUCKET_DEFAULT_PROJECT', 'DEFAULT')

    # Logging
    LOG_LEVEL = os.getenv('GITOPS_LOG_LEVEL', 'INFO')

    @classmethod
    def validate(cls):
        """Validate configuration"""
        if cls.HTTP_TIMEOUT <= 0:
            raise ValueError(f"HTTP timeout must be positive: {cls.HTTP_TIMEOUT}")

        if cls.GIT_TIMEOUT is not None and cls.GIT_TIMEOUT <= 0:
            raise ValueError(f"Git timeout must be positive: {cls.GIT_TIMEOUT}")

        if not cls.DEFAULT_BRANCH.strip():
            raise ValueError("Default branch cannot be empty")

        return True
