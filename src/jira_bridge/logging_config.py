"""
jira-bridge Logging Configuration

Configurable logging with debug mode support and secret masking.
"""

import os
import logging
import re
import sys
from pathlib import Path
from typing import Optional


# Check for debug mode
DEBUG_MODE = os.environ.get("JIRA_BRIDGE_DEBUG", "").lower() in ("1", "true", "yes")

# Patterns that indicate a secret value
SECRET_PATTERNS = [
    "token", "password", "secret", "api_key", "apikey", "auth", "bearer",
]

# Regex patterns for common secret formats
SECRET_REGEXES = [
    r'xoxb-[a-zA-Z0-9\-]+',  # Slack bot tokens
    r'xoxp-[a-zA-Z0-9\-]+',  # Slack user tokens
    r'xapp-[a-zA-Z0-9\-]+',  # Slack app-level tokens
    r'ATATT[a-zA-Z0-9_\-=]{20,}',  # Atlassian API tokens
]


def mask_secrets(text: str, mask: str = "********") -> str:
    """Mask secrets in a string.

    Args:
        text: The text that may contain secrets
        mask: The string to replace secrets with

    Returns:
        Text with secrets masked
    """
    if not text:
        return text

    result = text

    # Mask known secret patterns in key=value format
    for pattern in SECRET_PATTERNS:
        regex = rf'({pattern}["\']?\s*[=:]\s*["\']?)([^"\'\s]+)(["\']?)'
        result = re.sub(regex, rf'\1{mask}\3', result, flags=re.IGNORECASE)

    for regex in SECRET_REGEXES:
        result = re.sub(regex, mask, result)

    return result


class SecretMaskingFormatter(logging.Formatter):
    """Formatter that masks secrets in log messages."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        return mask_secrets(message)


def setup_logging(
    level: Optional[int] = None,
    log_file: Optional[Path] = None,
    quiet: bool = False
) -> logging.Logger:
    """Set up logging configuration.

    Args:
        level: Logging level (default: DEBUG if JIRA_BRIDGE_DEBUG, else INFO)
        log_file: Optional path to log file
        quiet: If True, suppress console output

    Returns:
        Configured logger
    """
    if level is None:
        level = logging.DEBUG if DEBUG_MODE else logging.INFO

    logger = logging.getLogger("jira_bridge")
    logger.setLevel(level)

    # Clear existing handlers
    logger.handlers.clear()

    if not quiet:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)

        if DEBUG_MODE:
            console_format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
        else:
            console_format = "%(asctime)s [%(levelname)s] %(message)s"

        console_handler.setFormatter(SecretMaskingFormatter(console_format))
        logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_format = "%(asctime)s [%(levelname)s] %(name)s:%(lineno)d: %(message)s"
        file_handler.setFormatter(SecretMaskingFormatter(file_format))
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str = "jira_bridge") -> logging.Logger:
    """Get a logger under the jira_bridge tree.

    Args:
        name: Logger name (will be prefixed with 'jira_bridge.')

    Returns:
        Logger instance
    """
    if not name.startswith("jira_bridge"):
        name = f"jira_bridge.{name}"
    return logging.getLogger(name)


# Environment variable documentation
ENV_VARS = {
    "JIRA_BRIDGE_DEBUG": {
        "description": "Enable debug mode with verbose logging",
        "values": ["1", "true", "yes"],
        "default": "false"
    },
    "JIRA_BRIDGE_HOME": {
        "description": "Directory holding config.yaml and .env",
        "default": "current directory"
    },
    "JIRA_BRIDGE_LOG_LEVEL": {
        "description": "Set logging level",
        "values": ["DEBUG", "INFO", "WARNING", "ERROR"],
        "default": "INFO"
    }
}
