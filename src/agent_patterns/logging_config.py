"""
Logging configuration for pattern components.

Every component logs through a named logger under `agent_patterns.`, with a
single stderr handler and a consistent line format so nested workflows can
be followed in one stream.
"""

import logging
import os
import sys
from typing import Optional, Tuple

LOGGER_ROOT = "agent_patterns"


def configure_logging(
    component: str,
    level: str = "INFO",
    log_file: Optional[str] = None
) -> logging.Logger:
    """
    Configure structured logging for a component.

    Args:
        component: Component name (e.g., "chain", "router")
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path for logging (defaults to stderr only)

    Returns:
        Configured logger instance

    Example:
        >>> logger = configure_logging("chain", "DEBUG")
        >>> logger.info("Chain started")
    """
    logger = logging.getLogger(f"{LOGGER_ROOT}.{component}")

    # Avoid duplicate handlers if already configured
    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)8s] [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    # Don't propagate to root logger (avoid duplicate messages)
    logger.propagate = False

    return logger


def get_logger(component: str) -> logging.Logger:
    """
    Get or create a logger for a component.

    Auto-configures from the environment on first use.
    """
    logger = logging.getLogger(f"{LOGGER_ROOT}.{component}")

    if not logger.handlers:
        level, log_file = configure_from_environment()
        logger = configure_logging(component, level, log_file)

    return logger


def configure_from_environment() -> Tuple[str, Optional[str]]:
    """Read AGENT_PATTERNS_LOG_LEVEL and AGENT_PATTERNS_LOG_FILE."""
    log_level = os.environ.get("AGENT_PATTERNS_LOG_LEVEL", "INFO")
    log_file = os.environ.get("AGENT_PATTERNS_LOG_FILE")
    return log_level, log_file
