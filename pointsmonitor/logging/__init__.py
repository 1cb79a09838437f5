"""
Logging module for the Twitch Channel Points Monitor.

This module provides structured logging with JSON and console output
formats, configurable log levels, file rotation and secret redaction.
"""

from .logger import (
    StructuredLogger,
    JsonFormatter,
    ConsoleFormatter,
    configure_logging,
    get_logger,
)

__all__ = [
    'StructuredLogger',
    'JsonFormatter',
    'ConsoleFormatter',
    'configure_logging',
    'get_logger',
]
