#!/usr/bin/env python3
"""
Centralized Logging Manager for mongolayer

File-based logging so library output never leaks into the host application's
console. All output goes to log files in ~/.mongolayer/logs/ unless
MONGOLAYER_LOG_DIR points elsewhere.
"""

import os
import json
import logging
import logging.handlers
from pathlib import Path
from typing import Optional, Dict, Any


class LoggingManager:
    """
    Manages file-based logging for all mongolayer components.

    Features:
    - File-only output (no console interference)
    - Component-specific log files
    - Automatic rotation
    - Debug mode support via MONGOLAYER_DEBUG
    """

    def __init__(self, log_dir: Optional[str] = None):
        """
        Initialize the logging manager.

        Args:
            log_dir: Directory for log files (defaults to MONGOLAYER_LOG_DIR
                or ~/.mongolayer/logs)
        """
        if log_dir is None:
            log_dir = os.environ.get('MONGOLAYER_LOG_DIR', Path.home() / '.mongolayer' / 'logs')
        self.log_dir = Path(log_dir)
        self.debug_mode = os.environ.get('MONGOLAYER_DEBUG', '').lower() in ('1', 'true', 'yes')
        self.loggers: Dict[str, logging.Logger] = {}

        self._ensure_log_directories()

    def _ensure_log_directories(self):
        """Create necessary log directories"""
        for directory in [self.log_dir, self.log_dir / 'query', self.log_dir / 'sync']:
            directory.mkdir(parents=True, exist_ok=True)

    def get_logger(self, name: str, component: Optional[str] = None) -> logging.Logger:
        """
        Get or create a logger for a specific component.

        Args:
            name: Logger name (e.g., 'Aggregate')
            component: Component category ('query', 'sync', None for main)

        Returns:
            Configured logger instance
        """
        logger_key = f"{component}.{name}" if component else name

        if logger_key in self.loggers:
            return self.loggers[logger_key]

        logger = logging.getLogger(f"mongolayer.{logger_key}")
        logger.setLevel(logging.DEBUG if self.debug_mode else logging.INFO)

        # Remove any inherited handlers
        logger.handlers = []
        logger.propagate = False

        if component in ('query', 'sync'):
            log_file = self.log_dir / component / f"{name.lower()}.log"
        else:
            log_file = self.log_dir / f"{name.lower()}.log"

        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding='utf-8',
            delay=True
        )

        if self.debug_mode:
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
        else:
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )

        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

        error_handler = logging.handlers.RotatingFileHandler(
            self.log_dir / 'error.log',
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding='utf-8',
            delay=True
        )
        error_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d]\n%(message)s\n',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        error_handler.setLevel(logging.ERROR)
        logger.addHandler(error_handler)

        self.loggers[logger_key] = logger
        return logger

    def log_with_context(self, logger: logging.Logger, level: int, message: str,
                         context: Optional[Dict[str, Any]] = None):
        """
        Log a message with additional context.

        Args:
            logger: Logger instance
            level: Log level
            message: Log message
            context: Additional context dict, serialized as JSON
        """
        if context:
            context_str = json.dumps(context, default=str)
            full_message = f"{message} | Context: {context_str}"
        else:
            full_message = message

        logger.log(level, full_message)


# Singleton instance
_logging_manager = None


def get_logging_manager() -> LoggingManager:
    """Get the singleton LoggingManager instance"""
    global _logging_manager
    if _logging_manager is None:
        _logging_manager = LoggingManager()
    return _logging_manager


def configure_logging(log_dir: Optional[str] = None) -> LoggingManager:
    """
    Replace the process-wide logging manager (called once at startup).

    Args:
        log_dir: Directory for log files
    """
    global _logging_manager
    _logging_manager = LoggingManager(log_dir)
    return _logging_manager


def get_logger(name: str, component: Optional[str] = None) -> logging.Logger:
    """
    Convenience function to get a logger.

    Args:
        name: Logger name
        component: Component type ('query', 'sync', or None)

    Returns:
        Configured logger
    """
    return get_logging_manager().get_logger(name, component)


def log_with_context(logger: logging.Logger, level: int, message: str,
                     context: Optional[Dict[str, Any]] = None):
    """Log through the process-wide manager with a JSON context suffix."""
    get_logging_manager().log_with_context(logger, level, message, context)


# Prevent any default logging to console
logging.getLogger('mongolayer').addHandler(logging.NullHandler())
