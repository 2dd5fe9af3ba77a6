"""
Centralized logging configuration for the bell scheduling service.

This module provides standardized logging with timestamps, function names,
and appropriate log levels for all system components.
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Dict, Optional


class BellSystemLogger:
    """
    Centralized logger for the bell scheduling service.
    Provides consistent formatting and handling across all modules.
    """

    _loggers: Dict[str, logging.Logger] = {}
    _configured = False

    @classmethod
    def setup_logging(
        cls,
        log_level: str = "INFO",
        log_file: Optional[str] = None,
        console_output: bool = True
    ) -> None:
        """
        Configure the logging system for the entire application.

        Args:
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_file: Optional log file path. No file handler when None
            console_output: Whether to output logs to console
        """
        if cls._configured:
            return

        root_logger = logging.getLogger()
        root_logger.setLevel(getattr(logging, log_level.upper()))

        formatter = logging.Formatter(
            fmt='%(asctime)s | %(levelname)-8s | %(name)-20s | %(funcName)-20s | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        if console_output:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setFormatter(formatter)
            console_handler.setLevel(getattr(logging, log_level.upper()))
            root_logger.addHandler(console_handler)

        if log_file is not None:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                filename=log_file,
                maxBytes=10 * 1024 * 1024,  # 10MB
                backupCount=5
            )
            file_handler.setFormatter(formatter)
            file_handler.setLevel(logging.DEBUG)
            root_logger.addHandler(file_handler)

        cls._configured = True

        logger = cls.get_logger("logging_config")
        logger.info(f"Logging system configured - Level: {log_level}, File: {log_file}")

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """
        Get a logger for a specific module or component.

        Args:
            name: Logger name (typically component name)

        Returns:
            Logger instance
        """
        if name not in cls._loggers:
            cls._loggers[name] = logging.getLogger(f"bell.{name}")
        return cls._loggers[name]


def get_mqtt_logger() -> logging.Logger:
    """Get logger for MQTT connection handling."""
    return BellSystemLogger.get_logger("mqtt")


def get_delivery_logger() -> logging.Logger:
    """Get logger for the delivery engine and reconciliation."""
    return BellSystemLogger.get_logger("delivery")


def get_store_logger() -> logging.Logger:
    """Get logger for Firestore operations."""
    return BellSystemLogger.get_logger("store")


def get_gateway_logger() -> logging.Logger:
    return BellSystemLogger.get_logger("gateway")


def get_api_logger() -> logging.Logger:
    return BellSystemLogger.get_logger("api")


def get_main_logger() -> logging.Logger:
    return BellSystemLogger.get_logger("main_app")


def log_mqtt_publish(logger: logging.Logger, topic: str, message: str, success: bool = True) -> None:
    """
    Standardized logging for MQTT publish operations.

    Args:
        logger: Logger instance to use
        topic: MQTT topic
        message: Message content or failure reason
        success: Whether the publish was successful
    """
    if success:
        logger.info(f"MQTT_PUBLISH | Topic: {topic} | Message: {message}")
    else:
        logger.error(f"MQTT_PUBLISH_FAILED | Topic: {topic} | Message: {message}")


def log_database_operation(
    logger: logging.Logger,
    operation: str,
    collection: str,
    success: bool,
    details: Optional[str] = None,
    error: Optional[Exception] = None
) -> None:
    """
    Standardized logging for document store operations.

    Args:
        logger: Logger instance to use
        operation: Store operation (PUT, SELECT, UPDATE, DELETE)
        collection: Firestore collection name
        success: Whether operation was successful
        details: Additional details
        error: Exception if operation failed
    """
    message_parts = [f"DB_{operation.upper()}", f"Collection: {collection}"]

    if details:
        message_parts.append(f"Details: {details}")

    message = " | ".join(message_parts)

    if success:
        logger.info(message)
    elif error:
        logger.error(f"{message} | Error: {error}")
    else:
        logger.error(message)
