"""
Service Logger Setup

Configures standard-library logging for a microservice from LoggingConfig.

Usage:
    from core.logger import setup_service_logger

    logger = setup_service_logger("inventory_service")
    logger.info("Service started")
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

from core.config.logging_config import LoggingConfig


class StructuredFormatter(logging.Formatter):
    """Render log records as single-line JSON documents"""

    def __init__(self, service_name: str, environment: str):
        super().__init__()
        self.service_name = service_name
        self.environment = environment

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "service": self.service_name,
            "environment": self.environment,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload)


_configured_services = set()


def setup_service_logger(
    service_name: str,
    config: Optional[LoggingConfig] = None,
) -> logging.Logger:
    """
    Configure root logging once per service and return the service logger.

    Args:
        service_name: Logger name, usually the service name
        config: Logging configuration (defaults to LoggingConfig.from_env())

    Returns:
        Configured logger
    """
    config = config or LoggingConfig.from_env()
    logger = logging.getLogger(service_name)

    if service_name in _configured_services:
        return logger

    if config.enable_structured:
        formatter: logging.Formatter = StructuredFormatter(service_name, config.environment)
    else:
        formatter = logging.Formatter(config.log_format)

    root = logging.getLogger()
    root.setLevel(config.log_level.upper())

    if config.enable_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)

    if config.log_file:
        file_handler = logging.FileHandler(config.log_file)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    _configured_services.add(service_name)
    logger.debug(f"Logging configured for {service_name} at level {config.log_level}")
    return logger
