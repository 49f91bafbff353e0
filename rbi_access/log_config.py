"""Structured logging configuration"""

import logging

import structlog

from rbi_access.config import settings


def configure_logging(log_format: str = None, log_level: str = None) -> None:
    """Configure structlog with the service processor chain"""
    log_format = log_format or settings.log_format
    log_level = (log_level or settings.log_level).upper()

    logging.basicConfig(format="%(message)s", level=getattr(logging, log_level, logging.INFO))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if log_format == "json" else structlog.dev.ConsoleRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
