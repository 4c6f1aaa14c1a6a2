"""
Logger accessors for agentgrid modules
"""

from typing import Optional

import structlog

from agentgrid.core.logger_setup import LoggerSetup
from agentgrid.core.specialized_loggers import CoordinationLogger


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """Structured logger named after ``name`` or the calling module"""
    return LoggerSetup.get_logger(name, depth=2)


def get_coordination_logger(name: Optional[str] = None, **context) -> CoordinationLogger:
    """
    Coordination logger for lock, dispatch and consolidation milestones

    Args:
        name: Logger name (calling module if omitted)
        **context: Values bound to every record, e.g. ``component="agent-dispatcher"``
    """
    logger = CoordinationLogger(LoggerSetup.get_logger(name, depth=2))
    return logger.bind(**context) if context else logger


def configure_logging(**kwargs) -> None:
    LoggerSetup.configure_logging(**kwargs)


def reset_logging() -> None:
    LoggerSetup.reset()
