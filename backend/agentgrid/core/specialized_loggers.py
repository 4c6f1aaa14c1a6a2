"""
Specialized logger classes for coordination logging
"""

import structlog


class CoordinationLogger:
    """Logger for lock, dispatch and consolidation events with bound context"""

    def __init__(self, base_logger: structlog.stdlib.BoundLogger):
        self.base_logger = base_logger

    def bind(self, **kwargs) -> "CoordinationLogger":
        """Bind additional context to the logger"""
        return CoordinationLogger(self.base_logger.bind(**kwargs))

    def lock_event(self, event: str, **kwargs):
        self.base_logger.info("LOCK_EVENT", event_type=event, **kwargs)

    def dispatch_event(self, event: str, **kwargs):
        self.base_logger.info("DISPATCH_EVENT", event_type=event, **kwargs)

    def consolidation_event(self, event: str, **kwargs):
        self.base_logger.info("CONSOLIDATION_EVENT", event_type=event, **kwargs)

    def error_event(self, event: str, error: Exception, **kwargs):
        """Log error events with exception details"""
        self.base_logger.error(
            "ERROR_EVENT",
            event_type=event,
            error=str(error),
            error_type=type(error).__name__,
            **kwargs,
        )

    def debug(self, msg, **kwargs):
        return self.base_logger.debug(msg, **kwargs)

    def info(self, msg, **kwargs):
        return self.base_logger.info(msg, **kwargs)

    def warning(self, msg, **kwargs):
        return self.base_logger.warning(msg, **kwargs)

    def error(self, msg, **kwargs):
        return self.base_logger.error(msg, **kwargs)

    def critical(self, msg, **kwargs):
        return self.base_logger.critical(msg, **kwargs)
