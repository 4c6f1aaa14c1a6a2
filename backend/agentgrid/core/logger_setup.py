"""
structlog configuration for agentgrid processes

Several agents usually share one lock directory and one log pipeline, so
every record is stamped with the service and the configured agent name.
"""

import inspect
import logging
import sys
from typing import Any, Dict, Optional

import structlog

from agentgrid.core.config import Settings, get_settings
from agentgrid.core.exceptions import ConfigurationError

SERVICE_NAME = "agentgrid"
LOG_FORMATS = ("json", "console")


class AgentIdentity:
    """structlog processor adding ``service`` and ``agent`` unless already bound"""

    def __init__(self, agent_name: str, service: str = SERVICE_NAME):
        self.agent_name = agent_name
        self.service = service

    def __call__(self, logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict.setdefault("service", self.service)
        event_dict.setdefault("agent", self.agent_name)
        return event_dict


class LoggerSetup:
    """Process-wide structlog setup driven by Settings"""

    _configured = False
    _loggers: Dict[str, structlog.stdlib.BoundLogger] = {}
    _agent_name: Optional[str] = None

    @classmethod
    def configure_logging(
        cls,
        settings: Optional[Settings] = None,
        log_level: Optional[str] = None,
        log_format: Optional[str] = None,
        enable_colors: Optional[bool] = None,
    ) -> None:
        """
        Configure structured logging once per process

        Args:
            settings: Source of LOG_LEVEL, LOG_FORMAT and AGENT_NAME (module settings by default)
            log_level: Overrides settings.LOG_LEVEL
            log_format: Overrides settings.LOG_FORMAT ("json" or "console")
            enable_colors: Console colors; defaults to whether stdout is a terminal

        Raises:
            ConfigurationError: unknown level or format
        """
        if cls._configured:
            return

        settings = settings or get_settings()
        level = (log_level or settings.LOG_LEVEL).upper()
        level_num = logging.getLevelName(level)
        if not isinstance(level_num, int):
            raise ConfigurationError(f"Unknown log level: {level}")

        fmt = (log_format or settings.LOG_FORMAT).lower()
        if fmt not in LOG_FORMATS:
            raise ConfigurationError(f"Unknown log format: {fmt} (expected one of {', '.join(LOG_FORMATS)})")

        if enable_colors is None:
            enable_colors = sys.stdout.isatty()

        logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level_num)
        # basicConfig is a no-op when the host already configured the root logger
        logging.getLogger(SERVICE_NAME).setLevel(level_num)

        processors = [
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            AgentIdentity(settings.AGENT_NAME),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
        ]
        if fmt == "json":
            processors.append(structlog.processors.JSONRenderer())
        else:
            processors.append(structlog.dev.ConsoleRenderer(colors=enable_colors))

        structlog.configure(
            processors=processors,
            wrapper_class=structlog.stdlib.BoundLogger,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )

        cls._agent_name = settings.AGENT_NAME
        cls._configured = True

    @classmethod
    def get_logger(cls, name: Optional[str] = None, depth: int = 1) -> structlog.stdlib.BoundLogger:
        """
        Cached logger for ``name``, configuring logging on first use

        ``depth`` is how many frames up the caller's module name is taken from
        when ``name`` is omitted.
        """
        if not cls._configured:
            cls.configure_logging()

        if name is None:
            frame = inspect.currentframe()
            for _ in range(depth):
                frame = frame.f_back
            name = frame.f_globals.get("__name__", SERVICE_NAME)

        if name not in cls._loggers:
            cls._loggers[name] = structlog.get_logger(name)
        return cls._loggers[name]

    @classmethod
    def agent_name(cls) -> Optional[str]:
        return cls._agent_name

    @classmethod
    def is_configured(cls) -> bool:
        return cls._configured

    @classmethod
    def reset(cls) -> None:
        """Forget configuration and cached loggers (tests)"""
        cls._configured = False
        cls._agent_name = None
        cls._loggers.clear()
