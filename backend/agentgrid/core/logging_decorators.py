"""
Logging decorators for cross-cutting concerns
"""

import inspect
import functools
import time
from typing import Any, Callable, Optional

import structlog

from agentgrid.core.logger_setup import LoggerSetup


def log_execution_time(logger: Optional[structlog.stdlib.BoundLogger] = None):
    """Decorator to log function execution time, for plain and async functions"""

    def decorator(func: Callable) -> Callable:
        def _log(start_time: float, error: Optional[Exception] = None):
            log = logger or LoggerSetup.get_logger(func.__module__)
            duration = time.time() - start_time
            if error is None:
                log.info(
                    "Function executed",
                    function=func.__name__,
                    duration_seconds=duration,
                    success=True,
                )
            else:
                log.error(
                    "Function failed",
                    function=func.__name__,
                    duration_seconds=duration,
                    error=str(error),
                    success=False,
                )

        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs) -> Any:
                start_time = time.time()
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    _log(start_time, e)
                    raise
                _log(start_time)
                return result

            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            start_time = time.time()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                _log(start_time, e)
                raise
            _log(start_time)
            return result

        return wrapper

    return decorator
