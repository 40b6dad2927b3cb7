"""
Logging configuration for VOLAPI processes.

Every record carries the id of the API request it was logged for
(``req_id``, '-' outside of a request), so that the lines of one volume or
reservation operation can be picked out of a busy log.
"""

import contextvars
import logging
import sys
from pathlib import Path
from typing import Optional, Union

DEFAULT_FORMAT = '[%(asctime)s] [{component}] %(levelname)s %(name)s req_id=%(req_id)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Loggers of libraries that are too chatty below WARNING
NOISY_LOGGERS = ("urllib3", "sqlalchemy.engine", "sqlalchemy.pool")

_request_id: contextvars.ContextVar = contextvars.ContextVar("volapi_request_id", default=None)


def bind_request_id(request_id: Optional[str]) -> contextvars.Token:
    """Tag records logged from the current context with request_id."""
    return _request_id.set(request_id)


def reset_request_id(token: contextvars.Token) -> None:
    _request_id.reset(token)


def current_request_id() -> Optional[str]:
    return _request_id.get()


class RequestIdFilter(logging.Filter):
    """
    Adds the request id bound to the current context to each record.
    """
    def filter(self, record):
        record.req_id = _request_id.get() or "-"
        return True


def _level_number(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    number = logging.getLevelName(level.upper())
    return number if isinstance(number, int) else logging.INFO


def setup_logging(
    component_name: str,
    level: Union[int, str] = logging.INFO,
    log_file: Optional[str] = None,
    format_string: Optional[str] = None
):
    """
    Configure logging for a VOLAPI component.

    Handlers installed by an earlier call are replaced, so the service can be
    started more than once in a process (tests do).

    Args:
        component_name: Component identifier (e.g., 'volapi')
        level: Logging level, as a number or a name ('DEBUG', 'INFO', ...)
        log_file: Optional file path for log output
        format_string: Custom format string, may use %(req_id)s
    """
    level = _level_number(level)
    if format_string is None:
        format_string = DEFAULT_FORMAT.format(component=component_name.upper())
    formatter = logging.Formatter(format_string, datefmt=DATE_FORMAT)

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    root = logging.getLogger()
    for handler in [h for h in root.handlers if getattr(h, "_volapi", False)]:
        root.removeHandler(handler)
        handler.close()

    for handler in handlers:
        handler._volapi = True
        handler.setFormatter(formatter)
        handler.addFilter(RequestIdFilter())
        root.addHandler(handler)
    root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    logger = logging.getLogger(component_name)
    logger.info("%s logging initialized (level=%s)", component_name.upper(), logging.getLevelName(level))

    return logger
