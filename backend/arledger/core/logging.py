"""Logging setup.

Everything goes to stdout through the root logger. Modules log through
``get_logger(__name__)``; long-running work such as an analytics pass
binds its context once with :func:`bind` so every line carries it.
"""

import logging
import sys
from typing import Any, MutableMapping, Optional

from arledger.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Loggers that are too chatty at INFO
_QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "aiosqlite", "redis")


def setup_logging(level: Optional[int] = None) -> None:
    """Route all logging to stdout.

    ``level`` defaults to DEBUG when ``settings.debug`` is set, INFO
    otherwise. SQL echo follows debug mode.
    """
    if level is None:
        level = logging.DEBUG if settings.debug else logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    root = logging.getLogger()
    root.setLevel(level)
    # uvicorn --reload imports main again
    root.handlers.clear()
    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.debug else logging.WARNING
    )
    logging.getLogger("arledger").setLevel(level)


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``arledger`` namespace.

    Module names already inside the package are used as they are.
    """
    if name == "arledger" or name.startswith("arledger."):
        return logging.getLogger(name)
    return logging.getLogger(f"arledger.{name}")


class LoggerAdapter(logging.LoggerAdapter):
    """Appends ``key=value`` context to each message.

    ``LoggerAdapter(log, {"user_id": "u1"}).info("Pass started")`` logs
    ``Pass started - user_id=u1``. Context values that are None are left out.
    """

    def process(self, msg: str, kwargs: MutableMapping[str, Any]) -> tuple[str, MutableMapping[str, Any]]:
        context = " - ".join(f"{k}={v}" for k, v in self.extra.items() if v is not None)
        return (f"{msg} - {context}" if context else msg), kwargs


def bind(name: str, **context: Any) -> LoggerAdapter:
    """Shorthand for ``LoggerAdapter(get_logger(name), context)``."""
    return LoggerAdapter(get_logger(name), context)
