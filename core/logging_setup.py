"""Logging configuration.

Modules log through ``logging.getLogger(__name__)``. ``setup_logging`` is
called once by the API on startup; structured context is passed with
``extra=`` and rendered as ``key=value`` pairs after the message.
"""

import logging

from core.settings import LOG_LEVEL

_STANDARD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__.keys()
) | {"message", "asctime"}

NOISY_LOGGERS = ("httpx", "httpcore", "stripe")


class ContextFormatter(logging.Formatter):
    """Appends any ``extra=`` fields to the formatted line."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _STANDARD_ATTRS and not key.startswith("_")
        }
        if context:
            line += " " + " ".join(f"{k}={v}" for k, v in sorted(context.items()))
        return line


def setup_logging(level: str | None = None) -> None:
    """Configure the root logger and quieten third-party clients."""
    handler = logging.StreamHandler()
    handler.setFormatter(
        ContextFormatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level or LOG_LEVEL)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
