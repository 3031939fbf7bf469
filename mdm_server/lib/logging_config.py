"""JSON logging configuration for the MDM server."""

import logging

from pythonjsonlogger import jsonlogger

# Context keys callers may attach through ``extra=``.
CONTEXT_FIELDS = {"component", "transport", "addr", "cause"}


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter with a focused field set.

    Keeps timestamp, level, message, exc_info, funcName, lineno and the
    structured context keys in CONTEXT_FIELDS. Drops process/thread noise.
    """

    def add_fields(self, log_record, record, message_dict):
        """Override to include only specified fields.

        Args:
            log_record: Dict to be logged as JSON
            record: LogRecord object from logging framework
            message_dict: Dict containing message and args
        """
        super().add_fields(log_record, record, message_dict)

        if "levelname" in log_record:
            log_record["level"] = log_record.pop("levelname")

        allowed_fields = {
            "timestamp",
            "level",
            "message",
            "exc_info",
            "funcName",
            "lineno",
        } | CONTEXT_FIELDS

        keys_to_remove = [key for key in log_record if key not in allowed_fields]
        for key in keys_to_remove:
            log_record.pop(key)


def _setup_logger() -> logging.Logger:
    """Initialize and configure singleton logger.

    Child loggers (``mdm_server.lib.*``) propagate here.

    Returns:
        Configured logger with CustomJsonFormatter
    """
    logger = logging.getLogger("mdm_server")

    if logger.handlers:
        return logger

    handler = logging.StreamHandler()
    formatter = CustomJsonFormatter(
        fmt="%(timestamp)s %(levelname)s %(funcName)s %(lineno)d %(message)s",
        timestamp=True,
    )
    handler.setFormatter(formatter)

    logger.setLevel(logging.INFO)
    logger.addHandler(handler)
    logger.propagate = False

    return logger


def set_log_level(level: str) -> None:
    """Adjust the singleton logger's level (e.g. from ``--log-level``)."""
    LOGGER.setLevel(level.upper())


LOGGER = _setup_logger()
