"""Structured logging configuration.

Everything under the ``app`` logger is emitted as one JSON object per line.
Dispatch and registry code passes ``tenant_id`` and ``tool_name`` in
``extra=``; those fields are always present (null when absent) so log
queries can filter on them.
"""

import logging
import os
import sys
from pythonjsonlogger import jsonlogger
from app.infra.config import config

SERVICE_NAME = "toolgate"
CONTEXT_FIELDS = ("tenant_id", "tool_name")


class ToolgateJsonFormatter(jsonlogger.JsonFormatter):

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record["service"] = SERVICE_NAME
        log_record["env"] = config.APP_ENV
        for field in CONTEXT_FIELDS:
            log_record.setdefault(field, None)


def setup_logging() -> logging.Logger:
    """Configure the ``app`` logger. LOG_LEVEL overrides the DEBUG-derived level."""
    logger = logging.getLogger("app")
    default_level = "DEBUG" if config.DEBUG else "INFO"
    logger.setLevel(os.getenv("LOG_LEVEL", default_level).upper())
    logger.propagate = False

    # Re-running setup must not stack handlers
    logger.handlers = []

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ToolgateJsonFormatter(
        "%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
        rename_fields={"levelname": "level", "name": "logger"},
    ))
    logger.addHandler(handler)

    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    return logger


app_logger = setup_logging()
