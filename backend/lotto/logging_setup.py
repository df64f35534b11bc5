from __future__ import annotations
import logging, sys
import structlog
import structlog.stdlib
from lotto.config import settings

def _service_fields(_logger, _method, event_dict):
    event_dict.setdefault("service", settings.app_name)
    event_dict.setdefault("env", settings.environment)
    return event_dict

def configure_logging(level: str | None = None, fmt: str | None = None):
    """JSON lines on stdout; LOG_FORMAT=console gives the coloured dev renderer instead."""
    lvl = logging.getLevelName((level or settings.log_level).upper())
    if not isinstance(lvl, int):
        lvl = logging.INFO
    if (fmt or settings.log_format) == "console":
        renderer = structlog.dev.ConsoleRenderer()
        tail = [renderer]
    else:
        renderer = structlog.processors.JSONRenderer()
        tail = [structlog.processors.EventRenamer("message"), renderer]
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.add_log_level,
            _service_fields,
            structlog.processors.format_exc_info,
            *tail,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(lvl),
        cache_logger_on_first_use=True,
    )
    # stdlib loggers (uvicorn, sqlalchemy, alembic) go through the same renderer
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(processor=renderer))
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(lvl)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
