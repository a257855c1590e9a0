"""
Logging Configuration for the Sales Warehouse

Structured logging via structlog. A pipeline run binds its run id, and each
stage its name, layer and table, into structlog contextvars; every event
logged meanwhile (cleaners, builders and validators included) carries them.
"""

import logging
import sys
from typing import Any, Dict, Optional

import structlog
from structlog.contextvars import bound_contextvars, get_contextvars
from structlog.processors import JSONRenderer, TimeStamper
from structlog.stdlib import add_log_level, ProcessorFormatter

from warehouse.config.settings import get_settings

APP_NAME = "sales-warehouse"


def _add_app_context(environment: str):
    """Processor stamping the application name and environment on each event"""
    def processor(logger, method_name, event_dict):
        event_dict.setdefault("app", APP_NAME)
        event_dict.setdefault("environment", environment)
        return event_dict
    return processor


def configure_logging(log_level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """
    Configure structured logging for the CLI.

    Args:
        log_level: Override log level (DEBUG, INFO, WARNING, ERROR)
        log_format: Override renderer ("json" or "text")
    """
    settings = get_settings()
    level = log_level or settings.monitoring.log_level
    fmt = log_format or settings.monitoring.log_format
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        _add_app_context(settings.app_env),
        structlog.stdlib.add_logger_name,
        add_log_level,
        TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=shared_processors + [ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    renderer = JSONRenderer() if fmt == "json" else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    formatter = ProcessorFormatter(processor=renderer, foreign_pre_chain=shared_processors)

    # Logs go to stderr; stdout is reserved for command output
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(numeric_level)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)

    structlog.get_logger(__name__).debug("Logging configured", level=level, format=fmt)


def run_context(run_id: str, **values: Any):
    """
    Context manager binding a pipeline run id (and extra fields) to every
    event logged inside it. Previous bindings are restored on exit.
    """
    return bound_contextvars(run_id=run_id, **_present(values))


def stage_context(run_id: str, stage: str, **values: Any):
    """
    Context manager binding stage telemetry fields for one stage.

    The run id is bound again: stages may run on pool threads, which start
    from an empty context.
    """
    return bound_contextvars(run_id=run_id, stage=stage, **_present(values))


def current_context() -> Dict[str, Any]:
    """Fields bound in the calling context"""
    return get_contextvars()


def _present(values: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}
