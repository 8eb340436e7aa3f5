# ─────────────────────────────────────────────────────────────────────────────
# Logging Configuration: structlog for the API and the Celery worker
# ─────────────────────────────────────────────────────────────────────────────
# Both processes render through one stdout handler on the root logger.
#
# API:     create_app() calls configure_logging() once.
# Worker:  Celery normally replaces the root handlers when the worker boots.
#          sketchlift.worker calls install_worker_logging(), which hooks
#          configure_logging() into the setup_logging signal and binds the
#          task id into contextvars around every task.
# ─────────────────────────────────────────────────────────────────────────────


import logging
import sys
from typing import Any

import structlog
from celery import signals

# Third-party loggers that are chatty at INFO. httpx logs every request,
# including the provider URL.
_QUIET_LOGGERS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "kombu": logging.WARNING,
    "amqp": logging.WARNING,
    "celery.redirected": logging.WARNING,
}


def configure_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """Configure structlog and route stdlib loggers through the same renderer.

    JSON output is one parseable object per line with timestamp, level,
    logger name, and structured fields. Console output is used for local
    development (human-readable). Records from stdlib loggers (celery,
    redis, uvicorn) pass through ``foreign_pre_chain`` so they carry the
    same keys, including any bound request or task id.

    Safe to call more than once: the root handlers are replaced.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    renderer: structlog.types.Processor
    if json_output:
        renderer = structlog.processors.JSONRenderer()
        final_processors = [structlog.processors.format_exc_info, renderer]
    else:
        renderer = structlog.dev.ConsoleRenderer()
        final_processors = [renderer]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *final_processors,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper()))

    for name, level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)


def bind_task_context(task_id: str, task_name: str) -> None:
    """Start a fresh log context for one Celery task execution."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(task_id=task_id, task_name=task_name)


def install_worker_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """Hook configure_logging and per-task context into Celery's signals.

    Connecting ``setup_logging`` stops Celery from installing its own root
    handlers when the worker boots.
    """

    def _setup(**_: object) -> None:
        configure_logging(log_level=log_level, json_output=json_output)

    def _prerun(task_id: str, task: Any, **_: object) -> None:
        bind_task_context(task_id, task.name)

    def _postrun(**_: object) -> None:
        structlog.contextvars.clear_contextvars()

    # Closures have no other owner, so hold them strongly. The dispatch_uid
    # keeps repeated calls from stacking receivers.
    signals.setup_logging.connect(_setup, weak=False, dispatch_uid="sketchlift.setup_logging")
    signals.task_prerun.connect(_prerun, weak=False, dispatch_uid="sketchlift.task_prerun")
    signals.task_postrun.connect(_postrun, weak=False, dispatch_uid="sketchlift.task_postrun")
