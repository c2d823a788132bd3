"""Structured JSON logging configuration using structlog with file rotation."""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler

import structlog

from .. import __version__

SECRET_FIELDS = frozenset({"password", "token", "access_token", "secret_key", "authorization"})


def add_service_context(service: str, version: str):
    """Processor factory stamping every event with the emitting service."""

    def processor(logger, method_name, event_dict):
        event_dict.setdefault("service", service)
        event_dict.setdefault("version", version)
        return event_dict

    return processor


def redact_secrets(logger, method_name, event_dict):
    """Mask credential fields so they never reach a log sink."""
    for key in SECRET_FIELDS.intersection(event_dict):
        event_dict[key] = "***"
    return event_dict


def setup_logging(
    debug: bool = False,
    log_dir: str | None = "logs",
    log_max_bytes: int = 10_000_000,
    log_backup_count: int = 5,
    service: str = "loginwatch",
) -> None:
    """Configure structured logging for the application.

    Logs to stdout (always) and to a rotating file when ``log_dir`` is set.
    In debug mode, uses human-readable console rendering.
    In production mode, uses JSON rendering to both stdout and file.
    Every event carries ``service`` and ``version``; credential fields are masked.
    """
    log_level = logging.DEBUG if debug else logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_service_context(service, __version__),
            redact_secrets,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer() if not debug else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Clear existing handlers to avoid duplicates on reload
    root_logger.handlers.clear()

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setLevel(log_level)
    stdout_handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(stdout_handler)

    if not log_dir:
        return

    try:
        os.makedirs(log_dir, exist_ok=True)
        log_path = os.path.join(log_dir, f"{service}.log")
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=log_max_bytes,
            backupCount=log_backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter("%(message)s"))
        root_logger.addHandler(file_handler)
    except OSError:
        # If we can't create log dir/file, continue with stdout only
        structlog.get_logger("utils.logging").warning("log_file_unavailable", log_dir=log_dir)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a named structured logger."""
    return structlog.get_logger(name)
