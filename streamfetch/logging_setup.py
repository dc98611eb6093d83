"""Logging configuration: stdlib handlers with structlog JSON events on top."""

from __future__ import annotations

import logging
import logging.config
from pathlib import Path

import structlog
import yaml

from streamfetch.config import Settings


def configure_structured_logging(*, json_output: bool = True) -> None:
    """Route structlog events through stdlib logging, with contextvars merged in."""
    renderer: structlog.types.Processor
    if json_output:
        renderer = structlog.processors.JSONRenderer(sort_keys=True)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def setup_logging(settings: Settings | None = None, config_path: str | Path = "config/logging.yaml") -> None:
    """Load logging configuration from YAML if present, else a basic stream handler."""
    settings = settings or Settings()
    log_config_path = Path(config_path)
    if log_config_path.exists():
        with log_config_path.open("r", encoding="utf-8") as handle:
            config = yaml.safe_load(handle)
        logging.config.dictConfig(config)
    else:
        logging.basicConfig(level=settings.log_level, format="%(message)s")
    logging.getLogger("streamfetch").setLevel(settings.log_level)
    configure_structured_logging(json_output=settings.log_json)
