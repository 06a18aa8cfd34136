import logging
import sys
from pathlib import Path

import structlog

from sms_gateway.config import Settings


def configure_logging(settings: Settings) -> None:
    """Route structlog through stdlib logging: console always, ``LOG_DIR/api.log`` when set."""
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    handlers = [logging.StreamHandler(sys.stdout)]
    if settings.log_dir:
        logs_dir = Path(settings.log_dir)
        logs_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(logs_dir / "api.log", encoding="utf-8"))

    root = logging.getLogger()
    # replace only what a previous call installed
    for handler in list(root.handlers):
        if getattr(handler, "_sms_gateway", False):
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        handler._sms_gateway = True
        handler.setFormatter(logging.Formatter("%(message)s"))
        root.addHandler(handler)
    root.setLevel(level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if settings.log_format == "json"
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
