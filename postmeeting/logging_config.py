"""
Structured logging for the service, the ticker and the one-shot scripts.

Events are snake_case names with key/value context. Anything that looks like a
credential is masked before it reaches a handler.
"""
import logging
import sys
from typing import Any, Dict, Iterable

import structlog
from pythonjsonlogger import jsonlogger

from postmeeting import __version__

SECRET_KEYS = frozenset({
    "access_token",
    "refresh_token",
    "id_token",
    "api_key",
    "client_secret",
    "code",
    "tokens",
})

# third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def redact_secrets(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """structlog processor masking credential-like fields."""
    for key in SECRET_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = "***"
    return event_dict


def add_service(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    event_dict.setdefault("service", "postmeeting")
    event_dict.setdefault("version", __version__)
    return event_dict


def _quiet(names: Iterable[str], level: int) -> None:
    for name in names:
        logging.getLogger(name).setLevel(level)


def setup_logging(debug: bool = False, json_logs: bool = True) -> None:
    """
    Configure stdlib logging and structlog.

    Args:
        debug: Log at DEBUG instead of INFO and let SQLAlchemy's engine log at INFO
        json_logs: Render JSON lines; False gives structlog's console output for local runs
    """
    log_level = logging.DEBUG if debug else logging.INFO

    log_handler = logging.StreamHandler(sys.stdout)
    log_handler.setFormatter(jsonlogger.JsonFormatter(
        "%(asctime)s %(name)s %(levelname)s %(message)s",
        rename_fields={"asctime": "timestamp", "levelname": "level", "name": "logger"}
    ))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [log_handler]

    _quiet(QUIET_LOGGERS, logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)

    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            add_service,
            redact_secrets,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> Any:
    return structlog.get_logger(name)


class LogContext:
    """
    Bind context (cycle id, event id, account id) to every log line in a block.

    Nested blocks restore the outer values on exit instead of dropping them.
    """

    def __init__(self, **kwargs):
        self.context = kwargs
        self._tokens = {}

    def __enter__(self):
        self._tokens = structlog.contextvars.bind_contextvars(**self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        structlog.contextvars.reset_contextvars(**self._tokens)
