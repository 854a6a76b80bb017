"""
Structured logging for the settlement service.

structlog builds the event (context, level, timestamp) and hands it to the
standard library as ``msg`` plus ``extra``; python-json-logger renders one JSON
object per line, so event fields land at the top level of the record.

Request ids are bound by the HTTP middleware. Checkout and settlement bind the
order id and checkout session id, so every event logged while an order is
handled (including the notification tasks it spawns) carries them.
"""
import logging
import sys
from typing import Any, Optional

import structlog
from pythonjsonlogger import jsonlogger

from referral_settlement.config import get_settings

_NOISY_LOGGERS = {
    "urllib3": logging.WARNING,
    "stripe": logging.INFO,
}


def add_app_context(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    settings = get_settings()
    event_dict.setdefault("app_name", settings.app_name)
    event_dict.setdefault("app_env", settings.app_env)
    return event_dict


def bind_request_context(request_id: str, method: str, path: str) -> None:
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, method=method, path=path)


def bind_order_context(
    order_id: Optional[int] = None, transaction_id: Optional[str] = None
) -> None:
    """Attach the order being handled to every following log event."""
    ids: dict[str, Any] = {}
    if order_id is not None:
        ids["order_id"] = order_id
    if transaction_id is not None:
        ids["transaction_id"] = transaction_id
    if ids:
        structlog.contextvars.bind_contextvars(**ids)


def build_json_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(timestamp)s %(level)s %(name)s %(message)s",
            rename_fields={"timestamp": "@timestamp", "name": "logger"},
        )
    )
    return handler


def setup_logging() -> None:
    """Route structlog events through a single JSON handler on the root logger."""
    settings = get_settings()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_app_context,
            structlog.stdlib.render_to_log_kwargs,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level))
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.addHandler(build_json_handler())

    for name, level in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(level)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database_echo else logging.WARNING
    )

    structlog.get_logger(__name__).info(
        "logging_configured", log_level=settings.log_level, app_env=settings.app_env
    )
