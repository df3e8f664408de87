"""JSON logging for OrderDesk API.

Every service logs through ``get_logger`` and passes structured fields as
``extra={"context": {...}}``. Tracking sync runs log through
``ShippingAccountLogger`` so every line of a run carries the account it
belongs to.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

# Provider HTTP clients log every request at INFO.
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = getattr(record, "context", None)
        if context:
            log_data["context"] = context
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"orderdesk.{name}")


class ShippingAccountLogger(logging.LoggerAdapter):
    """Stamps the shipping account on every record; call sites add fields with ``context=``."""

    def __init__(self, logger: logging.Logger, account: Any):
        super().__init__(
            logger,
            {
                "shipping_account_id": str(account.id),
                "shipping_account": account.name,
            },
        )

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        context = kwargs.pop("context", None) or {}
        kwargs["extra"] = {"context": {**self.extra, **context}}
        return msg, kwargs
