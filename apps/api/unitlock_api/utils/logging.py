"""Structured JSON logging utilities.

- JSON format for log aggregation
- Includes request_id, user_id, unit_id from context variables
- Standard fields: timestamp, level, message, module, func, line
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any

from unitlock_api.context import request_id_var, unit_id_var, user_id_var
from unitlock_api.utils.sanitize import sanitize_exc, sanitize_field, sanitize_str

# LogRecord attributes that are never copied into the JSON body as extras
_RESERVED_ATTRS: frozenset[str] = frozenset({
    "name", "msg", "args", "created", "filename", "funcName", "levelname",
    "levelno", "lineno", "module", "msecs", "message", "pathname", "process",
    "processName", "relativeCreated", "thread", "threadName", "taskName",
    "exc_info", "exc_text", "stack_info",
})

_CONTEXT_VARS = (
    ("request_id", request_id_var),
    ("user_id", user_id_var),
    ("unit_id", unit_id_var),
)


class JSONFormatter(logging.Formatter):
    """JSON log formatter with request context.

    Formats log records as JSON with standard fields:
    - timestamp: ISO 8601 UTC
    - level: log level (INFO, ERROR, etc.)
    - message: log message (sanitized)
    - module / func / line: call site
    - request_id, user_id, unit_id: from context variables (if set)
    - any extra fields passed via logger.info(..., extra={...}) (sanitized)

    Explicit extras win over context variables with the same name.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON string."""
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "message": sanitize_str(record.getMessage()),
            "module": record.module,
            "func": record.funcName,
            "line": record.lineno,
        }

        for field, var in _CONTEXT_VARS:
            value = var.get()
            if value:
                log_data[field] = value

        if record.exc_info:
            log_data["exc_info"] = sanitize_exc(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = sanitize_field(key, value)

        return json.dumps(log_data, default=str)


def configure_json_logging(log_level: str = "INFO") -> None:
    """Configure root logger with JSON formatter.

    Args:
        log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)
