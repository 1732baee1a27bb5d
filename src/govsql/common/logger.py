"""Process logging for govsql.

Records written while a request is in flight carry its trace id and report
type. Both live in one context variable, so the engine's worker thread,
which runs in a copy of the caller's context, tags its records as well.
"""
import contextvars
import json
import logging
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

REQUEST_FIELDS = ("trace_id", "report_type")
_UNSET = "-"

_request_ctx: contextvars.ContextVar[Dict[str, str]] = contextvars.ContextVar("govsql_request")

# attributes every LogRecord has; anything else on a record came in through ``extra``
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(trace_id)s %(report_type)s] %(message)s"


@contextmanager
def request_context(trace_id: str, report_type: Optional[str] = None) -> Iterator[None]:
    """Tags log records emitted inside the block with the request's fields."""
    token = _request_ctx.set({"trace_id": trace_id, "report_type": report_type or _UNSET})
    try:
        yield
    finally:
        _request_ctx.reset(token)


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        fields = _request_ctx.get({})
        for name in REQUEST_FIELDS:
            setattr(record, name, fields.get(name, _UNSET))
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record.

    Request fields are included only while a request is in flight. Values
    passed through ``extra`` are copied as top-level keys.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in REQUEST_FIELDS:
            value = getattr(record, name, _UNSET)
            if value != _UNSET:
                entry[name] = value
        for key, value in vars(record).items():
            if key in _RECORD_ATTRS or key in REQUEST_FIELDS or key.startswith("_"):
                continue
            entry[key] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def configure_logging(level: str = "INFO", json_format: bool = False) -> None:
    """Sends all records to one stderr handler, replacing any earlier setup.

    Args:
        level (str): The root logging level.
        json_format (bool): Emit JSON lines instead of text.
    """
    handler = logging.StreamHandler()
    handler.addFilter(RequestContextFilter())
    handler.setFormatter(JsonFormatter() if json_format else logging.Formatter(TEXT_FORMAT))

    root = logging.getLogger()
    root.setLevel(level)
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    """Returns a logger under the govsql namespace."""
    if not name.startswith("govsql"):
        name = f"govsql.{name}"
    return logging.getLogger(name)
