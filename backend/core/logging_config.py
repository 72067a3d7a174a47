"""Root logger setup for the gateway.

  - ENV=prod → one JSON object per line, conn_id lifted into its own field
  - otherwise → plaintext for local runs

Session code writes conn=<id> into its messages; both formats keep it so
a connection can be traced end to end. Output is scrubbed by
observability.redaction unless LOG_REDACTION_ENABLED is false.
"""
import json
import logging
import re
import sys
from typing import Optional

from config.settings import get_settings
from observability.redaction import redact

_CONN_RE = re.compile(r"\bconn=([\w-]+)")

_PLAIN_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"
_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S"

# Library loggers that are chatty at INFO
_QUIET = ("uvicorn.access", "motor", "pymongo")


def _scrubbed(text: str) -> str:
    return redact(text) if get_settings().LOG_REDACTION_ENABLED else text


class RedactingFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        return _scrubbed(super().format(record))


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        msg = record.getMessage()
        entry = {
            "ts": self.formatTime(record, _TIME_FORMAT),
            "level": record.levelname,
            "logger": record.name,
            "msg": _scrubbed(msg),
        }
        conn = getattr(record, "conn_id", None) or _conn_from(msg)
        if conn:
            entry["conn_id"] = conn
        if record.exc_info:
            entry["exception"] = _scrubbed(self.formatException(record.exc_info))
        # Scrub values, not the serialized line, so the output stays valid JSON
        return json.dumps(entry, default=str)


def _conn_from(msg: str) -> Optional[str]:
    m = _CONN_RE.search(msg)
    return m.group(1) if m else None


def setup_logging(level: Optional[str] = None) -> None:
    settings = get_settings()
    if settings.ENV == "prod":
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = RedactingFormatter(fmt=_PLAIN_FORMAT, datefmt=_TIME_FORMAT)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO))

    for name in _QUIET:
        logging.getLogger(name).setLevel(logging.WARNING)
