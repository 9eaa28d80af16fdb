"""Structured logging configuration."""

import json
import logging
from datetime import UTC, datetime

# ``extra=`` fields the batcher attaches to its log records.
_BATCH_FIELDS = {
    "batch_key": "key",
    "batch_endpoint": "endpoint",
    "batch_size": "size",
}


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with batch context grouped under ``batch``."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        batch = {
            name: getattr(record, attr)
            for attr, name in _BATCH_FIELDS.items()
            if getattr(record, attr, None) is not None
        }
        if batch:
            entry["batch"] = batch

        if record.exc_info and record.exc_info[1]:
            exc = record.exc_info[1]
            error: dict[str, object] = {
                "type": type(exc).__name__,
                "message": str(exc),
                "stacktrace": self.formatException(record.exc_info),
            }
            if exc.__cause__ is not None:
                error["cause"] = repr(exc.__cause__)
            entry["error"] = error
        return json.dumps(entry, default=str)


def configure_logging(*, log_format: str = "text", debug: bool = False) -> None:
    """Replace root handlers with one stream handler in ``log_format``."""
    level = logging.DEBUG if debug else logging.INFO
    root = logging.getLogger()
    root.setLevel(level)

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setLevel(level)
    if log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s")
        )
    root.addHandler(handler)

    # aiohttp logs every connection at debug level.
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
