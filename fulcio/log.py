"""Logging setup for the server and for command-line output."""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import TextIO

REQUEST_ID_METADATA_KEY = "x-request-id"

_RESET = "\x1b[0m"
_LEVEL_COLOURS = {
    logging.DEBUG: "\x1b[35m",
    logging.INFO: "\x1b[34m",
    logging.WARNING: "\x1b[33m",
    logging.ERROR: "\x1b[31m",
    logging.CRITICAL: "\x1b[31m",
}


class _StandardStreamHandler(logging.StreamHandler):
    """A stream handler that always writes to the current sys.stdout or sys.stderr."""

    def __init__(self, stream_name: str) -> None:
        self._stream_name = stream_name
        super().__init__(self._current_stream())

    def _current_stream(self) -> TextIO:
        if self._stream_name == "stderr":
            return sys.stderr
        return sys.stdout

    def emit(self, record: logging.LogRecord) -> None:
        # Resolve the target on every write so replaced standard streams are honoured.
        self.stream = self._current_stream()
        super().emit(record)


def _fields(record: logging.LogRecord) -> dict[str, str]:
    request_id = record.__dict__.get("requestID")
    return {} if request_id is None else {"requestID": str(request_id)}


class _ProductionFormatter(logging.Formatter):
    """One JSON object per line, with 'severity' and 'message' keys."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "severity": record.levelname.lower(),
            "ts": record.created,
            "caller": f"{record.filename}:{record.lineno}",
            "message": record.getMessage(),
        }
        entry.update(_fields(record))
        if record.exc_info:
            entry["error"] = self.formatException(record.exc_info)
        return json.dumps(entry)


class _DevelopmentFormatter(logging.Formatter):
    """Tab-separated human-readable lines with a coloured level."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).astimezone()
        colour = _LEVEL_COLOURS.get(record.levelno, "")
        parts = [
            timestamp.isoformat(timespec="milliseconds"),
            f"{colour}{record.levelname}{_RESET}",
            f"{record.filename}:{record.lineno}",
            record.getMessage(),
        ]
        fields = _fields(record)
        if fields:
            parts.append(json.dumps(fields))
        line = "\t".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class _CliFormatter(logging.Formatter):
    """The message alone, followed by any structured fields."""

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        fields = _fields(record)
        if fields:
            message += "\t" + json.dumps(fields)
        return message


def _install(target: logging.Logger, handler: logging.Handler, level: int) -> logging.Logger:
    for old in list(target.handlers):
        target.removeHandler(old)
    target.addHandler(handler)
    target.setLevel(level)
    target.propagate = False
    return target


logger = logging.getLogger("fulcio")


def configure_logger(log_type: str) -> logging.Logger:
    """Configure the server logger: JSON to stderr for "prod", coloured text to stdout otherwise."""
    if log_type == "prod":
        handler = _StandardStreamHandler("stderr")
        handler.setFormatter(_ProductionFormatter())
        level = logging.INFO
    else:
        handler = _StandardStreamHandler("stdout")
        handler.setFormatter(_DevelopmentFormatter())
        level = logging.DEBUG
    return _install(logger, handler, level)


def create_cli_logger() -> logging.Logger:
    """Create the logger used for plain command-line messages on stderr."""
    handler = _StandardStreamHandler("stderr")
    handler.setFormatter(_CliFormatter())
    return _install(logging.getLogger("fulcio.cli"), handler, logging.DEBUG)


def _metadata_values(metadata: Mapping[str, str | Sequence[str]], key: str) -> list[str]:
    values: list[str] = []
    for name, value in metadata.items():
        if name.lower() != key:
            continue
        if isinstance(value, str):
            values.append(value)
        else:
            values.extend(value)
    return values


def context_logger(
    metadata: Mapping[str, str | Sequence[str]] | None,
) -> logging.Logger | logging.LoggerAdapter:
    """Return the server logger, tagged with the request ID when the metadata carries exactly one."""
    if metadata:
        values = _metadata_values(metadata, REQUEST_ID_METADATA_KEY)
        if len(values) == 1:
            return logging.LoggerAdapter(logger, {"requestID": values[0]})
    return logger


configure_logger("dev")
cli_logger = create_cli_logger()