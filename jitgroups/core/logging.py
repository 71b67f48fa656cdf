from __future__ import annotations

import logging

from jitgroups.core.config import get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


class _EventFormatter(logging.Formatter):
    # Audit records carry their event id and metadata as extras.
    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        metadata = getattr(record, "metadata", None)
        if metadata:
            line = f"{line} metadata={metadata}"
        return line


def configure_logging(level: str | None = None) -> None:
    """Install a single stream handler on the root logger."""
    handler = logging.StreamHandler()
    handler.setFormatter(_EventFormatter(_LOG_FORMAT))
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel((level or get_settings().log_level).upper())
