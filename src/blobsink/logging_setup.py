from __future__ import annotations

import logging

from blobsink.trace_context import get_context

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(request_id)s %(bucket)s]: %(message)s"


class RequestContextFilter(logging.Filter):
    """Stamps every record with the correlation id of the request being served."""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = get_context()
        record.request_id = ctx.get("request_id", "-")
        record.bucket = ctx.get("bucket", "-")
        return True


def resolve_level(level_name: str) -> int:
    return getattr(logging, str(level_name).upper(), logging.INFO)


def configure_logging(level_name: str = "info") -> None:
    level = resolve_level(level_name)
    root = logging.getLogger()
    if not root.handlers:
        root.addHandler(logging.StreamHandler())
    root.setLevel(level)

    formatter = logging.Formatter(LOG_FORMAT, defaults={"request_id": "-", "bucket": "-"})
    for handler in root.handlers:
        handler.setFormatter(formatter)
        if not any(isinstance(f, RequestContextFilter) for f in handler.filters):
            handler.addFilter(RequestContextFilter())
