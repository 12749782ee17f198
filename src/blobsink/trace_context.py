from __future__ import annotations

import contextvars
import uuid
from typing import Dict, Optional

REQUEST_ID = contextvars.ContextVar("request_id", default=None)
BUCKET = contextvars.ContextVar("bucket", default=None)


def new_request_id() -> str:
    return uuid.uuid4().hex


def set_context(*, request_id: str, bucket: Optional[str] = None) -> Dict[str, contextvars.Token]:
    return {
        "request_id": REQUEST_ID.set(request_id),
        "bucket": BUCKET.set(bucket),
    }


def reset_context(tokens: Dict[str, contextvars.Token]) -> None:
    REQUEST_ID.reset(tokens["request_id"])
    BUCKET.reset(tokens["bucket"])


def get_request_id() -> Optional[str]:
    return REQUEST_ID.get()


def get_context() -> Dict[str, str]:
    out: Dict[str, str] = {}
    request_id = REQUEST_ID.get()
    bucket = BUCKET.get()

    if request_id:
        out["request_id"] = request_id
    if bucket:
        out["bucket"] = bucket
    return out
