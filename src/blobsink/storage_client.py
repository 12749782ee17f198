from __future__ import annotations

import enum
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from email.utils import formatdate
from typing import Dict, List, Mapping, Optional
from urllib.parse import quote, urlencode

import httpx

from blobsink.settings import (
    KEEPALIVE_TIMEOUT_S,
    MAX_FREE_SOCKETS,
    MAX_SOCKETS,
    SOCKET_TIMEOUT_S,
    Settings,
)
from blobsink.signer import SharedKeySigner

logger = logging.getLogger(__name__)

API_VERSION = "2017-07-29"
APPEND_BLOB = "AppendBlob"
BLOCK_BLOB = "BlockBlob"


# ----------------------------
# Errors
# ----------------------------
class StorageError(Exception):
    """Base for every failure raised by BlobStorageClient."""


class StorageTransportError(StorageError):
    """No response was received from the storage backend."""


class StorageStatusError(StorageError):
    def __init__(self, status: int, reason: str = "", path: str = "", code: Optional[str] = None):
        self.status = status
        self.reason = reason
        self.path = path
        self.code = code
        detail = f"{status}: {reason}"
        if code:
            detail += f" ({code})"
        super().__init__(f"{detail} [{path}]" if path else detail)


class BlobNotFoundError(StorageStatusError):
    pass


class BlobConflictError(StorageStatusError):
    pass


def _status_error(resp: httpx.Response, path: str) -> StorageStatusError:
    code = resp.headers.get("x-ms-error-code")
    if resp.status_code == 404:
        cls = BlobNotFoundError
    elif resp.status_code in (409, 412):
        cls = BlobConflictError
    else:
        cls = StorageStatusError
    return cls(resp.status_code, resp.reason_phrase, path=path, code=code)


# ----------------------------
# Results
# ----------------------------
class CreateOutcome(enum.Enum):
    CREATED = "created"
    CONFLICT = "conflict"


class BlobKind(enum.Enum):
    IMMUTABLE_OBJECT = BLOCK_BLOB
    APPEND_LOG = APPEND_BLOB


@dataclass(frozen=True)
class BlobRef:
    path: str
    kind: BlobKind


@dataclass
class ListPage:
    names: List[str] = field(default_factory=list)
    next_marker: Optional[str] = None


def build_http_client(settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    limits = httpx.Limits(
        max_connections=MAX_SOCKETS,
        max_keepalive_connections=MAX_FREE_SOCKETS,
        keepalive_expiry=KEEPALIVE_TIMEOUT_S,
    )
    hooks: Dict[str, list] = {}
    if settings.api_debug:
        hooks = {"request": [_log_request], "response": [_log_response]}
    return httpx.AsyncClient(
        limits=limits,
        timeout=httpx.Timeout(SOCKET_TIMEOUT_S),
        transport=transport,
        event_hooks=hooks,
    )


async def _log_request(request: httpx.Request) -> None:
    logger.info("[API] --> %s %s headers=%s", request.method, request.url, _redact(request.headers))


async def _log_response(response: httpx.Response) -> None:
    request = response.request
    logger.info("[API] <-- %s %s %s %s", request.method, request.url, response.status_code, response.reason_phrase)


def _redact(headers: httpx.Headers) -> dict:
    out = dict(headers)
    if "authorization" in out:
        out["authorization"] = "SharedKey ***"
    return out


class BlobStorageClient:
    """
    The four blob operations the ingest path needs, over one pooled AsyncClient.

    Requests are signed with SharedKeySigner when an account key is configured;
    with a SAS token the token rides on the query string instead.
    """

    def __init__(self, settings: Settings, http: Optional[httpx.AsyncClient] = None):
        self.account = settings.account
        self.container = settings.container
        self.base_url = settings.base_url
        self.sas = (settings.sas or "").lstrip("?") or None
        self.signer = SharedKeySigner(settings.account, settings.container, settings.key) if settings.key else None
        self.http = http or build_http_client(settings)

    async def aclose(self) -> None:
        await self.http.aclose()

    # ----------------------------
    # Request plumbing
    # ----------------------------
    def _url(self, path: Optional[str], params: Optional[Mapping[str, str]] = None) -> str:
        url = f"{self.base_url}/{self.container}"
        if path:
            url += "/" + quote(path, safe="/")
        query = []
        if self.sas:
            query.append(self.sas)
        if params:
            query.append(urlencode(params))
        if query:
            url += "?" + "&".join(query)
        return url

    def _headers(self, extra: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        headers = {
            "x-ms-version": API_VERSION,
            "x-ms-date": formatdate(usegmt=True),
        }
        if extra:
            headers.update(extra)
        return headers

    async def _send(
        self,
        method: str,
        path: Optional[str],
        headers: Dict[str, str],
        params: Optional[Mapping[str, str]] = None,
        body: Optional[bytes] = None,
    ) -> httpx.Response:
        url = self._url(path, params)
        if self.signer is not None:
            headers["Authorization"] = self.signer.authorization(
                method, url, headers, blob_path=quote(path, safe="/") if path else None, body=body
            )
        try:
            resp = await self.http.request(method, url, headers=headers, content=body)
        except httpx.TransportError as e:
            raise StorageTransportError(f"{method} {path or self.container}: {e!r}") from e
        if not resp.is_success:
            raise _status_error(resp, path or self.container)
        return resp

    # ----------------------------
    # Operations
    # ----------------------------
    async def create_append_log(self, path: str) -> CreateOutcome:
        logger.info("creating append blob %r...", path)
        headers = self._headers({
            "x-ms-blob-type": APPEND_BLOB,
            "Content-Type": "text/plain; charset=UTF-8",
            # the blob can only ever be created once
            "If-None-Match": "*",
        })
        try:
            await self._send("PUT", path, headers)
        except BlobConflictError:
            logger.info("append blob %r already exists", path)
            return CreateOutcome.CONFLICT
        except StorageError as e:
            logger.warning("failed to create append blob %r: %s", path, e)
            raise
        logger.info("created append blob %r.", path)
        return CreateOutcome.CREATED

    async def append_block(self, path: str, data: bytes) -> None:
        headers = self._headers({"x-ms-blob-type": APPEND_BLOB})
        await self._send("PUT", path, headers, params={"comp": "appendblock"}, body=data)

    async def put_object(
        self,
        path: str,
        data: bytes,
        metadata: Optional[Mapping[str, str]] = None,
        content_type: str = "application/xml",
    ) -> BlobRef:
        extra = {"x-ms-blob-type": BLOCK_BLOB, "Content-Type": content_type}
        for key, value in (metadata or {}).items():
            extra[f"x-ms-meta-{key}"] = str(value)
        await self._send("PUT", path, self._headers(extra), body=data)
        return BlobRef(path=path, kind=BlobKind.IMMUTABLE_OBJECT)

    async def list_objects(self, prefix: str, marker: Optional[str] = None) -> ListPage:
        params = {"restype": "container", "comp": "list", "prefix": prefix}
        if marker:
            params["marker"] = marker
        resp = await self._send("GET", None, self._headers(), params=params)
        return parse_list_page(resp.content)

    async def list_all(self, prefix: str) -> List[str]:
        names: List[str] = []
        marker: Optional[str] = None
        while True:
            page = await self.list_objects(prefix, marker)
            names.extend(page.names)
            marker = page.next_marker
            if not marker:
                return names


def parse_list_page(content: bytes) -> ListPage:
    root = ET.fromstring(content)
    names = [blob.findtext("Name") for blob in root.iter("Blob")]
    return ListPage(
        names=[n for n in names if n],
        next_marker=(root.findtext("NextMarker") or "").strip() or None,
    )
