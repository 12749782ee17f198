from __future__ import annotations

import base64
import hashlib
import hmac
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple
from urllib.parse import parse_qsl, urlsplit

VENDOR_HEADER_PREFIX = "x-ms-"


@dataclass(frozen=True)
class SignatureContext:
    method: str
    resource_path: str
    query_params: Tuple[str, ...]
    selected_headers: Tuple[str, ...]
    content_length: str = ""
    content_type: str = ""
    if_none_match: str = ""


def _header(headers: Mapping[str, str], name: str) -> str:
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return str(value)
    return ""


def select_headers(headers: Mapping[str, str]) -> Tuple[str, ...]:
    lines = [
        f"{key.lower()}:{str(value).strip()}"
        for key, value in headers.items()
        if key.lower().startswith(VENDOR_HEADER_PREFIX)
    ]
    return tuple(sorted(lines))


def query_params_from_url(url: str) -> Tuple[str, ...]:
    query = urlsplit(url).query
    lines = [f"{key.lower()}:{value}" for key, value in parse_qsl(query, keep_blank_values=True)]
    return tuple(sorted(lines))


class SharedKeySigner:
    """
    Shared Key authorization for blob requests.

    The string to sign is the thirteen-line Shared Key layout: the verb, eleven
    standard header slots of which only Content-Length, Content-Type and
    If-None-Match are ever filled, the sorted x-ms-* headers, and finally the
    canonical resource followed by the sorted query parameters.
    """

    def __init__(self, account: str, container: str, key: str):
        self.account = account
        self.container = container
        self._key = base64.b64decode(key)

    def context(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        blob_path: Optional[str] = None,
        body: Optional[bytes] = None,
    ) -> SignatureContext:
        resource = f"/{self.account}/{self.container}"
        if blob_path:
            resource += f"/{blob_path}"
        # an empty body signs as "", never "0"
        length = str(len(body)) if body else ""
        return SignatureContext(
            method=method.upper(),
            resource_path=resource,
            query_params=query_params_from_url(url),
            selected_headers=select_headers(headers),
            content_length=length,
            content_type=_header(headers, "Content-Type"),
            if_none_match=_header(headers, "If-None-Match"),
        )

    @staticmethod
    def string_to_sign(ctx: SignatureContext) -> str:
        raw = (
            f"{ctx.method}\n\n\n{ctx.content_length}\n\n{ctx.content_type}\n\n\n\n"
            f"{ctx.if_none_match}\n\n\n"
            + "\n".join(ctx.selected_headers)
            + f"\n{ctx.resource_path}"
        )
        if ctx.query_params:
            raw += "\n" + "\n".join(ctx.query_params)
        return raw

    def sign(self, ctx: SignatureContext) -> str:
        digest = hmac.new(self._key, self.string_to_sign(ctx).encode("utf-8"), hashlib.sha256).digest()
        signature = base64.b64encode(digest).decode("ascii")
        return f"SharedKey {self.account}:{signature}"

    def authorization(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        blob_path: Optional[str] = None,
        body: Optional[bytes] = None,
    ) -> str:
        return self.sign(self.context(method, url, headers, blob_path=blob_path, body=body))
