"""Long-cached, pre-compressed static assets served under a content-tagged name."""

from __future__ import annotations

from dataclasses import dataclass
from http import HTTPStatus
from typing import Optional

from .responses import HttpResponse

_MAX_AGE_SECONDS = 3600 * 24 * 7
_CACHE_CONTROL = f"public, max-age={_MAX_AGE_SECONDS}, immutable"


def etag_matches(header_value: Optional[str], etag: str) -> bool:
    """Tell whether an ``If-None-Match`` header lists ``etag``, weakly compared.

    A wildcard, a missing header or a malformed one never matches.
    """
    if header_value is None:
        return False
    value = header_value.strip()
    if value == "*":
        return False
    tags = []
    for item in value.split(","):
        item = item.strip()
        if not item:
            continue
        if item.startswith("W/"):
            item = item[2:]
        if len(item) < 2 or item[0] != '"' or item[-1] != '"' or '"' in item[1:-1]:
            return False
        tags.append(item[1:-1])
    return etag in tags


@dataclass(frozen=True)
class StaticAsset:
    """A gzip-compressed asset whose file name identifies its content."""

    filename: str
    content: bytes
    mime: str

    def respond(self, if_none_match: Optional[str] = None) -> HttpResponse:
        """Answer a request for the asset, with 304 when the client has it."""
        if etag_matches(if_none_match, self.filename):
            return HttpResponse(HTTPStatus.NOT_MODIFIED)
        return HttpResponse(
            HTTPStatus.OK,
            [
                ("Content-Type", f"{self.mime};charset=UTF-8"),
                ("Cache-Control", _CACHE_CONTROL),
                ("ETag", f'"{self.filename}"'),
                ("Content-Encoding", "gzip"),
            ],
            self.content,
        )