"""Collect what a page needs to know about an incoming HTTP request."""

from __future__ import annotations

import base64
import binascii
import ipaddress
import json
import logging
import tempfile
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field, replace
from email.message import Message
from email.parser import BytesHeaderParser
from email.utils import collapse_rfc2231_value
from http import HTTPStatus
from pathlib import Path
from typing import Optional, Union
from urllib.parse import parse_qsl, unquote

from .request_variables import ParamMap, param_map
from .responses import HttpError

logger = logging.getLogger(__name__)

DEFAULT_MAX_UPLOADED_FILE_SIZE = 5 * 1024 * 1024

Headers = Union[Mapping[str, str], Iterable[tuple[str, str]]]
IpAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

_OVERFLOW = "A payload reached size limit."
_OCTET_STREAM = "application/octet-stream"


@dataclass(frozen=True)
class UploadedFile:
    """A file received in a multipart form, saved to disk."""

    path: Path
    file_name: Optional[str]
    content_type: Optional[str]
    size: int


@dataclass(frozen=True)
class BasicAuth:
    """Credentials from an ``Authorization: Basic`` header."""

    user_id: str
    password: Optional[str]


def _copy_params(params: ParamMap) -> ParamMap:
    return {k: (v if isinstance(v, str) else list(v)) for k, v in params.items()}


@dataclass
class RequestInfo:
    """Everything extracted from a request before the page runs."""

    method: str
    path: str
    protocol: str = "http"
    get_variables: ParamMap = field(default_factory=dict)
    post_variables: ParamMap = field(default_factory=dict)
    uploaded_files: dict[str, UploadedFile] = field(default_factory=dict)
    headers: ParamMap = field(default_factory=dict)
    client_ip: Optional[IpAddress] = None
    cookies: ParamMap = field(default_factory=dict)
    basic_auth: Optional[BasicAuth] = None
    clone_depth: int = 0

    def clone_without_variables(self) -> RequestInfo:
        """Copy the request, dropping GET and POST variables, one level deeper."""
        return replace(
            self,
            get_variables={},
            post_variables={},
            headers=_copy_params(self.headers),
            cookies=_copy_params(self.cookies),
            clone_depth=self.clone_depth + 1,
        )

    def clone(self) -> RequestInfo:
        """Copy the request with its variables, one level deeper."""
        copied = self.clone_without_variables()
        copied.get_variables = _copy_params(self.get_variables)
        copied.post_variables = _copy_params(self.post_variables)
        return copied


def _header_pairs(headers: Headers) -> list[tuple[str, str]]:
    if isinstance(headers, Mapping):
        return list(headers.items())
    return list(headers)


def _first_header(headers: Headers, name: str) -> Optional[str]:
    wanted = name.lower()
    return next((v for k, v in _header_pairs(headers) if k.lower() == wanted), None)


def parse_query(query_string: str) -> list[tuple[str, str]]:
    """Decode a URL query string into ``(name, value)`` pairs."""
    if not query_string:
        return []
    try:
        return parse_qsl(query_string, keep_blank_values=True, errors="replace")
    except ValueError:
        return []


def _cookie_pairs(header_value: str) -> Iterator[tuple[str, str]]:
    for part in header_value.split(";"):
        name, sep, value = part.strip().partition("=")
        name = name.strip()
        if not sep or not name:
            continue
        yield unquote(name), unquote(value.strip())


def parse_cookies(headers: Headers) -> ParamMap:
    """Collect the cookies of every ``Cookie`` header into a parameter map."""
    pairs = (
        pair
        for name, value in _header_pairs(headers)
        if name.lower() == "cookie"
        for pair in _cookie_pairs(value)
    )
    return param_map(pairs)


def parse_basic_auth(headers: Headers) -> Optional[BasicAuth]:
    """Decode basic authentication credentials, or None if absent or malformed."""
    value = _first_header(headers, "authorization")
    if value is None or not value.startswith("Basic "):
        return None
    try:
        decoded = base64.b64decode(value[len("Basic "):], validate=True).decode("utf-8")
    except (binascii.Error, ValueError):
        return None
    user_id, sep, remainder = decoded.partition(":")
    return BasicAuth(user_id, remainder if sep else None)


class _Limits:
    def __init__(self, total: int, per_field: int) -> None:
        self.total_remaining = total
        self.per_field = per_field

    def consume(self, size: int) -> None:
        if size > self.per_field or size > self.total_remaining:
            raise ValueError(_OVERFLOW)
        self.total_remaining -= size


def _iter_parts(body: bytes, boundary: str) -> Iterator[tuple[bytes, bytes]]:
    delimiter = b"--" + boundary.encode("latin-1")
    start = body.find(delimiter)
    if start < 0:
        raise ValueError("unable to read form field: multipart boundary not found")
    pos = start + len(delimiter)
    while True:
        if body.startswith(b"--", pos):
            return
        line_end = body.find(b"\r\n", pos)
        if line_end < 0:
            raise ValueError("unable to read form field: incomplete multipart stream")
        pos = line_end + 2
        if body.startswith(b"\r\n", pos):
            head, content_start = b"", pos + 2
        else:
            head_end = body.find(b"\r\n\r\n", pos)
            if head_end < 0:
                raise ValueError("unable to read form field: incomplete multipart headers")
            head, content_start = body[pos:head_end], head_end + 4
        content_end = body.find(b"\r\n" + delimiter, content_start)
        if content_end < 0:
            raise ValueError("unable to read form field: incomplete multipart stream")
        yield head, body[content_start:content_end]
        pos = content_end + 2 + len(delimiter)


def _param(headers: Message, name: str) -> Optional[str]:
    value = headers.get_param(name, header="content-disposition")
    if value is None:
        return None
    return collapse_rfc2231_value(value)


def _save_file(
    content: bytes,
    file_name: str,
    content_type: Optional[str],
    upload_dir: Optional[Union[str, Path]],
) -> UploadedFile:
    try:
        with tempfile.NamedTemporaryFile(
            dir=upload_dir, prefix="upload-", delete=False
        ) as handle:
            handle.write(content)
    except OSError as exc:
        raise ValueError(f"Failed to save uploaded file: {exc}") from exc
    return UploadedFile(Path(handle.name), file_name, content_type, len(content))


def is_file_field_empty(uploaded: UploadedFile) -> bool:
    """Tell whether a file field was left blank in the browser.

    Blank fields arrive as an empty octet-stream with no file name.
    """
    return (
        uploaded.content_type == _OCTET_STREAM
        and not uploaded.file_name
        and uploaded.path.stat().st_size == 0
    )


def parse_multipart(
    body: bytes,
    content_type: str,
    max_size: int,
    upload_dir: Optional[Union[str, Path]] = None,
) -> tuple[list[tuple[str, str]], list[tuple[str, UploadedFile]]]:
    """Split a ``multipart/form-data`` body into text fields and saved files."""
    header = Message()
    header["content-type"] = content_type
    boundary = header.get_boundary()
    if not boundary:
        raise ValueError(
            "could not parse request as multipart form data: missing boundary"
        )

    limits = _Limits(max_size, max_size)
    post_variables: list[tuple[str, str]] = []
    uploaded_files: list[tuple[str, UploadedFile]] = []
    for head, content in _iter_parts(body, boundary):
        part_headers = BytesHeaderParser().parsebytes(head + b"\r\n\r\n")
        if part_headers.get("content-disposition") is None:
            raise ValueError("missing Content-Disposition in form field")
        field_name = _param(part_headers, "name") or ""
        file_name = part_headers.get_filename()
        if file_name is not None:
            logger.debug("Extracting file: %s (%s)", field_name, file_name)
            part_type = (
                part_headers.get_content_type()
                if part_headers.get("content-type") is not None
                else None
            )
            try:
                limits.consume(len(content))
                uploaded = _save_file(content, file_name, part_type, upload_dir)
            except ValueError as exc:
                raise ValueError(
                    f"Failed to extract file {json.dumps(field_name)}. "
                    f"Max file size: {max_size // 1024} kiB"
                ) from exc
            if is_file_field_empty(uploaded):
                logger.debug("Ignoring empty file field: %s", field_name)
                uploaded.path.unlink(missing_ok=True)
                continue
            uploaded_files.append((field_name, uploaded))
        else:
            try:
                limits.consume(len(content))
            except ValueError as exc:
                raise ValueError(f"failed to read form field data: {exc}") from exc
            try:
                text = content.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise ValueError(
                    f"form field {json.dumps(field_name)} is not valid UTF-8: {exc}"
                ) from exc
            post_variables.append((field_name, text))
    return post_variables, uploaded_files


def _urlencoded_variables(body: bytes, max_size: int) -> list[tuple[str, str]]:
    if len(body) > max_size:
        raise ValueError(
            "could not parse request as urlencoded form data: "
            f"The submitted form data size ({len(body)} bytes) exceeds the maximum "
            f"allowed upload size ({max_size} bytes). You can increase this limit by "
            "setting max_uploaded_file_size in the configuration file."
        ) from HttpError(HTTPStatus.BAD_REQUEST)
    text = body.decode("utf-8", errors="replace")
    return parse_qsl(text, keep_blank_values=True, errors="replace")


def extract_post_data(
    headers: Headers,
    body: bytes,
    max_size: int,
    upload_dir: Optional[Union[str, Path]] = None,
) -> tuple[list[tuple[str, str]], list[tuple[str, UploadedFile]]]:
    """Read form variables and uploaded files according to the content type."""
    content_type = _first_header(headers, "content-type") or ""
    if content_type.startswith("application/x-www-form-urlencoded"):
        return _urlencoded_variables(body, max_size), []
    if content_type.startswith("multipart/form-data"):
        return parse_multipart(body, content_type, max_size, upload_dir)
    logger.debug(
        "Not parsing POST data from request without known content type %s",
        content_type,
    )
    return [], []


def extract_request_info(
    method: str,
    path: str,
    query_string: str = "",
    headers: Headers = (),
    body: bytes = b"",
    client_ip: Optional[Union[str, IpAddress]] = None,
    scheme: str = "http",
    max_uploaded_file_size: int = DEFAULT_MAX_UPLOADED_FILE_SIZE,
    upload_dir: Optional[Union[str, Path]] = None,
) -> RequestInfo:
    """Build the ``RequestInfo`` of a request from its raw parts."""
    header_pairs = _header_pairs(headers)
    post_variables, uploaded_files = extract_post_data(
        header_pairs, body, max_uploaded_file_size, upload_dir
    )
    return RequestInfo(
        method=method,
        path=path,
        protocol=scheme,
        get_variables=param_map(parse_query(query_string)),
        post_variables=param_map(post_variables),
        uploaded_files=dict(uploaded_files),
        headers=param_map((name.lower(), value) for name, value in header_pairs),
        client_ip=ipaddress.ip_address(client_ip) if client_ip is not None else None,
        cookies=parse_cookies(header_pairs),
        basic_auth=parse_basic_auth(header_pairs),
    )