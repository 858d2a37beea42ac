"""Mapping request paths to SQL files and static files, redirects and server messages."""

from __future__ import annotations

import errno
import ipaddress
import mimetypes
import sys
from collections.abc import Iterator
from datetime import datetime, timezone
from email.utils import formatdate, parsedate_to_datetime
from http import HTTPStatus
from pathlib import Path, PurePosixPath
from typing import Optional, Union
from urllib.parse import unquote

from .responses import HttpError, HttpResponse

CATCH_ALL = "404.sql"
_MAX_FALLBACK_LOOKUPS = 128
_OCTET_STREAM = "application/octet-stream"


def _extension(name: str) -> Optional[str]:
    if name in ("", ".", ".."):
        return None
    stem, sep, ext = name.rpartition(".")
    if not sep or not stem:
        return None
    return ext


def path_to_sql_file(path: str) -> Optional[PurePosixPath]:
    """Resolve a request path to the SQL file that handles it, if any.

    Paths without an extension map to their ``index.sql``; paths ending
    in ``.sql`` map to themselves; anything else is not SQL.
    """
    pure = PurePosixPath(path)
    ext = _extension(pure.name)
    if ext is None:
        return pure / "index.sql"
    if ext == "sql":
        return pure
    return None


def strip_site_prefix(path: str, site_prefix: str) -> str:
    """Remove the site prefix from the start of a path, if present."""
    return path.removeprefix(site_prefix)


def request_path(encoded_path: str, site_prefix: str) -> str:
    """Strip the site prefix from a request path and percent-decode it."""
    return unquote(strip_site_prefix(encoded_path, site_prefix), errors="replace")


def _redirect(status: HTTPStatus, location: str) -> HttpResponse:
    return HttpResponse(status, [("Location", location)])


def redirect_missing_prefix(path: str, site_prefix: str) -> Optional[HttpResponse]:
    """Redirect to the site prefix when the path lies outside it."""
    if path.startswith(site_prefix):
        return None
    return _redirect(HTTPStatus.PERMANENT_REDIRECT, site_prefix)


def redirect_missing_trailing_slash(
    path: str, query: Optional[str] = None
) -> Optional[HttpResponse]:
    """Redirect directory-like paths that lack a trailing slash."""
    _, dot, ext = path.rpartition(".")
    is_sql = bool(dot) and ext.lower() == "sql"
    if path.endswith("/") or is_sql:
        return None
    location = path + "/"
    if query is not None:
        location += "?" + query
    return _redirect(HTTPStatus.MOVED_PERMANENTLY, location)


def default_prefix_redirect(path: str, site_prefix: str) -> HttpResponse:
    """Redirect a request made outside the site prefix to the same path inside it."""
    return _redirect(HTTPStatus.PERMANENT_REDIRECT, site_prefix.rstrip("/") + path)


def fallback_candidates(path: str) -> Iterator[PurePosixPath]:
    """Yield the ``404.sql`` files to try for a path, nearest directory first."""
    cuts = [i + 1 for i in range(len(path) - 1, -1, -1) if path[i] == "/"]
    for idx in [*cuts[:_MAX_FALLBACK_LOOKUPS], 0]:
        yield PurePosixPath(path[:idx] + CATCH_ALL)


def _parse_http_date(value: Union[str, datetime, None]) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = parsedate_to_datetime(value)
        except (TypeError, ValueError, IndexError):
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _file_error(exc: OSError, message: str) -> HttpError:
    if isinstance(exc, (FileNotFoundError, NotADirectoryError, IsADirectoryError)):
        return HttpError(HTTPStatus.NOT_FOUND, message)
    if isinstance(exc, PermissionError):
        return HttpError(HTTPStatus.FORBIDDEN, message)
    return HttpError(HTTPStatus.INTERNAL_SERVER_ERROR, message)


def serve_file(
    root: Union[str, Path],
    path: str,
    site_prefix: str = "/",
    if_modified_since: Union[str, datetime, None] = None,
) -> HttpResponse:
    """Serve a static file below ``root``, honouring ``If-Modified-Since``.

    Raises ``HttpError`` with 404 for missing files.
    """
    relative = strip_site_prefix(path, site_prefix).lstrip("/")
    if ".." in PurePosixPath(relative).parts:
        raise HttpError(HTTPStatus.FORBIDDEN, f"Access to {relative!r} is forbidden")
    target = Path(root) / relative

    since = _parse_http_date(if_modified_since)
    if since is not None:
        try:
            mtime = target.stat().st_mtime
        except OSError as exc:
            raise _file_error(
                exc, f"Unable to get modification time of file {relative!r}"
            ) from exc
        if datetime.fromtimestamp(mtime, timezone.utc) <= since:
            return HttpResponse(HTTPStatus.NOT_MODIFIED)

    try:
        content = target.read_bytes()
    except OSError as exc:
        raise _file_error(exc, f"Unable to read file {relative!r}") from exc
    content_type = mimetypes.guess_type(relative)[0] or _OCTET_STREAM
    return HttpResponse(
        HTTPStatus.OK,
        [
            ("Content-Type", content_type),
            ("Last-Modified", formatdate(usegmt=True)),
        ],
        content,
    )


def form_limit(max_uploaded_file_size: int) -> int:
    """Largest accepted urlencoded form body, in bytes.

    Raises ``ValueError`` for a negative size.
    """
    limit = int(max_uploaded_file_size)
    if limit < 0:
        raise ValueError(
            f"max_uploaded_file_size must not be negative, got {max_uploaded_file_size}"
        )
    return limit


def payload_limit(max_uploaded_file_size: int) -> int:
    """Largest accepted raw request body, in bytes."""
    return form_limit(max_uploaded_file_size) * 2


def form_overflow_message(size: int, limit: int) -> str:
    """Explain why a submitted form was rejected as too large."""
    return (
        f"The submitted form data size ({size} bytes) exceeds the maximum allowed "
        f"upload size ({limit} bytes). You can increase this limit by setting "
        "max_uploaded_file_size in the configuration file."
    )


def default_headers(
    server_name: str, version: str, content_security_policy: Optional[str] = None
) -> list[tuple[str, str]]:
    """Headers added to every response."""
    headers = [("Server", f"{server_name} v{version}")]
    if content_security_policy is not None:
        headers.append(("Content-Security-Policy", content_security_policy))
    return headers


def _executable_path() -> str:
    if sys.argv and sys.argv[0]:
        return str(Path(sys.argv[0]).resolve())
    return "pagehttp"


def bind_error(error: OSError, host: str, port: int) -> RuntimeError:
    """Wrap a failure to listen on ``host:port`` with a helpful explanation."""
    if error.errno == errno.EADDRINUSE:
        culprit = (
            "Apache or Nginx" if port in (80, 443) else "another instance of this server"
        )
        message = (
            f"Another program is already using port {port} (maybe {culprit} ?). "
            "You can either stop that program or change the port in the configuration file."
        )
    elif isinstance(error, PermissionError):
        message = (
            f"You do not have permission to bind to {host} on port {port}. "
            "You can either run the server as root with sudo, give it the permission "
            "to bind to low ports with "
            f"`sudo setcap cap_net_bind_service=+ep {_executable_path()}`, "
            "or change the port in the configuration file."
        )
    elif error.errno == errno.EADDRNOTAVAIL:
        message = (
            f"The IP address {host} does not exist on this computer. "
            "You can change the value of listen_on in the configuration file."
        )
    else:
        message = f"Unable to bind to {host} on port {port}"
    wrapped = RuntimeError(message)
    wrapped.__cause__ = error
    return wrapped


def unix_socket_bind_error(error: OSError, socket_path: Union[str, Path]) -> RuntimeError:
    """Wrap a failure to listen on a UNIX socket with a helpful explanation."""
    if isinstance(error, PermissionError):
        message = (
            f'You do not have permission to bind to the UNIX socket "{socket_path}". '
            "You can change the socket path in the configuration file or check the permissions."
        )
    else:
        message = f'Unable to bind to UNIX socket "{socket_path}" {error!r}'
    wrapped = RuntimeError(message)
    wrapped.__cause__ = error
    return wrapped


def _listen_address(host: str, port: int) -> tuple[str, bool]:
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return f"{host}:{port}", False
    shown = f"[{ip}]" if ip.version == 6 else str(ip)
    return f"{shown}:{port}", ip.is_unspecified


def welcome_message(
    version: str,
    host: str,
    port: int,
    web_root: Union[str, Path],
    unix_socket: Union[str, Path, None] = None,
    https_domain: Optional[str] = None,
) -> str:
    """The message logged once the server has started."""
    if unix_socket is not None:
        address = f'unix socket "{unix_socket}"'
    elif https_domain is not None:
        address = f"https://{https_domain}"
    else:
        address, public = _listen_address(host, port)
        if public:
            address += (
                ": accessible from the network, and locally on "
                f"http://localhost:{port}"
            )
    return (
        f"pagehttp v{version} started successfully.\n"
        f"    Now listening on {address}\n"
        f"    You can write your website's code in .sql files in {web_root}"
    )