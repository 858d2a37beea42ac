"""HTTP responses and the conversion of errors into error responses."""

from __future__ import annotations

import enum
import random
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Optional, TypeVar

_E = TypeVar("_E", bound=BaseException)

_ERROR_PREAMBLE = (
    "Sorry, but we were not able to process your request. \n\n"
    "Below are detailed debugging information which may contain sensitive data. "
    'Set environment to "prod" in the configuration file to hide this information. \n\n'
)
_PROD_NOTICE = (
    "Contact the administrator for more information. "
    "A detailed error message has been logged."
)
_BUSY_MESSAGE = (
    "The database is currently too busy to handle your request. "
    "Please try again later.\n\n"
)


class Environment(enum.Enum):
    """Whether the server runs in development or production mode."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"

    def is_prod(self) -> bool:
        return self is Environment.PRODUCTION


@dataclass
class HttpResponse:
    """A complete HTTP response."""

    status: int = HTTPStatus.OK
    headers: list[tuple[str, str]] = field(default_factory=list)
    body: bytes = b""

    def header(self, name: str) -> Optional[str]:
        """Return the first header value with this name, ignoring case."""
        wanted = name.lower()
        return next((v for k, v in self.headers if k.lower() == wanted), None)


class HttpError(Exception):
    """An error that carries the HTTP status it should be answered with."""

    def __init__(self, status: int, message: Optional[str] = None) -> None:
        self.status = HTTPStatus(status)
        self.message = message or self.status.phrase
        super().__init__(self.message)


class DatabaseBusyError(Exception):
    """No database connection became available in time."""


def _find_in_chain(error: BaseException, kind: type[_E]) -> Optional[_E]:
    seen: set[int] = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        if isinstance(current, kind):
            return current
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return None


def _describe(error: BaseException) -> str:
    messages = []
    seen: set[int] = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        messages.append(str(current) or type(current).__name__)
        current = current.__cause__ or current.__context__
    head, causes = messages[0], messages[1:]
    if not causes:
        return head
    if len(causes) == 1:
        return f"{head}\n\nCaused by:\n    {causes[0]}"
    lines = "\n".join(f"    {i}: {msg}" for i, msg in enumerate(causes))
    return f"{head}\n\nCaused by:\n{lines}"


def error_response(
    error: BaseException,
    environment: Environment,
    retry_after: Optional[int] = None,
) -> HttpResponse:
    """Build the response sent when an error occurs before the body starts.

    Details of the error are shown only outside production. An
    ``HttpError`` anywhere in the cause chain sets the status; a busy
    database gives 429 with a ``Retry-After`` of 1 to 15 seconds.
    """
    body = _ERROR_PREAMBLE
    body += _PROD_NOTICE if environment.is_prod() else _describe(error)
    headers = [("Content-Type", "text/plain")]

    status_error = _find_in_chain(error, HttpError)
    if status_error is not None:
        return HttpResponse(status_error.status, headers, body.encode())
    if _find_in_chain(error, DatabaseBusyError) is not None:
        delay = retry_after if retry_after is not None else random.randint(1, 15)
        headers.append(("Retry-After", str(delay)))
        return HttpResponse(
            HTTPStatus.TOO_MANY_REQUESTS, headers, (_BUSY_MESSAGE + body).encode()
        )
    return HttpResponse(HTTPStatus.INTERNAL_SERVER_ERROR, headers, body.encode())