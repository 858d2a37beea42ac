from http import HTTPStatus

import pytest

from pagehttp.responses import (
    DatabaseBusyError,
    Environment,
    HttpError,
    HttpResponse,
    error_response,
)


def test_environment_is_prod():
    assert Environment.PRODUCTION.is_prod() is True
    assert Environment.DEVELOPMENT.is_prod() is False


def test_header_lookup_ignores_case():
    resp = HttpResponse(headers=[("Content-Type", "text/plain"), ("X-A", "1")])
    assert resp.header("content-type") == "text/plain"
    assert resp.header("x-a") == "1"
    assert resp.header("missing") is None


def test_generic_error_is_internal_server_error():
    resp = error_response(ValueError("boom"), Environment.DEVELOPMENT)
    assert resp.status == HTTPStatus.INTERNAL_SERVER_ERROR
    assert resp.header("Content-Type") == "text/plain"
    assert b"boom" in resp.body
    assert resp.body.startswith(b"Sorry, but we were not able to process your request.")


def test_production_hides_details():
    resp = error_response(ValueError("secret detail"), Environment.PRODUCTION)
    assert b"secret detail" not in resp.body
    assert b"Contact the administrator for more information." in resp.body


def test_development_shows_cause_chain():
    try:
        try:
            raise KeyError("inner failure")
        except KeyError as inner:
            raise RuntimeError("outer failure") from inner
    except RuntimeError as exc:
        resp = error_response(exc, Environment.DEVELOPMENT)
    assert b"outer failure" in resp.body
    assert b"inner failure" in resp.body
    assert b"Caused by:" in resp.body


def test_http_error_status_is_used():
    resp = error_response(HttpError(HTTPStatus.NOT_FOUND), Environment.PRODUCTION)
    assert resp.status == HTTPStatus.NOT_FOUND


def test_http_error_found_through_cause():
    try:
        try:
            raise HttpError(HTTPStatus.BAD_REQUEST)
        except HttpError as inner:
            raise RuntimeError("could not parse request") from inner
    except RuntimeError as exc:
        resp = error_response(exc, Environment.DEVELOPMENT)
    assert resp.status == HTTPStatus.BAD_REQUEST
    assert b"could not parse request" in resp.body


def test_http_error_message_defaults_to_phrase():
    err = HttpError(HTTPStatus.FORBIDDEN)
    assert str(err) == HTTPStatus.FORBIDDEN.phrase
    assert err.status == HTTPStatus.FORBIDDEN


def test_invalid_status_is_rejected():
    with pytest.raises(ValueError):
        HttpError(1)


def test_database_busy_gives_retry_after():
    resp = error_response(DatabaseBusyError("pool timed out"), Environment.DEVELOPMENT)
    assert resp.status == HTTPStatus.TOO_MANY_REQUESTS
    assert 1 <= int(resp.header("Retry-After")) <= 15
    assert resp.body.startswith(b"The database is currently too busy")


def test_database_busy_explicit_retry_after():
    resp = error_response(DatabaseBusyError(), Environment.PRODUCTION, retry_after=7)
    assert resp.header("retry-after") == "7"
    assert b"Contact the administrator" in resp.body