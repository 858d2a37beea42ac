import gzip
from http import HTTPStatus

import pytest

from pagehttp.static_content import StaticAsset, etag_matches

SOURCE = b"console.log('ready');"


@pytest.fixture
def asset():
    return StaticAsset("sqlpage.js", gzip.compress(SOURCE), "application/javascript")


def test_respond_serves_compressed_content(asset):
    response = asset.respond()
    assert response.status == HTTPStatus.OK
    assert gzip.decompress(response.body) == SOURCE
    assert response.header("content-type") == "application/javascript;charset=UTF-8"
    assert response.header("Content-Encoding") == "gzip"
    assert response.header("ETag") == '"sqlpage.js"'


def test_respond_is_cached_for_a_week(asset):
    assert asset.respond().header("Cache-Control") == "public, max-age=604800, immutable"


@pytest.mark.parametrize(
    "header",
    ['"sqlpage.js"', 'W/"sqlpage.js"', '"other.js", "sqlpage.js"', ' "a" ,W/"sqlpage.js" '],
)
def test_respond_not_modified(asset, header):
    response = asset.respond(header)
    assert response.status == HTTPStatus.NOT_MODIFIED
    assert response.body == b""
    assert response.header("ETag") is None


@pytest.mark.parametrize("header", ["*", '"other.js"', "", "sqlpage.js", None])
def test_respond_full_when_not_matching(asset, header):
    response = asset.respond(header)
    assert response.status == HTTPStatus.OK
    assert response.body == asset.content


def test_etag_matches_accepts_listed_tag():
    assert etag_matches('"a", "b"', "b") is True
    assert etag_matches('W/"b"', "b") is True


def test_etag_matches_rejects_wildcard_and_absence():
    assert etag_matches("*", "b") is False
    assert etag_matches(None, "b") is False
    assert etag_matches("", "b") is False


def test_etag_matches_malformed_list_never_matches():
    assert etag_matches('"b", unquoted', "b") is False
    assert etag_matches('"b"x"', "b") is False


def test_etag_of_distinct_assets_do_not_collide():
    first = StaticAsset("a.css", b"", "text/css")
    second = StaticAsset("b.css", b"", "text/css")
    assert second.respond(first.respond().header("ETag")).status == HTTPStatus.OK
    assert first.respond(first.respond().header("ETag")).status == HTTPStatus.NOT_MODIFIED