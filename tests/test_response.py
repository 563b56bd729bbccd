import pytest

from reqlib.errors import BodyConsumedError, DecodeError
from reqlib.response import Response


def test_bytes_reads_and_releases(make_response):
    raw = make_response(b"hello", headers={"Content-Type": "text/plain"})
    resp = Response(raw)
    assert resp.status == 200
    assert resp.headers["Content-Type"] == "text/plain"
    assert resp.bytes() == b"hello"
    assert resp.consumed


def test_text_uses_declared_charset(make_response):
    body = "café".encode("latin-1")
    resp = Response(make_response(body, headers={"Content-Type": "text/plain; charset=ISO-8859-1"}))
    assert resp.text() == "café"


def test_text_defaults_to_utf8(make_response):
    resp = Response(make_response("über".encode("utf-8")))
    assert resp.text() == "über"


def test_text_decode_error(make_response):
    resp = Response(make_response(b"\xff\xfe\xfa", headers={"Content-Type": "text/plain; charset=utf-8"}))
    with pytest.raises(DecodeError):
        resp.text()


def test_json(make_response):
    resp = Response(make_response(b'{"a": 1, "b": [1, 2]}', headers={"Content-Type": "application/json"}))
    assert resp.json() == {"a": 1, "b": [1, 2]}


def test_malformed_json_raises_and_still_releases(make_response):
    raw = make_response(b"{not json")
    resp = Response(raw)
    with pytest.raises(DecodeError):
        resp.json()
    assert resp.consumed
    with pytest.raises(BodyConsumedError):
        resp.bytes()


@pytest.mark.parametrize("first,second", [("bytes", "text"), ("text", "json"), ("json", "bytes"), ("bytes", "bytes")])
def test_second_consuming_accessor_raises(make_response, first, second):
    resp = Response(make_response(b'"x"'))
    getattr(resp, first)()
    with pytest.raises(BodyConsumedError):
        getattr(resp, second)()


def test_raw_does_not_consume(make_response):
    resp = Response(make_response(b"abc"))
    assert resp.raw.status == 200
    assert not resp.consumed
    assert resp.bytes() == b"abc"


def test_close_unread_body(make_response):
    raw = make_response(b"unread")
    with Response(raw) as resp:
        pass
    assert raw.closed
    with pytest.raises(BodyConsumedError):
        resp.bytes()


def test_close_after_consume_is_noop(make_response):
    resp = Response(make_response(b"x"))
    resp.bytes()
    resp.close()
