"""
Tests for the response reader.

Responses are built directly from Response.create over in-memory streams so
each limit and decoding mode can be exercised in isolation.
"""

import asyncio
import gzip

import pytest

from keepwire.exceptions import (
    DecompressionError,
    NotAcceptableError,
    PayloadError,
    PayloadParseError,
    PayloadTooLargeError,
    ProtocolError,
    RequestTimeoutError,
    ResponseError,
)
from keepwire.http_primitives import Response
from keepwire.reader import is_json_content_type, read
from keepwire.streams import BufferStream, to_readable_stream


def make_response(body: bytes = b"", headers=None, status_code: int = 200, chunk_size=None) -> Response:
    raw = [(name.encode("latin-1"), value.encode("latin-1")) for name, value in (headers or {}).items()]
    return Response.create(status_code, headers=raw, stream=BufferStream(body, chunk_size=chunk_size))


class ClosableStream:
    """Async byte stream that records whether it was closed."""

    def __init__(self, chunks, delay: float = 0) -> None:
        self.chunks = list(chunks)
        self.delay = delay
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self) -> bytes:
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.chunks:
            raise StopAsyncIteration
        return self.chunks.pop(0)

    async def aclose(self) -> None:
        self.closed = True


class TestRead:

    @pytest.mark.asyncio
    async def test_raw_payload(self):
        payload = await read(make_response(b"hello world", chunk_size=3))
        assert payload == b"hello world"

    @pytest.mark.asyncio
    async def test_plain_stream(self):
        assert await read(to_readable_stream("some text")) == b"some text"

    @pytest.mark.asyncio
    async def test_empty_body(self):
        assert await read(make_response(b"")) == b""

    @pytest.mark.asyncio
    async def test_response_without_stream(self):
        assert await read(Response.create(204)) == b""


class TestMaxBytes:

    @pytest.mark.asyncio
    async def test_within_limit(self):
        assert await read(make_response(b"12345"), max_bytes=5) == b"12345"

    @pytest.mark.asyncio
    async def test_exceeded(self):
        stream = ClosableStream([b"1234", b"5678"])

        with pytest.raises(PayloadTooLargeError, match="Maximum payload size reached") as exc_info:
            await read(stream, max_bytes=5)

        assert exc_info.value.status_code == 413
        assert stream.closed

    @pytest.mark.asyncio
    async def test_zero_is_unlimited(self):
        assert await read(make_response(b"x" * 100000), max_bytes=0) == b"x" * 100000


class TestTimeout:

    @pytest.mark.asyncio
    async def test_idle_timeout(self):
        stream = ClosableStream([b"slow"], delay=0.5)

        with pytest.raises(RequestTimeoutError, match="Client read timeout") as exc_info:
            await read(stream, timeout=0.01)

        assert exc_info.value.status_code == 408
        assert stream.closed

    @pytest.mark.asyncio
    async def test_timer_restarts_per_chunk(self):
        stream = ClosableStream([b"a", b"b", b"c"], delay=0.02)
        assert await read(stream, timeout=0.5) == b"abc"

    @pytest.mark.asyncio
    async def test_non_positive_timeout_disables_timer(self):
        stream = ClosableStream([b"a"], delay=0.01)
        assert await read(stream, timeout=0) == b"a"


class TestPrematureClose:

    @pytest.mark.asyncio
    async def test_transport_error(self):
        async def broken():
            yield b"partial"
            raise ProtocolError("peer closed connection without sending complete message body")

        with pytest.raises(PayloadError, match="Payload stream closed prematurely") as exc_info:
            await read(broken())

        assert isinstance(exc_info.value.cause, ProtocolError)

    @pytest.mark.asyncio
    async def test_foreign_error(self):
        async def broken():
            raise RuntimeError("boom")
            yield b""

        with pytest.raises(PayloadError, match="closed prematurely"):
            await read(broken())

    @pytest.mark.asyncio
    async def test_classified_error_propagates(self):
        async def rejected():
            raise ResponseError(500, "Internal Server Error", {}, None, None)
            yield b""

        with pytest.raises(ResponseError):
            await read(rejected())


class TestGunzip:

    BODY = b'{"compressed": true}'

    @pytest.mark.asyncio
    @pytest.mark.parametrize("encoding", ["gzip", "x-gzip", "GZIP", "gzip, identity"])
    async def test_declared_encoding(self, encoding):
        response = make_response(gzip.compress(self.BODY), {"content-encoding": encoding})
        assert await read(response, gunzip=True) == self.BODY

    @pytest.mark.asyncio
    async def test_disabled_by_default(self):
        compressed = gzip.compress(self.BODY)
        response = make_response(compressed, {"content-encoding": "gzip"})
        assert await read(response) == compressed

    @pytest.mark.asyncio
    async def test_other_encodings_are_left_alone(self):
        response = make_response(b"deflated?", {"content-encoding": "deflate"})
        assert await read(response, gunzip=True) == b"deflated?"

    @pytest.mark.asyncio
    async def test_force_ignores_headers(self):
        response = make_response(gzip.compress(self.BODY))
        assert await read(response, gunzip="force") == self.BODY

    @pytest.mark.asyncio
    async def test_invalid_gzip(self):
        response = make_response(b"not gzip", {"content-encoding": "gzip"}, status_code=201)

        with pytest.raises(DecompressionError) as exc_info:
            await read(response, gunzip=True)

        assert exc_info.value.status_code == 201

    @pytest.mark.asyncio
    async def test_gunzip_then_json(self):
        response = make_response(
            gzip.compress(self.BODY),
            {"content-encoding": "gzip", "content-type": "application/json"},
        )
        assert await read(response, gunzip=True, json=True) == {"compressed": True}


class TestJson:

    @pytest.mark.asyncio
    async def test_json_content_type(self):
        response = make_response(b'{"a": 1}', {"content-type": "application/json; charset=utf-8"})
        assert await read(response, json=True) == {"a": 1}

    @pytest.mark.asyncio
    async def test_vendor_json_content_type(self):
        response = make_response(b"[1, 2]", {"content-type": "application/vnd.api+json"})
        assert await read(response, json=True) == [1, 2]

    @pytest.mark.asyncio
    async def test_other_content_type_returns_bytes(self):
        response = make_response(b"<html></html>", {"content-type": "text/html"})
        assert await read(response, json=True) == b"<html></html>"

    @pytest.mark.asyncio
    async def test_strict_rejects_other_content_type(self):
        response = make_response(b"<html></html>", {"content-type": "text/html"})

        with pytest.raises(NotAcceptableError, match="not JSON compatible") as exc_info:
            await read(response, json="strict")

        assert exc_info.value.status_code == 406

    @pytest.mark.asyncio
    async def test_force_ignores_content_type(self):
        response = make_response(b'{"forced": true}', {"content-type": "text/plain"})
        assert await read(response, json="force") == {"forced": True}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("mode", [True, "strict", "force"])
    async def test_empty_body_is_none(self, mode):
        response = make_response(b"", {"content-type": "text/plain"})
        assert await read(response, json=mode) is None

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        response = make_response(b"{broken", {"content-type": "application/json"})

        with pytest.raises(PayloadParseError) as exc_info:
            await read(response, json=True)

        assert exc_info.value.payload == b"{broken"
        assert exc_info.value.status_code == 502

    def test_is_json_content_type(self):
        assert is_json_content_type("application/json")
        assert is_json_content_type("Application/JSON ; charset=utf-8")
        assert is_json_content_type("application/problem+json")
        assert not is_json_content_type("text/json")
        assert not is_json_content_type("application/jsonp")
        assert not is_json_content_type(None)
