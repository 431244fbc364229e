"""Tests for the request debug logger and the event record formatter."""

import json
import time

import pytest

from keepwire import __version__
from keepwire.debug import CONSOLE_ENV, FILE_ENV, DebugLogger, format_log_event, log_stream
from keepwire.events import EventHub, ResponseDetails
from keepwire.http_primitives import Request, RequestOptions, Response
from keepwire.streams import BufferStream


class TestDebugLogger:

    @pytest.fixture
    def details(self):
        request = Request.create("POST", "http://example.com/items")
        response = Response.create(201, headers=[(b"content-type", b"text/plain")], request=request)
        options = RequestOptions(headers={"x-test": "1"}, payload=b"data", redirected=lambda *args: None)
        return ResponseDetails(request, response, time.time() - 0.25, "http://example.com/items", options)

    def test_inactive_without_environment(self):
        logger = DebugLogger.from_env({})
        hub = EventHub()

        logger.attach(hub)

        assert not logger.active
        assert hub.listeners("response") == []

    def test_from_env(self, tmp_path):
        path = tmp_path / "requests.log"
        logger = DebugLogger.from_env({FILE_ENV: str(path), CONSOLE_ENV: "1"})
        try:
            assert logger.active
            assert logger.file == str(path)
            assert logger.console
        finally:
            logger.close()

    def test_format(self, details):
        record = DebugLogger().format(None, details)

        assert record["method"] == "POST"
        assert record["url"] == "http://example.com/items"
        assert record["response"] == {
            "headers": {"content-type": "text/plain"},
            "status_code": 201,
            "status_message": "Created",
        }
        assert record["options"]["headers"] == {"x-test": "1"}
        assert "redirected" not in record["options"]
        assert record["response_time"] >= 240
        assert record["error"] is None

    def test_format_error(self, details):
        failed = details._replace(res=None)
        record = DebugLogger().format(ConnectionRefusedError("refused"), failed)

        assert record["error"] == {"type": "ConnectionRefusedError", "message": "refused"}
        assert record["response"]["status_code"] is None

    def test_writes_one_record_per_response(self, tmp_path, details):
        path = tmp_path / "requests.log"
        hub = EventHub()
        logger = DebugLogger(file=str(path), name="test-file").attach(hub)
        try:
            hub.emit("response", None, details)
            hub.emit("response", None, details)
        finally:
            logger.detach(hub)
            logger.close()

        content = path.read_text(encoding="utf-8")
        decoder = json.JSONDecoder()
        first, end = decoder.raw_decode(content)
        second, _ = decoder.raw_decode(content[end:].lstrip())

        assert first["method"] == "POST"
        assert second["response"]["status_code"] == 201
        # indented output
        assert '\n    "method"' in content

    def test_detach(self, tmp_path):
        hub = EventHub()
        logger = DebugLogger(file=str(tmp_path / "requests.log"), name="test-detach").attach(hub)
        try:
            logger.detach(hub)
            assert hub.listeners("response") == []
        finally:
            logger.close()

    def test_console(self, capsys, details):
        hub = EventHub()
        logger = DebugLogger(console=True, name="test-console").attach(hub)
        try:
            hub.emit("response", None, details)
        finally:
            logger.detach(hub)
            logger.close()

        assert '"status_code": 201' in capsys.readouterr().out


class TestFormatLogEvent:

    def test_fields(self):
        data = format_log_event(req={"path": "/"}, res={"status": 200}, trace="abc")

        assert isinstance(data, bytes)
        assert data.endswith(b"\n")
        event = json.loads(data)
        assert event["event"] == "keepwire"
        assert event["app_ver"] == __version__
        assert event["trace"] == "abc"
        assert event["req"] == {"path": "/"}
        assert event["res"] == {"status": 200}
        assert isinstance(event["time"], int)
        assert "err" not in event

    def test_error(self):
        try:
            raise ValueError("my error")
        except ValueError as e:
            event = json.loads(format_log_event(err=e, req={}))

        assert event["err"]["message"] == "my error"
        assert "ValueError: my error" in event["err"]["stack"]

    def test_without_response(self):
        event = json.loads(format_log_event(req={}))
        assert "res" not in event

    def test_unserializable_values(self):
        event = json.loads(format_log_event(req={"body": b"raw"}))
        assert event["req"]["body"] == "b'raw'"

    @pytest.mark.asyncio
    async def test_log_stream(self):
        stream = log_stream(req={}, res={})

        assert isinstance(stream, BufferStream)
        event = json.loads(await stream.aread())
        assert event["res"] == {}
