"""
Tests for the redirect controller.

A scripted issuer stands in for the network so the state machine, method
rewriting, budget accounting and hooks can be checked directly.
"""

import pytest

from keepwire.exceptions import RedirectError
from keepwire.http_primitives import Request, RequestOptions, Response
from keepwire.redirects import RedirectController, RedirectState
from keepwire.streams import BufferStream, RequestStream


class ScriptedIssuer:
    """Answers each attempt with the next scripted (status, location)."""

    def __init__(self, *script) -> None:
        self.script = list(script)
        self.calls = []

    async def __call__(self, method, url, options, dispatched):
        stream = None
        if options.payload is not None:
            stream = RequestStream(options.payload, tap=True)
        request = Request.create(method, url, options.headers, stream=stream)
        if stream is not None:
            await stream.aread()
        self.calls.append((method, url, options))
        dispatched(request)

        status_code, location = self.script.pop(0)
        headers = [(b"location", location.encode("latin-1"))] if location else []
        return Response.create(status_code, headers=headers, stream=BufferStream(b"body"), request=request)


def controller(issuer, method="GET", url="http://example.com/start", **options):
    return RedirectController(issuer, method, url, RequestOptions(**options))


class TestFollowing:

    @pytest.mark.asyncio
    async def test_not_following_returns_redirect(self):
        issuer = ScriptedIssuer((302, "/next"))
        chain = controller(issuer)

        response = await chain.run()

        assert response.status_code == 302
        assert len(issuer.calls) == 1
        assert chain.state is RedirectState.TERMINAL

    @pytest.mark.asyncio
    async def test_follows_relative_location(self):
        issuer = ScriptedIssuer((301, "/next?x=1"), (200, None))
        chain = controller(issuer, redirects=3)

        response = await chain.run()

        assert response.status_code == 200
        assert issuer.calls[1][1] == "http://example.com/next?x=1"
        assert chain.remaining == 2
        assert chain.attempts == 2

    @pytest.mark.asyncio
    async def test_follows_absolute_location(self):
        issuer = ScriptedIssuer((302, "https://other.com/landing"), (200, None))
        await controller(issuer, redirects=1).run()
        assert issuer.calls[1][1] == "https://other.com/landing"

    @pytest.mark.asyncio
    async def test_budget_exhausted(self):
        issuer = ScriptedIssuer((302, "/a"), (302, "/b"), (302, "/c"))

        with pytest.raises(RedirectError, match="Maximum redirections reached"):
            await controller(issuer, redirects=2).run()

        assert len(issuer.calls) == 3

    @pytest.mark.asyncio
    async def test_missing_location(self):
        issuer = ScriptedIssuer((302, None))

        with pytest.raises(RedirectError, match="without location"):
            await controller(issuer, redirects=1).run()

    @pytest.mark.asyncio
    async def test_non_redirect_status_is_terminal(self):
        issuer = ScriptedIssuer((304, "/ignored"))
        response = await controller(issuer, redirects=5).run()
        assert response.status_code == 304


class TestMethodRewriting:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [301, 302])
    async def test_301_302_keep_method_and_body(self, status_code):
        issuer = ScriptedIssuer((status_code, "/next"), (200, None))

        await controller(issuer, method="POST", payload=b"data", redirects=1).run()

        method, _, options = issuer.calls[1]
        assert method == "POST"
        assert options.payload == b"data"

    @pytest.mark.asyncio
    async def test_redirect_method_override(self):
        issuer = ScriptedIssuer((302, "/next"), (200, None))

        await controller(
            issuer,
            method="POST",
            payload=b"data",
            headers={"content-length": "4"},
            redirects=1,
            redirect_method="get",
        ).run()

        method, _, options = issuer.calls[1]
        assert method == "GET"
        assert options.payload is None
        assert options.headers == {}

    @pytest.mark.asyncio
    async def test_303_not_followed_by_default(self):
        issuer = ScriptedIssuer((303, "/other"))
        response = await controller(issuer, method="POST", redirects=1).run()
        assert response.status_code == 303

    @pytest.mark.asyncio
    async def test_303_becomes_get(self):
        issuer = ScriptedIssuer((303, "/other"), (200, None))

        await controller(issuer, method="POST", payload=b"data", redirects=1, redirect_303=True).run()

        method, _, options = issuer.calls[1]
        assert method == "GET"
        assert options.payload is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [307, 308])
    async def test_307_308_preserve_method_and_body(self, status_code):
        issuer = ScriptedIssuer((status_code, "/again"), (200, None))

        await controller(issuer, method="PUT", payload=b"data", redirects=1).run()

        method, _, options = issuer.calls[1]
        assert method == "PUT"
        assert options.payload == b"data"

    @pytest.mark.asyncio
    async def test_stream_payload_is_replayed(self, async_data_generator):
        issuer = ScriptedIssuer((307, "/again"), (200, None))

        await controller(
            issuer, method="POST", payload=async_data_generator([b"one-", b"shot"]), redirects=1
        ).run()

        assert issuer.calls[1][2].payload == b"one-shot"


class TestHooks:

    @pytest.mark.asyncio
    async def test_before_redirect_can_mutate_next_attempt(self):
        seen = []

        def before_redirect(method, status_code, location, headers, options):
            seen.append((method, status_code, location, headers["location"]))
            options.headers["x-redirected"] = "yes"

        issuer = ScriptedIssuer((301, "/next"), (200, None))
        await controller(
            issuer, headers={"x-original": "1"}, redirects=1, before_redirect=before_redirect
        ).run()

        assert seen == [("GET", 301, "http://example.com/next", "/next")]
        assert issuer.calls[0][2].headers == {"x-original": "1"}
        assert issuer.calls[1][2].headers == {"x-original": "1", "x-redirected": "yes"}

    @pytest.mark.asyncio
    async def test_async_before_redirect(self):
        calls = []

        async def before_redirect(method, status_code, location, headers, options):
            calls.append(location)

        issuer = ScriptedIssuer((302, "/a"), (200, None))
        await controller(issuer, redirects=1, before_redirect=before_redirect).run()

        assert calls == ["http://example.com/a"]

    @pytest.mark.asyncio
    async def test_redirected_receives_new_request(self):
        calls = []

        def redirected(status_code, location, request):
            calls.append((status_code, location, request.href))

        issuer = ScriptedIssuer((302, "/a"), (307, "/b"), (200, None))
        await controller(issuer, redirects=5, redirected=redirected).run()

        assert calls == [
            (302, "http://example.com/a", "http://example.com/a"),
            (307, "http://example.com/b", "http://example.com/b"),
        ]
