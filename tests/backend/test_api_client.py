import asyncio
import json

import httpx
import pytest

from services.backend import (
    ApiClient,
    ApiError,
    ApiResponse,
    AuthenticationRequiredError,
    RequestTimeoutError,
)

BASE_URL = "http://backend.test/api"


def run_async(coro):
    return asyncio.run(coro)


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class RecordingHandler:
    """MockTransport handler that records requests and replays one reply."""

    def __init__(self, status: int = 200, **reply):
        self.status = status
        self.reply = reply or {"json": {"items": [1, 2]}}
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status, **self.reply)


def make_client(handler, **kwargs) -> ApiClient:
    return ApiClient(BASE_URL, transport=httpx.MockTransport(handler), **kwargs)


def test_get_is_cache_first():
    async def scenario() -> None:
        handler = RecordingHandler(json={"campaigns": [{"id": 1}]})
        client = make_client(handler)
        try:
            first = await client.get("/x")
            second = await client.get("/x")
        finally:
            await client.close()

        assert len(handler.requests) == 1
        assert str(handler.requests[0].url) == f"{BASE_URL}/x"
        assert first == ApiResponse(success=True, message="Success", data={"campaigns": [{"id": 1}]})
        assert second == first

    run_async(scenario())


def test_cached_get_expires_after_ttl():
    async def scenario() -> None:
        clock = FakeClock()
        handler = RecordingHandler()
        client = make_client(handler, cache_ttl=300, clock=clock)
        try:
            await client.get("/x")
            clock.now += 299
            await client.get("/x")
            assert len(handler.requests) == 1

            clock.now += 1
            await client.get("/x")
            assert len(handler.requests) == 2
        finally:
            await client.close()

    run_async(scenario())


def test_mutations_never_read_or_populate_the_get_cache():
    async def scenario() -> None:
        handler = RecordingHandler(json={"ok": True})
        client = make_client(handler)
        try:
            await client.post("/x", {"name": "Spring"})
            assert len(client.cache) == 0

            await client.get("/x")
            await client.post("/x", {"name": "Spring"})
            await client.put("/x", {"name": "Summer"})
            await client.patch("/x", {"name": "Fall"})
            await client.delete("/x")
        finally:
            await client.close()

        methods = [r.method for r in handler.requests]
        assert methods == ["POST", "GET", "POST", "PUT", "PATCH", "DELETE"]
        assert json.loads(handler.requests[0].content) == {"name": "Spring"}

    run_async(scenario())


def test_error_responses_are_raised_and_never_cached():
    async def scenario() -> None:
        handler = RecordingHandler(500, json={"message": "database unavailable"})
        client = make_client(handler)
        try:
            with pytest.raises(ApiError) as excinfo:
                await client.get("/x")
            with pytest.raises(ApiError):
                await client.get("/x")
        finally:
            await client.close()

        assert excinfo.value.status == 500
        assert excinfo.value.message == "database unavailable"
        assert excinfo.value.details == {"message": "database unavailable"}
        assert len(handler.requests) == 2
        assert len(client.cache) == 0

    run_async(scenario())


@pytest.mark.parametrize(
    "reply, expected",
    [
        ({"json": {"error": "Campaign not found"}}, "Campaign not found"),
        ({"json": {"code": 17}}, "HTTP error! status: 404"),
        ({"text": "plain failure"}, "HTTP error! status: 404"),
        ({"content": b"{oops", "headers": {"content-type": "application/json"}}, "Backend error occurred"),
    ],
)
def test_error_message_normalization(reply, expected):
    async def scenario() -> None:
        client = make_client(RecordingHandler(404, **reply))
        try:
            with pytest.raises(ApiError) as excinfo:
                await client.get("/campaigns/9")
        finally:
            await client.close()
        assert excinfo.value.status == 404
        assert excinfo.value.message == expected

    run_async(scenario())


def test_html_body_is_an_authentication_error():
    async def scenario() -> None:
        for status in (200, 401, 403):
            handler = RecordingHandler(status, html="<html>Please sign in</html>")
            client = make_client(handler)
            try:
                with pytest.raises(AuthenticationRequiredError) as excinfo:
                    await client.get("/email-accounts/status")
            finally:
                await client.close()
            assert excinfo.value.status == 401
            assert excinfo.value.details == "Backend returned HTML error page"
            assert len(client.cache) == 0

    run_async(scenario())


def test_text_body_is_returned_but_not_cached():
    async def scenario() -> None:
        handler = RecordingHandler(text="pong")
        client = make_client(handler)
        try:
            first = await client.get("/ping")
            await client.get("/ping")
        finally:
            await client.close()
        assert first.data == "pong"
        assert len(handler.requests) == 2

    run_async(scenario())


def test_invalid_json_success_body_is_a_500():
    async def scenario() -> None:
        handler = RecordingHandler(content=b"not-json", headers={"content-type": "application/json"})
        client = make_client(handler)
        try:
            with pytest.raises(ApiError) as excinfo:
                await client.get("/x")
        finally:
            await client.close()
        assert excinfo.value.status == 500
        assert excinfo.value.message == "Invalid JSON response from backend"

    run_async(scenario())


def test_timeout_surfaces_as_408():
    async def scenario() -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        client = make_client(handler, timeout=0.5)
        try:
            with pytest.raises(RequestTimeoutError) as excinfo:
                await client.get("/slow")
        finally:
            await client.close()
        assert excinfo.value.status == 408
        assert excinfo.value.message == "Request timeout"
        assert len(client.cache) == 0

    run_async(scenario())


async def dribble_json(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
    """Minimal HTTP server that sends a valid JSON reply one byte at a time."""
    await reader.readuntil(b"\r\n\r\n")
    body = json.dumps({"ok": True, "padding": "x" * 40}).encode("utf-8")
    writer.write(b"HTTP/1.1 200 OK\r\n"
                 b"Content-Type: application/json\r\n"
                 b"Content-Length: %d\r\n\r\n" % len(body))
    try:
        for byte in body:
            if writer.is_closing():
                break
            writer.write(bytes([byte]))
            await writer.drain()
            await asyncio.sleep(0.05)
    except ConnectionError:
        pass
    finally:
        writer.close()


def test_slow_body_is_cut_off_at_the_overall_deadline():
    async def scenario() -> None:
        server = await asyncio.start_server(dribble_json, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        # An explicit transport keeps environment proxies out of the way
        client = ApiClient(f"http://127.0.0.1:{port}", timeout=0.5,
                           transport=httpx.AsyncHTTPTransport())
        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            with pytest.raises(RequestTimeoutError) as excinfo:
                await client.get("/slow")
        finally:
            elapsed = loop.time() - started
            await client.close()
            server.close()

        assert excinfo.value.status == 408
        # Every byte arrives well inside the read timeout, the body takes ~3s
        assert elapsed < 1.5
        assert len(client.cache) == 0

    run_async(scenario())


def test_per_call_timeout_is_passed_to_the_transport():
    async def scenario() -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.extensions["timeout"])
            return httpx.Response(200, json={})

        client = make_client(handler, timeout=10)
        try:
            await client.get("/a")
            await client.get("/b", timeout=2.5)
        finally:
            await client.close()
        assert seen[0]["read"] == 10
        assert seen[1]["read"] == 2.5

    run_async(scenario())


def test_connection_failure_is_a_500():
    async def scenario() -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler)
        try:
            with pytest.raises(ApiError) as excinfo:
                await client.get("/x")
        finally:
            await client.close()
        assert excinfo.value.status == 500
        assert excinfo.value.message == "Failed to connect to backend"

    run_async(scenario())


def test_cookies_are_forwarded_and_set_cookie_is_captured():
    async def scenario() -> None:
        handler = RecordingHandler(json={"ok": True}, headers={"set-cookie": "session=new; Path=/"})
        client = make_client(handler)
        try:
            result = await client.get("/auth/check", headers={"Cookie": "session=old"})
        finally:
            await client.close()
        assert handler.requests[0].headers["cookie"] == "session=old"
        assert handler.requests[0].headers["content-type"] == "application/json"
        assert result.set_cookie == "session=new; Path=/"
        assert "set_cookie" not in result.model_dump()

    run_async(scenario())


def test_cached_get_does_not_replay_set_cookie():
    async def scenario() -> None:
        handler = RecordingHandler(json={"provider": "gmail"},
                                   headers={"set-cookie": "session=first; Path=/"})
        client = make_client(handler)
        try:
            first = await client.get("/email-accounts/detect-provider?email=a@gmail.com")
            second = await client.get("/email-accounts/detect-provider?email=a@gmail.com")
        finally:
            await client.close()

        assert len(handler.requests) == 1
        assert first.set_cookie == "session=first; Path=/"
        assert second.set_cookie is None
        assert second.data == {"provider": "gmail"}

    run_async(scenario())


def test_use_cache_false_bypasses_the_cache():
    async def scenario() -> None:
        handler = RecordingHandler()
        client = make_client(handler)
        try:
            await client.get("/x", use_cache=False)
            await client.get("/x", use_cache=False)
            assert len(client.cache) == 0
        finally:
            await client.close()
        assert len(handler.requests) == 2

    run_async(scenario())


def test_invalidate_cache_by_substring():
    async def scenario() -> None:
        handler = RecordingHandler()
        client = make_client(handler)
        try:
            await client.get("/campaigns")
            await client.get("/campaigns/1")
            await client.get("/responses")
            assert client.invalidate_cache("/campaigns") == 2

            await client.get("/responses")
            await client.get("/campaigns")
            assert len(handler.requests) == 4

            client.clear_cache()
            assert len(client.cache) == 0
        finally:
            await client.close()

    run_async(scenario())


def test_concurrent_misses_both_reach_the_backend():
    async def scenario() -> None:
        calls = []

        async def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            await asyncio.sleep(0.01)
            return httpx.Response(200, json={"n": len(calls)})

        client = make_client(handler)
        try:
            first, second = await asyncio.gather(client.get("/x"), client.get("/x"))
            assert len(calls) == 2
            assert len(client.cache) == 1
            cached = await client.get("/x")
            assert cached.data == second.data
        finally:
            await client.close()

    run_async(scenario())


def test_api_error_serializes_to_dict():
    err = ApiError("Nope", 418, {"error": "Nope"})
    assert err.to_dict() == {"message": "Nope", "status": 418, "details": {"error": "Nope"}}
    assert str(err) == "Nope"
