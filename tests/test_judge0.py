import json

import httpx
import pytest

from minioj.config import Settings
from minioj.corpus import CorpusCase
from minioj.errors import DispatchError
from minioj.judge0 import JudgeClient

pytestmark = pytest.mark.anyio

CASE = CorpusCase(input="2 3\n", output="5\n")


def _client(handler, **kwargs):
    return JudgeClient(
        base_url="http://judge.test/",
        callback_url="http://oj.test/webhook",
        backoff_base=0,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


async def test_dispatch_sends_callback_and_test_case():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(201, json={"token": "abc"})

    client = _client(handler, api_key="secret", api_host="judge0.p.rapidapi.com")
    token = await client.dispatch(CASE, 7, 42, "print(5)", 71)

    assert token == "abc"
    assert len(seen) == 1
    request = seen[0]
    assert request.url.path == "/submissions"
    assert request.url.params["wait"] == "false"
    assert request.headers["X-RapidAPI-Key"] == "secret"
    body = json.loads(request.content)
    assert body == {
        "source_code": "print(5)",
        "language_id": 71,
        "stdin": "2 3\n",
        "expected_output": "5\n",
        "callback_url": "http://oj.test/webhook?result_id=42",
    }


async def test_dispatch_retries_server_errors():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) < 3:
            return httpx.Response(503)
        return httpx.Response(201, json={"token": "late"})

    assert await _client(handler).dispatch(CASE, 1, 1, "src", 71) == "late"
    assert len(calls) == 3


async def test_dispatch_retries_transport_errors_then_gives_up():
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(DispatchError, match="after 3 attempts"):
        await _client(handler).dispatch(CASE, 1, 1, "src", 71)
    assert len(calls) == 3


async def test_dispatch_does_not_retry_rejection():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(422, json={"language_id": ["is not valid"]})

    with pytest.raises(DispatchError, match="HTTP 422"):
        await _client(handler).dispatch(CASE, 1, 1, "src", 9999)
    assert len(calls) == 1


def test_callback_url_keeps_existing_query():
    client = JudgeClient("http://judge.test", "http://oj.test/webhook?secret=s")
    assert client.callback_for(5) == "http://oj.test/webhook?secret=s&result_id=5"


def test_from_settings_omits_rapidapi_headers_without_host():
    settings = Settings(judge0_url="http://j:2358", judge0_key="k", judge0_host="")
    client = JudgeClient.from_settings(settings)
    assert client.base_url == "http://j:2358"
    assert "X-RapidAPI-Key" not in client.headers
    assert client.attempts == 3
